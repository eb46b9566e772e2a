"""Shared API dependencies: single import point for all routers.

Services are built once in the application lifespan and stored on
``app.state.services``; these helpers hand them to route functions::

    from entitlements.api.deps import get_subscription_service
"""

from fastapi import Request

from entitlements.services.container import ServiceContainer
from entitlements.services.limit_checker import LimitChecker
from entitlements.services.subscription_service import SubscriptionService
from entitlements.services.usage_limits_service import UsageLimitsService
from entitlements.services.usage_tracking_service import UsageTrackingService


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_subscription_service(request: Request) -> SubscriptionService:
    return get_services(request).subscriptions


def get_usage_limits_service(request: Request) -> UsageLimitsService:
    return get_services(request).usage_limits


def get_usage_tracking_service(request: Request) -> UsageTrackingService:
    return get_services(request).usage_tracking


def get_limit_checker(request: Request) -> LimitChecker:
    return get_services(request).limit_checker


__all__ = [
    "get_services",
    "get_subscription_service",
    "get_usage_limits_service",
    "get_usage_tracking_service",
    "get_limit_checker",
]
