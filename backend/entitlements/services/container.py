"""Service wiring: one set of service objects per process, built at startup."""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from entitlements.billing.periods import utcnow
from entitlements.config import Settings
from entitlements.database import create_engine, create_session_factory
from entitlements.services.limit_checker import LimitChecker
from entitlements.services.subscription_service import SubscriptionService
from entitlements.services.usage_limits_service import UsageLimitsService
from entitlements.services.usage_tracking_service import UsageTrackingService


@dataclass
class ServiceContainer:
    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    subscriptions: SubscriptionService
    usage_limits: UsageLimitsService
    usage_tracking: UsageTrackingService
    limit_checker: LimitChecker

    async def dispose(self) -> None:
        await self.engine.dispose()


def build_container(
    settings: Settings,
    engine: AsyncEngine | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> ServiceContainer:
    """Create the engine (unless given) and every service sharing it."""
    engine = engine or create_engine(settings)
    session_factory = create_session_factory(engine)
    subscriptions = SubscriptionService(session_factory, settings, clock=clock)
    usage_limits = UsageLimitsService(session_factory, settings)
    usage_tracking = UsageTrackingService(session_factory, clock=clock)
    return ServiceContainer(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        subscriptions=subscriptions,
        usage_limits=usage_limits,
        usage_tracking=usage_tracking,
        limit_checker=LimitChecker(usage_limits, usage_tracking, subscriptions, clock=clock),
    )
