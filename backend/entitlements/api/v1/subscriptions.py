"""Subscriptions API router: lifecycle transitions and the expiry sweep."""

import uuid

from fastapi import APIRouter, Depends, Query, status

from entitlements.api.deps import get_subscription_service
from entitlements.models.subscription import Subscription, SubscriptionStatus
from entitlements.schemas.subscription import (
    ExpirySweepResponse,
    RenewRequest,
    SubscriptionCreate,
    SubscriptionFilter,
    SubscriptionResponse,
    SubscriptionStats,
    SubscriptionStatusResponse,
    SubscriptionUpdate,
    SweepFailure,
)
from entitlements.services.subscription_service import SubscriptionService

router = APIRouter(prefix="/api/v1/subscriptions", tags=["subscriptions"])


@router.post(
    "",
    response_model=SubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a subscription",
)
async def create_subscription(
    body: SubscriptionCreate,
    service: SubscriptionService = Depends(get_subscription_service),
) -> Subscription:
    """Start an active subscription; any entitling one the user holds becomes inactive."""
    return await service.create_subscription(body)


@router.get("", response_model=list[SubscriptionResponse], summary="List subscriptions")
async def list_subscriptions(
    user_id: str | None = Query(None),
    status_filter: SubscriptionStatus | None = Query(None, alias="status"),
    plan_name: str | None = Query(None),
    limit: int = Query(10, ge=1, le=100, description="Pagination limit"),
    offset: int = Query(0, ge=0, description="Pagination offset"),
    service: SubscriptionService = Depends(get_subscription_service),
) -> list[Subscription]:
    return await service.list_subscriptions(
        SubscriptionFilter(
            user_id=user_id,
            status=status_filter,
            plan_name=plan_name,
            limit=limit,
            offset=offset,
        )
    )


@router.get("/stats", response_model=SubscriptionStats)
async def get_subscription_stats(
    service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionStats:
    return await service.get_subscription_stats()


@router.post("/process-expired", response_model=ExpirySweepResponse)
async def process_expired_subscriptions(
    service: SubscriptionService = Depends(get_subscription_service),
) -> ExpirySweepResponse:
    """Cancel scheduled and lapsed subscriptions whose period has ended."""
    report = await service.process_expired_subscriptions()
    return ExpirySweepResponse(
        processed_count=len(report.processed),
        subscriptions=[SubscriptionResponse.model_validate(s) for s in report.processed],
        failed=[SweepFailure(subscription_id=sid, error=error) for sid, error in report.failed],
    )


@router.get("/status/{subscription_status}", response_model=list[SubscriptionResponse])
async def get_subscriptions_by_status(
    subscription_status: SubscriptionStatus,
    service: SubscriptionService = Depends(get_subscription_service),
) -> list[Subscription]:
    return await service.get_subscriptions_by_status(subscription_status)


@router.get("/user/{user_id}", response_model=SubscriptionResponse)
async def get_user_subscription(
    user_id: str,
    service: SubscriptionService = Depends(get_subscription_service),
) -> Subscription:
    """Return the user's current subscription (the active one if any)."""
    return await service.get_user_subscription(user_id)


@router.get("/user/{user_id}/all", response_model=list[SubscriptionResponse])
async def get_all_user_subscriptions(
    user_id: str,
    service: SubscriptionService = Depends(get_subscription_service),
) -> list[Subscription]:
    return await service.get_all_user_subscriptions(user_id)


@router.get("/user/{user_id}/status", response_model=SubscriptionStatusResponse)
async def get_user_subscription_status(
    user_id: str,
    service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionStatusResponse:
    return SubscriptionStatusResponse(
        user_id=user_id,
        subscribed=await service.is_user_subscribed(user_id),
    )


@router.get("/{subscription_id}", response_model=SubscriptionResponse)
async def get_subscription(
    subscription_id: uuid.UUID,
    service: SubscriptionService = Depends(get_subscription_service),
) -> Subscription:
    return await service.get_subscription(subscription_id)


@router.patch("/{subscription_id}", response_model=SubscriptionResponse)
async def update_subscription(
    subscription_id: uuid.UUID,
    body: SubscriptionUpdate,
    service: SubscriptionService = Depends(get_subscription_service),
) -> Subscription:
    """Overwrite plan, period or currency. Status only changes through the actions below."""
    return await service.update_subscription(subscription_id, body)


@router.post("/{subscription_id}/cancel", response_model=SubscriptionResponse)
async def cancel_subscription(
    subscription_id: uuid.UUID,
    service: SubscriptionService = Depends(get_subscription_service),
) -> Subscription:
    return await service.cancel_subscription(subscription_id)


@router.post("/{subscription_id}/schedule-cancellation", response_model=SubscriptionResponse)
async def schedule_subscription_cancellation(
    subscription_id: uuid.UUID,
    service: SubscriptionService = Depends(get_subscription_service),
) -> Subscription:
    return await service.schedule_subscription_cancellation(subscription_id)


@router.post("/{subscription_id}/reactivate", response_model=SubscriptionResponse)
async def reactivate_subscription(
    subscription_id: uuid.UUID,
    service: SubscriptionService = Depends(get_subscription_service),
) -> Subscription:
    return await service.reactivate_subscription(subscription_id)


@router.post("/{subscription_id}/renew", response_model=SubscriptionResponse)
async def renew_subscription(
    subscription_id: uuid.UUID,
    body: RenewRequest,
    service: SubscriptionService = Depends(get_subscription_service),
) -> Subscription:
    return await service.renew_subscription(subscription_id, body.new_period_end)
