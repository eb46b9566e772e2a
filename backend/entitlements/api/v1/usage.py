"""Usage API router: tracking, reporting and entitlement checks per user."""

from fastapi import APIRouter, Depends, Query

from entitlements.api.deps import get_limit_checker, get_usage_tracking_service
from entitlements.models.usage_tracking import UsageCategory, UsageTracking
from entitlements.schemas.usage_limits import ComplianceReport
from entitlements.schemas.usage_tracking import (
    AggregatedUsage,
    BulkUsageRequest,
    TrackUsageRequest,
    UsageSummary,
    UsageTrackingFilter,
    UsageTrackingResponse,
)
from entitlements.services.limit_checker import LimitChecker
from entitlements.services.usage_tracking_service import UsageTrackingService

router = APIRouter(prefix="/api/v1/usage", tags=["usage"])


@router.get("", response_model=list[UsageTrackingResponse], summary="List usage records")
async def list_usage_tracking(
    user_id: str | None = Query(None),
    period: str | None = Query(None, description="Period as YYYY-MM"),
    limit: int = Query(10, ge=1, le=100, description="Pagination limit"),
    offset: int = Query(0, ge=0, description="Pagination offset"),
    service: UsageTrackingService = Depends(get_usage_tracking_service),
) -> list[UsageTracking]:
    return await service.list_usage_tracking(
        UsageTrackingFilter(user_id=user_id, period=period, limit=limit, offset=offset)
    )


@router.get("/periods/{period}/summary", response_model=UsageSummary)
async def get_usage_summary_by_period(
    period: str,
    service: UsageTrackingService = Depends(get_usage_tracking_service),
) -> UsageSummary:
    """Totals over every user for one period."""
    return await service.get_usage_summary_by_period(period)


@router.post("/{user_id}/track/{category}", response_model=UsageTrackingResponse)
async def track_usage(
    user_id: str,
    category: UsageCategory,
    body: TrackUsageRequest | None = None,
    service: UsageTrackingService = Depends(get_usage_tracking_service),
) -> UsageTracking:
    """Increment one counter of the current period (by 1 unless a count is given)."""
    count = body.count if body is not None else 1
    return await service.track_usage(user_id, category, count)


@router.post("/{user_id}/track", response_model=UsageTrackingResponse)
async def track_bulk_usage(
    user_id: str,
    body: BulkUsageRequest,
    service: UsageTrackingService = Depends(get_usage_tracking_service),
) -> UsageTracking:
    """Apply several increments in one atomic update."""
    return await service.track_bulk_usage(user_id, body.usage)


@router.get("/{user_id}/current", response_model=UsageTrackingResponse)
async def get_current_usage(
    user_id: str,
    service: UsageTrackingService = Depends(get_usage_tracking_service),
) -> UsageTracking:
    return await service.get_current_usage(user_id)


@router.get("/{user_id}/aggregated", response_model=AggregatedUsage)
async def get_aggregated_usage(
    user_id: str,
    service: UsageTrackingService = Depends(get_usage_tracking_service),
) -> AggregatedUsage:
    return await service.get_aggregated_usage(user_id)


@router.get("/{user_id}/period/{period}", response_model=UsageTrackingResponse)
async def get_usage_for_period(
    user_id: str,
    period: str,
    service: UsageTrackingService = Depends(get_usage_tracking_service),
) -> UsageTracking:
    return await service.get_usage_for_period(user_id, period)


@router.get("/{user_id}/history", response_model=list[UsageTrackingResponse])
async def get_user_usage_history(
    user_id: str,
    service: UsageTrackingService = Depends(get_usage_tracking_service),
) -> list[UsageTracking]:
    return await service.get_user_usage_history(user_id)


@router.post("/{user_id}/reset", response_model=UsageTrackingResponse)
async def reset_usage(
    user_id: str,
    service: UsageTrackingService = Depends(get_usage_tracking_service),
) -> UsageTracking:
    """Start the current period over; the previous record is kept as history."""
    return await service.reset_usage(user_id)


@router.get("/{user_id}/entitlements", response_model=ComplianceReport)
async def check_user_entitlements(
    user_id: str,
    checker: LimitChecker = Depends(get_limit_checker),
) -> ComplianceReport:
    """Check the user's usage against the plan of their subscription."""
    return await checker.check_user_entitlements(user_id)
