"""Usage limits API router: the plan catalog and compliance checks."""

import uuid
from typing import Any

from fastapi import APIRouter, Body, Depends, Query, Response, status

from entitlements.api.deps import get_limit_checker, get_usage_limits_service
from entitlements.models.usage_limits import UsageLimits
from entitlements.schemas.usage_limits import (
    ComplianceReport,
    DefaultPlansResponse,
    UsageLimitsCreate,
    UsageLimitsFilter,
    UsageLimitsListResponse,
    UsageLimitsResponse,
    UsageLimitsStats,
    UsageLimitsUpdate,
)
from entitlements.services.limit_checker import LimitChecker
from entitlements.services.usage_limits_service import UsageLimitsService

router = APIRouter(prefix="/api/v1/usage-limits", tags=["usage-limits"])


@router.post(
    "",
    response_model=UsageLimitsResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a plan",
)
async def create_usage_limits(
    body: UsageLimitsCreate,
    service: UsageLimitsService = Depends(get_usage_limits_service),
) -> UsageLimits:
    """Create a plan. Raises 409 if an active plan already has the name."""
    return await service.create_usage_limits(body)


@router.get("", response_model=UsageLimitsListResponse, summary="List plans")
async def list_usage_limits(
    plan_name: str | None = Query(None, description="Search by plan name (case-insensitive)"),
    is_active: bool | None = Query(True, description="Omit soft-deleted plans unless false/null"),
    include_inactive: bool = Query(False, description="List active and soft-deleted plans"),
    limit: int = Query(20, ge=1, le=100, description="Pagination limit"),
    offset: int = Query(0, ge=0, description="Pagination offset"),
    service: UsageLimitsService = Depends(get_usage_limits_service),
) -> dict:
    items, total = await service.list_usage_limits(
        UsageLimitsFilter(
            plan_name=plan_name,
            is_active=None if include_inactive else is_active,
            limit=limit,
            offset=offset,
        )
    )
    return {"items": items, "total": total}


@router.get("/stats", response_model=UsageLimitsStats)
async def get_usage_limits_stats(
    service: UsageLimitsService = Depends(get_usage_limits_service),
) -> UsageLimitsStats:
    return await service.get_usage_limits_stats()


@router.post("/initialize-defaults", response_model=DefaultPlansResponse)
async def initialize_default_usage_limits(
    service: UsageLimitsService = Depends(get_usage_limits_service),
) -> DefaultPlansResponse:
    """Seed the built-in plans that are missing."""
    return DefaultPlansResponse(created=await service.initialize_default_usage_limits())


@router.get("/plan/{plan_name}", response_model=UsageLimitsResponse)
async def get_usage_limits_by_plan(
    plan_name: str,
    include_inactive: bool = Query(False),
    service: UsageLimitsService = Depends(get_usage_limits_service),
) -> UsageLimits:
    return await service.get_usage_limits_by_plan(plan_name, include_inactive=include_inactive)


@router.get("/check/{user_id}", response_model=ComplianceReport)
async def check_usage_against_limits(
    user_id: str,
    plan_name: str = Query(..., min_length=1),
    checker: LimitChecker = Depends(get_limit_checker),
) -> ComplianceReport:
    """Compare the user's current-period usage with an active plan."""
    return await checker.check_usage_against_limits(user_id, plan_name)


@router.get("/{usage_limits_id}", response_model=UsageLimitsResponse)
async def get_usage_limits(
    usage_limits_id: uuid.UUID,
    service: UsageLimitsService = Depends(get_usage_limits_service),
) -> UsageLimits:
    return await service.get_usage_limits(usage_limits_id)


@router.put("/{usage_limits_id}", response_model=UsageLimitsResponse)
async def update_usage_limits(
    usage_limits_id: uuid.UUID,
    body: UsageLimitsUpdate,
    service: UsageLimitsService = Depends(get_usage_limits_service),
) -> UsageLimits:
    return await service.update_usage_limits(usage_limits_id, body)


@router.patch("/{usage_limits_id}", response_model=UsageLimitsResponse)
async def patch_usage_limits(
    usage_limits_id: uuid.UUID,
    body: dict[str, Any] = Body(...),
    service: UsageLimitsService = Depends(get_usage_limits_service),
) -> UsageLimits:
    """Apply only the fields present in the body."""
    return await service.patch_usage_limits(usage_limits_id, body)


@router.delete("/{usage_limits_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_usage_limits(
    usage_limits_id: uuid.UUID,
    service: UsageLimitsService = Depends(get_usage_limits_service),
) -> Response:
    await service.delete_usage_limits(usage_limits_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{usage_limits_id}/soft-delete", response_model=UsageLimitsResponse)
async def soft_delete_usage_limits(
    usage_limits_id: uuid.UUID,
    service: UsageLimitsService = Depends(get_usage_limits_service),
) -> UsageLimits:
    """Deactivate the plan but keep it for historical lookups."""
    return await service.soft_delete_usage_limits(usage_limits_id)
