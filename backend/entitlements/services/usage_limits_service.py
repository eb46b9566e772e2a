"""Usage limits service: the plan catalog (CRUD, soft delete, default seeding)."""

import logging
import uuid
from collections.abc import Mapping
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from entitlements.billing.limits import AILimits
from entitlements.billing.plans import AI_LIMIT_FIELDS, DEFAULT_PLANS, SCALAR_LIMIT_FIELDS
from entitlements.config import Settings, get_settings
from entitlements.exceptions import (
    ConflictError,
    NotFoundError,
    PlanNotFoundError,
    ValidationError,
)
from entitlements.models.usage_limits import UsageLimits
from entitlements.schemas.usage_limits import (
    AILimitsPatch,
    UsageLimitsCreate,
    UsageLimitsFilter,
    UsageLimitsPatch,
    UsageLimitsStats,
    UsageLimitsUpdate,
)
from entitlements.services.validation import parse_payload

logger = logging.getLogger(__name__)


def _coerce_id(usage_limits_id: uuid.UUID | str) -> uuid.UUID:
    if isinstance(usage_limits_id, uuid.UUID):
        return usage_limits_id
    try:
        return uuid.UUID(str(usage_limits_id))
    except ValueError as exc:
        raise ValidationError(
            f"Invalid usage limits id {usage_limits_id!r}",
            details={"usage_limits_id": str(usage_limits_id)},
        ) from exc


def _unknown_patch_keys(fields: Mapping[str, Any]) -> list[str]:
    """Keys in a patch payload that match no plan field (nested ``ai`` included)."""
    unknown = [key for key in fields if key not in UsageLimitsPatch.model_fields]
    ai = fields.get("ai")
    if isinstance(ai, Mapping):
        unknown.extend(f"ai.{key}" for key in ai if key not in AILimitsPatch.model_fields)
    return sorted(unknown)


class UsageLimitsService:
    """CRUD over the ``usage_limits`` table.

    Plan names are unique among active plans; a soft-deleted plan keeps its
    row (and name) for historical lookups.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or get_settings()

    # =========================================================================
    # Query Methods
    # =========================================================================

    async def get_usage_limits(self, usage_limits_id: uuid.UUID | str) -> UsageLimits:
        async with self._session_factory() as session:
            return await self._load(session, _coerce_id(usage_limits_id))

    async def get_usage_limits_by_plan(
        self, plan_name: str, include_inactive: bool = False
    ) -> UsageLimits:
        """Return the active plan named ``plan_name``.

        With ``include_inactive`` a soft-deleted plan of that name (the most
        recently updated one) is returned when no active plan exists.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                select(UsageLimits).where(
                    UsageLimits.plan_name == plan_name, UsageLimits.is_active.is_(True)
                )
            )
            usage_limits = result.scalar_one_or_none()
            if usage_limits is None and include_inactive:
                result = await session.execute(
                    select(UsageLimits)
                    .where(UsageLimits.plan_name == plan_name)
                    .order_by(UsageLimits.updated_at.desc(), UsageLimits.created_at.desc())
                    .limit(1)
                )
                usage_limits = result.scalar_one_or_none()
        if usage_limits is None:
            raise PlanNotFoundError(plan_name)
        return usage_limits

    async def list_usage_limits(
        self, filters: UsageLimitsFilter | Mapping[str, Any] | None = None
    ) -> tuple[list[UsageLimits], int]:
        """Return one page of plans (newest first) and the total match count."""
        filters = parse_payload(UsageLimitsFilter, filters or {})
        conditions = []
        if filters.plan_name:
            conditions.append(UsageLimits.plan_name.ilike(f"%{filters.plan_name}%"))
        if filters.is_active is not None:
            conditions.append(UsageLimits.is_active.is_(filters.is_active))

        async with self._session_factory() as session:
            total = (
                await session.execute(
                    select(func.count()).select_from(UsageLimits).where(*conditions)
                )
            ).scalar_one()
            result = await session.execute(
                select(UsageLimits)
                .where(*conditions)
                .order_by(UsageLimits.created_at.desc(), UsageLimits.id)
                .offset(filters.offset)
                .limit(filters.limit)
            )
            return list(result.scalars().all()), total

    async def get_usage_limits_stats(self) -> UsageLimitsStats:
        async with self._session_factory() as session:
            result = await session.execute(
                select(UsageLimits.is_active, func.count()).group_by(UsageLimits.is_active)
            )
            counts = {bool(is_active): count for is_active, count in result.all()}
        active = counts.get(True, 0)
        inactive = counts.get(False, 0)
        return UsageLimitsStats(
            total_usage_limits=active + inactive,
            active_usage_limits=active,
            inactive_usage_limits=inactive,
        )

    # =========================================================================
    # Command Methods
    # =========================================================================

    async def create_usage_limits(
        self, data: UsageLimitsCreate | Mapping[str, Any]
    ) -> UsageLimits:
        data = parse_payload(UsageLimitsCreate, data)
        usage_limits = UsageLimits(plan_name=data.plan_name, is_active=data.is_active)
        _apply_limits(usage_limits, data)

        async with self._session_factory() as session:
            async with session.begin():
                if data.is_active:
                    await self._ensure_name_free(session, data.plan_name)
                session.add(usage_limits)
                await self._flush(session, data.plan_name)

        logger.info("Created usage limits %s for plan '%s'", usage_limits.id, usage_limits.plan_name)
        return usage_limits

    async def update_usage_limits(
        self,
        usage_limits_id: uuid.UUID | str,
        data: UsageLimitsUpdate | Mapping[str, Any],
    ) -> UsageLimits:
        """Replace the plan name, every limit and the active flag."""
        usage_limits_id = _coerce_id(usage_limits_id)
        data = parse_payload(UsageLimitsUpdate, data)

        async with self._session_factory() as session:
            async with session.begin():
                usage_limits = await self._load(session, usage_limits_id)
                if data.is_active:
                    await self._ensure_name_free(session, data.plan_name, exclude_id=usage_limits.id)
                usage_limits.plan_name = data.plan_name
                usage_limits.is_active = data.is_active
                _apply_limits(usage_limits, data)
                await self._flush(session, data.plan_name)
            await session.refresh(usage_limits)

        logger.info("Replaced usage limits %s (plan '%s')", usage_limits.id, usage_limits.plan_name)
        return usage_limits

    async def patch_usage_limits(
        self, usage_limits_id: uuid.UUID | str, fields: Mapping[str, Any]
    ) -> UsageLimits:
        """Apply only the fields present in ``fields``.

        Unknown keys are rejected or ignored depending on
        ``settings.patch_unknown_fields``.
        """
        usage_limits_id = _coerce_id(usage_limits_id)
        if not isinstance(fields, Mapping):
            raise ValidationError("Patch payload must be an object")
        unknown = _unknown_patch_keys(fields)
        if unknown:
            if self._settings.patch_unknown_fields == "reject":
                raise ValidationError(
                    f"Unknown usage limits fields: {', '.join(unknown)}",
                    details={"unknown_fields": unknown},
                )
            logger.debug("Ignoring unknown usage limits fields: %s", unknown)
        patch = parse_payload(UsageLimitsPatch, fields)

        async with self._session_factory() as session:
            async with session.begin():
                usage_limits = await self._load(session, usage_limits_id)
                plan_name = patch.plan_name if "plan_name" in patch.model_fields_set else usage_limits.plan_name
                is_active = patch.is_active if "is_active" in patch.model_fields_set else usage_limits.is_active
                renamed = plan_name != usage_limits.plan_name
                reactivated = is_active and not usage_limits.is_active
                if is_active and (renamed or reactivated):
                    await self._ensure_name_free(session, plan_name, exclude_id=usage_limits.id)

                usage_limits.plan_name = plan_name
                usage_limits.is_active = is_active
                for name in SCALAR_LIMIT_FIELDS:
                    if name in patch.model_fields_set:
                        setattr(usage_limits, name, getattr(patch, name))
                if patch.ai is not None:
                    for name in AI_LIMIT_FIELDS:
                        if name in patch.ai.model_fields_set:
                            setattr(usage_limits, f"ai_{name}", getattr(patch.ai, name))
                await self._flush(session, plan_name)
            await session.refresh(usage_limits)

        logger.info(
            "Patched usage limits %s: %s",
            usage_limits.id,
            sorted(patch.model_fields_set),
        )
        return usage_limits

    async def delete_usage_limits(self, usage_limits_id: uuid.UUID | str) -> None:
        """Hard delete."""
        usage_limits_id = _coerce_id(usage_limits_id)
        async with self._session_factory() as session:
            async with session.begin():
                usage_limits = await self._load(session, usage_limits_id)
                await session.delete(usage_limits)
        logger.info("Deleted usage limits %s (plan '%s')", usage_limits_id, usage_limits.plan_name)

    async def soft_delete_usage_limits(self, usage_limits_id: uuid.UUID | str) -> UsageLimits:
        """Deactivate a plan, keeping the row for history."""
        usage_limits_id = _coerce_id(usage_limits_id)
        async with self._session_factory() as session:
            async with session.begin():
                usage_limits = await self._load(session, usage_limits_id)
                usage_limits.is_active = False
            await session.refresh(usage_limits)
        logger.info("Soft-deleted usage limits %s (plan '%s')", usage_limits.id, usage_limits.plan_name)
        return usage_limits

    async def initialize_default_usage_limits(self) -> list[str]:
        """Seed the built-in plans that do not exist yet. Returns the names created."""
        created: list[str] = []
        for name, plan in DEFAULT_PLANS.items():
            try:
                await self.create_usage_limits(plan.as_payload())
            except ConflictError:
                logger.debug("Default plan '%s' already exists", name)
                continue
            created.append(name)
        if created:
            logger.info("Initialized default usage limits: %s", ", ".join(created))
        return created

    # =========================================================================
    # Internals
    # =========================================================================

    async def _load(self, session: AsyncSession, usage_limits_id: uuid.UUID) -> UsageLimits:
        usage_limits = await session.get(UsageLimits, usage_limits_id)
        if usage_limits is None:
            raise NotFoundError("usage_limits", usage_limits_id)
        return usage_limits

    async def _ensure_name_free(
        self,
        session: AsyncSession,
        plan_name: str,
        exclude_id: uuid.UUID | None = None,
    ) -> None:
        query = select(UsageLimits.id).where(
            UsageLimits.plan_name == plan_name, UsageLimits.is_active.is_(True)
        )
        if exclude_id is not None:
            query = query.where(UsageLimits.id != exclude_id)
        if (await session.execute(query)).first() is not None:
            raise ConflictError(
                f"An active plan named '{plan_name}' already exists",
                details={"plan_name": plan_name},
            )

    async def _flush(self, session: AsyncSession, plan_name: str) -> None:
        # The partial unique index catches a concurrent writer the pre-check missed
        try:
            await session.flush()
        except IntegrityError as exc:
            raise ConflictError(
                f"An active plan named '{plan_name}' already exists",
                details={"plan_name": plan_name},
                original_error=exc,
            ) from exc


def _apply_limits(usage_limits: UsageLimits, data: UsageLimitsCreate) -> None:
    for name in SCALAR_LIMIT_FIELDS:
        setattr(usage_limits, name, getattr(data, name))
    usage_limits.ai = AILimits(
        independent_agent=data.ai.independent_agent,
        lumen_agent=data.ai.lumen_agent,
        rag_agent=data.ai.rag_agent,
        rag_document_uploads=data.ai.rag_document_uploads,
    )
