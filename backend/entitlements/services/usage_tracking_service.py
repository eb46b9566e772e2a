"""Usage tracking service: per-user, per-period consumption counters.

Increments are single ``INSERT ... ON CONFLICT DO UPDATE`` statements against
the live row of the current period, so concurrent trackers never lose an
update and never create duplicate rows.
"""

import logging
import uuid
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from sqlalchemy import case, distinct, func, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DataError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from entitlements.billing.periods import day_key, period_key, to_naive_utc, utcnow, validate_period_key
from entitlements.exceptions import ConflictError, NotFoundError, ValidationError
from entitlements.models.usage_tracking import COUNTER_COLUMNS, MAX_USAGE_DELTA, UsageCategory, UsageTracking
from entitlements.schemas.usage_tracking import AggregatedUsage, UsageSummary, UsageTrackingFilter
from entitlements.services.validation import parse_payload, require_positive_int

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

# Must match the predicate of uq_usage_tracking_user_period_current
_LIVE_ROW_PREDICATE = {
    "postgresql": "is_current",
    "sqlite": "is_current = 1",
}
_DIALECT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def coerce_category(category: UsageCategory | str) -> UsageCategory:
    try:
        return UsageCategory(category)
    except ValueError as exc:
        raise ValidationError(
            f"Unknown usage category {category!r}",
            details={"allowed": [c.value for c in UsageCategory]},
        ) from exc


def _sum_columns() -> list:
    return [func.coalesce(func.sum(getattr(UsageTracking, column)), 0) for column in COUNTER_COLUMNS]


class UsageTrackingService:
    """Records and reports usage counters."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def _now(self) -> datetime:
        return to_naive_utc(self._clock())

    # =========================================================================
    # Command Methods
    # =========================================================================

    async def track_usage(
        self, user_id: str, category: UsageCategory | str, delta: int = 1
    ) -> UsageTracking:
        """Add ``delta`` to one counter of the user's current period."""
        category = coerce_category(category)
        delta = require_positive_int(delta, "delta", MAX_USAGE_DELTA)
        record = await self._increment(user_id, {category.value: delta})
        logger.debug("Tracked %s +%d for user %s (%s)", category.value, delta, user_id, record.period)
        return record

    async def track_bulk_usage(
        self, user_id: str, usage: Mapping[UsageCategory | str, int]
    ) -> UsageTracking:
        """Apply several increments atomically; one bad entry rejects them all."""
        if not isinstance(usage, Mapping) or not usage:
            raise ValidationError("Bulk usage must be a non-empty mapping of category to count")
        increments: dict[str, int] = {}
        for category, delta in usage.items():
            category = coerce_category(category)
            increments[category.value] = require_positive_int(delta, category.value, MAX_USAGE_DELTA)
        record = await self._increment(user_id, increments)
        logger.debug("Tracked bulk usage %s for user %s (%s)", increments, user_id, record.period)
        return record

    async def reset_usage(self, user_id: str) -> UsageTracking:
        """Start the current period over.

        The live row is kept as history (``is_current = False``) and a fresh
        all-zero row flagged ``is_reset`` takes its place.
        """
        now = self._now()
        period = period_key(now)
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    superseded = await session.execute(
                        update(UsageTracking)
                        .where(
                            UsageTracking.user_id == user_id,
                            UsageTracking.period == period,
                            UsageTracking.is_current.is_(True),
                        )
                        .values(is_current=False, superseded_at=now, updated_at=now)
                        .execution_options(synchronize_session=False)
                    )
                    record = UsageTracking.empty(user_id, period)
                    record.is_reset = True
                    record.created_at = now
                    record.updated_at = now
                    session.add(record)
                    await session.flush()
            except IntegrityError as exc:
                raise ConflictError(
                    f"Concurrent reset of usage for user {user_id}",
                    details={"user_id": user_id, "period": period},
                    original_error=exc,
                ) from exc

        logger.info(
            "Reset usage for user %s (%s); superseded %d record(s)",
            user_id,
            period,
            superseded.rowcount,
        )
        return record

    # =========================================================================
    # Query Methods
    # =========================================================================

    async def get_current_usage(self, user_id: str) -> UsageTracking:
        """Live row of the current period, or an unsaved all-zero record."""
        period = period_key(self._now())
        async with self._session_factory() as session:
            record = await self._live_row(session, user_id, period)
        return record if record is not None else UsageTracking.empty(user_id, period)

    async def get_usage_for_period(self, user_id: str, period: str) -> UsageTracking:
        """Live row for ``period``, else its most recently superseded row."""
        validate_period_key(period)
        async with self._session_factory() as session:
            result = await session.execute(
                select(UsageTracking)
                .where(UsageTracking.user_id == user_id, UsageTracking.period == period)
                .order_by(
                    UsageTracking.is_current.desc(),
                    UsageTracking.superseded_at.desc(),
                    UsageTracking.created_at.desc(),
                )
                .limit(1)
            )
            record = result.scalar_one_or_none()
        if record is None:
            raise NotFoundError(
                "usage_tracking",
                f"{user_id}/{period}",
                message=f"No usage recorded for user {user_id} in {period}",
            )
        return record

    async def get_user_usage_history(self, user_id: str) -> list[UsageTracking]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(UsageTracking)
                .where(UsageTracking.user_id == user_id)
                .order_by(UsageTracking.period.desc(), UsageTracking.created_at.desc())
            )
            return list(result.scalars().all())

    async def list_usage_tracking(
        self, filters: UsageTrackingFilter | Mapping[str, Any] | None = None
    ) -> list[UsageTracking]:
        filters = parse_payload(UsageTrackingFilter, filters or {})
        conditions = []
        if filters.user_id:
            conditions.append(UsageTracking.user_id == filters.user_id)
        if filters.period:
            conditions.append(UsageTracking.period == validate_period_key(filters.period))

        async with self._session_factory() as session:
            result = await session.execute(
                select(UsageTracking)
                .where(*conditions)
                .order_by(UsageTracking.period.desc(), UsageTracking.created_at.desc(), UsageTracking.id)
                .offset(filters.offset)
                .limit(filters.limit)
            )
            return list(result.scalars().all())

    async def get_aggregated_usage(self, user_id: str) -> AggregatedUsage:
        """Sum every counter over all of the user's records."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count(distinct(UsageTracking.period)), *_sum_columns()).where(
                    UsageTracking.user_id == user_id
                )
            )
            period_count, *sums = result.one()
        return AggregatedUsage(
            user_id=user_id,
            period_count=period_count,
            totals=dict(zip(COUNTER_COLUMNS, (int(value) for value in sums))),
        )

    async def get_usage_summary_by_period(self, period: str) -> UsageSummary:
        """Totals over every user for one period."""
        validate_period_key(period)
        async with self._session_factory() as session:
            result = await session.execute(
                select(
                    func.count(distinct(UsageTracking.user_id)),
                    func.count(UsageTracking.id),
                    *_sum_columns(),
                ).where(UsageTracking.period == period)
            )
            user_count, record_count, *sums = result.one()
        return UsageSummary(
            period=period,
            user_count=user_count,
            record_count=record_count,
            totals=dict(zip(COUNTER_COLUMNS, (int(value) for value in sums))),
        )

    # =========================================================================
    # Internals
    # =========================================================================

    async def _increment(self, user_id: str, increments: dict[str, int]) -> UsageTracking:
        now = self._now()
        period = period_key(now)
        async with self._session_factory() as session:
            async with session.begin():
                dialect = session.get_bind().dialect.name
                try:
                    await session.execute(
                        _build_upsert(dialect, user_id, period, day_key(now), increments, now)
                    )
                except DataError as exc:
                    raise ValidationError(
                        f"Usage counter for user {user_id} out of range",
                        details={"user_id": user_id, "period": period, "increments": increments},
                        original_error=exc,
                    ) from exc
                record = await self._live_row(session, user_id, period, refresh=True)
        return record

    async def _live_row(
        self,
        session: AsyncSession,
        user_id: str,
        period: str,
        refresh: bool = False,
    ) -> UsageTracking | None:
        query = select(UsageTracking).where(
            UsageTracking.user_id == user_id,
            UsageTracking.period == period,
            UsageTracking.is_current.is_(True),
        )
        if refresh:
            query = query.execution_options(populate_existing=True)
        result = await session.execute(query)
        return result.scalar_one_or_none()


def _build_upsert(
    dialect: str,
    user_id: str,
    period: str,
    day: str,
    increments: dict[str, int],
    now: datetime,
):
    """Build the insert-or-increment statement for the live (user, period) row."""
    insert = _DIALECT_INSERTS.get(dialect)
    if insert is None:
        raise RuntimeError(f"Unsupported database dialect for usage tracking: {dialect}")

    exports = increments.get(UsageCategory.ASSIGNMENT_EXPORTS.value, 0)
    values = {column: increments.get(column, 0) for column in COUNTER_COLUMNS}
    values.update(
        id=uuid.uuid4(),
        user_id=user_id,
        period=period,
        is_current=True,
        is_reset=False,
        assignment_exports_today=exports,
        exports_day=day if exports else None,
        created_at=now,
        updated_at=now,
    )

    changes: dict[str, Any] = {
        column: getattr(UsageTracking, column) + delta for column, delta in increments.items()
    }
    changes["updated_at"] = now
    if exports:
        # same day adds to the window, a new day restarts it
        changes["assignment_exports_today"] = case(
            (UsageTracking.exports_day == day, UsageTracking.assignment_exports_today + exports),
            else_=exports,
        )
        changes["exports_day"] = day

    return (
        insert(UsageTracking)
        .values(**values)
        .on_conflict_do_update(
            index_elements=["user_id", "period"],
            index_where=text(_LIVE_ROW_PREDICATE[dialect]),
            set_=changes,
        )
    )
