"""Subscription service: lifecycle state machine for user subscriptions.

Every transition is a conditional UPDATE guarded by the status and version
the caller last read, so two writers racing on the same row cannot both
apply. A lost race surfaces as ``ConflictError``.
"""

import logging
import uuid
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from entitlements.billing.periods import to_naive_utc, utcnow
from entitlements.config import Settings, get_settings
from entitlements.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from entitlements.models.subscription import (
    ENTITLED_STATUSES,
    Subscription,
    SubscriptionStatus,
)
from entitlements.schemas.subscription import (
    SubscriptionCreate,
    SubscriptionFilter,
    SubscriptionStats,
    SubscriptionUpdate,
)
from entitlements.services.validation import parse_payload

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_CANCELLABLE = frozenset(
    {SubscriptionStatus.ACTIVE, SubscriptionStatus.SCHEDULED_TO_CANCEL, SubscriptionStatus.INACTIVE}
)
_SCHEDULABLE = frozenset({SubscriptionStatus.ACTIVE})
_REACTIVATABLE = frozenset({SubscriptionStatus.SCHEDULED_TO_CANCEL})
_RENEWABLE = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.SCHEDULED_TO_CANCEL})


@dataclass
class ExpirySweepReport:
    """Outcome of one expiry sweep."""

    processed: list[Subscription] = field(default_factory=list)
    failed: list[tuple[uuid.UUID, str]] = field(default_factory=list)


def coerce_subscription_id(subscription_id: uuid.UUID | str) -> uuid.UUID:
    if isinstance(subscription_id, uuid.UUID):
        return subscription_id
    try:
        return uuid.UUID(str(subscription_id))
    except ValueError as exc:
        raise ValidationError(
            f"Invalid subscription id {subscription_id!r}",
            details={"subscription_id": str(subscription_id)},
        ) from exc


def coerce_status(status: SubscriptionStatus | str) -> SubscriptionStatus:
    try:
        return SubscriptionStatus(status)
    except ValueError as exc:
        raise ValidationError(
            f"Invalid status {status!r}",
            details={"allowed": [s.value for s in SubscriptionStatus]},
        ) from exc


def _recency_key(subscription: Subscription) -> tuple:
    return (subscription.updated_at, subscription.created_at, str(subscription.id))


def select_user_subscription(subscriptions: Iterable[Subscription]) -> Subscription | None:
    """Pick "the" subscription among a user's rows.

    The single ``active`` row wins. With no active row, the most recently
    updated row is used. Several active rows should not exist (a partial
    unique index forbids it); if they do, the most recently updated active
    row is used and a warning is logged.
    """
    rows = list(subscriptions)
    if not rows:
        return None
    active = [s for s in rows if s.status is SubscriptionStatus.ACTIVE]
    if len(active) == 1:
        return active[0]
    if len(active) > 1:
        logger.warning(
            "User %s has %d active subscriptions; using the most recently updated",
            active[0].user_id,
            len(active),
        )
        return max(active, key=_recency_key)
    return max(rows, key=_recency_key)


def is_expired(subscription: Subscription, now: datetime) -> bool:
    """True if the sweep should cancel ``subscription`` at ``now``."""
    if subscription.status is SubscriptionStatus.SCHEDULED_TO_CANCEL:
        deadline = subscription.cancel_at or subscription.current_period_end
        return now >= deadline
    if subscription.status is SubscriptionStatus.ACTIVE:
        return now >= subscription.current_period_end
    return False


class SubscriptionService:
    """Creates subscriptions and drives them through their lifecycle."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or get_settings()
        self._clock = clock

    def _now(self) -> datetime:
        return to_naive_utc(self._clock())

    # =========================================================================
    # Query Methods
    # =========================================================================

    async def get_subscription(self, subscription_id: uuid.UUID | str) -> Subscription:
        async with self._session_factory() as session:
            return await self._load(session, coerce_subscription_id(subscription_id))

    async def get_user_subscription(self, user_id: str) -> Subscription:
        """Return the user's current subscription (see ``select_user_subscription``)."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Subscription).where(Subscription.user_id == user_id)
            )
            subscription = select_user_subscription(result.scalars().all())
        if subscription is None:
            raise NotFoundError("subscription", user_id, message=f"No subscription found for user {user_id}")
        return subscription

    async def get_all_user_subscriptions(self, user_id: str) -> list[Subscription]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Subscription)
                .where(Subscription.user_id == user_id)
                .order_by(Subscription.created_at.desc(), Subscription.id)
            )
            return list(result.scalars().all())

    async def list_subscriptions(
        self, filters: SubscriptionFilter | Mapping[str, Any] | None = None
    ) -> list[Subscription]:
        filters = parse_payload(SubscriptionFilter, filters or {})
        conditions = []
        if filters.user_id:
            conditions.append(Subscription.user_id == filters.user_id)
        if filters.status is not None:
            conditions.append(Subscription.status == filters.status)
        if filters.plan_name:
            conditions.append(Subscription.plan_name == filters.plan_name)

        async with self._session_factory() as session:
            result = await session.execute(
                select(Subscription)
                .where(*conditions)
                .order_by(Subscription.created_at.desc(), Subscription.id)
                .offset(filters.offset)
                .limit(filters.limit)
            )
            return list(result.scalars().all())

    async def is_user_subscribed(self, user_id: str) -> bool:
        """True if the user's subscription still grants entitlements.

        Scheduled-to-cancel subscriptions stay entitled until the sweep
        cancels them at period end.
        """
        try:
            subscription = await self.get_user_subscription(user_id)
        except NotFoundError:
            return False
        return subscription.is_entitled

    async def get_subscriptions_by_status(self, status: SubscriptionStatus | str) -> list[Subscription]:
        status = coerce_status(status)
        async with self._session_factory() as session:
            result = await session.execute(
                select(Subscription)
                .where(Subscription.status == status)
                .order_by(Subscription.created_at.desc(), Subscription.id)
            )
            return list(result.scalars().all())

    async def get_subscription_stats(self) -> SubscriptionStats:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Subscription.status, func.count()).group_by(Subscription.status)
            )
            counts = {status.value: count for status, count in result.all()}
        return SubscriptionStats(total=sum(counts.values()), **counts)

    # =========================================================================
    # Command Methods
    # =========================================================================

    async def create_subscription(
        self, data: SubscriptionCreate | Mapping[str, Any]
    ) -> Subscription:
        """Start an active subscription.

        Any entitling subscription the user already holds is superseded
        (moved to ``inactive``) in the same transaction.
        """
        data = parse_payload(SubscriptionCreate, data)
        start = to_naive_utc(data.current_period_start)
        end = to_naive_utc(data.current_period_end)
        _check_period(start, end)
        now = self._now()

        async with self._session_factory() as session:
            try:
                async with session.begin():
                    superseded = await session.execute(
                        update(Subscription)
                        .where(
                            Subscription.user_id == data.user_id,
                            Subscription.status.in_(ENTITLED_STATUSES),
                        )
                        .values(
                            status=SubscriptionStatus.INACTIVE,
                            version=Subscription.version + 1,
                            updated_at=now,
                        )
                        .execution_options(synchronize_session=False)
                    )
                    subscription = Subscription(
                        user_id=data.user_id,
                        plan_name=data.plan_name,
                        status=SubscriptionStatus.ACTIVE,
                        currency=data.currency or self._settings.default_currency,
                        current_period_start=start,
                        current_period_end=end,
                        cancel_at_period_end=False,
                        version=1,
                        created_at=now,
                        updated_at=now,
                    )
                    session.add(subscription)
                    await session.flush()
            except IntegrityError as exc:
                raise ConflictError(
                    f"Concurrent subscription creation for user {data.user_id}",
                    details={"user_id": data.user_id},
                    original_error=exc,
                ) from exc

        if superseded.rowcount:
            logger.info(
                "Superseded %d subscription(s) of user %s", superseded.rowcount, data.user_id
            )
        logger.info(
            "Created subscription %s for user %s (plan=%s, period %s -> %s)",
            subscription.id,
            subscription.user_id,
            subscription.plan_name,
            start,
            end,
        )
        return subscription

    async def update_subscription(
        self,
        subscription_id: uuid.UUID | str,
        data: SubscriptionUpdate | Mapping[str, Any],
    ) -> Subscription:
        """Overwrite plan / period / currency fields. Never changes status.

        A subscription scheduled to cancel keeps cancelling at its period end:
        moving ``current_period_end`` moves ``cancel_at`` with it.
        """
        subscription_id = coerce_subscription_id(subscription_id)
        changes = parse_payload(SubscriptionUpdate, data).model_dump(exclude_unset=True)
        for name in ("current_period_start", "current_period_end"):
            if name in changes:
                changes[name] = to_naive_utc(changes[name])

        async with self._session_factory() as session:
            async with session.begin():
                subscription = await self._load(session, subscription_id)
                if not changes:
                    return subscription
                _check_period(
                    changes.get("current_period_start", subscription.current_period_start),
                    changes.get("current_period_end", subscription.current_period_end),
                )
                if (
                    subscription.status is SubscriptionStatus.SCHEDULED_TO_CANCEL
                    and subscription.cancel_at_period_end
                    and "current_period_end" in changes
                ):
                    changes["cancel_at"] = changes["current_period_end"]
                subscription = await self._compare_and_set(session, subscription, changes)

        logger.info("Updated subscription %s: %s", subscription.id, sorted(changes))
        return subscription

    async def cancel_subscription(self, subscription_id: uuid.UUID | str) -> Subscription:
        """Cancel immediately. Cancelling a cancelled subscription is a no-op."""
        subscription_id = coerce_subscription_id(subscription_id)
        async with self._session_factory() as session:
            async with session.begin():
                subscription = await self._load(session, subscription_id)
                if subscription.status is SubscriptionStatus.CANCELLED:
                    return subscription
                _require_status(subscription, _CANCELLABLE, "cancel")
                subscription = await self._compare_and_set(
                    session,
                    subscription,
                    {"status": SubscriptionStatus.CANCELLED, "cancelled_at": self._now()},
                )

        logger.info("Cancelled subscription %s (user %s)", subscription.id, subscription.user_id)
        return subscription

    async def schedule_subscription_cancellation(
        self, subscription_id: uuid.UUID | str
    ) -> Subscription:
        """Cancel at the end of the current period."""
        subscription_id = coerce_subscription_id(subscription_id)
        async with self._session_factory() as session:
            async with session.begin():
                subscription = await self._load(session, subscription_id)
                _require_status(subscription, _SCHEDULABLE, "schedule cancellation of")
                subscription = await self._compare_and_set(
                    session,
                    subscription,
                    {
                        "status": SubscriptionStatus.SCHEDULED_TO_CANCEL,
                        "cancel_at_period_end": True,
                        "cancel_at": subscription.current_period_end,
                    },
                )

        logger.info(
            "Scheduled subscription %s to cancel at %s", subscription.id, subscription.cancel_at
        )
        return subscription

    async def reactivate_subscription(self, subscription_id: uuid.UUID | str) -> Subscription:
        """Undo a scheduled cancellation."""
        subscription_id = coerce_subscription_id(subscription_id)
        async with self._session_factory() as session:
            async with session.begin():
                subscription = await self._load(session, subscription_id)
                _require_status(subscription, _REACTIVATABLE, "reactivate")
                subscription = await self._compare_and_set(
                    session,
                    subscription,
                    {
                        "status": SubscriptionStatus.ACTIVE,
                        "cancel_at_period_end": False,
                        "cancel_at": None,
                    },
                )

        logger.info("Reactivated subscription %s", subscription.id)
        return subscription

    async def renew_subscription(
        self, subscription_id: uuid.UUID | str, new_period_end: datetime
    ) -> Subscription:
        """Roll into the next period; also clears a scheduled cancellation."""
        subscription_id = coerce_subscription_id(subscription_id)
        new_period_end = to_naive_utc(new_period_end)
        async with self._session_factory() as session:
            async with session.begin():
                subscription = await self._load(session, subscription_id)
                _require_status(subscription, _RENEWABLE, "renew")
                new_period_start = subscription.current_period_end
                _check_period(new_period_start, new_period_end)
                subscription = await self._compare_and_set(
                    session,
                    subscription,
                    {
                        "status": SubscriptionStatus.ACTIVE,
                        "current_period_start": new_period_start,
                        "current_period_end": new_period_end,
                        "cancel_at_period_end": False,
                        "cancel_at": None,
                    },
                )

        logger.info(
            "Renewed subscription %s: period %s -> %s",
            subscription.id,
            subscription.current_period_start,
            subscription.current_period_end,
        )
        return subscription

    async def process_expired_subscriptions(self) -> ExpirySweepReport:
        """Cancel scheduled subscriptions past ``cancel_at`` and lapsed active ones.

        Each record is handled in its own transaction. A record that loses a
        race is re-read and retried (``sweep_conflict_retries`` times); if it
        still conflicts it is reported in ``failed`` and the sweep moves on.
        Already-cancelled rows are never selected, so re-running is a no-op.
        """
        now = self._now()
        report = ExpirySweepReport()
        for candidate in await self._list_expiry_candidates(now):
            try:
                expired = await self._expire_with_retry(candidate, now)
            except ConflictError as exc:
                logger.warning("Expiry sweep skipped subscription %s: %s", candidate.id, exc.message)
                report.failed.append((candidate.id, exc.message))
                continue
            if expired is not None:
                report.processed.append(expired)

        logger.info(
            "Expiry sweep at %s: %d cancelled, %d failed",
            now,
            len(report.processed),
            len(report.failed),
        )
        return report

    # =========================================================================
    # Internals
    # =========================================================================

    async def _list_expiry_candidates(self, now: datetime) -> list[Subscription]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Subscription)
                .where(
                    or_(
                        and_(
                            Subscription.status == SubscriptionStatus.SCHEDULED_TO_CANCEL,
                            func.coalesce(Subscription.cancel_at, Subscription.current_period_end) <= now,
                        ),
                        and_(
                            Subscription.status == SubscriptionStatus.ACTIVE,
                            Subscription.current_period_end <= now,
                        ),
                    )
                )
                .order_by(Subscription.current_period_end, Subscription.id)
            )
            return list(result.scalars().all())

    async def _expire_with_retry(self, snapshot: Subscription, now: datetime) -> Subscription | None:
        attempts = self._settings.sweep_conflict_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return await self._expire_one(snapshot, now)
            except ConflictError:
                if attempt == attempts:
                    raise
                async with self._session_factory() as session:
                    snapshot = await session.get(Subscription, snapshot.id)
                if snapshot is None or not is_expired(snapshot, now):
                    # renewed, reactivated or cancelled in the meantime
                    return None
        return None

    async def _expire_one(self, snapshot: Subscription, now: datetime) -> Subscription:
        async with self._session_factory() as session:
            async with session.begin():
                expired = await self._compare_and_set(
                    session,
                    snapshot,
                    {"status": SubscriptionStatus.CANCELLED, "cancelled_at": now},
                )
        logger.info(
            "Expired subscription %s (user %s, was %s)",
            expired.id,
            expired.user_id,
            snapshot.status.value,
        )
        return expired

    async def _load(self, session: AsyncSession, subscription_id: uuid.UUID) -> Subscription:
        subscription = await session.get(Subscription, subscription_id)
        if subscription is None:
            raise NotFoundError("subscription", subscription_id)
        return subscription

    async def _compare_and_set(
        self,
        session: AsyncSession,
        expected: Subscription,
        values: dict[str, Any],
    ) -> Subscription:
        """Apply ``values`` only if the row still has the expected status and version."""
        statement = (
            update(Subscription)
            .where(
                Subscription.id == expected.id,
                Subscription.status == expected.status,
                Subscription.version == expected.version,
            )
            .values(**values, version=expected.version + 1, updated_at=self._now())
            .execution_options(synchronize_session=False)
        )
        try:
            result = await session.execute(statement)
        except IntegrityError as exc:
            raise ConflictError(
                f"Subscription {expected.id} conflicts with another subscription of user {expected.user_id}",
                details={"subscription_id": str(expected.id)},
                original_error=exc,
            ) from exc

        if result.rowcount != 1:
            raise ConflictError(
                f"Subscription {expected.id} was modified concurrently",
                details={
                    "subscription_id": str(expected.id),
                    "expected_status": expected.status.value,
                    "expected_version": expected.version,
                },
            )
        return await session.get(Subscription, expected.id, populate_existing=True)


def _check_period(start: datetime, end: datetime) -> None:
    if end <= start:
        raise ValidationError(
            "current_period_end must be after current_period_start",
            details={"current_period_start": start.isoformat(), "current_period_end": end.isoformat()},
        )


def _require_status(
    subscription: Subscription, allowed: frozenset[SubscriptionStatus], action: str
) -> None:
    if subscription.status not in allowed:
        raise InvalidTransitionError(
            action,
            subscription.status.value,
            allowed=[status.value for status in allowed],
        )
