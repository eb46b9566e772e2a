"""Subscription model: a user's billing-period state machine."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, Index, Integer, String, text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from entitlements.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    SCHEDULED_TO_CANCEL = "scheduled_to_cancel"
    CANCELLED = "cancelled"
    INACTIVE = "inactive"


# Statuses that still grant the plan's entitlements.
ENTITLED_STATUSES = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.SCHEDULED_TO_CANCEL})


class Subscription(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Tracks which plan a user is on and where it is in its billing period."""

    __tablename__ = "subscriptions"
    __table_args__ = (
        # At most one active row per user
        Index(
            "uq_subscriptions_user_active",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    plan_name: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[SubscriptionStatus] = mapped_column(
        SAEnum(
            SubscriptionStatus,
            native_enum=False,
            length=32,
            values_callable=lambda statuses: [s.value for s in statuses],
            validate_strings=True,
        ),
        nullable=False,
        default=SubscriptionStatus.ACTIVE,
        index=True,
    )
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="usd")

    # Billing period
    current_period_start: Mapped[datetime] = mapped_column(nullable=False)
    current_period_end: Mapped[datetime] = mapped_column(nullable=False)
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cancel_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Optimistic-concurrency counter, bumped by every transition
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    @property
    def is_entitled(self) -> bool:
        return self.status in ENTITLED_STATUSES

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, user_id={self.user_id}, "
            f"plan={self.plan_name}, status={self.status.value})>"
        )
