"""Pydantic v2 request/response schemas for subscriptions."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from entitlements.models.subscription import SubscriptionStatus

# --- Request schemas ---


class SubscriptionCreate(BaseModel):
    """Start a subscription. Period ordering is checked by the service."""

    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(..., min_length=1, max_length=128)
    plan_name: str = Field(..., min_length=1, max_length=100)
    current_period_start: datetime
    current_period_end: datetime
    currency: str | None = Field(None, min_length=1, max_length=8)


class SubscriptionUpdate(BaseModel):
    """Field-level overwrite. Status is changed only through transitions."""

    model_config = ConfigDict(extra="forbid")

    plan_name: str | None = Field(None, min_length=1, max_length=100)
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    currency: str | None = Field(None, min_length=1, max_length=8)

    @model_validator(mode="after")
    def reject_nulls(self) -> "SubscriptionUpdate":
        nulls = sorted(name for name in self.model_fields_set if getattr(self, name) is None)
        if nulls:
            raise ValueError(f"Fields cannot be set to null: {', '.join(nulls)}")
        return self


class RenewRequest(BaseModel):
    new_period_end: datetime


class SubscriptionFilter(BaseModel):
    user_id: str | None = None
    status: SubscriptionStatus | None = None
    plan_name: str | None = None
    limit: int = Field(10, ge=1, le=100)
    offset: int = Field(0, ge=0)


# --- Response schemas ---


class SubscriptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: str
    plan_name: str
    status: SubscriptionStatus
    currency: str
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool
    cancel_at: datetime | None
    cancelled_at: datetime | None
    version: int
    created_at: datetime
    updated_at: datetime


class SubscriptionStatusResponse(BaseModel):
    """Whether a user currently holds an entitling subscription."""

    user_id: str
    subscribed: bool


class SubscriptionStats(BaseModel):
    """Subscription counts per status."""

    total: int
    active: int = 0
    scheduled_to_cancel: int = 0
    cancelled: int = 0
    inactive: int = 0


class SweepFailure(BaseModel):
    subscription_id: uuid.UUID
    error: str


class ExpirySweepResponse(BaseModel):
    processed_count: int
    subscriptions: list[SubscriptionResponse]
    failed: list[SweepFailure]
