"""Pydantic v2 schemas for the usage-limits catalog and compliance reports."""

import uuid
from datetime import datetime
from typing import Annotated, Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    PlainValidator,
    WithJsonSchema,
    model_validator,
)

from entitlements.billing.limits import LimitValue, parse_limit

# A plan limit on the wire: an int, -1, "unlimited" or "custom".
LimitField = Annotated[
    LimitValue,
    PlainValidator(parse_limit),
    PlainSerializer(lambda limit: limit.to_raw()),
    WithJsonSchema(
        {
            "anyOf": [
                {"type": "integer", "minimum": -1},
                {"type": "string", "enum": ["unlimited", "custom"]},
            ]
        }
    ),
]


def _reject_explicit_nulls(model: BaseModel) -> BaseModel:
    nulls = sorted(name for name in model.model_fields_set if getattr(model, name) is None)
    if nulls:
        raise ValueError(f"Fields cannot be set to null: {', '.join(nulls)}")
    return model


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class AILimitsSchema(BaseModel):
    """AI entitlement group."""

    model_config = ConfigDict(extra="forbid", from_attributes=True)

    independent_agent: LimitField
    lumen_agent: LimitField
    rag_agent: LimitField
    rag_document_uploads: LimitField


class UsageLimitsCreate(BaseModel):
    """Schema for creating a plan. Also used for full (PUT) updates."""

    model_config = ConfigDict(extra="forbid")

    plan_name: str = Field(..., min_length=1, max_length=100)
    teachers: LimitField
    classrooms: LimitField
    students_per_classroom: LimitField
    question_banks: LimitField
    questions: LimitField
    assignment_exports_per_day: LimitField
    ai: AILimitsSchema
    is_active: bool = True


class UsageLimitsUpdate(UsageLimitsCreate):
    """Full replacement of a plan's name and every limit."""


class AILimitsPatch(BaseModel):
    """Partial AI group; only fields present in the payload are applied."""

    model_config = ConfigDict(extra="ignore")

    independent_agent: LimitField | None = None
    lumen_agent: LimitField | None = None
    rag_agent: LimitField | None = None
    rag_document_uploads: LimitField | None = None

    @model_validator(mode="after")
    def reject_nulls(self) -> "BaseModel":
        return _reject_explicit_nulls(self)


class UsageLimitsPatch(BaseModel):
    """Partial plan update.

    Presence is tracked with ``model_fields_set``: an absent field is left
    alone, a present one is applied. Explicit nulls are rejected.
    """

    model_config = ConfigDict(extra="ignore")

    plan_name: str | None = Field(None, min_length=1, max_length=100)
    teachers: LimitField | None = None
    classrooms: LimitField | None = None
    students_per_classroom: LimitField | None = None
    question_banks: LimitField | None = None
    questions: LimitField | None = None
    assignment_exports_per_day: LimitField | None = None
    ai: AILimitsPatch | None = None
    is_active: bool | None = None

    @model_validator(mode="after")
    def reject_nulls(self) -> "BaseModel":
        return _reject_explicit_nulls(self)


class UsageLimitsFilter(BaseModel):
    """Listing filters. ``is_active=None`` lists soft-deleted plans too."""

    plan_name: str | None = None
    is_active: bool | None = True
    limit: int = Field(20, ge=1, le=100)
    offset: int = Field(0, ge=0)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class UsageLimitsResponse(BaseModel):
    """A plan's limits as returned from the API."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    plan_name: str
    teachers: LimitField
    classrooms: LimitField
    students_per_classroom: LimitField
    question_banks: LimitField
    questions: LimitField
    assignment_exports_per_day: LimitField
    ai: AILimitsSchema
    is_active: bool
    created_at: datetime
    updated_at: datetime


class UsageLimitsListResponse(BaseModel):
    items: list[UsageLimitsResponse]
    total: int


class UsageLimitsStats(BaseModel):
    total_usage_limits: int
    active_usage_limits: int
    inactive_usage_limits: int


class DefaultPlansResponse(BaseModel):
    created: list[str]


class ComplianceReport(BaseModel):
    """Result of comparing a user's usage with a plan's limits.

    ``limits`` and ``usage`` share keys (the plan's limit names). ``usage``
    holds the consumption each limit is measured against.
    """

    user_id: str
    plan_name: str | None
    period: str
    subscribed: bool | None = None
    subscription_status: str | None = None
    limits: dict[str, Any]
    usage: dict[str, int]
    within_limits: bool
    exceeded_limits: list[str]
    custom_limits: list[str] = Field(default_factory=list)
