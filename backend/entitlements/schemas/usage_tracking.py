"""Pydantic v2 request/response schemas for usage tracking."""

import uuid
from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, StrictInt

from entitlements.models.usage_tracking import MAX_USAGE_DELTA, UsageCategory

# --- Request schemas ---


class TrackUsageRequest(BaseModel):
    count: Annotated[StrictInt, Field(le=MAX_USAGE_DELTA)] = 1


class BulkUsageRequest(BaseModel):
    """Several category increments applied as one unit."""

    usage: dict[UsageCategory, Annotated[StrictInt, Field(le=MAX_USAGE_DELTA)]]


class UsageTrackingFilter(BaseModel):
    user_id: str | None = None
    period: str | None = None
    limit: int = Field(10, ge=1, le=100)
    offset: int = Field(0, ge=0)


# --- Response schemas ---


class UsageTrackingResponse(BaseModel):
    """One period record. ``id`` is None for an unsaved all-zero record."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID | None = None
    user_id: str
    period: str
    is_current: bool
    is_reset: bool
    superseded_at: datetime | None = None

    teachers: int
    classrooms: int
    students: int
    question_banks: int
    questions: int
    assignment_exports: int
    independent_agent: int
    lumen_agent: int
    rag_agent: int
    rag_document_uploads: int
    recap_classes: int
    assignment_exports_today: int
    exports_day: str | None = None

    created_at: datetime | None = None
    updated_at: datetime | None = None


class AggregatedUsage(BaseModel):
    """All-time totals over every period record of a user."""

    user_id: str
    period_count: int
    totals: dict[str, int]


class UsageSummary(BaseModel):
    """Totals over all users for one period."""

    period: str
    user_count: int
    record_count: int
    totals: dict[str, int]


class MessageResponse(BaseModel):
    message: str
