"""Usage tracking model: per-user, per-period consumption counters."""

from datetime import datetime
from enum import Enum

from sqlalchemy import BigInteger, Boolean, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column

from entitlements.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class UsageCategory(str, Enum):
    """Tracked consumption categories; each maps to a counter column."""

    TEACHERS = "teachers"
    CLASSROOMS = "classrooms"
    STUDENTS = "students"
    QUESTION_BANKS = "question_banks"
    QUESTIONS = "questions"
    ASSIGNMENT_EXPORTS = "assignment_exports"
    INDEPENDENT_AGENT = "independent_agent"
    LUMEN_AGENT = "lumen_agent"
    RAG_AGENT = "rag_agent"
    RAG_DOCUMENT_UPLOADS = "rag_document_uploads"
    RECAP_CLASSES = "recap_classes"


COUNTER_COLUMNS: tuple[str, ...] = tuple(category.value for category in UsageCategory)

# Largest single increment accepted for one counter
MAX_USAGE_DELTA = 1_000_000


class UsageTracking(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """One user's counters for one period.

    A reset supersedes the live row (``is_current = False``) and starts a new
    one, so history is never overwritten.
    """

    __tablename__ = "usage_tracking"
    __table_args__ = (
        # One live row per (user, period); superseded rows are unconstrained
        Index(
            "uq_usage_tracking_user_period_current",
            "user_id",
            "period",
            unique=True,
            postgresql_where=text("is_current"),
            sqlite_where=text("is_current = 1"),
        ),
    )

    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    period: Mapped[str] = mapped_column(String(7), nullable=False, index=True)
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_reset: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    superseded_at: Mapped[datetime | None] = mapped_column(nullable=True)

    teachers: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    classrooms: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    students: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    question_banks: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    questions: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    assignment_exports: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    independent_agent: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    lumen_agent: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    rag_agent: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    rag_document_uploads: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    recap_classes: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")

    # Exports also have a per-day ceiling; this window restarts on a new day
    assignment_exports_today: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    exports_day: Mapped[str | None] = mapped_column(String(10), nullable=True)

    @classmethod
    def empty(cls, user_id: str, period: str) -> "UsageTracking":
        """Build an unsaved all-zero record."""
        record = cls(
            user_id=user_id,
            period=period,
            is_current=True,
            is_reset=False,
            assignment_exports_today=0,
            exports_day=None,
        )
        for column in COUNTER_COLUMNS:
            setattr(record, column, 0)
        return record

    def counters(self) -> dict[str, int]:
        return {column: getattr(self, column) or 0 for column in COUNTER_COLUMNS}

    def exports_on(self, day: str) -> int:
        """Exports recorded on ``day`` (0 if the daily window is older)."""
        if self.exports_day == day:
            return self.assignment_exports_today or 0
        return 0

    def __repr__(self) -> str:
        return f"<UsageTracking(id={self.id}, user_id={self.user_id}, period={self.period}, current={self.is_current})>"
