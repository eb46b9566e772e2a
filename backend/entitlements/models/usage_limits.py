"""Usage limits model: a named plan and its entitlement ceilings."""

from sqlalchemy import Boolean, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from entitlements.billing.limits import AILimits, LimitValue, parse_limit
from entitlements.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class LimitValueType(TypeDecorator):
    """Stores a :class:`LimitValue` as ``"12"``, ``"unlimited"`` or ``"custom"``."""

    impl = String(16)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return parse_limit(value).to_storage()

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return LimitValue.from_storage(value)


class UsageLimits(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Entitlement limits for one subscription plan."""

    __tablename__ = "usage_limits"
    __table_args__ = (
        # Plan names are unique among active plans only
        Index(
            "uq_usage_limits_active_plan_name",
            "plan_name",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    plan_name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    teachers: Mapped[LimitValue] = mapped_column(LimitValueType(), nullable=False)
    classrooms: Mapped[LimitValue] = mapped_column(LimitValueType(), nullable=False)
    students_per_classroom: Mapped[LimitValue] = mapped_column(LimitValueType(), nullable=False)
    question_banks: Mapped[LimitValue] = mapped_column(LimitValueType(), nullable=False)
    questions: Mapped[LimitValue] = mapped_column(LimitValueType(), nullable=False)
    assignment_exports_per_day: Mapped[LimitValue] = mapped_column(LimitValueType(), nullable=False)

    # AI group, exposed as ``ai``
    ai_independent_agent: Mapped[LimitValue] = mapped_column(LimitValueType(), nullable=False)
    ai_lumen_agent: Mapped[LimitValue] = mapped_column(LimitValueType(), nullable=False)
    ai_rag_agent: Mapped[LimitValue] = mapped_column(LimitValueType(), nullable=False)
    ai_rag_document_uploads: Mapped[LimitValue] = mapped_column(LimitValueType(), nullable=False)

    @property
    def ai(self) -> AILimits:
        return AILimits(
            independent_agent=self.ai_independent_agent,
            lumen_agent=self.ai_lumen_agent,
            rag_agent=self.ai_rag_agent,
            rag_document_uploads=self.ai_rag_document_uploads,
        )

    @ai.setter
    def ai(self, limits: AILimits) -> None:
        self.ai_independent_agent = limits.independent_agent
        self.ai_lumen_agent = limits.lumen_agent
        self.ai_rag_agent = limits.rag_agent
        self.ai_rag_document_uploads = limits.rag_document_uploads

    def __repr__(self) -> str:
        return f"<UsageLimits(id={self.id}, plan_name={self.plan_name!r}, is_active={self.is_active})>"
