"""Default plan catalog: seeded into ``usage_limits`` on first run."""

from dataclasses import dataclass
from typing import Any

SCALAR_LIMIT_FIELDS: tuple[str, ...] = (
    "teachers",
    "classrooms",
    "students_per_classroom",
    "question_banks",
    "questions",
    "assignment_exports_per_day",
)

AI_LIMIT_FIELDS: tuple[str, ...] = (
    "independent_agent",
    "lumen_agent",
    "rag_agent",
    "rag_document_uploads",
)


@dataclass(frozen=True)
class DefaultPlan:
    """Raw limit values for a built-in plan (sentinels allowed)."""

    plan_name: str
    teachers: Any
    classrooms: Any
    students_per_classroom: Any
    question_banks: Any
    questions: Any
    assignment_exports_per_day: Any
    ai: dict[str, Any]

    def as_payload(self) -> dict[str, Any]:
        payload = {field: getattr(self, field) for field in SCALAR_LIMIT_FIELDS}
        payload["plan_name"] = self.plan_name
        payload["ai"] = dict(self.ai)
        return payload


DEFAULT_PLANS: dict[str, DefaultPlan] = {
    "basic": DefaultPlan(
        plan_name="basic",
        teachers=5,
        classrooms=10,
        students_per_classroom=30,
        question_banks=50,
        questions=1000,
        assignment_exports_per_day=10,
        ai={
            "independent_agent": 100,
            "lumen_agent": 50,
            "rag_agent": 25,
            "rag_document_uploads": 10,
        },
    ),
    "premium": DefaultPlan(
        plan_name="premium",
        teachers=25,
        classrooms="unlimited",
        students_per_classroom=50,
        question_banks="unlimited",
        questions="unlimited",
        assignment_exports_per_day="unlimited",
        ai={
            "independent_agent": 500,
            "lumen_agent": 300,
            "rag_agent": 150,
            "rag_document_uploads": 100,
        },
    ),
    "enterprise": DefaultPlan(
        plan_name="enterprise",
        teachers="custom",
        classrooms="unlimited",
        students_per_classroom="custom",
        question_banks="unlimited",
        questions="unlimited",
        assignment_exports_per_day="unlimited",
        ai={
            "independent_agent": "unlimited",
            "lumen_agent": "unlimited",
            "rag_agent": "unlimited",
            "rag_document_uploads": "unlimited",
        },
    ),
}
