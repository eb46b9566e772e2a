"""Limit checker: compares a user's current usage with a plan's limits."""

import logging
from collections.abc import Callable
from datetime import datetime

from entitlements.billing.limits import LimitValue, contains
from entitlements.billing.periods import day_key, to_naive_utc, utcnow
from entitlements.billing.plans import AI_LIMIT_FIELDS, SCALAR_LIMIT_FIELDS
from entitlements.exceptions import NotFoundError
from entitlements.models.usage_limits import UsageLimits
from entitlements.models.usage_tracking import UsageCategory, UsageTracking
from entitlements.schemas.usage_limits import ComplianceReport
from entitlements.services.subscription_service import SubscriptionService
from entitlements.services.usage_limits_service import UsageLimitsService
from entitlements.services.usage_tracking_service import UsageTrackingService

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

# Limit name -> counter it is measured against. The per-day export limit is
# measured against the daily window, not the monthly counter. There is no
# per-classroom counter, so students_per_classroom is checked against the
# user's total students for the period: an upper bound on any one classroom.
LIMIT_USAGE_SOURCES: dict[str, str] = {
    "teachers": UsageCategory.TEACHERS.value,
    "classrooms": UsageCategory.CLASSROOMS.value,
    "students_per_classroom": UsageCategory.STUDENTS.value,
    "question_banks": UsageCategory.QUESTION_BANKS.value,
    "questions": UsageCategory.QUESTIONS.value,
    "assignment_exports_per_day": "assignment_exports_today",
    "ai.independent_agent": UsageCategory.INDEPENDENT_AGENT.value,
    "ai.lumen_agent": UsageCategory.LUMEN_AGENT.value,
    "ai.rag_agent": UsageCategory.RAG_AGENT.value,
    "ai.rag_document_uploads": UsageCategory.RAG_DOCUMENT_UPLOADS.value,
}

ZERO_LIMIT = LimitValue.fixed(0)


def plan_limits(usage_limits: UsageLimits) -> dict[str, LimitValue]:
    """Flatten a plan into ``{limit name: LimitValue}`` (AI limits as ``ai.<name>``)."""
    limits = {name: getattr(usage_limits, name) for name in SCALAR_LIMIT_FIELDS}
    ai = usage_limits.ai
    limits.update({f"ai.{name}": getattr(ai, name) for name in AI_LIMIT_FIELDS})
    return limits


def measured_usage(usage: UsageTracking, day: str) -> dict[str, int]:
    """Consumption each limit is measured against; missing counters count as 0."""
    measured = {}
    for limit_name, source in LIMIT_USAGE_SOURCES.items():
        if source == "assignment_exports_today":
            measured[limit_name] = usage.exports_on(day)
        else:
            measured[limit_name] = getattr(usage, source) or 0
    return measured


def evaluate(
    user_id: str,
    plan_name: str | None,
    limits: dict[str, LimitValue],
    usage: UsageTracking,
    day: str,
) -> ComplianceReport:
    measured = measured_usage(usage, day)
    exceeded = [name for name, limit in limits.items() if not contains(limit, measured[name])]
    custom = [name for name, limit in limits.items() if limit.is_custom]
    return ComplianceReport(
        user_id=user_id,
        plan_name=plan_name,
        period=usage.period,
        limits={name: limit.to_raw() for name, limit in limits.items()},
        usage=measured,
        within_limits=not exceeded,
        exceeded_limits=exceeded,
        custom_limits=custom,
    )


class LimitChecker:
    """Builds compliance reports from the catalog, the tracker and subscriptions."""

    def __init__(
        self,
        usage_limits: UsageLimitsService,
        usage_tracking: UsageTrackingService,
        subscriptions: SubscriptionService,
        clock: Clock = utcnow,
    ) -> None:
        self._usage_limits = usage_limits
        self._usage_tracking = usage_tracking
        self._subscriptions = subscriptions
        self._clock = clock

    async def check_usage_against_limits(self, user_id: str, plan_name: str) -> ComplianceReport:
        """Compare the user's current-period usage with an active plan.

        Raises ``PlanNotFoundError`` if no active plan has that name.
        """
        usage_limits = await self._usage_limits.get_usage_limits_by_plan(plan_name)
        usage = await self._usage_tracking.get_current_usage(user_id)
        report = evaluate(
            user_id,
            usage_limits.plan_name,
            plan_limits(usage_limits),
            usage,
            day_key(to_naive_utc(self._clock())),
        )
        if report.exceeded_limits:
            logger.info(
                "User %s exceeds plan '%s' limits: %s",
                user_id,
                plan_name,
                ", ".join(report.exceeded_limits),
            )
        return report

    async def check_user_entitlements(self, user_id: str) -> ComplianceReport:
        """Check the user against the plan of their subscription.

        Users without an entitling subscription (none, cancelled, inactive)
        get zero entitlement: every limit is evaluated as ``0``.
        """
        try:
            subscription = await self._subscriptions.get_user_subscription(user_id)
        except NotFoundError:
            subscription = None

        if subscription is not None and subscription.is_entitled:
            report = await self.check_usage_against_limits(user_id, subscription.plan_name)
            return report.model_copy(
                update={"subscribed": True, "subscription_status": subscription.status.value}
            )

        usage = await self._usage_tracking.get_current_usage(user_id)
        zero_limits = {name: ZERO_LIMIT for name in LIMIT_USAGE_SOURCES}
        report = evaluate(
            user_id,
            subscription.plan_name if subscription is not None else None,
            zero_limits,
            usage,
            day_key(to_naive_utc(self._clock())),
        )
        logger.debug("User %s has no entitling subscription; zero entitlement applied", user_id)
        return report.model_copy(
            update={
                "subscribed": False,
                "subscription_status": subscription.status.value if subscription is not None else None,
            }
        )
