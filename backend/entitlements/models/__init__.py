"""SQLAlchemy models for the entitlements service.

All models are imported here so that ``Base.metadata`` knows every table
(``create_all`` in tests and local SQLite runs). If you add a new model,
import it in this file.
"""

from entitlements.models.subscription import Subscription, SubscriptionStatus
from entitlements.models.usage_limits import UsageLimits
from entitlements.models.usage_tracking import UsageCategory, UsageTracking

__all__ = [
    "Subscription",
    "SubscriptionStatus",
    "UsageCategory",
    "UsageLimits",
    "UsageTracking",
]
