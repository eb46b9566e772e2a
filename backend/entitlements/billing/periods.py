"""Usage period clock: canonical period keys and naive-UTC time helpers.

Periods are calendar months keyed ``YYYY-MM``. All timestamps handled by the
service are naive UTC so they compare cleanly with the DB columns.
"""

import re
from datetime import datetime, timezone

from entitlements.exceptions import ValidationError

PERIOD_FORMAT = "%Y-%m"
DAY_FORMAT = "%Y-%m-%d"

_PERIOD_RE = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(moment: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC."""
    if moment.tzinfo is not None:
        return moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


def period_key(moment: datetime | None = None) -> str:
    """Return the ``YYYY-MM`` period containing ``moment`` (default: now)."""
    moment = utcnow() if moment is None else to_naive_utc(moment)
    return moment.strftime(PERIOD_FORMAT)


def day_key(moment: datetime | None = None) -> str:
    """Return the ``YYYY-MM-DD`` day containing ``moment`` (default: now)."""
    moment = utcnow() if moment is None else to_naive_utc(moment)
    return moment.strftime(DAY_FORMAT)


def validate_period_key(key: str) -> str:
    if not isinstance(key, str) or not _PERIOD_RE.match(key):
        raise ValidationError(
            f"Invalid period {key!r}: expected YYYY-MM",
            details={"period": repr(key)},
        )
    return key


def period_bounds(key: str) -> tuple[datetime, datetime]:
    """Return the half-open ``[start, end)`` window of a period."""
    match = _PERIOD_RE.match(validate_period_key(key))
    year, month = int(match.group(1)), int(match.group(2))
    start = datetime(year, month, 1)
    end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
    return start, end
