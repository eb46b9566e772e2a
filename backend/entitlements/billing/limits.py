"""Limit values: the canonical fixed / unlimited / custom entitlement type.

Raw plan values arrive as integers or sentinel strings. They are parsed once,
at the boundary, into a :class:`LimitValue` and only that type travels
through the services.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from entitlements.exceptions import InvalidLimitValue

UNLIMITED_SENTINEL = "unlimited"
CUSTOM_SENTINEL = "custom"
UNLIMITED_INT = -1


class LimitKind(str, Enum):
    FIXED = "fixed"
    UNLIMITED = "unlimited"
    CUSTOM = "custom"


@dataclass(frozen=True)
class LimitValue:
    """A resolved entitlement: a fixed ceiling, unlimited, or custom.

    ``amount`` is only set for ``FIXED`` limits.
    """

    kind: LimitKind
    amount: int | None = None

    def __post_init__(self) -> None:
        if self.kind is LimitKind.FIXED:
            if not isinstance(self.amount, int) or isinstance(self.amount, bool) or self.amount < 0:
                raise InvalidLimitValue(self.amount)
        elif self.amount is not None:
            raise InvalidLimitValue(self.amount)

    @classmethod
    def fixed(cls, amount: int) -> "LimitValue":
        return cls(LimitKind.FIXED, amount)

    @property
    def is_fixed(self) -> bool:
        return self.kind is LimitKind.FIXED

    @property
    def is_unlimited(self) -> bool:
        return self.kind is LimitKind.UNLIMITED

    @property
    def is_custom(self) -> bool:
        return self.kind is LimitKind.CUSTOM

    def to_raw(self) -> int | str:
        """Serialise back to the public raw form (``12``, ``"unlimited"``, ``"custom"``)."""
        if self.kind is LimitKind.FIXED:
            return self.amount
        return self.kind.value

    def to_storage(self) -> str:
        return str(self.to_raw())

    @classmethod
    def from_storage(cls, stored: str) -> "LimitValue":
        if stored == UNLIMITED_SENTINEL:
            return UNLIMITED
        if stored == CUSTOM_SENTINEL:
            return CUSTOM
        return cls.fixed(int(stored))

    def __str__(self) -> str:
        return self.to_storage()


UNLIMITED = LimitValue(LimitKind.UNLIMITED)
CUSTOM = LimitValue(LimitKind.CUSTOM)


def parse_limit(raw: Any) -> LimitValue:
    """Parse a raw plan value into a :class:`LimitValue`.

    ``-1`` and ``"unlimited"`` are unlimited, ``"custom"`` is custom, other
    non-negative integers are fixed ceilings. Integral floats (JSON numbers
    such as ``5.0``) count as integers. Anything else raises
    :class:`InvalidLimitValue`.
    """
    if isinstance(raw, LimitValue):
        return raw
    if isinstance(raw, bool):
        raise InvalidLimitValue(raw)
    if isinstance(raw, float):
        if not raw.is_integer():
            raise InvalidLimitValue(raw)
        raw = int(raw)
    if isinstance(raw, int):
        if raw == UNLIMITED_INT:
            return UNLIMITED
        if raw < 0:
            raise InvalidLimitValue(raw)
        return LimitValue.fixed(raw)
    if raw == UNLIMITED_SENTINEL:
        return UNLIMITED
    if raw == CUSTOM_SENTINEL:
        return CUSTOM
    raise InvalidLimitValue(raw)


def contains(limit: LimitValue, used: int) -> bool:
    """Return True if one more unit may be consumed at ``used``.

    Fixed limits are strict: reaching the ceiling exhausts it. Custom limits
    are never enforced numerically here; callers see them flagged in the
    compliance report instead.
    """
    if limit.is_fixed:
        return used < limit.amount
    return True


@dataclass(frozen=True)
class AILimits:
    """Nested AI entitlement group of a plan."""

    independent_agent: LimitValue
    lumen_agent: LimitValue
    rag_agent: LimitValue
    rag_document_uploads: LimitValue
