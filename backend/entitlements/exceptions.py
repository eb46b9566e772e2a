"""
Custom exceptions for the entitlements service.

Every error carries a machine-readable ``kind`` and a human-readable message;
the API layer renders them with ``to_dict()``.
"""

from typing import Any, Dict, Optional


class EntitlementsError(Exception):
    """Base exception for all entitlements errors."""

    kind = "error"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.kind,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(EntitlementsError):
    """Raised when input validation fails."""

    kind = "validation_error"


class InvalidLimitValue(ValidationError, ValueError):
    """Raised when a raw entitlement value cannot be parsed.

    Also a ``ValueError`` so pydantic field validators turn it into a
    regular field error.
    """

    def __init__(self, raw: Any):
        super().__init__(
            f"Invalid limit value {raw!r}: expected a non-negative integer, "
            "-1, 'unlimited' or 'custom'",
            details={"value": repr(raw)},
        )


class NotFoundError(EntitlementsError):
    """Raised when a requested resource is not found."""

    kind = "not_found"

    def __init__(self, resource: str, key: Any, message: Optional[str] = None):
        super().__init__(
            message or f"{resource} not found: {key}",
            details={"resource": resource, "key": str(key)},
        )


class PlanNotFoundError(NotFoundError):
    """Raised when checking limits against an unknown or inactive plan."""

    kind = "plan_not_found"

    def __init__(self, plan_name: str):
        super().__init__(
            "usage_limits",
            plan_name,
            message=f"No active usage limits found for plan '{plan_name}'",
        )


class InvalidTransitionError(EntitlementsError):
    """Raised when a subscription state transition is not legal."""

    kind = "invalid_transition"

    def __init__(self, action: str, current_status: str, allowed: Optional[list] = None):
        details: Dict[str, Any] = {"action": action, "current_status": current_status}
        if allowed:
            details["allowed_from"] = sorted(allowed)
        super().__init__(
            f"Cannot {action} a subscription in status '{current_status}'",
            details=details,
        )


class ConflictError(EntitlementsError):
    """Raised when a concurrent mutation invalidated an expected precondition."""

    kind = "conflict"
