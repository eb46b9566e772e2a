"""Boundary validation shared by the services."""

from collections.abc import Mapping
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from entitlements.exceptions import ValidationError

SchemaT = TypeVar("SchemaT", bound=BaseModel)


def parse_payload(schema: type[SchemaT], data: SchemaT | Mapping[str, Any]) -> SchemaT:
    """Validate ``data`` into ``schema``, raising the service ValidationError."""
    if isinstance(data, schema):
        return data
    try:
        return schema.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Invalid {schema.__name__} payload",
            details={
                "errors": exc.errors(include_url=False, include_context=False, include_input=False),
            },
            original_error=exc,
        ) from exc


def require_positive_int(value: Any, name: str, maximum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(
            f"{name} must be a positive integer, got {value!r}",
            details={name: repr(value)},
        )
    if maximum is not None and value > maximum:
        raise ValidationError(
            f"{name} must be at most {maximum}, got {value}",
            details={name: repr(value), "maximum": maximum},
        )
    return value
