"""
Input validation helpers.

Each helper returns the (possibly normalized) value or raises
``ValidationError`` before any state is read.
"""

import math
from enum import Enum
from typing import Any, Optional, Type, TypeVar, Union

from flowtutor.common.error_handling import ValidationError

E = TypeVar('E', bound=Enum)

Number = Union[int, float]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def require_range(
    value: Any,
    field: str,
    min_value: Optional[Number] = None,
    max_value: Optional[Number] = None
) -> Number:
    """
    Validate that a value is a finite number within an inclusive range.

    Args:
        value: Value to check
        field: Field name for the error message
        min_value: Inclusive lower bound
        max_value: Inclusive upper bound

    Returns:
        The value unchanged
    """
    if not _is_number(value) or math.isnan(value) or math.isinf(value):
        raise ValidationError(f"{field} must be a finite number", field=field)

    if min_value is not None and value < min_value:
        raise ValidationError(f"{field} must be at least {min_value}, got {value}", field=field)

    if max_value is not None and value > max_value:
        raise ValidationError(f"{field} must be at most {max_value}, got {value}", field=field)

    return value


def require_probability(value: Any, field: str) -> float:
    """Validate a score in [0, 1]."""
    return float(require_range(value, field, 0.0, 1.0))


def require_positive_int(value: Any, field: str, allow_zero: bool = False) -> int:
    """
    Validate a strictly positive integer (or non-negative with ``allow_zero``).

    Booleans are rejected even though they subclass int.
    """
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", field=field)

    lower = 0 if allow_zero else 1
    if value < lower:
        qualifier = "non-negative" if allow_zero else "positive"
        raise ValidationError(f"{field} must be {qualifier}, got {value}", field=field)

    return value


def require_non_empty(value: Any, field: str) -> str:
    """Validate a string with at least one non-whitespace character."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} must be a non-empty string", field=field)
    return value


def require_enum(value: Any, enum_class: Type[E], field: str) -> E:
    """
    Coerce a value or member name into ``enum_class``.

    Args:
        value: Enum member, value, or member name
        enum_class: Enum to validate against
        field: Field name for the error message

    Returns:
        The matching enum member
    """
    if isinstance(value, enum_class):
        return value
    try:
        return enum_class(value)
    except ValueError:
        pass
    if isinstance(value, str) and value.upper() in enum_class.__members__:
        return enum_class.__members__[value.upper()]

    valid_values = ", ".join(str(e.value) for e in enum_class)
    raise ValidationError(f"{field} must be one of: {valid_values}", field=field)
