"""
Input Normalization Utilities
=============================

Single source of truth for normalizing caller-supplied filter and search
parameters. Data-quality problems in URA records never pass through here;
those are dropped silently by the normalizer. Values handled here come
from a caller, so malformed input is a contract violation and raises.

Usage:
    from utils.normalize import to_int, to_year, to_choice, ValidationError

    try:
        year = to_year(params.get("year"), field="year")
        page = to_int(params.get("page"), default=1, minimum=1, field="page")
    except ValidationError as e:
        return {"error": str(e), "field": e.field}
"""

from typing import Iterable, Optional


class ValidationError(ValueError):
    """Raised when input cannot be normalized to expected type."""

    def __init__(self, message: str, field: str = None, received_value=None):
        super().__init__(message)
        self.field = field
        self.received_value = received_value


def to_int(
    value,
    *,
    default: Optional[int] = None,
    minimum: Optional[int] = None,
    maximum: Optional[int] = None,
    field: str = None
) -> Optional[int]:
    """
    Convert value to int, with explicit None handling and optional bounds.

    Raises:
        ValidationError: If value cannot be converted or is out of bounds
    """
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValidationError(f"Expected int, got bool: {value!r}", field=field, received_value=value)
    try:
        result = int(value)
    except (ValueError, TypeError):
        raise ValidationError(
            f"Expected int, got {type(value).__name__}: {value!r}",
            field=field,
            received_value=value
        )
    if minimum is not None and result < minimum:
        raise ValidationError(f"{field or 'value'} must be >= {minimum}, got {result}",
                              field=field, received_value=value)
    if maximum is not None and result > maximum:
        raise ValidationError(f"{field or 'value'} must be <= {maximum}, got {result}",
                              field=field, received_value=value)
    return result


def to_str(value, *, default: Optional[str] = None, max_length: Optional[int] = None) -> Optional[str]:
    """Strip a string value; empty becomes `default`. Long input is truncated."""
    if value is None:
        return default
    s = str(value).strip()
    if not s:
        return default
    if max_length is not None:
        s = s[:max_length]
    return s


def to_year(value, *, field: str = None) -> Optional[str]:
    """
    Normalize a calendar year filter to a 4-digit string.

    Raises:
        ValidationError: If value is not a 4-digit year
    """
    if value is None or value == "":
        return None
    s = str(value).strip()
    if len(s) != 4 or not s.isdigit():
        raise ValidationError(f"Expected 4-digit year, got {value!r}", field=field, received_value=value)
    return s


def to_choice(value, choices: Iterable[str], *, field: str = None, case_insensitive: bool = True) -> Optional[str]:
    """
    Normalize value to one of `choices`, returning the canonical spelling.

    Raises:
        ValidationError: If value is not one of the choices
    """
    if value is None or value == "":
        return None
    s = str(value).strip()
    for choice in choices:
        if s == choice or (case_insensitive and s.lower() == choice.lower()):
            return choice
    raise ValidationError(
        f"Invalid {field or 'value'}: {value!r}. Valid: {sorted(choices)}",
        field=field,
        received_value=value
    )


def to_district(value, *, field: str = None) -> Optional[str]:
    """
    Normalize a district filter ("9", "09", "D9", "d09") to "D09".

    Raises:
        ValidationError: If value is not a district code in 1..28
    """
    if value is None or value == "":
        return None
    s = str(value).strip().upper()
    num = s[1:] if s.startswith('D') else s
    if not num.isdigit() or not 1 <= int(num) <= 28:
        raise ValidationError(f"Invalid district: {value!r}", field=field, received_value=value)
    return f"D{int(num):02d}"


def to_range(value, *, field: str = None) -> Optional[tuple]:
    """
    Parse an "lo-hi" numeric range into (lo, hi) floats.

    Raises:
        ValidationError: If the range is malformed or empty
    """
    if value is None or value == "":
        return None
    parts = str(value).split('-')
    try:
        lo, hi = (float(p) for p in parts)
    except (ValueError, TypeError):
        raise ValidationError(f"Expected range 'lo-hi', got {value!r}", field=field, received_value=value)
    if lo < 0 or hi <= lo:
        raise ValidationError(f"Invalid range {value!r}", field=field, received_value=value)
    return lo, hi
