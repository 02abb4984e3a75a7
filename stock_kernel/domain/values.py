"""
Value helpers -- conversion between domain values and stored documents.

Responsibility:
    The key-value store holds JSON documents.  These helpers are the single
    place where Decimal, datetime, date and identifier values cross that
    boundary, so every DTO serializes them identically.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Money is Decimal end to end; floats are rejected, never coerced.
    - Datetimes are stored as ISO-8601 strings and must be timezone-aware.

Failure modes:
    - ValidationError on a float money amount or a non-numeric string.
    - ValidationError on a naive datetime.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import uuid4

from stock_kernel.exceptions import ValidationError


def new_id() -> str:
    """Generate a fresh entity identifier."""
    return uuid4().hex


def to_decimal(value: Any, field: str = "amount") -> Decimal:
    """Coerce int/str/Decimal to Decimal. Floats are rejected."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(field, f"must be Decimal, int or str, got {type(value).__name__}")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(field, f"not a decimal: {value!r}") from exc


def decimal_to_str(value: Decimal | None) -> str | None:
    if value is None:
        return None
    return str(value)


def datetime_to_str(value: datetime | None, field: str = "timestamp") -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        raise ValidationError(field, "datetime must be timezone-aware")
    return value.isoformat()


def str_to_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def date_to_str(value: date | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def str_to_date(value: str | None) -> date | None:
    if not value:
        return None
    return date.fromisoformat(value)


def require_non_negative_int(value: Any, field: str) -> int:
    """Validate that value is an int >= 0 (bool is not an int here)."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field, f"must be an integer, got {type(value).__name__}")
    if value < 0:
        raise ValidationError(field, f"must be >= 0, got {value}")
    return value


def require_positive_int(value: Any, field: str) -> int:
    """Validate that value is an int > 0."""
    require_non_negative_int(value, field)
    if value == 0:
        raise ValidationError(field, "must be > 0, got 0")
    return value
