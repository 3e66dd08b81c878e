"""
Utility functions for the application.
"""
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to naive datetimes.

    SQLite hands timestamps back without tzinfo even for timezone-aware
    columns; everything we store is UTC so this is lossless.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_key(key: Any) -> str:
    """Case-normalized record key used for diffing (SKU, category id)."""
    if key is None:
        return ""
    return str(key).strip().lower()


def normalize_value(value: Any) -> Any:
    """
    Normalize a field value for equality checks.

    Strings are stripped, numbers compared as decimals so 10, 10.0 and "10.00"
    agree, and empty strings count as missing.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value)).normalize()
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        try:
            number = Decimal(stripped)
        except InvalidOperation:
            return stripped
        return number.normalize() if number.is_finite() else stripped
    if isinstance(value, (list, tuple)):
        return tuple(normalize_value(v) for v in value)
    if isinstance(value, dict):
        return tuple(sorted((k, normalize_value(v)) for k, v in value.items()))
    return value

