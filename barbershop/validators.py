"""Shared parsing helpers for JSON request bodies."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from .errors import ValidationError


def parse_id(value: object, field: str) -> int:
    """Parse a positive integer id, accepting numeric strings as the frontend sends them."""
    if isinstance(value, bool) or value is None or value == "":
        raise ValidationError(f"{field} must be a valid number", error="invalid_id")
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a valid number", error="invalid_id") from None
    if parsed <= 0:
        raise ValidationError(f"{field} must be a valid number", error="invalid_id")
    return parsed


def parse_optional_id(value: object, field: str) -> int | None:
    if value is None or value == "":
        return None
    return parse_id(value, field)


def parse_id_list(value: object, field: str) -> list[int]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"{field} must be a list of ids")
    return [parse_id(item, field) for item in value]


def parse_text(value: object, field: str) -> str | None:
    """Strip a free-text field; blank becomes ``None``."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    return value.strip() or None


def parse_decimal(value: object, field: str) -> Decimal:
    if isinstance(value, bool) or value is None or value == "":
        raise ValidationError(f"{field} must be a number")
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number") from None
    if not parsed.is_finite():
        raise ValidationError(f"{field} must be a number")
    return parsed


def parse_rate(value: object, field: str) -> float:
    """Percentages are floats between 0 and 100."""
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValidationError(f"{field} must be a number between 0 and 100")
    try:
        rate = float(value)
    except ValueError:
        raise ValidationError(f"{field} must be a number between 0 and 100") from None
    if not 0 <= rate <= 100:
        raise ValidationError(f"{field} must be a number between 0 and 100")
    return rate


def parse_datetime(value: object, field: str) -> datetime | None:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a valid ISO format datetime")
    try:
        # fromisoformat() only learned the trailing "Z" in 3.11
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"{field} must be a valid ISO format datetime") from None
    # Naive values are taken as UTC; aware ones are stored as UTC
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed
