from __future__ import annotations

from typing import Any


# Maximum single amount: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical amounts
MAX_AMOUNT_CENTS = 999_999_999


class ValidationError(ValueError):
    """400-level input problem."""

    code = "VALIDATION_ERROR"


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., session already active)."""

    code = "CONFLICT"


def coerce_cents(value: Any, field: str) -> int:
    """
    Strict integer coercion for money fields.

    Accepts ints and plain digit strings (with optional leading minus).
    Rejects bools, floats, decimals and scientific notation so that no
    binary floating point ever reaches money arithmetic.
    """
    if value is None:
        raise ValidationError(f"{field} is required")

    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        cents = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer number of cents (no decimals)")
        try:
            cents = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer number of cents, not a decimal")
    else:
        raise ValidationError(f"{field} must be an integer")

    if abs(cents) > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} exceeds maximum allowed amount")
    return cents


def require_positive_cents(value: Any, field: str) -> int:
    cents = coerce_cents(value, field)
    if cents <= 0:
        raise ValidationError(f"{field} must be positive")
    return cents


def require_non_negative_cents(value: Any, field: str) -> int:
    cents = coerce_cents(value, field)
    if cents < 0:
        raise ValidationError(f"{field} cannot be negative")
    return cents


def coerce_id(value: Any, field: str) -> int | None:
    """
    Optional record id from request JSON.

    None passes through; ints and digit strings ("7") become a positive
    int. Anything else is a ValidationError.
    """
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValidationError(f"{field} must be an integer id")
    try:
        record_id = int(value)
    except ValueError:
        raise ValidationError(f"{field} must be an integer id")
    if record_id <= 0:
        raise ValidationError(f"{field} must be a positive id")
    return record_id


def require_text(value: Any, field: str, *, max_length: int = 255) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    text = value.strip()
    if len(text) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return text
