"""Decimal money helpers.

Amounts are Decimal everywhere and CHF to 2 decimals at persistence.
Balance checks compare integer cents, never floats.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from bookkeeping_engine.errors import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value: object, field: str = "amount") -> Decimal:
    """Coerce an int, str, float or Decimal into a Decimal."""
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise ValidationError(f"{field} must be numeric, got bool")
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(value)
        except InvalidOperation as exc:
            raise ValidationError(f"{field} is not a number: {value!r}") from exc
    elif isinstance(value, float):
        result = Decimal(str(value))
    elif value is None:
        return ZERO
    else:
        raise ValidationError(f"{field} must be numeric, got {type(value).__name__}")
    if not result.is_finite():
        raise ValidationError(f"{field} must be finite")
    return result


def round_to_cents(amount: Decimal) -> Decimal:
    """Round amount to 2 decimal places (cents), half up."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(amount: Decimal, field: str = "amount") -> int:
    """Convert an amount to integer cents, rejecting sub-cent precision."""
    cents = amount * 100
    if cents != cents.to_integral_value():
        raise ValidationError(f"{field} has more than 2 decimal places: {amount}")
    return int(cents)


def from_cents(cents: int) -> Decimal:
    """Convert integer cents back to a 2-decimal amount."""
    return (Decimal(cents) / 100).quantize(CENT)
