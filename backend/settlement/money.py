# Overview: Exact integer money value type and decimal-string parsing helpers.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from .validation import ValidationError


@dataclass(frozen=True)
class Money:
    """
    Amount in integer minor units (cents) plus ISO currency code.

    Arithmetic is only defined between amounts of the same currency.
    """
    cents: int
    currency: str

    def __post_init__(self):
        if isinstance(self.cents, bool) or not isinstance(self.cents, int):
            raise TypeError("Money.cents must be an int")

    def _check(self, other: "Money") -> None:
        if not isinstance(other, Money):
            raise TypeError(f"Cannot combine Money with {type(other).__name__}")
        if other.currency != self.currency:
            raise ValueError(f"Currency mismatch: {self.currency} vs {other.currency}")

    def __add__(self, other: "Money") -> "Money":
        self._check(other)
        return Money(self.cents + other.cents, self.currency)

    def __sub__(self, other: "Money") -> "Money":
        self._check(other)
        return Money(self.cents - other.cents, self.currency)

    def __neg__(self) -> "Money":
        return Money(-self.cents, self.currency)

    def __str__(self) -> str:
        return f"{self.currency} {format_cents(self.cents)}"

    def to_dict(self) -> dict:
        return {"cents": self.cents, "currency": self.currency}


def format_cents(cents: int) -> str:
    """1234 -> "12.34", -5 -> "-0.05"."""
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(cents), 100)
    return f"{sign}{whole}.{frac:02d}"


def parse_amount(text: str) -> int:
    """
    Parse a human decimal amount ("115", "115.5", "115.50") into cents.

    Uses Decimal so "0.1" is exactly 10 cents; more than two decimal
    places is rejected rather than rounded.
    """
    try:
        value = Decimal(str(text).strip())
    except InvalidOperation:
        raise ValidationError(f"Invalid amount: {text!r}")
    if not value.is_finite():
        raise ValidationError(f"Invalid amount: {text!r}")
    cents = value * 100
    if cents != cents.to_integral_value():
        raise ValidationError(f"Amount {text!r} has more than two decimal places")
    return int(cents)
