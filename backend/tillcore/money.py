# Overview: Fixed-point monetary value (integer minor units) with one rounding rule.

"""
Money value type.

All amounts are integer cents. Decimal input is converted exactly and
rounded half-up (half away from zero) to the nearest cent. Products and
ratios are computed with exact fractions and rounded once, at the end.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from fractions import Fraction
from typing import Iterable, Union

from .errors import MoneyError


MINOR_UNITS_PER_MAJOR = 100

_DECIMAL_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$")

Rational = Union[int, Decimal, Fraction, str]


def round_half_up(value: Fraction) -> int:
    """Round an exact fraction to an int, halves away from zero."""
    if value >= 0:
        return math.floor(value + Fraction(1, 2))
    return -math.floor(-value + Fraction(1, 2))


def to_fraction(value: Rational, label: str = "value") -> Fraction:
    """Convert an exact rational input to a Fraction. Floats are rejected."""
    if isinstance(value, bool):
        raise MoneyError(f"{label} must be a number, not a boolean")
    if isinstance(value, Fraction):
        return value
    if isinstance(value, int):
        return Fraction(value)
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise MoneyError(f"{label} must be finite")
        return Fraction(value)
    if isinstance(value, str):
        stripped = value.strip()
        if not _DECIMAL_RE.match(stripped):
            raise MoneyError(f"{label} must be a plain decimal number")
        try:
            return Fraction(Decimal(stripped))
        except InvalidOperation:
            raise MoneyError(f"{label} must be a plain decimal number")
    if isinstance(value, float):
        raise MoneyError(f"{label} must be exact (int, Decimal or string), not a float")
    raise MoneyError(f"{label} must be a number")


@dataclass(frozen=True, order=True)
class Money:
    cents: int

    def __post_init__(self):
        if isinstance(self.cents, bool) or not isinstance(self.cents, int):
            raise MoneyError("Money must be built from integer cents")

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def zero(cls) -> Money:
        return cls(0)

    @classmethod
    def from_cents(cls, cents: int) -> Money:
        return cls(cents)

    @classmethod
    def from_decimal_string(cls, text: str) -> Money:
        """Parse "7.63", "7.625" (-> 7.63), "-1.5". Rounds half-up to the cent."""
        if not isinstance(text, str):
            raise MoneyError("Amount must be a decimal string")
        amount = to_fraction(text, "amount")
        return cls(round_half_up(amount * MINOR_UNITS_PER_MAJOR))

    @staticmethod
    def sum(values: Iterable[Money]) -> Money:
        total = 0
        for value in values:
            total += value.cents
        return Money(total)

    # -------------------------------------------------------------------------
    # Arithmetic
    # -------------------------------------------------------------------------

    def add(self, other: Money) -> Money:
        return Money(self.cents + other.cents)

    def subtract(self, other: Money) -> Money:
        """Subtract; a negative result is a programming error."""
        result = self.cents - other.cents
        if result < 0:
            raise MoneyError(
                f"Money subtraction went negative: {self.to_decimal_string()} - {other.to_decimal_string()}"
            )
        return Money(result)

    def subtract_floor(self, other: Money) -> Money:
        """max(0, self - other)."""
        return Money(max(0, self.cents - other.cents))

    def multiply(self, quantity: Rational) -> Money:
        """unit price x quantity, rounded half-up once at the end."""
        return Money(round_half_up(self.cents * to_fraction(quantity, "quantity")))

    def scale(self, ratio: Fraction) -> Money:
        return Money(round_half_up(self.cents * ratio))

    def percent_of(self, percent: Rational) -> Money:
        pct = to_fraction(percent, "percent")
        if pct < 0 or pct > 100:
            raise MoneyError("percent must be between 0 and 100")
        return Money(round_half_up(self.cents * pct / 100))

    def min(self, other: Money) -> Money:
        return self if self.cents <= other.cents else other

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        return self.add(other)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        return self.subtract(other)

    def __bool__(self) -> bool:
        return self.cents != 0

    # -------------------------------------------------------------------------
    # Serialisation
    # -------------------------------------------------------------------------

    def to_decimal_string(self) -> str:
        sign = "-" if self.cents < 0 else ""
        units, rem = divmod(abs(self.cents), MINOR_UNITS_PER_MAJOR)
        return f"{sign}{units}.{rem:02d}"

    def __str__(self) -> str:
        return self.to_decimal_string()
