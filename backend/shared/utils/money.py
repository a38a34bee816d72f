"""
Currency arithmetic.

All amounts are Decimal dollars rounded half-up to cents; the payment
processor and WEB-SRM both take integer cents.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Any

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value: Any) -> Decimal:
    """Convert a number or numeric string to Decimal without float noise."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(value: Any) -> Decimal:
    """Round to currency precision (half-up)."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value: Any) -> int:
    """Dollars to integer cents."""
    return int((round_money(value) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    """Integer cents to dollars."""
    return round_money(Decimal(cents) / 100)
