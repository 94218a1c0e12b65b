"""
money.py — Fixed-point helpers for monetary amounts.

All amounts in the ledger are Decimal with a 2-digit scale. Float never
appears in or around money calculations. Splitting is done in integer cents
so that remainders can be distributed exactly.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def quantize_money(value: Decimal) -> Decimal:
    """Rounds to 2 decimal places using ROUND_HALF_UP."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def has_money_scale(value: Decimal) -> bool:
    """
    True if value is finite and has no significant digits past the cent.

    Trailing zeros do not count:
      Decimal("10.123") → False
      Decimal("10.100") → True
      Decimal("NaN")    → False
    """
    if not value.is_finite():
        return False
    try:
        return value == value.quantize(CENT)
    except InvalidOperation:
        # Too many digits to quantize at the context precision.
        return False


def to_cents(value: Decimal) -> int:
    """Converts an amount with at most 2 decimals to integer cents."""
    return int(value.scaleb(2).to_integral_value())


def from_cents(cents: int) -> Decimal:
    return Decimal(cents).scaleb(-2).quantize(CENT)


def total(values) -> Decimal:
    """Sums Decimal amounts starting from 0.00 so an empty input yields ZERO."""
    return sum(values, ZERO)
