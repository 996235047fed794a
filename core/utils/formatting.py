"""Money and percentage helpers."""

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from core.config import settings


ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value: Decimal | int | float | str | None) -> Optional[Decimal]:
    """
    Convert a numeric value to Decimal without binary float artifacts.

    Floats go through ``str`` so ``0.1`` becomes ``Decimal("0.1")``.
    """
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def minor_unit(currency: str) -> int:
    """Number of decimal places for a currency (defaults to 2)."""
    return settings.currency_minor_units.get(currency.upper(), 2)


def round_money(amount: Decimal, currency: str = "EUR") -> Decimal:
    """
    Round to the currency's minor unit using round-half-up.

    Args:
        amount: Amount to round
        currency: ISO currency code

    Returns:
        Rounded amount
    """
    exponent = Decimal(1).scaleb(-minor_unit(currency))
    return amount.quantize(exponent, rounding=ROUND_HALF_UP)


def percentage_of(amount: Decimal, percentage: Decimal) -> Decimal:
    """``amount * percentage / 100`` without rounding."""
    return amount * percentage / HUNDRED


def utilization_percentage(spent: Decimal, total: Decimal) -> Decimal:
    """Spent share of total in percent, rounded to two decimals."""
    if total <= ZERO:
        return ZERO
    return (spent / total * HUNDRED).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
