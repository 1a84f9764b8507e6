"""
Money arithmetic helpers.

All amounts are Decimal in the smallest currency unit. Rounding is
ROUND_HALF_UP, which for Decimal rounds half away from zero.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

ZERO = Decimal("0")
ONE_HUNDRED = Decimal("100")
DEFAULT_UNIT = Decimal("1")


def round_money(value: Decimal, unit: Optional[Decimal] = None) -> Decimal:
    """Round to the currency unit, half away from zero."""
    unit = unit or DEFAULT_UNIT
    return (value / unit).quantize(Decimal("1"), rounding=ROUND_HALF_UP) * unit


def percent_of(amount: Decimal, percent: Decimal) -> Decimal:
    """Unrounded `percent`% of `amount` (percent on a 0-100 scale)."""
    return amount * percent / ONE_HUNDRED


def clamp_percent(
    percent: Decimal,
    minimum: Decimal = ZERO,
    maximum: Decimal = ONE_HUNDRED,
) -> Decimal:
    return max(minimum, min(maximum, percent))
