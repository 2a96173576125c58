"""Money rounding helpers."""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Final

CURRENCY_UNIT: Final = Decimal("0.01")
ZERO: Final = Decimal("0.00")


def to_money(value: Decimal | int | float | str) -> Decimal:
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CURRENCY_UNIT, rounding=ROUND_HALF_UP)


def percentage_of(amount: Decimal, percentage: int) -> Decimal:
    """Return ``percentage`` percent of ``amount`` rounded to cents."""
    return to_money(Decimal(amount) * Decimal(percentage) / Decimal(100))
