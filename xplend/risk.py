"""Health factor and collateral limits."""
from __future__ import annotations

from decimal import Decimal

from .decimal_math import ONE, ZERO, div, mul, quantize_rate

# Reported for positions that carry no debt.
HEALTH_FACTOR_SENTINEL = Decimal("999")


def calc_health_factor(
    collateral: Decimal, debt: Decimal, liquidation_threshold: Decimal
) -> Decimal:
    """health_factor = (collateral * liquidation_threshold) / debt, 4 dp."""
    if debt <= ZERO:
        return HEALTH_FACTOR_SENTINEL
    raw = div(mul(collateral, liquidation_threshold), debt)
    return quantize_rate(raw)


def calc_max_borrow(collateral: Decimal, ltv_ratio: Decimal) -> Decimal:
    return mul(collateral, ltv_ratio)


def is_liquidatable(health_factor: Decimal) -> bool:
    return health_factor < ONE
