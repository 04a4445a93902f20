"""Kinked (two-slope) interest rate model — pure functions, no I/O."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from .decimal_math import ONE, ZERO, add, div, mul, sub

BASE_RATE = Decimal("0.02")
OPTIMAL_UTILIZATION = Decimal("0.80")
SLOPE1 = Decimal("0.04")
SLOPE2 = Decimal("0.75")


@dataclass(frozen=True)
class RateModelParams:
    base_rate: Decimal = BASE_RATE
    optimal_utilization: Decimal = OPTIMAL_UTILIZATION
    slope1: Decimal = SLOPE1
    slope2: Decimal = SLOPE2

    def __post_init__(self) -> None:
        if not ZERO < self.optimal_utilization < ONE:
            raise ValueError("optimal_utilization must be strictly between 0 and 1")
        if min(self.base_rate, self.slope1, self.slope2) < ZERO:
            raise ValueError("Rate model parameters must be non-negative")


@dataclass(frozen=True)
class InterestRates:
    """Annual rates as fractions (0.05 = 5%)."""

    utilization: Decimal
    borrow_rate: Decimal
    supply_rate: Decimal


DEFAULT_PARAMS = RateModelParams()


def calc_utilization(total_supplied: Decimal, total_borrowed: Decimal) -> Decimal:
    """Borrowed / supplied, 0 for an empty pool."""
    if total_supplied <= ZERO:
        return ZERO
    return div(total_borrowed, total_supplied)


def calc_borrow_rate(utilization: Decimal, params: RateModelParams = DEFAULT_PARAMS) -> Decimal:
    """Borrow APR at ``utilization``.

    Below the kink the rate climbs gently along ``slope1``; above it the
    excess utilization is rescaled to [0, 1] and priced along ``slope2``.
    Both branches give ``base_rate + slope1`` at the kink.
    """
    p = params
    if utilization <= p.optimal_utilization:
        return add(p.base_rate, mul(div(utilization, p.optimal_utilization), p.slope1))

    excess = div(
        sub(utilization, p.optimal_utilization), sub(ONE, p.optimal_utilization)
    )
    return add(add(p.base_rate, p.slope1), mul(excess, p.slope2))


def calc_supply_rate(
    utilization: Decimal,
    reserve_factor: Decimal,
    params: RateModelParams = DEFAULT_PARAMS,
) -> Decimal:
    """supply = borrow * utilization * (1 - reserve_factor)."""
    borrow_rate = calc_borrow_rate(utilization, params)
    return mul(mul(borrow_rate, utilization), sub(ONE, reserve_factor))


def calc_interest_rates(
    total_supplied: Decimal,
    total_borrowed: Decimal,
    reserve_factor: Decimal,
    params: RateModelParams = DEFAULT_PARAMS,
) -> InterestRates:
    utilization = calc_utilization(total_supplied, total_borrowed)
    return InterestRates(
        utilization=utilization,
        borrow_rate=calc_borrow_rate(utilization, params),
        supply_rate=calc_supply_rate(utilization, reserve_factor, params),
    )


def rate_curve(
    reserve_factor: Decimal,
    params: RateModelParams = DEFAULT_PARAMS,
    points: int = 11,
) -> list[InterestRates]:
    """Sample the curve at ``points`` evenly spaced utilizations in [0, 1]."""
    if points < 2:
        raise ValueError("rate_curve needs at least 2 points")
    step = div(ONE, Decimal(points - 1))
    curve: list[InterestRates] = []
    for i in range(points):
        u = ONE if i == points - 1 else mul(step, Decimal(i))
        curve.append(
            InterestRates(
                utilization=u,
                borrow_rate=calc_borrow_rate(u, params),
                supply_rate=calc_supply_rate(u, reserve_factor, params),
            )
        )
    return curve
