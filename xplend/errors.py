"""Lending engine exceptions.

All of these are synchronous, caller-facing failures. Validation errors are
raised before any state is written.
"""
from __future__ import annotations

from decimal import Decimal


class LendingError(Exception):
    pass


class InvalidAmount(LendingError):
    pass


class NotFound(LendingError):
    pass


class NoPosition(NotFound):
    pass


class PositionNotFound(NotFound):
    pass


class InsufficientBalance(LendingError):
    pass


class InsufficientLiquidity(LendingError):
    pass


class LtvExceeded(LendingError):
    """Borrow request above ``collateral * ltv_ratio``."""

    def __init__(self, max_borrow: Decimal) -> None:
        self.max_borrow = max_borrow
        limit = f"{max_borrow:f}"
        if "." in limit:
            limit = limit.rstrip("0").rstrip(".")
        super().__init__(f"Borrow amount exceeds LTV limit. Max: {limit}")


class ConcurrentUpdateError(LendingError):
    """A repository write lost a compare-and-swap race."""
