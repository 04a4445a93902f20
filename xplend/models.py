"""Data models — all frozen (immutable).

State changes go through ``dataclasses.replace``; repositories compare the
``version`` field to detect lost updates.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from .decimal_math import ONE, ZERO, format_decimal, quantize_ray
from .risk import HEALTH_FACTOR_SENTINEL


def _new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransactionType(str, Enum):
    LENDING_SUPPLY = "LENDING_SUPPLY"
    LENDING_WITHDRAW = "LENDING_WITHDRAW"
    BORROW = "BORROW"
    REPAY = "REPAY"


class TransactionStatus(str, Enum):
    COMPLETED = "COMPLETED"
    PENDING = "PENDING"
    FAILED = "FAILED"


@dataclass(frozen=True)
class LendingPool:
    """Per-asset pool state and risk parameters."""

    asset: str
    total_supplied: Decimal = ZERO
    total_borrowed: Decimal = ZERO
    liquidity_index: Decimal = field(default_factory=lambda: quantize_ray(ONE))
    borrow_index: Decimal = field(default_factory=lambda: quantize_ray(ONE))
    supply_apy: Decimal = ZERO
    borrow_apy: Decimal = ZERO
    ltv_ratio: Decimal = Decimal("0.75")
    liquidation_threshold: Decimal = Decimal("0.80")
    liquidation_bonus: Decimal = Decimal("0.05")
    reserve_factor: Decimal = Decimal("0.10")
    is_active: bool = True
    id: str = field(default_factory=_new_id)
    version: int = 0
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def available_liquidity(self) -> Decimal:
        return self.total_supplied - self.total_borrowed


@dataclass(frozen=True)
class SupplyPosition:
    user_id: str
    asset: str
    supplied_amount: Decimal
    xpx_balance: Decimal
    entry_index: Decimal
    id: str = field(default_factory=_new_id)
    version: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class BorrowPosition:
    user_id: str
    asset: str
    borrowed_amount: Decimal
    collateral_amount: Decimal
    collateral_asset: str
    entry_index: Decimal
    health_factor: Decimal = HEALTH_FACTOR_SENTINEL
    id: str = field(default_factory=_new_id)
    version: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class TransactionRecord:
    """Ledger entry emitted once per mutating lending call."""

    user_id: str
    type: TransactionType
    amount: Decimal
    currency: str
    description: str = ""
    tx_hash: str | None = None
    status: TransactionStatus = TransactionStatus.COMPLETED
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class PoolInfo:
    """Pool state decorated with live utilization and APY display strings."""

    asset: str
    total_supplied: Decimal
    total_borrowed: Decimal
    available_liquidity: Decimal
    utilization: str
    supply_apy: str
    borrow_apy: str
    ltv_ratio: Decimal
    liquidation_threshold: Decimal
    liquidation_bonus: Decimal
    reserve_factor: Decimal
    liquidity_index: Decimal
    borrow_index: Decimal
    tvl: Decimal


@dataclass(frozen=True)
class UserPositions:
    supplies: tuple[SupplyPosition, ...] = ()
    borrows: tuple[BorrowPosition, ...] = ()


def to_dict(obj: Any) -> Any:
    """JSON-friendly view of a model: decimals and datetimes become strings."""
    if isinstance(obj, Decimal):
        return format_decimal(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (list, tuple)):
        return [to_dict(item) for item in obj]
    if hasattr(obj, "__dataclass_fields__"):
        return {f.name: to_dict(getattr(obj, f.name)) for f in fields(obj)}
    return obj
