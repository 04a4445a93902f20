"""SQLAlchemy table mappings for pools, positions and the transaction ledger."""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Amounts carry 18 fractional digits, indices 27 (ray), rates 4.
AMOUNT = Numeric(36, 18)
RAY = Numeric(36, 27)
RATE = Numeric(10, 4)
RATIO = Numeric(5, 4)
# Amounts stay below 10**18 and the threshold is at most 1, so a health
# factor stays below 10**36 even for one-wei debt.
HEALTH = Numeric(48, 4)


class Base(DeclarativeBase):
    pass


class LendingPoolRow(Base):
    __tablename__ = "lending_pools"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    asset: Mapped[str] = mapped_column(String(10))
    total_supplied: Mapped[Decimal] = mapped_column(AMOUNT, default=0)
    total_borrowed: Mapped[Decimal] = mapped_column(AMOUNT, default=0)
    liquidity_index: Mapped[Decimal] = mapped_column(RAY)
    borrow_index: Mapped[Decimal] = mapped_column(RAY)
    supply_apy: Mapped[Decimal] = mapped_column(RATE, default=0)
    borrow_apy: Mapped[Decimal] = mapped_column(RATE, default=0)
    ltv_ratio: Mapped[Decimal] = mapped_column(RATIO)
    liquidation_threshold: Mapped[Decimal] = mapped_column(RATIO)
    liquidation_bonus: Mapped[Decimal] = mapped_column(RATIO)
    reserve_factor: Mapped[Decimal] = mapped_column(RATIO)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    version: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    __table_args__ = (UniqueConstraint("asset", name="uq_lending_pools_asset"),)


class SupplyPositionRow(Base):
    __tablename__ = "supply_positions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64))
    asset: Mapped[str] = mapped_column(String(10))
    supplied_amount: Mapped[Decimal] = mapped_column(AMOUNT)
    xpx_balance: Mapped[Decimal] = mapped_column(AMOUNT)
    entry_index: Mapped[Decimal] = mapped_column(RAY)
    version: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint("user_id", "asset", name="uq_supply_positions_user_asset"),
        Index("idx_supply_positions_user", "user_id"),
    )


class BorrowPositionRow(Base):
    __tablename__ = "borrow_positions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64))
    asset: Mapped[str] = mapped_column(String(10))
    borrowed_amount: Mapped[Decimal] = mapped_column(AMOUNT)
    collateral_amount: Mapped[Decimal] = mapped_column(AMOUNT)
    collateral_asset: Mapped[str] = mapped_column(String(10))
    entry_index: Mapped[Decimal] = mapped_column(RAY)
    health_factor: Mapped[Decimal] = mapped_column(HEALTH)
    version: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("idx_borrow_positions_user", "user_id"),
        Index("idx_borrow_positions_asset_hf", "asset", "health_factor"),
    )


class TransactionRow(Base):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64))
    type: Mapped[str] = mapped_column(String(32))
    amount: Mapped[Decimal] = mapped_column(AMOUNT)
    currency: Mapped[str] = mapped_column(String(10))
    status: Mapped[str] = mapped_column(String(16))
    tx_hash: Mapped[str | None] = mapped_column(String(66))
    description: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    __table_args__ = (Index("idx_transactions_user_time", "user_id", "created_at"),)
