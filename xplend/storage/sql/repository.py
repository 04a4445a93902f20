"""PostgreSQL implementations of the pool, position and ledger protocols.

Every write is a single statement in its own transaction. Updates carry
``WHERE version = :expected`` so a concurrent writer in another process
turns into ``ConcurrentUpdateError`` instead of a lost update.
"""
from __future__ import annotations

import logging
from dataclasses import fields, replace
from typing import Any, TypeVar

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ...errors import ConcurrentUpdateError
from ...models import (
    BorrowPosition,
    LendingPool,
    SupplyPosition,
    TransactionRecord,
    TransactionStatus,
    TransactionType,
    utcnow,
)
from .tables import BorrowPositionRow, LendingPoolRow, SupplyPositionRow, TransactionRow

logger = logging.getLogger(__name__)

M = TypeVar("M")


def _to_model(cls: type[M], row: Any) -> M:
    return cls(**{f.name: getattr(row, f.name) for f in fields(cls)})


def _values(model: Any) -> dict[str, Any]:
    return {f.name: getattr(model, f.name) for f in fields(model)}


class PostgresPoolRepository:
    """PostgreSQL implementation of PoolRepository."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self.sessionmaker = sessionmaker

    async def get(self, asset: str) -> LendingPool | None:
        async with self.sessionmaker() as session:
            row = await session.scalar(
                select(LendingPoolRow).where(LendingPoolRow.asset == asset)
            )
            return _to_model(LendingPool, row) if row is not None else None

    async def get_or_create(self, pool: LendingPool) -> LendingPool:
        """Insert the pool unless one exists for the asset, then read it back.

        ON CONFLICT DO NOTHING makes a creation race resolve to whichever
        insert landed first.
        """
        async with self.sessionmaker() as session:
            stmt = (
                pg_insert(LendingPoolRow)
                .values(**_values(replace(pool, version=0)))
                .on_conflict_do_nothing(constraint="uq_lending_pools_asset")
            )
            result = await session.execute(stmt)
            await session.commit()
            if result.rowcount:
                logger.info("Created lending pool for %s", pool.asset)

            row = await session.scalar(
                select(LendingPoolRow).where(LendingPoolRow.asset == pool.asset)
            )
            return _to_model(LendingPool, row)

    async def save(self, pool: LendingPool) -> LendingPool:
        saved = replace(pool, version=pool.version + 1, updated_at=utcnow())
        values = _values(saved)
        values.pop("id")
        async with self.sessionmaker() as session:
            result = await session.execute(
                update(LendingPoolRow)
                .where(
                    LendingPoolRow.id == pool.id,
                    LendingPoolRow.version == pool.version,
                )
                .values(**values)
            )
            if result.rowcount != 1:
                await session.rollback()
                raise ConcurrentUpdateError(
                    f"Pool {pool.asset} changed concurrently (expected version {pool.version})"
                )
            await session.commit()
        return saved


class PostgresPositionRepository:
    """PostgreSQL implementation of PositionRepository."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self.sessionmaker = sessionmaker

    async def _save(self, row_cls: Any, position: Any) -> Any:
        """Insert a never-saved position (version 0), otherwise compare-and-swap."""
        saved = replace(position, version=position.version + 1, updated_at=utcnow())
        async with self.sessionmaker() as session:
            if position.version == 0:
                session.add(row_cls(**_values(saved)))
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    raise ConcurrentUpdateError(
                        f"Position {position.id} for {position.user_id}/{position.asset} already exists"
                    ) from None
                return saved

            values = _values(saved)
            values.pop("id")
            result = await session.execute(
                update(row_cls)
                .where(row_cls.id == position.id, row_cls.version == position.version)
                .values(**values)
            )
            if result.rowcount != 1:
                await session.rollback()
                raise ConcurrentUpdateError(
                    f"Position {position.id} changed concurrently (expected version {position.version})"
                )
            await session.commit()
        return saved

    async def _delete(self, row_cls: Any, position_id: str) -> None:
        async with self.sessionmaker() as session:
            await session.execute(delete(row_cls).where(row_cls.id == position_id))
            await session.commit()

    async def get_supply(self, user_id: str, asset: str) -> SupplyPosition | None:
        async with self.sessionmaker() as session:
            row = await session.scalar(
                select(SupplyPositionRow).where(
                    SupplyPositionRow.user_id == user_id,
                    SupplyPositionRow.asset == asset,
                )
            )
            return _to_model(SupplyPosition, row) if row is not None else None

    async def save_supply(self, position: SupplyPosition) -> SupplyPosition:
        return await self._save(SupplyPositionRow, position)

    async def delete_supply(self, position_id: str) -> None:
        await self._delete(SupplyPositionRow, position_id)

    async def list_supplies(self, user_id: str) -> list[SupplyPosition]:
        async with self.sessionmaker() as session:
            rows = await session.scalars(
                select(SupplyPositionRow)
                .where(SupplyPositionRow.user_id == user_id)
                .order_by(SupplyPositionRow.created_at)
            )
            return [_to_model(SupplyPosition, row) for row in rows]

    async def get_borrow(self, position_id: str) -> BorrowPosition | None:
        async with self.sessionmaker() as session:
            row = await session.get(BorrowPositionRow, position_id)
            return _to_model(BorrowPosition, row) if row is not None else None

    async def save_borrow(self, position: BorrowPosition) -> BorrowPosition:
        return await self._save(BorrowPositionRow, position)

    async def delete_borrow(self, position_id: str) -> None:
        await self._delete(BorrowPositionRow, position_id)

    async def list_borrows(self, user_id: str) -> list[BorrowPosition]:
        async with self.sessionmaker() as session:
            rows = await session.scalars(
                select(BorrowPositionRow)
                .where(BorrowPositionRow.user_id == user_id)
                .order_by(BorrowPositionRow.created_at)
            )
            return [_to_model(BorrowPosition, row) for row in rows]

    async def list_open_borrows(self, asset: str) -> list[BorrowPosition]:
        async with self.sessionmaker() as session:
            rows = await session.scalars(
                select(BorrowPositionRow).where(
                    BorrowPositionRow.asset == asset,
                    BorrowPositionRow.borrowed_amount > 0,
                )
            )
            return [_to_model(BorrowPosition, row) for row in rows]


class PostgresLedger:
    """Transaction ledger stored in the ``transactions`` table."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self.sessionmaker = sessionmaker

    async def record(self, record: TransactionRecord) -> TransactionRecord:
        values = _values(record)
        values["type"] = record.type.value
        values["status"] = record.status.value
        async with self.sessionmaker() as session:
            session.add(TransactionRow(**values))
            await session.commit()
        return record

    async def list_for_user(
        self, user_id: str, limit: int = 50
    ) -> list[TransactionRecord]:
        async with self.sessionmaker() as session:
            rows = await session.scalars(
                select(TransactionRow)
                .where(TransactionRow.user_id == user_id)
                .order_by(TransactionRow.created_at.desc())
                .limit(limit)
            )
            records: list[TransactionRecord] = []
            for row in rows:
                record = _to_model(TransactionRecord, row)
                records.append(
                    replace(
                        record,
                        type=TransactionType(row.type),
                        status=TransactionStatus(row.status),
                    )
                )
            return records
