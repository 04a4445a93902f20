"""In-memory storage — single-process repositories and ledger."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import replace

from ..errors import ConcurrentUpdateError
from ..models import (
    BorrowPosition,
    LendingPool,
    SupplyPosition,
    TransactionRecord,
    utcnow,
)

logger = logging.getLogger(__name__)


class InMemoryPoolRepository:
    """Pool rows keyed by asset, with compare-and-swap saves."""

    def __init__(self) -> None:
        self._pools: dict[str, LendingPool] = {}
        self._lock = asyncio.Lock()

    async def get(self, asset: str) -> LendingPool | None:
        return self._pools.get(asset)

    async def get_or_create(self, pool: LendingPool) -> LendingPool:
        async with self._lock:
            existing = self._pools.get(pool.asset)
            if existing is not None:
                return existing
            created = replace(pool, version=0)
            self._pools[pool.asset] = created
            logger.info("Created lending pool for %s", pool.asset)
            return created

    async def save(self, pool: LendingPool) -> LendingPool:
        async with self._lock:
            stored = self._pools.get(pool.asset)
            stored_version = stored.version if stored is not None else 0
            if stored is None or stored_version != pool.version:
                raise ConcurrentUpdateError(
                    f"Pool {pool.asset} changed concurrently "
                    f"(expected version {pool.version}, found {stored_version})"
                )
            saved = replace(pool, version=pool.version + 1, updated_at=utcnow())
            self._pools[pool.asset] = saved
            return saved


class InMemoryPositionRepository:
    """Supply and borrow positions with compare-and-swap saves."""

    def __init__(self) -> None:
        self._supplies: dict[str, SupplyPosition] = {}
        self._borrows: dict[str, BorrowPosition] = {}
        self._lock = asyncio.Lock()

    async def get_supply(self, user_id: str, asset: str) -> SupplyPosition | None:
        for position in self._supplies.values():
            if position.user_id == user_id and position.asset == asset:
                return position
        return None

    async def save_supply(self, position: SupplyPosition) -> SupplyPosition:
        async with self._lock:
            stored = self._supplies.get(position.id)
            if stored is None:
                # (user, asset) is unique, a second row for the pair is a race.
                for other in self._supplies.values():
                    if other.user_id == position.user_id and other.asset == position.asset:
                        raise ConcurrentUpdateError(
                            f"Supply position for {position.user_id}/{position.asset} already exists"
                        )
            _check_version("Supply position", position.id, stored, position.version)
            saved = replace(position, version=position.version + 1, updated_at=utcnow())
            self._supplies[position.id] = saved
            return saved

    async def delete_supply(self, position_id: str) -> None:
        async with self._lock:
            self._supplies.pop(position_id, None)

    async def list_supplies(self, user_id: str) -> list[SupplyPosition]:
        return sorted(
            (p for p in self._supplies.values() if p.user_id == user_id),
            key=lambda p: p.created_at,
        )

    async def get_borrow(self, position_id: str) -> BorrowPosition | None:
        return self._borrows.get(position_id)

    async def save_borrow(self, position: BorrowPosition) -> BorrowPosition:
        async with self._lock:
            stored = self._borrows.get(position.id)
            _check_version("Borrow position", position.id, stored, position.version)
            saved = replace(position, version=position.version + 1, updated_at=utcnow())
            self._borrows[position.id] = saved
            return saved

    async def delete_borrow(self, position_id: str) -> None:
        async with self._lock:
            self._borrows.pop(position_id, None)

    async def list_borrows(self, user_id: str) -> list[BorrowPosition]:
        return sorted(
            (p for p in self._borrows.values() if p.user_id == user_id),
            key=lambda p: p.created_at,
        )

    async def list_open_borrows(self, asset: str) -> list[BorrowPosition]:
        return [
            p for p in self._borrows.values()
            if p.asset == asset and p.borrowed_amount > 0
        ]


class InMemoryLedger:
    """Append-only list of transaction records."""

    def __init__(self) -> None:
        self._records: list[TransactionRecord] = []

    async def record(self, record: TransactionRecord) -> TransactionRecord:
        self._records.append(record)
        logger.debug(
            "Ledger %s %s %s for %s", record.type.value, record.amount,
            record.currency, record.user_id,
        )
        return record

    async def list_for_user(
        self, user_id: str, limit: int = 50
    ) -> list[TransactionRecord]:
        records = [r for r in reversed(self._records) if r.user_id == user_id]
        return records[:limit]


def _check_version(kind: str, position_id: str, stored, expected: int) -> None:
    stored_version = stored.version if stored is not None else 0
    if stored_version != expected:
        raise ConcurrentUpdateError(
            f"{kind} {position_id} changed concurrently "
            f"(expected version {expected}, found {stored_version})"
        )
