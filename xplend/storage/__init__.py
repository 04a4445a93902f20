"""Storage backends for pools, positions and the transaction ledger."""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from ..config import StorageConfig
from ..interfaces import PoolRepository, PositionRepository, TransactionLedger
from .memory import InMemoryLedger, InMemoryPoolRepository, InMemoryPositionRepository

logger = logging.getLogger(__name__)


async def _noop() -> None:
    return None


@dataclass(frozen=True)
class Storage:
    pools: PoolRepository
    positions: PositionRepository
    ledger: TransactionLedger
    close: Callable[[], Awaitable[None]] = _noop


def memory_storage() -> Storage:
    return Storage(
        pools=InMemoryPoolRepository(),
        positions=InMemoryPositionRepository(),
        ledger=InMemoryLedger(),
    )


async def open_storage(config: StorageConfig) -> Storage:
    """Build the configured backend; postgres tables are created if missing."""
    if config.backend == "memory":
        logger.debug("Using in-memory storage")
        return memory_storage()

    if config.backend == "postgres":
        from .sql import (
            PostgresLedger,
            PostgresPoolRepository,
            PostgresPositionRepository,
            create_engine,
            create_schema,
            create_sessionmaker,
        )

        engine = create_engine(config.database_url, pool_size=config.pool_size)
        await create_schema(engine)
        sessionmaker = create_sessionmaker(engine)
        logger.debug("Using PostgreSQL storage")
        return Storage(
            pools=PostgresPoolRepository(sessionmaker),
            positions=PostgresPositionRepository(sessionmaker),
            ledger=PostgresLedger(sessionmaker),
            close=engine.dispose,
        )

    raise ValueError(f"Unknown storage backend '{config.backend}'")


__all__ = ["Storage", "memory_storage", "open_storage"]
