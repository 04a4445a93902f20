"""Integration test configuration with PostgreSQL testcontainers."""
from __future__ import annotations

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from xplend.storage.sql import create_engine, create_schema, create_sessionmaker
from xplend.storage.sql.tables import Base


@pytest.fixture(scope="session")
def postgres_container():
    """Spin up a PostgreSQL container for the entire test session."""
    from testcontainers.postgres import PostgresContainer

    try:
        container = PostgresContainer("postgres:16", driver="asyncpg")
        container.start()
    except Exception as e:
        pytest.skip(f"Docker is not available: {e}")
    try:
        yield container
    finally:
        container.stop()


@pytest_asyncio.fixture()
async def db_engine(postgres_container) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh schema per test; tables are dropped afterwards."""
    engine = create_engine(postgres_container.get_connection_url(), pool_size=2)
    await create_schema(engine)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture()
async def db_sessionmaker(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_sessionmaker(db_engine)
