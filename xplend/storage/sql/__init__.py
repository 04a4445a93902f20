"""PostgreSQL storage via SQLAlchemy async."""
from .repository import PostgresLedger, PostgresPoolRepository, PostgresPositionRepository
from .session import create_engine, create_schema, create_sessionmaker

__all__ = [
    "PostgresLedger",
    "PostgresPoolRepository",
    "PostgresPositionRepository",
    "create_engine",
    "create_schema",
    "create_sessionmaker",
]
