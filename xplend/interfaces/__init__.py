"""Protocol interfaces for the lending engine's collaborators."""
from .ledger import TransactionLedger
from .notifier import Notifier
from .pool_repository import PoolRepository
from .position_repository import PositionRepository

__all__ = ["Notifier", "PoolRepository", "PositionRepository", "TransactionLedger"]
