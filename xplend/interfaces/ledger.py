"""Transaction ledger protocol — where lending calls record their movements."""
from typing import Protocol

from ..models import TransactionRecord


class TransactionLedger(Protocol):
    async def record(self, record: TransactionRecord) -> TransactionRecord: ...

    async def list_for_user(
        self, user_id: str, limit: int = 50
    ) -> list[TransactionRecord]: ...
