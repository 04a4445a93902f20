"""Position repository protocol — supply and borrow position storage."""
from typing import Protocol

from ..models import BorrowPosition, SupplyPosition


class PositionRepository(Protocol):
    """Storage for user positions.

    Saves are compare-and-swap on ``version`` (a brand-new position is
    saved with version 0). Deletes exist only to undo a position created by
    a call that failed part-way.
    """

    async def get_supply(self, user_id: str, asset: str) -> SupplyPosition | None: ...

    async def save_supply(self, position: SupplyPosition) -> SupplyPosition: ...

    async def delete_supply(self, position_id: str) -> None: ...

    async def list_supplies(self, user_id: str) -> list[SupplyPosition]: ...

    async def get_borrow(self, position_id: str) -> BorrowPosition | None: ...

    async def save_borrow(self, position: BorrowPosition) -> BorrowPosition: ...

    async def delete_borrow(self, position_id: str) -> None: ...

    async def list_borrows(self, user_id: str) -> list[BorrowPosition]: ...

    async def list_open_borrows(self, asset: str) -> list[BorrowPosition]: ...
