"""Pool repository protocol — persistence boundary for lending pools."""
from typing import Protocol

from ..models import LendingPool


class PoolRepository(Protocol):
    """Storage for per-asset pool rows.

    ``save`` is a compare-and-swap on ``pool.version``: the stored row must
    still carry that version, otherwise ``ConcurrentUpdateError`` is raised.
    The returned pool carries the bumped version.
    """

    async def get(self, asset: str) -> LendingPool | None: ...

    async def get_or_create(self, pool: LendingPool) -> LendingPool: ...

    async def save(self, pool: LendingPool) -> LendingPool: ...
