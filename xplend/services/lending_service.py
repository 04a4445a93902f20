"""Lending pool engine — supply, withdraw, borrow and repay against a shared pool."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import replace
from decimal import Decimal

from ..config import AppConfig, PoolDefaultsConfig
from ..decimal_math import (
    MAX_AMOUNT,
    ZERO,
    DecimalLike,
    add,
    format_decimal,
    format_percent,
    quantize_amount,
    quantize_rate,
    sub,
    to_amount,
)
from ..errors import (
    InsufficientBalance,
    InsufficientLiquidity,
    InvalidAmount,
    LtvExceeded,
    NoPosition,
    PositionNotFound,
)
from ..interfaces.ledger import TransactionLedger
from ..interfaces.pool_repository import PoolRepository
from ..interfaces.position_repository import PositionRepository
from ..models import (
    BorrowPosition,
    LendingPool,
    PoolInfo,
    SupplyPosition,
    TransactionRecord,
    TransactionType,
    UserPositions,
)
from ..rates import DEFAULT_PARAMS, RateModelParams, calc_interest_rates
from ..risk import calc_health_factor, calc_max_borrow
from ..storage import Storage

logger = logging.getLogger(__name__)


class LendingService:
    """Lending pool engine.

    Every mutating call is a short read-modify-write cycle under a per-asset
    ``asyncio.Lock``. The pool row is written first (compare-and-swap on its
    version), then the position, then the ledger entry. If a write after the
    pool write fails, the pool and position are put back before the error
    propagates.
    """

    def __init__(
        self,
        pools: PoolRepository,
        positions: PositionRepository,
        ledger: TransactionLedger,
        pool_defaults: PoolDefaultsConfig | None = None,
        rate_params: RateModelParams = DEFAULT_PARAMS,
    ) -> None:
        self._pools = pools
        self._positions = positions
        self._ledger = ledger
        self._defaults = pool_defaults or PoolDefaultsConfig()
        self._rate_params = rate_params
        self._locks: dict[str, asyncio.Lock] = {}

    @classmethod
    def from_config(cls, config: AppConfig, storage: Storage) -> LendingService:
        rm = config.rate_model
        return cls(
            storage.pools,
            storage.positions,
            storage.ledger,
            pool_defaults=config.pool,
            rate_params=RateModelParams(
                base_rate=rm.base_rate,
                optimal_utilization=rm.optimal_utilization,
                slope1=rm.slope1,
                slope2=rm.slope2,
            ),
        )

    @property
    def rate_params(self) -> RateModelParams:
        return self._rate_params

    @property
    def default_asset(self) -> str:
        return self._defaults.asset

    def _lock_for(self, asset: str) -> asyncio.Lock:
        lock = self._locks.get(asset)
        if lock is None:
            lock = self._locks[asset] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # Pool access
    # ------------------------------------------------------------------

    async def get_pool(self, asset: str | None = None) -> LendingPool:
        """Fetch the pool for ``asset``, creating it with defaults on first use."""
        asset = asset or self.default_asset
        pool = await self._pools.get(asset)
        if pool is not None:
            return pool

        defaults = self._defaults
        return await self._pools.get_or_create(
            LendingPool(
                asset=asset,
                ltv_ratio=defaults.ltv_ratio,
                liquidation_threshold=defaults.liquidation_threshold,
                liquidation_bonus=defaults.liquidation_bonus,
                reserve_factor=defaults.reserve_factor,
            )
        )

    async def get_pool_info(self, asset: str | None = None) -> PoolInfo:
        pool = await self.get_pool(asset)
        rates = calc_interest_rates(
            pool.total_supplied, pool.total_borrowed, pool.reserve_factor, self._rate_params
        )
        return PoolInfo(
            asset=pool.asset,
            total_supplied=pool.total_supplied,
            total_borrowed=pool.total_borrowed,
            available_liquidity=pool.available_liquidity,
            utilization=format_percent(rates.utilization),
            supply_apy=format_percent(rates.supply_rate),
            borrow_apy=format_percent(rates.borrow_rate),
            ltv_ratio=pool.ltv_ratio,
            liquidation_threshold=pool.liquidation_threshold,
            liquidation_bonus=pool.liquidation_bonus,
            reserve_factor=pool.reserve_factor,
            liquidity_index=pool.liquidity_index,
            borrow_index=pool.borrow_index,
            tvl=pool.total_supplied,
        )

    async def get_user_positions(self, user_id: str) -> UserPositions:
        supplies = await self._positions.list_supplies(user_id)
        borrows = await self._positions.list_borrows(user_id)
        return UserPositions(supplies=tuple(supplies), borrows=tuple(borrows))

    async def list_at_risk_positions(
        self, threshold: Decimal, asset: str | None = None
    ) -> list[BorrowPosition]:
        """Open borrow positions whose cached health factor is below ``threshold``."""
        asset = asset or self.default_asset
        positions = await self._positions.list_open_borrows(asset)
        at_risk = [p for p in positions if p.health_factor < threshold]
        at_risk.sort(key=lambda p: p.health_factor)
        return at_risk

    async def transaction_history(self, user_id: str, limit: int = 50) -> list[TransactionRecord]:
        return await self._ledger.list_for_user(user_id, limit)

    # ------------------------------------------------------------------
    # Supply / withdraw
    # ------------------------------------------------------------------

    async def supply(
        self,
        user_id: str,
        amount: DecimalLike,
        tx_hash: str | None = None,
        asset: str | None = None,
    ) -> SupplyPosition:
        """Deposit ``amount`` into the pool and mint receipt tokens 1:1."""
        value = _positive_amount(amount)
        asset = asset or self.default_asset

        async with self._lock_for(asset):
            pool = await self.get_pool(asset)
            prior = await self._positions.get_supply(user_id, asset)

            if prior is None:
                position = SupplyPosition(
                    user_id=user_id,
                    asset=asset,
                    supplied_amount=value,
                    xpx_balance=value,
                    entry_index=pool.liquidity_index,
                )
            else:
                position = replace(
                    prior,
                    supplied_amount=quantize_amount(add(prior.supplied_amount, value)),
                    xpx_balance=quantize_amount(add(prior.xpx_balance, value)),
                )

            new_pool = replace(
                pool, total_supplied=quantize_amount(add(pool.total_supplied, value))
            )
            record = TransactionRecord(
                user_id=user_id,
                type=TransactionType.LENDING_SUPPLY,
                amount=value,
                currency=asset,
                tx_hash=tx_hash,
                description=f"Supplied {asset} to lending pool",
            )
            saved = await self._commit(
                pool, new_pool, prior, position,
                self._positions.save_supply, self._positions.delete_supply, record,
            )

        logger.info("Supply: %s supplied %s %s", user_id, value, asset)
        return saved

    async def withdraw(
        self, user_id: str, amount: DecimalLike, asset: str | None = None
    ) -> SupplyPosition:
        """Withdraw principal, bounded by the user's balance and pool liquidity."""
        value = _positive_amount(amount)
        asset = asset or self.default_asset

        async with self._lock_for(asset):
            pool = await self.get_pool(asset)
            prior = await self._positions.get_supply(user_id, asset)
            if prior is None:
                raise NoPosition("No supply position found")

            if value > prior.supplied_amount:
                raise InsufficientBalance(
                    f"Insufficient balance: requested {value}, supplied {prior.supplied_amount}"
                )
            available = pool.available_liquidity
            if value > available:
                raise InsufficientLiquidity(
                    f"Insufficient pool liquidity: requested {value}, available {available}"
                )

            position = replace(
                prior,
                supplied_amount=quantize_amount(sub(prior.supplied_amount, value)),
                xpx_balance=quantize_amount(max(ZERO, sub(prior.xpx_balance, value))),
            )
            new_pool = replace(
                pool, total_supplied=quantize_amount(sub(pool.total_supplied, value))
            )
            record = TransactionRecord(
                user_id=user_id,
                type=TransactionType.LENDING_WITHDRAW,
                amount=value,
                currency=asset,
                description=f"Withdrew {asset} from lending pool",
            )
            saved = await self._commit(
                pool, new_pool, prior, position,
                self._positions.save_supply, self._positions.delete_supply, record,
            )

        logger.info("Withdraw: %s withdrew %s %s", user_id, value, asset)
        return saved

    # ------------------------------------------------------------------
    # Borrow / repay
    # ------------------------------------------------------------------

    async def borrow(
        self,
        user_id: str,
        borrow_amount: DecimalLike,
        collateral_amount: DecimalLike,
        collateral_asset: str | None = None,
        asset: str | None = None,
    ) -> BorrowPosition:
        """Open a collateralized borrow position."""
        borrow_value = _positive_amount(borrow_amount)
        collateral_value = _positive_amount(collateral_amount)
        asset = asset or self.default_asset

        async with self._lock_for(asset):
            pool = await self.get_pool(asset)

            max_borrow = calc_max_borrow(collateral_value, pool.ltv_ratio)
            if borrow_value > max_borrow:
                raise LtvExceeded(max_borrow)

            available = pool.available_liquidity
            if borrow_value > available:
                raise InsufficientLiquidity(
                    f"Insufficient pool liquidity: requested {borrow_value}, available {available}"
                )

            collateral_asset = collateral_asset or pool.asset
            position = BorrowPosition(
                user_id=user_id,
                asset=asset,
                borrowed_amount=borrow_value,
                collateral_amount=collateral_value,
                collateral_asset=collateral_asset,
                entry_index=pool.borrow_index,
                health_factor=calc_health_factor(
                    collateral_value, borrow_value, pool.liquidation_threshold
                ),
            )
            new_pool = replace(
                pool, total_borrowed=quantize_amount(add(pool.total_borrowed, borrow_value))
            )
            record = TransactionRecord(
                user_id=user_id,
                type=TransactionType.BORROW,
                amount=borrow_value,
                currency=asset,
                description=(
                    f"Borrowed {asset} with {format_decimal(collateral_value)} "
                    f"{collateral_asset} collateral"
                ),
            )
            saved = await self._commit(
                pool, new_pool, None, position,
                self._positions.save_borrow, self._positions.delete_borrow, record,
            )

        logger.info(
            "Borrow: %s borrowed %s %s against %s %s (HF %s)",
            user_id, borrow_value, asset, collateral_value, collateral_asset,
            saved.health_factor,
        )
        return saved

    async def repay(
        self, user_id: str, position_id: str, amount: DecimalLike
    ) -> BorrowPosition:
        """Repay a borrow position. Over-payment is clamped to the outstanding debt."""
        value = _positive_amount(amount)

        located = await self._positions.get_borrow(position_id)
        asset = located.asset if located is not None else self.default_asset

        async with self._lock_for(asset):
            # Only this locked read is trusted.
            prior = await self._positions.get_borrow(position_id)
            if prior is None or prior.user_id != user_id:
                raise PositionNotFound("Borrow position not found")
            pool = await self.get_pool(prior.asset)

            repay_value = min(value, prior.borrowed_amount)
            remaining = quantize_amount(sub(prior.borrowed_amount, repay_value))
            position = replace(
                prior,
                borrowed_amount=remaining,
                health_factor=calc_health_factor(
                    prior.collateral_amount, remaining, pool.liquidation_threshold
                ),
            )
            new_pool = replace(
                pool,
                total_borrowed=quantize_amount(max(ZERO, sub(pool.total_borrowed, repay_value))),
            )
            record = TransactionRecord(
                user_id=user_id,
                type=TransactionType.REPAY,
                amount=repay_value,
                currency=prior.asset,
                description=f"Repaid {prior.asset} loan",
            )
            saved = await self._commit(
                pool, new_pool, prior, position,
                self._positions.save_borrow, self._positions.delete_borrow, record,
            )

        if repay_value < value:
            logger.info(
                "Repay: %s requested %s, clamped to outstanding debt %s",
                user_id, value, repay_value,
            )
        logger.info("Repay: %s repaid %s %s on %s", user_id, repay_value, prior.asset, position_id)
        return saved

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def _with_rates(self, pool: LendingPool) -> LendingPool:
        rates = calc_interest_rates(
            pool.total_supplied, pool.total_borrowed, pool.reserve_factor, self._rate_params
        )
        return replace(
            pool,
            supply_apy=quantize_rate(rates.supply_rate),
            borrow_apy=quantize_rate(rates.borrow_rate),
        )

    async def _commit(
        self,
        pool: LendingPool,
        new_pool: LendingPool,
        prior_position,
        position,
        save_position: Callable[..., Awaitable],
        delete_position: Callable[[str], Awaitable[None]],
        record: TransactionRecord,
    ):
        """Write pool, position and ledger entry; undo the first two on failure."""
        if new_pool.total_supplied >= MAX_AMOUNT:
            raise InvalidAmount(
                f"Pool {pool.asset} total supply would reach {MAX_AMOUNT}"
            )
        if new_pool.total_borrowed > new_pool.total_supplied or new_pool.total_supplied < ZERO:
            raise InsufficientLiquidity(
                f"Pool {pool.asset} would hold more debt than supply"
            )

        saved_pool = await self._pools.save(self._with_rates(new_pool))
        saved_position = None
        try:
            saved_position = await save_position(position)
            await self._ledger.record(record)
        except Exception:
            logger.exception(
                "Lending %s for %s failed after pool write; restoring prior state",
                record.type.value, record.user_id,
            )
            try:
                await self._restore(
                    pool, saved_pool, prior_position, saved_position,
                    save_position, delete_position,
                )
            except Exception:
                logger.exception(
                    "Restoring pool %s after failed %s for %s failed; "
                    "pool totals may not match positions",
                    pool.asset, record.type.value, record.user_id,
                )
            raise
        return saved_position

    async def _restore(
        self,
        pool: LendingPool,
        saved_pool: LendingPool,
        prior_position,
        saved_position,
        save_position: Callable[..., Awaitable],
        delete_position: Callable[[str], Awaitable[None]],
    ) -> None:
        if saved_position is not None:
            if prior_position is None:
                await delete_position(saved_position.id)
            else:
                await save_position(replace(prior_position, version=saved_position.version))
        await self._pools.save(replace(pool, version=saved_pool.version))


def _positive_amount(value: DecimalLike) -> Decimal:
    amount = to_amount(value)
    if amount <= ZERO:
        raise InvalidAmount("Amount must be positive")
    return amount
