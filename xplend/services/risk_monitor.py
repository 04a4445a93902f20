"""Health-factor monitoring — surfaces under-collateralized borrow positions.

The monitor only reports. It reads the health factor cached on each position
at its last write, so a factor can be stale if collateral value has moved
since then.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from ..config import AppConfig
from ..decimal_math import format_decimal
from ..interfaces.notifier import Notifier
from ..models import BorrowPosition, PoolInfo
from ..notifications import EmailNotifier, TelegramNotifier
from .lending_service import LendingService

logger = logging.getLogger(__name__)


def build_notifiers(config: AppConfig) -> list[Notifier]:
    notifiers: list[Notifier] = []
    if config.notifications.telegram.enabled:
        notifiers.append(TelegramNotifier(config.notifications.telegram))
    if config.notifications.email.enabled:
        notifiers.append(EmailNotifier(config.notifications.email))
    return notifiers


class RiskMonitor:
    """Scans a pool's borrow positions and alerts on low health factors."""

    def __init__(
        self,
        service: LendingService,
        config: AppConfig,
        notifiers: list[Notifier] | None = None,
    ) -> None:
        self._service = service
        self._config = config
        self._thresholds = config.monitor.thresholds
        self._notifiers = notifiers if notifiers is not None else build_notifiers(config)

    # ------------------------------------------------------------------
    # Formatting helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _format_user(user_id: str) -> str:
        if len(user_id) > 16:
            return f"{user_id[:10]}...{user_id[-6:]}"
        return user_id

    def _get_status(self, position: BorrowPosition) -> str:
        if position.health_factor < self._thresholds.health_factor_critical:
            return "🚨 CRITICAL"
        if position.health_factor < self._thresholds.health_factor_warning:
            return "⚠️ WARNING"
        return "✅ Healthy"

    @staticmethod
    def _now_str() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

    def _build_alert(self, position: BorrowPosition, pool: PoolInfo) -> str:
        status = self._get_status(position)
        action = (
            "⚠️ Position is eligible for liquidation. Add collateral or repay now!"
            if status == "🚨 CRITICAL"
            else "Consider adding collateral or repaying part of the loan."
        )
        return (
            f"{status} — HF {position.health_factor:.4f}\n"
            f"\n"
            f"Pool: {pool.asset}\n"
            f"Position: {position.id}\n"
            f"User: {self._format_user(position.user_id)}\n"
            f"\n"
            f"Debt: {format_decimal(position.borrowed_amount)} {position.asset}\n"
            f"Collateral: {format_decimal(position.collateral_amount)} {position.collateral_asset}\n"
            f"Liquidation Threshold: {format_decimal(pool.liquidation_threshold)}\n"
            f"Liquidation Bonus: {format_decimal(pool.liquidation_bonus)}\n"
            f"\n"
            f"{action}\n"
            f"\n"
            f"{self._now_str()} UTC"
        )

    # ------------------------------------------------------------------
    # Notification dispatch
    # ------------------------------------------------------------------

    async def _send_log(self, message: str, silent: bool = False) -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_log(message, silent=silent)
            except Exception as e:
                logger.error("Notifier send_log failed: %s", e)

    async def _send_alert(self, message: str, subject: str = "") -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_alert(message, subject=subject)
            except Exception as e:
                logger.error("Notifier send_alert failed: %s", e)

    # ------------------------------------------------------------------
    # Core workflows
    # ------------------------------------------------------------------

    async def scan(self, asset: str | None = None) -> list[BorrowPosition]:
        """Positions below the warning threshold, lowest health factor first."""
        return await self._service.list_at_risk_positions(
            self._thresholds.health_factor_warning, asset
        )

    async def check_and_alert(self, asset: str | None = None) -> list[BorrowPosition]:
        """Alert on every at-risk position; returns the positions alerted on."""
        pool = await self._service.get_pool_info(asset)
        at_risk = await self.scan(pool.asset)

        for position in at_risk:
            logger.warning(
                "At-risk position — %s · %s · debt %s · collateral %s %s · HF %s",
                position.id,
                position.user_id,
                position.borrowed_amount,
                position.collateral_amount,
                position.collateral_asset,
                position.health_factor,
            )
            if position.health_factor < self._thresholds.health_factor_critical:
                await self._send_alert(
                    self._build_alert(position, pool),
                    subject="🚨 CRITICAL: Liquidation Risk!",
                )
            else:
                await self._send_alert(
                    self._build_alert(position, pool),
                    subject="⚠️ WARNING: Low Health Factor",
                )

        if not at_risk:
            logger.info("No at-risk positions in %s pool", pool.asset)
        return at_risk

    async def generate_report(self, asset: str | None = None) -> str:
        """Build and send a pool summary with at-risk position counts."""
        pool = await self._service.get_pool_info(asset)
        at_risk = await self.scan(pool.asset)
        critical = [
            p for p in at_risk
            if p.health_factor < self._thresholds.health_factor_critical
        ]

        lines = [
            f"{self._get_status(p)} {p.id} · HF {p.health_factor:.4f} · "
            f"debt {format_decimal(p.borrowed_amount)}"
            for p in at_risk
        ]
        body = "\n".join(lines) if lines else "No at-risk positions."

        report = (
            f"📋 Lending Pool Report — {pool.asset}\n"
            f"\n"
            f"TVL: {format_decimal(pool.tvl)}\n"
            f"Borrowed: {format_decimal(pool.total_borrowed)}\n"
            f"Utilization: {pool.utilization}\n"
            f"Supply APY: {pool.supply_apy} · Borrow APY: {pool.borrow_apy}\n"
            f"\n"
            f"At risk: {len(at_risk)} (critical: {len(critical)})\n"
            f"{body}\n"
            f"\n"
            f"{self._now_str()} UTC"
        )

        await self._send_log(report)
        logger.info("Pool report sent")
        return report

    async def run_continuous(self, check_interval_minutes: int | None = None) -> None:
        """Run continuous monitoring loop."""
        interval = check_interval_minutes or self._config.monitor.check_interval_minutes
        logger.info(
            "Starting health-factor monitoring (checking every %d minutes)", interval
        )

        while True:
            try:
                await self.check_and_alert()
                await asyncio.sleep(interval * 60)
            except Exception as e:
                logger.error("Error in monitoring loop: %s", e)
                await asyncio.sleep(60)
