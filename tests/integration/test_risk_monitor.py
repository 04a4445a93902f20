"""Integration tests for the RiskMonitor — lending engine plus mocked notifiers."""
from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from xplend.config import AppConfig
from xplend.models import BorrowPosition
from xplend.notifications import TelegramNotifier
from xplend.services import LendingService, RiskMonitor
from xplend.services.risk_monitor import build_notifiers
from xplend.storage import Storage


class _StopLoop(BaseException):
    """Escapes the monitor loop, which only catches Exception."""


@pytest.fixture()
def notifier() -> AsyncMock:
    return AsyncMock()


@pytest.fixture()
def monitor(
    service: LendingService, sample_app_config: AppConfig, notifier: AsyncMock
) -> RiskMonitor:
    return RiskMonitor(service, sample_app_config, notifiers=[notifier])


async def _open_position(
    storage: Storage, user_id: str, debt: str, collateral: str, health_factor: str
) -> BorrowPosition:
    """Store a position directly; the engine itself never opens one below 1.0667."""
    return await storage.positions.save_borrow(
        BorrowPosition(
            user_id=user_id,
            asset="XP",
            borrowed_amount=Decimal(debt),
            collateral_amount=Decimal(collateral),
            collateral_asset="XP",
            entry_index=Decimal(1),
            health_factor=Decimal(health_factor),
        )
    )


class TestCheckAndAlert:
    @pytest.mark.asyncio
    async def test_healthy_pool_sends_nothing(
        self, monitor: RiskMonitor, service: LendingService, notifier: AsyncMock
    ) -> None:
        await service.supply("alice", "1000")
        await service.borrow("bob", "100", "1000")

        assert await monitor.check_and_alert() == []
        notifier.send_alert.assert_not_called()

    @pytest.mark.asyncio
    async def test_warning_position_sends_warning(
        self, monitor: RiskMonitor, service: LendingService, notifier: AsyncMock
    ) -> None:
        await service.supply("alice", "1000")
        position = await service.borrow("bob", "750", "1000")

        alerted = await monitor.check_and_alert()

        assert [p.id for p in alerted] == [position.id]
        notifier.send_alert.assert_called_once()
        call_args = notifier.send_alert.call_args
        assert "WARNING" in call_args.kwargs["subject"]
        alert_msg = call_args[0][0]
        assert position.id in alert_msg
        assert "HF 1.0667" in alert_msg
        assert "Debt: 750 XP" in alert_msg

    @pytest.mark.asyncio
    async def test_critical_position_sends_critical(
        self, monitor: RiskMonitor, storage: Storage, notifier: AsyncMock
    ) -> None:
        await _open_position(storage, "bob", "900", "1000", "0.8889")

        await monitor.check_and_alert()

        call_args = notifier.send_alert.call_args
        assert "CRITICAL" in call_args.kwargs["subject"]
        assert "eligible for liquidation" in call_args[0][0]

    @pytest.mark.asyncio
    async def test_lowest_health_factor_first(
        self, monitor: RiskMonitor, storage: Storage, notifier: AsyncMock
    ) -> None:
        warn = await _open_position(storage, "bob", "750", "1000", "1.0667")
        crit = await _open_position(storage, "carol", "900", "1000", "0.8889")

        alerted = await monitor.check_and_alert()

        assert [p.id for p in alerted] == [crit.id, warn.id]
        assert notifier.send_alert.call_count == 2

    @pytest.mark.asyncio
    async def test_notifier_failure_does_not_stop_scan(
        self, service: LendingService, sample_app_config: AppConfig, storage: Storage
    ) -> None:
        broken = AsyncMock()
        broken.send_alert.side_effect = RuntimeError("down")
        working = AsyncMock()
        monitor = RiskMonitor(service, sample_app_config, notifiers=[broken, working])
        await _open_position(storage, "bob", "900", "1000", "0.8889")

        await monitor.check_and_alert()

        working.send_alert.assert_called_once()


class TestGenerateReport:
    @pytest.mark.asyncio
    async def test_report_counts_at_risk(
        self,
        monitor: RiskMonitor,
        service: LendingService,
        storage: Storage,
        notifier: AsyncMock,
    ) -> None:
        await service.supply("alice", "1000")
        await service.borrow("bob", "750", "1000")
        await _open_position(storage, "carol", "50", "50", "0.8000")

        report = await monitor.generate_report()

        notifier.send_log.assert_called_once()
        assert notifier.send_log.call_args[0][0] == report
        assert "Lending Pool Report" in report
        assert "At risk: 2 (critical: 1)" in report
        assert "Utilization: 75.00%" in report

    @pytest.mark.asyncio
    async def test_report_without_positions(
        self, monitor: RiskMonitor, notifier: AsyncMock
    ) -> None:
        report = await monitor.generate_report()
        assert "No at-risk positions." in report
        assert "At risk: 0 (critical: 0)" in report


class TestFormatHelpers:
    def test_format_user_long(self) -> None:
        assert RiskMonitor._format_user("0x1234567890abcdef1234567890") == "0x12345678...567890"

    def test_format_user_short(self) -> None:
        assert RiskMonitor._format_user("alice") == "alice"

    def test_get_status(self, monitor: RiskMonitor, sample_borrow: BorrowPosition) -> None:
        assert "Healthy" in monitor._get_status(replace(sample_borrow, health_factor=Decimal("1.5")))
        assert "WARNING" in monitor._get_status(replace(sample_borrow, health_factor=Decimal("1.05")))
        assert "CRITICAL" in monitor._get_status(replace(sample_borrow, health_factor=Decimal("0.99")))


class TestBuildNotifiers:
    def test_telegram_enabled(self, sample_app_config: AppConfig) -> None:
        notifiers = build_notifiers(sample_app_config)
        assert len(notifiers) == 1
        assert isinstance(notifiers[0], TelegramNotifier)

    def test_none_enabled(self) -> None:
        assert build_notifiers(AppConfig()) == []


class TestRunContinuous:
    @pytest.mark.asyncio
    async def test_loop_checks_then_sleeps(self, monitor: RiskMonitor) -> None:
        sleep = AsyncMock(side_effect=[None, _StopLoop])
        with patch("xplend.services.risk_monitor.asyncio.sleep", sleep):
            with pytest.raises(_StopLoop):
                await monitor.run_continuous(2)
        assert sleep.call_args_list[0].args == (120,)
