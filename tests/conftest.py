"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from decimal import Decimal
from pathlib import Path

import pytest

from xplend.config import (
    AppConfig,
    EmailConfig,
    MonitorConfig,
    NotificationsConfig,
    PoolDefaultsConfig,
    TelegramConfig,
    ThresholdsConfig,
)
from xplend.models import BorrowPosition
from xplend.services import LendingService
from xplend.storage import Storage, memory_storage


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_thresholds() -> ThresholdsConfig:
    return ThresholdsConfig(
        health_factor_warning=Decimal("1.10"),
        health_factor_critical=Decimal("1.00"),
    )


@pytest.fixture()
def sample_app_config(sample_thresholds: ThresholdsConfig) -> AppConfig:
    return AppConfig(
        pool=PoolDefaultsConfig(asset="XP"),
        monitor=MonitorConfig(check_interval_minutes=5, thresholds=sample_thresholds),
        notifications=NotificationsConfig(
            telegram=TelegramConfig(
                enabled=True,
                alert_bot_token="fake-alert-token",
                log_bot_token="fake-log-token",
                chat_id="12345",
            ),
            email=EmailConfig(enabled=False),
        ),
    )


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def storage() -> Storage:
    return memory_storage()


@pytest.fixture()
def service(storage: Storage, sample_app_config: AppConfig) -> LendingService:
    return LendingService.from_config(sample_app_config, storage)


# ---------------------------------------------------------------------------
# Model fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_borrow() -> BorrowPosition:
    return BorrowPosition(
        user_id="user-1",
        asset="XP",
        borrowed_amount=Decimal("700"),
        collateral_amount=Decimal("1000"),
        collateral_asset="XP",
        entry_index=Decimal("1"),
        health_factor=Decimal("1.1429"),
    )


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    pool:
      asset: XP
      ltv_ratio: "0.70"
      liquidation_threshold: "0.85"
      liquidation_bonus: "0.05"
      reserve_factor: "0.20"
    rate_model:
      base_rate: "0.01"
      optimal_utilization: "0.90"
      slope1: "0.05"
      slope2: "1.00"
    storage:
      backend: memory
    monitor:
      check_interval_minutes: 5
      thresholds:
        health_factor_warning: "1.20"
        health_factor_critical: "1.05"
    notifications:
      telegram:
        enabled: true
        alert_bot_token: "tok1"
        log_bot_token: "tok2"
        chat_id: "999"
      email:
        enabled: false
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
