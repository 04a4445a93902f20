"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

STORAGE_BACKENDS = ("memory", "postgres")

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PoolDefaultsConfig:
    """Risk parameters applied when a pool row is first created."""

    asset: str = "XP"
    ltv_ratio: Decimal = Decimal("0.75")
    liquidation_threshold: Decimal = Decimal("0.80")
    liquidation_bonus: Decimal = Decimal("0.05")
    reserve_factor: Decimal = Decimal("0.10")


@dataclass(frozen=True)
class RateModelConfig:
    base_rate: Decimal = Decimal("0.02")
    optimal_utilization: Decimal = Decimal("0.80")
    slope1: Decimal = Decimal("0.04")
    slope2: Decimal = Decimal("0.75")


@dataclass(frozen=True)
class StorageConfig:
    backend: str = "memory"
    database_url: str = ""
    pool_size: int = 5


@dataclass(frozen=True)
class ThresholdsConfig:
    health_factor_warning: Decimal = Decimal("1.10")
    health_factor_critical: Decimal = Decimal("1.00")


@dataclass(frozen=True)
class MonitorConfig:
    check_interval_minutes: int = 15
    thresholds: ThresholdsConfig = field(default_factory=ThresholdsConfig)


@dataclass(frozen=True)
class TelegramConfig:
    enabled: bool = False
    alert_bot_token: str = ""
    log_bot_token: str = ""
    chat_id: str = ""


@dataclass(frozen=True)
class EmailConfig:
    enabled: bool = False
    alert_email: str = ""
    smtp_server: str = "smtp.gmail.com"
    smtp_port: int = 587
    sender_email: str = ""
    sender_password: str = ""


@dataclass(frozen=True)
class NotificationsConfig:
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    email: EmailConfig = field(default_factory=EmailConfig)


@dataclass(frozen=True)
class AppConfig:
    pool: PoolDefaultsConfig = field(default_factory=PoolDefaultsConfig)
    rate_model: RateModelConfig = field(default_factory=RateModelConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


def _decimal(raw: dict[str, Any], key: str, default: Decimal) -> Decimal:
    """Read a decimal setting. Quote values in YAML to keep them exact."""
    value = raw.get(key)
    if value is None:
        return default
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Setting '{key}' is not a number: {value!r}") from None


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_pool(raw: dict[str, Any]) -> PoolDefaultsConfig:
    d = PoolDefaultsConfig()
    return PoolDefaultsConfig(
        asset=str(raw.get("asset", d.asset)),
        ltv_ratio=_decimal(raw, "ltv_ratio", d.ltv_ratio),
        liquidation_threshold=_decimal(raw, "liquidation_threshold", d.liquidation_threshold),
        liquidation_bonus=_decimal(raw, "liquidation_bonus", d.liquidation_bonus),
        reserve_factor=_decimal(raw, "reserve_factor", d.reserve_factor),
    )


def _build_rate_model(raw: dict[str, Any]) -> RateModelConfig:
    d = RateModelConfig()
    return RateModelConfig(
        base_rate=_decimal(raw, "base_rate", d.base_rate),
        optimal_utilization=_decimal(raw, "optimal_utilization", d.optimal_utilization),
        slope1=_decimal(raw, "slope1", d.slope1),
        slope2=_decimal(raw, "slope2", d.slope2),
    )


def _build_storage(raw: dict[str, Any]) -> StorageConfig:
    return StorageConfig(
        backend=raw.get("backend", "memory"),
        database_url=raw.get("database_url", "") or "",
        pool_size=int(raw.get("pool_size", 5)),
    )


def _build_monitor(raw: dict[str, Any]) -> MonitorConfig:
    t = raw.get("thresholds", {})
    d = ThresholdsConfig()
    return MonitorConfig(
        check_interval_minutes=int(raw.get("check_interval_minutes", 15)),
        thresholds=ThresholdsConfig(
            health_factor_warning=_decimal(t, "health_factor_warning", d.health_factor_warning),
            health_factor_critical=_decimal(t, "health_factor_critical", d.health_factor_critical),
        ),
    )


def _build_notifications(raw: dict[str, Any]) -> NotificationsConfig:
    tg = raw.get("telegram", {})
    em = raw.get("email", {})
    return NotificationsConfig(
        telegram=TelegramConfig(
            enabled=bool(tg.get("enabled", False)),
            alert_bot_token=tg.get("alert_bot_token", ""),
            log_bot_token=tg.get("log_bot_token", ""),
            chat_id=str(tg.get("chat_id", "")),
        ),
        email=EmailConfig(
            enabled=bool(em.get("enabled", False)),
            alert_email=em.get("alert_email", ""),
            smtp_server=em.get("smtp_server", "smtp.gmail.com"),
            smtp_port=int(em.get("smtp_port", 587)),
            sender_email=em.get("sender_email", ""),
            sender_password=em.get("sender_password", ""),
        ),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (two levels up from this file).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        pool=_build_pool(raw.get("pool", {})),
        rate_model=_build_rate_model(raw.get("rate_model", {})),
        storage=_build_storage(raw.get("storage", {})),
        monitor=_build_monitor(raw.get("monitor", {})),
        notifications=_build_notifications(raw.get("notifications", {})),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    pool = cfg.pool
    if not pool.asset:
        raise ValueError("Pool asset must not be empty")
    if not Decimal(0) < pool.ltv_ratio < pool.liquidation_threshold <= Decimal(1):
        raise ValueError(
            "Pool risk parameters must satisfy 0 < ltv_ratio < liquidation_threshold <= 1"
        )
    if not Decimal(0) <= pool.reserve_factor < Decimal(1):
        raise ValueError("reserve_factor must be in [0, 1)")
    if pool.liquidation_bonus < 0:
        raise ValueError("liquidation_bonus must be non-negative")

    rm = cfg.rate_model
    if not Decimal(0) < rm.optimal_utilization < Decimal(1):
        raise ValueError("optimal_utilization must be strictly between 0 and 1")
    if min(rm.base_rate, rm.slope1, rm.slope2) < 0:
        raise ValueError("Rate model parameters must be non-negative")

    if cfg.storage.backend not in STORAGE_BACKENDS:
        raise ValueError(f"Unknown storage backend '{cfg.storage.backend}'")
    if cfg.storage.backend == "postgres" and not cfg.storage.database_url:
        raise ValueError("storage.database_url is required for the postgres backend")

    t = cfg.monitor.thresholds
    if t.health_factor_critical > t.health_factor_warning:
        raise ValueError("health_factor_critical must not exceed health_factor_warning")
