"""Service modules"""
from .lending_service import LendingService
from .risk_monitor import RiskMonitor

__all__ = ["LendingService", "RiskMonitor"]
