"""Notifier protocol — channel for health-factor alerts and reports."""
from typing import Protocol


class Notifier(Protocol):
    """Abstract interface for pushing risk alerts to operators."""

    async def send_alert(self, message: str, subject: str = "") -> bool: ...

    async def send_log(self, message: str, silent: bool = True) -> bool: ...
