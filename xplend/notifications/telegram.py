"""Telegram notifications for health-factor alerts and pool reports."""
import asyncio
import html
import logging
import ssl

import aiohttp
import certifi

from ..config import TelegramConfig

logger = logging.getLogger(__name__)

API_BASE = "https://api.telegram.org"

# Telegram rejects sendMessage text longer than this.
MAX_MESSAGE_LENGTH = 4096

REQUEST_TIMEOUT_SECONDS = 10


class TelegramNotifier:
    """Alerts go through the alert bot (audible), reports through the log bot."""

    def __init__(self, config: TelegramConfig) -> None:
        self._config = config
        self._ssl_context = ssl.create_default_context(cafile=certifi.where())

    @staticmethod
    def _render(message: str) -> str:
        text = html.escape(message, quote=False)
        if len(text) > MAX_MESSAGE_LENGTH:
            text = text[: MAX_MESSAGE_LENGTH - 1] + "…"
        return text

    async def _post(self, bot_token: str, text: str, silent: bool) -> bool:
        if not bot_token or not self._config.chat_id:
            logger.warning("Telegram credentials not configured")
            return False

        payload = {
            "chat_id": self._config.chat_id,
            "text": self._render(text),
            "parse_mode": "HTML",
            "disable_notification": silent,
        }
        timeout = aiohttp.ClientTimeout(total=REQUEST_TIMEOUT_SECONDS)
        connector = aiohttp.TCPConnector(ssl=self._ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector, timeout=timeout) as session:
                async with session.post(
                    f"{API_BASE}/bot{bot_token}/sendMessage", json=payload
                ) as response:
                    if response.status != 200:
                        logger.error("Telegram sendMessage failed: HTTP %s", response.status)
                        return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("Telegram request failed: %s", e)
            return False
        return True

    async def send_alert(self, message: str, subject: str = "") -> bool:
        """Send a liquidation-risk alert with the subject as its first line."""
        text = f"{subject}\n\n{message}" if subject else message
        sent = await self._post(self._config.alert_bot_token, text, silent=False)
        if sent:
            logger.info("Telegram alert sent")
        return sent

    async def send_log(self, message: str, silent: bool = True) -> bool:
        sent = await self._post(self._config.log_bot_token, message, silent=silent)
        if sent:
            logger.info("Telegram report sent")
        return sent
