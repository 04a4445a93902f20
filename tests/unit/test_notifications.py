"""Unit tests for notification services."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from xplend.config import EmailConfig, TelegramConfig
from xplend.notifications.email import EmailNotifier
from xplend.notifications.telegram import MAX_MESSAGE_LENGTH, TelegramNotifier


def _mock_session(status: int) -> AsyncMock:
    mock_response = AsyncMock()
    mock_response.status = status
    mock_response.__aenter__ = AsyncMock(return_value=mock_response)
    mock_response.__aexit__ = AsyncMock(return_value=None)

    mock_session = AsyncMock()
    mock_session.post = MagicMock(return_value=mock_response)
    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=None)
    return mock_session


# ---------------------------------------------------------------------------
# TelegramNotifier
# ---------------------------------------------------------------------------


@pytest.fixture()
def telegram_notifier() -> TelegramNotifier:
    return TelegramNotifier(
        TelegramConfig(
            enabled=True,
            alert_bot_token="alert-tok",
            log_bot_token="log-tok",
            chat_id="12345",
        )
    )


@pytest.fixture()
def telegram_notifier_unconfigured() -> TelegramNotifier:
    return TelegramNotifier(
        TelegramConfig(enabled=True, alert_bot_token="", log_bot_token="", chat_id="")
    )


class TestTelegramNotifier:
    @pytest.mark.asyncio
    async def test_send_alert_success(self, telegram_notifier: TelegramNotifier) -> None:
        mock_session = _mock_session(200)

        with patch("xplend.notifications.telegram.aiohttp.ClientSession", return_value=mock_session):
            with patch("xplend.notifications.telegram.aiohttp.TCPConnector"):
                result = await telegram_notifier.send_alert("HF 0.95", subject="CRITICAL")

        assert result is True
        url = mock_session.post.call_args[0][0]
        payload = mock_session.post.call_args.kwargs["json"]
        assert "botalert-tok" in url
        assert payload["text"].startswith("CRITICAL\n\nHF 0.95")
        assert payload["disable_notification"] is False

    @pytest.mark.asyncio
    async def test_send_alert_failure(self, telegram_notifier: TelegramNotifier) -> None:
        mock_session = _mock_session(403)

        with patch("xplend.notifications.telegram.aiohttp.ClientSession", return_value=mock_session):
            with patch("xplend.notifications.telegram.aiohttp.TCPConnector"):
                result = await telegram_notifier.send_alert("test alert")

        assert result is False

    @pytest.mark.asyncio
    async def test_network_error_returns_false(self, telegram_notifier: TelegramNotifier) -> None:
        with patch(
            "xplend.notifications.telegram.aiohttp.ClientSession",
            side_effect=aiohttp.ClientConnectionError("unreachable"),
        ):
            with patch("xplend.notifications.telegram.aiohttp.TCPConnector"):
                result = await telegram_notifier.send_alert("test alert")

        assert result is False

    @pytest.mark.asyncio
    async def test_send_log_uses_log_bot(self, telegram_notifier: TelegramNotifier) -> None:
        mock_session = _mock_session(200)

        with patch("xplend.notifications.telegram.aiohttp.ClientSession", return_value=mock_session):
            with patch("xplend.notifications.telegram.aiohttp.TCPConnector"):
                result = await telegram_notifier.send_log("pool report")

        assert result is True
        assert "botlog-tok" in mock_session.post.call_args[0][0]
        assert mock_session.post.call_args.kwargs["json"]["disable_notification"] is True

    @pytest.mark.asyncio
    async def test_unconfigured_returns_false(
        self, telegram_notifier_unconfigured: TelegramNotifier
    ) -> None:
        result = await telegram_notifier_unconfigured.send_alert("test")
        assert result is False

        result = await telegram_notifier_unconfigured.send_log("test")
        assert result is False

    def test_render_escapes_html(self) -> None:
        assert TelegramNotifier._render("debt <1000> & more") == "debt &lt;1000&gt; &amp; more"

    def test_render_truncates(self) -> None:
        text = TelegramNotifier._render("x" * (MAX_MESSAGE_LENGTH + 100))
        assert len(text) == MAX_MESSAGE_LENGTH
        assert text.endswith("…")


# ---------------------------------------------------------------------------
# EmailNotifier
# ---------------------------------------------------------------------------


@pytest.fixture()
def email_notifier() -> EmailNotifier:
    return EmailNotifier(
        EmailConfig(
            enabled=True,
            alert_email="ops@example.com",
            smtp_server="smtp.example.com",
            smtp_port=587,
            sender_email="sender@example.com",
            sender_password="password123",
        )
    )


@pytest.fixture()
def email_notifier_unconfigured() -> EmailNotifier:
    return EmailNotifier(EmailConfig(enabled=True))


class TestEmailNotifier:
    @pytest.mark.asyncio
    async def test_send_alert_success(self, email_notifier: EmailNotifier) -> None:
        mock_smtp = MagicMock()
        with patch("xplend.notifications.email.smtplib.SMTP", return_value=mock_smtp):
            result = await email_notifier.send_alert("test body", subject="Low HF")
        assert result is True
        server = mock_smtp.__enter__.return_value
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("sender@example.com", "password123")
        server.send_message.assert_called_once()
        mock_smtp.__exit__.assert_called_once()
        msg = server.send_message.call_args[0][0]
        assert msg["Subject"] == "[XP Lending] Low HF"

    @pytest.mark.asyncio
    async def test_send_alert_smtp_error(self, email_notifier: EmailNotifier) -> None:
        with patch(
            "xplend.notifications.email.smtplib.SMTP",
            side_effect=ConnectionError("SMTP down"),
        ):
            result = await email_notifier.send_alert("test body", subject="Test")
        assert result is False

    @pytest.mark.asyncio
    async def test_no_alert_email_returns_false(
        self, email_notifier_unconfigured: EmailNotifier
    ) -> None:
        result = await email_notifier_unconfigured.send_alert("test")
        assert result is False

    @pytest.mark.asyncio
    async def test_no_credentials_returns_false(self) -> None:
        notifier = EmailNotifier(
            EmailConfig(enabled=True, alert_email="ops@example.com")
        )
        result = await notifier.send_alert("test")
        assert result is False

    @pytest.mark.asyncio
    async def test_silent_log_is_skipped(self, email_notifier: EmailNotifier) -> None:
        with patch("xplend.notifications.email.smtplib.SMTP") as smtp_cls:
            result = await email_notifier.send_log("test")
        assert result is False
        smtp_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_report_log_is_mailed(self, email_notifier: EmailNotifier) -> None:
        mock_smtp = MagicMock()
        with patch("xplend.notifications.email.smtplib.SMTP", return_value=mock_smtp):
            result = await email_notifier.send_log("report", silent=False)
        assert result is True
        msg = mock_smtp.__enter__.return_value.send_message.call_args[0][0]
        assert msg["Subject"] == "[XP Lending] Pool report"
