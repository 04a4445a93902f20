"""Email notifications for health-factor alerts and pool reports."""
import asyncio
import logging
import smtplib
from email.message import EmailMessage

from ..config import EmailConfig

logger = logging.getLogger(__name__)

SUBJECT_PREFIX = "[XP Lending]"


class EmailNotifier:
    """Send alerts, and non-silent reports, by SMTP.

    smtplib blocks, so delivery runs in a worker thread to keep the
    monitor's event loop responsive.
    """

    def __init__(self, config: EmailConfig) -> None:
        self._config = config

    def _build_message(self, body: str, subject: str) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self._config.sender_email
        msg["To"] = self._config.alert_email
        msg["Subject"] = f"{SUBJECT_PREFIX} {subject}".strip()
        msg.set_content(body)
        return msg

    def _deliver(self, msg: EmailMessage) -> None:
        cfg = self._config
        with smtplib.SMTP(cfg.smtp_server, cfg.smtp_port) as server:
            server.starttls()
            server.login(cfg.sender_email, cfg.sender_password)
            server.send_message(msg)

    async def send_alert(self, message: str, subject: str = "") -> bool:
        cfg = self._config
        if not cfg.alert_email:
            logger.debug("No alert email configured, skipping email")
            return False
        if not cfg.sender_email or not cfg.sender_password:
            logger.warning("Email credentials not configured")
            return False

        msg = self._build_message(message, subject or "Lending pool alert")
        try:
            await asyncio.to_thread(self._deliver, msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send email to %s: %s", cfg.alert_email, e)
            return False

        logger.info("Alert email sent to %s", cfg.alert_email)
        return True

    async def send_log(self, message: str, silent: bool = True) -> bool:
        """Silent logs are skipped; anything else is mailed as a report."""
        if silent:
            return False
        return await self.send_alert(message, subject="Pool report")
