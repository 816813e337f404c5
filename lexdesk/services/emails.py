"""Outbound email over SMTP"""

import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional

from lexdesk.config import SmtpSettings

logger = logging.getLogger(__name__)


class EmailService:
    """Sends HTML mail; returns False without SMTP settings"""

    def __init__(self, settings: Optional[SmtpSettings] = None):
        self.settings = settings or SmtpSettings.from_env()

    def has_smtp_config(self) -> bool:
        return bool(self.settings.host and self.settings.sender)

    async def send_email(self, to: List[str], subject: str, html: str) -> bool:
        recipients = [address for address in to if address]
        if not recipients or not self.has_smtp_config():
            return False
        message = self._build_message(recipients, subject, html)
        # smtplib is blocking
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._deliver, recipients, message)
        logger.info("Sent email '%s' to %d recipient(s)", subject, len(recipients))
        return True

    def _build_message(self, to: List[str], subject: str, html: str) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = self.settings.sender
        message["To"] = ", ".join(to)
        message.attach(MIMEText(html, "html", "utf-8"))
        return message

    def _deliver(self, to: List[str], message: MIMEMultipart):
        with smtplib.SMTP(self.settings.host, self.settings.port, timeout=30) as connection:
            if self.settings.port != 25:
                connection.starttls()
            if self.settings.user and self.settings.password:
                connection.login(self.settings.user, self.settings.password)
            connection.sendmail(self.settings.sender, to, message.as_string())
