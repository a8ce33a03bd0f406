# email_sender.py — Fire-and-forget SMTP notifications
"""
Configuration via environment variables:
  SMTP_HOST=smtp.example.com   (unset disables delivery; messages are logged)
  SMTP_PORT=587
  SMTP_USER= / SMTP_PASSWORD=
  SMTP_USE_TLS=true
  EMAIL_FROM=no-reply@certisphere.local
"""
import asyncio
import os
import logging
import smtplib
from email.message import EmailMessage

logger = logging.getLogger("certisphere.email")

SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "true").lower() == "true"
EMAIL_FROM = os.getenv("EMAIL_FROM", "no-reply@certisphere.local")


class EmailSender:
    """Sends plain-text email over SMTP in a worker thread."""

    def __init__(self, host: str = SMTP_HOST, port: int = SMTP_PORT,
                 username: str = SMTP_USER, password: str = SMTP_PASSWORD,
                 sender: str = EMAIL_FROM, use_tls: bool = SMTP_USE_TLS):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.use_tls = use_tls

    @property
    def enabled(self) -> bool:
        return bool(self.host)

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=30) as server:
            if self.use_tls:
                server.starttls()
            if self.username:
                server.login(self.username, self.password)
            server.send_message(message)

    async def send(self, to: str, subject: str, body: str) -> None:
        if not self.enabled:
            logger.info(f"Email delivery disabled (SMTP_HOST not set); skipped '{subject}' to {to}")
            return

        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)

        await asyncio.to_thread(self._deliver, message)
        logger.info(f"Email sent: '{subject}' to {to}")


_email_sender = EmailSender()


def get_email_sender() -> EmailSender:
    return _email_sender
