"""
ComplyTrack - Email Service

Handles transactional email sending.
Supports SendGrid or SMTP; falls back to a mock provider that only logs
when neither is configured.
"""

import asyncio
import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional

import httpx

from app.config import settings

logger = logging.getLogger(__name__)


class EmailProvider:
    """Email provider types."""
    SMTP = "smtp"
    SENDGRID = "sendgrid"
    MOCK = "mock"


@dataclass
class EmailMessage:
    """Email message data structure."""
    to: List[str]
    subject: str
    body_text: str
    body_html: Optional[str] = None
    cc: Optional[List[str]] = None
    reply_to: Optional[str] = None


class EmailService:
    """Service for sending transactional emails."""

    def __init__(self):
        self.from_email = settings.email_from
        self.from_name = settings.mail_from_name

        # SMTP settings
        self.smtp_host = settings.mail_server
        self.smtp_port = settings.mail_port
        self.smtp_username = settings.mail_username
        self.smtp_password = settings.mail_password
        self.smtp_use_tls = settings.mail_use_tls
        self.timeout = settings.mail_timeout_seconds

        # SendGrid settings
        self.sendgrid_api_key = settings.sendgrid_api_key

    def _determine_provider(self) -> str:
        """Determine which email provider to use based on configuration."""
        if self.sendgrid_api_key:
            return EmailProvider.SENDGRID
        elif self.smtp_host:
            return EmailProvider.SMTP
        else:
            return EmailProvider.MOCK

    async def send_email(self, message: EmailMessage) -> bool:
        """
        Send an email using the configured provider.

        Returns False instead of raising when delivery fails.
        """
        provider = self._determine_provider()

        try:
            if provider == EmailProvider.SENDGRID:
                return await self._send_via_sendgrid(message)
            elif provider == EmailProvider.SMTP:
                return await self._send_via_smtp(message)
            else:
                return await self._send_mock(message)
        except Exception as e:
            logger.error(f"Failed to send email via {provider}: {e}")
            return False

    async def _send_via_sendgrid(self, message: EmailMessage) -> bool:
        """Send email via SendGrid API."""
        payload = {
            "personalizations": [
                {"to": [{"email": email} for email in message.to]}
            ],
            "from": {"email": self.from_email, "name": self.from_name},
            "subject": message.subject,
            "content": [{"type": "text/plain", "value": message.body_text}],
        }
        if message.body_html:
            payload["content"].append({"type": "text/html", "value": message.body_html})
        if message.cc:
            payload["personalizations"][0]["cc"] = [{"email": email} for email in message.cc]
        if message.reply_to:
            payload["reply_to"] = {"email": message.reply_to}

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                "https://api.sendgrid.com/v3/mail/send",
                json=payload,
                headers={"Authorization": f"Bearer {self.sendgrid_api_key}"},
            )

        if response.status_code in (200, 202):
            logger.info(f"Email sent via SendGrid to {message.to}")
            return True
        logger.error(f"SendGrid API error: {response.status_code} - {response.text}")
        return False

    def _build_mime(self, message: EmailMessage) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = ", ".join(message.to)
        if message.cc:
            msg["Cc"] = ", ".join(message.cc)
        if message.reply_to:
            msg["Reply-To"] = message.reply_to

        msg.attach(MIMEText(message.body_text, "plain"))
        if message.body_html:
            msg.attach(MIMEText(message.body_html, "html"))
        return msg

    def _smtp_send_blocking(self, message: EmailMessage) -> None:
        msg = self._build_mime(message)
        recipients = list(message.to) + list(message.cc or [])

        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
            if self.smtp_use_tls:
                server.starttls(context=ssl.create_default_context())
            if self.smtp_username and self.smtp_password:
                server.login(self.smtp_username, self.smtp_password)
            server.sendmail(self.from_email, recipients, msg.as_string())

    async def _send_via_smtp(self, message: EmailMessage) -> bool:
        """Send email via SMTP without blocking the event loop."""
        await asyncio.to_thread(self._smtp_send_blocking, message)
        logger.info(f"Email sent via SMTP to {message.to}")
        return True

    async def _send_mock(self, message: EmailMessage) -> bool:
        """Mock email sending for development."""
        logger.info(f"[MOCK EMAIL] To: {message.to} | Subject: {message.subject}")
        logger.debug(f"[MOCK EMAIL] Body: {message.body_text[:200]}...")
        return True
