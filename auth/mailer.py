"""
auth/mailer.py -- Transactional email over SMTP.

Mailer is built once from Settings and handed to AuthService. is_configured
doubles as the switch for email verification: when SMTP_HOST, SMTP_USER and
SMTP_PASSWORD are all set, new accounts must confirm their address before
logging in; otherwise accounts are verified on creation.

Send methods return True/False and never raise. A failed send is logged and
the caller decides what to tell the user.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import TYPE_CHECKING
from urllib.parse import urlencode

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("labelforge.mail")


def _redact(email: str) -> str:
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class Mailer:
    def __init__(self, settings: Settings) -> None:
        self.host = settings.smtp_host
        self.port = settings.smtp_port
        self.user = settings.smtp_user
        self.password = settings.smtp_password
        self.use_tls = settings.smtp_use_tls
        self.from_addr = settings.smtp_from or settings.smtp_user
        self.app_url = settings.app_url.rstrip("/")

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.user and self.password)

    def send_verification_email(self, to: str, token: str) -> bool:
        link = f"{self.app_url}/verify-email?{urlencode({'token': token})}"
        return self._send(
            to,
            "Confirm your email address",
            "Welcome to LabelForge!\n\n"
            f"Confirm your email address by opening this link:\n{link}\n\n"
            "The link expires in 24 hours. If you did not create an account, ignore this message.\n",
        )

    def send_password_reset_email(self, to: str, token: str) -> bool:
        link = f"{self.app_url}/reset-password?{urlencode({'token': token})}"
        return self._send(
            to,
            "Reset your password",
            "A password reset was requested for your LabelForge account.\n\n"
            f"Choose a new password here:\n{link}\n\n"
            "The link expires in 1 hour. If you did not ask for this, ignore this message.\n",
        )

    def _send(self, to: str, subject: str, body: str) -> bool:
        if not self.is_configured:
            logger.info("Email not configured; dropping '%s' to %s", subject, _redact(to))
            return False

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.from_addr
        msg["To"] = to
        msg.set_content(body)

        context = ssl.create_default_context()
        try:
            if self.use_tls:
                with smtplib.SMTP(self.host, self.port, timeout=30) as server:
                    server.starttls(context=context)
                    server.login(self.user, self.password)
                    server.send_message(msg)
            else:
                with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=30) as server:
                    server.login(self.user, self.password)
                    server.send_message(msg)
        except (smtplib.SMTPException, OSError):
            logger.exception("Failed to send '%s' to %s via %s:%d", subject, _redact(to), self.host, self.port)
            return False

        logger.info("Sent '%s' to %s", subject, _redact(to))
        return True
