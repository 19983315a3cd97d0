"""
SMTP transport for outgoing email.

Port 465 uses implicit TLS, port 587 upgrades with STARTTLS. When SMTP_HOST,
SMTP_USER or SMTP_PASS is missing, `smtp_settings_from_env()` returns None and
email delivery is disabled.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import formatdate, make_msgid

import aiosmtplib

from core import settings

DEFAULT_SMTP_PORT = 587
DEFAULT_TIMEOUT_S = 30.0


class MailerError(RuntimeError):
    pass


@dataclass(frozen=True)
class SmtpSettings:
    host: str
    port: int
    user: str
    password: str
    sender: str | None = None
    timeout_s: float = DEFAULT_TIMEOUT_S


@dataclass(frozen=True)
class OutgoingEmail:
    to: str
    subject: str
    html: str | None = None
    text: str | None = None
    sender: str | None = None
    bcc: tuple[str, ...] = field(default_factory=tuple)


def smtp_settings_from_env() -> SmtpSettings | None:
    host = settings.env_str("SMTP_HOST")
    user = settings.env_str("SMTP_USER")
    password = settings.env_str("SMTP_PASS")
    if not host or not user or not password:
        return None
    return SmtpSettings(
        host=host,
        port=settings.env_int("SMTP_PORT", DEFAULT_SMTP_PORT),
        user=user,
        password=password,
        sender=settings.env_str("SMTP_FROM") or None,
    )


def split_addresses(raw: str | None) -> tuple[str, ...]:
    """
    Split "a@x.com; b@y.com" or "a@x.com, b@y.com" into addresses.
    """
    return tuple(part.strip() for part in re.split(r"[;,]", raw or "") if part.strip())


def build_message(email: OutgoingEmail, *, default_sender: str | None = None) -> EmailMessage:
    sender = email.sender or default_sender
    if not sender:
        raise MailerError("No sender address configured (set SMTP_FROM).")
    if not email.to.strip():
        raise MailerError("Recipient address is empty.")
    if not email.html and not email.text:
        raise MailerError("Email has neither html nor text content.")

    message = EmailMessage()
    message["From"] = sender
    message["To"] = email.to
    if email.bcc:
        message["Bcc"] = ", ".join(email.bcc)
    message["Subject"] = email.subject
    message["Date"] = formatdate(localtime=True)
    message["Message-ID"] = make_msgid()

    if email.text:
        message.set_content(email.text)
        if email.html:
            message.add_alternative(email.html, subtype="html")
    else:
        message.set_content(email.html, subtype="html")
    return message


class Mailer:
    """
    Thin wrapper around `aiosmtplib.send` bound to one SMTP configuration.
    """

    def __init__(self, smtp: SmtpSettings) -> None:
        self.smtp = smtp

    @property
    def default_sender(self) -> str:
        return self.smtp.sender or self.smtp.user

    async def send(self, email: OutgoingEmail) -> str:
        """
        Send one message and return its Message-ID.
        """
        message = build_message(email, default_sender=self.default_sender)
        try:
            await aiosmtplib.send(
                message,
                hostname=self.smtp.host,
                port=self.smtp.port,
                username=self.smtp.user,
                password=self.smtp.password,
                use_tls=self.smtp.port == 465,
                start_tls=self.smtp.port == 587,
                timeout=self.smtp.timeout_s,
            )
        except (aiosmtplib.SMTPException, OSError) as exc:
            raise MailerError(f"SMTP send failed: {exc}") from exc
        return str(message["Message-ID"])
