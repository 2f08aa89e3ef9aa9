"""Outbound email: transport selection, verification/reset templates, fire-and-forget delivery."""

from __future__ import annotations

import abc
import asyncio
import logging
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from html import escape

import httpx

from wadai.config import Settings
from wadai.models.user import User
from wadai.services.http_client import get_http_client

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html_body: str
    text_body: str | None = None


class EmailDeliveryError(Exception):
    pass


def redact_email(email: str) -> str:
    """Redact an address for logs: 'alice@example.com' -> 'al***@example.com'."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class EmailSender(abc.ABC):
    @abc.abstractmethod
    async def send(self, message: EmailMessage) -> None:
        """Deliver message or raise EmailDeliveryError."""


class MailgunSender(EmailSender):
    """Mailgun HTTP API (production/staging)."""

    def __init__(self, api_key: str, domain: str, sender: str, base_url: str = "https://api.mailgun.net/v3") -> None:
        self.api_key = api_key
        self.domain = domain
        self.sender = sender
        self.url = f"{base_url.rstrip('/')}/{domain}/messages"

    async def send(self, message: EmailMessage) -> None:
        data = {
            "from": self.sender,
            "to": message.to,
            "subject": message.subject,
            "html": message.html_body,
        }
        if message.text_body:
            data["text"] = message.text_body
        try:
            resp = await get_http_client().post(self.url, auth=("api", self.api_key), data=data)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise EmailDeliveryError(f"Mailgun send failed: {e}") from e


class SmtpSender(EmailSender):
    """Plain SMTP (MailHog in development). smtplib is blocking, so it runs in a worker thread."""

    def __init__(self, host: str, port: int, sender_email: str, sender_name: str) -> None:
        self.host = host
        self.port = port
        self.sender_email = sender_email
        self.sender_name = sender_name

    def _build(self, message: EmailMessage) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = formataddr((self.sender_name, self.sender_email))
        msg["To"] = message.to
        msg.attach(MIMEText(message.text_body or message.html_body, "plain", "utf-8"))
        msg.attach(MIMEText(message.html_body, "html", "utf-8"))
        return msg

    def _send_sync(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=10) as server:
            server.sendmail(self.sender_email, [message.to], self._build(message).as_string())

    async def send(self, message: EmailMessage) -> None:
        try:
            await asyncio.to_thread(self._send_sync, message)
        except (smtplib.SMTPException, OSError) as e:
            raise EmailDeliveryError(f"SMTP send failed: {e}") from e


class LoggingSender(EmailSender):
    """Logs a preview instead of sending; used when no transport is configured."""

    async def send(self, message: EmailMessage) -> None:
        logger.info(
            "Email not sent (no transport configured): to=%s subject=%s",
            redact_email(message.to),
            message.subject,
        )


def get_email_sender(settings: Settings) -> EmailSender:
    """Pick the transport once at startup from APP_ENV and SMTP settings."""
    if settings.uses_mailgun:
        return MailgunSender(
            settings.mailgun_api_key,
            settings.mailgun_domain,
            formataddr((settings.email_from_name, settings.email_from)),
            settings.mailgun_base_url,
        )
    if settings.smtp_host:
        return SmtpSender(settings.smtp_host, settings.smtp_port, settings.email_from, settings.email_from_name)
    return LoggingSender()


async def deliver(sender: EmailSender, message: EmailMessage) -> bool:
    """Send and swallow delivery errors (logged). Used from background tasks after commit."""
    try:
        await sender.send(message)
    except EmailDeliveryError as e:
        logger.warning("Email delivery to %s failed: %s", redact_email(message.to), e)
        return False
    logger.debug("Email '%s' sent to %s", message.subject, redact_email(message.to))
    return True


def _link(settings: Settings, path: str, token: str) -> str:
    return f"{settings.frontend_url.rstrip('/')}{path}/{token}"


def build_verification_email(user: User, token: str, settings: Settings) -> EmailMessage:
    url = _link(settings, settings.email_verification_path, token)
    hours = settings.email_verification_token_expire_hours
    name = escape(user.display_name or user.username)
    html_body = (
        "<h1>Confirm your email address</h1>"
        f"<p>Hi {name},</p>"
        "<p>Please confirm your email address by clicking the link below:</p>"
        f'<p><a href="{escape(url)}">Verify email address</a></p>'
        f"<p>This link expires in {hours} hours.</p>"
    )
    text_body = (
        f"Hi {user.display_name or user.username},\n\n"
        f"Please confirm your email address by opening this link:\n\n{url}\n\n"
        f"This link expires in {hours} hours.\n"
    )
    return EmailMessage(to=user.email, subject="Confirm your email address", html_body=html_body, text_body=text_body)


def build_password_reset_email(user: User, token: str, settings: Settings) -> EmailMessage:
    url = _link(settings, settings.password_reset_path, token)
    hours = settings.password_reset_token_expire_hours
    name = escape(user.display_name or user.username)
    html_body = (
        "<h1>Password reset request</h1>"
        f"<p>Hi {name},</p>"
        "<p>We received a request to reset your password. Click the link below to choose a new one:</p>"
        f'<p><a href="{escape(url)}">Reset password</a></p>'
        f"<p>This link expires in {hours} hour(s).</p>"
        "<p>If you did not request this, you can ignore this email; your account is safe.</p>"
    )
    text_body = (
        f"Hi {user.display_name or user.username},\n\n"
        f"We received a request to reset your password. Open this link to choose a new one:\n\n{url}\n\n"
        f"This link expires in {hours} hour(s).\n"
        "If you did not request this, you can ignore this email; your account is safe.\n"
    )
    return EmailMessage(to=user.email, subject="Password reset request", html_body=html_body, text_body=text_body)
