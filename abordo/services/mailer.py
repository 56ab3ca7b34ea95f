"""
Mail transports for reminder emails.

Each backend sends one HTML message and returns the provider message id, or
raises TransportError. ``get_transport`` picks the backend from EMAIL_PROVIDER.
"""
import smtplib
import uuid
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Optional, Protocol

import httpx
import structlog

from ..config import Settings, settings as default_settings
from ..errors import TransportError


SENDER_NAME = "A Bordo"
SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"
BREVO_URL = "https://api.brevo.com/v3/smtp/email"


class MailTransport(Protocol):
    name: str

    def send(self, to: str, subject: str, html: str) -> str:
        ...


def _sender_address(settings: Settings) -> Optional[str]:
    return settings.mail_from or settings.smtp_username


class SmtpTransport:
    name = "smtp"

    def __init__(self, settings: Settings):
        self.settings = settings

    def send(self, to: str, subject: str, html: str) -> str:
        s = self.settings
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = formataddr((SENDER_NAME, _sender_address(s) or ""))
        msg["To"] = to
        msg["Message-ID"] = make_msgid(domain=(_sender_address(s) or "abordo.local").split("@")[-1])
        msg.set_content("Apri questa email con un client che supporta l'HTML.")
        msg.add_alternative(html, subtype="html")
        try:
            with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=s.email_timeout_seconds) as smtp:
                if s.smtp_tls:
                    smtp.starttls()
                if s.smtp_username and s.smtp_password:
                    smtp.login(s.smtp_username, s.smtp_password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise TransportError(f"SMTP send failed: {e}") from e
        return msg["Message-ID"]


class SendGridTransport:
    name = "sendgrid"

    def __init__(self, settings: Settings):
        if not settings.sendgrid_api_key:
            raise ValueError("SENDGRID_API_KEY is required")
        self.settings = settings

    def send(self, to: str, subject: str, html: str) -> str:
        payload = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": _sender_address(self.settings), "name": SENDER_NAME},
            "subject": subject,
            "content": [{"type": "text/html", "value": html}],
        }
        headers = {"Authorization": f"Bearer {self.settings.sendgrid_api_key}"}
        try:
            with httpx.Client(timeout=self.settings.email_timeout_seconds) as client:
                response = client.post(SENDGRID_URL, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError(f"SendGrid API error: {e.response.status_code} {e.response.text}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"SendGrid request failed: {e}") from e
        return response.headers.get("x-message-id") or "sendgrid"


class BrevoTransport:
    name = "brevo"

    def __init__(self, settings: Settings):
        if not settings.brevo_api_key:
            raise ValueError("BREVO_API_KEY is required")
        self.settings = settings

    def send(self, to: str, subject: str, html: str) -> str:
        payload = {
            "sender": {"name": SENDER_NAME, "email": _sender_address(self.settings)},
            "to": [{"email": to}],
            "subject": subject,
            "htmlContent": html,
        }
        headers = {"api-key": self.settings.brevo_api_key, "Content-Type": "application/json"}
        try:
            with httpx.Client(timeout=self.settings.email_timeout_seconds) as client:
                response = client.post(BREVO_URL, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError(f"Brevo API error: {e.response.status_code} {e.response.text}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Brevo request failed: {e}") from e
        try:
            return response.json().get("messageId") or "brevo"
        except ValueError:
            return "brevo"


class ConsoleTransport:
    """Development backend: logs the message instead of sending it."""

    name = "console"

    def send(self, to: str, subject: str, html: str) -> str:
        message_id = f"console-{uuid.uuid4()}"
        structlog.get_logger().info("email_console", to=to, subject=subject, message_id=message_id, size=len(html))
        return message_id


def is_configured(settings: Settings = default_settings) -> bool:
    provider = (settings.email_provider or "smtp").lower()
    if provider == "sendgrid":
        return bool(settings.sendgrid_api_key)
    if provider == "brevo":
        return bool(settings.brevo_api_key)
    if provider == "console":
        return True
    return bool(settings.smtp_host and _sender_address(settings))


def get_transport(settings: Settings = default_settings) -> MailTransport:
    provider = (settings.email_provider or "smtp").lower()
    if provider == "sendgrid":
        return SendGridTransport(settings)
    if provider == "brevo":
        return BrevoTransport(settings)
    if provider == "console":
        return ConsoleTransport()
    if provider != "smtp":
        raise ValueError(f"Unknown EMAIL_PROVIDER: {settings.email_provider}")
    return SmtpTransport(settings)
