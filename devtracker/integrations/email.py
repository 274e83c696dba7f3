"""Email delivery clients with Protocol pattern for dependency injection.

Provides SmtpEmailClient (STARTTLS relay), ResendEmailClient (REST API) and
LogEmailClient (development: writes the message to the log). Every client
returns the provider message id, which delivery webhooks use to find the
matching email log row.
"""

import logging
import smtplib
import uuid
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate, make_msgid
from typing import Protocol

import httpx
from pydantic import BaseModel

from ..config import settings
from ..errors import ConfigurationError, EmailDeliveryError
from ..security import decrypt_value, is_encrypted

logger = logging.getLogger(__name__)


class OutboundEmail(BaseModel):
    to: str
    subject: str
    html: str
    text: str = ""


class EmailClient(Protocol):
    """Email provider interface."""

    def send(self, email: OutboundEmail) -> str: ...


class SmtpEmailClient:
    """SMTP relay with TLS. The generated Message-ID is the provider id."""

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        from_email: str,
        sender_name: str = "",
        timeout: float = 15.0,
    ) -> None:
        self._host = host
        self._port = port
        self._user = user
        # Decrypt password if it looks encrypted (Fernet tokens start with 'gAAAAA')
        self._password = decrypt_value(password) if is_encrypted(password) else password
        self._from_email = from_email or user
        self._sender_name = sender_name
        self._timeout = timeout

    def _build(self, email: OutboundEmail) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        domain = self._from_email.split("@")[-1] if "@" in self._from_email else "local"
        msg["From"] = formataddr((self._sender_name, self._from_email))
        msg["To"] = email.to
        msg["Reply-To"] = self._from_email
        msg["Date"] = formatdate(localtime=False)
        msg["Message-ID"] = make_msgid(domain=domain)
        msg["Subject"] = email.subject
        if email.text:
            msg.attach(MIMEText(email.text, "plain", "utf-8"))
        msg.attach(MIMEText(email.html, "html", "utf-8"))
        return msg

    def send(self, email: OutboundEmail) -> str:
        msg = self._build(email)
        try:
            with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
                server.ehlo()
                server.starttls()
                server.ehlo()
                server.login(self._user, self._password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise EmailDeliveryError(f"SMTP send to {email.to} failed: {exc}") from exc
        logger.info("Email sent via SMTP to %s (%s)", email.to, email.subject)
        return msg["Message-ID"]


class ResendEmailClient:
    """Resend REST API client (POST /emails)."""

    def __init__(
        self,
        api_key: str,
        from_email: str,
        base_url: str = "https://api.resend.com",
        retries: int = 2,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._from_email = from_email
        self._client = http_client or httpx.Client(
            base_url=base_url,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=10.0,
            transport=httpx.HTTPTransport(retries=retries),
        )

    def send(self, email: OutboundEmail) -> str:
        payload = {
            "from": self._from_email,
            "to": [email.to],
            "subject": email.subject,
            "html": email.html,
        }
        if email.text:
            payload["text"] = email.text
        try:
            response = self._client.post("/emails", json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise EmailDeliveryError(
                f"Resend rejected email to {email.to}: HTTP {exc.response.status_code} {exc.response.text[:200]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise EmailDeliveryError(f"Resend unreachable: {exc}") from exc

        message_id = response.json().get("id")
        if not message_id:
            raise EmailDeliveryError("Resend response carried no message id")
        logger.info("Email sent via Resend to %s (id=%s)", email.to, message_id)
        return message_id


class LogEmailClient:
    """Development client: logs the message instead of sending it."""

    def send(self, email: OutboundEmail) -> str:
        message_id = f"dev-{uuid.uuid4()}"
        logger.info(
            "EMAIL (development mode) id=%s to=%s subject=%r\n%s",
            message_id,
            email.to,
            email.subject,
            email.text or email.html,
        )
        return message_id


def create_email_client() -> EmailClient:
    """Factory: build the configured email client.

    Raises ConfigurationError when the selected provider lacks credentials.
    """
    provider = settings.email_provider.lower().strip()
    if provider == "smtp":
        if not settings.smtp_user or not settings.smtp_password:
            raise ConfigurationError("SMTP_USER and SMTP_PASSWORD must be set for EMAIL_PROVIDER=smtp")
        return SmtpEmailClient(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            from_email=settings.email_from,
            sender_name=settings.email_sender_name,
        )
    if provider == "resend":
        if not settings.resend_api_key:
            raise ConfigurationError("RESEND_API_KEY must be set for EMAIL_PROVIDER=resend")
        return ResendEmailClient(
            api_key=settings.resend_api_key,
            from_email=formataddr((settings.email_sender_name, settings.email_from)),
            base_url=settings.resend_api_url,
            retries=settings.email_http_retries,
        )
    if provider == "log":
        return LogEmailClient()
    raise ConfigurationError(f"Unknown EMAIL_PROVIDER: {settings.email_provider!r}")
