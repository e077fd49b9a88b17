"""Email delivery: Brevo transactional API or plain SMTP."""

import html as html_lib
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

import httpx

from mmart.channels.base import ChannelSender
from mmart.core.errors import DeliveryFailed

logger = logging.getLogger(__name__)


def _text_to_html(message: str) -> str:
    body = "<br/>".join(html_lib.escape(line) for line in message.splitlines())
    return (
        '<!DOCTYPE html><html><head><meta charset="utf-8"></head>'
        '<body style="font-family: sans-serif; max-width: 560px; margin: 0 auto; padding: 24px;">'
        f'<p style="font-size: 16px; color: #1a1a1a; line-height: 1.5;">{body}</p>'
        "</body></html>"
    )


class BrevoEmailSender(ChannelSender):
    name = "brevo"

    def __init__(
        self,
        api_key: str,
        from_email: str,
        from_name: str,
        base_url: str = "https://api.brevo.com/v3",
        default_subject: str = "",
        timeout: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self.base_url = base_url.rstrip("/")
        self.default_subject = default_subject
        self.timeout = timeout
        self._transport = transport

    def _deliver(self, address: str, message: str, subject: Optional[str] = None, html: Optional[str] = None) -> None:
        data = {
            "sender": {"email": self.from_email, "name": self.from_name},
            "to": [{"email": address}],
            "subject": subject or self.default_subject,
            "htmlContent": html or _text_to_html(message),
            "textContent": message,
        }
        headers = {
            "accept": "application/json",
            "api-key": self.api_key,
            "content-type": "application/json",
        }
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                resp = client.post(f"{self.base_url}/smtp/email", json=data, headers=headers)
        except httpx.RequestError as e:
            raise DeliveryFailed(f"Brevo unreachable: {e}") from e
        if resp.status_code >= 400:
            raise DeliveryFailed(f"Brevo returned {resp.status_code}: {resp.text[:200]}")
        logger.info("Email sent to %s via Brevo", address)


class SmtpEmailSender(ChannelSender):
    name = "smtp"

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        from_email: str,
        from_name: str,
        default_subject: str = "",
        timeout: float = 15.0,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_email = from_email
        self.from_name = from_name
        self.default_subject = default_subject
        self.timeout = timeout

    def _deliver(self, address: str, message: str, subject: Optional[str] = None, html: Optional[str] = None) -> None:
        if not self.host or not self.user:
            raise DeliveryFailed("SMTP not configured (SMTP_HOST/SMTP_USER)")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject or self.default_subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = address
        msg.attach(MIMEText(message, "plain"))
        msg.attach(MIMEText(html or _text_to_html(message), "html"))

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.starttls()
                server.login(self.user, self.password)
                server.sendmail(self.from_email, [address], msg.as_string())
        except smtplib.SMTPAuthenticationError as e:
            raise DeliveryFailed(f"SMTP login failed: {e}") from e
        except (smtplib.SMTPException, OSError, TimeoutError) as e:
            raise DeliveryFailed(f"SMTP error: {e}") from e
        logger.info("Email sent to %s via SMTP", address)
