"""SMS delivery through an HTTP provider (JSON POST, bearer token)."""

import logging
import re
from typing import Optional

import httpx

from mmart.channels.base import ChannelSender
from mmart.core.errors import DeliveryFailed

logger = logging.getLogger(__name__)


def format_phone_number(phone_number: str, default_country_code: str) -> str:
    """Digits only; local numbers (10 digits or fewer) get the default country code."""
    cleaned = re.sub(r"[^0-9]", "", phone_number or "")
    if cleaned and len(cleaned) <= 10 and default_country_code:
        return default_country_code + cleaned.lstrip("0")
    return cleaned


class HttpSmsSender(ChannelSender):
    name = "sms"

    def __init__(
        self,
        api_url: str,
        api_key: str,
        api_secret: str = "",
        sender_id: str = "",
        default_country_code: str = "",
        timeout: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.api_secret = api_secret
        self.sender_id = sender_id
        self.default_country_code = default_country_code
        self.timeout = timeout
        self._transport = transport

    def _deliver(self, address: str, message: str, subject: Optional[str] = None, html: Optional[str] = None) -> None:
        to = format_phone_number(address, self.default_country_code)
        if not to:
            raise DeliveryFailed("Phone number is empty after formatting")
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "from": self.sender_id,
            "to": to,
            "message": message,
            "api_secret": self.api_secret,
        }
        logger.info("Sending SMS to %s", to)
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                resp = client.post(self.api_url, json=payload, headers=headers)
        except httpx.RequestError as e:
            raise DeliveryFailed(f"SMS provider unreachable: {e}") from e
        if resp.status_code >= 400:
            raise DeliveryFailed(f"SMS provider returned {resp.status_code}: {resp.text[:200]}")
        logger.info("SMS sent to %s", to)
