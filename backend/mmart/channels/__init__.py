"""Delivery channels, chosen once per process from settings."""

from dataclasses import dataclass
from functools import lru_cache

from mmart.channels.base import ChannelSender
from mmart.channels.email import BrevoEmailSender, SmtpEmailSender
from mmart.channels.sms import HttpSmsSender
from mmart.channels.stub import LoggingSender
from mmart.core.config import Settings, settings


@dataclass(frozen=True)
class ChannelSenders:
    phone: ChannelSender
    email: ChannelSender

    def for_channel(self, channel: str) -> ChannelSender:
        return self.phone if channel == "phone" else self.email


def build_sms_sender(cfg: Settings) -> ChannelSender:
    provider = (cfg.SMS_PROVIDER or "dummy").lower()
    if provider == "http":
        return HttpSmsSender(
            api_url=cfg.SMS_API_URL,
            api_key=cfg.SMS_API_KEY,
            api_secret=cfg.SMS_API_SECRET,
            sender_id=cfg.SMS_SENDER_ID,
            default_country_code=cfg.SMS_DEFAULT_COUNTRY_CODE,
            timeout=cfg.CHANNEL_TIMEOUT_SECONDS,
        )
    if provider != "dummy":
        raise ValueError(f"Unsupported SMS_PROVIDER: {cfg.SMS_PROVIDER}")
    return LoggingSender("dummy-sms")


def build_email_sender(cfg: Settings) -> ChannelSender:
    provider = (cfg.EMAIL_PROVIDER or "dummy").lower()
    subject = f"Your {cfg.APP_NAME} verification code"
    if provider == "brevo":
        return BrevoEmailSender(
            api_key=cfg.BREVO_API_KEY,
            from_email=cfg.MAIL_FROM_EMAIL,
            from_name=cfg.MAIL_FROM_NAME,
            base_url=cfg.BREVO_BASE_URL,
            default_subject=subject,
            timeout=cfg.CHANNEL_TIMEOUT_SECONDS,
        )
    if provider == "smtp":
        return SmtpEmailSender(
            host=cfg.SMTP_HOST,
            port=cfg.SMTP_PORT,
            user=cfg.SMTP_USER,
            password=cfg.SMTP_PASSWORD,
            from_email=cfg.MAIL_FROM_EMAIL,
            from_name=cfg.MAIL_FROM_NAME,
            default_subject=subject,
            timeout=cfg.CHANNEL_TIMEOUT_SECONDS,
        )
    if provider != "dummy":
        raise ValueError(f"Unsupported EMAIL_PROVIDER: {cfg.EMAIL_PROVIDER}")
    return LoggingSender("dummy-email")


def build_channel_senders(cfg: Settings) -> ChannelSenders:
    return ChannelSenders(phone=build_sms_sender(cfg), email=build_email_sender(cfg))


@lru_cache
def get_channel_senders() -> ChannelSenders:
    return build_channel_senders(settings)


__all__ = [
    "ChannelSender",
    "ChannelSenders",
    "LoggingSender",
    "HttpSmsSender",
    "BrevoEmailSender",
    "SmtpEmailSender",
    "build_channel_senders",
    "get_channel_senders",
]
