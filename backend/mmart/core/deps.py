from typing import Generator

from sqlalchemy.orm import Session

from mmart.channels import ChannelSenders, get_channel_senders
from mmart.core.database import SessionLocal
from mmart.services.verification import VerificationCodeIssuer
from mmart.services.voucher_assignment import VoucherNotifier
from mmart.services.vouchers import VoucherRedeemer


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_senders() -> ChannelSenders:
    return get_channel_senders()


def get_verification_issuer() -> VerificationCodeIssuer:
    return VerificationCodeIssuer(get_senders())


def get_voucher_redeemer() -> VoucherRedeemer:
    return VoucherRedeemer()


def get_voucher_notifier() -> VoucherNotifier:
    return VoucherNotifier(get_senders().email)
