"""One-time verification codes for phone numbers and email addresses."""

import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mmart.channels import ChannelSenders
from mmart.core.config import settings
from mmart.core.errors import DeliveryFailed, MissingContact
from mmart.models.user import User
from mmart.models.verification_code import VerificationChannel, VerificationCode

logger = logging.getLogger(__name__)


def generate_numeric_code(length: int) -> str:
    """Uniform over the full fixed-length range, e.g. 6 digits -> 100000..999999."""
    low = 10 ** (length - 1)
    return str(low + secrets.randbelow(9 * low))


@dataclass(frozen=True)
class IssuedCode:
    record: VerificationCode
    delivered: bool


class VerificationCodeIssuer:
    def __init__(
        self,
        senders: ChannelSenders,
        code_length: Optional[int] = None,
        expire_minutes: Optional[int] = None,
    ):
        self.senders = senders
        self.code_length = code_length or settings.VERIFICATION_CODE_LENGTH
        self.expire_minutes = expire_minutes or settings.VERIFICATION_CODE_EXPIRE_MINUTES

    @staticmethod
    def contact_for(user: User, channel: VerificationChannel) -> Optional[str]:
        if channel == VerificationChannel.phone:
            return user.phone_number or None
        return user.email or None

    @staticmethod
    def is_verified(user: User, channel: VerificationChannel) -> bool:
        if channel == VerificationChannel.phone:
            return user.phone_verified_at is not None
        return user.email_verified_at is not None

    def issue(self, db: Session, user: User, channel: VerificationChannel) -> IssuedCode:
        """Supersede any unused code, store a fresh one and try to deliver it.

        The stored code stays valid when delivery fails so the user can retry.
        """
        contact = self.contact_for(user, channel)
        if not contact:
            raise MissingContact(f"No {channel.value} on file for this account.")

        record = None
        for attempt in range(2):
            now = datetime.now(timezone.utc)
            db.query(VerificationCode).filter(
                VerificationCode.owner_id == user.id,
                VerificationCode.channel == channel.value,
                VerificationCode.used_at.is_(None),
            ).update({VerificationCode.used_at: now}, synchronize_session=False)
            record = VerificationCode(
                id=str(uuid.uuid4()),
                owner_id=user.id,
                channel=channel.value,
                contact=contact,
                code=generate_numeric_code(self.code_length),
                expires_at=now + timedelta(minutes=self.expire_minutes),
            )
            db.add(record)
            try:
                db.commit()
                break
            except IntegrityError:
                # Another request inserted a live code between our update and insert
                db.rollback()
                if attempt:
                    raise
                logger.warning(
                    "Concurrent %s code issuance for user %s; retrying",
                    channel.value,
                    user.id,
                    extra={"channel": channel.value, "user_id": user.id},
                )

        logger.info(
            "Issued %s verification code for user %s (expires in %s min)",
            channel.value,
            user.id,
            self.expire_minutes,
            extra={"channel": channel.value, "user_id": user.id},
        )
        return IssuedCode(record=record, delivered=self.dispatch(record))

    def dispatch(self, record: VerificationCode) -> bool:
        message = (
            f"Your {settings.APP_NAME} verification code is: {record.code}. "
            f"This code will expire in {self.expire_minutes} minutes."
        )
        sender = self.senders.for_channel(record.channel)
        delivered = sender.send(
            record.contact,
            message,
            subject=f"Verify your {record.channel} - {settings.APP_NAME}",
        )
        if not delivered:
            logger.warning(
                "Verification code %s not delivered via %s; record kept for resend",
                record.id,
                record.channel,
                extra={"error_code": DeliveryFailed.code, "channel": record.channel, "user_id": record.owner_id},
            )
        return delivered

    def verify(self, db: Session, user: User, channel: VerificationChannel, submitted_code: str) -> bool:
        """True once per issued code. Wrong, expired, used and missing codes all give False."""
        code = "".join(c for c in (submitted_code or "") if c.isdigit())
        if len(code) != self.code_length:
            return False
        contact = self.contact_for(user, channel)
        if not contact:
            return False

        now = datetime.now(timezone.utc)
        record = (
            db.query(VerificationCode)
            .filter(
                VerificationCode.owner_id == user.id,
                VerificationCode.channel == channel.value,
                VerificationCode.contact == contact,
                VerificationCode.code == code,
                VerificationCode.used_at.is_(None),
                VerificationCode.expires_at > now,
            )
            .order_by(VerificationCode.created_at.desc())
            .first()
        )
        if not record:
            return False

        # Conditional so two racing verifies cannot both claim the same row
        claimed = (
            db.query(VerificationCode)
            .filter(VerificationCode.id == record.id, VerificationCode.used_at.is_(None))
            .update({VerificationCode.used_at: now}, synchronize_session=False)
        )
        if not claimed:
            db.rollback()
            return False

        if channel == VerificationChannel.phone:
            user.phone_verified_at = now
        else:
            user.email_verified_at = now
        db.commit()
        logger.info(
            "User %s verified %s",
            user.id,
            channel.value,
            extra={"channel": channel.value, "user_id": user.id},
        )
        return True
