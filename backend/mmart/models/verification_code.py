import enum

from sqlalchemy import Column, String, DateTime, ForeignKey, Index, text
from sqlalchemy.sql import func

from mmart.core.database import Base


class VerificationChannel(str, enum.Enum):
    phone = "phone"
    email = "email"


class VerificationCode(Base):
    __tablename__ = "verification_codes"
    __table_args__ = (
        # At most one live (unused) code per owner and channel
        Index(
            "uq_verification_codes_live",
            "owner_id",
            "channel",
            unique=True,
            postgresql_where=text("used_at IS NULL"),
            sqlite_where=text("used_at IS NULL"),
        ),
    )

    id = Column(String(36), primary_key=True, index=True)
    owner_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    channel = Column(String(20), nullable=False)  # phone, email
    contact = Column(String(255), nullable=False)  # phone number or email the code was sent to
    code = Column(String(10), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
