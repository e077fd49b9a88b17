from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, Numeric, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from mmart.core.database import Base


class VoucherUsage(Base):
    """One row per successful redemption. Append-only."""

    __tablename__ = "voucher_usages"
    __table_args__ = (
        # sequence is the user's n-th redemption; duplicates mean a racing request lost
        UniqueConstraint("voucher_id", "user_id", "sequence", name="uq_voucher_usages_user_sequence"),
        # one voucher per order; NULL order_id (no order) is never a duplicate
        UniqueConstraint("order_id", name="uq_voucher_usages_order"),
    )

    id = Column(String(36), primary_key=True, index=True)
    voucher_id = Column(String(36), ForeignKey("vouchers.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=True, index=True)
    sequence = Column(Integer, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    voucher = relationship("Voucher", back_populates="usages")
    user = relationship("User")
