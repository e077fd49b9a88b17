import enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from mmart.core.database import Base


class VoucherType(str, enum.Enum):
    percentage = "percentage"
    fixed = "fixed"


class QualificationType(str, enum.Enum):
    manual = "manual"  # anyone holding the code
    automatic = "automatic"  # listed for every shopper
    targeted = "targeted"  # only users in user_vouchers


voucher_categories = Table(
    "voucher_categories",
    Base.metadata,
    Column("voucher_id", String(36), ForeignKey("vouchers.id", ondelete="CASCADE"), primary_key=True),
    Column("category_id", String(36), ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True),
)

voucher_products = Table(
    "voucher_products",
    Base.metadata,
    Column("voucher_id", String(36), ForeignKey("vouchers.id", ondelete="CASCADE"), primary_key=True),
    Column("product_id", String(36), ForeignKey("products.id", ondelete="CASCADE"), primary_key=True),
)


class Voucher(Base):
    __tablename__ = "vouchers"

    id = Column(String(36), primary_key=True, index=True)
    code = Column(String(64), unique=True, index=True, nullable=False)
    type = Column(String(20), nullable=False)  # percentage, fixed
    value = Column(Numeric(10, 2), nullable=False)
    min_spend = Column(Numeric(10, 2), nullable=False, default=0)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    max_usage_per_user = Column(Integer, default=1, nullable=False)
    # Cache of len(usages); only changed inside the redemption transaction
    total_usage = Column(Integer, default=0, nullable=False)
    max_total_usage = Column(Integer, nullable=True)  # None = uncapped
    description = Column(Text, nullable=True)
    qualification_type = Column(String(20), default=QualificationType.manual.value, nullable=False)
    # min_spend, time_period, min_orders, product_ids, category_ids, registration_days, send_email
    criteria = Column(JSON(none_as_null=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    categories = relationship("Category", secondary=voucher_categories)
    products = relationship("Product", secondary=voucher_products)
    usages = relationship("VoucherUsage", back_populates="voucher", order_by="VoucherUsage.created_at")
    assignments = relationship("UserVoucher", back_populates="voucher", cascade="all, delete-orphan")

    @property
    def is_scoped(self) -> bool:
        return bool(self.categories or self.products)

    @property
    def category_ids(self) -> list[str]:
        return [c.id for c in self.categories]

    @property
    def product_ids(self) -> list[str]:
        return [p.id for p in self.products]


class UserVoucher(Base):
    """Voucher assigned to a user (targeted eligibility and 'my vouchers')."""

    __tablename__ = "user_vouchers"
    __table_args__ = (UniqueConstraint("user_id", "voucher_id", name="uq_user_vouchers_user_voucher"),)

    id = Column(String(36), primary_key=True, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    voucher_id = Column(String(36), ForeignKey("vouchers.id", ondelete="CASCADE"), nullable=False, index=True)
    is_redeemed = Column(Boolean, default=False, nullable=False)
    redeemed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="voucher_assignments")
    voucher = relationship("Voucher", back_populates="assignments")
