from mmart.core.database import Base
from mmart.models.admin_user import AdminUser
from mmart.models.user import User
from mmart.models.catalog import Category, Product
from mmart.models.order import Order, OrderItem
from mmart.models.verification_code import VerificationChannel, VerificationCode
from mmart.models.voucher import (
    QualificationType,
    UserVoucher,
    Voucher,
    VoucherType,
    voucher_categories,
    voucher_products,
)
from mmart.models.voucher_usage import VoucherUsage

__all__ = [
    "Base",
    "AdminUser",
    "User",
    "Category",
    "Product",
    "Order",
    "OrderItem",
    "VerificationChannel",
    "VerificationCode",
    "QualificationType",
    "UserVoucher",
    "Voucher",
    "VoucherType",
    "voucher_categories",
    "voucher_products",
    "VoucherUsage",
]
