"""Hand targeted vouchers to the users whose history matches the voucher's criteria."""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from mmart.channels.base import ChannelSender
from mmart.core.config import settings
from mmart.core.errors import VoucherCodeCollision
from mmart.models.catalog import Product
from mmart.models.order import Order, OrderItem
from mmart.models.user import User
from mmart.models.voucher import QualificationType, UserVoucher, Voucher, VoucherType
from mmart.schemas.voucher import VoucherCreate, VoucherCriteria, VoucherSchedule
from mmart.services.vouchers import as_utc, create_voucher, generate_voucher_code

logger = logging.getLogger(__name__)


def _money(value) -> str:
    return f"{settings.CURRENCY_SYMBOL}{value:,.2f}"


def voucher_notification(user: User, voucher: Voucher) -> tuple[str, str, str]:
    """Subject, plain text and HTML for a 'you received a voucher' email."""
    expiry = voucher.expires_at.strftime("%b %d, %Y") if voucher.expires_at else "No expiry"
    if voucher.type == VoucherType.percentage.value:
        discount = f"{Decimal(voucher.value).normalize():f}% off"
    else:
        discount = f"{_money(voucher.value)} off"
    min_spend = f" on orders above {_money(voucher.min_spend)}" if voucher.min_spend else ""
    subject = f"You've Received a Special Voucher - {discount}!"

    text = (
        f"Hello {user.name},\n\n"
        f"Here is {discount}{min_spend} on your next purchase at {settings.APP_NAME}.\n"
        f"Code: {voucher.code}\nValid until: {expiry}\n\n"
        "Enter this code at checkout to redeem it."
    )
    shop_link = ""
    if settings.SHOP_URL:
        shop_link = (
            f'<div style="text-align: center; margin: 25px 0;">'
            f'<a href="{settings.SHOP_URL}" style="background-color: #0066cc; color: white; padding: 12px 25px; '
            f'text-decoration: none; border-radius: 4px; font-weight: bold;">Shop Now</a></div>'
        )
    terms = "- Valid until " + expiry + "<br>"
    if voucher.min_spend:
        terms += f"- Minimum spend of {_money(voucher.min_spend)} required<br>"
    html = f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <div style="background-color: #0066cc; color: white; padding: 20px; text-align: center;">
    <h1>Special Offer Just for You!</h1>
  </div>
  <div style="background-color: #f8f9fa; padding: 20px; border: 1px solid #ddd;">
    <p>Hello {user.name},</p>
    <p>We're excited to offer you a special discount on your next purchase at {settings.APP_NAME}!</p>
    <div style="background-color: white; border: 2px dashed #0066cc; padding: 15px; text-align: center; margin: 20px 0;">
      <h2 style="color: #0066cc; margin-bottom: 5px;">{discount}{min_spend}</h2>
      <p style="font-size: 18px; font-weight: bold; letter-spacing: 2px; margin: 10px 0;">{voucher.code}</p>
      <p style="color: #666; margin-top: 5px;">Valid until: {expiry}</p>
    </div>
    <p>To redeem, simply enter this code at checkout.</p>
    {shop_link}
    <p style="font-size: 12px; color: #666;">Terms &amp; Conditions:<br>
    - Cannot be combined with other offers<br>
    {terms}</p>
  </div>
  <div style="text-align: center; padding: 15px; font-size: 12px; color: #666;">
    <p>Thank you for shopping with {settings.APP_NAME}!</p>
  </div>
</div>
"""
    return subject, text, html


class VoucherNotifier:
    def __init__(self, email_sender: ChannelSender):
        self.email_sender = email_sender

    def notify(self, user: User, voucher: Voucher) -> bool:
        subject, text, html = voucher_notification(user, voucher)
        sent = self.email_sender.send(user.email, text, subject=subject, html=html)
        if not sent:
            logger.warning(
                "Voucher notification for %s not delivered to user %s",
                voucher.code,
                user.id,
                extra={"voucher_code": voucher.code, "user_id": user.id, "channel": "email"},
            )
        return sent


def qualifying_users(db: Session, criteria: VoucherCriteria, now: Optional[datetime] = None) -> Query:
    """Users matching every criterion that is set."""
    now = now or datetime.now(timezone.utc)
    query = db.query(User)

    if criteria.min_spend is not None and criteria.time_period:
        since = now - timedelta(days=criteria.time_period)
        spenders = (
            select(Order.user_id)
            .where(Order.created_at >= since)
            .group_by(Order.user_id)
            .having(func.sum(Order.total) >= float(criteria.min_spend))
        )
        query = query.filter(User.id.in_(spenders))

    if criteria.min_orders is not None:
        frequent = select(Order.user_id).group_by(Order.user_id).having(func.count(Order.id) >= criteria.min_orders)
        if criteria.time_period:
            frequent = frequent.where(Order.created_at >= now - timedelta(days=criteria.time_period))
        query = query.filter(User.id.in_(frequent))

    if criteria.product_ids:
        buyers = (
            select(Order.user_id)
            .join(OrderItem, OrderItem.order_id == Order.id)
            .where(OrderItem.product_id.in_(criteria.product_ids))
        )
        query = query.filter(User.id.in_(buyers))

    if criteria.category_ids:
        category_buyers = (
            select(Order.user_id)
            .join(OrderItem, OrderItem.order_id == Order.id)
            .join(Product, Product.id == OrderItem.product_id)
            .where(Product.category_id.in_(criteria.category_ids))
        )
        query = query.filter(User.id.in_(category_buyers))

    if criteria.registration_days is not None:
        query = query.filter(User.created_at >= now - timedelta(days=criteria.registration_days))

    return query


def assign_to_qualifying_users(db: Session, voucher: Voucher, notifier: Optional[VoucherNotifier] = None) -> int:
    """Attach the voucher to every qualifying user who does not hold it yet. Returns how many were added."""
    if not voucher.criteria:
        return 0
    criteria = VoucherCriteria.model_validate(voucher.criteria)

    holders = select(UserVoucher.user_id).where(UserVoucher.voucher_id == voucher.id)
    candidates = qualifying_users(db, criteria).filter(User.id.not_in(holders)).all()

    assigned = []
    for user in candidates:
        try:
            with db.begin_nested():
                db.add(UserVoucher(id=str(uuid.uuid4()), user_id=user.id, voucher_id=voucher.id))
        except IntegrityError:
            # Another run assigned it first
            continue
        assigned.append(user)
    db.commit()

    if criteria.send_email and notifier is not None:
        for user in assigned:
            notifier.notify(user, voucher)

    logger.info(
        "Voucher %s assigned to %s users",
        voucher.code,
        len(assigned),
        extra={"voucher_code": voucher.code},
    )
    return len(assigned)


def schedule_distribution(
    db: Session,
    payload: VoucherSchedule,
    notifier: Optional[VoucherNotifier] = None,
) -> tuple[Voucher, int]:
    """Create a targeted voucher from criteria and optionally hand it out right away."""
    fields = payload.model_dump(exclude={"code", "assign_now"})
    fields["qualification_type"] = QualificationType.targeted
    voucher = None
    if payload.code:
        voucher = create_voucher(db, VoucherCreate(code=payload.code, **fields))
    else:
        for _ in range(settings.VOUCHER_CODE_MAX_ATTEMPTS):
            try:
                voucher = create_voucher(db, VoucherCreate(code="VCH" + generate_voucher_code(8), **fields))
                break
            except VoucherCodeCollision:
                continue
        if voucher is None:
            raise VoucherCodeCollision("Could not generate a unique voucher code.")

    assigned = assign_to_qualifying_users(db, voucher, notifier) if payload.assign_now else 0
    return voucher, assigned


def process_assignments(db: Session, notifier: Optional[VoucherNotifier] = None) -> int:
    """Run assignment for every live targeted voucher that has criteria."""
    now = datetime.now(timezone.utc)
    vouchers = (
        db.query(Voucher)
        .filter(
            Voucher.qualification_type == QualificationType.targeted.value,
            Voucher.is_active.is_(True),
            Voucher.criteria.isnot(None),
        )
        .order_by(Voucher.created_at)
        .all()
    )
    logger.info("Found %s targeted vouchers to process", len(vouchers))
    total = 0
    for voucher in vouchers:
        if voucher.expires_at is not None and as_utc(voucher.expires_at) <= now:
            continue
        total += assign_to_qualifying_users(db, voucher, notifier)
    logger.info("Voucher assignment completed; %s assignments made", total)
    return total
