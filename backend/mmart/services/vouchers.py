"""Voucher validation, redemption and generation.

Redemption checks run in a fixed order and stop at the first failure. The
write (counter increment, order claim, usage row) is one savepoint; the
conditional UPDATEs on the voucher counter and on the order's voucher_code,
plus the unique constraints on voucher_usages, settle races between
concurrent requests. ``quote`` runs the same checks and writes nothing.
"""

import logging
import secrets
import string
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterable, Optional, Sequence

from sqlalchemy import distinct, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mmart.core.config import settings
from mmart.core.errors import (
    CatalogItemNotFound,
    MinimumSpendNotMet,
    PerUserLimitReached,
    VoucherAlreadyUsed,
    VoucherCodeCollision,
    VoucherCodeSpaceExhausted,
    VoucherError,
    VoucherExpired,
    VoucherGloballyExhausted,
    VoucherInactive,
    VoucherNotApplicable,
    VoucherNotEligible,
    VoucherNotFound,
)
from mmart.models.catalog import Category, Product
from mmart.models.order import Order
from mmart.models.user import User
from mmart.models.voucher import QualificationType, UserVoucher, Voucher, VoucherType
from mmart.models.voucher_usage import VoucherUsage
from mmart.schemas.voucher import CartItem, VoucherCreate, VoucherTemplate

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
CODE_ALPHABET = string.digits + string.ascii_uppercase


def quantize_money(amount) -> Decimal:
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def generate_voucher_code(length: int) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


@dataclass(frozen=True)
class LineItem:
    product_id: str
    unit_price: Decimal
    quantity: int
    category_id: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return Decimal(self.unit_price) * self.quantity


@dataclass(frozen=True)
class RedemptionContext:
    """What the voucher is applied to: priced line items, plus the order when there is one."""

    items: tuple[LineItem, ...]
    order: Optional[Order] = None

    @property
    def subtotal(self) -> Decimal:
        return quantize_money(sum((i.line_total for i in self.items), Decimal("0")))

    @classmethod
    def for_order(cls, order: Order) -> "RedemptionContext":
        items = tuple(
            LineItem(
                product_id=item.product_id,
                unit_price=item.unit_price,
                quantity=item.quantity,
                category_id=item.product.category_id if item.product else None,
            )
            for item in order.items
        )
        return cls(items=items, order=order)


def build_cart_context(db: Session, cart: Sequence[CartItem]) -> RedemptionContext:
    """Price a cart from the catalog; client-sent prices are never trusted."""
    ids = {item.product_id for item in cart}
    products = {
        p.id: p
        for p in db.query(Product).filter(Product.id.in_(ids), Product.is_active.is_(True)).all()
    }
    items = []
    for entry in cart:
        product = products.get(entry.product_id)
        if product is None:
            raise CatalogItemNotFound(f"Product {entry.product_id} not found.")
        items.append(
            LineItem(
                product_id=product.id,
                unit_price=product.price,
                quantity=entry.quantity,
                category_id=product.category_id,
            )
        )
    return RedemptionContext(items=tuple(items))


@dataclass(frozen=True)
class RedemptionResult:
    voucher_code: str
    usage_id: Optional[str]
    subtotal: Decimal
    eligible_subtotal: Decimal
    discount_amount: Decimal
    new_total: Decimal
    order_id: Optional[str] = None


def eligible_subtotal(voucher: Voucher, items: Iterable[LineItem]) -> Decimal:
    """Sum of the line items the voucher applies to. Unscoped vouchers cover everything."""
    items = list(items)
    if not voucher.is_scoped:
        return quantize_money(sum((i.line_total for i in items), Decimal("0")))
    product_ids = set(voucher.product_ids)
    category_ids = set(voucher.category_ids)
    matching = (
        i.line_total
        for i in items
        if i.product_id in product_ids or (i.category_id is not None and i.category_id in category_ids)
    )
    return quantize_money(sum(matching, Decimal("0")))


def compute_discount(voucher_type: str, value, subtotal: Decimal) -> Decimal:
    value = Decimal(value)
    if voucher_type == VoucherType.percentage.value:
        discount = subtotal * value / Decimal("100")
    else:
        discount = min(value, subtotal)
    return quantize_money(min(discount, subtotal))


def count_user_usages(db: Session, voucher_id: str, user_id: str) -> int:
    return (
        db.query(func.count(VoucherUsage.id))
        .filter(VoucherUsage.voucher_id == voucher_id, VoucherUsage.user_id == user_id)
        .scalar()
    )


def find_voucher(db: Session, code: str) -> Voucher:
    voucher = db.query(Voucher).filter(Voucher.code == normalize_code(code)).first()
    if not voucher:
        raise VoucherNotFound()
    return voucher


@dataclass(frozen=True)
class _Eligibility:
    voucher: Voucher
    eligible: Decimal
    discount: Decimal
    prior_usages: int
    assignment: Optional[UserVoucher]


class VoucherRedeemer:
    def __init__(
        self,
        code_generator: Optional[Callable[[int], str]] = None,
        max_code_attempts: Optional[int] = None,
    ):
        self._generate_code = code_generator or generate_voucher_code
        self.max_code_attempts = max_code_attempts or settings.VOUCHER_CODE_MAX_ATTEMPTS

    def apply(self, db: Session, voucher_code: str, user: User, context: RedemptionContext) -> RedemptionResult:
        """Validate and record one redemption; raises a ``VoucherError`` on rejection."""
        code = normalize_code(voucher_code)
        with self._logged_rejection(code, user):
            return self._apply(db, code, user, context)

    def quote(self, db: Session, voucher_code: str, user: User, context: RedemptionContext) -> RedemptionResult:
        """Run the redemption checks and price the discount without recording a use."""
        code = normalize_code(voucher_code)
        with self._logged_rejection(code, user):
            check = self._check(db, code, user, context, datetime.now(timezone.utc))
        return self._result(check, context, usage_id=None)

    @contextmanager
    def _logged_rejection(self, code: str, user: User):
        try:
            yield
        except VoucherNotFound:
            raise
        except VoucherError as exc:
            logger.info(
                "Voucher %s rejected for user %s: %s",
                code,
                user.id,
                exc.message,
                extra={"error_code": exc.code, "voucher_code": code, "user_id": user.id},
            )
            raise

    def _check(
        self, db: Session, voucher_code: str, user: User, context: RedemptionContext, now: datetime
    ) -> _Eligibility:
        voucher = find_voucher(db, voucher_code)

        if not voucher.is_active:
            raise VoucherInactive()
        if voucher.expires_at is not None and as_utc(voucher.expires_at) <= now:
            raise VoucherExpired()

        eligible = eligible_subtotal(voucher, context.items)
        if voucher.is_scoped and eligible == 0:
            raise VoucherNotApplicable()
        if eligible < quantize_money(voucher.min_spend or 0):
            raise MinimumSpendNotMet(Decimal(voucher.min_spend))

        if voucher.max_total_usage is not None and voucher.total_usage >= voucher.max_total_usage:
            raise VoucherGloballyExhausted()

        prior = count_user_usages(db, voucher.id, user.id)
        if prior >= voucher.max_usage_per_user:
            raise PerUserLimitReached()

        assignment = None
        if voucher.qualification_type == QualificationType.targeted.value:
            assignment = (
                db.query(UserVoucher)
                .filter(UserVoucher.voucher_id == voucher.id, UserVoucher.user_id == user.id)
                .first()
            )
            if not assignment:
                raise VoucherNotEligible()

        if context.order is not None and context.order.voucher_code:
            raise VoucherAlreadyUsed()

        return _Eligibility(
            voucher=voucher,
            eligible=eligible,
            discount=compute_discount(voucher.type, voucher.value, eligible),
            prior_usages=prior,
            assignment=assignment,
        )

    def _apply(self, db: Session, voucher_code: str, user: User, context: RedemptionContext) -> RedemptionResult:
        now = datetime.now(timezone.utc)
        check = self._check(db, voucher_code, user, context, now)
        try:
            usage = self._record(db, check, user, context.order, check.prior_usages, now)
        except PerUserLimitReached:
            # Another request by this user took the sequence number; recount once
            prior = count_user_usages(db, check.voucher.id, user.id)
            if prior >= check.voucher.max_usage_per_user:
                raise
            usage = self._record(db, check, user, context.order, prior, now)

        logger.info(
            "Voucher %s redeemed by user %s for %s",
            check.voucher.code,
            user.id,
            check.discount,
            extra={"voucher_code": check.voucher.code, "user_id": user.id},
        )
        return self._result(check, context, usage_id=usage.id)

    @staticmethod
    def _result(check: _Eligibility, context: RedemptionContext, usage_id: Optional[str]) -> RedemptionResult:
        subtotal = context.subtotal
        return RedemptionResult(
            voucher_code=check.voucher.code,
            usage_id=usage_id,
            subtotal=subtotal,
            eligible_subtotal=check.eligible,
            discount_amount=check.discount,
            new_total=quantize_money(subtotal - check.discount),
            order_id=context.order.id if context.order is not None else None,
        )

    def _record(
        self,
        db: Session,
        check: _Eligibility,
        user: User,
        order: Optional[Order],
        prior: int,
        now: datetime,
    ) -> VoucherUsage:
        voucher = check.voucher
        order_id = order.id if order is not None else None
        usage = VoucherUsage(
            id=str(uuid.uuid4()),
            voucher_id=voucher.id,
            user_id=user.id,
            order_id=order_id,
            sequence=prior + 1,
            amount=check.discount,
        )
        try:
            # Savepoint: a rejection undoes only this redemption, not the caller's pending work
            with db.begin_nested():
                claimed = (
                    db.query(Voucher)
                    .filter(
                        Voucher.id == voucher.id,
                        or_(Voucher.max_total_usage.is_(None), Voucher.total_usage < Voucher.max_total_usage),
                    )
                    .update({Voucher.total_usage: Voucher.total_usage + 1}, synchronize_session=False)
                )
                if not claimed:
                    raise VoucherGloballyExhausted()

                if order is not None:
                    taken = (
                        db.query(Order)
                        .filter(Order.id == order.id, Order.voucher_code.is_(None))
                        .update(
                            {
                                Order.voucher_code: voucher.code,
                                Order.discount: check.discount,
                                Order.total: quantize_money(Decimal(order.subtotal) - check.discount),
                            },
                            synchronize_session=False,
                        )
                    )
                    if not taken:
                        raise VoucherAlreadyUsed()

                db.add(usage)
                assignment = check.assignment
                if assignment is not None and not assignment.is_redeemed:
                    assignment.is_redeemed = True
                    assignment.redeemed_at = now
        except IntegrityError:
            if order_id is not None and db.query(VoucherUsage.id).filter(VoucherUsage.order_id == order_id).first():
                raise VoucherAlreadyUsed()
            raise PerUserLimitReached()
        db.commit()
        return usage

    def generate_bulk(self, db: Session, template) -> list[Voucher]:
        """Create ``template.quantity`` vouchers sharing everything but the code."""
        categories = load_categories(db, template.category_ids)
        products = load_products(db, template.product_ids)
        prefix = normalize_code(template.prefix)
        batch: set[str] = set()
        created = []
        for _ in range(template.quantity):
            created.append(self._insert_unique(db, template, prefix, categories, products, batch))
        db.commit()
        logger.info("Generated %s vouchers with prefix %r", len(created), prefix)
        return created

    def _insert_unique(self, db, template, prefix, categories, products, batch) -> Voucher:
        for attempt in range(1, self.max_code_attempts + 1):
            code = prefix + self._generate_code(template.code_length)
            try:
                voucher = self._insert(db, template, code, categories, products, batch)
            except VoucherCodeCollision:
                logger.info(
                    "Voucher code collision on attempt %s",
                    attempt,
                    extra={"error_code": VoucherCodeCollision.code, "attempt": attempt},
                )
                continue
            batch.add(code)
            return voucher
        logger.error(
            "Gave up generating a voucher code after %s attempts",
            self.max_code_attempts,
            extra={"error_code": VoucherCodeSpaceExhausted.code},
        )
        raise VoucherCodeSpaceExhausted()

    @staticmethod
    def _insert(db, template, code, categories, products, batch) -> Voucher:
        if code in batch or db.query(Voucher.id).filter(Voucher.code == code).first():
            raise VoucherCodeCollision()
        voucher = Voucher(id=str(uuid.uuid4()), code=code, **template_fields(template))
        voucher.categories = list(categories)
        voucher.products = list(products)
        try:
            # A concurrent insert of the same code only undoes this savepoint
            with db.begin_nested():
                db.add(voucher)
        except IntegrityError:
            raise VoucherCodeCollision()
        return voucher


def template_fields(template: VoucherTemplate) -> dict:
    return {
        "type": template.type.value,
        "value": template.value,
        "min_spend": template.min_spend,
        "expires_at": template.expires_at,
        "is_active": template.is_active,
        "max_usage_per_user": template.max_usage_per_user,
        "max_total_usage": template.max_total_usage,
        "description": template.description,
        "qualification_type": template.qualification_type.value,
        "criteria": template.criteria.model_dump(mode="json") if template.criteria else None,
    }


def load_categories(db: Session, ids: Sequence[str]) -> list[Category]:
    if not ids:
        return []
    found = db.query(Category).filter(Category.id.in_(set(ids))).all()
    missing = set(ids) - {c.id for c in found}
    if missing:
        raise CatalogItemNotFound(f"Category {sorted(missing)[0]} not found.")
    return found


def load_products(db: Session, ids: Sequence[str]) -> list[Product]:
    if not ids:
        return []
    found = db.query(Product).filter(Product.id.in_(set(ids))).all()
    missing = set(ids) - {p.id for p in found}
    if missing:
        raise CatalogItemNotFound(f"Product {sorted(missing)[0]} not found.")
    return found


def create_voucher(db: Session, payload: VoucherCreate) -> Voucher:
    code = normalize_code(payload.code)
    if db.query(Voucher.id).filter(Voucher.code == code).first():
        raise VoucherCodeCollision(f"Voucher code {code} already exists.")
    voucher = Voucher(id=str(uuid.uuid4()), code=code, **template_fields(payload))
    voucher.categories = load_categories(db, payload.category_ids)
    voucher.products = load_products(db, payload.product_ids)
    db.add(voucher)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise VoucherCodeCollision(f"Voucher code {code} already exists.")
    db.refresh(voucher)
    logger.info("Created voucher %s", code, extra={"voucher_code": code})
    return voucher


def list_user_vouchers(db: Session, user: User) -> list[Voucher]:
    """Live vouchers the user can see: unredeemed assignments plus every automatic one."""
    now = datetime.now(timezone.utc)
    live = (
        Voucher.is_active.is_(True),
        or_(Voucher.expires_at.is_(None), Voucher.expires_at > now),
    )
    assigned = (
        db.query(Voucher)
        .join(UserVoucher, UserVoucher.voucher_id == Voucher.id)
        .filter(UserVoucher.user_id == user.id, UserVoucher.is_redeemed.is_(False), *live)
        .all()
    )
    automatic = (
        db.query(Voucher)
        .filter(Voucher.qualification_type == QualificationType.automatic.value, *live)
        .all()
    )
    by_id = {}
    for voucher in assigned + automatic:
        by_id.setdefault(voucher.id, voucher)
    return sorted(by_id.values(), key=lambda v: v.code)


def usage_stats(db: Session, voucher: Voucher) -> dict:
    recorded, total_discount, unique_users = (
        db.query(
            func.count(VoucherUsage.id),
            func.coalesce(func.sum(VoucherUsage.amount), 0),
            func.count(distinct(VoucherUsage.user_id)),
        )
        .filter(VoucherUsage.voucher_id == voucher.id)
        .one()
    )
    recent = (
        db.query(VoucherUsage)
        .filter(VoucherUsage.voucher_id == voucher.id)
        .order_by(VoucherUsage.created_at.desc())
        .limit(10)
        .all()
    )
    return {
        "code": voucher.code,
        "total_usage": voucher.total_usage,
        "recorded_usages": recorded,
        "max_total_usage": voucher.max_total_usage,
        "is_active": voucher.is_active,
        "expires_at": voucher.expires_at,
        "total_discount": quantize_money(total_discount),
        "unique_users": unique_users,
        "recent_usages": recent,
    }


def reconcile_usage_counter(db: Session, voucher: Voucher) -> tuple[int, int]:
    """Reset total_usage to the number of usage rows. Returns (previous, current)."""
    previous = voucher.total_usage
    recorded = (
        select(func.count(VoucherUsage.id))
        .where(VoucherUsage.voucher_id == voucher.id)
        .scalar_subquery()
    )
    db.query(Voucher).filter(Voucher.id == voucher.id).update(
        {Voucher.total_usage: recorded}, synchronize_session=False
    )
    db.commit()
    db.refresh(voucher)
    if previous != voucher.total_usage:
        logger.warning(
            "Voucher %s usage counter corrected from %s to %s",
            voucher.code,
            previous,
            voucher.total_usage,
            extra={"voucher_code": voucher.code},
        )
    return previous, voucher.total_usage
