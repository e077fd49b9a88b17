import logging
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from mmart.core.auth import get_current_admin
from mmart.core.config import settings
from mmart.core.deps import get_db, get_voucher_notifier, get_voucher_redeemer
from mmart.core.security import ROLE_ADMIN, create_access_token, verify_password
from mmart.models.admin_user import AdminUser
from mmart.models.catalog import Category, Product
from mmart.models.voucher import Voucher
from mmart.schemas.admin import (
    AdminLogin,
    CategoryCreate,
    CategoryResponse,
    ProductCreate,
    ProductResponse,
)
from mmart.schemas.auth import TokenResponse
from mmart.schemas.voucher import (
    AssignmentResponse,
    BulkGenerateResponse,
    ReconcileResponse,
    ScheduleResponse,
    VoucherBulkCreate,
    VoucherCreate,
    VoucherResponse,
    VoucherSchedule,
    VoucherStatsResponse,
)
from mmart.services.voucher_assignment import (
    VoucherNotifier,
    assign_to_qualifying_users,
    schedule_distribution,
)
from mmart.services.vouchers import (
    VoucherRedeemer,
    create_voucher,
    reconcile_usage_counter,
    usage_stats,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_voucher(db: Session, voucher_id: str) -> Voucher:
    voucher = db.query(Voucher).filter(Voucher.id == voucher_id).first()
    if not voucher:
        raise HTTPException(status_code=404, detail="Voucher not found")
    return voucher


@router.post("/login", response_model=TokenResponse)
def admin_login(body: AdminLogin, db: Session = Depends(get_db)):
    admin = db.query(AdminUser).filter(AdminUser.username == body.username).first()
    if not admin or not verify_password(body.password, admin.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid username or password")
    if not admin.is_active:
        raise HTTPException(status_code=403, detail="Admin account disabled")
    admin.last_login_at = datetime.now(timezone.utc)
    db.commit()
    logger.info("Admin %s logged in", admin.username)
    token = create_access_token(subject=admin.id, role=ROLE_ADMIN)
    return TokenResponse(access_token=token)


# ─── Catalog ────────────────────────────────────────────────────

@router.post("/categories", response_model=CategoryResponse, status_code=status.HTTP_201_CREATED)
def create_category(
    body: CategoryCreate,
    db: Session = Depends(get_db),
    admin: AdminUser = Depends(get_current_admin),
):
    if db.query(Category).filter(Category.name == body.name).first():
        raise HTTPException(status_code=400, detail="Category already exists")
    category = Category(id=str(uuid.uuid4()), name=body.name)
    db.add(category)
    db.commit()
    db.refresh(category)
    return category


@router.post("/products", response_model=ProductResponse, status_code=status.HTTP_201_CREATED)
def create_product(
    body: ProductCreate,
    db: Session = Depends(get_db),
    admin: AdminUser = Depends(get_current_admin),
):
    if body.category_id and not db.query(Category).filter(Category.id == body.category_id).first():
        raise HTTPException(status_code=404, detail="Category not found")
    product = Product(
        id=str(uuid.uuid4()),
        name=body.name,
        price=body.price,
        category_id=body.category_id,
        is_active=body.is_active,
    )
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


# ─── Vouchers ───────────────────────────────────────────────────

@router.get("/vouchers", response_model=list[VoucherResponse])
def list_vouchers(
    db: Session = Depends(get_db),
    admin: AdminUser = Depends(get_current_admin),
):
    return db.query(Voucher).order_by(Voucher.created_at.desc(), Voucher.code).all()


@router.post("/vouchers", response_model=VoucherResponse, status_code=status.HTTP_201_CREATED)
def create_single_voucher(
    body: VoucherCreate,
    db: Session = Depends(get_db),
    admin: AdminUser = Depends(get_current_admin),
):
    return create_voucher(db, body)


@router.post("/vouchers/bulk", response_model=BulkGenerateResponse, status_code=status.HTTP_201_CREATED)
def generate_bulk_vouchers(
    body: VoucherBulkCreate,
    db: Session = Depends(get_db),
    admin: AdminUser = Depends(get_current_admin),
    redeemer: VoucherRedeemer = Depends(get_voucher_redeemer),
):
    """Generate many vouchers sharing one template; only the codes differ."""
    if body.quantity > settings.VOUCHER_BULK_MAX_QUANTITY:
        raise HTTPException(
            status_code=400,
            detail=f"At most {settings.VOUCHER_BULK_MAX_QUANTITY} vouchers per batch",
        )
    vouchers = redeemer.generate_bulk(db, body)
    codes = [v.code for v in vouchers]
    return BulkGenerateResponse(count=len(codes), codes=codes)


@router.post("/vouchers/schedule", response_model=ScheduleResponse, status_code=status.HTTP_201_CREATED)
def schedule_voucher_distribution(
    body: VoucherSchedule,
    db: Session = Depends(get_db),
    admin: AdminUser = Depends(get_current_admin),
    notifier: VoucherNotifier = Depends(get_voucher_notifier),
):
    """Create a targeted voucher from criteria; qualifying users get it now or on the next job run."""
    voucher, assigned = schedule_distribution(db, body, notifier)
    return ScheduleResponse(voucher=VoucherResponse.model_validate(voucher), assigned=assigned)


@router.post("/vouchers/{voucher_id}/assign", response_model=AssignmentResponse)
def assign_voucher(
    voucher_id: str,
    db: Session = Depends(get_db),
    admin: AdminUser = Depends(get_current_admin),
    notifier: VoucherNotifier = Depends(get_voucher_notifier),
):
    voucher = _get_voucher(db, voucher_id)
    if not voucher.criteria:
        raise HTTPException(status_code=400, detail="Voucher has no assignment criteria")
    assigned = assign_to_qualifying_users(db, voucher, notifier)
    return AssignmentResponse(voucher_id=voucher.id, assigned=assigned)


@router.get("/vouchers/{voucher_id}/stats", response_model=VoucherStatsResponse)
def voucher_stats(
    voucher_id: str,
    db: Session = Depends(get_db),
    admin: AdminUser = Depends(get_current_admin),
):
    return usage_stats(db, _get_voucher(db, voucher_id))


@router.post("/vouchers/{voucher_id}/reconcile", response_model=ReconcileResponse)
def reconcile_voucher(
    voucher_id: str,
    db: Session = Depends(get_db),
    admin: AdminUser = Depends(get_current_admin),
):
    """Reset the cached usage counter from the usage log."""
    voucher = _get_voucher(db, voucher_id)
    previous, current = reconcile_usage_counter(db, voucher)
    return ReconcileResponse(voucher_id=voucher.id, previous_total_usage=previous, total_usage=current)
