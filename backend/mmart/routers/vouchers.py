from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from mmart.core.auth import get_current_user
from mmart.core.deps import get_db, get_voucher_redeemer
from mmart.models.order import Order
from mmart.models.user import User
from mmart.schemas.voucher import VoucherApply, VoucherApplyResponse, VoucherResponse
from mmart.services.vouchers import (
    RedemptionContext,
    VoucherRedeemer,
    build_cart_context,
    list_user_vouchers,
)

router = APIRouter()


@router.get("", response_model=list[VoucherResponse])
def my_vouchers(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Vouchers assigned to the current user plus the automatic ones everybody gets."""
    return list_user_vouchers(db, user)


@router.post("/apply", response_model=VoucherApplyResponse)
def apply_voucher(
    body: VoucherApply,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    redeemer: VoucherRedeemer = Depends(get_voucher_redeemer),
):
    """Redeem a voucher on one of the user's pending orders, or quote it for a cart."""
    if body.order_id:
        order = db.query(Order).filter(Order.id == body.order_id, Order.user_id == user.id).first()
        if not order:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
        if order.status != "pending":
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Vouchers can only be applied to pending orders",
            )
        result = redeemer.apply(db, body.voucher_code, user, RedemptionContext.for_order(order))
    else:
        result = redeemer.quote(db, body.voucher_code, user, build_cart_context(db, body.items))
    return VoucherApplyResponse(
        voucher_code=result.voucher_code,
        usage_id=result.usage_id,
        order_id=result.order_id,
        subtotal=result.subtotal,
        eligible_subtotal=result.eligible_subtotal,
        discount_amount=result.discount_amount,
        new_total=result.new_total,
    )
