import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from mmart.core.auth import get_current_user
from mmart.core.deps import get_db, get_voucher_redeemer
from mmart.core.errors import MmartError
from mmart.models.order import Order, OrderItem
from mmart.models.user import User
from mmart.schemas.order import OrderCreate, OrderResponse
from mmart.services.vouchers import RedemptionContext, VoucherRedeemer, build_cart_context

router = APIRouter()


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
def create_order(
    body: OrderCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    redeemer: VoucherRedeemer = Depends(get_voucher_redeemer),
):
    """Place a pending order priced from the catalog, redeeming ``voucher_code`` if given."""
    context = build_cart_context(db, body.items)
    order = Order(
        id=str(uuid.uuid4()),
        user_id=user.id,
        status="pending",
        subtotal=context.subtotal,
        discount=0,
        total=context.subtotal,
    )
    order.items = [
        OrderItem(
            id=str(uuid.uuid4()),
            product_id=item.product_id,
            quantity=item.quantity,
            unit_price=item.unit_price,
        )
        for item in context.items
    ]
    db.add(order)
    if body.voucher_code:
        db.flush()
        try:
            # commits the order together with the redemption
            redeemer.apply(db, body.voucher_code, user, RedemptionContext.for_order(order))
        except MmartError:
            db.rollback()
            raise
    else:
        db.commit()
    db.refresh(order)
    return order


@router.get("/{order_id}", response_model=OrderResponse)
def get_order(order_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    order = db.query(Order).filter(Order.id == order_id, Order.user_id == user.id).first()
    if not order:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return order
