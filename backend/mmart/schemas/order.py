from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from mmart.schemas.voucher import CartItem


class OrderCreate(BaseModel):
    items: list[CartItem] = Field(min_length=1)
    # Redeemed together with the order; a rejected code rejects the order
    voucher_code: Optional[str] = Field(default=None, min_length=1, max_length=64)


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    product_id: str
    quantity: int
    unit_price: Decimal


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    status: str
    subtotal: Decimal
    discount: Decimal
    total: Decimal
    voucher_code: Optional[str] = None
    items: list[OrderItemResponse]
    created_at: Optional[datetime] = None
