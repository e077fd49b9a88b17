from datetime import datetime
from decimal import Decimal
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from mmart.models.voucher import QualificationType, VoucherType

Money = Annotated[Decimal, Field(ge=0, max_digits=10, decimal_places=2)]
PositiveMoney = Annotated[Decimal, Field(gt=0, max_digits=10, decimal_places=2)]


class VoucherCriteria(BaseModel):
    """Who qualifies for a targeted voucher. Unset fields are not checked."""

    min_spend: Optional[Money] = None
    time_period: Optional[int] = Field(default=None, ge=1)  # days, applies to min_spend and min_orders
    min_orders: Optional[int] = Field(default=None, ge=1)
    product_ids: list[str] = []
    category_ids: list[str] = []
    registration_days: Optional[int] = Field(default=None, ge=0)
    send_email: bool = False


class VoucherTemplate(BaseModel):
    type: VoucherType
    value: PositiveMoney
    min_spend: Money = Decimal("0")
    expires_at: Optional[datetime] = None
    is_active: bool = True
    max_usage_per_user: int = Field(default=1, ge=1)
    max_total_usage: Optional[int] = Field(default=None, ge=1)
    description: Optional[str] = None
    qualification_type: QualificationType = QualificationType.manual
    criteria: Optional[VoucherCriteria] = None
    category_ids: list[str] = []
    product_ids: list[str] = []

    @model_validator(mode="after")
    def check_percentage(self):
        if self.type == VoucherType.percentage and self.value > 100:
            raise ValueError("Percentage discount must be between 0 and 100")
        return self


class VoucherCreate(VoucherTemplate):
    code: str = Field(min_length=3, max_length=64, pattern=r"^[A-Za-z0-9_-]+$")


class VoucherBulkCreate(VoucherTemplate):
    prefix: str = Field(default="", max_length=16, pattern=r"^[A-Za-z0-9]*$")
    quantity: int = Field(ge=1, le=1000)
    code_length: int = Field(default=8, ge=4, le=32)


class VoucherSchedule(BaseModel):
    """Targeted voucher created from criteria and handed out by the assignment job."""

    code: Optional[str] = Field(default=None, min_length=3, max_length=64, pattern=r"^[A-Za-z0-9_-]+$")
    type: VoucherType
    value: PositiveMoney
    min_spend: Money = Decimal("0")
    expires_at: Optional[datetime] = None
    max_usage_per_user: int = Field(default=1, ge=1)
    max_total_usage: Optional[int] = Field(default=None, ge=1)
    description: Optional[str] = None
    criteria: VoucherCriteria
    assign_now: bool = True


class VoucherResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    code: str
    type: str
    value: Decimal
    min_spend: Decimal
    expires_at: Optional[datetime] = None
    is_active: bool
    max_usage_per_user: int
    max_total_usage: Optional[int] = None
    total_usage: int
    description: Optional[str] = None
    qualification_type: str
    criteria: Optional[dict] = None
    category_ids: list[str] = []
    product_ids: list[str] = []
    created_at: Optional[datetime] = None


class BulkGenerateResponse(BaseModel):
    count: int
    codes: list[str]


class ScheduleResponse(BaseModel):
    voucher: VoucherResponse
    assigned: int


class AssignmentResponse(BaseModel):
    voucher_id: str
    assigned: int


class ReconcileResponse(BaseModel):
    voucher_id: str
    previous_total_usage: int
    total_usage: int


class VoucherUsageEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    user_id: str
    order_id: Optional[str] = None
    amount: Decimal
    created_at: Optional[datetime] = None


class VoucherStatsResponse(BaseModel):
    code: str
    total_usage: int
    recorded_usages: int
    max_total_usage: Optional[int] = None
    is_active: bool
    expires_at: Optional[datetime] = None
    total_discount: Decimal
    unique_users: int
    recent_usages: list[VoucherUsageEntry]


class CartItem(BaseModel):
    product_id: str
    quantity: int = Field(ge=1)


class VoucherApply(BaseModel):
    """Redeem against an existing order, or quote the discount for a cart.

    A cart quote records nothing; pass the code to order creation to redeem it.
    """

    voucher_code: str = Field(min_length=1, max_length=64)
    order_id: Optional[str] = None
    items: Optional[list[CartItem]] = None

    @model_validator(mode="after")
    def check_target(self):
        if bool(self.order_id) == bool(self.items):
            raise ValueError("Provide either order_id or a non-empty items list")
        return self


class VoucherApplyResponse(BaseModel):
    voucher_code: str
    # None for a cart quote
    usage_id: Optional[str] = None
    order_id: Optional[str] = None
    subtotal: Decimal
    eligible_subtotal: Decimal
    discount_amount: Decimal
    new_total: Decimal
