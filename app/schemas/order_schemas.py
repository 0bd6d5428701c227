# app/schemas/order_schemas.py
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field
from typing_extensions import Annotated
from app.models.order_models import OrderStatus, OrderType
from app.schemas.candidate_schemas import CandidateCreate, CandidateOut
from app.schemas.payment_schemas import PaymentOut

NonNegativeDecimal = Annotated[Decimal, Field(ge=0, max_digits=14, decimal_places=2)]


class OrderServiceLine(BaseModel):
    service_id: int
    title: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)
    price: NonNegativeDecimal


class OrderCreate(BaseModel):
    order_type: OrderType
    services: List[OrderServiceLine] = Field(..., min_length=1)
    subtotal_price: NonNegativeDecimal
    total_price: NonNegativeDecimal
    promotion_discount: NonNegativeDecimal = Decimal("0")
    coupon_code: Optional[str] = None
    candidates: List[CandidateCreate] = Field(..., min_length=1)


class OrderStatusUpdate(BaseModel):
    status: str


class ApplyCouponRequest(BaseModel):
    coupon_code: str = Field(..., min_length=1)


class OrderOut(BaseModel):
    id: int
    tracking_number: str
    order_type: OrderType
    order_status: OrderStatus
    user_id: Optional[int]
    sub_total_price: Decimal
    promotion_discount: Decimal
    coupon_discount: Decimal
    total_price: Decimal
    services: List[dict]
    coupon_id: Optional[int]
    payment: Optional[PaymentOut] = None
    candidates: List[CandidateOut] = []
    is_reviewed: bool
    reviewed_at: Optional[datetime] = None
    review_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CleanupSummary(BaseModel):
    succeeded: List[str] = []
    failed: List[dict] = []


class OrderDeleteResponse(BaseModel):
    success: bool
    message: str
    order_id: int
    coupon_released: bool
    cleanup: CleanupSummary


class OrderPaymentStatus(BaseModel):
    order_id: int
    order_status: OrderStatus
    payment: Optional[PaymentOut] = None


class OrderListResponse(BaseModel):
    message: str
    total: int
    page: int
    page_size: int
    data: List[OrderOut]
