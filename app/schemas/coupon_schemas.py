# app/schemas/coupon_schemas.py
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field
from typing_extensions import Annotated
from app.models.coupon_models import CouponType

Percent = Annotated[int, Field(ge=0, le=100)]
NonNegativeDecimal = Annotated[Decimal, Field(ge=0, max_digits=14, decimal_places=2)]


class CouponCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    discount_percent: Percent
    expiry_date: datetime
    description: str = ""
    is_active: bool = True
    is_public: bool = False
    is_claimable: bool = True
    remaining_claims: int = Field(default=-1, ge=-1)
    coupon_type: CouponType = CouponType.PUBLIC
    claimed_by: Optional[int] = None


class PublicCouponCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    discount_percent: Percent
    expiry_date: datetime
    description: str = ""
    remaining_claims: Optional[int] = Field(default=None, ge=-1)
    coupon_type: Optional[CouponType] = None


class EasyCodeCouponCreate(BaseModel):
    prefix: str = Field(default="", max_length=20)
    discount_percent: Percent
    expiry_date: datetime
    description: str = ""
    remaining_claims: Optional[int] = Field(default=None, ge=-1)


class CouponUpdate(BaseModel):
    code: Optional[str] = Field(default=None, min_length=1, max_length=50)
    discount_percent: Optional[Percent] = None
    expiry_date: Optional[datetime] = None
    is_active: Optional[bool] = None
    description: Optional[str] = None
    coupon_type: Optional[CouponType] = None


class CouponOut(BaseModel):
    id: int
    code: str
    discount_percent: int
    expiry_date: datetime
    description: str
    coupon_type: CouponType
    is_active: bool
    is_used: bool
    used_at: Optional[datetime]
    used_in_order_id: Optional[int]
    released_at: Optional[datetime] = None
    is_public: bool
    is_claimable: bool
    remaining_claims: int
    claimed_by: Optional[int]
    claimed_at: Optional[datetime]
    original_coupon_id: Optional[int]
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CouponBrief(BaseModel):
    id: int
    code: str
    discount_percent: int
    description: str

    model_config = ConfigDict(from_attributes=True)


class CouponCheckRequest(BaseModel):
    code: str
    subtotal: NonNegativeDecimal
    promotion_discount: NonNegativeDecimal = Decimal("0")


class CouponCheckResponse(BaseModel):
    coupon: CouponBrief
    discount_amount: Decimal
