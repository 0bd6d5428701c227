# app/schemas/payment_schemas.py
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field
from app.models.payment_models import PaymentMethod, PaymentStatus


class TransferInfo(BaseModel):
    name: Optional[str] = None
    date: Optional[datetime] = None
    amount: Optional[Decimal] = Field(default=None, ge=0)
    reference: Optional[str] = None


class PaymentCreate(BaseModel):
    order_id: int
    payment_method: PaymentMethod
    transfer_info: Optional[TransferInfo] = None


class PaymentUpdate(BaseModel):
    payment_method: Optional[PaymentMethod] = None
    payment_status: Optional[str] = None
    transfer_info: Optional[TransferInfo] = None


class PaymentStatusUpdate(BaseModel):
    status: str


class PaymentOut(BaseModel):
    id: int
    payment_reference: str
    order_id: int
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    transfer_info: Optional[dict] = None
    created_at: Optional[datetime] = None
    payment_updated_at: Optional[datetime] = None
    payment_updated_by: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)
