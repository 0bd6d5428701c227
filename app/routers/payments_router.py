# app/routers/payments_router.py
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.exceptions import DomainValidationError
from app.models.payment_models import PaymentMethod
from app.schemas.payment_schemas import (
    PaymentCreate,
    PaymentOut,
    PaymentStatusUpdate,
    PaymentUpdate,
    TransferInfo,
)
from app.schemas.response_schemas import ResponseMessage
from app.services.payment_service import (
    create_payment,
    get_payment_for_user,
    get_payments_by_order,
    list_payments,
    remove_payment,
    update_payment,
    update_payment_status,
)
from app.services.order_service import get_order_for_user
from app.services.storage_service import FileStorage, get_storage
from app.utils.check_roles import require_role
from app.utils.get_user import get_current_user

router = APIRouter(prefix="/payments", tags=["Payments"])


def _parse_transfer_info(raw: Optional[str]) -> Optional[TransferInfo]:
    if not raw:
        return None
    try:
        return TransferInfo.model_validate_json(raw)
    except ValidationError as e:
        raise DomainValidationError(f"Invalid transfer_info: {e.errors()[0]['msg']}")


# -----------------------------------------------------------
# CREATE PAYMENT (multipart, optional receipt)
# -----------------------------------------------------------
@router.post("", response_model=ResponseMessage[PaymentOut], status_code=201)
async def create_payment_route(
    order_id: int = Form(...),
    payment_method: PaymentMethod = Form(...),
    transfer_info: Optional[str] = Form(None, description="JSON encoded transfer details"),
    receipt: Optional[UploadFile] = File(None),
    db: AsyncSession = Depends(get_db),
    storage: FileStorage = Depends(get_storage),
    _user=Depends(get_current_user),
):
    payload = PaymentCreate(
        order_id=order_id,
        payment_method=payment_method,
        transfer_info=_parse_transfer_info(transfer_info),
    )
    payment = await create_payment(db, storage, payload, _user, receipt=receipt)
    return {"message": "Payment submitted successfully", "data": PaymentOut.model_validate(payment)}


@router.get("", response_model=ResponseMessage[List[PaymentOut]])
@require_role(["admin"])
async def list_payments_route(
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
    status: Optional[str] = Query(None),
):
    payments = await list_payments(db, status)
    return {"message": "Payments fetched successfully", "data": [PaymentOut.model_validate(p) for p in payments]}


@router.get("/order/{order_id}", response_model=ResponseMessage[List[PaymentOut]])
async def payments_by_order_route(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    await get_order_for_user(db, order_id, _user)
    payments = await get_payments_by_order(db, order_id)
    return {"message": "Payments fetched successfully", "data": [PaymentOut.model_validate(p) for p in payments]}


@router.get("/{payment_id}", response_model=ResponseMessage[PaymentOut])
async def get_payment_route(
    payment_id: int,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    payment = await get_payment_for_user(db, payment_id, _user)
    return {"message": "Payment fetched successfully", "data": PaymentOut.model_validate(payment)}


# -----------------------------------------------------------
# ADMIN: VERIFY / UPDATE / REMOVE
# -----------------------------------------------------------
@router.patch("/{payment_id}/status", response_model=ResponseMessage[PaymentOut])
@require_role(["admin"])
async def update_payment_status_route(
    payment_id: int,
    data: PaymentStatusUpdate,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    payment = await update_payment_status(db, payment_id, data.status, _user)
    return {"message": "Payment status updated", "data": PaymentOut.model_validate(payment)}


@router.put("/{payment_id}", response_model=ResponseMessage[PaymentOut])
@require_role(["admin"])
async def update_payment_route(
    payment_id: int,
    data: PaymentUpdate,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    payment = await update_payment(db, payment_id, data, _user)
    return {"message": "Payment updated", "data": PaymentOut.model_validate(payment)}


@router.delete("/{payment_id}")
@require_role(["admin"])
async def remove_payment_route(
    payment_id: int,
    db: AsyncSession = Depends(get_db),
    storage: FileStorage = Depends(get_storage),
    _user=Depends(get_current_user),
):
    result = await remove_payment(db, storage, payment_id, _user)
    return {"message": result["message"], "data": {"order_id": result["order_id"]}}
