# app/routers/orders_router.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.schemas.candidate_schemas import CandidateOut
from app.schemas.order_schemas import (
    ApplyCouponRequest,
    OrderCreate,
    OrderDeleteResponse,
    OrderListResponse,
    OrderOut,
    OrderPaymentStatus,
    OrderStatusUpdate,
)
from app.schemas.payment_schemas import PaymentOut
from app.schemas.response_schemas import ResponseMessage
from app.services.candidate_service import get_order_candidates_with_results
from app.services.order_service import (
    apply_coupon,
    create_order,
    delete_order,
    ensure_order_deletable,
    find_reviewable_orders_by_user,
    get_order,
    get_order_by_tracking_number,
    get_order_for_user,
    get_orders_by_user,
    get_payment_status,
    list_orders,
    remove_coupon,
    start_processing,
    update_order_status,
)
from app.services.storage_service import FileStorage, get_storage
from app.utils.check_roles import require_role
from app.utils.get_user import get_current_user

router = APIRouter(prefix="/orders", tags=["Orders"])


# -----------------------------------------------------------
# CREATE ORDER
# -----------------------------------------------------------
@router.post("", response_model=ResponseMessage[OrderOut], status_code=201)
async def create_order_route(
    data: OrderCreate,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    order = await create_order(db, data, _user)
    return {"message": "Order created successfully", "data": OrderOut.model_validate(order)}


# -----------------------------------------------------------
# LIST ALL ORDERS (admin)
# -----------------------------------------------------------
@router.get("", response_model=OrderListResponse)
@require_role(["admin"])
async def list_orders_route(
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
    status: Optional[str] = Query(None, description="Filter by order status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
):
    result = await list_orders(db, status, page, page_size)
    return {
        "message": "Orders fetched successfully",
        "total": result["total"],
        "page": result["page"],
        "page_size": result["page_size"],
        "data": [OrderOut.model_validate(o) for o in result["data"]],
    }


# -----------------------------------------------------------
# MY ORDERS
# -----------------------------------------------------------
@router.get("/my", response_model=ResponseMessage[List[OrderOut]])
async def my_orders_route(
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    orders = await get_orders_by_user(db, _user.id)
    return {"message": "Orders fetched successfully", "data": [OrderOut.model_validate(o) for o in orders]}


@router.get("/reviewable", response_model=ResponseMessage[List[OrderOut]])
async def reviewable_orders_route(
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    orders = await find_reviewable_orders_by_user(db, _user.id)
    return {"message": "Reviewable orders fetched successfully", "data": [OrderOut.model_validate(o) for o in orders]}


@router.get("/tracking/{tracking_number}", response_model=ResponseMessage[OrderOut])
async def order_by_tracking_route(
    tracking_number: str,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    order = await get_order_by_tracking_number(db, tracking_number, _user)
    return {"message": "Order fetched successfully", "data": OrderOut.model_validate(order)}


# -----------------------------------------------------------
# GET ORDER BY ID
# -----------------------------------------------------------
@router.get("/{order_id}", response_model=ResponseMessage[OrderOut])
async def get_order_route(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    order = await get_order_for_user(db, order_id, _user)
    return {"message": "Order fetched successfully", "data": OrderOut.model_validate(order)}


@router.get("/{order_id}/payment-status", response_model=ResponseMessage[OrderPaymentStatus])
async def order_payment_status_route(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    status = await get_payment_status(db, order_id, _user)
    payment = status["payment"]
    return {
        "message": "Payment status fetched successfully",
        "data": OrderPaymentStatus(
            order_id=status["order_id"],
            order_status=status["order_status"],
            payment=PaymentOut.model_validate(payment) if payment else None,
        ),
    }


@router.get("/{order_id}/candidates", response_model=ResponseMessage[List[CandidateOut]])
async def order_candidates_route(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    candidates = await get_order_candidates_with_results(db, order_id, _user)
    return {
        "message": "Candidates fetched successfully",
        "data": [CandidateOut.model_validate(c) for c in candidates],
    }


# -----------------------------------------------------------
# STATUS (admin)
# -----------------------------------------------------------
@router.patch("/{order_id}/status", response_model=ResponseMessage[OrderOut])
@require_role(["admin"])
async def update_order_status_route(
    order_id: int,
    data: OrderStatusUpdate,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    order = await update_order_status(db, order_id, data.status, _user)
    return {"message": "Order status updated", "data": OrderOut.model_validate(order)}


@router.post("/{order_id}/start-processing", response_model=ResponseMessage[OrderOut])
@require_role(["admin"])
async def start_processing_route(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    """
    All required documents are in: move a payment-verified order into processing.
    """
    order = await start_processing(db, order_id, _user)
    return {"message": "Order moved to processing", "data": OrderOut.model_validate(order)}


# -----------------------------------------------------------
# COUPON ON ORDER
# -----------------------------------------------------------
@router.post("/{order_id}/coupon", response_model=ResponseMessage[OrderOut])
async def apply_coupon_route(
    order_id: int,
    data: ApplyCouponRequest,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    order = await apply_coupon(db, order_id, data.coupon_code, _user)
    return {"message": "Coupon applied", "data": OrderOut.model_validate(order)}


@router.delete("/{order_id}/coupon", response_model=ResponseMessage[OrderOut])
async def remove_coupon_route(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    order = await remove_coupon(db, order_id, _user)
    return {"message": "Coupon removed", "data": OrderOut.model_validate(order)}


# -----------------------------------------------------------
# DELETE ORDER
# -----------------------------------------------------------
@router.delete("/{order_id}", response_model=OrderDeleteResponse)
async def delete_order_route(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    storage: FileStorage = Depends(get_storage),
    _user=Depends(get_current_user),
):
    order = await get_order(db, order_id)
    ensure_order_deletable(order, _user)
    return await delete_order(db, storage, order_id, _user)
