# app/routers/coupons_router.py
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.models.coupon_models import CouponType
from app.schemas.coupon_schemas import (
    CouponBrief,
    CouponCheckRequest,
    CouponCheckResponse,
    CouponCreate,
    CouponOut,
    CouponUpdate,
    EasyCodeCouponCreate,
    PublicCouponCreate,
)
from app.schemas.response_schemas import ResponseMessage
from app.services.coupon_service import (
    check_coupon,
    claim_coupon,
    create_coupon,
    create_easy_code_coupon,
    create_public_coupon,
    create_survey_coupon,
    delete_coupon,
    find_public_coupons,
    find_released_coupons,
    find_user_coupons,
    get_claimed_status,
    get_coupon,
    get_coupon_overview,
    mark_as_used,
    release_coupon,
    update_coupon,
)
from app.utils.check_roles import require_role
from app.utils.get_user import get_current_user

router = APIRouter(prefix="/coupons", tags=["Coupons"])


# -----------------------------------------------------------
# ADMIN: CREATE
# -----------------------------------------------------------
@router.post("", response_model=ResponseMessage[CouponOut], status_code=201)
@require_role(["admin"])
async def create_coupon_route(
    data: CouponCreate,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    coupon = await create_coupon(db, data, _user)
    return {"message": "Coupon created successfully", "data": CouponOut.model_validate(coupon)}


@router.post("/public", response_model=ResponseMessage[CouponOut], status_code=201)
@require_role(["admin"])
async def create_public_coupon_route(
    data: PublicCouponCreate,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    coupon = await create_public_coupon(db, data, _user)
    return {"message": "Public coupon created successfully", "data": CouponOut.model_validate(coupon)}


@router.post("/easy-code", response_model=ResponseMessage[CouponOut], status_code=201)
@require_role(["admin"])
async def create_easy_code_coupon_route(
    data: EasyCodeCouponCreate,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    coupon = await create_easy_code_coupon(db, data, _user)
    return {"message": f"Coupon {coupon.code} created successfully", "data": CouponOut.model_validate(coupon)}


# -----------------------------------------------------------
# ADMIN: OVERVIEW / RELEASED / USAGE
# -----------------------------------------------------------
@router.get("/overview")
@require_role(["admin"])
async def coupon_overview_route(
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    overview = await get_coupon_overview(db)
    overview["public_coupons"] = [CouponOut.model_validate(c) for c in overview["public_coupons"]]
    overview["survey_coupons"] = [CouponOut.model_validate(c) for c in overview["survey_coupons"]]
    return {"message": "Coupon overview fetched successfully", "data": overview}


@router.get("/released", response_model=ResponseMessage[List[CouponOut]])
@require_role(["admin"])
async def released_coupons_route(
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
    limit: int = Query(50, ge=1, le=200),
):
    coupons = await find_released_coupons(db, limit)
    return {"message": "Released coupons fetched successfully", "data": [CouponOut.model_validate(c) for c in coupons]}


@router.post("/{coupon_id}/mark-used", response_model=ResponseMessage[CouponOut])
@require_role(["admin"])
async def mark_coupon_used_route(
    coupon_id: int,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
    order_id: Optional[int] = Query(None),
):
    coupon = await mark_as_used(db, coupon_id, order_id)
    return {"message": "Coupon marked as used", "data": CouponOut.model_validate(coupon)}


@router.post("/release/{order_id}", response_model=ResponseMessage[int])
@require_role(["admin"])
async def release_order_coupons_route(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    released = await release_coupon(db, order_id)
    return {"message": f"{released} coupon(s) released", "data": released}


# -----------------------------------------------------------
# USER: BROWSE / CLAIM
# -----------------------------------------------------------
@router.get("/public", response_model=ResponseMessage[List[CouponOut]])
async def public_coupons_route(
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
    coupon_type: CouponType = Query(CouponType.PUBLIC),
):
    coupons = await find_public_coupons(db, coupon_type)
    return {"message": "Public coupons fetched successfully", "data": [CouponOut.model_validate(c) for c in coupons]}


@router.get("/claimed-status", response_model=ResponseMessage[Dict[int, bool]])
async def claimed_status_route(
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
    coupon_ids: List[int] = Query(..., alias="ids"),
):
    status = await get_claimed_status(db, _user.id, coupon_ids)
    return {"message": "Claimed status fetched successfully", "data": status}


@router.get("/my", response_model=ResponseMessage[List[CouponOut]])
async def my_coupons_route(
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
    include_used: bool = Query(False),
):
    coupons = await find_user_coupons(db, _user.id, include_used)
    return {"message": "Coupons fetched successfully", "data": [CouponOut.model_validate(c) for c in coupons]}


@router.post("/check", response_model=ResponseMessage[CouponCheckResponse])
async def check_coupon_route(
    data: CouponCheckRequest,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    quote = await check_coupon(db, data.code, data.subtotal, data.promotion_discount, _user.id)
    return {
        "message": "Coupon is valid",
        "data": CouponCheckResponse(
            coupon=CouponBrief.model_validate(quote["coupon"]),
            discount_amount=quote["discount_amount"],
        ),
    }


@router.post("/survey", response_model=ResponseMessage[CouponOut], status_code=201)
async def survey_coupon_route(
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    coupon = await create_survey_coupon(db, _user.id)
    return {"message": "Thank you for completing the survey", "data": CouponOut.model_validate(coupon)}


@router.post("/{coupon_id}/claim", response_model=ResponseMessage[CouponOut], status_code=201)
async def claim_coupon_route(
    coupon_id: int,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    claim = await claim_coupon(db, coupon_id, _user.id)
    return {"message": "Coupon claimed successfully", "data": CouponOut.model_validate(claim)}


@router.get("/{coupon_id}", response_model=ResponseMessage[CouponOut])
@require_role(["admin"])
async def get_coupon_route(
    coupon_id: int,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    coupon = await get_coupon(db, coupon_id)
    return {"message": "Coupon fetched successfully", "data": CouponOut.model_validate(coupon)}


@router.put("/{coupon_id}", response_model=ResponseMessage[CouponOut])
@require_role(["admin"])
async def update_coupon_route(
    coupon_id: int,
    data: CouponUpdate,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    coupon = await update_coupon(db, coupon_id, data, _user)
    return {"message": "Coupon updated successfully", "data": CouponOut.model_validate(coupon)}


@router.delete("/{coupon_id}", response_model=ResponseMessage[int])
@require_role(["admin"])
async def delete_coupon_route(
    coupon_id: int,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    result = await delete_coupon(db, coupon_id, _user)
    return {"message": result["message"], "data": result["coupon_id"]}
