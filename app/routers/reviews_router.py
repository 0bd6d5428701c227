# app/routers/reviews_router.py
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.schemas.response_schemas import ResponseMessage
from app.schemas.review_schemas import ReviewCreate, ReviewOut, ReviewStatus
from app.services.order_service import get_order_for_user
from app.services.review_service import (
    check_order_review_status,
    create_review,
    get_reviews_by_order,
    get_reviews_by_user,
    list_public_reviews,
)
from app.utils.get_user import get_current_user

router = APIRouter(prefix="/reviews", tags=["Reviews"])


@router.post("", response_model=ResponseMessage[ReviewOut], status_code=201)
async def create_review_route(
    data: ReviewCreate,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    review = await create_review(db, data, _user)
    return {"message": "Thank you for your review", "data": ReviewOut.model_validate(review)}


@router.get("/public", response_model=ResponseMessage[List[ReviewOut]])
async def public_reviews_route(
    db: AsyncSession = Depends(get_db),
    limit: int = Query(50, ge=1, le=200),
):
    reviews = await list_public_reviews(db, limit)
    return {"message": "Reviews fetched successfully", "data": [ReviewOut.model_validate(r) for r in reviews]}


@router.get("/my", response_model=ResponseMessage[List[ReviewOut]])
async def my_reviews_route(
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    reviews = await get_reviews_by_user(db, _user.id)
    return {"message": "Reviews fetched successfully", "data": [ReviewOut.model_validate(r) for r in reviews]}


@router.get("/order/{order_id}/status", response_model=ResponseMessage[ReviewStatus])
async def order_review_status_route(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    status = await check_order_review_status(db, order_id, _user)
    return {"message": "Review status fetched successfully", "data": status}


@router.get("/order/{order_id}", response_model=ResponseMessage[List[ReviewOut]])
async def order_reviews_route(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    await get_order_for_user(db, order_id, _user)
    reviews = await get_reviews_by_order(db, order_id)
    return {"message": "Reviews fetched successfully", "data": [ReviewOut.model_validate(r) for r in reviews]}
