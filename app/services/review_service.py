# app/services/review_service.py
import logging

from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError, ForbiddenError, InvalidStateError
from app.models.order_models import Order, OrderStatus
from app.models.review_models import Review
from app.schemas.review_schemas import ReviewCreate
from app.services.order_service import get_order, mark_order_as_reviewed
from app.utils.activity_helpers import log_user_activity

logger = logging.getLogger(__name__)


def _order_snapshot(order: Order) -> dict:
    return {
        "order_type": order.order_type.value,
        "total_price": str(order.total_price),
        "order_date": order.created_at.isoformat() if order.created_at else None,
        "services": order.services or [],
        "tracking_number": order.tracking_number,
    }


def _user_snapshot(user) -> dict:
    return {
        "username": user.username,
        "email": user.email,
        "full_name": getattr(user, "full_name", None) or user.username,
        "profile_picture": user.profile_picture,
    }


async def create_review(db: AsyncSession, payload: ReviewCreate, user) -> Review:
    order = await get_order(db, payload.order_id)
    if order.user_id != user.id:
        raise ForbiddenError("You do not have permission to review this order")
    if order.order_status != OrderStatus.COMPLETED:
        raise InvalidStateError("You can only review completed orders")

    existing = await db.execute(
        select(Review.id).where(Review.order_id == order.id, Review.user_id == user.id)
    )
    if existing.scalar_one_or_none() is not None:
        raise ConflictError("You have already reviewed this order")

    review = Review(
        order_id=order.id,
        user_id=user.id,
        rating=payload.rating,
        comment=payload.comment,
        is_public=payload.is_public,
        tags=payload.tags,
        order_details=_order_snapshot(order),
        user_details=_user_snapshot(user),
    )
    db.add(review)
    await db.flush()

    await mark_order_as_reviewed(db, order.id, review.id, commit=False)
    await log_user_activity(
        db,
        user_id=user.id,
        username=user.username,
        message=f"Reviewed order {order.tracking_number} ({payload.rating}/5)",
        entity_type="review",
        entity_id=review.id
    )
    await db.commit()
    await db.refresh(review)

    logger.info("Review %s created for order %s", review.id, order.id)
    return review


async def check_order_review_status(db: AsyncSession, order_id: int, user) -> dict:
    order = await get_order(db, order_id)
    if order.user_id != user.id:
        raise ForbiddenError("You do not have permission to view this order")

    is_completed = order.order_status == OrderStatus.COMPLETED
    is_reviewed = bool(order.is_reviewed)
    return {
        "order_id": order.id,
        "can_review": is_completed and not is_reviewed,
        "is_completed": is_completed,
        "is_reviewed": is_reviewed,
        "reviewed_at": order.reviewed_at,
        "order_status": order.order_status,
    }


async def get_reviews_by_order(db: AsyncSession, order_id: int) -> list[Review]:
    result = await db.execute(
        select(Review).where(Review.order_id == order_id).order_by(desc(Review.created_at))
    )
    return result.scalars().all()


async def get_reviews_by_user(db: AsyncSession, user_id: int) -> list[Review]:
    result = await db.execute(
        select(Review).where(Review.user_id == user_id).order_by(desc(Review.created_at))
    )
    return result.scalars().all()


async def list_public_reviews(db: AsyncSession, limit: int = 50) -> list[Review]:
    result = await db.execute(
        select(Review).where(Review.is_public == True).order_by(desc(Review.created_at)).limit(limit)
    )
    return result.scalars().all()
