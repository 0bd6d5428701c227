# app/services/order_service.py
import logging
import random
import time
from typing import Optional

from sqlalchemy import select, func, or_, desc
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    DomainValidationError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
)
from app.events import CandidateResultsChanged, event_dispatcher
from app.models.order_models import Order, OrderStatus
from app.schemas.order_schemas import OrderCreate
from app.services.candidate_service import (
    create_candidate,
    delete_candidate,
    find_order_ids_for_candidate,
    is_candidate_complete,
)
from app.services.coupon_service import (
    calculate_discount,
    mark_as_used,
    release_coupon,
    validate_coupon,
)
from app.services.storage_service import FileStorage
from app.utils.activity_helpers import log_user_activity
from app.utils.check_roles import is_admin
from app.utils.cleanup import run_cleanup
from app.utils.datetime_utils import utcnow
from app.utils.decimal_utils import ZERO, to_decimal

logger = logging.getLogger(__name__)

TRACKING_PREFIX = "SCT"
TRACKING_ATTEMPTS = 5


# ---------------------------
# TRACKING NUMBER
# ---------------------------
def generate_tracking_number() -> str:
    """Prefix + trailing epoch-millisecond digits + 3-digit random suffix."""
    timestamp = str(int(time.time() * 1000))[5:]
    return f"{TRACKING_PREFIX}{timestamp}{random.randint(0, 999):03d}"


async def _unique_tracking_number(db: AsyncSession) -> str:
    tracking_number = generate_tracking_number()
    for _ in range(TRACKING_ATTEMPTS):
        existing = await db.execute(select(Order.id).where(Order.tracking_number == tracking_number))
        if existing.scalar_one_or_none() is None:
            break
        tracking_number = generate_tracking_number()
    return tracking_number


# ---------------------------
# ACCESS
# ---------------------------
def _ensure_owner_or_admin(order: Order, user) -> None:
    if not is_admin(user) and order.user_id != user.id:
        raise ForbiddenError("You do not have permission to access this order")


def _ensure_awaiting_payment(order: Order, action: str) -> None:
    if order.order_status != OrderStatus.AWAITING_PAYMENT:
        raise InvalidStateError(
            f"Cannot {action} an order with status '{order.order_status.value}', "
            f"it must be '{OrderStatus.AWAITING_PAYMENT.value}'"
        )


def ensure_order_deletable(order: Order, requester) -> None:
    _ensure_owner_or_admin(order, requester)
    _ensure_awaiting_payment(order, "delete")


# ---------------------------
# READ
# ---------------------------
async def get_order(db: AsyncSession, order_id: int) -> Order:
    result = await db.execute(
        select(Order)
        .where(Order.id == order_id)
        .execution_options(populate_existing=True)
    )
    order = result.scalars().first()
    if not order:
        raise NotFoundError(f"Order with ID {order_id} not found")
    return order


async def get_order_for_user(db: AsyncSession, order_id: int, user) -> Order:
    order = await get_order(db, order_id)
    _ensure_owner_or_admin(order, user)
    return order


async def get_order_by_tracking_number(db: AsyncSession, tracking_number: str, user) -> Order:
    result = await db.execute(select(Order).where(Order.tracking_number == tracking_number.strip().upper()))
    order = result.scalars().first()
    if not order:
        raise NotFoundError(f"Order with tracking number {tracking_number} not found")
    _ensure_owner_or_admin(order, user)
    return order


async def list_orders(
    db: AsyncSession,
    status: Optional[str] = None,
    page: int = 1,
    page_size: int = 20,
) -> dict:
    stmt = select(Order)
    count_stmt = select(func.count(Order.id))

    if status:
        try:
            order_status = OrderStatus(status)
        except ValueError:
            raise DomainValidationError(f"Invalid order status: {status}")
        stmt = stmt.where(Order.order_status == order_status)
        count_stmt = count_stmt.where(Order.order_status == order_status)

    total = (await db.execute(count_stmt)).scalar() or 0
    result = await db.execute(
        stmt.order_by(desc(Order.created_at), desc(Order.id)).offset((page - 1) * page_size).limit(page_size)
    )
    return {
        "total": total,
        "page": page,
        "page_size": page_size,
        "data": result.scalars().all(),
    }


async def get_orders_by_user(db: AsyncSession, user_id: int) -> list[Order]:
    result = await db.execute(
        select(Order).where(Order.user_id == user_id).order_by(desc(Order.created_at), desc(Order.id))
    )
    return result.scalars().all()


async def find_reviewable_orders_by_user(db: AsyncSession, user_id: int) -> list[Order]:
    result = await db.execute(
        select(Order)
        .where(
            Order.user_id == user_id,
            Order.order_status == OrderStatus.COMPLETED,
            or_(Order.is_reviewed == False, Order.is_reviewed.is_(None)),
        )
        .order_by(desc(Order.created_at))
    )
    return result.scalars().all()


async def get_payment_status(db: AsyncSession, order_id: int, user) -> dict:
    order = await get_order_for_user(db, order_id, user)
    return {
        "order_id": order.id,
        "order_status": order.order_status,
        "payment": order.payment,
    }


# ---------------------------
# CREATE
# ---------------------------
async def create_order(db: AsyncSession, payload: OrderCreate, user) -> Order:
    """
    Place an order with its candidates.

    The order and every candidate are written in one transaction. Marking
    the coupon used happens afterwards and is best-effort: a failure there
    is logged and the order stands.
    """
    sub_total_price = to_decimal(payload.subtotal_price)
    promotion_discount = to_decimal(payload.promotion_discount)

    coupon_id = None
    coupon_discount = ZERO
    if payload.coupon_code:
        after_promotion_price = sub_total_price - promotion_discount
        coupon = await validate_coupon(db, payload.coupon_code, after_promotion_price, user.id)
        coupon_id = coupon.id
        coupon_discount = calculate_discount(coupon, after_promotion_price)

    try:
        candidates = []
        for candidate_payload in payload.candidates:
            candidates.append(await create_candidate(db, candidate_payload, commit=False))

        order = Order(
            tracking_number=await _unique_tracking_number(db),
            order_type=payload.order_type,
            order_status=OrderStatus.AWAITING_PAYMENT,
            user_id=user.id,
            sub_total_price=sub_total_price,
            promotion_discount=promotion_discount,
            coupon_discount=coupon_discount,
            total_price=to_decimal(payload.total_price),
            services=[line.model_dump(mode="json") for line in payload.services],
            coupon_id=coupon_id,
            candidates=candidates,
        )
        db.add(order)
        await db.flush()

        await log_user_activity(
            db,
            user_id=user.id,
            username=user.username,
            message=f"Placed order {order.tracking_number} with {len(candidates)} candidate(s)",
            entity_type="order",
            entity_id=order.id
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    order_id = order.id
    logger.info("Order %s created (ID: %s) for user %s", order.tracking_number, order_id, user.id)

    if coupon_id is not None:
        try:
            await mark_as_used(db, coupon_id, order_id)
        except Exception:
            logger.exception("Order %s created but coupon %s could not be marked as used", order_id, coupon_id)
            await db.rollback()

    return await get_order(db, order_id)


# ---------------------------
# STATUS
# ---------------------------
async def update_order_status(db: AsyncSession, order_id: int, status: str, _user=None) -> Order:
    try:
        new_status = OrderStatus(status)
    except ValueError:
        valid = ", ".join(s.value for s in OrderStatus)
        raise DomainValidationError(f"Invalid status '{status}'. Valid statuses: {valid}")

    order = await get_order(db, order_id)
    previous = order.order_status
    order.order_status = new_status

    if _user is not None:
        await log_user_activity(
            db,
            user_id=_user.id,
            username=_user.username,
            message=f"Changed order {order.tracking_number} status from {previous.value} to {new_status.value}",
            entity_type="order",
            entity_id=order.id
        )
    await db.commit()

    logger.info("Order %s status %s -> %s", order_id, previous.value, new_status.value)
    return await get_order(db, order_id)


async def start_processing(db: AsyncSession, order_id: int, _user=None) -> Order:
    """Documents are complete: move a verified order into processing."""
    order = await get_order(db, order_id)
    if order.order_status != OrderStatus.PAYMENT_VERIFIED:
        raise InvalidStateError(
            f"Order must be '{OrderStatus.PAYMENT_VERIFIED.value}' to start processing, "
            f"current status is '{order.order_status.value}'"
        )

    order.order_status = OrderStatus.PROCESSING
    await db.commit()
    logger.info("Order %s moved to processing", order_id)
    return await get_order(db, order_id)


# ---------------------------
# DELETE
# ---------------------------
async def delete_order(db: AsyncSession, storage: FileStorage, order_id: int, _user=None) -> dict:
    """
    Delete an order awaiting payment. Coupon release and candidate removal
    are best-effort; only the final delete of the order itself can fail.
    """
    order = await get_order(db, order_id)
    tracking_number = order.tracking_number
    candidate_ids = [c.id for c in order.candidates]
    receipt_path = (order.payment.transfer_info or {}).get("receipt_path") if order.payment else None

    released = await release_coupon(db, order_id)

    cleanup = await run_cleanup(
        [
            (f"delete_candidate:{cid}", (lambda cid=cid: delete_candidate(db, storage, cid)))
            for cid in candidate_ids
        ],
        session=db,
    )

    order = await get_order(db, order_id)
    await db.delete(order)
    if _user is not None:
        await log_user_activity(
            db,
            user_id=_user.id,
            username=_user.username,
            message=f"Deleted order {tracking_number}",
            entity_type="order",
            entity_id=order_id
        )
    await db.commit()

    if receipt_path:
        receipt_cleanup = await run_cleanup(
            [(f"delete_receipt:{receipt_path}", lambda: storage.delete_file(receipt_path))]
        )
        cleanup["succeeded"] += receipt_cleanup["succeeded"]
        cleanup["failed"] += receipt_cleanup["failed"]

    logger.info(
        "Order %s deleted (coupons released: %s, cleanup failures: %d)",
        order_id, released, len(cleanup["failed"]),
    )
    return {
        "success": True,
        "message": f"Order {tracking_number} deleted successfully",
        "order_id": order_id,
        "coupon_released": released > 0,
        "cleanup": cleanup,
    }


# ---------------------------
# COUPONS ON AN EXISTING ORDER
# ---------------------------
async def apply_coupon(db: AsyncSession, order_id: int, coupon_code: str, user) -> Order:
    order = await get_order_for_user(db, order_id, user)
    _ensure_awaiting_payment(order, "apply a coupon to")
    if order.coupon_id is not None:
        raise InvalidStateError("A coupon is already applied to this order, remove it first")

    after_promotion_price = order.after_promotion_price
    coupon = await validate_coupon(db, coupon_code, after_promotion_price, order.user_id)
    discount = calculate_discount(coupon, after_promotion_price)

    coupon.is_used = True
    coupon.used_at = utcnow()
    coupon.used_in_order_id = order.id

    order.total_price = to_decimal(order.total_price) - discount
    order.coupon = coupon
    order.coupon_discount = discount
    await db.commit()

    logger.info("Coupon %s applied to order %s (discount %s)", coupon.code, order_id, discount)
    return await get_order(db, order_id)


async def remove_coupon(db: AsyncSession, order_id: int, user) -> Order:
    """Restore the order total and hand the coupon back to its holder."""
    order = await get_order_for_user(db, order_id, user)
    _ensure_awaiting_payment(order, "remove a coupon from")
    if order.coupon_id is None:
        raise InvalidStateError("No coupon is applied to this order")

    order.total_price = to_decimal(order.total_price) + to_decimal(order.coupon_discount)
    order.coupon = None
    order.coupon_discount = ZERO
    await db.commit()

    released = await release_coupon(db, order_id)
    logger.info("Coupon removed from order %s (released: %s)", order_id, released)
    return await get_order(db, order_id)


# ---------------------------
# REVIEWS
# ---------------------------
async def mark_order_as_reviewed(db: AsyncSession, order_id: int, review_id: int, commit: bool = True) -> Order:
    order = await get_order(db, order_id)
    order.is_reviewed = True
    order.reviewed_at = utcnow()
    order.review_id = review_id
    if commit:
        await db.commit()
    return order


# ---------------------------
# COMPLETION RECONCILIATION
# ---------------------------
COMPLETABLE_STATUSES = (OrderStatus.PAYMENT_VERIFIED, OrderStatus.PROCESSING)


async def reconcile_order_completion(db: AsyncSession, order_id: int) -> OrderStatus:
    """
    Align the order status with its candidates' results. Idempotent.

    All candidates complete: a paid order (payment verified or processing)
    becomes completed. A completed order whose candidates are no longer all
    complete goes back to processing. Unpaid and cancelled orders and orders
    without candidates are left alone.
    """
    order = await get_order(db, order_id)
    current = order.order_status
    if current == OrderStatus.CANCELLED or not order.candidates:
        return current

    all_complete = all(is_candidate_complete(c) for c in order.candidates)
    if all_complete and current in COMPLETABLE_STATUSES:
        target = OrderStatus.COMPLETED
    elif not all_complete and current == OrderStatus.COMPLETED:
        target = OrderStatus.PROCESSING
    else:
        return current

    order.order_status = target
    await db.commit()
    logger.info("Order %s status reconciled %s -> %s", order_id, current.value, target.value)
    return target


@event_dispatcher.subscribe(CandidateResultsChanged)
async def reconcile_orders_for_candidate(db: AsyncSession, event: CandidateResultsChanged) -> None:
    for order_id in await find_order_ids_for_candidate(db, event.candidate_id):
        await reconcile_order_completion(db, order_id)
