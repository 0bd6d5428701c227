# app/services/payment_service.py
import logging
import random
import time
from typing import Optional

from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError, DomainValidationError, NotFoundError, ForbiddenError
from app.models.order_models import OrderStatus
from app.models.payment_models import Payment, PaymentStatus
from app.schemas.payment_schemas import PaymentCreate, PaymentUpdate
from app.services.order_service import get_order, reconcile_order_completion
from app.services.storage_service import FileStorage, read_upload
from app.utils.activity_helpers import log_user_activity
from app.utils.check_roles import is_admin
from app.utils.cleanup import run_cleanup
from app.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

PAYMENT_PREFIX = "PAY"
RECEIPTS_FOLDER = "receipts"

PAYMENT_TO_ORDER_STATUS = {
    PaymentStatus.COMPLETED: OrderStatus.PAYMENT_VERIFIED,
    PaymentStatus.PENDING_VERIFICATION: OrderStatus.PENDING_VERIFICATION,
    PaymentStatus.FAILED: OrderStatus.AWAITING_PAYMENT,
    PaymentStatus.REFUNDED: OrderStatus.AWAITING_PAYMENT,
    PaymentStatus.AWAITING_PAYMENT: OrderStatus.AWAITING_PAYMENT,
}


def generate_payment_reference() -> str:
    timestamp = str(int(time.time() * 1000))[5:]
    return f"{PAYMENT_PREFIX}{timestamp}{random.randint(0, 999):03d}"


def parse_payment_status(status: str) -> PaymentStatus:
    try:
        return PaymentStatus(status)
    except ValueError:
        valid = ", ".join(s.value for s in PaymentStatus)
        raise DomainValidationError(f"Invalid payment status. Must be one of: {valid}")


# ---------------------------
# READ
# ---------------------------
async def get_payment(db: AsyncSession, payment_id: int) -> Payment:
    result = await db.execute(
        select(Payment)
        .where(Payment.id == payment_id)
        .execution_options(populate_existing=True)
    )
    payment = result.scalars().first()
    if not payment:
        raise NotFoundError(f"Payment with ID {payment_id} not found")
    return payment


async def get_payment_for_user(db: AsyncSession, payment_id: int, user) -> Payment:
    payment = await get_payment(db, payment_id)
    if not is_admin(user) and payment.order.user_id != user.id:
        raise ForbiddenError("You do not have permission to view this payment")
    return payment


async def list_payments(db: AsyncSession, status: Optional[str] = None) -> list[Payment]:
    stmt = select(Payment)
    if status:
        stmt = stmt.where(Payment.payment_status == parse_payment_status(status))
    result = await db.execute(stmt.order_by(desc(Payment.created_at), desc(Payment.id)))
    return result.scalars().all()


async def get_payments_by_order(db: AsyncSession, order_id: int) -> list[Payment]:
    result = await db.execute(select(Payment).where(Payment.order_id == order_id))
    return result.scalars().all()


# ---------------------------
# CREATE
# ---------------------------
async def create_payment(
    db: AsyncSession,
    storage: FileStorage,
    payload: PaymentCreate,
    user,
    receipt=None,
) -> Payment:
    order = await get_order(db, payload.order_id)
    if not is_admin(user) and order.user_id != user.id:
        raise ForbiddenError("You do not have permission to pay for this order")
    if order.payment is not None:
        raise ConflictError("This order already has a payment associated with it")

    reference = generate_payment_reference()
    transfer_info = payload.transfer_info.model_dump(mode="json", exclude_none=True) if payload.transfer_info else {}

    stored = None
    if receipt is not None:
        data = await read_upload(receipt)
        stored = await storage.upload_file(
            data,
            f"{RECEIPTS_FOLDER}/{order.id}",
            f"{reference}_{receipt.filename or 'receipt'}",
            getattr(receipt, "content_type", None),
        )
        transfer_info["receipt_file"] = stored["url"]
        transfer_info["receipt_path"] = stored["path"]

    now = utcnow()
    payment = Payment(
        payment_reference=reference,
        payment_method=payload.payment_method,
        payment_status=PaymentStatus.PENDING_VERIFICATION,
        transfer_info=transfer_info,
        payment_updated_at=now,
        payment_updated_by=user.id,
    )
    order.payment = payment
    order.order_status = OrderStatus.PENDING_VERIFICATION

    try:
        await db.flush()
        await log_user_activity(
            db,
            user_id=user.id,
            username=user.username,
            message=f"Submitted payment {reference} for order {order.tracking_number}",
            entity_type="payment",
            entity_id=payment.id
        )
        await db.commit()
    except Exception:
        await db.rollback()
        if stored:
            await run_cleanup([("delete_receipt", lambda: storage.delete_file(stored["path"]))])
        raise

    logger.info("Payment %s created for order %s", reference, payload.order_id)
    return await get_payment(db, payment.id)


# ---------------------------
# UPDATE
# ---------------------------
def _apply_status(payment: Payment, status: PaymentStatus, user) -> None:
    payment.payment_status = status
    payment.payment_updated_at = utcnow()
    payment.payment_updated_by = getattr(user, "id", None)
    payment.order.order_status = PAYMENT_TO_ORDER_STATUS[status]


async def _reconcile_if_verified(db: AsyncSession, payment: Payment) -> None:
    # results uploaded before the payment cleared can complete the order now
    if payment.order.order_status == OrderStatus.PAYMENT_VERIFIED:
        await reconcile_order_completion(db, payment.order_id)


async def update_payment_status(db: AsyncSession, payment_id: int, status: str, _user=None) -> Payment:
    new_status = parse_payment_status(status)
    payment = await get_payment(db, payment_id)

    _apply_status(payment, new_status, _user)
    if _user is not None:
        await log_user_activity(
            db,
            user_id=_user.id,
            username=_user.username,
            message=f"Set payment {payment.payment_reference} to {new_status.value}",
            entity_type="payment",
            entity_id=payment_id
        )
    await db.commit()
    await _reconcile_if_verified(db, payment)

    logger.info(
        "Payment %s -> %s, order %s -> %s",
        payment_id, new_status.value, payment.order_id, PAYMENT_TO_ORDER_STATUS[new_status].value,
    )
    return await get_payment(db, payment_id)


async def update_payment(db: AsyncSession, payment_id: int, payload: PaymentUpdate, _user=None) -> Payment:
    new_status = parse_payment_status(payload.payment_status) if payload.payment_status else None
    payment = await get_payment(db, payment_id)

    if payload.payment_method:
        payment.payment_method = payload.payment_method
    if payload.transfer_info:
        merged = dict(payment.transfer_info or {})
        merged.update(payload.transfer_info.model_dump(mode="json", exclude_none=True))
        payment.transfer_info = merged

    if new_status is not None:
        _apply_status(payment, new_status, _user)
    else:
        payment.payment_updated_at = utcnow()
        payment.payment_updated_by = getattr(_user, "id", None)

    await db.commit()
    if new_status is not None:
        await _reconcile_if_verified(db, payment)
    return await get_payment(db, payment_id)


# ---------------------------
# DELETE
# ---------------------------
def receipt_cleanup_tasks(storage: FileStorage, transfer_info: Optional[dict]) -> list:
    receipt_path = (transfer_info or {}).get("receipt_path")
    if not receipt_path:
        return []
    return [(f"delete_receipt:{receipt_path}", lambda: storage.delete_file(receipt_path))]


async def remove_payment(db: AsyncSession, storage: FileStorage, payment_id: int, _user=None) -> dict:
    payment = await get_payment(db, payment_id)
    reference = payment.payment_reference
    receipt_tasks = receipt_cleanup_tasks(storage, payment.transfer_info)
    order = await get_order(db, payment.order_id)

    # delete-orphan cascade removes the payment row
    order.payment = None
    order.order_status = OrderStatus.AWAITING_PAYMENT

    if _user is not None:
        await log_user_activity(
            db,
            user_id=_user.id,
            username=_user.username,
            message=f"Removed payment {reference} from order {order.tracking_number}",
            entity_type="payment",
            entity_id=payment_id
        )
    await db.commit()

    # the row is gone; a receipt file left behind is only logged
    cleanup = await run_cleanup(receipt_tasks)

    logger.info("Payment %s removed, order %s back to awaiting payment", reference, order.id)
    return {"message": f"Payment {reference} removed", "order_id": order.id, "cleanup": cleanup}
