# app/services/coupon_service.py
import logging
import random
import time
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import select, update, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    ConflictError,
    DomainValidationError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
)
from app.models.coupon_models import Coupon, CouponType
from app.schemas.coupon_schemas import CouponCreate, CouponUpdate, EasyCodeCouponCreate, PublicCouponCreate
from app.utils.activity_helpers import log_user_activity
from app.utils.datetime_utils import add_months, is_expired, utcnow
from app.utils.decimal_utils import floor_amount, to_decimal

logger = logging.getLogger(__name__)

SURVEY_CODE_PREFIX = "SUR"
SURVEY_DISCOUNT_PERCENT = 15
SURVEY_VALID_MONTHS = 3
SURVEY_CODE_ATTEMPTS = 10


def normalize_code(code: str) -> str:
    return code.strip().upper()


# --------------------------
# CREATE (admin)
# --------------------------
async def _ensure_code_available(db: AsyncSession, code: str, exclude_id: Optional[int] = None):
    stmt = select(Coupon.id).where(Coupon.code == code)
    if exclude_id is not None:
        stmt = stmt.where(Coupon.id != exclude_id)
    existing = await db.execute(stmt.limit(1))
    if existing.scalar_one_or_none() is not None:
        raise ConflictError(f"Coupon with code {code} already exists")


async def create_coupon(db: AsyncSession, payload: CouponCreate, _user=None) -> Coupon:
    code = normalize_code(payload.code)
    await _ensure_code_available(db, code)

    coupon = Coupon(**payload.model_dump(exclude={"code"}), code=code)
    db.add(coupon)
    await db.flush()

    if _user is not None:
        await log_user_activity(
            db=db,
            user_id=_user.id,
            username=_user.username,
            message=f"Created coupon '{code}' ({coupon.discount_percent}%)",
            entity_type="coupon",
            entity_id=coupon.id
        )

    await db.commit()
    await db.refresh(coupon)
    return coupon


async def create_public_coupon(db: AsyncSession, payload: PublicCouponCreate, _user=None) -> Coupon:
    code = normalize_code(payload.code)
    await _ensure_code_available(db, code)

    coupon = Coupon(
        code=code,
        discount_percent=payload.discount_percent,
        expiry_date=payload.expiry_date,
        description=payload.description,
        is_active=True,
        is_public=True,
        is_claimable=True,
        remaining_claims=payload.remaining_claims if payload.remaining_claims else -1,
        coupon_type=payload.coupon_type or CouponType.PUBLIC,
    )
    db.add(coupon)
    await db.flush()

    if _user is not None:
        await log_user_activity(
            db=db,
            user_id=_user.id,
            username=_user.username,
            message=f"Created public coupon '{code}' ({coupon.discount_percent}%)",
            entity_type="coupon",
            entity_id=coupon.id
        )

    await db.commit()
    await db.refresh(coupon)
    return coupon


EASY_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
EASY_CODE_LENGTH = 6
EASY_CODE_ATTEMPTS = 10


async def _generate_unique_easy_code(db: AsyncSession, prefix: str = "") -> str:
    # ambiguous characters (0/O, 1/I) are left out of the alphabet
    prefix = normalize_code(prefix) if prefix else ""
    if prefix and not prefix.endswith("-"):
        prefix += "-"

    for _ in range(EASY_CODE_ATTEMPTS):
        code = prefix + "".join(random.choice(EASY_CODE_ALPHABET) for _ in range(EASY_CODE_LENGTH))
        existing = await db.execute(select(Coupon.id).where(Coupon.code == code).limit(1))
        if existing.scalar_one_or_none() is None:
            return code

    timestamp = str(int(time.time() * 1000))[-6:]
    return f"{prefix}{timestamp}" if prefix else f"COUP{timestamp}"


async def create_easy_code_coupon(db: AsyncSession, payload: EasyCodeCouponCreate, _user=None) -> Coupon:
    """Public coupon with a generated, easy to type code such as ``SUMMER-K7QX2M``."""
    code = await _generate_unique_easy_code(db, payload.prefix)
    return await create_public_coupon(
        db,
        PublicCouponCreate(
            code=code,
            discount_percent=payload.discount_percent,
            expiry_date=payload.expiry_date,
            description=payload.description,
            remaining_claims=payload.remaining_claims,
        ),
        _user,
    )


# --------------------------
# READ
# --------------------------
async def get_coupon(db: AsyncSession, coupon_id: int) -> Coupon:
    coupon = await db.get(Coupon, coupon_id)
    if not coupon:
        raise NotFoundError(f"Coupon with ID {coupon_id} not found")
    return coupon


async def get_all_coupons(db: AsyncSession) -> list[Coupon]:
    result = await db.execute(select(Coupon).order_by(Coupon.id))
    return result.scalars().all()


async def find_public_coupons(db: AsyncSession, coupon_type: CouponType = CouponType.PUBLIC) -> list[Coupon]:
    result = await db.execute(
        select(Coupon)
        .where(
            Coupon.is_public == True,
            Coupon.is_active == True,
            Coupon.is_claimable == True,
            Coupon.expiry_date > utcnow(),
            Coupon.coupon_type == coupon_type,
            or_(Coupon.remaining_claims == -1, Coupon.remaining_claims > 0),
        )
        .order_by(Coupon.expiry_date)
    )
    return result.scalars().all()


async def find_user_coupons(db: AsyncSession, user_id: int, include_used: bool = False) -> list[Coupon]:
    filters = [
        Coupon.claimed_by == user_id,
        Coupon.is_active == True,
        Coupon.expiry_date > utcnow(),
    ]
    if not include_used:
        filters.append(Coupon.is_used == False)

    result = await db.execute(select(Coupon).where(*filters).order_by(Coupon.claimed_at.desc()))
    return result.scalars().all()


async def get_claimed_status(db: AsyncSession, user_id: int, coupon_ids: Iterable[int]) -> dict[int, bool]:
    """Map each template id to whether the user already holds a claim of it."""
    ids = list(coupon_ids)
    if not ids:
        return {}
    result = await db.execute(
        select(Coupon.original_coupon_id).where(
            Coupon.original_coupon_id.in_(ids),
            Coupon.claimed_by == user_id,
        )
    )
    claimed = set(result.scalars().all())
    return {coupon_id: coupon_id in claimed for coupon_id in ids}


async def _find_claim(db: AsyncSession, template_id: int, user_id: int, unused_only: bool = False) -> Optional[Coupon]:
    filters = [Coupon.original_coupon_id == template_id, Coupon.claimed_by == user_id]
    if unused_only:
        filters += [Coupon.is_used == False, Coupon.is_active == True]
    result = await db.execute(select(Coupon).where(*filters).order_by(Coupon.id).limit(1))
    return result.scalars().first()


# --------------------------
# VALIDATE / DISCOUNT
# --------------------------
async def validate_coupon(
    db: AsyncSession,
    code: str,
    after_promotion_price,
    user_id: Optional[int] = None,
) -> Coupon:
    """
    Resolve ``code`` to the coupon row that would actually be consumed.

    A user's own unused claim wins over any template. Public templates are
    never consumed directly: the caller must hold a claim, and the claim is
    returned instead of the template.
    """
    if not code or not isinstance(code, str) or not code.strip():
        raise DomainValidationError("Invalid coupon code")

    price = to_decimal(after_promotion_price)
    if price <= 0:
        raise DomainValidationError("Invalid amount")

    clean_code = normalize_code(code)

    if user_id is not None:
        result = await db.execute(
            select(Coupon)
            .where(
                Coupon.code == clean_code,
                Coupon.claimed_by == user_id,
                Coupon.is_used == False,
                Coupon.is_active == True,
            )
            .order_by(Coupon.id)
            .limit(1)
        )
        personal = result.scalars().first()
        if personal:
            if is_expired(personal.expiry_date):
                raise InvalidStateError("This coupon has expired")
            logger.debug("Coupon %s resolved to personal claim %s", clean_code, personal.id)
            return personal

    result = await db.execute(
        select(Coupon)
        .where(Coupon.code == clean_code, Coupon.original_coupon_id.is_(None))
        .order_by(Coupon.id)
        .limit(1)
    )
    template = result.scalars().first()
    if not template:
        raise NotFoundError("Coupon not found")

    if not template.is_active:
        raise InvalidStateError("This coupon is not active")
    if is_expired(template.expiry_date):
        raise InvalidStateError("This coupon has expired")

    if template.is_public:
        if user_id is None:
            raise DomainValidationError("Please sign in to use this coupon")

        claim = await _find_claim(db, template.id, user_id, unused_only=True)
        if not claim:
            raise InvalidStateError("You have not claimed this coupon yet, please claim it before use")
        if is_expired(claim.expiry_date):
            raise InvalidStateError("This coupon has expired")
        return claim

    if template.claimed_by is not None and template.claimed_by != user_id:
        raise ForbiddenError("This coupon does not belong to you")

    if template.is_used:
        raise InvalidStateError("This coupon has already been used")

    return template


def calculate_discount(coupon: Coupon, after_promotion_price) -> Decimal:
    amount = Decimal(str(after_promotion_price)) * Decimal(coupon.discount_percent) / Decimal(100)
    return floor_amount(amount)


async def check_coupon(
    db: AsyncSession,
    code: str,
    subtotal,
    promotion_discount=0,
    user_id: Optional[int] = None,
) -> dict:
    """Quote a coupon against a prospective basket without consuming it."""
    if not code or not code.strip():
        raise DomainValidationError("Please enter a coupon code")

    subtotal = to_decimal(subtotal)
    promotion_discount = to_decimal(promotion_discount)
    if subtotal <= 0:
        raise DomainValidationError("Invalid subtotal")
    if promotion_discount < 0:
        raise DomainValidationError("Invalid promotion discount")

    after_promotion_price = subtotal - promotion_discount
    if after_promotion_price <= 0:
        raise DomainValidationError("Amount after promotion must be greater than zero")

    coupon = await validate_coupon(db, code, after_promotion_price, user_id)
    return {
        "coupon": coupon,
        "discount_amount": calculate_discount(coupon, after_promotion_price),
    }


# --------------------------
# CLAIM
# --------------------------
async def claim_coupon(db: AsyncSession, coupon_id: int, user_id: int) -> Coupon:
    if not coupon_id or not user_id:
        raise DomainValidationError("Incomplete claim request")

    template = await db.get(Coupon, coupon_id)
    if not template:
        raise NotFoundError(f"Coupon with ID {coupon_id} not found")

    if not template.is_active or not template.is_claimable or not template.is_public:
        raise InvalidStateError("This coupon cannot be claimed")
    if is_expired(template.expiry_date):
        raise InvalidStateError("This coupon has expired")
    if not template.has_remaining_claims:
        raise InvalidStateError("This coupon has no claims remaining")

    if await _find_claim(db, template.id, user_id):
        raise ConflictError("You have already claimed this coupon")

    if template.remaining_claims != -1:
        # decrement-if-positive, so concurrent claims cannot oversubscribe the template
        result = await db.execute(
            update(Coupon)
            .where(Coupon.id == template.id, Coupon.remaining_claims > 0)
            .values(remaining_claims=Coupon.remaining_claims - 1)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount == 0:
            await db.rollback()
            raise InvalidStateError("This coupon has no claims remaining")

    claim = Coupon(
        code=template.code,
        discount_percent=template.discount_percent,
        expiry_date=template.expiry_date,
        description=template.description or "",
        coupon_type=template.coupon_type,
        is_active=True,
        is_public=False,
        is_claimable=False,
        remaining_claims=-1,
        claimed_by=user_id,
        claimed_at=utcnow(),
        original_coupon_id=template.id,
    )
    db.add(claim)
    await db.commit()
    await db.refresh(claim)

    logger.info("User %s claimed coupon %s (claim %s)", user_id, template.code, claim.id)
    return claim


# --------------------------
# USAGE
# --------------------------
async def mark_as_used(db: AsyncSession, coupon_id: int, order_id: Optional[int] = None) -> Coupon:
    coupon = await db.get(Coupon, coupon_id)
    if not coupon:
        raise NotFoundError(f"Coupon with ID {coupon_id} not found")

    coupon.is_used = True
    coupon.used_at = utcnow()
    if order_id is not None:
        coupon.used_in_order_id = order_id

    await db.commit()
    await db.refresh(coupon)
    logger.info("Coupon %s (%s) marked as used in order %s", coupon.id, coupon.code, order_id)
    return coupon


async def release_coupon(db: AsyncSession, order_id: int) -> int:
    """
    Reset every coupon consumed by ``order_id`` back to unused.

    Never raises: a failure is logged and reported as zero released.
    """
    try:
        result = await db.execute(
            select(Coupon).where(Coupon.used_in_order_id == order_id, Coupon.is_used == True)
        )
        used_coupons = result.scalars().all()
        if not used_coupons:
            logger.info("No coupons to release for order %s", order_id)
            return 0

        await db.execute(
            update(Coupon)
            .where(Coupon.used_in_order_id == order_id, Coupon.is_used == True)
            .values(is_used=False, used_at=None, used_in_order_id=None, released_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        await db.commit()

        for coupon in used_coupons:
            logger.info("Coupon released: %s (ID: %s) from order %s", coupon.code, coupon.id, order_id)
        return len(used_coupons)
    except Exception:
        logger.exception("Error releasing coupons for order %s", order_id)
        await db.rollback()
        return 0


async def find_released_coupons(db: AsyncSession, limit: int = 50) -> list[Coupon]:
    result = await db.execute(
        select(Coupon)
        .where(
            Coupon.is_used == False,
            Coupon.released_at.is_not(None),
            Coupon.used_in_order_id.is_(None),
        )
        .order_by(Coupon.released_at.desc())
        .limit(limit)
    )
    return result.scalars().all()


# --------------------------
# SURVEY REWARD
# --------------------------
async def find_survey_coupon_by_user(db: AsyncSession, user_id: int) -> Optional[Coupon]:
    result = await db.execute(
        select(Coupon)
        .where(Coupon.claimed_by == user_id, Coupon.coupon_type == CouponType.SURVEY)
        .limit(1)
    )
    return result.scalars().first()


async def _generate_unique_survey_code(db: AsyncSession) -> str:
    for _ in range(SURVEY_CODE_ATTEMPTS):
        code = f"{SURVEY_CODE_PREFIX}{random.randint(0, 9999):04d}"
        existing = await db.execute(select(Coupon.id).where(Coupon.code == code).limit(1))
        if existing.scalar_one_or_none() is None:
            return code

    timestamp = str(int(time.time() * 1000))[-4:]
    return f"{SURVEY_CODE_PREFIX}{timestamp}"


async def create_survey_coupon(db: AsyncSession, user_id: int) -> Coupon:
    if await find_survey_coupon_by_user(db, user_id):
        raise ConflictError("You have already received the survey coupon")

    now = utcnow()
    coupon = Coupon(
        code=await _generate_unique_survey_code(db),
        discount_percent=SURVEY_DISCOUNT_PERCENT,
        expiry_date=add_months(now, SURVEY_VALID_MONTHS),
        description="Discount coupon for completing the survey",
        coupon_type=CouponType.SURVEY,
        is_active=True,
        is_public=False,
        is_claimable=False,
        claimed_by=user_id,
        claimed_at=now,
    )
    db.add(coupon)
    await db.commit()
    await db.refresh(coupon)

    logger.info("Issued survey coupon %s to user %s", coupon.code, user_id)
    return coupon


# --------------------------
# UPDATE / DELETE (admin)
# --------------------------
async def update_coupon(db: AsyncSession, coupon_id: int, payload: CouponUpdate, _user=None) -> Coupon:
    coupon = await get_coupon(db, coupon_id)
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)

    if "code" in changes:
        changes["code"] = normalize_code(changes["code"])
        if changes["code"] != coupon.code:
            await _ensure_code_available(db, changes["code"], exclude_id=coupon.id)

    for field, value in changes.items():
        setattr(coupon, field, value)

    if _user is not None:
        await log_user_activity(
            db=db,
            user_id=_user.id,
            username=_user.username,
            message=f"Updated coupon '{coupon.code}' ({', '.join(sorted(changes)) or 'no changes'})",
            entity_type="coupon",
            entity_id=coupon.id
        )
    await db.commit()
    await db.refresh(coupon)

    logger.info("Coupon %s updated: %s", coupon_id, sorted(changes))
    return coupon


async def delete_coupon(db: AsyncSession, coupon_id: int, _user=None) -> dict:
    """
    Delete a coupon row. Claims copied from it keep working as personal
    coupons; ``original_coupon_id`` and ``orders.coupon_id`` are nulled by the FKs.
    """
    coupon = await get_coupon(db, coupon_id)
    code = coupon.code

    await db.delete(coupon)
    if _user is not None:
        await log_user_activity(
            db=db,
            user_id=_user.id,
            username=_user.username,
            message=f"Deleted coupon '{code}'",
            entity_type="coupon",
            entity_id=coupon_id
        )
    await db.commit()

    logger.info("Coupon %s (%s) deleted", coupon_id, code)
    return {"message": f"Coupon {code} deleted", "coupon_id": coupon_id}


# --------------------------
# ADMIN OVERVIEW
# --------------------------
async def get_coupon_overview(db: AsyncSession) -> dict:
    coupons = await get_all_coupons(db)

    public_templates = [
        c for c in coupons if c.is_public and c.claimed_by is None and c.coupon_type == CouponType.PUBLIC
    ]
    survey_templates = [
        c for c in coupons if c.is_public and c.claimed_by is None and c.coupon_type == CouponType.SURVEY
    ]
    claimed = [c for c in coupons if c.claimed_by is not None]

    return {
        "total": len(coupons),
        "by_type": {
            "public": len(public_templates),
            "survey": len(survey_templates),
            "claimed": len(claimed),
            "used": sum(1 for c in coupons if c.is_used),
        },
        "claimed_by_type": {
            coupon_type.value: sum(1 for c in claimed if c.coupon_type == coupon_type)
            for coupon_type in CouponType
        },
        "public_coupons": public_templates,
        "survey_coupons": survey_templates,
    }
