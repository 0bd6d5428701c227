# app/models/coupon_models.py
import enum
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean, Enum, Index
from sqlalchemy.sql import func
from app.core.db import Base


class CouponType(str, enum.Enum):
    PUBLIC = "PUBLIC"
    SURVEY = "SURVEY"
    PRIVATE = "PRIVATE"
    SPECIAL = "SPECIAL"


class Coupon(Base):
    """
    A coupon row is either a template (``original_coupon_id`` is null) or a
    personal claim copied from a public template (``original_coupon_id`` set).
    Directly issued personal coupons (survey rewards) have ``claimed_by`` set
    without an origin.
    """
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True, index=True)
    # claim copies reuse the template code, so the code is not unique
    code = Column(String(50), nullable=False, index=True)
    discount_percent = Column(Integer, nullable=False)
    expiry_date = Column(DateTime(timezone=True), nullable=False)
    description = Column(String(255), nullable=False, default="")
    coupon_type = Column(Enum(CouponType, name="coupon_type"), nullable=False, default=CouponType.PUBLIC)

    is_active = Column(Boolean, nullable=False, default=True)
    is_used = Column(Boolean, nullable=False, default=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    used_in_order_id = Column(Integer, nullable=True, index=True)
    # set when a use is rolled back by releasing the order; used_at is cleared then
    released_at = Column(DateTime(timezone=True), nullable=True)

    is_public = Column(Boolean, nullable=False, default=False)
    is_claimable = Column(Boolean, nullable=False, default=True)
    remaining_claims = Column(Integer, nullable=False, default=-1)  # -1 = unlimited

    claimed_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    claimed_at = Column(DateTime(timezone=True), nullable=True)
    original_coupon_id = Column(Integer, ForeignKey("coupons.id", ondelete="SET NULL"), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        Index("ix_coupons_claim_lookup", "original_coupon_id", "claimed_by"),
    )

    @property
    def is_template(self) -> bool:
        return self.original_coupon_id is None and self.claimed_by is None

    @property
    def is_claim(self) -> bool:
        return self.original_coupon_id is not None

    @property
    def has_remaining_claims(self) -> bool:
        return self.remaining_claims == -1 or self.remaining_claims > 0
