# app/models/order_models.py
import enum
from decimal import Decimal
from sqlalchemy import (
    Column, Integer, String, ForeignKey, Numeric, DateTime, Boolean, Enum, JSON, Table
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.db import Base


class OrderStatus(str, enum.Enum):
    AWAITING_PAYMENT = "awaiting_payment"
    PENDING_VERIFICATION = "pending_verification"
    PAYMENT_VERIFIED = "payment_verified"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class OrderType(str, enum.Enum):
    COMPANY = "company"
    PERSONAL = "personal"


order_candidates = Table(
    "order_candidates",
    Base.metadata,
    Column("order_id", Integer, ForeignKey("orders.id", ondelete="CASCADE"), primary_key=True),
    Column("candidate_id", Integer, ForeignKey("candidates.id", ondelete="CASCADE"), primary_key=True),
)


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    tracking_number = Column(String(32), unique=True, nullable=False, index=True)
    order_type = Column(Enum(OrderType, name="order_type"), nullable=False)
    order_status = Column(
        Enum(OrderStatus, name="order_status"), nullable=False, default=OrderStatus.AWAITING_PAYMENT, index=True
    )
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    sub_total_price = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    promotion_discount = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    coupon_discount = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    total_price = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))

    # snapshot at creation: [{"service_id", "title", "quantity", "price"}]
    services = Column(JSON, nullable=False, default=list)

    coupon_id = Column(Integer, ForeignKey("coupons.id", ondelete="SET NULL"), nullable=True)

    is_reviewed = Column(Boolean, nullable=False, default=False)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    review_id = Column(Integer, nullable=True)

    payment_notification_sent = Column(Boolean, default=False)
    payment_approval_sent = Column(Boolean, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), server_default=func.now())

    # relationships
    user = relationship("User", lazy="selectin")
    candidates = relationship("Candidate", secondary=order_candidates, back_populates="orders", lazy="selectin")
    coupon = relationship("Coupon", lazy="selectin")
    payment = relationship(
        "Payment", back_populates="order", uselist=False, cascade="all, delete-orphan", lazy="selectin"
    )

    @property
    def after_promotion_price(self) -> Decimal:
        return Decimal(self.sub_total_price or 0) - Decimal(self.promotion_discount or 0)
