# app/models/payment_models.py
import enum
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Enum, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.db import Base


class PaymentMethod(str, enum.Enum):
    QR_PAYMENT = "qr_payment"
    BANK_TRANSFER = "bank_transfer"


class PaymentStatus(str, enum.Enum):
    PENDING_VERIFICATION = "pending_verification"
    COMPLETED = "completed"
    AWAITING_PAYMENT = "awaiting_payment"
    FAILED = "failed"
    REFUNDED = "refunded"


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    payment_reference = Column(String(32), unique=True, nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)

    payment_method = Column(Enum(PaymentMethod, name="payment_method"), nullable=False)
    payment_status = Column(
        Enum(PaymentStatus, name="payment_status"), nullable=False, default=PaymentStatus.PENDING_VERIFICATION
    )
    # {"name", "date", "amount", "reference", "receipt_file", "receipt_path"}
    transfer_info = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    payment_updated_at = Column(DateTime(timezone=True), nullable=True)
    payment_updated_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    order = relationship("Order", back_populates="payment", lazy="selectin")
