# app/models/review_models.py
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean, JSON, UniqueConstraint
from sqlalchemy.sql import func
from app.core.db import Base


class Review(Base):
    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    rating = Column(Integer, nullable=False)
    comment = Column(String, nullable=True)
    is_public = Column(Boolean, default=True)
    tags = Column(JSON, nullable=False, default=list)

    # snapshots for fast reads
    order_details = Column(JSON, nullable=True)
    user_details = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (UniqueConstraint("order_id", "user_id", name="uq_review_order_user"),)
