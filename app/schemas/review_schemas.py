# app/schemas/review_schemas.py
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field
from app.models.order_models import OrderStatus


class ReviewCreate(BaseModel):
    order_id: int
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None
    is_public: bool = True
    tags: List[str] = Field(default_factory=list)


class ReviewOut(BaseModel):
    id: int
    order_id: int
    user_id: int
    rating: int
    comment: Optional[str]
    is_public: bool
    tags: List[str]
    order_details: Optional[dict] = None
    user_details: Optional[dict] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ReviewStatus(BaseModel):
    order_id: int
    can_review: bool
    is_completed: bool
    is_reviewed: bool
    reviewed_at: Optional[datetime] = None
    order_status: OrderStatus
