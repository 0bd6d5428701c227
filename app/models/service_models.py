# app/models/service_models.py
from sqlalchemy import Column, Integer, String, Numeric, Boolean, JSON, DateTime
from sqlalchemy.sql import func
from app.core.db import Base

class Service(Base):
    """Catalog entry for a background-check service. Read-only for the order flow."""
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(String, nullable=True)
    price = Column(Numeric(14, 2), nullable=False, default=0)
    # [{"document_id", "document_name", "required", "file_types", "max_size"}]
    required_documents = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
