# app/models/candidate_models.py
import enum
from sqlalchemy import Column, Integer, String, ForeignKey, JSON, DateTime, Table
from sqlalchemy.ext.mutable import MutableList
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.db import Base


class ResultStatus(str, enum.Enum):
    PASS = "pass"
    FAIL = "fail"
    PENDING = "pending"


candidate_services = Table(
    "candidate_services",
    Base.metadata,
    Column("candidate_id", Integer, ForeignKey("candidates.id", ondelete="CASCADE"), primary_key=True),
    Column("service_id", Integer, ForeignKey("services.id", ondelete="CASCADE"), primary_key=True),
)


class Candidate(Base):
    __tablename__ = "candidates"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=True)
    company_name = Column(String(255), nullable=True)

    # [{"service_id", "service_name", "file_url", "file_path", "file_name", "file_type",
    #   "file_size", "result_status", "result_added_at", "result_added_by", "result_notes"}]
    service_results = Column(MutableList.as_mutable(JSON), nullable=False, default=list)
    summary_result = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    services = relationship("Service", secondary=candidate_services, lazy="selectin")
    orders = relationship("Order", secondary="order_candidates", back_populates="candidates", lazy="selectin")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def result(self):
        """Legacy single-result shape, projected from the summary result."""
        return self.summary_result
