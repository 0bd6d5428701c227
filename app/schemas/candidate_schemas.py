# app/schemas/candidate_schemas.py
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field
from app.models.candidate_models import ResultStatus


class CandidateCreate(BaseModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: Optional[str] = None
    company_name: Optional[str] = None
    services: List[int] = Field(default_factory=list)


class ServiceBrief(BaseModel):
    id: int
    title: str

    model_config = ConfigDict(from_attributes=True)


class ResultRecord(BaseModel):
    service_id: Optional[int] = None
    service_name: Optional[str] = None
    file_url: str
    file_path: str
    file_name: str
    file_type: Optional[str] = None
    file_size: int
    result_status: ResultStatus = ResultStatus.PENDING
    result_added_at: datetime
    result_added_by: Optional[int] = None
    result_notes: Optional[str] = None


class UploadResultData(BaseModel):
    result_status: ResultStatus = ResultStatus.PENDING
    result_notes: Optional[str] = None


class CandidateOut(BaseModel):
    id: int
    first_name: str
    last_name: str
    email: Optional[str]
    company_name: Optional[str]
    services: List[ServiceBrief] = []
    service_results: List[ResultRecord] = []
    summary_result: Optional[ResultRecord] = None
    # deprecated single-result shape, read-only projection of summary_result
    result: Optional[ResultRecord] = None

    model_config = ConfigDict(from_attributes=True)


class ServiceResultStatus(BaseModel):
    service_id: int
    service_name: str
    has_result: bool
    result: Optional[ResultRecord] = None


class CandidateResultsResponse(BaseModel):
    candidate_id: int
    candidate_name: str
    services: List[ServiceResultStatus]
    summary_result: Optional[ResultRecord] = None
    total_services: int
    completed_services: int
    is_complete: bool
    completion_percentage: int


class FileDownload(BaseModel):
    download_url: str
    file_name: str
