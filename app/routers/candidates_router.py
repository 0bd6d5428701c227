# app/routers/candidates_router.py
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.models.candidate_models import ResultStatus
from app.schemas.candidate_schemas import (
    CandidateOut,
    CandidateResultsResponse,
    ResultRecord,
    UploadResultData,
)
from app.schemas.response_schemas import ResponseMessage
from app.services.candidate_service import (
    delete_service_result,
    delete_summary_result,
    get_candidate,
    get_candidate_results,
    get_service_result,
    open_result_file,
    upload_service_result,
    upload_summary_result,
)
from app.services.storage_service import FileStorage, get_storage
from app.utils.check_roles import require_role
from app.utils.get_user import get_current_user

router = APIRouter(prefix="/candidates", tags=["Candidates"])


def _content_disposition(filename: str) -> str:
    # headers are latin-1; non-ASCII names go in filename* (RFC 5987) with an ASCII fallback
    quoted = quote(filename)
    if quoted == filename:
        return f'attachment; filename="{filename}"'
    fallback = filename.encode("ascii", "ignore").decode().strip("_") or "download"
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quoted}"


def _download_response(record: dict, stream) -> StreamingResponse:
    return StreamingResponse(
        stream,
        media_type=record.get("file_type") or "application/octet-stream",
        headers={"Content-Disposition": _content_disposition(record["file_name"])},
    )


@router.get("/{candidate_id}", response_model=ResponseMessage[CandidateOut])
@require_role(["admin"])
async def get_candidate_route(
    candidate_id: int,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    candidate = await get_candidate(db, candidate_id)
    return {"message": "Candidate fetched successfully", "data": CandidateOut.model_validate(candidate)}


@router.get("/{candidate_id}/results", response_model=ResponseMessage[CandidateResultsResponse])
async def candidate_results_route(
    candidate_id: int,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    results = await get_candidate_results(db, candidate_id, _user)
    return {"message": "Candidate results fetched successfully", "data": results}


# -----------------------------------------------------------
# PER-SERVICE RESULTS
# -----------------------------------------------------------
@router.post("/{candidate_id}/services/{service_id}/result", response_model=ResponseMessage[CandidateOut])
@require_role(["admin"])
async def upload_service_result_route(
    candidate_id: int,
    service_id: int,
    file: UploadFile = File(...),
    result_status: ResultStatus = Form(ResultStatus.PENDING),
    result_notes: Optional[str] = Form(None),
    db: AsyncSession = Depends(get_db),
    storage: FileStorage = Depends(get_storage),
    _user=Depends(get_current_user),
):
    payload = UploadResultData(result_status=result_status, result_notes=result_notes)
    candidate = await upload_service_result(db, storage, candidate_id, service_id, file, payload, _user)
    return {"message": "Service result uploaded", "data": CandidateOut.model_validate(candidate)}


@router.get("/{candidate_id}/services/{service_id}/result", response_model=ResponseMessage[ResultRecord])
async def get_service_result_route(
    candidate_id: int,
    service_id: int,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    record = await get_service_result(db, candidate_id, service_id, _user)
    return {"message": "Service result fetched successfully", "data": record}


@router.get("/{candidate_id}/services/{service_id}/result/download")
async def download_service_result_route(
    candidate_id: int,
    service_id: int,
    db: AsyncSession = Depends(get_db),
    storage: FileStorage = Depends(get_storage),
    _user=Depends(get_current_user),
):
    record, stream = await open_result_file(db, storage, candidate_id, _user, service_id=service_id)
    return _download_response(record, stream)


@router.delete("/{candidate_id}/services/{service_id}/result", response_model=ResponseMessage[CandidateOut])
@require_role(["admin"])
async def delete_service_result_route(
    candidate_id: int,
    service_id: int,
    db: AsyncSession = Depends(get_db),
    storage: FileStorage = Depends(get_storage),
    _user=Depends(get_current_user),
):
    candidate = await delete_service_result(db, storage, candidate_id, service_id)
    return {"message": "Service result deleted", "data": CandidateOut.model_validate(candidate)}


# -----------------------------------------------------------
# SUMMARY RESULT
# -----------------------------------------------------------
@router.post("/{candidate_id}/summary", response_model=ResponseMessage[CandidateOut])
@require_role(["admin"])
async def upload_summary_result_route(
    candidate_id: int,
    file: UploadFile = File(...),
    result_status: ResultStatus = Form(ResultStatus.PENDING),
    result_notes: Optional[str] = Form(None),
    db: AsyncSession = Depends(get_db),
    storage: FileStorage = Depends(get_storage),
    _user=Depends(get_current_user),
):
    payload = UploadResultData(result_status=result_status, result_notes=result_notes)
    candidate = await upload_summary_result(db, storage, candidate_id, file, payload, _user)
    return {"message": "Summary result uploaded", "data": CandidateOut.model_validate(candidate)}


@router.get("/{candidate_id}/summary/download")
async def download_summary_result_route(
    candidate_id: int,
    db: AsyncSession = Depends(get_db),
    storage: FileStorage = Depends(get_storage),
    _user=Depends(get_current_user),
):
    record, stream = await open_result_file(db, storage, candidate_id, _user)
    return _download_response(record, stream)


@router.delete("/{candidate_id}/summary", response_model=ResponseMessage[CandidateOut])
@require_role(["admin"])
async def delete_summary_result_route(
    candidate_id: int,
    db: AsyncSession = Depends(get_db),
    storage: FileStorage = Depends(get_storage),
    _user=Depends(get_current_user),
):
    candidate = await delete_summary_result(db, storage, candidate_id)
    return {"message": "Summary result deleted", "data": CandidateOut.model_validate(candidate)}
