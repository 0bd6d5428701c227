# app/services/candidate_service.py
import logging
import os
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import DomainValidationError, ForbiddenError, NotFoundError
from app.events import CandidateResultsChanged, event_dispatcher
from app.models.candidate_models import Candidate, ResultStatus
from app.models.order_models import Order, order_candidates
from app.models.service_models import Service
from app.schemas.candidate_schemas import CandidateCreate, UploadResultData
from app.services.storage_service import FileStorage, read_upload, safe_filename
from app.utils.check_roles import is_admin
from app.utils.cleanup import run_cleanup
from app.utils.datetime_utils import utcnow
from app.utils.decimal_utils import percentage

logger = logging.getLogger(__name__)

RESULTS_FOLDER = "results"


# ---------------------------
# HELPERS
# ---------------------------
def is_candidate_complete(candidate: Candidate) -> bool:
    """Every assigned service has a result and the summary result is set."""
    if not candidate.summary_result:
        return False
    uploaded = {r.get("service_id") for r in (candidate.service_results or [])}
    return all(service.id in uploaded for service in candidate.services)


def build_result_filename(candidate: Candidate, label: str, original_name: Optional[str]) -> str:
    _, ext = os.path.splitext(original_name or "")
    stamp = utcnow().strftime("%Y%m%d%H%M%S")
    return safe_filename(f"{candidate.first_name}_{candidate.last_name}_{label}_{stamp}") + ext.lower()


def _result_record(stored: dict, upload, payload: UploadResultData, uploader) -> dict:
    return {
        "file_url": stored["url"],
        "file_path": stored["path"],
        "file_name": stored["filename"],
        "file_type": getattr(upload, "content_type", None),
        "file_size": stored["size"],
        "result_status": (payload.result_status or ResultStatus.PENDING).value,
        "result_added_at": utcnow().isoformat(),
        "result_added_by": getattr(uploader, "id", None),
        "result_notes": payload.result_notes,
    }


def _ensure_can_view(candidate: Candidate, requester) -> None:
    if is_admin(requester):
        return
    if any(order.user_id == requester.id for order in candidate.orders):
        return
    raise ForbiddenError("You do not have permission to view this candidate")


async def _delete_stored_file(storage: FileStorage, path: Optional[str]) -> None:
    if not path:
        return
    summary = await run_cleanup([("delete_file", lambda: storage.delete_file(path))])
    if summary["failed"]:
        logger.warning("Could not delete stored file %s", path)


async def _results_changed(db: AsyncSession, candidate_id: int) -> None:
    await event_dispatcher.publish(db, CandidateResultsChanged(candidate_id=candidate_id))


# ---------------------------
# CRUD
# ---------------------------
async def get_candidate(db: AsyncSession, candidate_id: int) -> Candidate:
    result = await db.execute(
        select(Candidate)
        .where(Candidate.id == candidate_id)
        .execution_options(populate_existing=True)
    )
    candidate = result.scalars().first()
    if not candidate:
        raise NotFoundError(f"Candidate with ID {candidate_id} not found")
    return candidate


async def create_candidate(db: AsyncSession, payload: CandidateCreate, commit: bool = True) -> Candidate:
    """Create a candidate assigned to catalog services. With ``commit=False`` the row is only flushed."""
    services = []
    if payload.services:
        result = await db.execute(select(Service).where(Service.id.in_(payload.services)))
        found = {s.id: s for s in result.scalars().all()}
        missing = [sid for sid in payload.services if sid not in found]
        if missing:
            raise NotFoundError(f"Service with ID {missing[0]} not found")
        services = [found[sid] for sid in dict.fromkeys(payload.services)]

    candidate = Candidate(
        first_name=payload.first_name.strip(),
        last_name=payload.last_name.strip(),
        email=payload.email,
        company_name=payload.company_name,
        service_results=[],
        services=services,
    )
    db.add(candidate)
    await db.flush()

    if commit:
        await db.commit()
        return await get_candidate(db, candidate.id)
    return candidate


async def delete_candidate(db: AsyncSession, storage: FileStorage, candidate_id: int) -> dict:
    candidate = await get_candidate(db, candidate_id)

    paths = [r.get("file_path") for r in (candidate.service_results or [])]
    if candidate.summary_result:
        paths.append(candidate.summary_result.get("file_path"))

    await db.delete(candidate)
    await db.commit()

    cleanup = await run_cleanup(
        [(f"delete_file:{path}", (lambda p=path: storage.delete_file(p))) for path in paths if path]
    )
    logger.info("Candidate %s deleted (%d files removed)", candidate_id, len(cleanup["succeeded"]))
    return cleanup


async def get_order_candidates_with_results(db: AsyncSession, order_id: int, requester) -> list[Candidate]:
    order = await db.get(Order, order_id)
    if not order:
        raise NotFoundError(f"Order with ID {order_id} not found")
    if not is_admin(requester) and order.user_id != requester.id:
        raise ForbiddenError("You do not have permission to view this order")
    return list(order.candidates)


# ---------------------------
# SERVICE RESULTS
# ---------------------------
async def upload_service_result(
    db: AsyncSession,
    storage: FileStorage,
    candidate_id: int,
    service_id: int,
    upload,
    payload: UploadResultData,
    uploader,
) -> Candidate:
    candidate = await get_candidate(db, candidate_id)

    service = await db.get(Service, service_id)
    if not service:
        raise NotFoundError(f"Service with ID {service_id} not found")
    if service_id not in {s.id for s in candidate.services}:
        raise DomainValidationError(f"Candidate {candidate_id} is not assigned service {service_id}")

    data = await read_upload(upload)
    stored = await storage.upload_file(
        data,
        f"{RESULTS_FOLDER}/{candidate_id}",
        build_result_filename(candidate, service.title, upload.filename),
        getattr(upload, "content_type", None),
    )

    record = {"service_id": service.id, "service_name": service.title}
    record.update(_result_record(stored, upload, payload, uploader))

    results = list(candidate.service_results or [])
    previous = None
    for index, existing in enumerate(results):
        if existing.get("service_id") == service_id:
            previous = existing
            results[index] = record
            break
    else:
        results.append(record)

    candidate.service_results = results
    await db.commit()
    logger.info("Result for service %s uploaded for candidate %s", service_id, candidate_id)

    if previous and previous.get("file_path") != record["file_path"]:
        await _delete_stored_file(storage, previous.get("file_path"))

    await _results_changed(db, candidate_id)
    return await get_candidate(db, candidate_id)


async def get_service_result(db: AsyncSession, candidate_id: int, service_id: int, requester) -> dict:
    candidate = await get_candidate(db, candidate_id)
    _ensure_can_view(candidate, requester)

    for record in candidate.service_results or []:
        if record.get("service_id") == service_id:
            return record
    raise NotFoundError(f"No result for service {service_id} on candidate {candidate_id}")


async def delete_service_result(db: AsyncSession, storage: FileStorage, candidate_id: int, service_id: int) -> Candidate:
    candidate = await get_candidate(db, candidate_id)

    results = list(candidate.service_results or [])
    removed = next((r for r in results if r.get("service_id") == service_id), None)
    if removed is None:
        raise NotFoundError(f"No result for service {service_id} on candidate {candidate_id}")

    candidate.service_results = [r for r in results if r is not removed]
    await db.commit()
    logger.info("Result for service %s removed from candidate %s", service_id, candidate_id)

    await _delete_stored_file(storage, removed.get("file_path"))
    await _results_changed(db, candidate_id)
    return await get_candidate(db, candidate_id)


# ---------------------------
# SUMMARY RESULT
# ---------------------------
async def upload_summary_result(
    db: AsyncSession,
    storage: FileStorage,
    candidate_id: int,
    upload,
    payload: UploadResultData,
    uploader,
) -> Candidate:
    candidate = await get_candidate(db, candidate_id)

    data = await read_upload(upload)
    stored = await storage.upload_file(
        data,
        f"{RESULTS_FOLDER}/{candidate_id}",
        build_result_filename(candidate, "summary", upload.filename),
        getattr(upload, "content_type", None),
    )

    previous = candidate.summary_result
    record = _result_record(stored, upload, payload, uploader)
    candidate.summary_result = record
    await db.commit()
    logger.info("Summary result uploaded for candidate %s", candidate_id)

    if previous and previous.get("file_path") != record["file_path"]:
        await _delete_stored_file(storage, previous.get("file_path"))

    await _results_changed(db, candidate_id)
    return await get_candidate(db, candidate_id)


async def delete_summary_result(db: AsyncSession, storage: FileStorage, candidate_id: int) -> Candidate:
    candidate = await get_candidate(db, candidate_id)

    previous = candidate.summary_result
    if not previous:
        raise NotFoundError(f"Candidate {candidate_id} has no summary result")

    candidate.summary_result = None
    await db.commit()
    logger.info("Summary result removed from candidate %s", candidate_id)

    await _delete_stored_file(storage, previous.get("file_path"))
    await _results_changed(db, candidate_id)
    return await get_candidate(db, candidate_id)


# ---------------------------
# AGGREGATE VIEW
# ---------------------------
async def get_candidate_results(db: AsyncSession, candidate_id: int, requester) -> dict:
    candidate = await get_candidate(db, candidate_id)
    _ensure_can_view(candidate, requester)

    by_service = {r.get("service_id"): r for r in (candidate.service_results or [])}
    services = [
        {
            "service_id": service.id,
            "service_name": service.title,
            "has_result": service.id in by_service,
            "result": by_service.get(service.id),
        }
        for service in candidate.services
    ]

    completed = sum(1 for s in services if s["has_result"])
    has_summary = 1 if candidate.summary_result else 0

    return {
        "candidate_id": candidate.id,
        "candidate_name": candidate.full_name,
        "services": services,
        "summary_result": candidate.summary_result,
        "total_services": len(services),
        "completed_services": completed,
        "is_complete": is_candidate_complete(candidate),
        "completion_percentage": percentage(completed + has_summary, len(services) + 1),
    }


async def open_result_file(
    db: AsyncSession,
    storage: FileStorage,
    candidate_id: int,
    requester,
    service_id: Optional[int] = None,
) -> tuple[dict, object]:
    """Return the result record and a chunk stream for its stored file."""
    if service_id is not None:
        record = await get_service_result(db, candidate_id, service_id, requester)
    else:
        candidate = await get_candidate(db, candidate_id)
        _ensure_can_view(candidate, requester)
        record = candidate.summary_result
        if not record:
            raise NotFoundError(f"Candidate {candidate_id} has no summary result")

    stream = await storage.get_file_stream(record["file_path"])
    return record, stream


async def find_order_ids_for_candidate(db: AsyncSession, candidate_id: int) -> list[int]:
    result = await db.execute(
        select(order_candidates.c.order_id).where(order_candidates.c.candidate_id == candidate_id)
    )
    return list(result.scalars().all())
