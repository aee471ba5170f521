from uuid import uuid4
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Security
from fastapi.security.api_key import APIKeyHeader
from pydantic_core import PydanticSerializationError

from ..core.config import get_settings
from ..models.kyb_job import JobStatus
from ..schemas.kyb import (
    ContinueKybOut,
    ContinueKybRequest,
    JobLogOut,
    JobStatusOut,
    StartKybOut,
    StartKybRequest,
)
from ..schemas.log_entries import LogEntry
from ..services.job_store import JobStore, percent_complete
from ..services.orchestrator import Continuation, enqueue_kyb_job, plan_continuation

router = APIRouter(tags=["kyb"])

settings = get_settings()
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
logger = logging.getLogger(__name__)


def verify_api_key(api_key: str | None = Security(api_key_header)) -> None:
    """
    Simple header-based API key authentication.

    - In dev, if API_AUTH_KEY is not set, auth is skipped.
    - Otherwise, require X-API-Key == API_AUTH_KEY.
    """
    expected = settings.API_AUTH_KEY

    if settings.ENV == "dev" and not expected:
        return

    if not expected:
        raise HTTPException(status_code=401, detail="API key not configured")

    if api_key != expected:
        raise HTTPException(status_code=401, detail="Invalid API key")


def get_job_store() -> JobStore:
    return JobStore()


def _dump_entry(entry: LogEntry) -> dict:
    try:
        return entry.model_dump(mode="json")
    except PydanticSerializationError as e:
        return {
            "step": entry.step,
            "timestamp": entry.timestamp.isoformat(),
            "kind": entry.kind,
            "data": {"serialization_error": True, "message": "Log entry could not be serialized", "error": str(e)},
        }


@router.post("/startKYB", response_model=StartKybOut, status_code=202)
def start_kyb(
    payload: StartKybRequest,
    store: JobStore = Depends(get_job_store),
    _: None = Depends(verify_api_key),
):
    request_id = str(uuid4())
    job = store.create(payload.business_name)

    logger.info(
        "KYB job created",
        extra={"job_id": job.id, "request_id": request_id, "step": "job_created"},
    )

    enqueue_kyb_job(job.id)
    return StartKybOut(job_id=job.id, status=job.status)


@router.get("/jobStatus", response_model=JobStatusOut)
def job_status(
    job_id: str = Query(..., min_length=1),
    store: JobStore = Depends(get_job_store),
    _: None = Depends(verify_api_key),
):
    job = store.get(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    entries = store.entries(job_id)
    return JobStatusOut(
        job_id=job.id,
        status=job.status,
        created_at=job.created_at,
        last_updated=job.updated_at,
        total_steps_completed=len(entries),
        current_step=entries[-1].step if entries else None,
        current_stage=job.current_stage,
        requires_action=job.status == JobStatus.ACTION_REQUIRED,
        required_fields=job.required_fields if job.status == JobStatus.ACTION_REQUIRED else None,
        percent_complete=percent_complete(job.status, len(entries)),
    )


@router.get("/jobLog", response_model=JobLogOut)
def job_log(
    job_id: str = Query(..., min_length=1),
    store: JobStore = Depends(get_job_store),
    _: None = Depends(verify_api_key),
):
    job = store.get(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    entries = [_dump_entry(e) for e in store.entries(job_id)]
    return JobLogOut(
        job_id=job.id,
        status=job.status,
        created_at=job.created_at,
        last_updated=job.updated_at,
        log_entries=entries,
        total_steps=len(entries),
        percent_complete=percent_complete(job.status, len(entries)),
        requires_action=job.status == JobStatus.ACTION_REQUIRED,
        required_fields=job.required_fields if job.status == JobStatus.ACTION_REQUIRED else None,
        is_complete=job.status in (JobStatus.COMPLETED, JobStatus.FAILED),
        result=job.result if job.status == JobStatus.COMPLETED else None,
    )


@router.post("/continueKYB", response_model=ContinueKybOut)
def continue_kyb(
    payload: ContinueKybRequest,
    store: JobStore = Depends(get_job_store),
    _: None = Depends(verify_api_key),
):
    job = store.get(payload.job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    if job.status != JobStatus.ACTION_REQUIRED:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "Job is not awaiting additional information",
                "current_status": job.status.value,
            },
        )

    continuation = Continuation(
        crn=payload.crn,
        company_name=payload.company_name,
        website=payload.website,
        confirmed=payload.confirmed,
    )
    start_stage, message = plan_continuation(job, continuation)

    provided = payload.model_dump(exclude_none=True, exclude={"job_id"})
    job = store.resume(job.id, provided)

    logger.info(
        message,
        extra={"job_id": job.id, "stage": start_stage.value, "step": "continue_kyb"},
    )

    enqueue_kyb_job(job.id, start_stage, continuation)
    return ContinueKybOut(job_id=job.id, status=job.status, message=message)
