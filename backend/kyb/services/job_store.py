# backend/kyb/services/job_store.py
"""
Owned storage for KYB jobs and their audit logs.

Nothing else in the codebase queries `kyb_jobs` / `kyb_log_entries`
directly. The store enforces the job state machine and the append-only,
set-once rules; callers only ever see detached ORM rows and pydantic
log entries.
"""
from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Protocol

from pydantic import ValidationError
from pydantic_core import to_jsonable_python
from sqlalchemy.orm import Session

from ..core.db import SessionLocal
from ..models.kyb_job import JobStatus, KybJob, PipelineStage
from ..models.kyb_log_entry import KybLogEntry
from ..schemas.log_entries import DataEntry, LogEntry, Step, log_entry_adapter

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[JobStatus, set[JobStatus]] = {
    JobStatus.PENDING: {JobStatus.PROCESSING},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.ACTION_REQUIRED},
    JobStatus.ACTION_REQUIRED: {JobStatus.PROCESSING},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}

MAX_ERROR_MESSAGE_LEN = 500


class JobNotFoundError(LookupError):
    pass


class InvalidTransitionError(Exception):
    def __init__(self, job_id: str, current: JobStatus, target: JobStatus) -> None:
        super().__init__(f"Job {job_id} cannot move from {current.value} to {target.value}")
        self.current = current
        self.target = target


class ResultAlreadySetError(Exception):
    pass


class LogRecorder(Protocol):
    def data(self, step: str, data: Any) -> None: ...

    def message(self, step: str, message: str) -> None: ...

    def error(self, step: str, error: str) -> None: ...


def safe_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """JSON-safe copy of a log payload, or a sentinel if it cannot be serialised."""
    try:
        jsonable = to_jsonable_python(payload)
        json.dumps(jsonable)
        return jsonable
    except (TypeError, ValueError) as e:
        return {
            "serialization_error": True,
            "message": "Log entry payload could not be serialized",
            "error": str(e),
        }


def percent_complete(status: JobStatus, steps: int) -> int:
    """Rough progress indicator for polling clients."""
    if status == JobStatus.PENDING:
        return 0
    if status == JobStatus.ACTION_REQUIRED:
        return 50
    if status == JobStatus.COMPLETED:
        return 100
    if status == JobStatus.FAILED:
        return min(round(steps / 10 * 100), 100)
    return min(round(steps / 10 * 100), 90)


class JobStore:
    def __init__(self, session_factory=SessionLocal) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db: Session = self._session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @staticmethod
    def _load(db: Session, job_id: str) -> KybJob:
        job = db.get(KybJob, job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    @staticmethod
    def _move(job: KybJob, target: JobStatus) -> None:
        if target not in ALLOWED_TRANSITIONS[job.status]:
            raise InvalidTransitionError(job.id, job.status, target)
        logger.info(
            "Job %s: %s -> %s", job.id, job.status.value, target.value,
            extra={"job_id": job.id, "stage": job.current_stage.value},
        )
        job.status = target
        job.updated_at = datetime.utcnow()
        if target in (JobStatus.COMPLETED, JobStatus.FAILED):
            job.completed_at = job.updated_at

    @staticmethod
    def _append(db: Session, job: KybJob, step: str, kind: str, payload: Dict[str, Any]) -> None:
        db.add(
            KybLogEntry(
                job_id=job.id,
                step=step,
                kind=kind,
                payload=safe_payload(payload),
                created_at=datetime.utcnow(),
            )
        )
        job.updated_at = datetime.utcnow()

    # -- creation & reads ---------------------------------------------------

    def create(self, business_name: str) -> KybJob:
        with self._session() as db:
            job = KybJob(
                business_name=business_name,
                active_name=business_name,
                status=JobStatus.PENDING,
                current_stage=PipelineStage.IDENTITY_RESOLUTION,
                awaiting_confirmation=False,
            )
            db.add(job)
            db.flush()
            self._append(db, job, Step.ORIGINAL_REQUEST, "data", {"data": {"business_name": business_name}})
        return job

    def get(self, job_id: str) -> Optional[KybJob]:
        with self._session() as db:
            return db.get(KybJob, job_id)

    def require(self, job_id: str) -> KybJob:
        job = self.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def entries(self, job_id: str) -> List[LogEntry]:
        with self._session() as db:
            rows = (
                db.query(KybLogEntry)
                .filter(KybLogEntry.job_id == job_id)
                .order_by(KybLogEntry.id.asc())
                .all()
            )
        out: List[LogEntry] = []
        for row in rows:
            try:
                out.append(
                    log_entry_adapter.validate_python(
                        {"step": row.step, "timestamp": row.created_at, "kind": row.kind, **(row.payload or {})}
                    )
                )
            except ValidationError as e:
                out.append(
                    DataEntry(
                        step=row.step,
                        timestamp=row.created_at,
                        data={"serialization_error": True, "message": "Unreadable log entry", "error": str(e)},
                    )
                )
        return out

    def count_entries(self, job_id: str) -> int:
        with self._session() as db:
            return db.query(KybLogEntry).filter(KybLogEntry.job_id == job_id).count()

    def list_recent(self, limit: int = 50, offset: int = 0) -> List[KybJob]:
        with self._session() as db:
            return (
                db.query(KybJob)
                .order_by(KybJob.created_at.desc())
                .offset(offset)
                .limit(limit)
                .all()
            )

    # -- log ----------------------------------------------------------------

    def append_log(self, job_id: str, step: str, kind: str, **payload: Any) -> None:
        with self._session() as db:
            job = self._load(db, job_id)
            self._append(db, job, step, kind, payload)

    def recorder(self, job_id: str) -> "JobRecorder":
        return JobRecorder(self, job_id)

    # -- state --------------------------------------------------------------

    def start(self, job_id: str) -> KybJob:
        with self._session() as db:
            job = self._load(db, job_id)
            self._move(job, JobStatus.PROCESSING)
        return job

    def resume(self, job_id: str, provided: Dict[str, Any]) -> KybJob:
        """Accept continuation input for a paused job."""
        with self._session() as db:
            job = self._load(db, job_id)
            self._move(job, JobStatus.PROCESSING)
            job.required_fields = None
            self._append(db, job, Step.ADDITIONAL_INFORMATION, "data", {"data": provided})
        return job

    def set_stage(self, job_id: str, stage: PipelineStage) -> None:
        with self._session() as db:
            job = self._load(db, job_id)
            job.current_stage = stage
            job.updated_at = datetime.utcnow()

    def set_active_name(self, job_id: str, name: str, restart: bool = True) -> None:
        """
        Switch the name the pipeline works with; the submitted name is kept.

        With `restart`, any previous candidate is dropped and the restart is logged.
        """
        with self._session() as db:
            job = self._load(db, job_id)
            job.active_name = name
            if restart:
                job.candidate_crn = None
                job.candidate_source = None
                job.awaiting_confirmation = False
                self._append(
                    db, job, Step.PROCESS_RESTARTED, "message",
                    {"message": f'Restarting identity resolution with company name "{name}"'},
                )

    def set_candidate(self, job_id: str, crn: str | None, source: str | None) -> None:
        with self._session() as db:
            job = self._load(db, job_id)
            job.candidate_crn = crn
            job.candidate_source = source

    def set_website_hint(self, job_id: str, website: str | None, source: str | None) -> None:
        with self._session() as db:
            job = self._load(db, job_id)
            job.website_hint = website
            job.website_source = source

    def require_action(
        self,
        job_id: str,
        step: str,
        message: str,
        required_fields: Dict[str, str],
        data: Dict[str, Any] | None = None,
    ) -> None:
        if not required_fields:
            raise ValueError("action_required needs at least one required field")
        with self._session() as db:
            job = self._load(db, job_id)
            self._move(job, JobStatus.ACTION_REQUIRED)
            job.required_fields = dict(required_fields)
            job.awaiting_confirmation = "confirm_company" in required_fields
            payload: Dict[str, Any] = {"message": message, "required_fields": dict(required_fields)}
            if data is not None:
                payload["data"] = data
            self._append(db, job, step, "action_required", payload)

    def set_result(self, job_id: str, result: Dict[str, Any], message: str = "KYB verification completed") -> None:
        result = safe_payload(result)
        with self._session() as db:
            job = self._load(db, job_id)
            if job.result is not None:
                raise ResultAlreadySetError(f"Job {job_id} already has a result")
            self._move(job, JobStatus.COMPLETED)
            job.result = result
            job.current_stage = PipelineStage.DONE
            self._append(db, job, Step.COMPLETED, "completed", {"message": message, "result": result})

    def fail(self, job_id: str, error_message: str) -> None:
        error_message = (error_message or "Unknown error")[:MAX_ERROR_MESSAGE_LEN]
        with self._session() as db:
            job = self._load(db, job_id)
            self._move(job, JobStatus.FAILED)
            job.error_message = error_message
            self._append(db, job, Step.ERROR, "error", {"error": error_message})


class JobRecorder:
    """Step-scoped writer handed to pipeline components."""

    def __init__(self, store: JobStore, job_id: str) -> None:
        self.store = store
        self.job_id = job_id

    def data(self, step: str, data: Any) -> None:
        self.store.append_log(self.job_id, step, "data", data=data)

    def message(self, step: str, message: str) -> None:
        logger.info(message, extra={"job_id": self.job_id, "step": step})
        self.store.append_log(self.job_id, step, "message", message=message)

    def error(self, step: str, error: str) -> None:
        logger.warning(error, extra={"job_id": self.job_id, "step": step})
        self.store.append_log(self.job_id, step, "error", error=error)
