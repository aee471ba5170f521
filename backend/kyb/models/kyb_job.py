from sqlalchemy import Column, String, JSON, Enum, DateTime, Boolean
from datetime import datetime
import uuid
import enum
from ..core.db import Base


def _new_job_id() -> str:
    return uuid.uuid4().hex


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    ACTION_REQUIRED = "action_required"
    COMPLETED = "completed"
    FAILED = "failed"


class PipelineStage(str, enum.Enum):
    IDENTITY_RESOLUTION = "identity_resolution"
    REGISTRY_VERIFICATION = "registry_verification"
    WEBSITE_COLLECTION = "website_collection"
    CROSS_VALIDATION = "cross_validation"
    COMPILATION = "compilation"
    DONE = "done"


class KybJob(Base):
    __tablename__ = "kyb_jobs"

    id = Column(String(32), primary_key=True, default=_new_job_id)
    business_name = Column(String, nullable=False)  # as submitted, never changes
    active_name = Column(String, nullable=False)    # name currently being resolved
    status = Column(Enum(JobStatus), nullable=False, default=JobStatus.PENDING)
    current_stage = Column(Enum(PipelineStage), nullable=False, default=PipelineStage.IDENTITY_RESOLUTION)

    candidate_crn = Column(String(16), nullable=True)
    candidate_source = Column(String(32), nullable=True)  # ai | registry_search | user_provided
    website_hint = Column(String, nullable=True)
    website_source = Column(String(32), nullable=True)

    required_fields = Column(JSON, nullable=True)  # only while action_required
    awaiting_confirmation = Column(Boolean, nullable=False, default=False)  # last pause asked for confirm_company
    result = Column(JSON, nullable=True)           # set exactly once, on completion
    error_message = Column(String, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)
