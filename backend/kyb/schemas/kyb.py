# backend/kyb/schemas/kyb.py
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from ..models.kyb_job import JobStatus, PipelineStage

MAX_BUSINESS_NAME_LEN = 200
MAX_WEBSITE_LEN = 2048
MAX_CRN_LEN = 16


def _strip_or_none(v):
    if v is None:
        return None
    if isinstance(v, str):
        stripped = v.strip()
        return stripped or None
    return v


class StartKybRequest(BaseModel):
    business_name: str

    @field_validator("business_name", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        return _strip_or_none(v)

    @field_validator("business_name")
    @classmethod
    def validate_business_name(cls, v: str) -> str:
        if len(v) > MAX_BUSINESS_NAME_LEN:
            raise ValueError(
                f"business_name must be at most {MAX_BUSINESS_NAME_LEN} characters"
            )
        return v


class ContinueKybRequest(BaseModel):
    job_id: str
    crn: str | None = None
    company_name: str | None = None
    website: str | None = None
    confirm_company: str | None = None

    @field_validator("job_id", "crn", "company_name", "website", "confirm_company", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        return _strip_or_none(v)

    @field_validator("crn")
    @classmethod
    def normalise_crn(cls, v: str | None) -> str | None:
        if v is None:
            return None
        if len(v) > MAX_CRN_LEN:
            raise ValueError("crn is too long")
        # Users paste CRNs with spaces and in lowercase ("sc 123456")
        return v.replace(" ", "").upper()

    @field_validator("company_name")
    @classmethod
    def validate_company_name(cls, v: str | None) -> str | None:
        if v is not None and len(v) > MAX_BUSINESS_NAME_LEN:
            raise ValueError(
                f"company_name must be at most {MAX_BUSINESS_NAME_LEN} characters"
            )
        return v

    @field_validator("website")
    @classmethod
    def validate_website(cls, v: str | None) -> str | None:
        if v is not None and len(v) > MAX_WEBSITE_LEN:
            raise ValueError("website URL is too long")
        return v

    @property
    def confirmed(self) -> bool:
        return (self.confirm_company or "").lower() in {"yes", "y", "true", "confirm"}


class StartKybOut(BaseModel):
    job_id: str
    status: JobStatus


class ContinueKybOut(BaseModel):
    job_id: str
    status: JobStatus
    message: str


class JobStatusOut(BaseModel):
    job_id: str
    status: JobStatus
    created_at: datetime
    last_updated: datetime
    total_steps_completed: int
    current_step: str | None = None
    current_stage: PipelineStage
    requires_action: bool
    required_fields: dict[str, str] | None = None
    percent_complete: int


class JobLogOut(BaseModel):
    job_id: str
    status: JobStatus
    created_at: datetime
    last_updated: datetime
    log_entries: list[dict[str, Any]]
    total_steps: int
    percent_complete: int
    requires_action: bool
    required_fields: dict[str, str] | None = None
    is_complete: bool
    result: dict[str, Any] | None = None


class KybJobSummaryOut(BaseModel):
    id: str
    business_name: str
    status: JobStatus
    current_stage: PipelineStage
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)
