from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


class Step:
    """Symbolic labels for job log entries."""

    ORIGINAL_REQUEST = "Original Request"
    CRN_SEARCH_RESULT = "CRN Search Result"
    AI_ERROR = "AI Error"
    CRN_VERIFICATION = "CRN Verification"
    CRN_VERIFICATION_FAILED = "CRN Verification Failed"
    CRN_FALLBACK = "CRN Fallback"
    REGISTRY_SEARCH_RESULT = "Companies House Search Result"
    REGISTRY_SEARCH_FAILED = "Companies House Search Failed"
    CRN_SECOND_ATTEMPT = "CRN Second Attempt"
    ACTION_REQUIRED = "Action Required"
    COMPANY_STATUS_ERROR = "Company Status Error"
    WRONG_COMPANY = "Wrong Company Detected"
    CONFIRMATION_REQUIRED = "Company Confirmation Required"
    CRN_VERIFICATION_ERROR = "CRN Verification Error"
    ADDITIONAL_INFORMATION = "Additional Information"
    PROCESS_RESTARTED = "Process Restarted"
    REGISTRY_PROFILE = "Companies House Profile"
    WEBSITE_SEARCH = "Website Search"
    WEBSITE_DISCOVERY = "Website Discovery"
    WEBSITE_SCRAPE = "Website Scrape Details"
    NAME_COMPARISON = "Name Comparison"
    CRN_CROSS_VALIDATION = "CRN Cross Validation"
    CRN_VERIFICATION_ALERT = "CRN Verification Alert"
    AI_VERIFICATION = "AI Verification"
    CRN_DISCREPANCY = "CRN Discrepancy"
    COMPLETED = "Completed"
    ERROR = "Error"


class _EntryBase(BaseModel):
    step: str
    timestamp: datetime


class DataEntry(_EntryBase):
    kind: Literal["data"] = "data"
    data: Any


class MessageEntry(_EntryBase):
    kind: Literal["message"] = "message"
    message: str


class ErrorEntry(_EntryBase):
    kind: Literal["error"] = "error"
    error: str


class ActionRequiredEntry(_EntryBase):
    kind: Literal["action_required"] = "action_required"
    message: str
    required_fields: dict[str, str]
    data: dict[str, Any] | None = None


class CompletedEntry(_EntryBase):
    kind: Literal["completed"] = "completed"
    message: str
    result: dict[str, Any]


LogEntry = Annotated[
    Union[DataEntry, MessageEntry, ErrorEntry, ActionRequiredEntry, CompletedEntry],
    Field(discriminator="kind"),
]

log_entry_adapter: TypeAdapter[LogEntry] = TypeAdapter(LogEntry)
