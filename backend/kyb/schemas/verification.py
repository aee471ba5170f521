# backend/kyb/schemas/verification.py
"""
Canonical shape of a finished KYB check.

A single nested schema is stored on the job and embedded in the final
`Completed` log entry. There are no flat or legacy duplicates of the
company fields.
"""
from datetime import datetime
import enum
from typing import Any, Literal

from pydantic import BaseModel, Field


class CrnSource(str, enum.Enum):
    AI = "ai"
    REGISTRY_SEARCH = "registry_search"
    USER_PROVIDED = "user_provided"


class CandidateIdentity(BaseModel):
    """Working hypothesis about which registered company the request refers to."""

    crn: str | None = None
    crn_source: CrnSource | None = None
    company_name: str | None = None
    website: str | None = None
    website_source: str | None = None
    similarity: float | None = None
    confidence: str | None = None
    confirmed: bool = False


class CompanyIdentity(BaseModel):
    name: str | None = None
    registration_number: str | None = None
    status: str | None = None
    type: str | None = None
    jurisdiction: str | None = None
    incorporation_date: str | None = None
    business_age_years: int | None = None
    sic_codes: list[str] = Field(default_factory=list)
    industry: str | None = None
    registered_address: dict[str, Any] | None = None
    registered_address_text: str | None = None
    operational_address: str | None = None
    has_insolvency_history: bool | None = None
    has_charges: bool | None = None
    profile_url: str | None = None
    incorporation_document_url: str | None = None


class SocialLink(BaseModel):
    platform: str
    url: str


class BusinessProfile(BaseModel):
    website: str | None = None
    website_source: str | None = None
    description: str | None = None
    vat_number: str | None = None
    email: str | None = None
    emails: list[str] = Field(default_factory=list)
    phone: str | None = None
    phones: list[str] = Field(default_factory=list)
    social_links: list[SocialLink] = Field(default_factory=list)


class Director(BaseModel):
    full_name: str
    title: str | None = None
    first_name: str | None = None
    middle_name: str | None = None
    last_name: str | None = None
    role: str | None = None
    appointed_on: str | None = None


class BeneficialOwner(BaseModel):
    name: str
    ownership: str | None = None
    natures_of_control: list[str] = Field(default_factory=list)
    date_of_birth: str | None = None  # YYYY-MM, the registry never publishes the day
    kind: str | None = None


CheckStatus = Literal["verified", "mismatch", "not_found", "skipped"]


class VerificationCheck(BaseModel):
    status: CheckStatus
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class VerificationDetails(BaseModel):
    crn_validation: VerificationCheck
    address_validation: VerificationCheck
    website_data: VerificationCheck
    name_validation: VerificationCheck


class VerificationResult(BaseModel):
    business_name: str
    verification_status: str  # verified | warning: <summary> | no_company_found
    company: CompanyIdentity
    business: BusinessProfile
    directors: list[Director] = Field(default_factory=list)
    beneficial_owners: list[BeneficialOwner] = Field(default_factory=list)
    verification_details: VerificationDetails | None = None
    validation_issues: list[str] = Field(default_factory=list)
    candidate: CandidateIdentity | None = None
    raw_data: dict[str, Any] = Field(default_factory=dict)
    generated_at: datetime
