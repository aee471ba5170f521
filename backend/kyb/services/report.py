# backend/kyb/services/report.py
"""
Compile pipeline outputs into the canonical VerificationResult.
"""
from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from ..core.config import get_settings
from ..schemas.verification import (
    BeneficialOwner,
    BusinessProfile,
    CandidateIdentity,
    CompanyIdentity,
    Director,
    SocialLink,
    VerificationCheck,
    VerificationDetails,
    VerificationResult,
)
from .cross_validator import CrossValidation, format_registered_address
from .similarity import WEBSITE_NAME_MATCH_MIN, similarity
from .website_intel import WebsiteData

NO_COMPANY_FOUND = "no_company_found"

# SIC 2007 division (first two digits) -> section label
_SIC_SECTIONS = [
    (1, 3, "Agriculture, Forestry and Fishing"),
    (5, 9, "Mining and Quarrying"),
    (10, 33, "Manufacturing"),
    (35, 35, "Electricity, Gas, Steam and Air Conditioning Supply"),
    (36, 39, "Water Supply, Sewerage and Waste Management"),
    (41, 43, "Construction"),
    (45, 47, "Wholesale and Retail Trade"),
    (49, 53, "Transportation and Storage"),
    (55, 56, "Accommodation and Food Services"),
    (58, 63, "Information and Communication"),
    (64, 66, "Financial and Insurance Activities"),
    (68, 68, "Real Estate Activities"),
    (69, 75, "Professional, Scientific and Technical Activities"),
    (77, 82, "Administrative and Support Services"),
    (84, 84, "Public Administration and Defence"),
    (85, 85, "Education"),
    (86, 88, "Human Health and Social Work"),
    (90, 93, "Arts, Entertainment and Recreation"),
    (94, 96, "Other Service Activities"),
    (97, 98, "Activities of Households as Employers"),
    (99, 99, "Extraterritorial Organisations"),
]

_NAME_TITLES = {"mr", "mrs", "ms", "miss", "mx", "dr", "prof", "professor", "sir", "dame", "lord", "lady", "rev"}

_SHARE_BAND_RE = re.compile(r"ownership-of-shares-(\d+)-to-(\d+)-percent")
_SHARE_MORE_THAN_RE = re.compile(r"ownership-of-shares-more-than-(\d+)-percent")


def industry_for_sic(codes: List[str] | None) -> Optional[str]:
    for code in codes or []:
        digits = str(code)[:2]
        if not digits.isdigit():
            continue
        division = int(digits)
        for low, high, label in _SIC_SECTIONS:
            if low <= division <= high:
                return label
    return None


def business_age_years(incorporated_on: str | None, today: date | None = None) -> Optional[int]:
    if not incorporated_on:
        return None
    try:
        start = datetime.strptime(incorporated_on, "%Y-%m-%d").date()
    except ValueError:
        return None
    today = today or date.today()
    years = today.year - start.year - ((today.month, today.day) < (start.month, start.day))
    return max(years, 0)


def split_person_name(full_name: str) -> Dict[str, Optional[str]]:
    """
    Split a registry officer name into parts.

    Companies House uses "SURNAME, Forenames"; free-text names are
    "Forenames Surname". Leading honorifics are returned as `title`.
    """
    name = re.sub(r"\s+", " ", full_name or "").strip()
    if "," in name:
        surname, _, forenames = name.partition(",")
        tokens = forenames.split()
    else:
        tokens = name.split()
        surname = tokens.pop() if len(tokens) > 1 else (tokens.pop() if tokens else "")

    titles: List[str] = []
    while tokens and tokens[0].rstrip(".").lower() in _NAME_TITLES:
        titles.append(tokens.pop(0).rstrip("."))

    surname = surname.strip()
    if surname.isupper():
        surname = surname.title()
    return {
        "title": " ".join(titles) or None,
        "first_name": tokens[0] if tokens else None,
        "middle_name": " ".join(tokens[1:]) or None,
        "last_name": surname or None,
    }


def ownership_band(natures_of_control: List[str] | None) -> Optional[str]:
    for nature in natures_of_control or []:
        band = _SHARE_BAND_RE.search(nature)
        if band:
            return f"{band.group(1)}-{band.group(2)}%"
        more = _SHARE_MORE_THAN_RE.search(nature)
        if more:
            return f">{more.group(1)}%"
    return None


def _month_of_birth(dob: Dict[str, Any] | None) -> Optional[str]:
    if not dob or not dob.get("year"):
        return None
    if dob.get("month"):
        return f"{int(dob['year']):04d}-{int(dob['month']):02d}"
    return f"{int(dob['year']):04d}"


def build_directors(officers: List[Dict[str, Any]]) -> List[Director]:
    directors: List[Director] = []
    for officer in officers:
        if officer.get("resigned_on") or not officer.get("name"):
            continue
        parts = split_person_name(officer["name"])
        directors.append(
            Director(
                full_name=officer["name"],
                role=officer.get("officer_role"),
                appointed_on=officer.get("appointed_on"),
                **parts,
            )
        )
    return directors


def build_beneficial_owners(pscs: List[Dict[str, Any]]) -> List[BeneficialOwner]:
    owners: List[BeneficialOwner] = []
    for psc in pscs:
        if psc.get("ceased_on") or not psc.get("name"):
            continue
        natures = psc.get("natures_of_control") or []
        owners.append(
            BeneficialOwner(
                name=psc["name"],
                ownership=ownership_band(natures),
                natures_of_control=natures,
                date_of_birth=_month_of_birth(psc.get("date_of_birth")),
                kind=psc.get("kind"),
            )
        )
    return owners


def _company_identity(
    profile: Dict[str, Any],
    website: WebsiteData | None,
    incorporation_document_url: str | None,
) -> CompanyIdentity:
    settings = get_settings()
    crn = profile.get("company_number")
    sic_codes = [str(c) for c in profile.get("sic_codes") or []]
    address = profile.get("registered_office_address")

    return CompanyIdentity(
        name=profile.get("company_name"),
        registration_number=crn,
        status=profile.get("company_status"),
        type=profile.get("type"),
        jurisdiction=profile.get("jurisdiction"),
        incorporation_date=profile.get("date_of_creation"),
        business_age_years=business_age_years(profile.get("date_of_creation")),
        sic_codes=sic_codes,
        industry=industry_for_sic(sic_codes),
        registered_address=address,
        registered_address_text=format_registered_address(address),
        operational_address=website.address if website else None,
        has_insolvency_history=profile.get("has_insolvency_history"),
        has_charges=profile.get("has_charges"),
        profile_url=f"{settings.COMPANIES_HOUSE_PUBLIC_URL}/company/{crn}" if crn else None,
        incorporation_document_url=incorporation_document_url,
    )


def _business_profile(website: WebsiteData | None, website_source: str | None) -> BusinessProfile:
    if website is None:
        return BusinessProfile()
    return BusinessProfile(
        website=website.url,
        website_source=website_source,
        description=website.description,
        vat_number=website.vat_number,
        email=website.email,
        emails=website.emails,
        phone=website.phone,
        phones=website.phones,
        social_links=[SocialLink(**link) for link in website.social_links],
    )


def _verification_details(
    business_name: str,
    registry_name: str | None,
    website: WebsiteData | None,
    cross: CrossValidation,
) -> VerificationDetails:
    reachable = bool(website and website.reachable)

    if cross.crn_match is True:
        crn_check = VerificationCheck(status="verified", message="CRN on website matches Companies House")
    elif cross.crn_match is False:
        crn_check = VerificationCheck(
            status="mismatch",
            message="CRN on website differs from Companies House",
            details={"website_crn": website.crn if website else None},
        )
    elif reachable:
        crn_check = VerificationCheck(status="not_found", message="CRN not found on company website")
    else:
        crn_check = VerificationCheck(status="skipped", message="Website could not be checked for a CRN")

    if cross.address_match is True:
        address_check = VerificationCheck(status="verified", message="Website address matches registered address")
    elif cross.address_match is False:
        address_check = VerificationCheck(
            status="mismatch",
            message="Company address on website doesn't match registered address",
            details={"website_address": website.address if website else None},
        )
    else:
        address_check = VerificationCheck(
            status="not_found" if reachable else "skipped",
            message="Company address not found on website",
        )

    if reachable:
        website_check = VerificationCheck(
            status="verified",
            message=f"Website data collected from {website.url}",
            details={"crn_location": website.crn_location, "notes": website.notes[-10:]},
        )
    else:
        website_check = VerificationCheck(
            status="not_found" if website else "skipped",
            message="Website could not be fetched" if website else "No website available",
            details={"notes": website.notes if website else []},
        )

    request_score = similarity(business_name, registry_name) if registry_name else None
    name_ok = (request_score or 0) >= WEBSITE_NAME_MATCH_MIN and cross.name_match is not False
    name_check = VerificationCheck(
        status="verified" if name_ok else "mismatch",
        message=(
            "Company name consistent across request, registry and website"
            if name_ok
            else "Company name differs between sources"
        ),
        details={
            "request_similarity": round(request_score, 3) if request_score is not None else None,
            "website_similarity": cross.name_similarity,
            "website_company_name": website.company_name if website else None,
        },
    )

    return VerificationDetails(
        crn_validation=crn_check,
        address_validation=address_check,
        website_data=website_check,
        name_validation=name_check,
    )


def build_verification_result(
    *,
    business_name: str,
    candidate: CandidateIdentity,
    profile: Dict[str, Any],
    website: WebsiteData | None,
    website_source: str | None,
    cross: CrossValidation,
    officers: List[Dict[str, Any]],
    pscs: List[Dict[str, Any]],
    incorporation_document_url: str | None = None,
    discovery: Dict[str, Any] | None = None,
    alternative_registration: Dict[str, Any] | None = None,
    crn_discrepancy: Dict[str, Any] | None = None,
) -> VerificationResult:
    return VerificationResult(
        business_name=business_name,
        verification_status=cross.verification_status,
        company=_company_identity(profile, website, incorporation_document_url),
        business=_business_profile(website, website_source),
        directors=build_directors(officers),
        beneficial_owners=build_beneficial_owners(pscs),
        verification_details=_verification_details(
            business_name, profile.get("company_name"), website, cross
        ),
        validation_issues=list(cross.issues),
        candidate=candidate,
        raw_data={
            "company_profile": profile,
            "officers": officers,
            "persons_with_significant_control": pscs,
            "website": website.as_dict() if website else None,
            "website_discovery": discovery,
            "cross_validation": cross.as_dict(),
            "alternative_registration": alternative_registration,
            "crn_discrepancy": crn_discrepancy,
        },
        generated_at=datetime.utcnow(),
    )


def build_not_found_result(business_name: str, reason: str) -> VerificationResult:
    return VerificationResult(
        business_name=business_name,
        verification_status=NO_COMPANY_FOUND,
        company=CompanyIdentity(),
        business=BusinessProfile(),
        raw_data={"reason": reason},
        generated_at=datetime.utcnow(),
    )
