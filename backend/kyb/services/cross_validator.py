# backend/kyb/services/cross_validator.py
from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from .connectors.companies_house import CompaniesHouseClient, RegistryError
from .similarity import ALTERNATIVE_CRN_MIN, WEBSITE_NAME_MATCH_MIN, similarity
from .website_intel import POSTCODE_RE, WebsiteData

logger = logging.getLogger(__name__)

_ADDRESS_FIELDS = (
    "care_of",
    "po_box",
    "premises",
    "address_line_1",
    "address_line_2",
    "locality",
    "region",
    "postal_code",
    "country",
)


def format_registered_address(address: Dict[str, Any] | None) -> Optional[str]:
    if not address:
        return None
    parts = [str(address[k]).strip() for k in _ADDRESS_FIELDS if address.get(k)]
    return ", ".join(p for p in parts if p) or None


def normalize_address(text: str | None) -> str:
    return re.sub(r"\s+", " ", text or "").strip().lower()


def _postcode(text: str) -> Optional[str]:
    match = POSTCODE_RE.search(text.upper())
    return match.group(0).replace(" ", "") if match else None


def addresses_match(registered: str | None, website: str | None) -> bool:
    """
    Registered address contains the website address (case/whitespace-insensitive).

    Website addresses are often a fragment around a postcode, so an identical
    postcode on both sides also counts as a match.
    """
    if not registered or not website:
        return False
    reg, web = normalize_address(registered), normalize_address(website)
    if web in reg:
        return True
    reg_pc, web_pc = _postcode(registered), _postcode(website)
    return bool(reg_pc and reg_pc == web_pc)


@dataclass
class CrossValidation:
    crn_match: Optional[bool] = None
    name_match: Optional[bool] = None
    address_match: Optional[bool] = None
    name_similarity: Optional[float] = None
    registered_address: Optional[str] = None
    issues: List[str] = field(default_factory=list)
    labels: List[str] = field(default_factory=list)

    def add_issue(self, label: str, issue: str) -> None:
        self.labels.append(label)
        self.issues.append(issue)

    @property
    def verification_status(self) -> str:
        if not self.issues:
            return "verified"
        return "warning: " + "; ".join(self.labels)

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["verification_status"] = self.verification_status
        return data


def cross_validate(
    registry_profile: Dict[str, Any],
    website: WebsiteData | None,
    business_name: str,
) -> CrossValidation:
    """
    Reconcile website facts with the registry profile. No I/O.

    Facts missing from the website leave their match as None but still count
    as issues: a site that confirms nothing is not a verified site. The
    company name is the exception, since footers often omit it.
    """
    registry_crn = registry_profile.get("company_number")
    registry_name = registry_profile.get("company_name") or business_name
    registered_address = format_registered_address(registry_profile.get("registered_office_address"))
    result = CrossValidation(registered_address=registered_address)

    if website is None:
        result.add_issue("website not found", "No company website found to cross-check against Companies House")
        return result
    if not website.reachable:
        result.add_issue("website unreachable", f"Company website {website.url} could not be reached")
        return result

    if website.crn and registry_crn:
        result.crn_match = website.crn.upper() == str(registry_crn).upper()
        if not result.crn_match:
            result.add_issue(
                "CRN mismatch",
                f'CRN mismatch: Website shows "{website.crn}" but Companies House has "{registry_crn}"',
            )
    elif not website.crn:
        result.add_issue("CRN not found on website", "CRN not found on company website")

    if website.company_name:
        score = similarity(website.company_name, registry_name)
        result.name_similarity = round(score, 3)
        result.name_match = score >= WEBSITE_NAME_MATCH_MIN
        if not result.name_match:
            result.add_issue(
                "company name mismatch",
                f'Company name mismatch: Website shows "{website.company_name}" '
                f'but Companies House has "{registry_name}" (similarity {score:.2f})',
            )

    if website.address:
        result.address_match = addresses_match(registered_address, website.address)
        if not result.address_match:
            result.add_issue(
                "address mismatch",
                f'Company address on website "{website.address}" does not match '
                f'registered address "{registered_address or "unknown"}"',
            )
    else:
        result.add_issue("address not found", "Company address not found on company website")

    return result


async def find_alternative_registration(
    registry: CompaniesHouseClient,
    website_company_name: str,
    current_crn: str,
) -> Optional[Dict[str, Any]]:
    """
    Search the registry for the name the website uses.

    Returns the best match when it is a strong (> 0.8) match for a different
    CRN. The accepted CRN is never switched here; the caller records an issue.
    """
    try:
        items = await registry.search_companies(website_company_name)
    except RegistryError as e:
        logger.warning("Alternative registration search failed: %s", e, extra={"crn": current_crn})
        return None

    scored = sorted(
        (
            {
                "crn": item.get("company_number"),
                "title": item.get("title"),
                "company_status": item.get("company_status"),
                "similarity": round(similarity(item.get("title"), website_company_name), 3),
            }
            for item in items
            if item.get("company_number")
        ),
        key=lambda m: m["similarity"],
        reverse=True,
    )[:3]

    if not scored:
        return None
    best = scored[0]
    if best["similarity"] > ALTERNATIVE_CRN_MIN and str(best["crn"]).upper() != current_crn.upper():
        return {**best, "top_matches": scored}
    return None
