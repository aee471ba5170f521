# backend/kyb/services/registry_verifier.py
"""
Checks a candidate CRN against Companies House.

Format is validated locally first so malformed input never costs a
registry round-trip. Auth, rate-limit and unexpected API errors are
raised to the caller, which decides how to surface them.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict

from .connectors.companies_house import CompaniesHouseClient, CompanyNotFoundError

logger = logging.getLogger(__name__)

# Jurisdiction / entity-type prefixes issued by Companies House
CRN_PREFIXES = ("SC", "NI", "OC", "SO", "NC", "LP", "SL", "NL", "FC", "SE", "GE")

_CRN_RE = re.compile(r"^(?:\d{8}|(?:%s)\d{6,8})$" % "|".join(CRN_PREFIXES))

ACTIVE_STATUS = "active"


def validate_crn_format(crn: str | None) -> bool:
    """
    True for "12345678" or a known prefix + 6-8 digits ("SC123456").

    Case-sensitive: callers normalise user input before asking. An all-zero
    number is never issued by the registry and is rejected.
    """
    if not isinstance(crn, str) or not _CRN_RE.match(crn):
        return False
    digits = crn[2:] if crn[:2].isalpha() else crn
    return digits.strip("0") != ""


@dataclass
class RegistryVerification:
    crn: str
    valid: bool
    status: str | None = None
    company_name: str | None = None
    profile: Dict[str, Any] = field(default_factory=dict)
    # invalid_format | not_found | inactive
    reason: str | None = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "crn": self.crn,
            "valid": self.valid,
            "status": self.status,
            "company_name": self.company_name,
            "reason": self.reason,
        }


class RegistryVerifier:
    def __init__(self, client: CompaniesHouseClient) -> None:
        self.client = client

    async def verify(self, crn: str) -> RegistryVerification:
        if not validate_crn_format(crn):
            return RegistryVerification(crn=crn, valid=False, reason="invalid_format")

        try:
            profile = await self.client.get_company_profile(crn)
        except CompanyNotFoundError:
            logger.info("CRN not found in registry", extra={"crn": crn})
            return RegistryVerification(crn=crn, valid=False, reason="not_found")

        status = profile.get("company_status")
        name = profile.get("company_name")
        if status != ACTIVE_STATUS:
            return RegistryVerification(
                crn=crn,
                valid=False,
                status=status,
                company_name=name,
                profile=profile,
                reason="inactive",
            )

        return RegistryVerification(
            crn=crn,
            valid=True,
            status=status,
            company_name=name,
            profile=profile,
        )
