# backend/kyb/services/ai_prompts.py
"""
Prompts for the AI-assisted lookups and the parsers for their answers.

Models do not reliably return the JSON they are asked for, so every
parser degrades: strict JSON, then JSON salvaged from surrounding prose,
then labelled fields, then bare CRN-shaped tokens.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

CRN_LOOKUP_MAX_TOKENS = 500
CONSTRAINED_LOOKUP_MAX_TOKENS = 200
WEBSITE_LOOKUP_MAX_TOKENS = 500

NO_ACTIVE_CRN_PHRASE = "No active CRN found for this company name"

_LABELLED_CRN_RE = re.compile(r"CRN:\s*([A-Z]{0,2}\d{6,8})", re.I)
_GENERIC_CRN_PATTERNS = [
    re.compile(r"\b([A-Z]{2}\d{6,8})\b"),
    re.compile(r"\b(\d{8})\b"),
    re.compile(r"Company Number:?\s*([A-Z]{0,2}\d{6,8})", re.I),
    re.compile(r"Registration Number:?\s*([A-Z]{0,2}\d{6,8})", re.I),
    re.compile(r"Company Registration Number:?\s*([A-Z]{0,2}\d{6,8})", re.I),
]
_COMPANY_NAME_LABEL_RE = re.compile(r"COMPANY NAME:\s*(.+)", re.I)
_WEBSITE_LABEL_RE = re.compile(r"Website:\s*(https?://[^\s,\"']+)", re.I)
_URL_RE = re.compile(r"https?://[^\s\"',]+\.[^\s\"',]+")
_NULLISH = {"", "null", "none", "n/a", "unknown"}


def build_crn_lookup_prompt(business_name: str) -> str:
    return f"""Search for a UK company whose registered name closely matches (at least 90% similarity) the requested business name.

If multiple matches exist, prefer:
- the exact or closest match in name;
- companies with ACTIVE status over DISSOLVED or INACTIVE.

Do not select a company based only on partial word matches. If no suitable company is found, return every field as null and explain briefly in "reason". Return null rather than guess.

Requested business name: {business_name}

Respond with JSON only:
{{
  "crn": "Company Registration Number or null",
  "company_name_in_registry": "Exact registered company name or null",
  "company_status": "ACTIVE, DISSOLVED, etc. or null",
  "registry_link": "Companies House URL or null",
  "website": "Official company website URL or null",
  "reason": "Why no match was found, otherwise null"
}}"""


def build_constrained_lookup_prompt(business_name: str) -> str:
    return f"""I need ONLY the UK company registration number for "{business_name}" that is CURRENTLY ACTIVE.

Rules:
1. The registered name must match the requested name with at least 90% similarity.
2. The company MUST be ACTIVE in Companies House records.
3. Do NOT give the number of a similarly named company or subsidiary.

Format: "CRN: 12345678" or "CRN: SC123456" followed by "COMPANY NAME: <exact registered name>".

If there is no close active match, respond exactly with "{NO_ACTIVE_CRN_PHRASE}"."""


def build_website_lookup_prompt(company_name: str, crn: str) -> str:
    return f"""Find the official corporate website for "{company_name}" (UK Company Registration Number: {crn}).

- Only the company's own main website; never a directory, social media profile or subsidiary site.
- Do not guess URLs. Use null if uncertain.

Respond with JSON only:
{{
  "website": "Official website URL or null",
  "confidence": "HIGH, MEDIUM, LOW or NONE",
  "verification_steps": ["steps you performed"],
  "sources": ["where the website was found"]
}}"""


def parse_json_object(raw: str) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        start = raw.find("{")
        end = raw.rfind("}")
        if start == -1 or end <= start:
            return {}
        try:
            data = json.loads(raw[start : end + 1])
        except json.JSONDecodeError:
            return {}
    return data if isinstance(data, dict) else {}


def _value(data: Dict[str, Any], key: str) -> Optional[str]:
    v = data.get(key)
    if v is None:
        return None
    v = str(v).strip()
    return None if v.lower() in _NULLISH else v


def _normalise_crn(crn: str | None) -> Optional[str]:
    if not crn:
        return None
    crn = re.sub(r"\s+", "", crn).upper()
    return crn or None


def extract_crn_from_text(text: str) -> Optional[str]:
    labelled = _LABELLED_CRN_RE.search(text)
    if labelled:
        return _normalise_crn(labelled.group(1))
    for pattern in _GENERIC_CRN_PATTERNS:
        match = pattern.search(text)
        if match:
            return _normalise_crn(match.group(1))
    return None


@dataclass
class CrnLookupAnswer:
    crn: str | None = None
    company_name: str | None = None
    company_status: str | None = None
    website: str | None = None
    reason: str | None = None
    parsed_with: str = "none"  # json | labelled | generic | none


def parse_crn_lookup_response(text: str) -> CrnLookupAnswer:
    data = parse_json_object(text)
    if data:
        return CrnLookupAnswer(
            crn=_normalise_crn(_value(data, "crn")),
            company_name=_value(data, "company_name_in_registry"),
            company_status=_value(data, "company_status"),
            website=_value(data, "website"),
            reason=_value(data, "reason"),
            parsed_with="json",
        )

    answer = CrnLookupAnswer()
    labelled = _LABELLED_CRN_RE.search(text or "")
    if labelled:
        answer.crn = _normalise_crn(labelled.group(1))
        answer.parsed_with = "labelled"
    else:
        answer.crn = extract_crn_from_text(text or "")
        answer.parsed_with = "generic" if answer.crn else "none"

    website = _WEBSITE_LABEL_RE.search(text or "")
    if website:
        answer.website = website.group(1)
    return answer


@dataclass
class ConstrainedLookupAnswer:
    crn: str | None = None
    company_name: str | None = None
    explicit_not_found: bool = False


def parse_constrained_lookup_response(text: str) -> ConstrainedLookupAnswer:
    text = text or ""
    answer = ConstrainedLookupAnswer(crn=extract_crn_from_text(text))
    name = _COMPANY_NAME_LABEL_RE.search(text)
    if name:
        answer.company_name = name.group(1).strip().strip('"')
    if not answer.crn and NO_ACTIVE_CRN_PHRASE.lower() in text.lower():
        answer.explicit_not_found = True
    return answer


def parse_website_lookup_response(text: str) -> Dict[str, Any]:
    data = parse_json_object(text)
    if data:
        return {
            "website": _value(data, "website"),
            "confidence": _value(data, "confidence"),
            "verification_steps": data.get("verification_steps") or [],
            "sources": data.get("sources") or [],
        }
    match = _URL_RE.search(text or "")
    return {
        "website": match.group(0).rstrip(".)") if match else None,
        "confidence": None,
        "verification_steps": [],
        "sources": [],
    }
