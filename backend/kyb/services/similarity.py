# backend/kyb/services/similarity.py
"""
Company-name similarity.

Every "is this the same company?" decision in the pipeline goes through
`similarity()`, so thresholds elsewhere are comparable with each other.
"""
from __future__ import annotations

import re

from rapidfuzz.distance import Levenshtein

# Thresholds used across the pipeline
SANITY_REJECT_BELOW = 0.4       # resolver discards the candidate
WRONG_COMPANY_BELOW = 0.3       # job paused, different CRN needed
CONFIRM_BELOW = 0.5             # job paused, user must confirm
REGISTRY_SEARCH_MIN = 0.7       # registry search hit is acceptable
WEBSITE_NAME_MATCH_MIN = 0.7    # website name matches registry name
ALTERNATIVE_CRN_MIN = 0.8       # website name points at another company

_LEGAL_SUFFIX_RE = re.compile(
    r"\b(limited|ltd|llc|llp|incorporated|inc|plc|corporation|corp|company|group|holdings|uk)\b",
    re.IGNORECASE,
)
_PUNCT_RE = re.compile(r"[^\w\s]")
_WS_RE = re.compile(r"\s+")


def normalize_company_name(name: str | None) -> str:
    """
    Lowercase, drop legal-entity suffixes and punctuation, collapse whitespace.

    "Acme Holdings (UK) Ltd." -> "acme"
    """
    if not name:
        return ""
    s = name.lower().replace("&", " and ")
    s = _PUNCT_RE.sub("", s)
    s = _LEGAL_SUFFIX_RE.sub(" ", s)
    s = s.replace("_", " ")
    return _WS_RE.sub(" ", s).strip()


def similarity(a: str | None, b: str | None) -> float:
    """Edit-distance similarity of two company names, in [0, 1]."""
    na = normalize_company_name(a)
    nb = normalize_company_name(b)
    longest = max(len(na), len(nb))
    if longest == 0:
        return 1.0
    distance = Levenshtein.distance(na, nb)
    return 1.0 - distance / longest


def confidence_label(score: float | None) -> str:
    if score is None:
        return "none"
    if score >= 0.9:
        return "high"
    if score >= 0.7:
        return "medium"
    if score >= 0.5:
        return "low"
    return "none"
