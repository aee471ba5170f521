# backend/kyb/services/web_discovery.py
"""
Find a company's official website from its name alone.

Tiered: scraped search results (scored and ranked) -> paid search API ->
domain guessing. `discover()` always returns a URL; how much to trust it
is carried in `source` and `note`.
"""
from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx

from ..core.config import get_settings
from .connectors.exa import ExaConnector
from .connectors.search_engines import SearchEngineScraper, SearchHit
from .similarity import normalize_company_name

logger = logging.getLogger(__name__)

EXCLUDED_DOMAINS = (
    "facebook.com",
    "twitter.com",
    "x.com",
    "linkedin.com",
    "instagram.com",
    "youtube.com",
    "pinterest.com",
    "yelp.com",
    "yelp.co.uk",
    "yellowpages.com",
    "yell.com",
    "bbb.org",
    "trustpilot.com",
    "google.com",
    "wikipedia.org",
    "companies-house.gov.uk",
    "company-information.service.gov.uk",
    "endole.co.uk",
    "finder.com",
    "bing.com",
    "duckduckgo.com",
)

# Social, review and registry platforms: effectively disqualifying
PENALIZED_HOST_TERMS = (
    "linkedin",
    "facebook",
    "instagram",
    "twitter",
    "yelp",
    "trustpilot",
    "companieshouse",
    "companies-house",
    "company-information",
)

DIRECTORY_HOST_TERMS = (
    "directory",
    "listing",
    "yell",
    "192",
    "checkcompany",
    "companycheck",
    "opencorporates",
    "bizdb",
    "cylex",
    "thomsonlocal",
    "scoot",
    "freeindex",
)

COMMON_TLDS = (".com", ".co.uk", ".uk", ".org", ".net", ".io")
UK_TLDS = (".co.uk", ".uk", ".org.uk")
GUESS_TLDS_UK = (".co.uk", ".uk", ".com", ".org", ".net", ".io")
GUESS_TLDS_DEFAULT = (".com", ".org", ".net", ".io", ".co.uk", ".uk")

_UK_HINT_RE = re.compile(
    r"\b(uk|united kingdom|britain|british|england|english|scotland|scottish|wales|welsh|london|ltd|limited|plc|gym|fitness)\b",
    re.IGNORECASE,
)

# Public suffixes with two labels that matter for UK-focused discovery
_TWO_LEVEL_SUFFIXES = ("co.uk", "org.uk", "ac.uk", "gov.uk", "me.uk", "ltd.uk", "plc.uk", "net.uk", "com.au", "co.nz")

MAX_ALTERNATIVES = 5


@dataclass
class DiscoveryCandidate:
    url: str
    domain: str
    title: str = ""
    engine: str = ""
    score: float = 0.0


@dataclass
class DiscoveryResult:
    website: str
    source: str  # web_search | domain_guess | error_fallback
    candidates: List[DiscoveryCandidate] = field(default_factory=list)
    note: str | None = None
    queries: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def is_uk_flavoured(company_name: str) -> bool:
    return bool(_UK_HINT_RE.search(company_name or ""))


def _hostname(url: str) -> str:
    host = (urlparse(url).hostname or "").lower()
    return host[4:] if host.startswith("www.") else host


def registrable_domain(url_or_host: str) -> str:
    host = _hostname(url_or_host) if "://" in url_or_host else url_or_host.lower()
    if host.startswith("www."):
        host = host[4:]
    parts = host.split(".")
    if len(parts) >= 3 and ".".join(parts[-2:]) in _TWO_LEVEL_SUFFIXES:
        return ".".join(parts[-3:])
    return ".".join(parts[-2:])


def _domain_label(domain: str) -> str:
    """"alphamusclegym.co.uk" -> "alphamusclegym"."""
    for suffix in _TWO_LEVEL_SUFFIXES:
        if domain.endswith("." + suffix):
            return domain[: -len(suffix) - 1]
    return domain.rsplit(".", 1)[0]


def is_excluded_host(host: str) -> bool:
    return any(host == d or host.endswith("." + d) for d in EXCLUDED_DOMAINS)


def name_tokens(company_name: str) -> List[str]:
    return [t for t in re.split(r"[^a-z0-9]+", normalize_company_name(company_name)) if t]


def score_candidate(company_name: str, url: str, title: str = "") -> float:
    host = _hostname(url)
    if any(term in host for term in PENALIZED_HOST_TERMS):
        return -100.0

    tokens = name_tokens(company_name)
    stripped = "".join(tokens)
    label = re.sub(r"[^a-z0-9]", "", _domain_label(registrable_domain(host)))

    score = 0.0
    if stripped and stripped in label:
        score += 100
    if stripped and label == stripped:
        score += 100
    if tokens and all(t in host for t in tokens):
        score += 50
    for token in tokens:
        if token in host:
            score += min(len(token) * 2, 20)

    score -= 0.5 * len(host)
    segments = [s for s in urlparse(url).path.split("/") if s]
    score -= 5 * len(segments)

    if host.endswith(COMMON_TLDS):
        score += 10
    if is_uk_flavoured(company_name) and host.endswith(UK_TLDS):
        score += 15
    if "official" in (title or "").lower():
        score += 10
    if any(term in host for term in DIRECTORY_HOST_TERMS):
        score -= 30
    return score


def rank_hits(company_name: str, hits: List[SearchHit]) -> List[DiscoveryCandidate]:
    """Drop excluded hosts, keep one hit per registrable domain, sort by score."""
    by_domain: Dict[str, DiscoveryCandidate] = {}
    for hit in hits:
        host = _hostname(hit.url)
        if not host or is_excluded_host(host):
            continue
        domain = registrable_domain(host)
        candidate = DiscoveryCandidate(
            url=hit.url,
            domain=domain,
            title=hit.title,
            engine=hit.engine,
            score=round(score_candidate(company_name, hit.url, hit.title), 2),
        )
        existing = by_domain.get(domain)
        if existing is None or candidate.score > existing.score:
            by_domain[domain] = candidate
    return sorted(by_domain.values(), key=lambda c: c.score, reverse=True)


def guess_domains(company_name: str) -> List[str]:
    slug = "".join(name_tokens(company_name)) or re.sub(r"[^a-z0-9]", "", company_name.lower())
    if not slug:
        return []
    tlds = GUESS_TLDS_UK if is_uk_flavoured(company_name) else GUESS_TLDS_DEFAULT
    return [f"https://www.{slug}{tld}" for tld in tlds]


class WebDiscoveryService:
    def __init__(
        self,
        search: SearchEngineScraper | None = None,
        exa: ExaConnector | None = None,
        check_timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.search = search or SearchEngineScraper(transport=transport)
        self.exa = exa or ExaConnector(transport=transport)
        self.check_timeout = check_timeout if check_timeout is not None else settings.DOMAIN_CHECK_TIMEOUT_SECONDS
        self.user_agent = settings.SCRAPER_USER_AGENT
        self._transport = transport

    @staticmethod
    def build_queries(company_name: str) -> List[str]:
        return [
            f"{company_name} official website",
            f"{company_name} company website",
            f"{company_name} contact us",
        ]

    async def discover(self, company_name: str) -> DiscoveryResult:
        queries = self.build_queries(company_name)
        try:
            hits: List[SearchHit] = []
            for query in queries:
                hits.extend(await self.search.search(query))

            candidates = rank_hits(company_name, hits)
            if not candidates:
                candidates = rank_hits(company_name, await self.exa.search(queries[0]))

            viable = [c for c in candidates if c.score > -100]
            if viable:
                top = viable[0]
                return DiscoveryResult(
                    website=f"https://{_hostname(top.url) or top.domain}",
                    source="web_search",
                    candidates=viable[: MAX_ALTERNATIVES + 1],
                    queries=queries,
                )

            return await self._guess(company_name, queries)
        except Exception as e:
            # Discovery must always hand back a URL; the collector copes with bad ones
            logger.exception("Website discovery failed for %s: %s", company_name, e)
            slug = "".join(name_tokens(company_name)) or "example"
            return DiscoveryResult(
                website=f"https://www.{slug}.com",
                source="error_fallback",
                note=f"Discovery failed ({e.__class__.__name__}); unverified guess",
                queries=queries,
            )

    async def _guess(self, company_name: str, queries: List[str]) -> DiscoveryResult:
        guesses = guess_domains(company_name)
        if not guesses:
            raise ValueError(f"Cannot build a domain guess from {company_name!r}")

        async with httpx.AsyncClient(
            timeout=self.check_timeout,
            follow_redirects=True,
            headers={"User-Agent": self.user_agent},
            transport=self._transport,
        ) as client:
            for url in guesses:
                if await self._exists(client, url):
                    return DiscoveryResult(
                        website=url,
                        source="domain_guess",
                        note=f"Domain responded to HEAD request: {url}",
                        queries=queries,
                    )

        return DiscoveryResult(
            website=guesses[0],
            source="domain_guess",
            note="unverified guess: no guessed domain responded",
            queries=queries,
        )

    @staticmethod
    async def _exists(client: httpx.AsyncClient, url: str) -> bool:
        try:
            resp = await client.head(url)
        except httpx.HTTPError:
            return False
        return resp.status_code < 500
