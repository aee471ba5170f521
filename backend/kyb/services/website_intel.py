# backend/kyb/services/website_intel.py
"""
Website intelligence: pull registration and contact facts out of a
company's own website.

Company sites disclose their registration details in wildly inconsistent
wording, so every extractor below is an ordered cascade: labelled,
specific patterns first, bare patterns last. The CRN cascade in
particular must try "Company No: 12345678" style patterns before the bare
8-digit pattern, otherwise phone numbers and order references win.

`collect()` never raises for network or parse problems. An unreachable
site yields an empty `WebsiteData` whose `notes` say what went wrong.
"""
from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from ..core.config import get_settings
from .registry_verifier import validate_crn_format
from .similarity import similarity

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LEN = 500
MAX_SUBPAGES = 3

DESCRIPTION_SELECTORS = [
    '[itemprop="description"]',
    ".company-description",
    "#company-description",
    ".about-text",
    "#about-text",
    ".about-us-text",
    "#about-us-text",
    ".mission-statement",
    "#mission-statement",
    ".intro-text",
    "#intro-text",
    ".business-description",
    "#business-description",
]

ABOUT_CONTENT_SELECTORS = ["main", ".main", "#main", ".content", "#content", "article"]

FOOTER_SELECTORS = [
    "footer",
    ".footer",
    "#footer",
    ".site-footer",
    "#site-footer",
    ".copyright",
    "#copyright",
    ".legal",
    "#legal",
    ".company-info",
    "#company-info",
    ".contact",
    "#contact",
    '[class*="footer"]',
    '[id*="footer"]',
    '[class*="copyright"]',
    '[id*="copyright"]',
]

NAME_SELECTORS = [
    ".company-name",
    "#company-name",
    ".brand",
    ".brand-name",
    ".logo-text",
    "header .logo",
    "a.navbar-brand",
    '[itemtype="http://schema.org/Organization"] [itemprop="name"]',
    '[itemprop="name"]',
]

ADDRESS_SELECTORS = [
    '[itemprop="address"]',
    ".address",
    "#address",
    ".contact-address",
    "#contact-address",
    ".company-address",
    "#company-address",
    ".footer-address",
    "#footer-address",
]

_NAME_CHARS = r"[A-Za-z0-9\s&.,'()-]"
_SUFFIXES = r"(?:Ltd\.?|Limited|LLC|LLP|Inc\.?|PLC|Corporation|Corp\.?|Company)"

COMPANY_NAME_PATTERNS = [
    re.compile(r"©\s*(?:\d{4})?\s*(" + _NAME_CHARS + r"+?)\s*" + _SUFFIXES, re.I),
    re.compile(r"(?:©|Copyright)\s*(?:\d{4})?\s*(?:by)?\s*(" + _NAME_CHARS + r"+?)(?:\.|$|,|\s-)", re.I),
    re.compile(r"(" + _NAME_CHARS + r"+?)\s*(?:is registered in England|is a registered company)", re.I),
    re.compile(r"(" + _NAME_CHARS + r"+?)\s*" + _SUFFIXES + r"(?:\s*registered|$|\s*\d{4})", re.I),
    re.compile(r"(" + _NAME_CHARS + r"+?)\s*All Rights Reserved", re.I),
]

EMAIL_RE = re.compile(r"[a-zA-Z0-9._-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,6}")
PRIMARY_EMAIL_PREFIXES = ("info@", "contact@", "enquiries@", "hello@")
_ASSET_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp")

PHONE_RE = re.compile(r"(?:\+44|0)(?:\s?\d){9,11}")

POSTCODE_RE = re.compile(r"[A-Z]{1,2}[0-9][A-Z0-9]? ?[0-9][A-Z]{2}")
ADDRESS_WINDOW = 100

VAT_PATTERNS = [
    re.compile(r"VAT\s+(?:Number|No|Registration)[\s:.]*([A-Za-z0-9\s]{7,12})", re.I),
    re.compile(r"VAT\s+(?:Registration|Reg\.?)[\s:]*([A-Za-z0-9\s]{7,12})", re.I),
    re.compile(r"Value\s+Added\s+Tax\s+(?:Number|No)[\s:.]*([A-Za-z0-9\s]{7,12})", re.I),
    re.compile(r"GB\s*VAT\s+(?:Number|No)[\s:.]*([A-Za-z0-9\s]{7,12})", re.I),
    re.compile(r"VAT\s+ID[\s:]*([A-Za-z0-9\s]{7,12})", re.I),
    re.compile(r"VAT[\s:]*(GB\d{9})", re.I),
    re.compile(r"Tax\s+ID[\s:]*([A-Za-z0-9\s]{7,12})", re.I),
]

SOCIAL_PLATFORMS = {
    "facebook": "facebook.com",
    "twitter": "twitter.com",
    "linkedin": "linkedin.com",
    "instagram": "instagram.com",
    "youtube": "youtube.com",
}

_NUM = r"(?:Number|No)\.?\s*:?\s*"
_PREFIXED = r"((?:SC|NI|OC)\d{6,8})"

CRN_PATTERNS = [
    # labelled
    re.compile(r"\bCompany\s+(?:Registration\s+)?" + _NUM + r"(\d{8})\b", re.I),
    re.compile(r"\bCRN\s*:?\s*(\d{8})\b", re.I),
    re.compile(r"\bRegistered\s+(?:Company\s+)?" + _NUM + r"(\d{8})\b", re.I),
    re.compile(r"\bRegistered\s+in\s+(?:England|Scotland|Wales|UK)[^.]*?\s+" + _NUM + r"(\d{8})\b", re.I),
    re.compile(r"\bRegistered\s+in\s+(?:England|Scotland|Wales|UK)[^.]*?\s+(?:with\s+)?(?:Company\s+)?" + _NUM + r"(\d{8})\b", re.I),
    re.compile(r"\bRegistration\s+Number\s*:?\s*(\d{8})\b", re.I),
    re.compile(r"\bCompanies\s+House\s+(?:Number|No|Registration)\.?\s*:?\s*(\d{8})\b", re.I),
    re.compile(r"\bregistered\s+with\s+Companies\s+House[^.]*?\s+" + _NUM + r"(\d{8})\b", re.I),
    re.compile(r"\bCompany\s+(?:Registration\s+)?" + _NUM + _PREFIXED + r"\b", re.I),
    re.compile(r"\bCRN\s*:?\s*" + _PREFIXED + r"\b", re.I),
    # contextual
    re.compile(r"\bregistered\s+(?:company|business)[^.]*?\s+" + _NUM + r"(\d{8})\b", re.I),
    re.compile(r"\b(?:incorporated|trading)[^.]*?\s+" + _NUM + r"(\d{8})\b", re.I),
    re.compile(r"\bVAT[^.]*?(?:Company|Registration)\s+" + _NUM + r"(\d{8})\b", re.I),
    re.compile(r"(?:©|\bCopyright)[^.]*?(?:Company|Registration)\s+" + _NUM + r"(\d{8})\b", re.I),
    re.compile(r"(?:©|\bCopyright)[^.]*?registered\s+(?:in|with)[^.]*?\b(\d{8})\b", re.I),
    re.compile(r"\b\d{4}[^.]*?(?:Company|Registration)\s+" + _NUM + r"(\d{8})\b", re.I),
    re.compile(r"\blimited\s+by\s+guarantee[^.]*?(?:registration|company)\s+" + _NUM + r"(\d{8})\b", re.I),
    re.compile(r"\bUK\s+registered\s+company[^.]*?" + _NUM + r"(\d{8})\b", re.I),
    re.compile(r"\bUK\s+company\s+" + _NUM + r"(\d{8})\b", re.I),
    # bare, last resort
    re.compile(r"\b" + _PREFIXED + r"\b", re.I),
    re.compile(r"\b(\d{8}|[A-Z]{2}\d{6})\b", re.I),
]

CRN_CONTEXT_WINDOW = 50

# Link text / hrefs likely to lead to legal disclosure pages
SUBPAGE_HINTS = ("terms", "privacy", "legal", "contact", "about", "imprint", "company-information")


@dataclass
class WebsiteData:
    url: str
    reachable: bool = False
    title: str | None = None
    meta_description: str | None = None
    meta_keywords: str | None = None
    description: str | None = None
    company_name: str | None = None
    name_similarity: float | None = None
    address: str | None = None
    phone: str | None = None
    phones: List[str] = field(default_factory=list)
    email: str | None = None
    emails: List[str] = field(default_factory=list)
    vat_number: str | None = None
    social_links: List[Dict[str, str]] = field(default_factory=list)
    crn: str | None = None
    crn_location: str | None = None
    crn_context: str | None = None
    notes: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def normalize_url(url: str) -> str:
    url = url.strip()
    if not re.match(r"^https?://", url, re.I):
        url = f"https://{url}"
    return url


def _clean(text: str | None) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def _text_of(soup: BeautifulSoup, selector: str) -> str:
    el = soup.select_one(selector)
    return _clean(el.get_text(" ", strip=True)) if el else ""


def extract_company_name(soup: BeautifulSoup, footer_text: str, notes: List[str]) -> Optional[str]:
    for pattern in COMPANY_NAME_PATTERNS:
        match = pattern.search(footer_text)
        if match:
            candidate = _clean(match.group(1)).strip(" .,-")
            if 2 <= len(candidate) <= 100:
                notes.append(f"Extracted company name from footer: {candidate}")
                return candidate

    for selector in NAME_SELECTORS:
        text = _text_of(soup, selector)
        if text and len(text) <= 100:
            notes.append(f"Extracted company name from {selector}: {text}")
            return text
    return None


def extract_emails(text: str) -> List[str]:
    seen: List[str] = []
    for email in EMAIL_RE.findall(text):
        email = email.lower().rstrip(".")
        if email.endswith(_ASSET_SUFFIXES) or email in seen:
            continue
        seen.append(email)
    # Generic company inboxes first, then page order
    return sorted(seen, key=lambda e: 0 if e.startswith(PRIMARY_EMAIL_PREFIXES) else 1)


def extract_phones(text: str) -> List[str]:
    phones: List[str] = []
    for match in PHONE_RE.findall(text):
        phone = _clean(match)
        if phone not in phones:
            phones.append(phone)
    return phones


def extract_address(soup: BeautifulSoup, footer_text: str) -> Optional[str]:
    for selector in ADDRESS_SELECTORS:
        text = _text_of(soup, selector)
        if text:
            return text

    match = POSTCODE_RE.search(footer_text)
    if match:
        start = max(0, match.start() - ADDRESS_WINDOW)
        return _clean(footer_text[start:match.end()]).lstrip(" ,.")
    return None


def extract_vat_number(text: str) -> Optional[str]:
    for pattern in VAT_PATTERNS:
        match = pattern.search(text)
        if match:
            vat = re.sub(r"\s+", "", match.group(1))
            if any(ch.isdigit() for ch in vat):
                return vat.upper()
    return None


def extract_social_links(soup: BeautifulSoup, base_url: str) -> List[Dict[str, str]]:
    links: List[Dict[str, str]] = []
    seen: set[str] = set()
    for a in soup.find_all("a", href=True):
        href = a["href"].strip()
        for platform, domain in SOCIAL_PLATFORMS.items():
            if domain in href:
                full = urljoin(base_url, href)
                if full not in seen:
                    seen.add(full)
                    links.append({"platform": platform, "url": full})
                break
    return links


def find_crn(text: str, notes: List[str]) -> tuple[Optional[str], Optional[str]]:
    """
    Run the CRN cascade over page text.

    Returns (crn, context). The first match that passes the registry format
    check wins; structurally invalid matches are noted and skipped.
    """
    for pattern in CRN_PATTERNS:
        for match in pattern.finditer(text):
            potential = match.group(1).strip().upper()
            if not validate_crn_format(potential):
                notes.append(f"Ignored CRN-like value with invalid format: {potential}")
                continue
            context_match = re.search(
                r".{0,%d}%s.{0,%d}" % (CRN_CONTEXT_WINDOW, re.escape(match.group(1)), CRN_CONTEXT_WINDOW),
                text,
            )
            context = _clean(context_match.group(0)) if context_match else None
            notes.append(f"Valid CRN format found: {potential}")
            return potential, context
    return None, None


class WebsiteIntelligenceCollector:
    def __init__(
        self,
        timeout: float | None = None,
        user_agent: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS
        self.user_agent = user_agent or settings.SCRAPER_USER_AGENT
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            headers={
                "User-Agent": self.user_agent,
                "Accept": "text/html,application/xhtml+xml",
                "Accept-Language": "en-GB,en;q=0.9",
            },
            transport=self._transport,
        )

    async def _fetch_html(self, client: httpx.AsyncClient, url: str, notes: List[str]) -> Optional[str]:
        try:
            resp = await client.get(url)
        except httpx.HTTPError as e:
            notes.append(f"Error fetching {url}: {e.__class__.__name__}: {e}")
            return None
        if resp.status_code >= 400:
            notes.append(f"Error fetching {url}: HTTP {resp.status_code}")
            return None
        return resp.text

    @staticmethod
    def _parse(html: str) -> BeautifulSoup:
        soup = BeautifulSoup(html, "html.parser")
        for element in soup(["script", "style", "noscript"]):
            element.decompose()
        return soup

    async def collect(self, url: str, expected_company_name: str | None = None) -> WebsiteData:
        if not url or not url.strip():
            raise ValueError("url must not be empty")

        url = normalize_url(url)
        data = WebsiteData(url=url)

        async with self._client() as client:
            html = await self._fetch_html(client, url, data.notes)
            if html is None:
                data.notes.append("No data found: website could not be fetched")
                logger.info("Website unreachable", extra={"step": "website_collection"})
                return data

            data.reachable = True
            soup = self._parse(html)
            body_text = _clean(soup.get_text(" ", strip=True))

            title = soup.find("title")
            data.title = _clean(title.get_text()) if title else None
            meta_desc = soup.find("meta", attrs={"name": "description"})
            data.meta_description = _clean(meta_desc.get("content")) if meta_desc else None
            meta_kw = soup.find("meta", attrs={"name": "keywords"})
            data.meta_keywords = _clean(meta_kw.get("content")) if meta_kw else None

            data.description = self._extract_description(soup)
            if not data.description:
                data.description = await self._about_page_description(client, soup, url, data.notes)
            if not data.description and data.meta_description:
                data.description = data.meta_description[:MAX_DESCRIPTION_LEN]

            footer_text = self._footer_text(soup)
            data.company_name = extract_company_name(soup, footer_text, data.notes)
            if data.company_name and expected_company_name:
                data.name_similarity = round(similarity(data.company_name, expected_company_name), 3)

            data.emails = extract_emails(body_text)
            data.email = data.emails[0] if data.emails else None
            data.phones = extract_phones(body_text)
            data.phone = data.phones[0] if data.phones else None
            data.address = extract_address(soup, footer_text or body_text)
            data.vat_number = extract_vat_number(body_text)
            if data.vat_number:
                data.notes.append(f"Found VAT Number: {data.vat_number}")
            data.social_links = extract_social_links(soup, url)

            crn, context = find_crn(body_text, data.notes)
            if crn:
                data.crn, data.crn_context, data.crn_location = crn, context, "main_page"
            else:
                await self._search_subpages(client, soup, url, data)

        return data

    def _extract_description(self, soup: BeautifulSoup) -> Optional[str]:
        for selector in DESCRIPTION_SELECTORS:
            text = _text_of(soup, selector)
            if text:
                return text[:MAX_DESCRIPTION_LEN]
        return None

    @staticmethod
    def _footer_text(soup: BeautifulSoup) -> str:
        chunks: List[str] = []
        seen: set[int] = set()
        for selector in FOOTER_SELECTORS:
            for el in soup.select(selector):
                if id(el) in seen:
                    continue
                seen.add(id(el))
                text = _clean(el.get_text(" ", strip=True))
                if text and text not in chunks:
                    chunks.append(text)
        return " ".join(chunks)

    @staticmethod
    def _same_site_links(soup: BeautifulSoup, base_url: str, hints: tuple[str, ...]) -> List[str]:
        base_host = urlparse(base_url).hostname
        urls: List[str] = []
        for a in soup.find_all("a", href=True):
            href = a["href"].strip()
            label = f"{href} {a.get_text(' ', strip=True)}".lower()
            if not any(h in label for h in hints):
                continue
            full = urljoin(base_url, href)
            if urlparse(full).hostname != base_host or full.rstrip("/") == base_url.rstrip("/"):
                continue
            if full not in urls:
                urls.append(full)
        return urls

    async def _about_page_description(
        self,
        client: httpx.AsyncClient,
        soup: BeautifulSoup,
        base_url: str,
        notes: List[str],
    ) -> Optional[str]:
        links = self._same_site_links(soup, base_url, ("about",))
        if not links:
            return None
        html = await self._fetch_html(client, links[0], notes)
        if html is None:
            return None
        about = self._parse(html)
        for selector in ABOUT_CONTENT_SELECTORS:
            text = _text_of(about, selector)
            if text:
                notes.append(f"Description taken from about page {links[0]}")
                return text[:MAX_DESCRIPTION_LEN]
        return None

    async def _search_subpages(
        self,
        client: httpx.AsyncClient,
        soup: BeautifulSoup,
        base_url: str,
        data: WebsiteData,
    ) -> None:
        """Look for the CRN on legal/contact pages when the home page has none."""
        for link in self._same_site_links(soup, base_url, SUBPAGE_HINTS)[:MAX_SUBPAGES]:
            html = await self._fetch_html(client, link, data.notes)
            if html is None:
                continue
            text = _clean(self._parse(html).get_text(" ", strip=True))
            crn, context = find_crn(text, data.notes)
            if crn:
                data.crn, data.crn_context = crn, context
                data.crn_location = urlparse(link).path or link
                return
        data.notes.append("No valid CRN found on website after checking main page and common pages")
