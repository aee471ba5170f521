from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List
from urllib.parse import parse_qs, urlparse

import httpx
from bs4 import BeautifulSoup

from ..caching import cached_get
from ...core.config import get_settings

logger = logging.getLogger(__name__)

MAX_RESULTS_PER_QUERY = 10


@dataclass
class SearchHit:
    url: str
    title: str = ""
    snippet: str = ""
    engine: str = ""

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def parse_bing_results(html: str) -> List[SearchHit]:
    soup = BeautifulSoup(html, "html.parser")
    hits: List[SearchHit] = []
    for result in soup.select(".b_algo"):
        link = result.select_one("h2 a")
        if not link or not link.get("href", "").startswith("http"):
            continue
        snippet = result.select_one(".b_caption p")
        hits.append(
            SearchHit(
                url=link["href"],
                title=link.get_text(" ", strip=True),
                snippet=snippet.get_text(" ", strip=True) if snippet else "",
                engine="bing",
            )
        )
        if len(hits) >= MAX_RESULTS_PER_QUERY:
            break
    return hits


def _unwrap_duckduckgo_href(href: str) -> str:
    """DuckDuckGo's HTML endpoint wraps targets as /l/?uddg=<encoded url>."""
    if "uddg=" in href:
        target = parse_qs(urlparse(href).query).get("uddg")
        if target:
            return target[0]
    if href.startswith("//"):
        return f"https:{href}"
    return href


def parse_duckduckgo_results(html: str) -> List[SearchHit]:
    soup = BeautifulSoup(html, "html.parser")
    hits: List[SearchHit] = []
    for result in soup.select(".result"):
        link = result.select_one(".result__a")
        if not link or not link.get("href"):
            continue
        url = _unwrap_duckduckgo_href(link["href"])
        if not url.startswith("http"):
            continue
        snippet = result.select_one(".result__snippet")
        hits.append(
            SearchHit(
                url=url,
                title=link.get_text(" ", strip=True),
                snippet=snippet.get_text(" ", strip=True) if snippet else "",
                engine="duckduckgo",
            )
        )
        if len(hits) >= MAX_RESULTS_PER_QUERY:
            break
    return hits


class SearchEngineScraper:
    """
    Free web search by scraping result pages.

    Bing is the primary engine; DuckDuckGo's HTML endpoint is only queried
    when Bing yields nothing parseable for a query.
    """

    name = "search_engines"

    def __init__(
        self,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS
        self.user_agent = settings.SCRAPER_USER_AGENT
        self.bing_url = "https://www.bing.com/search"
        self.duckduckgo_url = "https://html.duckduckgo.com/html/"
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            headers={"User-Agent": self.user_agent, "Accept-Language": "en-GB,en;q=0.9"},
            transport=self._transport,
        )

    async def _fetch(self, client: httpx.AsyncClient, url: str, params: Dict[str, str]) -> str | None:
        try:
            resp = await client.get(url, params=params)
        except httpx.HTTPError as e:
            logger.warning("Search request to %s failed: %s", url, e, extra={"connector": self.name})
            return None
        if resp.status_code >= 400:
            logger.warning(
                "Search request to %s returned %s", url, resp.status_code,
                extra={"connector": self.name},
            )
            return None
        return resp.text

    async def search(self, query: str) -> List[SearchHit]:
        cache_key = f"serp:{query.strip().lower()}"
        cached = await cached_get(cache_key)
        if cached is not None:
            return [SearchHit(**hit) for hit in cached]

        async with self._client() as client:
            html = await self._fetch(client, self.bing_url, {"q": query, "setlang": "en-GB"})
            hits = parse_bing_results(html) if html else []
            if not hits:
                html = await self._fetch(client, self.duckduckgo_url, {"q": query})
                hits = parse_duckduckgo_results(html) if html else []

        if hits:
            await cached_get(cache_key, set_value=[h.as_dict() for h in hits])
        return hits
