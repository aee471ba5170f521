# backend/kyb/services/connectors/exa.py
from __future__ import annotations

import logging
from typing import Any, Dict, List

import httpx
from tenacity import retry, wait_exponential, stop_after_attempt, retry_if_exception_type

from .search_engines import SearchHit
from ...core.config import get_settings

logger = logging.getLogger(__name__)


class ExaConnector:
    """
    Paid search API used as the last search step of website discovery.

    Optional: without EXA_API_KEY `search()` returns no hits instead of
    failing, and discovery moves on to domain guessing.
    """

    name = "exa"

    def __init__(
        self,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.EXA_API_KEY
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS
        self.search_url = "https://api.exa.ai/search"
        self.max_results_per_query = 5
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key or "",
            "Content-Type": "application/json",
            "accept": "application/json",
        }

    def _build_search_payload(self, query: str) -> Dict[str, Any]:
        return {
            "query": query,
            "numResults": self.max_results_per_query,
            "type": "auto",
        }

    @retry(
        wait=wait_exponential(multiplier=1, min=1, max=4),
        stop=stop_after_attempt(2),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            return await client.post(self.search_url, json=payload, headers=self._headers())

    async def search(self, query: str) -> List[SearchHit]:
        if not self.api_key:
            return []

        try:
            resp = await self._post(self._build_search_payload(query))
        except httpx.HTTPError as e:
            logger.warning("Exa search failed: %s", e, extra={"connector": self.name})
            return []

        if resp.status_code >= 400:
            logger.warning(
                "Exa search returned %s", resp.status_code, extra={"connector": self.name}
            )
            return []

        try:
            data = resp.json()
        except ValueError as e:
            logger.warning("Exa search returned invalid JSON: %s", e, extra={"connector": self.name})
            return []

        hits: List[SearchHit] = []
        for item in data.get("results") or []:
            url = item.get("url")
            if url:
                hits.append(SearchHit(url=url, title=item.get("title") or "", engine=self.name))
        return hits
