from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx
from tenacity import retry, wait_exponential, stop_after_attempt, retry_if_exception_type

from ..caching import cached_get
from ...core.config import get_settings

logger = logging.getLogger(__name__)


class RegistryError(Exception):
    """Base class for Companies House failures."""

    status_code: int | None = None


class CompanyNotFoundError(RegistryError):
    status_code = 404

    def __init__(self, crn: str) -> None:
        super().__init__(f"No company found with registration number {crn}")
        self.crn = crn


class RegistryAuthError(RegistryError):
    """Missing or rejected API key. Configuration problem, never retried."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RegistryRateLimitError(RegistryError):
    status_code = 429

    def __init__(self, retry_after: str | None = None) -> None:
        msg = "Companies House rate limit exceeded"
        if retry_after:
            msg += f" (retry after {retry_after}s)"
        super().__init__(msg)
        self.retry_after = retry_after


class RegistryUnavailableError(RegistryError):
    """Timeouts, network failures and 5xx responses."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RegistryAPIError(RegistryError):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"Companies House API error {status_code}: {message}")
        self.status_code = status_code


class CompaniesHouseClient:
    """
    Async client for the Companies House public data API.

    A new httpx.AsyncClient is opened per request: each Celery task runs the
    pipeline in its own event loop, so pooled connections cannot be shared.
    """

    name = "companies_house"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.COMPANIES_HOUSE_API_KEY
        self.base_url = (base_url or settings.COMPANIES_HOUSE_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.COMPANIES_HOUSE_TIMEOUT_SECONDS
        self.search_items_per_page = 20
        self.officers_items_per_page = 50
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        if not self.api_key:
            raise RegistryAuthError("COMPANIES_HOUSE_API_KEY is not configured")
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            auth=(self.api_key, ""),
            transport=self._transport,
        )

    @retry(
        wait=wait_exponential(multiplier=1, min=1, max=10),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type(RegistryUnavailableError),
        reraise=True,
    )
    async def _get_json(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        not_found_key: str | None = None,
    ) -> Dict[str, Any]:
        """
        GET a registry resource and map failures onto the error taxonomy.

        - 404 -> CompanyNotFoundError (terminal)
        - 401/403 -> RegistryAuthError (not retried)
        - 429 -> RegistryRateLimitError (not retried, quota must recover)
        - network errors and 5xx -> RegistryUnavailableError (retried by tenacity)
        - other 4xx, or a 2xx body that is not JSON -> RegistryAPIError
        """
        async with self._client() as client:
            try:
                resp = await client.get(path, params=params)
            except httpx.HTTPError as e:
                raise RegistryUnavailableError(f"Companies House request failed: {e}") from e

        status = resp.status_code
        if status == 404:
            raise CompanyNotFoundError(not_found_key or path)
        if status in (401, 403):
            raise RegistryAuthError(
                "Companies House rejected the API key", status_code=status
            )
        if status == 429:
            raise RegistryRateLimitError(resp.headers.get("Retry-After"))
        if status >= 500:
            raise RegistryUnavailableError(
                f"Companies House returned {status}", status_code=status
            )
        if status >= 400:
            raise RegistryAPIError(status, resp.text[:200])
        try:
            return resp.json()
        except ValueError as e:
            raise RegistryAPIError(status, f"response is not JSON: {resp.text[:200]}") from e

    async def get_company_profile(self, crn: str) -> Dict[str, Any]:
        return await self._get_json(f"/company/{crn}", not_found_key=crn)

    async def search_companies(self, name: str) -> List[Dict[str, Any]]:
        """Registry name search; returns raw search items (title, company_number, company_status…)."""
        cache_key = f"ch:search:{name.strip().lower()}"
        cached = await cached_get(cache_key)
        if cached is not None:
            return cached

        try:
            data = await self._get_json(
                "/search/companies",
                params={"q": name, "items_per_page": self.search_items_per_page},
            )
        except CompanyNotFoundError:
            return []

        items = data.get("items") or []
        await cached_get(cache_key, set_value=items)
        return items

    async def get_officers(self, crn: str) -> List[Dict[str, Any]]:
        try:
            data = await self._get_json(
                f"/company/{crn}/officers",
                params={"items_per_page": self.officers_items_per_page},
                not_found_key=crn,
            )
        except CompanyNotFoundError:
            return []
        return data.get("items") or []

    async def get_persons_with_significant_control(self, crn: str) -> List[Dict[str, Any]]:
        try:
            data = await self._get_json(
                f"/company/{crn}/persons-with-significant-control",
                not_found_key=crn,
            )
        except CompanyNotFoundError:
            return []
        return data.get("items") or []

    async def get_incorporation_document_url(self, crn: str) -> Optional[str]:
        """Document-metadata link of the NEWINC filing, if the registry has one."""
        try:
            data = await self._get_json(
                f"/company/{crn}/filing-history",
                params={"category": "incorporation", "items_per_page": 25},
                not_found_key=crn,
            )
        except CompanyNotFoundError:
            return None

        for item in data.get("items") or []:
            if item.get("type") == "NEWINC":
                return (item.get("links") or {}).get("document_metadata")
        return None
