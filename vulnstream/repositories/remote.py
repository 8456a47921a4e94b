"""Remote paged backend: translates queries into GET requests against the vulns API."""

import json
import logging
import time
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from vulnstream.repositories.base import RepositoryError
from vulnstream.schemas.vulns import (
    Filters,
    SortSpec,
    SummaryMetrics,
    Vulnerability,
    VulnsPageResponse,
)

if TYPE_CHECKING:
    from vulnstream.core.config import Settings

logger = logging.getLogger(__name__)

# Trailing path segment accepted on the base URL (".../api/v1/vulns" means base ".../api/v1").
_VULNS_SUFFIX = "/vulns"


def api_base_from_url(url: str) -> str:
    """Normalize a base URL: strip trailing slashes and an optional trailing /vulns."""
    base = url.strip().rstrip("/")
    if base.endswith(_VULNS_SUFFIX):
        base = base[: -len(_VULNS_SUFFIX)]
    return base


def _error_message(response: httpx.Response) -> str:
    """Best human-readable message from an error response body."""
    try:
        body = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        body = None
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
            if value:
                return json.dumps(value)
    return response.reason_phrase or f"HTTP error! status: {response.status_code}"


class RemoteRepository:
    """
    Read-only view of a remote dataset behind the paged list/summary API.

    add_many and clear are no-ops. Requests are cancelled when the awaiting task is
    cancelled; close the client with aclose() when the owner goes away.
    """

    def __init__(
        self,
        base_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_sec: float = 30.0,
        page_limit: int = 1000,
    ) -> None:
        self.base_url = api_base_from_url(base_url)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_sec))
        self._page_limit = page_limit

    @classmethod
    def from_settings(cls, settings: "Settings", base_url: str | None = None) -> "RemoteRepository":
        return cls(
            base_url or settings.REMOTE_API_BASE,
            timeout_sec=settings.REMOTE_REQUEST_TIMEOUT_SEC,
            page_limit=settings.REMOTE_PAGE_LIMIT,
        )

    async def _get_json(self, path: str, what: str, params: dict[str, str] | None = None) -> Any:
        url = f"{self.base_url}{path}"
        start = time.perf_counter()
        try:
            response = await self._client.get(url, params=params)
        except httpx.TimeoutException as e:
            raise RepositoryError(f"Failed to fetch {what}: request timed out.", cause=e) from e
        except httpx.HTTPError as e:
            raise RepositoryError(f"Failed to fetch {what}: {e!s}", cause=e) from e
        logger.debug(
            "Remote request completed",
            extra={
                "url": url,
                "status_code": response.status_code,
                "latency_seconds": time.perf_counter() - start,
            },
        )
        if response.status_code == 404 and what == "vulnerability":
            return None
        if not response.is_success:
            raise RepositoryError(f"Failed to fetch {what}: {_error_message(response)}")
        try:
            return response.json()
        except json.JSONDecodeError as e:
            raise RepositoryError(f"Failed to fetch {what}: response body is not valid JSON.", cause=e) from e

    def _page_params(
        self,
        filters: Filters,
        offset: int,
        limit: int,
        sort: SortSpec | None = None,
    ) -> dict[str, str]:
        params = filters.to_query_params()
        params["offset"] = str(offset)
        params["limit"] = str(limit)
        if sort is not None:
            params["sortKey"] = sort.key
            params["sortDir"] = sort.dir
        return params

    async def _fetch_page(self, params: dict[str, str], what: str) -> VulnsPageResponse:
        body = await self._get_json(_VULNS_SUFFIX, what, params)
        try:
            return VulnsPageResponse.model_validate(body)
        except ValidationError as e:
            raise RepositoryError(f"Failed to fetch {what}: unexpected response shape.", cause=e) from e

    async def add_many(self, records: Sequence[Vulnerability]) -> None:
        return None

    async def count(self, filters: Filters | None = None) -> int:
        page = await self._fetch_page(self._page_params(filters or Filters(), 0, 0), "count")
        return page.total

    async def query(
        self,
        filters: Filters,
        offset: int,
        limit: int,
        sort: SortSpec | None = None,
    ) -> list[Vulnerability]:
        """Fetch one logical page, splitting it into server-sized requests when limit exceeds the server maximum."""
        out: list[Vulnerability] = []
        position = max(0, offset)
        remaining = max(0, limit)
        while remaining > 0:
            size = min(remaining, self._page_limit)
            page = await self._fetch_page(self._page_params(filters, position, size, sort), "vulnerabilities")
            out.extend(page.results[:size])
            if len(page.results) < size:
                break
            position += size
            remaining -= size
        return out

    async def get(self, record_id: str) -> Vulnerability | None:
        body = await self._get_json(f"{_VULNS_SUFFIX}/{quote(record_id, safe='')}", "vulnerability")
        if body is None:
            return None
        try:
            return Vulnerability.model_validate(body)
        except ValidationError as e:
            raise RepositoryError("Failed to fetch vulnerability: unexpected response shape.", cause=e) from e

    async def summarize(self) -> SummaryMetrics:
        body = await self._get_json("/summary", "summary")
        try:
            return SummaryMetrics.model_validate(body)
        except ValidationError as e:
            raise RepositoryError("Failed to fetch summary: unexpected response shape.", cause=e) from e

    async def clear(self) -> None:
        return None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
