"""
Web search client for Whoogle/SearXNG-style JSON search endpoints.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import BaseModel, Field

from graphchat.errors import HTTP_NOT_FOUND, HTTP_UNAUTHORIZED, ToolExecutionError

logger = logging.getLogger(__name__)

HTTP_OK = 200


class SearchResult(BaseModel):
    """One normalized search hit."""

    title: str = ""
    url: str = ""
    content: str = ""
    engine: str = "whoogle"
    published_date: str | None = None
    image_url: str | None = None


class SearchResponse(BaseModel):
    """Normalized search response."""

    query: str
    number_of_results: int = 0
    page: int = 1
    results: list[SearchResult] = Field(default_factory=list)
    infoboxes: list[Any] | None = None
    suggestions: list[str] | None = None
    related: list[str] | None = None


class WebSearchClient:
    """GET {url}/search?q=...&format=json&page=N with optional Bearer auth."""

    def __init__(
        self,
        url: str,
        auth_enabled: bool = False,
        auth_key: str = "",
        timeout: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        self.auth_enabled = auth_enabled
        self.auth_key = auth_key
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_config(cls, search_config: dict[str, Any], **kwargs: Any) -> WebSearchClient:
        return cls(
            url=search_config.get("url", ""),
            auth_enabled=bool(search_config.get("auth_enabled", False)),
            auth_key=search_config.get("auth_key", ""),
            timeout=float(search_config.get("timeout_seconds", 20.0)),
            **kwargs,
        )

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport, trust_env=False)
        return self._client

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.auth_enabled and self.auth_key:
            headers["Authorization"] = f"Bearer {self.auth_key}"
        return headers

    @staticmethod
    def _normalize_result(raw: dict[str, Any]) -> SearchResult:
        return SearchResult(
            title=raw.get("title") or "",
            url=raw.get("url") or raw.get("link") or "",
            content=raw.get("content") or raw.get("snippet") or raw.get("description") or "",
            published_date=raw.get("publishedDate") or raw.get("date"),
            image_url=raw.get("img_src") or raw.get("image"),
        )

    async def search(self, query: str, page: int = 1) -> SearchResponse:
        """Run a search; failures raise ToolExecutionError with a readable message."""
        if not self.url:
            raise ToolExecutionError("Web search URL is not configured")

        params = {"q": query, "format": "json", "page": str(page)}
        logger.info("→ SEARCH: query=%r page=%d", query, page)

        try:
            response = await self.client.get(f"{self.url}/search", params=params, headers=self._headers())
        except httpx.TimeoutException as e:
            raise ToolExecutionError("Search request timed out, check the network connection") from e
        except httpx.HTTPError as e:
            raise ToolExecutionError(f"Web search failed: {e}") from e

        if response.status_code == HTTP_UNAUTHORIZED:
            raise ToolExecutionError("Authentication failed: search API key is invalid or unauthorized")
        if response.status_code == HTTP_NOT_FOUND:
            raise ToolExecutionError("Search service not found, check the configured URL")
        if response.status_code != HTTP_OK:
            raise ToolExecutionError(f"Web search failed: HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise ToolExecutionError(f"Web search returned invalid JSON: {e}") from e

        raw_results = data.get("results") or []
        results = [self._normalize_result(r) for r in raw_results if isinstance(r, dict)]
        search_response = SearchResponse(
            query=query,
            number_of_results=len(results),
            page=page,
            results=results,
            infoboxes=data.get("infoboxes"),
            suggestions=data.get("suggestions"),
            related=data.get("related"),
        )
        logger.info("← SEARCH: %d results", search_response.number_of_results)
        return search_response

    async def test_connection(self) -> tuple[bool, str]:
        """Run a throwaway query to check the service is reachable."""
        if not self.url:
            return False, "Please configure the web search URL first"
        try:
            result = await self.search("test")
        except ToolExecutionError as e:
            return False, f"Connection failed: {e}"
        return True, f"✓ Web search connected, {result.number_of_results} test results"

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
