"""URL fetcher that returns page content as markdown or plain text."""

from __future__ import annotations

import logging
from typing import Any, Literal

import httpx
from bs4 import BeautifulSoup
from markdownify import markdownify
from pydantic import BaseModel

from graphchat.errors import ToolExecutionError

logger = logging.getLogger(__name__)

MAX_RESPONSE_BYTES = 5 * 1024 * 1024
HTTP_OK = 200
HTML_TYPES = {"text/html", "application/xhtml+xml"}
NOISE_TAGS = ["script", "style", "noscript", "meta", "link"]

ReturnFormat = Literal["markdown", "text"]


class FetchedPage(BaseModel):
    """Converted page content."""

    url: str
    content: str
    format: ReturnFormat
    content_type: str = ""


class WebFetchClient:
    """GET a URL with a size cap and convert HTML for the model."""

    def __init__(
        self,
        timeout: float = 30.0,
        max_response_bytes: int = MAX_RESPONSE_BYTES,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self.max_response_bytes = max_response_bytes
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_config(cls, fetch_config: dict[str, Any], **kwargs: Any) -> WebFetchClient:
        return cls(
            timeout=float(fetch_config.get("timeout_seconds", 30.0)),
            max_response_bytes=int(fetch_config.get("max_response_bytes", MAX_RESPONSE_BYTES)),
            **kwargs,
        )

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                follow_redirects=True,
                transport=self._transport,
                trust_env=False,
            )
        return self._client

    @staticmethod
    def convert(text: str, content_type: str, return_format: ReturnFormat) -> str:
        """HTML becomes markdown or text; other content types pass through."""
        if content_type not in HTML_TYPES:
            return text

        soup = BeautifulSoup(text, "html.parser")
        for tag in soup(NOISE_TAGS):
            tag.decompose()

        if return_format == "text":
            return soup.get_text(separator="\n").strip()
        return markdownify(str(soup), heading_style="atx", bullets="-").strip()

    async def fetch(self, url: str, return_format: ReturnFormat = "markdown") -> FetchedPage:
        url = url.strip()
        if not url.startswith(("http://", "https://")):
            raise ToolExecutionError(f"Invalid URL scheme: {url}")

        logger.info("→ FETCH: %s (%s)", url, return_format)
        try:
            response = await self.client.get(url, headers={"Accept": "text/html, text/plain;q=0.9, */*;q=0.1"})
        except httpx.HTTPError as e:
            raise ToolExecutionError(f"Fetching {url} failed: {e}") from e

        if response.status_code != HTTP_OK:
            raise ToolExecutionError(f"HTTP {response.status_code}: {response.reason_phrase}")

        size_header = response.headers.get("content-length")
        if (size_header and size_header.isdigit() and int(size_header) > self.max_response_bytes) or len(
            response.content
        ) > self.max_response_bytes:
            raise ToolExecutionError(f"Response too large (limit {self.max_response_bytes} bytes)")

        content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
        text = response.content.decode(response.encoding or "utf-8", errors="replace")
        content = self.convert(text, content_type, return_format)

        logger.info("← FETCH: %d characters", len(content))
        return FetchedPage(url=url, content=content, format=return_format, content_type=content_type)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
