"""
LLM driver contract shared by every wire protocol.

A driver translates the provider-neutral history and tool definitions into
one protocol's request shape and its responses back into ChatResponse. The
HTTP plumbing, streaming loop, cancellation polling and error classification
live here; variants only describe their request and response shapes.
"""

from __future__ import annotations

import inspect
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import httpx

from graphchat.chat.cancellation import CancellationToken
from graphchat.chat.logging_utils import log_directional_flow, should_log_feature
from graphchat.chat.models import (
    ChatCompletionMessage,
    ChatResponse,
    ConnectionTestResult,
    ModelListResult,
    StreamChunk,
    ToolDefinition,
)
from graphchat.clients.stream_parser import StreamParser
from graphchat.config import ConnectionPoolSettings, LLMSettings
from graphchat.errors import ConfigurationError, ProtocolError, TransportError

logger = logging.getLogger(__name__)

HTTP_OK = 200
HTTP_BAD_REQUEST = 400

ChunkCallback = Callable[[StreamChunk], Awaitable[None] | None]


class LLMDriver(ABC):
    """Base class for the Anthropic and OpenAI protocol variants."""

    provider_label = "LLM"

    def __init__(
        self,
        settings: LLMSettings,
        pool: ConnectionPoolSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self._pool = pool or ConnectionPoolSettings()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._cancellation_token: CancellationToken | None = None

    # ---- protocol-specific hooks ------------------------------------------

    @property
    @abstractmethod
    def endpoint_path(self) -> str:
        """Path of the chat endpoint relative to the base URL."""

    @abstractmethod
    def _build_headers(self) -> dict[str, str]:
        """Authentication and protocol headers."""

    @abstractmethod
    def _build_payload(
        self,
        messages: Sequence[ChatCompletionMessage],
        tools: Sequence[ToolDefinition] | None,
        stream: bool,
    ) -> dict[str, Any]:
        """Translate the neutral history and tools into a request body."""

    @abstractmethod
    def _parse_response(self, data: dict[str, Any]) -> ChatResponse:
        """Translate a non-streaming response body."""

    @abstractmethod
    def _create_stream_parser(self) -> StreamParser:
        """Fresh parser for one streaming response."""

    @abstractmethod
    async def fetch_models_list(self) -> ModelListResult:
        """List model identifiers available to this provider."""

    # ---- HTTP plumbing ----------------------------------------------------

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazily created HTTP client with the configured connection pool."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.settings.base_url,
                headers={**self._build_headers(), "Content-Type": "application/json"},
                timeout=self._pool.request_timeout_seconds,
                http2=self._pool.http2,
                limits=httpx.Limits(
                    max_connections=self._pool.max_connections,
                    max_keepalive_connections=self._pool.max_keepalive_connections,
                    keepalive_expiry=self._pool.keepalive_expiry_seconds,
                ),
                transport=self._transport,
                trust_env=False,
            )
        return self._client

    def validate_config(self) -> None:
        """Fail fast on missing endpoint, key or model before any network I/O."""
        if not self.settings.base_url:
            raise ConfigurationError("Please configure the LLM API URL")
        if not self.settings.base_url.startswith(("http://", "https://")):
            raise ConfigurationError("LLM API URL must start with http:// or https://")
        if not self.settings.api_key:
            raise ConfigurationError("Please configure the LLM API key")
        if not self.settings.model:
            raise ConfigurationError("Please configure the model name")

    def _extra_params(self) -> dict[str, Any]:
        """Provider keys from YAML that are passed through to the request body."""
        excluded = {"api_key_env", "provider"}
        extras = self.settings.model_extra or {}
        return {k: v for k, v in extras.items() if k not in excluded and v is not None}

    def _log_http_request(self, method: str, url: str, status_code: int, duration_ms: float) -> None:
        if should_log_feature("clients", "http_requests"):
            logger.info(f"HTTP {method} {url} | Status: {status_code} | Duration: {duration_ms:.2f}ms")

    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        """POST to the chat endpoint; non-success statuses raise TransportError."""
        start_time = time.monotonic()
        try:
            response = await self.client.post(self.endpoint_path, json=payload)
        except httpx.HTTPError as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e

        self._log_http_request("POST", self.endpoint_path, response.status_code, (time.monotonic() - start_time) * 1000)
        if response.status_code >= HTTP_BAD_REQUEST:
            raise TransportError(response.text[:1000], response.status_code)
        return response

    # ---- cancellation -----------------------------------------------------

    def set_cancellation_token(self, token: CancellationToken | None) -> None:
        """Associate the in-flight request with a turn's cancellation token."""
        self._cancellation_token = token

    def _is_cancelled(self) -> bool:
        return self._cancellation_token is not None and self._cancellation_token.cancelled

    # ---- driver contract --------------------------------------------------

    async def test_connection(self) -> ConnectionTestResult:
        """Validate configuration, then make a minimal one-token round trip."""
        try:
            self.validate_config()
        except ConfigurationError as e:
            return ConnectionTestResult(success=False, message=str(e))

        payload = {
            "model": self.settings.model,
            "max_tokens": 1,
            "messages": [{"role": "user", "content": "Hi"}],
        }
        log_directional_flow("→", "LLM", "testing connection to %s", self.settings.base_url)

        try:
            await self._post(payload)
        except TransportError as e:
            logger.error(f"{self.provider_label} connection test failed: {e}")
            return ConnectionTestResult(success=False, message=e.user_message, error=str(e))

        log_directional_flow("←", "LLM", "connection ok")
        return ConnectionTestResult(
            success=True,
            message=f"✓ {self.provider_label} API connected, model {self.settings.model} is available",
        )

    async def send_message(
        self,
        messages: Sequence[ChatCompletionMessage],
        tools: Sequence[ToolDefinition] | None = None,
    ) -> ChatResponse:
        """Single request/response round trip."""
        try:
            self.validate_config()
            payload = self._build_payload(messages, tools, stream=False)
            log_directional_flow("→", "LLM", "request (%d messages, %d tools)", len(messages), len(tools or []))
            response = await self._post(payload)
            result = self._parse_response(response.json())
        except ConfigurationError as e:
            return ChatResponse(success=False, error=str(e))
        except TransportError as e:
            logger.error(f"{self.provider_label} request failed: {e}")
            return ChatResponse(success=False, error=f"{e.user_message} ({e})")
        except (ProtocolError, ValueError) as e:
            logger.error(f"Unexpected {self.provider_label} response: {e}")
            return ChatResponse(success=False, error=f"Unexpected response format: {e}")

        log_directional_flow(
            "←",
            "LLM",
            "response received, stop_reason=%s, tool_calls=%d",
            result.stop_reason,
            len(result.tool_calls or []),
        )
        return result

    async def send_message_stream(
        self,
        messages: Sequence[ChatCompletionMessage],
        tools: Sequence[ToolDefinition] | None = None,
        on_chunk: ChunkCallback | None = None,
    ) -> ChatResponse:
        """
        Streaming round trip.

        on_chunk receives every StreamChunk in arrival order and may be a plain
        function or a coroutine function. Cancellation is polled after each
        fragment; partial text and completed tool calls are returned when set.
        """
        try:
            self.validate_config()
        except ConfigurationError as e:
            return ChatResponse(success=False, error=str(e))

        payload = self._build_payload(messages, tools, stream=True)
        parser = self._create_stream_parser()
        cancelled = False
        log_directional_flow("→", "LLM", "streaming request (%d messages, %d tools)", len(messages), len(tools or []))

        try:
            async with self.client.stream(
                "POST",
                self.endpoint_path,
                json=payload,
                headers={"Accept": "text/event-stream", "Accept-Encoding": "identity"},
            ) as response:
                if response.status_code != HTTP_OK:
                    error_text = await response.aread()
                    raise TransportError(error_text.decode("utf-8", errors="replace")[:1000], response.status_code)

                async for fragment in response.aiter_text():
                    for chunk in parser.feed(fragment):
                        if on_chunk is not None:
                            result = on_chunk(chunk)
                            if inspect.isawaitable(result):
                                await result
                    if self._is_cancelled():
                        cancelled = True
                        break
                    if parser.done:
                        break
        except TransportError as e:
            logger.error(f"{self.provider_label} streaming request failed: {e}")
            return ChatResponse(success=False, message=parser.text, error=f"{e.user_message} ({e})")
        except httpx.HTTPError as e:
            logger.error(f"HTTP error during streaming: {type(e).__name__}: {e}")
            return ChatResponse(success=False, message=parser.text, error=f"Connection failed ({e})")

        result = parser.finish(cancelled=cancelled)
        log_directional_flow(
            "←",
            "LLM",
            "streaming completed, stop_reason=%s, tool_calls=%d",
            result.stop_reason,
            len(result.tool_calls or []),
        )
        return result

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Async context manager exit."""
        await self.close()
