"""OpenAI Chat Completions protocol driver (also OpenRouter and compatible APIs)."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import httpx

from graphchat.chat.models import (
    AssistantMessage,
    ChatCompletionMessage,
    ChatResponse,
    ModelListResult,
    ToolDefinition,
    ToolMessage,
)
from graphchat.clients.llm_driver_base import HTTP_BAD_REQUEST, LLMDriver
from graphchat.clients.stream_parser import OpenAIStreamParser
from graphchat.errors import ProtocolError, TransportError

logger = logging.getLogger(__name__)


class OpenAIDriver(LLMDriver):
    """Driver for POST {base}/chat/completions."""

    provider_label = "OpenAI"

    @property
    def endpoint_path(self) -> str:
        return "/chat/completions"

    def _build_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.settings.api_key}"}

    def convert_messages(self, messages: Sequence[ChatCompletionMessage]) -> list[dict[str, Any]]:
        """Messages map 1:1 by role; the configured rules lead as a system message."""
        converted: list[dict[str, Any]] = []
        if self.settings.system_rules:
            converted.append({"role": "system", "content": self.settings.system_rules})

        for message in messages:
            if isinstance(message, AssistantMessage):
                converted.append(message.to_dict())
            elif isinstance(message, ToolMessage):
                converted.append(
                    {
                        "role": "tool",
                        "tool_call_id": message.tool_call_id,
                        "content": message.content,
                    }
                )
            else:
                converted.append(message.model_dump())
        return converted

    def _build_payload(
        self,
        messages: Sequence[ChatCompletionMessage],
        tools: Sequence[ToolDefinition] | None,
        stream: bool,
    ) -> dict[str, Any]:
        """
        Build API payload, passing through any extra provider parameters.
        Tool definitions are already in this protocol's shape.
        """
        payload: dict[str, Any] = {
            "model": self.settings.model,
            "max_tokens": self.settings.max_tokens,
            "messages": self.convert_messages(messages),
        }
        if tools:
            payload["tools"] = [tool.model_dump(exclude_none=True) for tool in tools]
            payload["tool_choice"] = "auto"
        if self.settings.temperature is not None:
            payload["temperature"] = self.settings.temperature
        if stream:
            payload["stream"] = True

        payload.update(self._extra_params())
        return payload

    def _parse_response(self, data: dict[str, Any]) -> ChatResponse:
        if not data.get("choices"):
            raise ProtocolError("No choices in API response")

        choice = data["choices"][0]
        try:
            message = AssistantMessage.from_dict(choice["message"])
        except KeyError as e:
            raise ProtocolError(f"Missing field {e} in API response") from e

        return ChatResponse(
            success=True,
            message=message.content or "",
            tool_calls=message.tool_calls,
            stop_reason=choice.get("finish_reason"),
        )

    def _create_stream_parser(self) -> OpenAIStreamParser:
        return OpenAIStreamParser()

    async def fetch_models_list(self) -> ModelListResult:
        """GET {base}/models."""
        if not self.settings.base_url or not self.settings.api_key:
            return ModelListResult(success=False, error="Please configure the LLM API URL and key")

        try:
            response = await self.client.get("/models")
        except httpx.HTTPError as e:
            return ModelListResult(success=False, error=f"Connection failed ({e})")

        if response.status_code >= HTTP_BAD_REQUEST:
            error = TransportError(response.text[:1000], response.status_code)
            return ModelListResult(success=False, error=f"{error.user_message} ({error})")

        try:
            entries = response.json().get("data", [])
        except ValueError as e:
            return ModelListResult(success=False, error=f"Unexpected response format: {e}")

        models = sorted(entry["id"] for entry in entries if isinstance(entry, dict) and entry.get("id"))
        logger.info("← LLM: %d models available", len(models))
        return ModelListResult(success=True, models=models, source="live")

