"""Anthropic Messages protocol driver."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any

from graphchat.chat.models import (
    AssistantMessage,
    ChatCompletionMessage,
    ChatResponse,
    FunctionCall,
    ModelListResult,
    SystemMessage,
    ToolCall,
    ToolDefinition,
    ToolMessage,
    UserMessage,
)
from graphchat.clients.llm_driver_base import LLMDriver
from graphchat.clients.stream_parser import AnthropicStreamParser
from graphchat.errors import ProtocolError

logger = logging.getLogger(__name__)

# The Messages API has no model listing for every account tier, so the
# selectable models are a curated list.
ANTHROPIC_MODELS = [
    "claude-opus-4-1",
    "claude-opus-4-0",
    "claude-sonnet-4-5",
    "claude-sonnet-4-0",
    "claude-3-7-sonnet-latest",
    "claude-3-5-haiku-latest",
]


class AnthropicDriver(LLMDriver):
    """Driver for POST {base}/v1/messages."""

    provider_label = "Anthropic"

    @property
    def endpoint_path(self) -> str:
        if self.settings.base_url.rstrip("/").endswith("/v1"):
            return "/messages"
        return "/v1/messages"

    def _build_headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.settings.api_key,
            "anthropic-version": self.settings.anthropic_version,
        }

    @staticmethod
    def convert_tools(tools: Sequence[ToolDefinition]) -> list[dict[str, Any]]:
        """Reshape canonical definitions; the name moves to the top level."""
        return [
            {
                "name": tool.function.name,
                "description": tool.function.description,
                "input_schema": tool.function.parameters.model_dump(),
            }
            for tool in tools
        ]

    @staticmethod
    def _parse_input(tool_call: ToolCall) -> Any:
        try:
            return json.loads(tool_call.function.arguments or "{}")
        except json.JSONDecodeError:
            logger.warning("Sending empty input for tool call %s with malformed arguments", tool_call.id)
            return {}

    def convert_messages(self, messages: Sequence[ChatCompletionMessage]) -> tuple[str, list[dict[str, Any]]]:
        """Split out the system prompt and translate the rest to content blocks.

        Consecutive tool results are grouped into one user message so that
        every tool_use block is answered in the very next turn.
        """
        system_parts = [self.settings.system_rules] if self.settings.system_rules else []
        converted: list[dict[str, Any]] = []

        for message in messages:
            if isinstance(message, SystemMessage):
                system_parts.append(message.content)
            elif isinstance(message, UserMessage):
                converted.append({"role": "user", "content": message.content})
            elif isinstance(message, AssistantMessage):
                if message.tool_calls:
                    blocks: list[dict[str, Any]] = []
                    if message.content:
                        blocks.append({"type": "text", "text": message.content})
                    for tool_call in message.tool_calls:
                        blocks.append(
                            {
                                "type": "tool_use",
                                "id": tool_call.id,
                                "name": tool_call.function.name,
                                "input": self._parse_input(tool_call),
                            }
                        )
                    converted.append({"role": "assistant", "content": blocks})
                elif message.content:
                    converted.append({"role": "assistant", "content": message.content})
            elif isinstance(message, ToolMessage):
                block = {
                    "type": "tool_result",
                    "tool_use_id": message.tool_call_id,
                    "content": message.content,
                }
                previous = converted[-1] if converted else None
                if (
                    previous is not None
                    and previous["role"] == "user"
                    and isinstance(previous["content"], list)
                    and all(b.get("type") == "tool_result" for b in previous["content"])
                ):
                    previous["content"].append(block)
                else:
                    converted.append({"role": "user", "content": [block]})

        return "\n\n".join(p for p in system_parts if p), converted

    def _build_payload(
        self,
        messages: Sequence[ChatCompletionMessage],
        tools: Sequence[ToolDefinition] | None,
        stream: bool,
    ) -> dict[str, Any]:
        system, converted = self.convert_messages(messages)
        payload: dict[str, Any] = {
            "model": self.settings.model,
            "max_tokens": self.settings.max_tokens,
            "messages": converted,
        }
        if system:
            payload["system"] = system
        if tools:
            payload["tools"] = self.convert_tools(tools)
        if self.settings.temperature is not None:
            payload["temperature"] = self.settings.temperature
        if stream:
            payload["stream"] = True

        payload.update(self._extra_params())
        return payload

    def _parse_response(self, data: dict[str, Any]) -> ChatResponse:
        content = data.get("content")
        if not isinstance(content, list):
            raise ProtocolError("No content blocks in API response")

        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        for block in content:
            if block.get("type") == "text":
                text_parts.append(block.get("text", ""))
            elif block.get("type") == "tool_use":
                try:
                    call = ToolCall(
                        id=block["id"],
                        function=FunctionCall(
                            name=block["name"],
                            arguments=json.dumps(block.get("input") or {}),
                        ),
                    )
                except KeyError as e:
                    raise ProtocolError(f"Missing field {e} in tool_use block") from e
                tool_calls.append(call)

        return ChatResponse(
            success=True,
            message="".join(text_parts),
            tool_calls=tool_calls or None,
            stop_reason=data.get("stop_reason"),
        )

    def _create_stream_parser(self) -> AnthropicStreamParser:
        return AnthropicStreamParser()

    async def fetch_models_list(self) -> ModelListResult:
        """Curated static list; never mixed with live data."""
        return ModelListResult(success=True, models=list(ANTHROPIC_MODELS), source="static")
