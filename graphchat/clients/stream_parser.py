"""
Incremental SSE Stream Parsing

Turns raw text fragments from a streaming HTTP response into normalized
StreamChunks and, at termination, one ChatResponse.

Fragments arrive at arbitrary split points, so complete lines are assembled
in a carry-over buffer before any JSON is parsed. Frames that fail to parse
are logged and skipped; a tool call whose accumulated arguments never become
valid JSON is dropped at termination.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any

from graphchat.chat.logging_utils import should_log_feature
from graphchat.chat.models import ChatResponse, FunctionCall, StreamChunk, ToolCall
from graphchat.errors import ProtocolError

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


class SSELineBuffer:
    """Carry-over buffer that yields only complete lines."""

    def __init__(self) -> None:
        self._pending = ""

    def feed(self, fragment: str) -> list[str]:
        self._pending += fragment
        *lines, self._pending = self._pending.split("\n")
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> str:
        """Return the held-back partial line and empty the buffer."""
        remainder, self._pending = self._pending.rstrip("\r"), ""
        return remainder


class StreamParser(ABC):
    """Protocol-independent parser state.

    Subclasses implement _handle_event for one wire protocol. Tool call slots
    are dicts shaped like OpenAI tool calls plus a "complete" marker.
    """

    def __init__(self) -> None:
        self._lines = SSELineBuffer()
        self._text_parts: list[str] = []
        self._tool_calls: list[dict[str, Any]] = []
        self.stop_reason: str | None = None
        self.error: str | None = None
        self.done = False
        # Set once a completion signal is seen; later frames emit nothing
        self._stopped = False

    @property
    def text(self) -> str:
        return "".join(self._text_parts)

    def feed(self, fragment: str) -> list[StreamChunk]:
        """Consume one raw fragment and return the chunks it completed."""
        chunks: list[StreamChunk] = []
        for line in self._lines.feed(fragment):
            chunks.extend(self._process_line(line))
        return chunks

    def _process_line(self, line: str) -> list[StreamChunk]:
        if self.done or not line.startswith(DATA_PREFIX):
            return []

        data = line[len(DATA_PREFIX) :].strip()
        if not data:
            return []
        if data == DONE_SENTINEL:
            self.done = True
            return []

        try:
            event = json.loads(data)
        except json.JSONDecodeError as e:
            logger.warning("Skipping unparseable stream frame: %s (%s)", data[:200], e)
            return []

        if not isinstance(event, dict):
            logger.warning("Skipping non-object stream frame: %s", data[:200])
            return []

        if should_log_feature("clients", "stream_events"):
            logger.debug("← LLM: stream event %s", event.get("type") or "chunk")

        return self._handle_event(event)

    @abstractmethod
    def _handle_event(self, event: dict[str, Any]) -> list[StreamChunk]:
        """Translate one decoded frame into chunks."""

    # ---- shared helpers ---------------------------------------------------

    def _emit_text(self, text: str) -> list[StreamChunk]:
        if not text or self._stopped:
            return []
        self._text_parts.append(text)
        return [StreamChunk(type="text", content=text)]

    def _emit_error(self, message: str) -> list[StreamChunk]:
        self.error = message
        logger.error("← LLM: stream error: %s", message)
        return [StreamChunk(type="error", error=message)]

    def _new_slot(self, call_id: str | None = None, name: str | None = None) -> dict[str, Any]:
        slot: dict[str, Any] = {
            "id": call_id,
            "type": "function",
            "function": {"name": name, "arguments": ""},
            "complete": False,
        }
        self._tool_calls.append(slot)
        return slot

    def _complete_slot(self, slot: dict[str, Any]) -> list[StreamChunk]:
        if slot["complete"]:
            return []
        slot["complete"] = True
        tool_call = self._to_tool_call(slot)
        if tool_call is None:
            return []
        return [StreamChunk(type="tool_use", tool_call=tool_call)]

    @staticmethod
    def _to_tool_call(slot: dict[str, Any]) -> ToolCall | None:
        name = slot["function"]["name"]
        if not slot["id"] or not name:
            return None
        return ToolCall(
            id=slot["id"],
            function=FunctionCall(name=name, arguments=slot["function"]["arguments"] or "{}"),
        )

    def _finalize_tool_calls(self, cancelled: bool) -> list[ToolCall]:
        finalized: list[ToolCall] = []
        for slot in self._tool_calls:
            if cancelled and not slot["complete"]:
                continue

            tool_call = self._to_tool_call(slot)
            if tool_call is None:
                logger.warning("Dropping tool call without id or name: %s", slot)
                continue

            try:
                _validate_arguments(tool_call)
            except ProtocolError as e:
                logger.warning("Dropping tool call %s: %s", tool_call.function.name, e)
                continue

            finalized.append(tool_call)
        return finalized

    def finish(self, cancelled: bool = False) -> ChatResponse:
        """Terminate the stream and collapse it into one ChatResponse.

        On cancellation the held-back partial line is discarded and only
        completed tool calls are kept.
        """
        if not cancelled:
            remainder = self._lines.flush()
            if remainder:
                self._process_line(remainder)

        tool_calls = self._finalize_tool_calls(cancelled)
        stop_reason = "cancelled" if cancelled else self.stop_reason

        return ChatResponse(
            success=self.error is None,
            message=self.text,
            tool_calls=tool_calls or None,
            error=self.error,
            stop_reason=stop_reason,
        )


def _validate_arguments(tool_call: ToolCall) -> None:
    try:
        json.loads(tool_call.function.arguments)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"arguments are not valid JSON: {e}") from e


class AnthropicStreamParser(StreamParser):
    """Anthropic Messages streaming events."""

    def __init__(self) -> None:
        super().__init__()
        self._slots_by_index: dict[int, dict[str, Any]] = {}

    def _handle_event(self, event: dict[str, Any]) -> list[StreamChunk]:
        event_type = event.get("type")

        if event_type == "content_block_start":
            block = event.get("content_block") or {}
            if block.get("type") == "tool_use":
                slot = self._new_slot(block.get("id"), block.get("name"))
                self._slots_by_index[event.get("index", len(self._slots_by_index))] = slot
                return []
            if block.get("type") == "text":
                return self._emit_text(block.get("text", ""))
            return []

        if event_type == "content_block_delta":
            delta = event.get("delta") or {}
            if delta.get("type") == "text_delta":
                return self._emit_text(delta.get("text", ""))
            if delta.get("type") == "input_json_delta":
                slot = self._slots_by_index.get(event.get("index", -1))
                if slot is None and self._tool_calls:
                    slot = self._tool_calls[-1]
                if slot is not None:
                    slot["function"]["arguments"] += delta.get("partial_json", "")
            return []

        if event_type == "content_block_stop":
            slot = self._slots_by_index.get(event.get("index", -1))
            if slot is not None:
                return self._complete_slot(slot)
            return []

        if event_type == "message_delta":
            stop_reason = (event.get("delta") or {}).get("stop_reason")
            if stop_reason:
                self.stop_reason = stop_reason
                self._stopped = True
            return []

        if event_type == "message_stop":
            self.done = True
            return []

        if event_type == "error":
            error = event.get("error") or {}
            return self._emit_error(error.get("message") or str(error))

        # message_start, ping and unknown event types carry nothing we need
        return []


class OpenAIStreamParser(StreamParser):
    """OpenAI Chat Completions streaming chunks."""

    def _handle_event(self, event: dict[str, Any]) -> list[StreamChunk]:
        if "error" in event:
            error = event["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            return self._emit_error(message or "Unknown streaming error")

        choices = event.get("choices") or []
        if not choices:
            return []

        choice = choices[0]
        delta = choice.get("delta") or {}
        chunks: list[StreamChunk] = []

        if delta.get("content"):
            chunks.extend(self._emit_text(delta["content"]))

        for tool_call_delta in delta.get("tool_calls") or []:
            self._accumulate_tool_call_delta(tool_call_delta)

        if choice.get("finish_reason"):
            self.stop_reason = choice["finish_reason"]
            for slot in self._tool_calls:
                chunks.extend(self._complete_slot(slot))
            self._stopped = True

        return chunks

    def _accumulate_tool_call_delta(self, delta: dict[str, Any]) -> None:
        """
        Accumulate a tool call delta into the slot at its index.

        Each delta may carry part of the id, name or arguments; arguments are
        concatenated in arrival order.
        """
        index = delta.get("index", len(self._tool_calls))

        while len(self._tool_calls) <= index:
            self._new_slot()

        current_call = self._tool_calls[index]

        if delta.get("id"):
            current_call["id"] = delta["id"]

        function_delta = delta.get("function") or {}
        if function_delta.get("name"):
            current_call["function"]["name"] = function_delta["name"]
        if function_delta.get("arguments"):
            current_call["function"]["arguments"] += function_delta["arguments"]
