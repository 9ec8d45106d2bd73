"""
Chat Controller

Drives one user turn: stream the first reply, run any requested tools,
feed their results back with non-streaming requests and repeat until the
model answers without tool calls.

History is only mutated here and in ChatState. Cancellation is cooperative:
the turn's token is polled at every chunk, before each tool call and before
each follow-up request.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any, Protocol

from graphchat.chat.cancellation import CancellationToken
from graphchat.chat.chat_state import ChatState
from graphchat.chat.logging_utils import log_llm_reply
from graphchat.chat.models import (
    AssistantMessage,
    ChatResponse,
    StreamChunk,
    ToolCall,
    ToolDefinition,
    ToolExecutionResult,
    ToolMessage,
    UserMessage,
)
from graphchat.chat.response_filter import has_substantive_analysis, is_noise
from graphchat.clients.llm_driver_base import LLMDriver
from graphchat.tools.definitions import get_available_tools
from graphchat.tools.tool_executor import TOOL_CANCELLED, ToolExecutor

logger = logging.getLogger(__name__)

STOPPED_MARKER = "⏸ Generation stopped"
DEFAULT_MAX_TOOL_ROUNDS = 8


class ChatDisplay(Protocol):
    """Presentation boundary the controller reports to."""

    async def on_text(self, delta: str) -> None: ...

    async def on_message(self, content: str, metadata: dict[str, Any]) -> None: ...

    async def on_tool_status(self, result: ToolExecutionResult) -> None: ...

    async def on_notice(self, message: str) -> None: ...


class NullDisplay:
    """Display that drops everything; used when nothing is listening."""

    async def on_text(self, delta: str) -> None:
        pass

    async def on_message(self, content: str, metadata: dict[str, Any]) -> None:
        pass

    async def on_tool_status(self, result: ToolExecutionResult) -> None:
        pass

    async def on_notice(self, message: str) -> None:
        pass


class DisplayBuffer:
    """Text of the message currently being streamed, in arrival order."""

    def __init__(self) -> None:
        self._parts: list[str] = []

    def append(self, delta: str) -> None:
        self._parts.append(delta)

    @property
    def text(self) -> str:
        return "".join(self._parts)


class ChatController:
    """Turn lifecycle for one chat session."""

    def __init__(
        self,
        state: ChatState,
        driver: LLMDriver,
        tool_executor: ToolExecutor,
        display: ChatDisplay | None = None,
        chat_conf: dict[str, Any] | None = None,
        initial_web_search_enabled: bool = False,
    ) -> None:
        self.state = state
        self.driver = driver
        self.tool_executor = tool_executor
        self.display: ChatDisplay = display or NullDisplay()
        self.chat_conf = chat_conf or {}
        self.initial_web_search_enabled = initial_web_search_enabled

        self.max_tool_rounds = self.chat_conf.get("max_tool_rounds", DEFAULT_MAX_TOOL_ROUNDS)
        if not isinstance(self.max_tool_rounds, int) or self.max_tool_rounds < 1:
            raise ValueError("max_tool_rounds must be a positive integer")
        self.filter_intermediate = bool(self.chat_conf.get("filter_intermediate_replies", True))

    # ---- session actions --------------------------------------------------

    async def handle_send_or_stop(self, text: str) -> None:
        """A send while a turn is in flight is a stop request."""
        if self.state.is_generating:
            await self.stop()
        else:
            await self.send_message(text)

    async def stop(self) -> bool:
        if self.state.request_stop():
            await self.display.on_notice("Stopping...")
            return True
        return False

    async def new_chat(self) -> None:
        logger.info("Starting new chat")
        self.state.reset(self.initial_web_search_enabled)
        await self.display.on_notice("New chat created")

    async def toggle_web_search(self) -> bool:
        enabled = self.state.toggle_web_search()
        await self.display.on_notice(f"Web search {'enabled' if enabled else 'disabled'}")
        return enabled

    # ---- turn -------------------------------------------------------------

    def compose_user_message(self, text: str) -> str:
        """Prefix a hint about the attached document, if any."""
        document = self.state.context_document
        if document is None:
            return text
        return (
            f'[System note: the document "{document.name}" is attached to this chat; '
            f"use the read_doc tool to read its full content]\n\n{text}"
        )

    async def send_message(self, text: str) -> None:
        """Run one user turn to completion, cancellation or failure."""
        text = text.strip()
        if not text:
            await self.display.on_notice("Please enter a message")
            return
        if self.state.is_generating:
            await self.stop()
            return

        token = self.state.begin_generation()
        self.driver.set_cancellation_token(token)
        buffer = DisplayBuffer()
        logger.info("← Frontend: user message (%d chars), web search %s", len(text), self.state.web_search_enabled)

        try:
            await self._run_turn(text, token, buffer)
        except Exception as e:
            logger.exception("Unexpected error during chat turn")
            if token.cancelled:
                await self._finish_cancelled(buffer.text)
            else:
                await self._fail_turn(str(e) or type(e).__name__, buffer.text)
        finally:
            self.state.end_generation()
            self.driver.set_cancellation_token(None)

    async def _run_turn(self, text: str, token: CancellationToken, buffer: DisplayBuffer) -> None:
        self.state.add_message(UserMessage(content=self.compose_user_message(text)))
        tools = get_available_tools(self.state.web_search_enabled, self.state.has_context_document())
        logger.info("→ LLM: streaming turn with %d messages, %d tools", len(self.state.messages), len(tools))

        async def on_chunk(chunk: StreamChunk) -> None:
            if token.cancelled:
                return
            if chunk.type == "text" and chunk.content:
                buffer.append(chunk.content)
                await self.display.on_text(chunk.content)

        response = await self.driver.send_message_stream(self.state.get_messages(), tools, on_chunk)
        log_llm_reply(response.message, response.tool_calls, "streaming", self.chat_conf, self.driver.settings.model)

        if token.cancelled:
            await self._finish_cancelled(response.message or buffer.text)
            return

        if not response.success:
            await self._fail_turn(response.error or "Unknown error", response.message or buffer.text)
            return

        if response.has_tool_calls:
            await self._run_tool_rounds(response, tools, token)
            return

        await self._finish_with_answer(response.message or buffer.text, streamed=bool(buffer.text))

    async def _run_tool_rounds(
        self,
        response: ChatResponse,
        tools: Sequence[ToolDefinition],
        token: CancellationToken,
    ) -> None:
        """Execute tool calls and request follow-ups until a plain answer arrives."""
        rounds = 0
        current = response

        while current.tool_calls:
            if rounds >= self.max_tool_rounds:
                warning = (
                    f"⚠️ Reached maximum tool call limit ({self.max_tool_rounds}). "
                    "Stopping to prevent infinite recursion."
                )
                logger.warning("Maximum tool rounds (%d) reached, stopping", self.max_tool_rounds)
                self.state.add_message(AssistantMessage(content=warning))
                await self.display.on_message(warning, {"finish_reason": "tool_limit_reached"})
                return

            rounds += 1
            logger.info("Starting tool round %d with %d calls", rounds, len(current.tool_calls))
            results = await self._execute_tools(current.message, current.tool_calls, token)

            if token.cancelled:
                await self._finish_cancelled("")
                return

            logger.info("→ LLM: requesting follow-up response for round %d", rounds)
            current = await self.driver.send_message(self.state.get_messages(), tools)
            log_llm_reply(
                current.message, current.tool_calls, f"round {rounds}", self.chat_conf, self.driver.settings.model
            )

            if token.cancelled:
                await self._finish_cancelled(current.message if current.success else "")
                return

            if not current.success:
                error = current.error or "Unknown error"
                logger.error("Follow-up request after tool round %d failed: %s", rounds, error)
                await self.display.on_notice(f"AI reply failed: {error}")
                error_msg = f"Sorry, something went wrong while processing the tool results: {error}"
                self.state.add_message(AssistantMessage(content=error_msg))
                await self.display.on_message(error_msg, {"error": True})
                return

            if current.tool_calls and current.message.strip():
                if not self.filter_intermediate or not is_noise(current.message, results):
                    await self.display.on_message(
                        current.message,
                        {"intermediate": True, "analysis": has_substantive_analysis(current.message)},
                    )
                else:
                    logger.debug("Suppressed intermediate reply: %r", current.message[:80])

        await self._finish_with_answer(current.message, streamed=False)

    async def _execute_tools(
        self,
        content: str,
        calls: list[ToolCall],
        token: CancellationToken,
    ) -> list[ToolExecutionResult]:
        """Record the assistant's calls, run them and record one result per call."""
        self.state.add_message(AssistantMessage(content=content or None, tool_calls=calls))
        results = await self.tool_executor.execute_tool_calls(calls, token)

        for call, result in zip(calls, results, strict=True):
            self.state.add_message(
                ToolMessage(
                    content=self.format_tool_result(result),
                    tool_call_id=call.id,
                    tool_name=call.function.name,
                )
            )
            await self.display.on_tool_status(result)

        return results

    @staticmethod
    def format_tool_result(result: ToolExecutionResult) -> str:
        """Tool message content fed back to the model."""
        if result.success:
            payload: Any = result.result
            if payload is None:
                payload = {"status": "success", "message": result.display_text}
        elif result.error == TOOL_CANCELLED:
            payload = {
                "status": "cancelled",
                "message": f"Tool {result.tool_name} was not run because the user stopped generation",
            }
        else:
            payload = {
                "status": "error",
                "error": result.error,
                "message": f"Tool {result.tool_name} failed: {result.error}",
            }
        return json.dumps(payload, ensure_ascii=False, default=str)

    # ---- terminal states --------------------------------------------------

    async def _finish_with_answer(self, content: str, streamed: bool) -> None:
        if not content.strip():
            logger.warning("Model returned an empty reply")
            await self.display.on_notice("The model returned an empty reply")
            return

        self.state.add_message(AssistantMessage(content=content))
        await self.display.on_message(content, {"final": True, "streamed": streamed})
        logger.info("← LLM: final reply stored, history length %d", len(self.state.messages))

    async def _finish_cancelled(self, partial_text: str) -> None:
        """Keep what was produced; the stopped marker is display-only."""
        logger.info("Generation stopped by user")
        if partial_text.strip():
            self.state.add_message(AssistantMessage(content=partial_text))
        await self.display.on_message(STOPPED_MARKER, {"stopped": True})

    async def _fail_turn(self, error: str, partial_text: str) -> None:
        """
        Report a failed turn.

        Without any output the pending user message is rolled back so the
        user can retry cleanly. With partial output it is kept and an
        explanation is appended.
        """
        logger.error("Chat turn failed: %s", error)
        await self.display.on_notice(f"AI reply failed: {error}")

        if partial_text.strip():
            explanation = f"Sorry, the reply was interrupted: {error}"
            self.state.add_message(AssistantMessage(content=partial_text))
            self.state.add_message(AssistantMessage(content=explanation))
            await self.display.on_message(explanation, {"error": True})
            return

        last = self.state.messages[-1] if self.state.messages else None
        if isinstance(last, UserMessage):
            self.state.remove_last_message()
        await self.display.on_message(f"Sorry, I ran into a problem: {error}", {"error": True})
