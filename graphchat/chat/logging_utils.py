"""
Chat Logging Utilities

Shared logging helpers with per-module feature flags. Feature flags are
installed by graphchat.main.configure_logging.
"""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)


def should_log_feature(module: str, feature: str) -> bool:
    """
    Check if a specific logging feature should be enabled.

    Uses cached feature flags for better performance during runtime.
    """
    if hasattr(logging, "_module_features"):
        module_features = getattr(logging, "_module_features", {}).get(module, {})
        return module_features.get(feature, False)
    return False


def _truncate(text: str, limit: int) -> str:
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def log_llm_reply(
    content: str,
    tool_calls: list[Any] | None,
    context: str,
    chat_conf: dict[str, Any],
    model: str = "unknown",
) -> None:
    """
    LLM reply logging with feature control and configuration-based truncation.

    Args:
        content: Text of the reply
        tool_calls: Tool calls carried by the reply, if any
        context: Descriptive context for the log entry
        chat_conf: Chat service configuration containing logging settings
        model: Model that produced the reply
    """
    if not should_log_feature("chat", "llm_replies"):
        return

    truncate_length = chat_conf.get("logging", {}).get("llm_reply", 500)
    log_parts = [f"LLM Reply ({context}):"]

    if content:
        log_parts.append(f"Content: {_truncate(content, truncate_length)}")

    if tool_calls:
        log_parts.append(f"Tool calls: {len(tool_calls)}")
        for i, call in enumerate(tool_calls):
            log_parts.append(f"  [{i}] {call.function.name}")

    log_parts.append(f"Model: {model}")

    logger.info(" | ".join(log_parts))


def log_tool_execution_start(tool_name: str, call_index: int = 0, total_calls: int = 1) -> None:
    """
    Log the start of tool execution with consistent formatting.

    Args:
        tool_name: Name of the tool being executed
        call_index: Index of current call (0-based, used for batch execution)
        total_calls: Total number of calls in batch
    """
    if total_calls > 1:
        logger.info(
            "→ TOOL[%s]: executing tool call %d/%d",
            tool_name,
            call_index + 1,
            total_calls,
        )
    else:
        logger.info("→ TOOL[%s]: executing tool", tool_name)


def log_tool_execution_success(tool_name: str, display_text: str) -> None:
    """Log successful tool execution with its summary."""
    logger.info("← TOOL[%s]: success: %s", tool_name, display_text)


def log_tool_execution_error(tool_name: str, error_msg: str) -> None:
    """
    Log tool execution error with consistent formatting.

    Args:
        tool_name: Name of the tool that failed
        error_msg: Error message describing the failure
    """
    logger.error("← TOOL[%s]: failed with error: %s", tool_name, error_msg)


def log_tool_args_error(tool_name: str, error: Exception) -> None:
    """Log malformed tool arguments."""
    logger.error("Malformed JSON arguments for %s: %s", tool_name, error)


def log_directional_flow(direction: str, component: str, message: str, *args: Any) -> None:
    """
    Log directional flow messages with consistent arrow formatting.

    Args:
        direction: Either "→" (outgoing) or "←" (incoming/completed)
        component: Component name (e.g., "LLM", "TOOL", "Frontend")
        message: Message template with optional format placeholders
        *args: Arguments for message formatting
    """
    formatted_msg = message % args if args else message
    logger.info(f"{direction} {component}: {formatted_msg}")


def log_tool_arguments(tool_name: str, arguments: dict[str, Any], context: str, truncate_length: int = 500) -> None:
    """
    Log tool arguments before dispatching to a collaborator.

    Args:
        tool_name: Name of the tool being called
        arguments: Arguments dictionary being sent to the tool
        context: Descriptive context for the log entry
        truncate_length: Maximum length for argument logging
    """
    if not should_log_feature("tools", "tool_arguments"):
        logger.debug(f"Tool arguments logging disabled for {tool_name}")
        return

    logger.info(f"→ TOOL[{tool_name}]: arguments ({context}): {_truncate(str(arguments), truncate_length)}")


def log_tool_results(tool_name: str, results: Any, context: str, truncate_length: int = 200) -> None:
    """Log tool results returned by a collaborator."""
    if not should_log_feature("tools", "tool_results"):
        return

    logger.info(f"← TOOL[{tool_name}]: results ({context}): {_truncate(str(results), truncate_length)}")
