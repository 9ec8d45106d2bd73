"""
Chat Data Models

Provider-neutral message types, tool definitions, driver results and the
presentation events sent to connected clients. All strongly typed with
Pydantic so both wire protocols can be translated from one shape.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

# ==============================================================================
# CORE CHAT MESSAGES
# ==============================================================================


class SystemMessage(BaseModel):
    """System message for setting context."""

    role: Literal["system"] = "system"
    content: str


class UserMessage(BaseModel):
    """User message."""

    role: Literal["user"] = "user"
    content: str


class FunctionCall(BaseModel):
    """Function call within a tool call."""

    name: str
    arguments: str = Field(default="{}")  # JSON string


class ToolCall(BaseModel):
    """Tool call requested by the model."""

    id: str
    type: Literal["function"] = "function"
    function: FunctionCall

    @property
    def name(self) -> str:
        return self.function.name


class AssistantMessage(BaseModel):
    """Assistant message with optional tool calls."""

    role: Literal["assistant"] = "assistant"
    content: str | None = None
    tool_calls: list[ToolCall] | None = None

    @field_validator("tool_calls")
    @classmethod
    def validate_tool_calls(cls, v: list[ToolCall] | None) -> list[ToolCall] | None:
        """Convert empty tool_calls list to None to avoid API errors."""
        if v is not None and len(v) == 0:
            return None
        return v

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AssistantMessage:
        """Create AssistantMessage from an OpenAI-style message dict."""
        tool_calls = None
        if data.get("tool_calls"):
            tool_calls = [
                ToolCall(
                    id=tc["id"],
                    type=tc.get("type", "function"),
                    function=FunctionCall(
                        name=tc["function"]["name"],
                        arguments=tc["function"].get("arguments") or "{}",
                    ),
                )
                for tc in data["tool_calls"]
            ]

        return cls(
            content=data.get("content"),
            tool_calls=tool_calls,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the OpenAI-style message dict."""
        result: dict[str, Any] = {
            "role": self.role,
            "content": self.content,
        }
        if self.tool_calls:
            result["tool_calls"] = [tc.model_dump() for tc in self.tool_calls]
        return result


class ToolMessage(BaseModel):
    """Tool result message."""

    role: Literal["tool"] = "tool"
    content: str
    tool_call_id: str
    tool_name: str = ""


# Union of all message types for conversation
ChatCompletionMessage = SystemMessage | UserMessage | AssistantMessage | ToolMessage


# ==============================================================================
# TOOL DEFINITIONS AND SCHEMAS
# ==============================================================================


class ToolFunctionParameters(BaseModel):
    """Function parameters schema for tools."""

    type: Literal["object"] = "object"
    properties: dict[str, Any] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)


class ToolFunctionDefinition(BaseModel):
    """Tool function definition."""

    name: str
    description: str
    parameters: ToolFunctionParameters = Field(default_factory=ToolFunctionParameters)


class ToolDefinition(BaseModel):
    """Canonical tool definition in the OpenAI function format."""

    type: Literal["function"] = "function"
    function: ToolFunctionDefinition

    @property
    def name(self) -> str:
        return self.function.name


class ToolExecutionResult(BaseModel):
    """Uniform envelope returned for every tool invocation."""

    success: bool
    tool_name: str
    result: Any = None
    error: str | None = None
    display_text: str = ""


# ==============================================================================
# DRIVER RESULTS
# ==============================================================================


class ChatResponse(BaseModel):
    """Outcome of a single driver call, streaming or not."""

    success: bool
    message: str = ""
    tool_calls: list[ToolCall] | None = None
    error: str | None = None
    stop_reason: str | None = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


class StreamChunk(BaseModel):
    """Normalized piece of a streamed response."""

    type: Literal["text", "tool_use", "error"]
    content: str = ""
    tool_call: ToolCall | None = None
    error: str | None = None


class ConnectionTestResult(BaseModel):
    """Result of a driver connection test."""

    success: bool
    message: str
    error: str | None = None


class ModelListResult(BaseModel):
    """Available model identifiers and where they came from."""

    success: bool
    models: list[str] = Field(default_factory=list)
    source: Literal["live", "static"] = "live"
    error: str | None = None


# ==============================================================================
# SESSION MODELS
# ==============================================================================


class ContextDocument(BaseModel):
    """Document attached to a chat for the read_doc tool."""

    name: str
    content: str


class ChatMessage(BaseModel):
    """
    Presentation event sent to connected clients.
    Different from ChatCompletionMessage which is for the LLM API.
    """

    type: str
    content: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
