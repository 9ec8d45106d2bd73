"""
Error taxonomy for the chat core.

Configuration and transport failures abort a turn; protocol and tool failures
are logged and absorbed where they happen. Cancellation is a normal terminal
state and is never raised.
"""

from __future__ import annotations

HTTP_UNAUTHORIZED = 401
HTTP_NOT_FOUND = 404
HTTP_TOO_MANY_REQUESTS = 429
HTTP_SERVER_ERROR = 500


class ChatError(Exception):
    """Base class for all chat core errors."""


class ConfigurationError(ChatError):
    """Missing or invalid local configuration (endpoint, key, model)."""


class TransportError(ChatError):
    """Non-success HTTP status or network failure."""

    def __init__(self, detail: str, status_code: int | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code

    @property
    def user_message(self) -> str:
        """Short, user-facing explanation based on the status code."""
        return classify_status(self.status_code)

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"HTTP {self.status_code}: {self.detail}"
        return self.detail


class ProtocolError(ChatError):
    """Unparseable stream frame or tool call arguments."""


class ToolExecutionError(ChatError):
    """A tool collaborator failed or is unavailable."""


def classify_status(status_code: int | None) -> str:
    """Map an HTTP status code to a user-facing message."""
    if status_code == HTTP_UNAUTHORIZED:
        return "Invalid or unauthorized API key"
    if status_code == HTTP_NOT_FOUND:
        return "Model not found or wrong API URL"
    if status_code == HTTP_TOO_MANY_REQUESTS:
        return "API rate limit exceeded"
    if status_code is not None and status_code >= HTTP_SERVER_ERROR:
        return "API server error"
    return "Connection failed"
