"""
Chat State

Session-scoped state for one chat: ordered history, generation flag,
cancellation token and the auxiliary session fields.
"""

from __future__ import annotations

import logging

from graphchat.chat.cancellation import CancellationToken
from graphchat.chat.models import ChatCompletionMessage, ContextDocument

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New chat"


class ChatState:
    """History and flags for a single chat session.

    Created when a session starts, reset on "new chat" and discarded when the
    session closes. Only the controller and the session surface mutate it.
    """

    def __init__(self, web_search_enabled: bool = False) -> None:
        self.messages: list[ChatCompletionMessage] = []
        self.title = DEFAULT_TITLE
        self.is_generating = False
        self.cancellation_token: CancellationToken | None = None
        self.web_search_enabled = web_search_enabled
        self.context_document: ContextDocument | None = None

    # ---- history ----------------------------------------------------------

    def add_message(self, message: ChatCompletionMessage) -> None:
        self.messages.append(message)

    def remove_last_message(self) -> ChatCompletionMessage | None:
        if not self.messages:
            return None
        return self.messages.pop()

    def get_messages(self) -> list[ChatCompletionMessage]:
        """Snapshot of the history; callers may not mutate the session through it."""
        return list(self.messages)

    def clear_messages(self) -> None:
        self.messages.clear()

    # ---- session fields ---------------------------------------------------

    def set_title(self, title: str) -> None:
        self.title = title

    def toggle_web_search(self) -> bool:
        self.web_search_enabled = not self.web_search_enabled
        return self.web_search_enabled

    def set_context_document(self, document: ContextDocument | None) -> None:
        self.context_document = document

    def has_context_document(self) -> bool:
        return self.context_document is not None

    # ---- generation lifecycle ---------------------------------------------

    def begin_generation(self) -> CancellationToken:
        """Mark a turn as in flight and hand out its cancellation token."""
        if self.is_generating:
            raise RuntimeError("A generation is already in progress")
        self.is_generating = True
        self.cancellation_token = CancellationToken()
        return self.cancellation_token

    def end_generation(self) -> None:
        self.is_generating = False
        self.cancellation_token = None

    def request_stop(self) -> bool:
        """Cancel the in-flight turn, if any.

        Returns:
            True if a running turn was signalled.
        """
        if not self.is_generating or self.cancellation_token is None:
            return False
        self.cancellation_token.cancel()
        logger.info("Stop requested for current generation")
        return True

    def reset(self, web_search_enabled: bool = False) -> None:
        """Start a new chat: cancel any turn and clear history and flags."""
        self.request_stop()
        self.clear_messages()
        self.title = DEFAULT_TITLE
        self.is_generating = False
        self.cancellation_token = None
        self.web_search_enabled = web_search_enabled
        self.context_document = None
