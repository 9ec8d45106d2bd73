#!/usr/bin/env python3
"""
Tests for session state and the generation lifecycle.
"""

import pytest

from graphchat.chat.chat_state import DEFAULT_TITLE, ChatState
from graphchat.chat.models import AssistantMessage, ContextDocument, UserMessage


def test_messages_are_snapshotted():
    state = ChatState()
    state.add_message(UserMessage(content="one"))

    snapshot = state.get_messages()
    state.add_message(AssistantMessage(content="two"))

    assert len(snapshot) == 1
    assert len(state.get_messages()) == 2
    assert state.remove_last_message().content == "two"
    assert [m.content for m in state.messages] == ["one"]


def test_generation_lifecycle():
    state = ChatState()
    assert not state.request_stop()

    token = state.begin_generation()
    assert state.is_generating
    with pytest.raises(RuntimeError):
        state.begin_generation()

    assert state.request_stop()
    assert token.cancelled

    state.end_generation()
    assert not state.is_generating
    assert state.cancellation_token is None


def test_each_turn_gets_a_fresh_token():
    state = ChatState()
    first = state.begin_generation()
    state.request_stop()
    state.end_generation()

    second = state.begin_generation()
    assert first.cancelled
    assert not second.cancelled


def test_session_flags():
    state = ChatState(web_search_enabled=False)
    assert state.toggle_web_search() is True
    assert state.toggle_web_search() is False

    assert not state.has_context_document()
    state.set_context_document(ContextDocument(name="a.md", content="text"))
    assert state.has_context_document()
    state.set_context_document(None)
    assert not state.has_context_document()


def test_reset_cancels_and_clears():
    state = ChatState()
    state.add_message(UserMessage(content="hello"))
    state.set_title("Custom")
    token = state.begin_generation()

    state.reset(web_search_enabled=True)

    assert token.cancelled
    assert state.messages == []
    assert state.title == DEFAULT_TITLE
    assert not state.is_generating
    assert state.web_search_enabled


if __name__ == "__main__":
    test_messages_are_snapshotted()
    test_generation_lifecycle()
    test_each_turn_gets_a_fresh_token()
    test_session_flags()
    test_reset_cancels_and_clears()
    print("✅ All chat state tests passed!")
