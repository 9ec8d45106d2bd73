#!/usr/bin/env python3
"""
Tests for module log levels and feature-gated log output.
"""

import logging

from graphchat.chat.logging_utils import log_llm_reply, log_tool_arguments, should_log_feature
from graphchat.main import configure_logging

LOGGING_CONFIG = {
    "level": "WARNING",
    "format": "%(name)s - %(levelname)s - %(message)s",
    "modules": {
        "chat": {"level": "DEBUG", "enable_features": {"llm_replies": True, "tool_results": False}},
        "clients": {"level": "ERROR", "enable_features": {"http_requests": True}},
        "tools": {"level": "INFO", "enable_features": {"tool_arguments": False}},
    },
}


def test_module_levels_apply_to_parent_loggers():
    configure_logging(LOGGING_CONFIG)

    assert logging.getLogger().level == logging.WARNING
    assert logging.getLogger("graphchat.chat").level == logging.DEBUG
    # Children inherit from their module group
    assert logging.getLogger("graphchat.clients.openai_driver").getEffectiveLevel() == logging.ERROR
    assert logging.getLogger("graphchat.tools.tool_executor").getEffectiveLevel() == logging.INFO


def test_feature_flags():
    configure_logging(LOGGING_CONFIG)

    assert should_log_feature("chat", "llm_replies")
    assert not should_log_feature("chat", "tool_results")
    assert should_log_feature("clients", "http_requests")
    assert not should_log_feature("clients", "stream_events")
    assert not should_log_feature("nonexistent", "anything")


def test_reconfiguration_replaces_flags():
    configure_logging(LOGGING_CONFIG)
    configure_logging({"level": "INFO", "modules": {"chat": {"enable_features": {"llm_replies": False}}}})

    assert not should_log_feature("chat", "llm_replies")
    assert not should_log_feature("clients", "http_requests")


def test_llm_reply_logging_is_gated(caplog):
    configure_logging(LOGGING_CONFIG)
    chat_conf = {"logging": {"llm_reply": 10}}

    with caplog.at_level(logging.INFO, logger="graphchat.chat"):
        log_llm_reply("A rather long reply that will be truncated", None, "streaming", chat_conf, "test-model")

    assert "A rather l..." in caplog.text
    assert "test-model" in caplog.text

    caplog.clear()
    configure_logging({"level": "INFO", "modules": {"chat": {"enable_features": {"llm_replies": False}}}})
    with caplog.at_level(logging.INFO, logger="graphchat.chat"):
        log_llm_reply("Hidden reply", None, "streaming", chat_conf)
    assert "Hidden reply" not in caplog.text


def test_tool_arguments_logging_is_gated(caplog):
    configure_logging(LOGGING_CONFIG)
    with caplog.at_level(logging.DEBUG):
        log_tool_arguments("web_search", {"query": "secret"}, "call 1/1", 500)
    assert "secret" not in caplog.text

    configure_logging({"level": "INFO", "modules": {"tools": {"enable_features": {"tool_arguments": True}}}})
    with caplog.at_level(logging.DEBUG):
        log_tool_arguments("web_search", {"query": "visible"}, "call 1/1", 500)
    assert "visible" in caplog.text


if __name__ == "__main__":
    test_module_levels_apply_to_parent_loggers()
    test_feature_flags()
    test_reconfiguration_replaces_flags()
    print("✅ All logging tests passed!")
