#!/usr/bin/env python3
"""
Tests for the intermediate reply noise filter.
"""

from graphchat.chat.models import ToolExecutionResult
from graphchat.chat.response_filter import has_substantive_analysis, is_noise


def _result(name: str, display_text: str = "", result=None) -> ToolExecutionResult:
    return ToolExecutionResult(success=True, tool_name=name, display_text=display_text, result=result)


def test_empty_and_acknowledgements_are_noise():
    for message in ["", "   ", None, "OK", "Okay.", "好的", "收到！", "Let me search.", "正在调用工具", "Searching now..."]:
        assert is_noise(message), message


def test_short_text_without_signal_is_noise():
    assert is_noise("Hmm")
    # Digits, links and code keep short text
    assert not is_noise("42")
    assert not is_noise("https://x")
    assert not is_noise("```x```")


def test_emoji_only_is_noise():
    assert is_noise("👍 🎉 😀")


def test_tool_name_echo_is_noise():
    results = [_result("web_search", "Found 3 search results")]
    assert is_noise("WEB_SEARCH", results)
    assert not is_noise("WEB_SEARCH")


def test_verbatim_tool_output_is_noise():
    results = [_result("web_fetch", "Fetched page content (1200 characters)")]
    assert is_noise("Fetched page content (1200 characters)", results)
    assert not is_noise("The page says the museum opens at 9 on weekdays and 10 on weekends.", results)


def test_real_content_is_not_noise():
    assert not is_noise("The forecast shows rain tomorrow, so pack an umbrella.")


def test_substantive_analysis():
    assert has_substantive_analysis("This works because the cache is warm.")
    assert has_substantive_analysis("- first\n- second")
    assert has_substantive_analysis("因此我们需要更多数据")
    assert has_substantive_analysis("```python\nprint(1)\n```")
    assert has_substantive_analysis("x" * 10 + " plain words that go on for a while without any keyword at all")
    assert not has_substantive_analysis("OK")
    assert not has_substantive_analysis(None)


if __name__ == "__main__":
    test_empty_and_acknowledgements_are_noise()
    test_short_text_without_signal_is_noise()
    test_emoji_only_is_noise()
    test_tool_name_echo_is_noise()
    test_verbatim_tool_output_is_noise()
    test_real_content_is_not_noise()
    test_substantive_analysis()
    print("✅ All response filter tests passed!")
