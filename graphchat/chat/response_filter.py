"""
Response Filter

Heuristics that decide whether an intermediate assistant reply (text that
accompanies tool calls) is worth showing. Both functions are pure.
"""

from __future__ import annotations

import json
import re
from collections.abc import Sequence

from graphchat.chat.models import ToolExecutionResult

MIN_MEANINGFUL_LENGTH = 10
SUBSTANTIVE_LENGTH = 50
VERBATIM_RATIO = 0.9

_TRAILING_PUNCT = r"[，,。.！!…]*"

ACKNOWLEDGEMENT_PATTERNS = [
    re.compile(rf"^(好的|ok|okay|收到|sure|got it|alright){_TRAILING_PUNCT}$", re.IGNORECASE),
    re.compile(rf"^(正在|开始|已经)(调用|执行|使用).*(工具|tool){_TRAILING_PUNCT}$", re.IGNORECASE),
    re.compile(rf"^(工具|tool).*(调用|执行)(成功|完成){_TRAILING_PUNCT}$", re.IGNORECASE),
    re.compile(rf"^(已|正在)(搜索|查询|检索){_TRAILING_PUNCT}$"),
    re.compile(rf"^(我|已经|正在)(读取|获取|查看|分析|检索|搜索)(了|到)?{_TRAILING_PUNCT}$"),
    re.compile(rf"^(让我|我来)(看看|查看|分析|检索|搜索){_TRAILING_PUNCT}$"),
    re.compile(rf"^(查询|搜索|分析)(中|完成){_TRAILING_PUNCT}$"),
    re.compile(
        rf"^(i'?m |i am |let me |now )?(calling|running|using|executing|invoking)( the)? .*tools?{_TRAILING_PUNCT}$",
        re.IGNORECASE,
    ),
    re.compile(
        rf"^(let me|i'?ll|i will) (search|look|check|read|fetch|look it up)( that| this| it)?( up)?{_TRAILING_PUNCT}$",
        re.IGNORECASE,
    ),
    re.compile(rf"^(searching|looking|checking|fetching|reading)( now)?{_TRAILING_PUNCT}$", re.IGNORECASE),
]

MEANINGFUL_SHORT_PATTERNS = [
    re.compile(r"\d"),
    re.compile(r"https?://"),
    re.compile(r"```"),
]

EMOJI_ONLY_PATTERN = re.compile(
    "^[\U0001f600-\U0001f64f\U0001f300-\U0001f5ff\U0001f680-\U0001f6ff☀-⛿✀-➿\\s]+$"
)

ANALYTICAL_KEYWORDS = [
    # English connectives
    "because", "therefore", "however", "although", "whereas", "instead",
    "which means", "suggests", "indicates", "in summary", "overall",
    "compared", "in contrast", "recommend", "should",
    # Chinese connectives
    "因为", "所以", "因此", "导致", "说明", "表明",
    "分析", "总结", "建议", "推荐", "应该", "可以",
    "意味着", "显示", "证明", "反映", "揭示",
    "首先", "其次", "另外", "此外", "同时",
    "优点", "缺点", "优势", "劣势", "问题", "解决",
    "不同", "相同", "比较", "对比", "区别",
]  # fmt: skip

STRUCTURE_PATTERN = re.compile(r"[-*]\s|\d+\.\s|#\s")
CODE_OR_QUOTE_PATTERN = re.compile(r"```|>")


def _result_text(result: ToolExecutionResult) -> str:
    if result.display_text:
        return result.display_text
    if result.result is None:
        return ""
    return json.dumps(result.result, ensure_ascii=False, default=str)


def is_noise(message: str | None, tool_results: Sequence[ToolExecutionResult] | None = None) -> bool:
    """Return True when a reply carries no information worth displaying.

    Rules are checked in order and the first match wins.
    """
    if not message or not message.strip():
        return True

    trimmed = message.strip()

    if any(pattern.match(trimmed) for pattern in ACKNOWLEDGEMENT_PATTERNS):
        return True

    if len(trimmed) < MIN_MEANINGFUL_LENGTH and not any(p.search(trimmed) for p in MEANINGFUL_SHORT_PATTERNS):
        return True

    if EMOJI_ONLY_PATTERN.match(trimmed):
        return True

    if not tool_results:
        return False

    lowered = trimmed.lower()
    if any(r.tool_name and lowered == r.tool_name.lower() for r in tool_results):
        return True

    matched_length = 0
    for text in (_result_text(r) for r in tool_results):
        if text and text in trimmed:
            matched_length += len(text)

    return matched_length / len(trimmed) > VERBATIM_RATIO


def has_substantive_analysis(message: str | None) -> bool:
    """Softer positive signal: connectives, structure, code or plain length."""
    if not message or not message.strip():
        return False

    lowered = message.lower()
    if any(keyword in lowered for keyword in ANALYTICAL_KEYWORDS):
        return True
    if STRUCTURE_PATTERN.search(message) or CODE_OR_QUOTE_PATTERN.search(message):
        return True
    return len(message.strip()) > SUBSTANTIVE_LENGTH and not is_noise(message)
