#!/usr/bin/env python3
"""
Tests for incremental SSE parsing of Anthropic and OpenAI streams.
"""

import json
import random

from graphchat.clients.stream_parser import (
    AnthropicStreamParser,
    OpenAIStreamParser,
    SSELineBuffer,
)


def _sse(event: dict) -> str:
    return f"data: {json.dumps(event)}\n\n"


def _openai_text(content: str) -> str:
    return _sse({"choices": [{"index": 0, "delta": {"content": content}}]})


def test_line_buffer_holds_partial_lines():
    """Only complete lines come out; the remainder waits for the next fragment."""
    buffer = SSELineBuffer()
    assert buffer.feed("data: one\r\nda") == ["data: one"]
    assert buffer.feed("ta: two") == []
    assert buffer.feed("\n") == ["data: two"]
    assert buffer.feed("data: tail") == []
    assert buffer.flush() == "data: tail"
    assert buffer.flush() == ""


def test_openai_frame_split_across_fragments():
    """A frame split mid-JSON is emitted once, after its line completes."""
    parser = OpenAIStreamParser()
    first = 'data: {"choices":[{"delta":{"content":"Hel'
    second = 'lo"}}]}\n'

    assert parser.feed(first) == []
    chunks = parser.feed(second)

    assert len(chunks) == 1
    assert chunks[0].type == "text"
    assert chunks[0].content == "Hello"
    assert parser.text == "Hello"


def test_openai_chunk_boundaries_do_not_change_result():
    """Feeding the same stream in one piece or byte by byte gives the same text."""
    stream = _openai_text("The answer ") + _openai_text("is 42.") + "data: [DONE]\n\n"

    whole = OpenAIStreamParser()
    whole.feed(stream)

    split = OpenAIStreamParser()
    for char in stream:
        split.feed(char)

    assert whole.finish().message == "The answer is 42."
    assert split.finish().message == "The answer is 42."
    assert split.done


def test_unparseable_frame_is_skipped():
    parser = OpenAIStreamParser()
    parser.feed("data: {not json}\n\n")
    parser.feed(_openai_text("still here"))
    parser.feed(": keep-alive comment\n\n")

    response = parser.finish()
    assert response.success
    assert response.message == "still here"


def test_openai_tool_call_accumulates_by_index():
    """Argument fragments concatenate in order into one complete call."""
    parser = OpenAIStreamParser()
    parser.feed(
        _sse(
            {
                "choices": [
                    {
                        "delta": {
                            "tool_calls": [
                                {"index": 0, "id": "call_1", "function": {"name": "web_search", "arguments": ""}}
                            ]
                        }
                    }
                ]
            }
        )
    )
    for piece in ['{"qu', 'ery": "py', 'thon"}']:
        parser.feed(_sse({"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"arguments": piece}}]}}]}))

    chunks = parser.feed(_sse({"choices": [{"delta": {}, "finish_reason": "tool_calls"}]}))
    assert [c.type for c in chunks] == ["tool_use"]

    response = parser.finish()
    assert response.stop_reason == "tool_calls"
    assert len(response.tool_calls) == 1
    call = response.tool_calls[0]
    assert call.id == "call_1"
    assert call.function.name == "web_search"
    assert json.loads(call.function.arguments) == {"query": "python"}


def test_tool_call_with_invalid_json_is_dropped():
    parser = OpenAIStreamParser()
    parser.feed(
        _sse(
            {
                "choices": [
                    {
                        "delta": {
                            "tool_calls": [
                                {"index": 0, "id": "bad", "function": {"name": "web_fetch", "arguments": '{"url": '}},
                                {"index": 1, "id": "good", "function": {"name": "read_doc", "arguments": ""}},
                            ]
                        },
                        "finish_reason": "tool_calls",
                    }
                ]
            }
        )
    )

    response = parser.finish()
    assert [c.id for c in response.tool_calls] == ["good"]
    # Empty argument streams become an empty object
    assert response.tool_calls[0].function.arguments == "{}"


def test_openai_error_frame():
    parser = OpenAIStreamParser()
    chunks = parser.feed(_sse({"error": {"message": "overloaded"}}))

    assert chunks[0].type == "error"
    response = parser.finish()
    assert not response.success
    assert response.error == "overloaded"


def test_anthropic_text_and_tool_use():
    parser = AnthropicStreamParser()
    events = [
        {"type": "message_start", "message": {"id": "msg_1"}},
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Let me look."}},
        {"type": "content_block_stop", "index": 0},
        {
            "type": "content_block_start",
            "index": 1,
            "content_block": {"type": "tool_use", "id": "toolu_1", "name": "memory_open_nodes", "input": {}},
        },
        {"type": "content_block_delta", "index": 1, "delta": {"type": "input_json_delta", "partial_json": '{"names": '}},
        {"type": "content_block_delta", "index": 1, "delta": {"type": "input_json_delta", "partial_json": '["Ada"]}'}},
        {"type": "content_block_stop", "index": 1},
        {"type": "message_delta", "delta": {"stop_reason": "tool_use"}},
        {"type": "message_stop"},
    ]

    emitted = []
    for event in events:
        emitted.extend(parser.feed(_sse(event)))

    assert [c.type for c in emitted] == ["text", "tool_use"]
    assert parser.done

    response = parser.finish()
    assert response.success
    assert response.message == "Let me look."
    assert response.stop_reason == "tool_use"
    assert response.tool_calls[0].id == "toolu_1"
    assert json.loads(response.tool_calls[0].function.arguments) == {"names": ["Ada"]}


def _anthropic_stream() -> str:
    events = [
        {"type": "message_start", "message": {"id": "msg_2"}},
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Héllo "}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "世界"}},
        {"type": "content_block_stop", "index": 0},
        {
            "type": "content_block_start",
            "index": 1,
            "content_block": {"type": "tool_use", "id": "toolu_3", "name": "web_search", "input": {}},
        },
        {"type": "content_block_delta", "index": 1, "delta": {"type": "input_json_delta", "partial_json": '{"que'}},
        {"type": "content_block_delta", "index": 1, "delta": {"type": "input_json_delta", "partial_json": 'ry":"X"}'}},
        {"type": "content_block_stop", "index": 1},
        {"type": "message_delta", "delta": {"stop_reason": "tool_use"}},
        {"type": "message_stop"},
    ]
    return "".join(f"event: {e['type']}\ndata: {json.dumps(e, ensure_ascii=False)}\n\n" for e in events)


def _feed_pieces(stream: str, cut_points: list[int]) -> tuple[list[str], AnthropicStreamParser]:
    parser = AnthropicStreamParser()
    texts: list[str] = []
    start = 0
    for end in [*cut_points, len(stream)]:
        for chunk in parser.feed(stream[start:end]):
            if chunk.type == "text":
                texts.append(chunk.content)
        start = end
    return texts, parser


def test_anthropic_chunk_boundaries_do_not_change_result():
    """Text and input_json_delta fragments survive any split of the raw stream."""
    stream = _anthropic_stream()
    rng = random.Random(7)

    splits = [list(range(1, len(stream)))]
    for _ in range(20):
        splits.append(sorted(rng.sample(range(1, len(stream)), rng.randint(1, 40))))

    for cut_points in splits:
        texts, parser = _feed_pieces(stream, cut_points)
        response = parser.finish()

        assert "".join(texts) == "Héllo 世界"
        assert response.message == "Héllo 世界"
        assert response.stop_reason == "tool_use"
        assert len(response.tool_calls) == 1
        assert response.tool_calls[0].id == "toolu_3"
        assert json.loads(response.tool_calls[0].function.arguments) == {"query": "X"}


def test_anthropic_error_event():
    parser = AnthropicStreamParser()
    parser.feed(_sse({"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}))

    response = parser.finish()
    assert not response.success
    assert response.error == "Overloaded"


def test_cancelled_finish_keeps_only_completed_calls():
    """Cancellation drops the partial line and any tool call still streaming."""
    parser = AnthropicStreamParser()
    parser.feed(_sse({"type": "content_block_start", "index": 0, "content_block": {"type": "text"}}))
    parser.feed(_sse({"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Part"}}))
    parser.feed(
        _sse(
            {
                "type": "content_block_start",
                "index": 1,
                "content_block": {"type": "tool_use", "id": "toolu_2", "name": "web_search"},
            }
        )
    )
    parser.feed(_sse({"type": "content_block_delta", "index": 1, "delta": {"type": "input_json_delta", "partial_json": "{}"}}))
    parser.feed('data: {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "ial"}}')

    response = parser.finish(cancelled=True)
    assert response.stop_reason == "cancelled"
    assert response.message == "Part"
    assert response.tool_calls is None


if __name__ == "__main__":
    test_line_buffer_holds_partial_lines()
    test_openai_frame_split_across_fragments()
    test_openai_chunk_boundaries_do_not_change_result()
    test_unparseable_frame_is_skipped()
    test_openai_tool_call_accumulates_by_index()
    test_tool_call_with_invalid_json_is_dropped()
    test_openai_error_frame()
    test_anthropic_text_and_tool_use()
    test_anthropic_chunk_boundaries_do_not_change_result()
    test_anthropic_error_event()
    test_cancelled_finish_keeps_only_completed_calls()
    print("✅ All stream parser tests passed!")
