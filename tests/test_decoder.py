"""Tests for StreamDecoder chunk classification and line framing."""

from __future__ import annotations

import json

import pytest

from toolstream.errors import ProtocolError
from toolstream.llm.decoder import StreamDecoder, extract_message
from toolstream.types import Content, Done, FunctionCallFragment, Thinking, ToolFragment


def _delta(**fields) -> dict:
    return {"choices": [{"index": 0, "delta": fields}]}


def _sse(chunk: dict) -> str:
    return "data: " + json.dumps(chunk)


async def _alines(lines: list[str]):
    for line in lines:
        yield line


async def _collect(decoder: StreamDecoder, lines: list[str]) -> list:
    return [e async for e in decoder.decode(_alines(lines))]


# ---------------------------------------------------------------------------
# Message fragment location
# ---------------------------------------------------------------------------

class TestExtractMessage:
    def test_openai_stream_delta(self):
        assert extract_message(_delta(content="hi")) == {"content": "hi"}

    def test_openai_non_stream_message(self):
        body = {"choices": [{"message": {"role": "assistant", "content": "hi"}}]}
        assert extract_message(body)["content"] == "hi"

    def test_dashscope_output_shape(self):
        body = {"output": {"choices": [{"message": {"content": "hi"}}]}}
        assert extract_message(body) == {"content": "hi"}

    def test_ollama_native_shape(self):
        body = {"model": "qwen3", "message": {"role": "assistant", "content": "hi"}}
        assert extract_message(body)["content"] == "hi"

    def test_empty_choices_is_heartbeat(self):
        assert extract_message({"choices": [], "usage": {"total_tokens": 3}}) is None

    def test_unknown_shape_raises(self):
        with pytest.raises(ProtocolError, match="no message fragment"):
            extract_message({"foo": "bar"})

    def test_non_object_raises(self):
        with pytest.raises(ProtocolError):
            extract_message(["not", "an", "object"])

    def test_error_payload_raises(self):
        with pytest.raises(ProtocolError, match="quota exceeded"):
            extract_message({"error": {"message": "quota exceeded"}})


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

class TestClassify:
    def test_content(self):
        assert StreamDecoder().classify(_delta(content="Hello")) == [Content("Hello")]

    def test_reasoning_content(self):
        events = StreamDecoder().classify(_delta(reasoning_content="hmm"))
        assert events == [Thinking("hmm")]

    def test_reasoning_alias(self):
        assert StreamDecoder().classify(_delta(reasoning="hmm")) == [Thinking("hmm")]

    def test_thinking_wins_over_content(self):
        """Exactly one channel per chunk: reasoning has priority."""
        events = StreamDecoder().classify(_delta(reasoning_content="plan", content="answer"))
        assert events == [Thinking("plan")]

    def test_tool_calls_win_over_text(self):
        chunk = _delta(
            content="ignored",
            reasoning_content="ignored too",
            tool_calls=[{
                "index": 0,
                "id": "call_1",
                "type": "function",
                "function": {"name": "searchWeb", "arguments": '{"q'},
            }],
        )
        events = StreamDecoder().classify(chunk)
        assert events == [
            ToolFragment(FunctionCallFragment(
                index=0, id="call_1", name="searchWeb", arguments_chunk='{"q',
            )),
        ]

    def test_one_fragment_per_tool_call_element(self):
        chunk = _delta(tool_calls=[
            {"index": 0, "id": "a", "function": {"name": "f", "arguments": "{}"}},
            {"index": 1, "id": "b", "function": {"name": "g", "arguments": "{}"}},
        ])
        events = StreamDecoder().classify(chunk)
        assert [e.fragment.index for e in events] == [0, 1]
        assert [e.fragment.id for e in events] == ["a", "b"]

    def test_missing_index_defaults_to_position(self):
        body = {"choices": [{"message": {"tool_calls": [
            {"id": "a", "function": {"name": "f", "arguments": "{}"}},
            {"id": "b", "function": {"name": "g", "arguments": "{}"}},
        ]}}]}
        events = StreamDecoder().classify(body)
        assert [e.fragment.index for e in events] == [0, 1]

    def test_continuation_fragment_has_no_id(self):
        chunk = _delta(tool_calls=[{"index": 0, "function": {"arguments": 'uery"}'}}])
        (event,) = StreamDecoder().classify(chunk)
        assert event.fragment.id is None
        assert event.fragment.name is None
        assert event.fragment.arguments_chunk == 'uery"}'

    def test_object_arguments_are_serialized(self):
        body = {"message": {"tool_calls": [
            {"function": {"name": "f", "arguments": {"city": "Hangzhou"}}},
        ]}}
        (event,) = StreamDecoder().classify(body)
        assert json.loads(event.fragment.arguments_chunk) == {"city": "Hangzhou"}

    def test_empty_chunk_emits_nothing(self):
        assert StreamDecoder().classify(_delta()) == []
        assert StreamDecoder().classify(_delta(content="", reasoning_content=None)) == []

    def test_empty_tool_call_list_falls_through(self):
        assert StreamDecoder().classify(_delta(tool_calls=[], content="x")) == [Content("x")]

    def test_non_string_content_raises(self):
        with pytest.raises(ProtocolError):
            StreamDecoder().classify(_delta(content=42))

    def test_bad_tool_call_index_raises(self):
        with pytest.raises(ProtocolError):
            StreamDecoder().classify(_delta(tool_calls=[{"index": "zero"}]))


# ---------------------------------------------------------------------------
# Streams
# ---------------------------------------------------------------------------

class TestDecodeStream:
    async def test_sse_stream_ends_with_single_done(self):
        lines = [
            _sse(_delta(reasoning_content="Let me think")),
            "",
            _sse(_delta(content="Hello")),
            ": keep-alive",
            _sse(_delta(content=" world")),
            "data: [DONE]",
        ]
        events = await _collect(StreamDecoder(), lines)
        assert events == [Thinking("Let me think"), Content("Hello"), Content(" world"), Done()]

    async def test_input_after_done_is_ignored(self):
        lines = [_sse(_delta(content="a")), "data: [DONE]", _sse(_delta(content="late"))]
        events = await _collect(StreamDecoder(), lines)
        assert events == [Content("a"), Done()]

    async def test_missing_terminal_marker_synthesizes_done(self):
        events = await _collect(StreamDecoder(), [_sse(_delta(content="a"))])
        assert events == [Content("a"), Done()]

    async def test_ndjson_done_flag(self):
        lines = [
            json.dumps({"message": {"role": "assistant", "content": "Hi"}, "done": False}),
            json.dumps({"message": {"role": "assistant", "content": ""}, "done": True}),
        ]
        events = await _collect(StreamDecoder(), lines)
        assert events == [Content("Hi"), Done()]

    async def test_sse_event_lines_ignored(self):
        lines = ["event: result", "id: 1", _sse({"output": {"choices": [
            {"message": {"content": "hi"}},
        ]}})]
        events = await _collect(StreamDecoder(), lines)
        assert events == [Content("hi"), Done()]

    async def test_invalid_json_raises(self):
        with pytest.raises(ProtocolError, match="invalid JSON"):
            await _collect(StreamDecoder(), ["data: {not json"])

    async def test_events_before_error_are_delivered(self):
        received = []
        decoder = StreamDecoder()
        with pytest.raises(ProtocolError):
            async for event in decoder.decode(_alines([_sse(_delta(content="a")), "data: ???"])):
                received.append(event)
        assert received == [Content("a")]


class TestDecodeResponse:
    def test_non_streaming_body(self):
        body = {"choices": [{"message": {"role": "assistant", "content": "Final"}}]}
        assert list(StreamDecoder().decode_response(body)) == [Content("Final"), Done()]

    def test_non_streaming_tool_calls(self):
        body = {"output": {"choices": [{"message": {"tool_calls": [
            {"id": "c1", "function": {"name": "f", "arguments": "{}"}},
        ]}}]}}
        events = list(StreamDecoder().decode_response(body))
        assert isinstance(events[0], ToolFragment)
        assert events[-1] == Done()

    def test_empty_response_is_just_done(self):
        assert list(StreamDecoder().decode_response({"choices": []})) == [Done()]


class TestOllamaToolCalls:
    async def test_whole_calls_in_separate_chunks_get_distinct_indexes(self):
        lines = [
            json.dumps({"message": {"tool_calls": [
                {"function": {"name": "search", "arguments": {"query": "hz"}}},
            ]}, "done": False}),
            json.dumps({"message": {"tool_calls": [
                {"function": {"name": "clock", "arguments": {}}},
            ]}, "done": False}),
            json.dumps({"message": {"content": ""}, "done": True}),
        ]
        events = await _collect(StreamDecoder(), lines)
        fragments = [e.fragment for e in events if isinstance(e, ToolFragment)]
        assert [(f.index, f.name) for f in fragments] == [(0, "search"), (1, "clock")]
        assert all(f.id is None for f in fragments)
        assert events[-1] == Done()
