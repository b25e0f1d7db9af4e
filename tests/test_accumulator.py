"""Tests for ToolCallAccumulator fragment merging."""

import dataclasses
import logging

import pytest

from toolstream.llm.accumulator import ToolCallAccumulator
from toolstream.types import FunctionCallFragment


def _frag(index=0, id=None, name=None, args=""):
    return FunctionCallFragment(index=index, id=id, name=name, arguments_chunk=args)


class TestToolCallAccumulator:
    def test_empty_accumulator(self):
        acc = ToolCallAccumulator()
        assert not acc.has_calls()
        assert acc.snapshot() == ()

    def test_single_call_single_fragment(self):
        acc = ToolCallAccumulator()
        acc.add(_frag(id="call_1", name="read_file", args='{"path": "a.py"}'))
        (call,) = acc.snapshot()
        assert call.id == "call_1"
        assert call.name == "read_file"
        assert call.arguments == '{"path": "a.py"}'

    def test_arguments_split_across_fragments(self):
        acc = ToolCallAccumulator()
        acc.add(_frag(id="call_1", name="searchWeb", args='{"que'))
        acc.add(_frag(args='ry": "wea'))
        acc.add(_frag(args='ther"}'))
        (call,) = acc.snapshot()
        assert call.arguments == '{"query": "weather"}'

    @pytest.mark.parametrize("id_position", [0, 1, 2, 3])
    def test_concatenation_independent_of_id_position(self, id_position):
        chunks = ['{"query"', ": ", '"weather"', "}"]
        acc = ToolCallAccumulator()
        for i, chunk in enumerate(chunks):
            if i == id_position:
                acc.add(_frag(id="c", name="f", args=chunk))
            else:
                acc.add(_frag(args=chunk))
        (call,) = acc.snapshot()
        assert call.arguments == "".join(chunks)
        assert acc.unopened == []

    def test_never_opened_index_is_dropped_at_snapshot(self, caplog):
        acc = ToolCallAccumulator()
        acc.add(_frag(index=0, id="c", name="f", args="{}"))
        acc.add(_frag(index=3, args='{"x": 1}'))
        assert acc.unopened == [3]
        with caplog.at_level(logging.WARNING):
            calls = acc.snapshot()
        assert [c.id for c in calls] == ["c"]
        assert "unopened index 3" in caplog.text

    def test_empty_keepalive_fragment_is_harmless(self):
        acc = ToolCallAccumulator()
        acc.add(_frag(index=0))
        assert not acc.has_calls()
        assert acc.snapshot() == ()

    def test_reannouncement_overwrites_id_and_appends(self):
        acc = ToolCallAccumulator()
        acc.add(_frag(id="first", name="f", args='{"a":'))
        acc.add(_frag(id="second", name="g", args=" 1}"))
        (call,) = acc.snapshot()
        assert call.id == "second"
        assert call.name == "g"
        assert call.arguments == '{"a": 1}'

    def test_reannouncement_without_name_keeps_name(self):
        acc = ToolCallAccumulator()
        acc.add(_frag(id="c1", name="f", args="{"))
        acc.add(_frag(id="c1", args="}"))
        (call,) = acc.snapshot()
        assert call.name == "f"
        assert call.arguments == "{}"

    def test_parallel_calls_ordered_by_index(self):
        acc = ToolCallAccumulator()
        acc.add(_frag(index=1, id="b", name="g", args="{"))
        acc.add(_frag(index=0, id="a", name="f", args="{"))
        acc.add(_frag(index=1, args="}"))
        acc.add(_frag(index=0, args="}"))
        calls = acc.snapshot()
        assert [c.id for c in calls] == ["a", "b"]
        assert all(c.arguments == "{}" for c in calls)

    def test_invalid_json_is_kept_verbatim(self):
        acc = ToolCallAccumulator()
        acc.add(_frag(id="c", name="f", args="not json"))
        assert acc.snapshot()[0].arguments == "not json"

    def test_snapshot_is_frozen(self):
        acc = ToolCallAccumulator()
        acc.add(_frag(id="c", name="f", args="{"))
        snap = acc.snapshot()
        acc.add(_frag(args="}"))
        assert snap[0].arguments == "{"
        with pytest.raises(dataclasses.FrozenInstanceError):
            snap[0].arguments = "x"

    def test_reset(self):
        acc = ToolCallAccumulator()
        acc.add(_frag(id="c", name="f"))
        acc.add(_frag(index=5))
        acc.reset()
        assert len(acc) == 0
        assert acc.unopened == []

    def test_named_fragment_without_id_opens_call(self):
        acc = ToolCallAccumulator()
        acc.add(_frag(index=0, name="search", args='{"query": "hz"}'))
        acc.add(_frag(index=1, name="clock", args="{}"))
        calls = acc.snapshot()
        assert [(c.id, c.name) for c in calls] == [("call_0", "search"), ("call_1", "clock")]
        assert calls[0].arguments == '{"query": "hz"}'
        assert acc.unopened == []
