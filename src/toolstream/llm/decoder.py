"""Stream decoding: raw response chunks -> typed events.

Every chunk is reduced to its *message fragment* (the part of the payload
carrying ``content`` / reasoning text / ``tool_calls``) and classified by a
single rule, whether it arrived as one SSE ``data:`` line, one NDJSON line,
or as a whole non-streaming response body.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterable, AsyncIterator, Iterator

from toolstream.errors import ProtocolError
from toolstream.types import (
    Content,
    DecodedEvent,
    Done,
    FunctionCallFragment,
    Thinking,
    ToolFragment,
)

_logger = logging.getLogger(__name__)

_DONE_MARKER = "[DONE]"

# Keys vendors use for intermediate reasoning text
_REASONING_KEYS = ("reasoning_content", "reasoning", "thinking")

# SSE fields that carry no payload for us
_SSE_IGNORED_PREFIXES = (":", "event:", "id:", "retry:")


# ---------------------------------------------------------------------------
# Message fragment extraction
# ---------------------------------------------------------------------------

def _first_choice(choices: Any) -> dict[str, Any] | None:
    if not isinstance(choices, list):
        raise ProtocolError(f"'choices' must be a list, got {type(choices).__name__}")
    if not choices:
        return None
    choice = choices[0]
    if not isinstance(choice, dict):
        raise ProtocolError("choice entry is not an object")
    return choice


def extract_message(chunk: Any) -> dict[str, Any] | None:
    """Locate the message fragment inside one decoded chunk.

    Supports DashScope (``output.choices[0].message``), OpenAI streaming
    (``choices[0].delta``), OpenAI non-streaming (``choices[0].message``)
    and Ollama native (``message``).  Returns ``None`` for heartbeat chunks
    that carry an empty ``choices`` list.
    """
    if not isinstance(chunk, dict):
        raise ProtocolError(f"chunk is not a JSON object: {chunk!r}"[:200])

    error = chunk.get("error")
    if error:
        detail = error.get("message", error) if isinstance(error, dict) else error
        raise ProtocolError(f"service reported an error: {detail}")

    if "output" in chunk:
        output = chunk["output"]
        if not isinstance(output, dict):
            raise ProtocolError("'output' is not an object")
        choice = _first_choice(output.get("choices", []))
        fragment = None if choice is None else choice.get("message", {})
    elif "choices" in chunk:
        choice = _first_choice(chunk["choices"])
        if choice is None:
            return None
        fragment = choice.get("delta", choice.get("message", {}))
    elif "message" in chunk:
        fragment = chunk["message"]
    elif chunk.get("done") is True:
        return None
    else:
        raise ProtocolError(
            f"chunk has no message fragment (keys: {', '.join(sorted(chunk))})"
        )

    if fragment is None:
        return None
    if not isinstance(fragment, dict):
        raise ProtocolError("message fragment is not an object")
    return fragment


def _text_field(fragment: dict[str, Any], key: str) -> str:
    value = fragment.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ProtocolError(f"'{key}' must be a string, got {type(value).__name__}")
    return value


def _parse_fragment(position: int, raw: Any) -> FunctionCallFragment:
    """Convert one ``tool_calls`` element into a fragment.

    *position* is used when the element carries no ``index``.
    """
    if not isinstance(raw, dict):
        raise ProtocolError("tool_calls entry is not an object")
    index = raw.get("index", position)
    if not isinstance(index, int) or isinstance(index, bool):
        raise ProtocolError(f"tool call index must be an integer, got {index!r}")
    func = raw.get("function") or {}
    if not isinstance(func, dict):
        raise ProtocolError("tool call 'function' is not an object")

    arguments = func.get("arguments")
    if arguments is None:
        arguments = ""
    elif isinstance(arguments, dict):
        # Ollama sends already-decoded arguments
        arguments = json.dumps(arguments)
    elif not isinstance(arguments, str):
        raise ProtocolError("tool call arguments must be a string or object")

    return FunctionCallFragment(
        index=index,
        id=raw.get("id") or None,
        name=func.get("name") or None,
        arguments_chunk=arguments,
    )


# ---------------------------------------------------------------------------
# StreamDecoder
# ---------------------------------------------------------------------------

class StreamDecoder:
    """Classifies protocol chunks into ``DecodedEvent`` values.

    One decoder serves one streaming phase.  After ``Done`` has been
    produced, further input is ignored.
    """

    def __init__(self) -> None:
        self._done = False
        # Calls seen without index or id (Ollama), numbered across chunks
        self._unindexed = 0

    @property
    def done(self) -> bool:
        return self._done

    def classify(self, chunk: Any) -> list[DecodedEvent]:
        """Apply the classification rule to one decoded chunk.

        Priority: tool calls, then reasoning text, then answer text.
        Exactly one channel wins per chunk.
        """
        fragment = extract_message(chunk)
        if fragment is None:
            return []

        tool_calls = fragment.get("tool_calls")
        if tool_calls:
            if not isinstance(tool_calls, list):
                raise ProtocolError("'tool_calls' must be a list")
            return [
                ToolFragment(_parse_fragment(self._position(pos, raw), raw))
                for pos, raw in enumerate(tool_calls)
            ]

        for key in _REASONING_KEYS:
            reasoning = _text_field(fragment, key)
            if reasoning:
                return [Thinking(reasoning)]

        content = _text_field(fragment, "content")
        if content:
            return [Content(content)]
        return []

    def _position(self, pos: int, raw: Any) -> int:
        """Default index for a ``tool_calls`` element.

        Ollama sends each call whole, without ``index`` or ``id``, and may
        spread several calls over separate chunks; those are numbered in
        arrival order so they never merge.
        """
        if isinstance(raw, dict) and "index" not in raw and not raw.get("id"):
            pos = self._unindexed
            self._unindexed += 1
        return pos

    def feed_line(self, line: str) -> list[DecodedEvent]:
        """Decode one line of a streaming body (SSE or NDJSON)."""
        if self._done:
            return []
        line = line.strip()
        if not line or line.startswith(_SSE_IGNORED_PREFIXES):
            return []
        if line.startswith("data:"):
            line = line[len("data:"):].strip()
            if not line:
                return []
        if line == _DONE_MARKER:
            self._done = True
            return [Done()]

        try:
            chunk = json.loads(line)
        except json.JSONDecodeError as e:
            raise ProtocolError(f"invalid JSON chunk: {e}: {line[:200]!r}") from e

        events = self.classify(chunk)
        if isinstance(chunk, dict) and chunk.get("done") is True:
            self._done = True
            events.append(Done())
        return events

    async def decode(self, lines: AsyncIterable[str]) -> AsyncIterator[DecodedEvent]:
        """Lazily decode a line stream, always ending with exactly one Done."""
        async for line in lines:
            for event in self.feed_line(line):
                yield event
            if self._done:
                return
        if not self._done:
            _logger.debug("Stream ended without a terminal marker")
            self._done = True
            yield Done()

    def decode_response(self, body: Any) -> Iterator[DecodedEvent]:
        """Decode a non-streaming response body as a single chunk."""
        if self._done:
            return
        yield from self.classify(body)
        self._done = True
        yield Done()
