"""ToolCallAccumulator: reassemble fragmented tool calls.

OpenAI-compatible providers send tool calls as incremental chunks: the
first chunk for an ``index`` normally carries the call ``id`` and
``function.name``, the following ones only ``function.arguments`` pieces
that must be concatenated in order.

A fragment that names a function but carries no ``id`` (Ollama delivers
each call whole that way) opens its index under the id ``call_<index>``.

Argument pieces that arrive for an index before its ``id`` are held back
and prepended once the index opens.  If the index never opens before the
phase ends they are dropped with a warning; some vendors emit such
keep-alive deltas.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from toolstream.types import FunctionCall, FunctionCallFragment

_logger = logging.getLogger(__name__)


class ToolCallAccumulator:
    """index -> FunctionCall map for a single streaming phase."""

    def __init__(self) -> None:
        self._calls: dict[int, FunctionCall] = {}
        self._orphans: dict[int, str] = {}

    def add(self, fragment: FunctionCallFragment) -> None:
        """Merge one fragment into the map."""
        idx = fragment.index
        current = self._calls.get(idx)

        if fragment.id:
            if current is None:
                early = self._orphans.pop(idx, "")
                self._calls[idx] = FunctionCall(
                    id=fragment.id,
                    name=fragment.name or "",
                    arguments=early + fragment.arguments_chunk,
                )
            else:
                # Re-announcement of an open index
                self._calls[idx] = FunctionCall(
                    id=fragment.id,
                    name=fragment.name or current.name,
                    arguments=current.arguments + fragment.arguments_chunk,
                )
            return

        if current is None and fragment.name:
            # Whole call without an id (Ollama native API)
            early = self._orphans.pop(idx, "")
            self._calls[idx] = FunctionCall(
                id=f"call_{idx}",
                name=fragment.name,
                arguments=early + fragment.arguments_chunk,
            )
            return

        if current is None:
            _logger.debug("Holding tool-call fragment for unopened index %d", idx)
            self._orphans[idx] = self._orphans.get(idx, "") + fragment.arguments_chunk
            return

        if fragment.arguments_chunk:
            self._calls[idx] = replace(
                current, arguments=current.arguments + fragment.arguments_chunk,
            )

    def has_calls(self) -> bool:
        return bool(self._calls)

    @property
    def unopened(self) -> list[int]:
        """Indices that received fragments but never an ``id``."""
        return sorted(self._orphans)

    def snapshot(self) -> tuple[FunctionCall, ...]:
        """Complete calls ordered by index.  Safe to share: calls are frozen.

        Fragments for indices that were never opened are not part of the
        result.
        """
        for idx in self.unopened:
            _logger.warning(
                "Dropping tool-call fragments for unopened index %d (%d chars)",
                idx, len(self._orphans[idx]),
            )
        return tuple(self._calls[idx] for idx in sorted(self._calls))

    def reset(self) -> None:
        self._calls.clear()
        self._orphans.clear()

    def __len__(self) -> int:
        return len(self._calls)
