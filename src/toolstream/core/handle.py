"""Caller-facing turn API.

Usage::

    handle = start_turn(
        [Message(role="user", content="What's new in Hangzhou?")],
        ["alibaba-search"],
        config,
        registry=registry,
        callbacks=TurnCallbacks(on_content=print),
    )
    result = await handle.wait()

Callbacks may be plain functions or coroutines.  They are awaited in the
order the events were decoded, before the next chunk is processed.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Sequence

from toolstream.config import ToolstreamConfig
from toolstream.core.orchestrator import ChatOrchestrator, TurnResult
from toolstream.events.bus import EventBus, Handler
from toolstream.llm.transport import ChatTransport
from toolstream.tools.registry import ToolRegistry
from toolstream.types import EventType, FunctionCall, Message

_logger = logging.getLogger(__name__)


@dataclass
class TurnCallbacks:
    """Optional hooks invoked while a turn runs."""

    on_thinking: Callable[[str], Any] | None = None
    on_content: Callable[[str], Any] | None = None
    on_tool_call: Callable[[FunctionCall], Any] | None = None
    on_finish: Callable[[str, bool], Any] | None = None
    on_error: Callable[[str, str], Any] | None = None
    _bound: list[tuple[EventType, Handler]] = field(
        default_factory=list, init=False, repr=False,
    )

    def bind(self, bus: EventBus) -> None:
        """Subscribe the configured hooks to *bus*."""
        if self.on_thinking:
            hook_thinking = self.on_thinking
            self._subscribe(bus, EventType.LLM_THINKING, lambda e: hook_thinking(e.data["text"]))
        if self.on_content:
            hook_content = self.on_content
            self._subscribe(bus, EventType.LLM_CONTENT, lambda e: hook_content(e.data["text"]))
        if self.on_tool_call:
            hook_call = self.on_tool_call
            self._subscribe(bus, EventType.TOOL_CALL_ISSUED, lambda e: hook_call(e.data["call"]))
        if self.on_finish:
            hook_finish = self.on_finish
            self._subscribe(
                bus,
                EventType.TURN_DONE,
                lambda e: hook_finish(e.data["content"], e.data["truncated"]),
            )
        if self.on_error:
            hook_error = self.on_error
            self._subscribe(
                bus,
                EventType.TURN_ERROR,
                lambda e: hook_error(e.data["kind"], e.data["error"]),
            )

    def unbind(self, bus: EventBus) -> None:
        """Remove every hook :meth:`bind` subscribed to *bus*."""
        for event_type, handler in self._bound:
            bus.unsubscribe(event_type, handler)
        self._bound.clear()

    def _subscribe(self, bus: EventBus, event_type: EventType, handler: Handler) -> None:
        bus.subscribe(event_type, handler)
        self._bound.append((event_type, handler))


class TurnHandle:
    """A running turn."""

    def __init__(self, orchestrator: ChatOrchestrator, task: asyncio.Task[TurnResult]) -> None:
        self._orchestrator = orchestrator
        self._task = task

    def cancel(self) -> None:
        """Abort the turn; ``on_finish`` will not be called."""
        self._orchestrator.cancel()

    @property
    def done(self) -> bool:
        return self._task.done()

    @property
    def event_bus(self) -> EventBus:
        return self._orchestrator.event_bus

    async def wait(self) -> TurnResult:
        """Wait for the terminal state."""
        return await self._task


def start_turn(
    messages: Sequence[Message | Mapping[str, Any]],
    tool_ids: Iterable[str],
    config: ToolstreamConfig,
    *,
    registry: ToolRegistry | None = None,
    transport: ChatTransport | None = None,
    callbacks: TurnCallbacks | None = None,
    event_bus: EventBus | None = None,
) -> TurnHandle:
    """Start a turn on the running event loop and return its handle.

    Tools are resolved from *registry* (plugins that fail to adapt are left
    out).  A transport is created from the active profile when none is
    given, and closed when the turn ends.
    """
    tool_ids = list(tool_ids)
    tools = None
    if tool_ids:
        if registry is None:
            _logger.warning("Tool ids given without a registry; running without tools")
        else:
            tools = registry.resolve_tools(tool_ids)

    owns_transport = transport is None
    chat_transport = transport or ChatTransport(config.active_profile, config.turn)

    bus = event_bus or EventBus()
    if callbacks:
        callbacks.bind(bus)
    orchestrator = ChatOrchestrator(chat_transport, config.turn, bus)

    async def _drive() -> TurnResult:
        try:
            return await orchestrator.run(messages, tools)
        finally:
            if callbacks:
                callbacks.unbind(bus)
            if owns_transport:
                await chat_transport.close()

    task = asyncio.get_running_loop().create_task(_drive())
    return TurnHandle(orchestrator, task)
