"""ChatOrchestrator: the state machine driving one conversation turn.

    Idle -> Streaming -> (ToolsPending -> Invoking -> Streaming)* -> Done
                                                         | Errored | Cancelled

Each streaming phase gets a fresh decoder and accumulator.  Text events
are published on the EventBus as they are decoded; tool calls are only
invoked once the phase has ended.  All per-turn data lives in a ``Turn``
object that is handed back inside the ``TurnResult``.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from toolstream.config import TurnSpec
from toolstream.core.executor import Executor
from toolstream.errors import ProtocolError, TransportError
from toolstream.events.bus import EventBus
from toolstream.llm.accumulator import ToolCallAccumulator
from toolstream.llm.decoder import StreamDecoder
from toolstream.llm.transport import ChatTransport
from toolstream.tools.registry import ToolSet
from toolstream.types import (
    Content,
    DecodedEvent,
    EventType,
    FunctionCall,
    FunctionSchema,
    Message,
    Thinking,
    ToolFragment,
    TurnEvent,
)

_logger = logging.getLogger(__name__)


class TurnState(enum.Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    TOOLS_PENDING = "tools_pending"
    INVOKING = "invoking"
    DONE = "done"
    ERRORED = "errored"
    CANCELLED = "cancelled"


@dataclass
class Turn:
    """Mutable state of one turn.  Messages are only ever appended."""

    messages: list[Message]
    state: TurnState = TurnState.IDLE
    round_trips: int = 0
    phase_content: list[str] = field(default_factory=list)


@dataclass
class TurnResult:
    """Outcome of ``ChatOrchestrator.run``."""

    state: TurnState
    content: str = ""
    truncated: bool = False
    messages: list[Message] = field(default_factory=list)
    round_trips: int = 0
    error_kind: str = ""
    error: str = ""


def _to_message(raw: Message | Mapping[str, Any]) -> Message:
    return raw if isinstance(raw, Message) else Message.from_dict(raw)


class ChatOrchestrator:
    """Runs one turn against a transport, invoking tools as requested.

    An orchestrator drives a single turn; a cancelled one stays cancelled.

    Parameters
    ----------
    transport:
        Chat transport (``build_payload`` / ``stream`` / ``complete``).
    spec:
        Turn settings: round-trip budget and streaming mode.
    event_bus:
        Receives text, tool and lifecycle events (optional).
    """

    def __init__(
        self,
        transport: ChatTransport,
        spec: TurnSpec | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._transport = transport
        self._spec = spec or TurnSpec()
        self._event_bus = event_bus or EventBus()
        self._cancelled = False
        self._task: asyncio.Task[Any] | None = None

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def run(
        self,
        messages: Sequence[Message | Mapping[str, Any]],
        tools: ToolSet | None = None,
    ) -> TurnResult:
        """Drive the turn to a terminal state.

        Parameters
        ----------
        messages:
            Conversation so far.  The list is copied, never modified.
        tools:
            Active tool set, or None for a plain chat turn.

        Returns
        -------
        TurnResult
        """
        self._task = asyncio.current_task()
        turn = Turn(messages=[_to_message(m) for m in messages])
        executor = Executor(tools.invokers, self._event_bus) if tools else None
        schemas = list(tools.schemas) if tools else []

        result: TurnResult | None = None
        try:
            await self._emit(EventType.TURN_STARTED, {
                "messages": len(turn.messages),
                "tools": [s.name for s in schemas],
            })
            result = await self._loop(turn, schemas, executor)
        except asyncio.CancelledError:
            self._cancelled = True
        except (ProtocolError, TransportError) as e:
            kind = "protocol" if isinstance(e, ProtocolError) else "transport"
            _logger.warning("Turn failed (%s): %s", kind, e)
            result = await self._fail(turn, kind, str(e))
        except Exception as e:
            _logger.exception("Orchestrator error")
            result = await self._fail(turn, "internal", f"{type(e).__name__}: {e}")
        finally:
            self._task = None

        if result is None:
            turn.state = TurnState.CANCELLED
            result = self._result(turn)
            await self._emit(EventType.TURN_CANCELLED, {"round_trips": turn.round_trips})
        return result

    def cancel(self) -> None:
        """Request cancellation.

        Aborts the in-flight transport read and any running tool calls.
        No further request is sent, whatever completes afterwards.
        """
        self._cancelled = True
        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _loop(
        self,
        turn: Turn,
        schemas: list[FunctionSchema],
        executor: Executor | None,
    ) -> TurnResult | None:
        while True:
            if self._cancelled:
                return None
            calls = await self._stream_phase(turn, schemas)
            if self._cancelled:
                return None
            content = "".join(turn.phase_content)

            if not calls:
                return await self._finish(turn, content, truncated=False)
            if executor is None:
                _logger.warning(
                    "Model requested %d tool call(s) but no tools are active", len(calls),
                )
                return await self._finish(turn, content, truncated=False)
            if turn.round_trips >= self._spec.max_round_trips:
                _logger.warning(
                    "Round-trip budget (%d) exhausted, finishing turn",
                    self._spec.max_round_trips,
                )
                return await self._finish(turn, content, truncated=True)

            turn.state = TurnState.TOOLS_PENDING
            for call in calls:
                await self._emit(EventType.TOOL_CALL_ISSUED, {"call": call})
            if self._cancelled:
                return None

            turn.state = TurnState.INVOKING
            results = await executor.execute(calls)
            if self._cancelled:
                return None

            turn.messages.append(Message(
                role="assistant", content=content or None, tool_calls=list(calls),
            ))
            for call, tool_result in results:
                turn.messages.append(Message(
                    role="tool", content=tool_result.to_message(), tool_call_id=call.id,
                ))
            turn.round_trips += 1

    async def _stream_phase(
        self, turn: Turn, schemas: list[FunctionSchema],
    ) -> tuple[FunctionCall, ...]:
        """Run one request/response phase; return the completed tool calls."""
        turn.state = TurnState.STREAMING
        turn.phase_content = []
        decoder = StreamDecoder()
        accumulator = ToolCallAccumulator()

        payload = self._transport.build_payload(
            turn.messages, schemas or None, stream=self._spec.stream,
        )
        await self._emit(EventType.LLM_REQUEST, {
            "round_trip": turn.round_trips,
            "messages": len(turn.messages),
            "stream": self._spec.stream,
        })

        if self._spec.stream:
            async with self._transport.stream(payload) as lines:
                async for event in decoder.decode(lines):
                    if self._cancelled:
                        break
                    await self._dispatch(event, turn, accumulator)
        else:
            body = await self._transport.complete(payload)
            for event in decoder.decode_response(body):
                if self._cancelled:
                    break
                await self._dispatch(event, turn, accumulator)

        return accumulator.snapshot()

    async def _dispatch(
        self, event: DecodedEvent, turn: Turn, accumulator: ToolCallAccumulator,
    ) -> None:
        if isinstance(event, Thinking):
            await self._emit(EventType.LLM_THINKING, {"text": event.text})
        elif isinstance(event, Content):
            turn.phase_content.append(event.text)
            await self._emit(EventType.LLM_CONTENT, {"text": event.text})
        elif isinstance(event, ToolFragment):
            accumulator.add(event.fragment)

    # ------------------------------------------------------------------
    # Terminal states
    # ------------------------------------------------------------------

    async def _finish(self, turn: Turn, content: str, truncated: bool) -> TurnResult:
        turn.state = TurnState.DONE
        turn.messages.append(Message(role="assistant", content=content))
        await self._emit(EventType.TURN_DONE, {
            "content": content,
            "truncated": truncated,
            "round_trips": turn.round_trips,
        })
        return self._result(turn, content=content, truncated=truncated)

    async def _fail(self, turn: Turn, kind: str, detail: str) -> TurnResult:
        turn.state = TurnState.ERRORED
        await self._emit(EventType.TURN_ERROR, {"kind": kind, "error": detail})
        return self._result(turn, error_kind=kind, error=detail)

    @staticmethod
    def _result(turn: Turn, **kwargs: Any) -> TurnResult:
        return TurnResult(
            state=turn.state,
            messages=turn.messages,
            round_trips=turn.round_trips,
            **kwargs,
        )

    async def _emit(self, event_type: EventType, data: dict[str, Any]) -> None:
        await self._event_bus.emit(TurnEvent(type=event_type, data=data))
