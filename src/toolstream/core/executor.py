"""Executor: runs the tool calls of one round-trip concurrently.

Results come back paired with their calls, in the calls' order, whatever
order the invocations finish in.  Every failure (bad JSON arguments,
unknown function, invoker error) is turned into a failed ``ToolResult``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Mapping, Sequence

from toolstream.errors import ToolExecutionError
from toolstream.events.bus import EventBus
from toolstream.types import EventType, FunctionCall, Invoker, ToolResult, TurnEvent

_logger = logging.getLogger(__name__)


def parse_arguments(call: FunctionCall) -> dict[str, Any]:
    """Decode a call's accumulated argument text."""
    if not call.arguments.strip():
        return {}
    try:
        args = json.loads(call.arguments)
    except json.JSONDecodeError as e:
        raise ToolExecutionError(
            f"arguments for {call.name} are not valid JSON: {e}", call.name,
        ) from e
    if not isinstance(args, dict):
        raise ToolExecutionError(
            f"arguments for {call.name} must be a JSON object, got {type(args).__name__}",
            call.name,
        )
    return args


class Executor:
    """Invokes tool calls by name against a fixed invoker map.

    Usage::

        executor = Executor(tool_set.invokers, event_bus)
        results = await executor.execute(calls)
    """

    def __init__(
        self,
        invokers: Mapping[str, Invoker],
        event_bus: EventBus | None = None,
    ) -> None:
        self._invokers = invokers
        self._event_bus = event_bus

    async def execute(
        self, calls: Sequence[FunctionCall],
    ) -> list[tuple[FunctionCall, ToolResult]]:
        """Run all calls concurrently; results are in the order of *calls*.

        Cancelling the awaiting task cancels every in-flight invocation.
        """
        results = await asyncio.gather(*[self._run_one(c) for c in calls])
        return list(zip(calls, results))

    async def _run_one(self, call: FunctionCall) -> ToolResult:
        try:
            result = await self._invoke(call)
        except ToolExecutionError as e:
            result = ToolResult(success=False, output="", error=str(e))
        except Exception as e:
            _logger.exception("Invoker for %s raised", call.name)
            result = ToolResult(
                success=False,
                output="",
                error=f"Tool '{call.name}' execution failed: {type(e).__name__}: {e}",
            )

        if result.success:
            await self._emit(EventType.TOOL_EXECUTED, {
                "tool": call.name,
                "call_id": call.id,
                "output_length": len(result.output),
            })
        else:
            _logger.info("Tool call %s (%s) failed: %s", call.id, call.name, result.error)
            await self._emit(EventType.TOOL_ERROR, {
                "tool": call.name,
                "call_id": call.id,
                "error": result.error,
            })
        return result

    async def _invoke(self, call: FunctionCall) -> ToolResult:
        invoker = self._invokers.get(call.name)
        if invoker is None:
            available = ", ".join(sorted(self._invokers)) or "none"
            raise ToolExecutionError(
                f"Unknown tool: {call.name}. Available: {available}", call.name,
            )
        args = parse_arguments(call)
        return await invoker(args)

    async def _emit(self, event_type: EventType, data: dict[str, Any]) -> None:
        if self._event_bus:
            await self._event_bus.emit(TurnEvent(type=event_type, data=data))
