"""Shared data types for toolstream."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Union


# ---------------------------------------------------------------------------
# Conversation types
# ---------------------------------------------------------------------------

@dataclass
class Message:
    """One entry of the running conversation."""

    role: str  # system, user, assistant, tool
    content: str | None = ""
    tool_call_id: str | None = None
    tool_calls: list[FunctionCall] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to the OpenAI-compatible wire shape."""
        data: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_call_id is not None:
            data["tool_call_id"] = self.tool_call_id
        if self.tool_calls:
            data["tool_calls"] = [c.to_dict() for c in self.tool_calls]
        return data

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Message:
        calls = raw.get("tool_calls")
        return cls(
            role=raw["role"],
            content=raw.get("content", ""),
            tool_call_id=raw.get("tool_call_id"),
            tool_calls=[FunctionCall.from_dict(c) for c in calls] if calls else None,
        )


# ---------------------------------------------------------------------------
# Tool-call types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FunctionCallFragment:
    """A partial tool call as delivered by one stream chunk."""

    index: int
    id: str | None = None
    name: str | None = None
    arguments_chunk: str = ""


@dataclass(frozen=True)
class FunctionCall:
    """A complete tool call assembled from fragments.

    ``arguments`` is kept as raw text; it is parsed only when invoked.
    """

    id: str
    name: str
    arguments: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> FunctionCall:
        func = raw.get("function", {})
        return cls(
            id=raw.get("id", ""),
            name=func.get("name", ""),
            arguments=func.get("arguments", ""),
        )


@dataclass(frozen=True)
class FunctionSchema:
    """Function-calling description of one tool operation."""

    name: str
    description: str
    parameters: dict[str, Any]

    def to_openai_schema(self) -> dict[str, Any]:
        """Convert to OpenAI function calling format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass
class ToolResult:
    """Result of a tool invocation."""

    success: bool
    output: str
    error: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> str:
        if self.success:
            return self.output
        if self.output:
            return f"[Tool Error] {self.error}\n{self.output}"
        return f"[Tool Error] {self.error}"


class Invoker(Protocol):
    """Callable bound to one tool operation."""

    async def __call__(self, arguments: Mapping[str, Any]) -> ToolResult: ...


# ---------------------------------------------------------------------------
# Decoded stream events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Thinking:
    text: str


@dataclass(frozen=True)
class Content:
    text: str


@dataclass(frozen=True)
class ToolFragment:
    fragment: FunctionCallFragment


@dataclass(frozen=True)
class Done:
    pass


DecodedEvent = Union[Thinking, Content, ToolFragment, Done]


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

class EventType(enum.Enum):
    """Event types emitted while a turn runs."""

    # Turn lifecycle
    TURN_STARTED = "turn.started"
    TURN_DONE = "turn.done"
    TURN_ERROR = "turn.error"
    TURN_CANCELLED = "turn.cancelled"

    # LLM events
    LLM_REQUEST = "llm.request"
    LLM_THINKING = "llm.thinking"
    LLM_CONTENT = "llm.content"

    # Tool events
    TOOL_CALL_ISSUED = "tool.call_issued"
    TOOL_EXECUTED = "tool.executed"
    TOOL_ERROR = "tool.error"


@dataclass
class TurnEvent:
    """Event emitted via the EventBus."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
