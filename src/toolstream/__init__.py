"""toolstream: streaming chat turns with OpenAPI-described tools."""

from toolstream.config import ProfileSpec, ToolstreamConfig, TurnSpec, load_config
from toolstream.core.handle import TurnCallbacks, TurnHandle, start_turn
from toolstream.core.orchestrator import ChatOrchestrator, TurnResult, TurnState
from toolstream.errors import (
    AdapterError,
    ProtocolError,
    ToolExecutionError,
    ToolstreamError,
    TransportError,
)
from toolstream.tools.registry import PluginSpec, ToolRegistry, ToolSet
from toolstream.types import FunctionCall, FunctionSchema, Message, ToolResult

__version__ = "0.1.0"

__all__ = [
    "AdapterError",
    "ChatOrchestrator",
    "FunctionCall",
    "FunctionSchema",
    "Message",
    "PluginSpec",
    "ProfileSpec",
    "ProtocolError",
    "ToolExecutionError",
    "ToolRegistry",
    "ToolResult",
    "ToolSet",
    "ToolstreamConfig",
    "ToolstreamError",
    "TransportError",
    "TurnCallbacks",
    "TurnHandle",
    "TurnResult",
    "TurnSpec",
    "TurnState",
    "load_config",
    "start_turn",
]
