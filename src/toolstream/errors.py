"""Exception taxonomy for toolstream.

``ProtocolError`` and ``TransportError`` end a turn.  ``AdapterError`` keeps
a tool out of the active set.  ``ToolExecutionError`` never leaves the
executor: it is turned into a tool-result message the model can react to.
"""

from __future__ import annotations


class ToolstreamError(Exception):
    """Base class for all toolstream errors."""


class ProtocolError(ToolstreamError):
    """A response chunk did not have the expected shape."""


class TransportError(ToolstreamError):
    """Network failure, timeout, non-success status or explicit abort."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AdapterError(ToolstreamError):
    """A tool description could not be turned into callable functions."""


class ToolExecutionError(ToolstreamError):
    """A single tool call could not be executed."""

    def __init__(self, message: str, tool_name: str = "") -> None:
        super().__init__(message)
        self.tool_name = tool_name
