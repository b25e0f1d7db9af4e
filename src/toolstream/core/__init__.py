"""Turn orchestration for toolstream."""

from toolstream.core.executor import Executor
from toolstream.core.handle import TurnCallbacks, TurnHandle, start_turn
from toolstream.core.orchestrator import ChatOrchestrator, Turn, TurnResult, TurnState

__all__ = [
    "ChatOrchestrator",
    "Executor",
    "Turn",
    "TurnCallbacks",
    "TurnHandle",
    "TurnResult",
    "TurnState",
    "start_turn",
]
