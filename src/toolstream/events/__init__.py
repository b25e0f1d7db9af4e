"""Event bus for toolstream."""

from toolstream.events.bus import EventBus

__all__ = ["EventBus"]
