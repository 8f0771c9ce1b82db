"""
Async event bus with tiered listener priorities and wildcard routing.
"""

from perkboost.core.event.bus import EventBus, EventStats
from perkboost.core.event.registry import event_matches
from perkboost.core.event.types import (
    CallbackType,
    EventListener,
    EventPayload,
    ListenerPriority,
)

__all__ = [
    "EventBus",
    "EventStats",
    "event_matches",
    "CallbackType",
    "EventListener",
    "EventPayload",
    "ListenerPriority",
]
