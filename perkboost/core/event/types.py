"""
Event bus types.

Listeners run in priority tiers; the tier value is also the sort key, so
lower values run earlier:

- CRITICAL (0), HIGH (10): one at a time, awaited, each under a timeout
- NORMAL (50): together via ``asyncio.gather``, awaited
- LOW (100): background tasks the publisher does not wait for
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

EventPayload = dict[str, Any]

CallbackType = Union[
    Callable[[EventPayload], Any],
    Callable[[EventPayload], Awaitable[Any]],
]


class ListenerPriority(Enum):
    CRITICAL = 0
    HIGH = 10
    NORMAL = 50
    LOW = 100

    @property
    def awaited(self) -> bool:
        return self is not ListenerPriority.LOW


@dataclass(slots=True, frozen=True)
class EventListener:
    """
    One subscription.

    ``pattern`` is the exact event name or wildcard it was registered under;
    ``once`` listeners are dropped from the registry before they first run.
    """

    pattern: str
    callback: CallbackType
    priority: ListenerPriority
    identifier: str
    once: bool = False

    @property
    def sort_key(self) -> tuple[int, str]:
        return (self.priority.value, self.identifier)

    @classmethod
    def create(
        cls,
        pattern: str,
        callback: CallbackType,
        priority: ListenerPriority,
        identifier: Optional[str] = None,
        once: bool = False,
    ) -> EventListener:
        """
        Build a listener; without an ``identifier`` one is derived as
        ``module.qualname@pattern``.

        >>> EventListener.create("boost.expired", on_expired, ListenerPriority.NORMAL).identifier
        'perkboost.modules.notifications.on_expired@boost.expired'
        """
        if identifier is None:
            module = getattr(callback, "__module__", None) or "unknown"
            name = getattr(callback, "__qualname__", None) or getattr(
                callback, "__name__", type(callback).__name__
            )
            identifier = f"{module}.{name}@{pattern}"
        return cls(pattern, callback, priority, identifier, once)
