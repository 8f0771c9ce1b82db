"""
Listener storage and event-name matching.

Exact names are looked up by key; patterns containing ``*`` are checked
against every published name, with ``*`` matching any run of characters,
dots included (``boost.*``, ``*.expired``, ``*``).
"""

from __future__ import annotations

from collections import defaultdict
from fnmatch import fnmatchcase

from perkboost.core.event.types import EventListener


def is_pattern(name: str) -> bool:
    return "*" in name


def event_matches(event_name: str, pattern: str) -> bool:
    """
    >>> event_matches("boost.expired", "boost.*")
    True
    >>> event_matches("boost.expired", "dice.*")
    False
    """
    if not is_pattern(pattern):
        return event_name == pattern
    # Only "*" is special in event patterns.
    escaped = pattern.replace("[", "[[]").replace("?", "[?]")
    return fnmatchcase(event_name, escaped)


class ListenerRegistry:
    """Listeners keyed by the name or pattern they were registered under."""

    def __init__(self) -> None:
        self._by_name: defaultdict[str, list[EventListener]] = defaultdict(list)

    def __len__(self) -> int:
        return sum(len(listeners) for listeners in self._by_name.values())

    def add(self, listener: EventListener, *, allow_duplicates: bool = False) -> bool:
        """False when ``listener.identifier`` is already registered under the same name."""
        bucket = self._by_name[listener.pattern]
        if not allow_duplicates and any(existing.identifier == listener.identifier for existing in bucket):
            return False
        bucket.append(listener)
        bucket.sort(key=lambda item: item.sort_key)
        return True

    def remove(self, pattern: str, identifier: str) -> int:
        bucket = self._by_name.get(pattern)
        if not bucket:
            return 0
        kept = [item for item in bucket if item.identifier != identifier]
        removed = len(bucket) - len(kept)
        if kept:
            self._by_name[pattern] = kept
        else:
            del self._by_name[pattern]
        return removed

    def clear(self) -> int:
        total = len(self)
        self._by_name.clear()
        return total

    def matching(self, event_name: str) -> list[EventListener]:
        return sorted(
            (
                listener
                for pattern, bucket in self._by_name.items()
                if event_matches(event_name, pattern)
                for listener in bucket
            ),
            key=lambda item: item.sort_key,
        )

    def take(self, event_name: str) -> list[EventListener]:
        """
        Listeners for ``event_name`` in dispatch order, with ``once``
        listeners removed before any of them runs.
        """
        listeners = self.matching(event_name)
        for listener in listeners:
            if listener.once:
                self.remove(listener.pattern, listener.identifier)
        return listeners

    def names(self) -> list[str]:
        return sorted(self._by_name)
