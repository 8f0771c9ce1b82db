"""
EventBus: async pub/sub for boost lifecycle events.

Purpose
-------
Decouple the engine's state changes (activation, expiry) from their
consumers (notifications, analytics, game-rule hooks). Publishers call
`publish` after their transaction has committed; listeners never see
uncommitted state.

Responsibilities
----------------
- Register and remove listeners by exact name or ``*`` pattern
- Deliver each event to every matching listener in priority tiers
  (see `perkboost.core.event.dispatch`)
- Keep listener failures away from the publisher
- Count publishes, failures and timeouts per event

Design Notes
------------
- Instance-based: the application context owns one bus; tests build their own.
- Listener timeouts come from ``core.event.listener_timeout.*`` when a
  ConfigManager is supplied; explicit arguments win.
- Single-loop asyncio only; the registry is mutated between awaits.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from perkboost.core.event.dispatch import TieredDispatcher
from perkboost.core.event.registry import ListenerRegistry
from perkboost.core.event.types import (
    CallbackType,
    EventListener,
    EventPayload,
    ListenerPriority,
)
from perkboost.core.logging.logger import LogContext, get_log_context, get_logger

if TYPE_CHECKING:
    from perkboost.core.config.manager import ConfigManager

logger = get_logger(__name__)

DEFAULT_TIMEOUTS: dict[ListenerPriority, float] = {
    ListenerPriority.CRITICAL: 5.0,
    ListenerPriority.HIGH: 10.0,
}

_TIMEOUT_KEYS: dict[ListenerPriority, str] = {
    ListenerPriority.CRITICAL: "core.event.listener_timeout.critical_seconds",
    ListenerPriority.HIGH: "core.event.listener_timeout.high_seconds",
}


@dataclass(frozen=True)
class EventStats:
    """Point-in-time copy of the bus counters."""

    published: dict[str, int] = field(default_factory=dict)
    failures: dict[str, int] = field(default_factory=dict)
    timeouts: dict[str, int] = field(default_factory=dict)
    listener_count: int = 0
    background_tasks: int = 0

    @property
    def total_published(self) -> int:
        return sum(self.published.values())

    @property
    def total_failures(self) -> int:
        return sum(self.failures.values())

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_published": self.total_published,
            "total_failures": self.total_failures,
            "published": dict(self.published),
            "failures": dict(self.failures),
            "timeouts": dict(self.timeouts),
            "listener_count": self.listener_count,
            "background_tasks": self.background_tasks,
        }


class EventBus:
    """
    Publish/subscribe hub with tiered listener execution.

    Examples
    --------
    >>> bus = EventBus(config_manager)
    >>> bus.subscribe("boost.expired", on_expired, priority=ListenerPriority.HIGH)
    >>> await bus.publish("boost.expired", {"player_id": "p1", "boost_id": 7})
    """

    def __init__(
        self,
        config_manager: Optional[ConfigManager] = None,
        *,
        critical_timeout_seconds: Optional[float] = None,
        high_timeout_seconds: Optional[float] = None,
        track_stats: bool = True,
    ) -> None:
        self._config_manager = config_manager
        self._registry = ListenerRegistry()
        self._track_stats = track_stats
        self._published: Counter[str] = Counter()
        self._failures: Counter[str] = Counter()
        self._timeouts: Counter[str] = Counter()

        overrides = {
            ListenerPriority.CRITICAL: critical_timeout_seconds,
            ListenerPriority.HIGH: high_timeout_seconds,
        }
        self._listener_timeouts = {
            priority: self._resolve_timeout(priority, overrides[priority])
            for priority in DEFAULT_TIMEOUTS
        }
        self._dispatcher = TieredDispatcher(
            logger, timeouts=self._listener_timeouts, on_failure=self._record_failure
        )

        logger.debug(
            "EventBus initialized",
            extra={
                "track_stats": track_stats,
                "critical_timeout_seconds": self._listener_timeouts[ListenerPriority.CRITICAL],
                "high_timeout_seconds": self._listener_timeouts[ListenerPriority.HIGH],
            },
        )

    def _resolve_timeout(self, priority: ListenerPriority, override: Optional[float]) -> float:
        default = DEFAULT_TIMEOUTS[priority]
        if override is not None:
            return float(override)
        if self._config_manager is None:
            return default

        key = _TIMEOUT_KEYS[priority]
        value = self._config_manager.get(key, default)
        try:
            return float(value)
        except (TypeError, ValueError):
            logger.warning(
                "Invalid listener timeout in config, using default",
                extra={"config_key": key, "config_value": value, "default_value": default},
            )
            return default

    def listener_timeout(self, priority: ListenerPriority) -> Optional[float]:
        """Timeout applied to ``priority`` listeners; None for untimed tiers."""
        return self._listener_timeouts.get(priority)

    @staticmethod
    def _check_signature(callback: CallbackType) -> None:
        try:
            parameters = inspect.signature(callback).parameters
        except (TypeError, ValueError):
            # Some builtins expose no signature.
            return

        if len(parameters) != 1:
            name = getattr(callback, "__qualname__", None) or repr(callback)
            raise ValueError(
                f"Event listener '{name}' must take exactly one parameter "
                f"(the payload), not {len(parameters)}"
            )

    # ------------------------------------------------------------------ #
    # Subscriptions
    # ------------------------------------------------------------------ #

    def subscribe(
        self,
        event_name: str,
        callback: CallbackType,
        *,
        priority: ListenerPriority = ListenerPriority.NORMAL,
        identifier: Optional[str] = None,
        once: bool = False,
        allow_duplicates: bool = False,
    ) -> str:
        """
        Subscribe ``callback`` to ``event_name`` (exact name or ``*`` pattern).

        Returns the listener identifier for `unsubscribe`. Re-subscribing an
        identifier already registered under the same name is a logged no-op.

        Raises
        ------
        ValueError
            If ``callback`` does not take exactly one parameter.
        """
        self._check_signature(callback)
        listener = EventListener.create(event_name, callback, priority, identifier, once)

        if self._registry.add(listener, allow_duplicates=allow_duplicates):
            logger.debug(
                "Listener subscribed",
                extra={
                    "event_name": event_name,
                    "listener_id": listener.identifier,
                    "priority": priority.name,
                    "once": once,
                },
            )
        else:
            logger.warning(
                "Duplicate listener ignored",
                extra={"event_name": event_name, "listener_id": listener.identifier},
            )
        return listener.identifier

    def unsubscribe(self, event_name: str, identifier: str) -> bool:
        removed = self._registry.remove(event_name, identifier)
        if removed:
            logger.debug(
                "Listener unsubscribed",
                extra={"event_name": event_name, "listener_id": identifier},
            )
        return removed > 0

    def clear(self) -> None:
        removed = self._registry.clear()
        logger.info("All listeners cleared", extra={"removed": removed})

    def listener_count(self, event_name: Optional[str] = None) -> int:
        """Listeners in total, or those a publish of ``event_name`` would reach."""
        if event_name is None:
            return len(self._registry)
        return len(self._registry.matching(event_name))

    def subscribed_names(self) -> list[str]:
        return self._registry.names()

    # ------------------------------------------------------------------ #
    # Publishing
    # ------------------------------------------------------------------ #

    async def publish(self, event_name: str, data: EventPayload) -> list[Any]:
        """
        Deliver ``data`` to every listener matching ``event_name``.

        Returns the results of the awaited tiers in execution order; failed
        listeners contribute ``None`` and LOW listeners contribute nothing.
        """
        if self._track_stats:
            self._published[event_name] += 1

        # Event tags are scoped to this publish; the caller's correlation id carries over.
        async with LogContext(
            correlation_id=get_log_context().get("correlation_id"),
            player_id=data.get("player_id"),
            game_id=data.get("game_id"),
            event_name=event_name,
            event_keys=sorted(data),
        ):
            listeners = self._registry.take(event_name)
            if not listeners:
                logger.debug("No listeners for event", extra={"event_name": event_name})
                return []

            logger.debug(
                "Publishing event",
                extra={"event_name": event_name, "listener_count": len(listeners)},
            )
            return await self._dispatcher.dispatch(event_name, data, listeners)

    async def drain(self) -> None:
        """Wait for LOW-priority listeners still running in the background."""
        await self._dispatcher.drain()

    # ------------------------------------------------------------------ #
    # Stats
    # ------------------------------------------------------------------ #

    def _record_failure(
        self, event_name: str, listener: EventListener, exc: BaseException
    ) -> None:
        if not self._track_stats:
            return
        self._failures[event_name] += 1
        if isinstance(exc, asyncio.TimeoutError):
            self._timeouts[event_name] += 1

    def stats(self) -> Optional[EventStats]:
        if not self._track_stats:
            return None
        return EventStats(
            published=dict(self._published),
            failures=dict(self._failures),
            timeouts=dict(self._timeouts),
            listener_count=len(self._registry),
            background_tasks=self._dispatcher.pending_background,
        )
