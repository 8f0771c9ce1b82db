"""
Boost Notification Consumer

Purpose
-------
Forward ``boost.activated`` and ``boost.expired`` events to the real-time
notifier so players see their boosts start and end.

Consumes
--------
- ``boost.activated``: {player_id, game_id, boost_id, perk_id}
- ``boost.expired``: {player_id, game_id, boost_id, perk_id, perk_name}

Non-Responsibilities
--------------------
- Delivery transport (the `Notifier` implementation owns it)
- Retries: notifications are advisory and a failure is logged by the bus

Example Usage
-------------
>>> consumer = BoostNotificationConsumer(event_bus, LoggingNotifier())
>>> await consumer.start()
>>> await consumer.stop()
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional, Protocol, runtime_checkable

from perkboost.core.event.types import ListenerPriority
from perkboost.core.logging.logger import get_logger
from perkboost.modules.boosts.events import BOOST_ACTIVATED, BOOST_EXPIRED

if TYPE_CHECKING:
    from perkboost.core.event.bus import EventBus

logger = get_logger(__name__)


@runtime_checkable
class Notifier(Protocol):
    """Delivers one event to one player's connected clients."""

    async def send_to_player(
        self, player_id: str, event_name: str, payload: Dict[str, Any]
    ) -> None: ...


class LoggingNotifier:
    """Notifier that only logs; the default when no transport is wired."""

    async def send_to_player(
        self, player_id: str, event_name: str, payload: Dict[str, Any]
    ) -> None:
        logger.info(
            "Player notification",
            extra={"player_id": player_id, "event_name": event_name, "payload": payload},
        )


class BoostNotificationConsumer:
    LISTENER_PREFIX = "notifications.boost"

    def __init__(self, event_bus: EventBus, notifier: Optional[Notifier] = None) -> None:
        self._event_bus = event_bus
        self._notifier: Notifier = notifier or LoggingNotifier()
        self._subscriptions: dict[str, str] = {}
        self._delivered: int = 0

    @property
    def is_running(self) -> bool:
        return bool(self._subscriptions)

    @property
    def delivered_count(self) -> int:
        return self._delivered

    async def start(self) -> None:
        if self.is_running:
            logger.warning("BoostNotificationConsumer already running")
            return

        handlers = {
            BOOST_ACTIVATED: self._on_boost_activated,
            BOOST_EXPIRED: self._on_boost_expired,
        }
        for event_name, handler in handlers.items():
            self._subscriptions[event_name] = self._event_bus.subscribe(
                event_name,
                handler,
                priority=ListenerPriority.NORMAL,
                identifier=f"{self.LISTENER_PREFIX}@{event_name}",
            )

        logger.info(
            "BoostNotificationConsumer started",
            extra={"event_names": sorted(self._subscriptions)},
        )

    async def stop(self) -> None:
        for event_name, identifier in self._subscriptions.items():
            self._event_bus.unsubscribe(event_name, identifier)
        self._subscriptions.clear()
        logger.info("BoostNotificationConsumer stopped", extra={"delivered": self._delivered})

    async def _on_boost_activated(self, payload: Dict[str, Any]) -> None:
        await self._forward(BOOST_ACTIVATED, payload)

    async def _on_boost_expired(self, payload: Dict[str, Any]) -> None:
        await self._forward(BOOST_EXPIRED, payload)

    async def _forward(self, event_name: str, payload: Dict[str, Any]) -> None:
        player_id = payload.get("player_id")
        if player_id is None:
            logger.warning(
                "Boost event without player_id; not notifying",
                extra={"event_name": event_name, "payload_keys": sorted(payload)},
            )
            return

        await self._notifier.send_to_player(str(player_id), event_name, dict(payload))
        self._delivered += 1
