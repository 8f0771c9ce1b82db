"""
PerkAnalyticsService - advisory event sink for perk activity.

Records purchase, activation, usage and expiration events as
`PerkAnalyticsEvent` rows. Every write runs in its own transaction after the
business transaction has committed, and a failed write is logged and
reported as ``False``; it never fails the operation that triggered it.

Reporting queries over these rows belong to the external analytics side.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

from perkboost.core.database.base import utc_now
from perkboost.core.database.service import DatabaseService
from perkboost.core.logging.logger import get_logger
from perkboost.database.models import PerkAnalyticsEvent, PerkEventType
from perkboost.modules.shared.base_repository import BaseRepository
from perkboost.modules.shared.base_service import BaseService

if TYPE_CHECKING:
    from perkboost.core.config.manager import ConfigManager
    from perkboost.core.event.bus import EventBus

logger = get_logger(__name__)


class PerkAnalyticsService(BaseService):
    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        super().__init__(config_manager, event_bus, logger, clock=clock)
        self._event_repo = BaseRepository[PerkAnalyticsEvent](PerkAnalyticsEvent, self.log)

    @property
    def enabled(self) -> bool:
        return self._config.get_bool("analytics.enabled", True)

    async def log_event(
        self,
        perk_id: int,
        player_id: str,
        event_type: Union[PerkEventType, str],
        *,
        game_id: Optional[str] = None,
        revenue: float = 0,
        metadata: Optional[dict[str, Any]] = None,
    ) -> bool:
        """
        Persist one analytics event.

        Returns
        -------
        bool
            True when the row was written; False when analytics is disabled
            or the write failed.
        """
        if not self.enabled:
            return False

        try:
            event = PerkAnalyticsEvent(
                perk_id=perk_id,
                player_id=str(player_id),
                game_id=str(game_id) if game_id is not None else None,
                event_type=PerkEventType(event_type),
                revenue=revenue or 0,
                event_metadata=dict(metadata or {}),
                created_at=self.now(),
            )
            async with DatabaseService.get_transaction() as session:
                self._event_repo.add(session, event)
        except Exception as exc:
            # Analytics is advisory; the triggering operation already committed.
            self.log.warning(
                "Failed to record perk analytics event",
                extra={
                    "perk_id": perk_id,
                    "player_id": str(player_id),
                    "event_type": str(getattr(event_type, "value", event_type)),
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
                exc_info=True,
            )
            return False

        self.log.debug(
            "Perk analytics event recorded",
            extra={
                "perk_id": perk_id,
                "player_id": str(player_id),
                "event_type": event.event_type.value,
            },
        )
        return True

    async def count_events(
        self,
        *,
        perk_id: Optional[int] = None,
        event_type: Optional[PerkEventType] = None,
    ) -> int:
        """Number of recorded events, optionally filtered; used by admin tooling and tests."""
        conditions = []
        if perk_id is not None:
            conditions.append(PerkAnalyticsEvent.perk_id == perk_id)
        if event_type is not None:
            conditions.append(PerkAnalyticsEvent.event_type == PerkEventType(event_type))
        async with DatabaseService.get_session() as session:
            return await self._event_repo.count(session, *conditions)
