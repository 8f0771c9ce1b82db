"""
BoostLifecycleService - retires boosts whose time has run out.

Sweep Flow (`run_once`)
-----------------------
1. Skip if a sweep is already running in this process; sweeps never overlap.
2. In one transaction, lock and load every boost with
   ``is_active AND expires_at IS NOT NULL AND expires_at < now``, perk
   included, then switch them all off with one bulk ``UPDATE`` using the same
   predicate.
3. After commit, publish ``boost.expired`` per boost in fetch order and record
   best-effort ``expiration`` analytics.

The transaction runs under `DatabaseRetryPolicy`. Any failure rolls the whole
sweep back and propagates; the rows are simply selected again on the next
run. A boost is published as expired only by the transaction that switched
it off, so repeated sweeps never repeat events.

Exhausted boosts (``remaining_uses`` reaching zero) are switched off by the
resolver in the decrementing transaction and need no sweep.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional

from perkboost.core.database.base import utc_now
from perkboost.core.database.retry_policy import DatabaseRetryPolicy
from perkboost.core.database.service import DatabaseService
from perkboost.core.logging.logger import get_logger
from perkboost.database.models import ActiveBoost, PerkEventType
from perkboost.modules.boosts.events import BOOST_EXPIRED
from perkboost.modules.shared.base_repository import BaseRepository
from perkboost.modules.shared.base_service import BaseService
from perkboost.modules.shared.exceptions import NotFoundError

if TYPE_CHECKING:
    from sqlalchemy import ColumnElement

    from perkboost.core.config.manager import ConfigManager
    from perkboost.core.event.bus import EventBus
    from perkboost.modules.analytics.service import PerkAnalyticsService

logger = get_logger(__name__)


@dataclass(frozen=True)
class SweepResult:
    skipped: bool = False
    expired_count: int = 0
    expired_boost_ids: tuple[int, ...] = ()


class BoostLifecycleService(BaseService):
    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        analytics: Optional[PerkAnalyticsService] = None,
        *,
        retry_policy: Optional[DatabaseRetryPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        super().__init__(config_manager, event_bus, logger, clock=clock)
        self._analytics = analytics
        self._retry = retry_policy or DatabaseRetryPolicy.from_config()
        self._boost_repo = BaseRepository[ActiveBoost](ActiveBoost, self.log)
        self._sweep_lock = asyncio.Lock()

    @property
    def is_sweeping(self) -> bool:
        return self._sweep_lock.locked()

    @staticmethod
    def _expiry_conditions(now: datetime) -> list[ColumnElement[bool]]:
        return [
            ActiveBoost.is_active.is_(True),
            ActiveBoost.expires_at.is_not(None),
            ActiveBoost.expires_at < now,
        ]

    async def run_once(self) -> SweepResult:
        """
        Run one sweep.

        Returns
        -------
        SweepResult
            ``skipped=True`` when another sweep was in progress; otherwise the
            number and ids of boosts this sweep expired.
        """
        if self._sweep_lock.locked():
            self.log.warning("Boost sweep already in progress; skipping")
            return SweepResult(skipped=True)

        async with self._sweep_lock:
            now = self.now()

            async def operation() -> tuple[list[ActiveBoost], int]:
                async with DatabaseService.get_transaction() as session:
                    candidates = await self._boost_repo.find_many_where(
                        session,
                        *self._expiry_conditions(now),
                        eager_load=[ActiveBoost.perk],
                        order_by=[ActiveBoost.expires_at, ActiveBoost.id],
                        for_update=True,
                    )
                    if not candidates:
                        return [], 0
                    rows = await self._boost_repo.update_where(
                        session,
                        *self._expiry_conditions(now),
                        values={"is_active": False, "deactivated_at": now, "updated_at": now},
                    )
                    return candidates, rows

            expired, updated = await self._retry.execute(operation, operation_name="boost.sweep")
            if not expired:
                self.log.debug("Boost sweep found nothing to expire")
                return SweepResult()

            self.log_operation(
                "boost.sweep",
                expired_count=len(expired),
                updated_rows=updated,
            )

            for boost in expired:
                await self._announce_expired(boost)

            return SweepResult(
                expired_count=len(expired),
                expired_boost_ids=tuple(b.id for b in expired),
            )

    async def expire_boost(self, boost_id: int) -> bool:
        """
        Force one boost to expire now, with the same event and analytics as a sweep.

        Returns
        -------
        bool
            True if this call expired the boost; False if it was already inactive.

        Raises
        ------
        NotFoundError
            Unknown boost id.
        """
        boost_id = self.validate_positive_int(boost_id, "boost_id")
        now = self.now()

        async def operation() -> tuple[ActiveBoost, int]:
            async with DatabaseService.get_transaction() as session:
                found = await self._boost_repo.get(
                    session, boost_id, eager_load=[ActiveBoost.perk], for_update=True
                )
                if found is None:
                    raise NotFoundError("ActiveBoost", boost_id)

                rows = 0
                if found.is_active:
                    rows = await self._boost_repo.update_where(
                        session,
                        ActiveBoost.id == boost_id,
                        ActiveBoost.is_active.is_(True),
                        values={"is_active": False, "deactivated_at": now, "updated_at": now},
                    )
                    if rows:
                        found.is_active = False
                        found.deactivated_at = now
                return found, rows

        boost, updated = await self._retry.execute(
            operation, operation_name="boost.expire", context={"boost_id": boost_id}
        )

        if not updated:
            self.log.debug("Boost already inactive; nothing to expire", extra={"boost_id": boost_id})
            return False

        self.log_operation("boost.expire", boost_id=boost_id, player_id=boost.player_id)
        await self._announce_expired(boost)
        return True

    async def _announce_expired(self, boost: ActiveBoost) -> None:
        await self.emit_event(
            BOOST_EXPIRED,
            {
                "player_id": boost.player_id,
                "game_id": boost.game_id,
                "boost_id": boost.id,
                "perk_id": boost.perk_id,
                "perk_name": boost.perk.name,
            },
        )

        if self._analytics is not None:
            await self._analytics.log_event(
                boost.perk_id,
                boost.player_id,
                PerkEventType.EXPIRATION,
                game_id=boost.game_id,
                metadata={"boost_id": boost.id},
            )
