"""
BoostActivationService - turns an owned perk into a live boost.

State machine per ActiveBoost
-----------------------------
NONE -> ACTIVE -> {EXPIRED | EXHAUSTED}

Activation creates the ACTIVE row. EXPIRED is reached through the lifecycle
service, EXHAUSTED through the resolver's use decrement. Both are terminal.

Activation Flow
---------------
1. Check the ``perks_enabled`` feature toggle.
2. In one transaction: lock and validate ownership, reject disabled perks,
   parse the effect, consume one unit for CONSUMABLE perks and insert the
   ActiveBoost with its effect snapshot.
3. After commit: publish ``boost.activated`` and record an ``activation``
   analytics event (best-effort).

The transaction runs under `DatabaseRetryPolicy`; lock contention is retried
with backoff and surfaces as `ConcurrencyConflictError` once exhausted.
Client faults (ownership, inactive perk, bad catalog data) are never retried.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, Optional

from perkboost.core.database.base import utc_now
from perkboost.core.database.retry_policy import DatabaseRetryPolicy
from perkboost.core.database.service import DatabaseService
from perkboost.core.logging.logger import LogContext, get_logger
from perkboost.database.models import ActiveBoost, DurationClass, PerkEventType
from perkboost.modules.boosts.events import BOOST_ACTIVATED
from perkboost.modules.catalog.effects import PerkEffect
from perkboost.modules.shared.base_repository import BaseRepository
from perkboost.modules.shared.base_service import BaseService
from perkboost.modules.shared.exceptions import InactivePerkError, NotFoundError
from perkboost.modules.shared.feature_toggles import PERKS_ENABLED, FeatureToggles

if TYPE_CHECKING:
    from perkboost.core.config.manager import ConfigManager
    from perkboost.core.event.bus import EventBus
    from perkboost.modules.analytics.service import PerkAnalyticsService
    from perkboost.modules.inventory.service import InventoryService

logger = get_logger(__name__)


class BoostActivationService(BaseService):
    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        inventory: InventoryService,
        analytics: Optional[PerkAnalyticsService] = None,
        *,
        retry_policy: Optional[DatabaseRetryPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        super().__init__(config_manager, event_bus, logger, clock=clock)
        self._inventory = inventory
        self._analytics = analytics
        self._retry = retry_policy or DatabaseRetryPolicy.from_config()
        self._toggles = FeatureToggles(config_manager)
        self._boost_repo = BaseRepository[ActiveBoost](ActiveBoost, self.log)

    async def activate_perk(self, player_id: str, game_id: str, perk_id: int) -> ActiveBoost:
        """
        Activate ``perk_id`` for ``player_id`` in ``game_id``.

        Returns
        -------
        ActiveBoost
            The committed boost, perk detail attached.

        Raises
        ------
        FeatureDisabledError
            Perks are switched off.
        OwnershipError
            No ownership row or zero quantity, including losing the last
            unit of a consumable to a concurrent activation.
        InactivePerkError
            The catalog perk is disabled.
        InvalidPerkConfigurationError
            The perk's metadata bag cannot describe an effect.
        ConcurrencyConflictError
            Lock contention outlasted every retry.
        PersistenceError
            Any other store failure.
        """
        self._toggles.require(PERKS_ENABLED)
        player_id = self.validate_identifier(player_id, "player_id")
        game_id = self.validate_identifier(game_id, "game_id")
        perk_id = self.validate_positive_int(perk_id, "perk_id")

        async with LogContext(player_id=player_id, game_id=game_id, operation="boost.activate"):
            boost = await self._retry.execute(
                lambda: self._activate_once(player_id, game_id, perk_id),
                operation_name="boost.activate",
                context={"player_id": player_id, "game_id": game_id, "perk_id": perk_id},
            )

            self.log_operation(
                "boost.activate",
                boost_id=boost.id,
                perk_id=perk_id,
                effect_type=boost.effect_type,
                expires_at=boost.expires_at.isoformat() if boost.expires_at else None,
                remaining_uses=boost.remaining_uses,
            )

            await self.emit_event(
                BOOST_ACTIVATED,
                {
                    "player_id": player_id,
                    "game_id": game_id,
                    "boost_id": boost.id,
                    "perk_id": perk_id,
                },
            )

            if self._analytics is not None:
                await self._analytics.log_event(
                    perk_id,
                    player_id,
                    PerkEventType.ACTIVATION,
                    game_id=game_id,
                    metadata={"boost_id": boost.id},
                )

        return boost

    async def _activate_once(self, player_id: str, game_id: str, perk_id: int) -> ActiveBoost:
        now = self.now()

        async with DatabaseService.get_transaction() as session:
            ownership = await self._inventory.validate_ownership(
                player_id, perk_id, session=session, for_update=True
            )
            perk = ownership.perk
            if not perk.is_active:
                raise InactivePerkError(perk.id, perk.name)

            effect = PerkEffect.from_perk(perk)

            if perk.duration_class is DurationClass.CONSUMABLE:
                await self._inventory.consume(player_id, perk_id, session=session)

            boost = ActiveBoost(
                player_id=player_id,
                game_id=game_id,
                perk=perk,
                activated_at=now,
                expires_at=(
                    now + timedelta(minutes=effect.duration_minutes)
                    if perk.duration_class is DurationClass.TEMPORARY
                    else None
                ),
                remaining_uses=(
                    effect.uses if perk.duration_class is DurationClass.CONSUMABLE else None
                ),
                is_stackable=effect.is_stackable,
                is_active=True,
                effect_type=effect.effect_type.value,
                stacking_rule=effect.stacking_rule,
                magnitude=effect.magnitude,
            )
            self._boost_repo.add(session, boost)
            await session.flush()

        return boost

    async def deactivate_boost(self, boost_id: int) -> ActiveBoost:
        """
        Switch a boost off without touching inventory or publishing an event.

        Idempotent: an already inactive boost is returned unchanged.

        Raises
        ------
        NotFoundError
            Unknown boost id.
        """
        boost_id = self.validate_positive_int(boost_id, "boost_id")

        async def operation() -> ActiveBoost:
            async with DatabaseService.get_transaction() as session:
                boost = await self._boost_repo.get(session, boost_id, for_update=True)
                if boost is None:
                    raise NotFoundError("ActiveBoost", boost_id)
                if boost.is_active:
                    boost.is_active = False
                    boost.deactivated_at = self.now()
                    await session.flush()
                    self.log_operation(
                        "boost.deactivate", boost_id=boost_id, player_id=boost.player_id
                    )
                return boost

        return await self._retry.execute(
            operation, operation_name="boost.deactivate", context={"boost_id": boost_id}
        )
