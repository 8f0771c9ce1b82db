"""
StackingResolver - folds a player's live boosts into one modified value.

Purpose
-------
Answer "what is this value after boosts?" for one player, game and effect
type, and charge the boosts that contributed.

Resolution Flow
---------------
1. If the ``boosts_enabled`` toggle is off, return the base value untouched.
2. In one transaction, fetch (and lock where supported) every valid boost:
   ``is_active AND (expires_at IS NULL OR expires_at > now)
   AND (remaining_uses IS NULL OR remaining_uses > 0)`` for the effect type,
   ordered by ``(activated_at, id)``.
3. Fold them with `resolve_stack`.
4. Charge each contributing boost: one `BoostUsage` row, plus a guarded
   decrement for finite ``remaining_uses`` that also switches the boost off
   when the count reaches zero. A decrement that matches no row means a
   concurrent resolution spent the last use; that boost is dropped and the
   fold repeats without it.
5. After commit, record best-effort ``usage`` analytics per charged boost.

Validity is re-checked at read time, so correctness never depends on when the
lifecycle sweep last ran.

Charging Policy
---------------
Additive and multiplicative boosts are always charged. Of the HIGHEST_ONLY
group only the selected winner is charged unless
``boosts.resolver.charge_unselected_highest_only`` is true.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional, Union

from sqlalchemy import and_, case, or_

from perkboost.core.database.base import utc_now
from perkboost.core.database.retry_policy import DatabaseRetryPolicy
from perkboost.core.database.service import DatabaseService
from perkboost.core.logging.logger import LogContext, get_logger
from perkboost.database.models import ActiveBoost, BoostUsage, EffectType, PerkEventType
from perkboost.modules.boosts.strategies import StackEntry, StackResolution, resolve_stack
from perkboost.modules.shared.base_repository import BaseRepository
from perkboost.modules.shared.base_service import BaseService
from perkboost.modules.shared.exceptions import ValidationError
from perkboost.modules.shared.feature_toggles import BOOSTS_ENABLED, FeatureToggles

if TYPE_CHECKING:
    from sqlalchemy import ColumnElement
    from sqlalchemy.ext.asyncio import AsyncSession

    from perkboost.core.config.manager import ConfigManager
    from perkboost.core.event.bus import EventBus
    from perkboost.modules.analytics.service import PerkAnalyticsService

logger = get_logger(__name__)


@dataclass(frozen=True)
class BoostContext:
    """Who is asking, in which game, about which base value."""

    player_id: str
    game_id: str
    base_value: float
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BoostResolution:
    value: float
    base_value: float
    effect_type: str
    applied_boost_ids: tuple[int, ...] = ()
    charged_boost_ids: tuple[int, ...] = ()
    exhausted_boost_ids: tuple[int, ...] = ()


@dataclass
class _ChargeOutcome:
    charged: list[int] = field(default_factory=list)
    exhausted: list[int] = field(default_factory=list)
    perk_ids: dict[int, int] = field(default_factory=dict)


def normalize_effect_type(effect_type: Union[EffectType, str]) -> str:
    try:
        return EffectType(str(getattr(effect_type, "value", effect_type)).lower()).value
    except ValueError:
        raise ValidationError("effect_type", f"Unknown effect type {effect_type!r}") from None


class StackingResolver(BaseService):
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
        self._toggles = FeatureToggles(config_manager)
        self._boost_repo = BaseRepository[ActiveBoost](ActiveBoost, self.log)

    @staticmethod
    def _validity_conditions(
        player_id: str,
        game_id: str,
        effect_type: Optional[str],
        now: datetime,
    ) -> list[ColumnElement[bool]]:
        conditions: list[ColumnElement[bool]] = [
            ActiveBoost.player_id == player_id,
            ActiveBoost.game_id == game_id,
            ActiveBoost.is_active.is_(True),
            or_(ActiveBoost.expires_at.is_(None), ActiveBoost.expires_at > now),
            or_(ActiveBoost.remaining_uses.is_(None), ActiveBoost.remaining_uses > 0),
        ]
        if effect_type is not None:
            conditions.append(ActiveBoost.effect_type == effect_type)
        return conditions

    async def get_active_boosts(
        self,
        player_id: str,
        game_id: str,
        effect_type: Optional[Union[EffectType, str]] = None,
    ) -> list[ActiveBoost]:
        """
        Currently valid boosts, perk detail loaded, in ``(activated_at, id)`` order.

        Read-only; nothing is charged.
        """
        player_id = self.validate_identifier(player_id, "player_id")
        game_id = self.validate_identifier(game_id, "game_id")
        effect = normalize_effect_type(effect_type) if effect_type is not None else None

        async with DatabaseService.get_session() as session:
            return await self._boost_repo.find_many_where(
                session,
                *self._validity_conditions(player_id, game_id, effect, self.now()),
                eager_load=[ActiveBoost.perk],
                order_by=[ActiveBoost.activated_at, ActiveBoost.id],
            )

    async def calculate_modified_value(
        self, context: BoostContext, effect_type: Union[EffectType, str]
    ) -> float:
        """``base_value`` after every valid boost of ``effect_type``, full precision."""
        resolution = await self.resolve(context, effect_type)
        return resolution.value

    async def resolve(
        self, context: BoostContext, effect_type: Union[EffectType, str]
    ) -> BoostResolution:
        """
        Like `calculate_modified_value`, but also reports which boosts were
        applied, charged and exhausted.

        Raises
        ------
        ValidationError
            Unknown effect type, malformed ids or a non-numeric base value.
        ConcurrencyConflictError
            Lock contention outlasted every retry.
        """
        effect = normalize_effect_type(effect_type)
        if isinstance(context.base_value, bool) or not isinstance(context.base_value, (int, float)):
            raise ValidationError("base_value", f"base_value must be a number, got {context.base_value!r}")

        if not self._toggles.is_enabled(BOOSTS_ENABLED):
            return BoostResolution(
                value=float(context.base_value),
                base_value=float(context.base_value),
                effect_type=effect,
            )

        player_id = self.validate_identifier(context.player_id, "player_id")
        game_id = self.validate_identifier(context.game_id, "game_id")

        async with LogContext(player_id=player_id, game_id=game_id, operation="boost.resolve"):
            resolution, outcome = await self._retry.execute(
                lambda: self._resolve_once(player_id, game_id, context, effect),
                operation_name="boost.resolve",
                context={"player_id": player_id, "game_id": game_id, "effect_type": effect},
            )

            if outcome.charged:
                self.log.info(
                    "Boosts resolved",
                    extra={
                        "effect_type": effect,
                        "base_value": context.base_value,
                        "value": resolution.value,
                        "charged_boost_ids": outcome.charged,
                        "exhausted_boost_ids": outcome.exhausted,
                    },
                )

            if self._analytics is not None:
                for boost_id in outcome.charged:
                    await self._analytics.log_event(
                        outcome.perk_ids[boost_id],
                        player_id,
                        PerkEventType.USAGE,
                        game_id=game_id,
                        metadata={"boost_id": boost_id, "effect_type": effect},
                    )

        return BoostResolution(
            value=resolution.value,
            base_value=float(context.base_value),
            effect_type=effect,
            applied_boost_ids=tuple(resolution.applied),
            charged_boost_ids=tuple(outcome.charged),
            exhausted_boost_ids=tuple(outcome.exhausted),
        )

    def _keys_to_charge(self, resolution: StackResolution) -> set[Any]:
        keys = set(resolution.applied)
        if self._config.get_bool("boosts.resolver.charge_unselected_highest_only", False):
            keys.update(resolution.highest_candidates)
        return keys

    async def _resolve_once(
        self,
        player_id: str,
        game_id: str,
        context: BoostContext,
        effect: str,
    ) -> tuple[StackResolution, _ChargeOutcome]:
        now = self.now()
        outcome = _ChargeOutcome()

        async with DatabaseService.get_transaction() as session:
            candidates = await self._boost_repo.find_many_where(
                session,
                *self._validity_conditions(player_id, game_id, effect, now),
                order_by=[ActiveBoost.activated_at, ActiveBoost.id],
                for_update=True,
            )

            while True:
                resolution = resolve_stack(
                    context.base_value,
                    [StackEntry(b.id, b.stacking_rule, b.magnitude) for b in candidates],
                )
                to_charge = self._keys_to_charge(resolution)

                lost: set[int] = set()
                for boost in candidates:
                    if boost.id not in to_charge or boost.id in outcome.perk_ids:
                        continue
                    if not await self._charge(session, boost, context, now, outcome):
                        lost.add(boost.id)

                if not lost:
                    return resolution, outcome

                self.log.info(
                    "Boost uses claimed concurrently; re-folding without them",
                    extra={"lost_boost_ids": sorted(lost), "effect_type": effect},
                )
                candidates = [b for b in candidates if b.id not in lost]

    async def _charge(
        self,
        session: AsyncSession,
        boost: ActiveBoost,
        context: BoostContext,
        now: datetime,
        outcome: _ChargeOutcome,
    ) -> bool:
        """Record one use of ``boost``; False when the last use was already taken."""
        if boost.remaining_uses is not None:
            last_use = ActiveBoost.remaining_uses <= 1
            updated = await self._boost_repo.update_where(
                session,
                ActiveBoost.id == boost.id,
                and_(ActiveBoost.is_active.is_(True), ActiveBoost.remaining_uses > 0),
                values={
                    "remaining_uses": ActiveBoost.remaining_uses - 1,
                    "is_active": case((last_use, False), else_=True),
                    "deactivated_at": case((last_use, now), else_=ActiveBoost.deactivated_at),
                    "updated_at": now,
                },
            )
            if updated == 0:
                return False

            await self._boost_repo.refresh(
                session, boost, ["remaining_uses", "is_active", "deactivated_at"]
            )
            if not boost.is_active:
                outcome.exhausted.append(boost.id)

        session.add(
            BoostUsage(
                active_boost_id=boost.id,
                game_id=boost.game_id,
                player_id=boost.player_id,
                event_data=dict(context.metadata),
                created_at=now,
            )
        )
        outcome.charged.append(boost.id)
        outcome.perk_ids[boost.id] = boost.perk_id
        return True
