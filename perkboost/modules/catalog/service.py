"""
PerkCatalogService - read access and admin edits for the perk catalog.

The engine only reads perks; creation and enable/disable are admin
operations. Every metadata bag is validated through `PerkEffect` before it
is stored, so activation never meets an unusable perk it could have
rejected earlier.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional, Union

from perkboost.core.database.base import utc_now
from perkboost.core.database.service import DatabaseService
from perkboost.core.logging.logger import get_logger
from perkboost.database.models import DurationClass, Perk
from perkboost.modules.catalog.effects import PerkEffect
from perkboost.modules.shared.base_repository import BaseRepository
from perkboost.modules.shared.base_service import BaseService
from perkboost.modules.shared.exceptions import NotFoundError, ValidationError

if TYPE_CHECKING:
    from perkboost.core.config.manager import ConfigManager
    from perkboost.core.event.bus import EventBus

logger = get_logger(__name__)


class PerkCatalogService(BaseService):
    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        super().__init__(config_manager, event_bus, logger, clock=clock)
        self._perk_repo = BaseRepository[Perk](Perk, self.log)

    async def get_perk(self, perk_id: int) -> Perk:
        """
        Raises:
            NotFoundError: If no perk has ``perk_id``
        """
        async with DatabaseService.get_session() as session:
            perk = await self._perk_repo.get(session, perk_id)
        if perk is None:
            raise NotFoundError("Perk", perk_id)
        return perk

    async def list_perks(self, active_only: bool = True) -> list[Perk]:
        conditions = [Perk.is_active.is_(True)] if active_only else []
        async with DatabaseService.get_session() as session:
            return await self._perk_repo.find_many_where(
                session, *conditions, order_by=[Perk.id]
            )

    async def create_perk(
        self,
        name: str,
        duration_class: Union[DurationClass, str],
        metadata: Mapping[str, Any],
        *,
        description: Optional[str] = None,
        price: float = 0,
        is_active: bool = True,
    ) -> Perk:
        """
        Add a perk to the catalog.

        The metadata bag is validated and stored in canonical form (aliases
        such as ``boostType`` are rewritten to ``effect_type``).

        Raises:
            ValidationError: Empty or duplicate name, unknown duration class,
                negative price
            InvalidPerkConfigurationError: Malformed metadata bag
        """
        name = (name or "").strip()
        if not name or len(name) > 100:
            raise ValidationError("name", "Perk name must be 1-100 characters")

        try:
            duration = DurationClass(str(getattr(duration_class, "value", duration_class)).upper())
        except ValueError:
            raise ValidationError(
                "duration_class", f"Unknown duration class {duration_class!r}"
            ) from None

        if isinstance(price, bool) or not isinstance(price, (int, float)) or price < 0:
            raise ValidationError("price", f"price must be a non-negative number, got {price!r}")

        effect = PerkEffect.from_metadata(metadata, duration)
        stored_metadata = {**dict(metadata), **effect.to_metadata()}
        for key, aliases in (
            ("effect_type", ("boost_type", "boostType")),
            ("stacking_rule", ("stackingRule",)),
            ("magnitude", ("value",)),
            ("duration_minutes", ("durationMinutes",)),
            ("is_stackable", ("isStackable",)),
        ):
            for alias in aliases:
                stored_metadata.pop(alias, None)

        async with DatabaseService.get_transaction() as session:
            existing = await self._perk_repo.find_one_where(session, Perk.name == name)
            if existing is not None:
                raise ValidationError("name", f"A perk named '{name}' already exists")

            perk = Perk(
                name=name,
                description=description,
                duration_class=duration,
                price=price,
                is_active=is_active,
                perk_metadata=stored_metadata,
            )
            self._perk_repo.add(session, perk)
            await session.flush()

        self.log_operation(
            "catalog.create_perk",
            perk_id=perk.id,
            perk_name=perk.name,
            duration_class=duration.value,
            effect_type=effect.effect_type.value,
        )
        return perk

    async def set_perk_active(self, perk_id: int, is_active: bool) -> Perk:
        """
        Enable or disable a perk. Disabling blocks new activations only;
        boosts already running keep their snapshot.
        """
        async with DatabaseService.get_transaction() as session:
            perk = await self._perk_repo.get(session, perk_id, for_update=True)
            if perk is None:
                raise NotFoundError("Perk", perk_id)
            perk.is_active = bool(is_active)

        self.log_operation("catalog.set_perk_active", perk_id=perk_id, is_active=bool(is_active))
        return perk
