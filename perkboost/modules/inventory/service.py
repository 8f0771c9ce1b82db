"""
InventoryService - per-player perk ownership ledger.

Purpose
-------
Track how many units of each perk a player owns and whether it is equipped,
and gate consumption so the last unit of a consumable can be spent exactly
once.

Responsibilities
----------------
- Read a player's inventory with perk detail
- Grant perks atomically (all items or none)
- Validate ownership and consume one unit inside the caller's transaction
- Equip / unequip owned perks

Concurrency
-----------
- Grants and consumption lock the (player, perk) ownership row.
- Every quantity change is a single SQL ``UPDATE`` computed in the database,
  and a consumption is additionally guarded by ``quantity > 0``. Correctness
  therefore does not depend on the store honouring ``FOR UPDATE``: a guarded
  update that matches no row means another transaction took the last unit.
- A first-time grant that loses the unique-constraint race to a concurrent
  grant retries as an increment inside a savepoint.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping, Optional

from sqlalchemy.exc import IntegrityError

from perkboost.core.database.base import utc_now
from perkboost.core.database.retry_policy import DatabaseRetryPolicy
from perkboost.core.database.service import DatabaseService
from perkboost.core.logging.logger import get_logger
from perkboost.database.models import Perk, PerkEventType, PlayerPerk
from perkboost.modules.shared.base_repository import BaseRepository
from perkboost.modules.shared.base_service import BaseService
from perkboost.modules.shared.exceptions import (
    NotFoundError,
    OwnershipError,
    ValidationError,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from perkboost.core.config.manager import ConfigManager
    from perkboost.core.event.bus import EventBus
    from perkboost.modules.analytics.service import PerkAnalyticsService

logger = get_logger(__name__)


@dataclass(frozen=True)
class GrantItem:
    perk_id: int
    quantity: int


class InventoryService(BaseService):
    """
    Ownership ledger.

    Examples
    --------
    >>> await inventory.grant_perks("p1", [{"perk_id": 3, "quantity": 2}])
    >>> async with DatabaseService.get_transaction() as session:
    ...     await inventory.consume("p1", 3, session=session)
    """

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
        self._ownership_repo = BaseRepository[PlayerPerk](PlayerPerk, self.log)
        self._perk_repo = BaseRepository[Perk](Perk, self.log)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_inventory(self, player_id: str) -> list[PlayerPerk]:
        """Ownership rows for ``player_id`` with perk detail, most recently acquired first."""
        player_id = self.validate_identifier(player_id, "player_id")
        async with DatabaseService.get_session() as session:
            return await self._ownership_repo.find_many_where(
                session,
                PlayerPerk.player_id == player_id,
                eager_load=[PlayerPerk.perk],
                order_by=[PlayerPerk.acquired_at.desc(), PlayerPerk.perk_id],
            )

    async def validate_ownership(
        self,
        player_id: str,
        perk_id: int,
        *,
        session: Optional[AsyncSession] = None,
        for_update: bool = False,
    ) -> PlayerPerk:
        """
        Return the ownership row, perk detail loaded.

        With ``session`` the lookup joins the caller's transaction;
        ``for_update`` locks the row for the rest of it.

        Raises:
            OwnershipError: No row, or quantity <= 0
        """
        player_id = self.validate_identifier(player_id, "player_id")
        if session is None:
            async with DatabaseService.get_session() as own_session:
                return await self._load_owned(own_session, player_id, perk_id, for_update=False)
        return await self._load_owned(session, player_id, perk_id, for_update=for_update)

    async def _load_owned(
        self,
        session: AsyncSession,
        player_id: str,
        perk_id: int,
        *,
        for_update: bool,
    ) -> PlayerPerk:
        row = await self._ownership_repo.find_one_where(
            session,
            PlayerPerk.player_id == player_id,
            PlayerPerk.perk_id == perk_id,
            eager_load=[PlayerPerk.perk],
            for_update=for_update,
        )
        if row is None:
            raise OwnershipError(player_id, perk_id)
        if row.quantity <= 0:
            raise OwnershipError(player_id, perk_id, quantity=row.quantity)
        return row

    # -------------------------------------------------------------------------
    # Consumption
    # -------------------------------------------------------------------------

    async def consume(self, player_id: str, perk_id: int, *, session: AsyncSession) -> PlayerPerk:
        """
        Spend one unit inside the caller's transaction.

        The caller's transaction must also create whatever the unit pays for,
        so a failure after this call rolls the decrement back with it.

        Raises:
            OwnershipError: No row, quantity 0, or the last unit was taken
                by a concurrent transaction
        """
        row = await self._load_owned(session, player_id, perk_id, for_update=True)

        updated = await self._ownership_repo.update_where(
            session,
            PlayerPerk.id == row.id,
            PlayerPerk.quantity > 0,
            values={"quantity": PlayerPerk.quantity - 1, "updated_at": self.now()},
        )
        if updated == 0:
            raise OwnershipError(player_id, perk_id, quantity=0)

        await self._ownership_repo.refresh(session, row, ["quantity", "updated_at"])

        self.log.info(
            "Perk unit consumed",
            extra={"player_id": player_id, "perk_id": perk_id, "remaining_quantity": row.quantity},
        )
        return row

    # -------------------------------------------------------------------------
    # Grants
    # -------------------------------------------------------------------------

    def _normalize_items(self, items: Iterable[Mapping[str, Any]]) -> list[GrantItem]:
        normalized: list[GrantItem] = []
        for index, item in enumerate(items):
            if not isinstance(item, Mapping):
                raise ValidationError(f"items[{index}]", "each item must be a mapping")
            perk_id = item.get("perk_id", item.get("perkId"))
            quantity = item.get("quantity")
            normalized.append(
                GrantItem(
                    perk_id=self.validate_positive_int(perk_id, f"items[{index}].perk_id"),
                    quantity=self.validate_positive_int(quantity, f"items[{index}].quantity"),
                )
            )
        return normalized

    async def grant_perks(
        self,
        player_id: str,
        items: Iterable[Mapping[str, Any]],
        *,
        session: Optional[AsyncSession] = None,
        source: Optional[str] = None,
    ) -> list[PlayerPerk]:
        """
        Add ``quantity`` units of each listed perk to ``player_id``'s inventory.

        Args:
            player_id: Receiving player
            items: ``[{"perk_id": int, "quantity": int}, ...]``
            session: Join the caller's transaction instead of opening one.
                Purchase analytics are then left to the caller, who owns the commit.
            source: Free-form origin tag for analytics ("shop", "reward", ...)

        Returns:
            The ownership rows after the grant, in item order.

        Raises:
            ValidationError: Non-positive quantity or malformed item
            NotFoundError: Unknown perk id; nothing is granted
        """
        player_id = self.validate_identifier(player_id, "player_id")
        grant_items = self._normalize_items(items)
        if not grant_items:
            return []

        if session is not None:
            rows, _ = await self._grant_in_session(session, player_id, grant_items)
            return rows

        async def operation() -> tuple[list[PlayerPerk], list[Perk]]:
            async with DatabaseService.get_transaction() as own_session:
                return await self._grant_in_session(own_session, player_id, grant_items)

        rows, perks = await self._retry.execute(
            operation,
            operation_name="inventory.grant_perks",
            context={"player_id": player_id},
        )

        self.log_operation(
            "inventory.grant_perks",
            player_id=player_id,
            item_count=len(grant_items),
            source=source,
        )

        if self._analytics is not None:
            for item, perk in zip(grant_items, perks):
                await self._analytics.log_event(
                    item.perk_id,
                    player_id,
                    PerkEventType.PURCHASE,
                    revenue=float(perk.price or 0) * item.quantity,
                    metadata={"quantity": item.quantity, "source": source},
                )

        return rows

    async def _grant_in_session(
        self,
        session: AsyncSession,
        player_id: str,
        items: list[GrantItem],
    ) -> tuple[list[PlayerPerk], list[Perk]]:
        rows: list[PlayerPerk] = []
        perks: list[Perk] = []
        for item in items:
            perk = await self._perk_repo.get(session, item.perk_id)
            if perk is None:
                raise NotFoundError("Perk", item.perk_id)
            rows.append(await self._grant_one(session, player_id, item, perk))
            perks.append(perk)
        return rows, perks

    async def _grant_one(
        self, session: AsyncSession, player_id: str, item: GrantItem, perk: Perk
    ) -> PlayerPerk:
        row = await self._find_locked(session, player_id, item.perk_id)

        if row is None:
            try:
                async with session.begin_nested():
                    row = PlayerPerk(
                        player_id=player_id,
                        perk=perk,
                        quantity=item.quantity,
                        is_equipped=False,
                        acquired_at=self.now(),
                    )
                    self._ownership_repo.add(session, row)
                return row
            except IntegrityError:
                # A concurrent first grant created the row; increment it instead.
                self.log.info(
                    "Ownership row created concurrently; retrying as increment",
                    extra={"player_id": player_id, "perk_id": item.perk_id},
                )
                row = await self._find_locked(session, player_id, item.perk_id)
                if row is None:
                    raise

        await self._ownership_repo.update_where(
            session,
            PlayerPerk.id == row.id,
            values={"quantity": PlayerPerk.quantity + item.quantity, "updated_at": self.now()},
        )
        await self._ownership_repo.refresh(session, row, ["quantity", "updated_at"])
        return row

    async def _find_locked(
        self, session: AsyncSession, player_id: str, perk_id: int
    ) -> Optional[PlayerPerk]:
        return await self._ownership_repo.find_one_where(
            session,
            PlayerPerk.player_id == player_id,
            PlayerPerk.perk_id == perk_id,
            eager_load=[PlayerPerk.perk],
            for_update=True,
        )

    # -------------------------------------------------------------------------
    # Equip
    # -------------------------------------------------------------------------

    async def equip(self, player_id: str, perk_id: int) -> PlayerPerk:
        return await self._set_equipped(player_id, perk_id, True)

    async def unequip(self, player_id: str, perk_id: int) -> PlayerPerk:
        return await self._set_equipped(player_id, perk_id, False)

    async def _set_equipped(self, player_id: str, perk_id: int, equipped: bool) -> PlayerPerk:
        player_id = self.validate_identifier(player_id, "player_id")
        operation_name = "inventory.equip" if equipped else "inventory.unequip"

        async def operation() -> PlayerPerk:
            async with DatabaseService.get_transaction() as session:
                owned = await self._load_owned(session, player_id, perk_id, for_update=True)
                owned.is_equipped = equipped
                await session.flush()
                return owned

        row = await self._retry.execute(
            operation,
            operation_name=operation_name,
            context={"player_id": player_id, "perk_id": perk_id},
        )

        self.log_operation(operation_name, player_id=player_id, perk_id=perk_id)
        return row
