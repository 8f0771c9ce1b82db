"""
Integration tests for InventoryService: grants, ownership, consumption, equip.
"""

import asyncio

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from perkboost.core.database.service import DatabaseService
from perkboost.core.exceptions import ConcurrencyConflictError, PersistenceError
from perkboost.database.models import PerkAnalyticsEvent, PerkEventType, PlayerPerk
from perkboost.modules.shared.exceptions import NotFoundError, OwnershipError, ValidationError

pytestmark = [pytest.mark.integration, pytest.mark.database]


class TestGrantPerks:
    async def test_first_grant_creates_row(self, inventory, perk_factory):
        perk = await perk_factory(name="Speed Boost")

        rows = await inventory.grant_perks("p1", [{"perk_id": perk.id, "quantity": 2}])

        assert len(rows) == 1
        assert rows[0].quantity == 2
        assert rows[0].is_equipped is False
        assert rows[0].perk.name == "Speed Boost"

    async def test_repeat_grant_increments(self, inventory, perk_factory):
        perk = await perk_factory()

        await inventory.grant_perks("p1", [{"perk_id": perk.id, "quantity": 2}])
        rows = await inventory.grant_perks("p1", [{"perkId": perk.id, "quantity": 3}])

        assert rows[0].quantity == 5
        inventory_rows = await inventory.get_inventory("p1")
        assert [(r.perk_id, r.quantity) for r in inventory_rows] == [(perk.id, 5)]

    async def test_concurrent_first_grants_land_on_one_row(self, inventory, perk_factory):
        perk = await perk_factory()
        items = [{"perk_id": perk.id, "quantity": 1}]

        await asyncio.gather(*(inventory.grant_perks("p1", items) for _ in range(4)))

        rows = await inventory.get_inventory("p1")
        assert len(rows) == 1
        assert rows[0].quantity == 4

    async def test_unknown_perk_grants_nothing(self, inventory, perk_factory):
        perk = await perk_factory()

        with pytest.raises(NotFoundError):
            await inventory.grant_perks(
                "p1",
                [{"perk_id": perk.id, "quantity": 1}, {"perk_id": 999, "quantity": 1}],
            )

        assert await inventory.get_inventory("p1") == []

    @pytest.mark.parametrize(
        "items",
        [
            [{"perk_id": 1, "quantity": 0}],
            [{"perk_id": 1, "quantity": -3}],
            [{"perk_id": 1}],
            [{"quantity": 1}],
            ["not-a-mapping"],
        ],
    )
    async def test_malformed_items(self, inventory, items):
        with pytest.raises(ValidationError):
            await inventory.grant_perks("p1", items)

    async def test_empty_grant_is_a_no_op(self, inventory):
        assert await inventory.grant_perks("p1", []) == []

    async def test_grant_records_purchase_analytics(self, inventory, analytics, perk_factory):
        perk = await perk_factory(price=2.5)

        await inventory.grant_perks("p1", [{"perk_id": perk.id, "quantity": 2}], source="shop")

        async with DatabaseService.get_session() as session:
            events = (await session.execute(select(PerkAnalyticsEvent))).scalars().all()
        assert len(events) == 1
        assert events[0].event_type is PerkEventType.PURCHASE
        assert events[0].revenue == 5.0
        assert events[0].event_metadata == {"quantity": 2, "source": "shop"}

    async def test_grant_joins_caller_transaction(self, inventory, analytics, perk_factory):
        perk = await perk_factory()

        with pytest.raises(RuntimeError):
            async with DatabaseService.get_transaction() as session:
                await inventory.grant_perks("p1", [{"perk_id": perk.id, "quantity": 1}], session=session)
                raise RuntimeError("payment rejected")

        assert await inventory.get_inventory("p1") == []
        assert await analytics.count_events() == 0


class TestOwnership:
    async def test_validate_ownership(self, inventory, perk_factory, grant):
        perk = await perk_factory()
        await grant("p1", perk, 1)

        row = await inventory.validate_ownership("p1", perk.id)

        assert row.quantity == 1
        assert row.perk.id == perk.id

    async def test_not_owned(self, inventory, perk_factory):
        perk = await perk_factory()

        with pytest.raises(OwnershipError) as exc_info:
            await inventory.validate_ownership("p1", perk.id)

        assert exc_info.value.quantity is None

    async def test_consume_decrements_and_stops_at_zero(self, inventory, perk_factory, grant):
        perk = await perk_factory()
        await grant("p1", perk, 1)

        async with DatabaseService.get_transaction() as session:
            row = await inventory.consume("p1", perk.id, session=session)
            assert row.quantity == 0

        with pytest.raises(OwnershipError) as exc_info:
            async with DatabaseService.get_transaction() as session:
                await inventory.consume("p1", perk.id, session=session)

        assert exc_info.value.quantity == 0
        async with DatabaseService.get_session() as session:
            stored = (await session.execute(select(PlayerPerk))).scalar_one()
        assert stored.quantity == 0

    async def test_consume_rolls_back_with_caller(self, inventory, perk_factory, grant):
        perk = await perk_factory()
        await grant("p1", perk, 1)

        with pytest.raises(RuntimeError):
            async with DatabaseService.get_transaction() as session:
                await inventory.consume("p1", perk.id, session=session)
                raise RuntimeError("boost insert failed")

        assert (await inventory.validate_ownership("p1", perk.id)).quantity == 1


class TestEquip:
    async def test_equip_and_unequip(self, inventory, perk_factory, grant):
        perk = await perk_factory()
        await grant("p1", perk, 1)

        assert (await inventory.equip("p1", perk.id)).is_equipped is True
        assert (await inventory.get_inventory("p1"))[0].is_equipped is True
        assert (await inventory.unequip("p1", perk.id)).is_equipped is False

    async def test_equip_requires_ownership(self, inventory, perk_factory):
        perk = await perk_factory()

        with pytest.raises(OwnershipError):
            await inventory.equip("p1", perk.id)


class TestInventoryOrder:
    async def test_most_recent_acquisition_first(self, inventory, perk_factory, grant, clock):
        older = await perk_factory()
        newer = await perk_factory()

        await grant("p1", older, 1)
        clock.advance(minutes=1)
        await grant("p1", newer, 1)

        rows = await inventory.get_inventory("p1")

        assert [row.perk_id for row in rows] == [newer.id, older.id]


def locked(statement="SELECT player_perks"):
    return OperationalError(statement, {}, Exception("database is locked"))


class TestStoreFailures:
    async def test_grant_lock_contention_surfaces_as_conflict(
        self, inventory, perk_factory, mocker
    ):
        perk = await perk_factory()
        find = mocker.patch.object(
            inventory._ownership_repo, "find_one_where", side_effect=locked()
        )

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            await inventory.grant_perks("p1", [{"perk_id": perk.id, "quantity": 1}])

        assert exc_info.value.details["attempts"] == 3
        assert find.call_count == 3

    async def test_grant_store_failure_surfaces_as_persistence_error(
        self, inventory, perk_factory, mocker
    ):
        perk = await perk_factory()
        mocker.patch.object(
            inventory._perk_repo,
            "get",
            side_effect=OperationalError("SELECT perks", {}, Exception("disk I/O error")),
        )

        with pytest.raises(PersistenceError):
            await inventory.grant_perks("p1", [{"perk_id": perk.id, "quantity": 1}])

        assert await inventory.get_inventory("p1") == []

    async def test_equip_lock_contention_surfaces_as_conflict(
        self, inventory, perk_factory, grant, mocker
    ):
        perk = await perk_factory()
        await grant("p1", perk, 1)
        mocker.patch.object(inventory._ownership_repo, "find_one_where", side_effect=locked())

        with pytest.raises(ConcurrencyConflictError):
            await inventory.equip("p1", perk.id)

    async def test_equip_retries_transient_failure(self, inventory, perk_factory, grant, mocker):
        perk = await perk_factory()
        await grant("p1", perk, 1)
        original = inventory._ownership_repo.find_one_where
        failures = [locked()]

        async def flaky(*args, **kwargs):
            if failures:
                raise failures.pop()
            return await original(*args, **kwargs)

        find = mocker.patch.object(inventory._ownership_repo, "find_one_where", side_effect=flaky)

        row = await inventory.equip("p1", perk.id)

        assert row.is_equipped is True
        assert find.call_count == 2
