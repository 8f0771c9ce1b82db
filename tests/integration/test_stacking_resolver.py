"""
Integration tests for StackingResolver: validity, folding and charging.
"""

import asyncio

import pytest
from sqlalchemy import select

from perkboost.core.database.service import DatabaseService
from perkboost.database.models import ActiveBoost, BoostUsage, DurationClass, EffectType, PerkEventType
from perkboost.modules.boosts.resolver import BoostContext
from perkboost.modules.shared.exceptions import ValidationError

pytestmark = [pytest.mark.integration, pytest.mark.database]


@pytest.fixture
def activate(activation, perk_factory, grant):
    """Create a perk, grant one unit to ``player_id`` and activate it."""

    async def _activate(player_id="p1", game_id="g1", **perk_kwargs):
        perk = await perk_factory(**perk_kwargs)
        await grant(player_id, perk, 1)
        return await activation.activate_perk(player_id, game_id, perk.id)

    return _activate


async def usages():
    async with DatabaseService.get_session() as session:
        return (await session.execute(select(BoostUsage).order_by(BoostUsage.id))).scalars().all()


async def stored_boost(boost_id):
    async with DatabaseService.get_session() as session:
        return await session.get(ActiveBoost, boost_id)


class TestFolding:
    async def test_additive_boosts_sum(self, resolver, activate):
        for magnitude in (5, 3, 2):
            await activate(effect_type="cash_gain", stacking_rule="additive", magnitude=magnitude)

        value = await resolver.calculate_modified_value(BoostContext("p1", "g1", 10), EffectType.CASH_GAIN)

        assert value == 20

    async def test_multiplicative_boosts_multiply(self, resolver, activate):
        await activate(effect_type="rent", stacking_rule="multiplicative", magnitude=2)
        await activate(effect_type="rent", stacking_rule="multiplicative", magnitude=1.5)

        value = await resolver.calculate_modified_value(BoostContext("p1", "g1", 10), "rent")

        assert value == pytest.approx(30)

    async def test_highest_only_applies_once(self, resolver, activate):
        boosts = [
            await activate(effect_type="dice_roll", stacking_rule="highest_only", magnitude=m)
            for m in (1.2, 1.5, 1.1)
        ]

        resolution = await resolver.resolve(BoostContext("p1", "g1", 10), "DICE_ROLL")

        assert resolution.value == pytest.approx(15)
        assert resolution.applied_boost_ids == (boosts[1].id,)
        assert resolution.charged_boost_ids == (boosts[1].id,)

    async def test_unselected_highest_only_charged_when_configured(self, resolver, activate, config_manager):
        config_manager.set("boosts.resolver.charge_unselected_highest_only", True)
        boosts = [
            await activate(effect_type="dice_roll", stacking_rule="highest_only", magnitude=m)
            for m in (1.2, 1.5)
        ]

        resolution = await resolver.resolve(BoostContext("p1", "g1", 10), "dice_roll")

        assert resolution.value == pytest.approx(15)
        assert set(resolution.charged_boost_ids) == {b.id for b in boosts}

    async def test_only_matching_effect_player_and_game(self, resolver, activate):
        await activate(effect_type="speed", magnitude=1)
        await activate(effect_type="rent", magnitude=100)
        await activate(player_id="p2", effect_type="speed", magnitude=100)
        await activate(game_id="other-game", effect_type="speed", magnitude=100)

        assert await resolver.calculate_modified_value(BoostContext("p1", "g1", 5), "speed") == 6

    async def test_no_boosts_returns_base(self, resolver, database):
        resolution = await resolver.resolve(BoostContext("p1", "g1", 12.5), "speed")

        assert resolution.value == 12.5
        assert resolution.charged_boost_ids == ()

    async def test_boosts_disabled_returns_base(self, resolver, activate, config_manager):
        await activate(effect_type="speed", magnitude=2)
        config_manager.set("features.boosts_enabled", False)

        assert await resolver.calculate_modified_value(BoostContext("p1", "g1", 5), "speed") == 5
        assert await usages() == []

    async def test_snapshot_survives_catalog_changes(self, resolver, activate, catalog):
        boost = await activate(effect_type="speed", magnitude=2)
        await catalog.set_perk_active(boost.perk_id, False)

        assert await resolver.calculate_modified_value(BoostContext("p1", "g1", 5), "speed") == 7

    @pytest.mark.parametrize("effect_type, base_value", [("teleport", 1), ("speed", "5"), ("speed", True)])
    async def test_argument_validation(self, resolver, effect_type, base_value):
        with pytest.raises(ValidationError):
            await resolver.resolve(BoostContext("p1", "g1", base_value), effect_type)


class TestValidityWindow:
    async def test_temporary_window_without_sweep(self, resolver, activate, clock):
        await activate(
            effect_type="property_price",
            stacking_rule="multiplicative",
            magnitude=0.5,
            duration_class=DurationClass.TEMPORARY,
            duration_minutes=10,
        )
        context = BoostContext("p1", "g1", 200)

        clock.advance(minutes=9)
        assert await resolver.calculate_modified_value(context, "property_price") == 100

        clock.advance(minutes=2)
        assert await resolver.calculate_modified_value(context, "property_price") == 200
        assert await resolver.get_active_boosts("p1", "g1") == []

    async def test_expired_boosts_are_never_listed(self, resolver, activate, clock):
        permanent = await activate(effect_type="speed")
        await activate(effect_type="speed", duration_class=DurationClass.TEMPORARY, duration_minutes=5)

        clock.advance(minutes=6)
        active = await resolver.get_active_boosts("p1", "g1", "speed")

        assert [b.id for b in active] == [permanent.id]
        assert active[0].perk.id == permanent.perk_id

    async def test_listing_is_ordered_by_activation(self, resolver, activate, clock):
        first = await activate(effect_type="speed")
        clock.advance(seconds=1)
        second = await activate(effect_type="rent")

        assert [b.id for b in await resolver.get_active_boosts("p1", "g1")] == [first.id, second.id]


class TestCharging:
    async def test_speed_boost_scenario(self, resolver, activation, inventory, perk_factory, grant):
        perk = await perk_factory(
            name="Speed Boost",
            duration_class=DurationClass.CONSUMABLE,
            effect_type="speed",
            stacking_rule="additive",
            magnitude=2,
            uses=1,
        )
        await grant("p1", perk, 1)

        boost = await activation.activate_perk("p1", "g1", perk.id)
        assert (await inventory.get_inventory("p1"))[0].quantity == 0

        context = BoostContext("p1", "g1", 5, metadata={"roll": [2, 3]})
        first = await resolver.resolve(context, EffectType.SPEED)
        second = await resolver.resolve(context, EffectType.SPEED)

        assert first.value == 7
        assert first.exhausted_boost_ids == (boost.id,)
        assert second.value == 5
        stored = await stored_boost(boost.id)
        assert stored.is_active is False
        assert stored.remaining_uses == 0
        assert stored.deactivated_at is not None
        recorded = await usages()
        assert len(recorded) == 1
        assert recorded[0].active_boost_id == boost.id
        assert recorded[0].event_data == {"roll": [2, 3]}

    async def test_multi_use_consumable_counts_down(self, resolver, activate):
        boost = await activate(
            effect_type="rent", duration_class=DurationClass.CONSUMABLE, uses=3, magnitude=1
        )
        context = BoostContext("p1", "g1", 10)

        values = [await resolver.calculate_modified_value(context, "rent") for _ in range(4)]

        assert values == [11, 11, 11, 10]
        assert len(await usages()) == 3
        assert (await stored_boost(boost.id)).is_active is False

    async def test_unlimited_boosts_record_usage_without_decrement(self, resolver, activate):
        boost = await activate(effect_type="speed", magnitude=1)

        for _ in range(2):
            await resolver.calculate_modified_value(BoostContext("p1", "g1", 1), "speed")

        assert len(await usages()) == 2
        stored = await stored_boost(boost.id)
        assert stored.is_active is True
        assert stored.remaining_uses is None

    async def test_get_active_boosts_charges_nothing(self, resolver, activate):
        await activate(effect_type="speed", duration_class=DurationClass.CONSUMABLE)

        await resolver.get_active_boosts("p1", "g1", "speed")

        assert await usages() == []

    async def test_usage_analytics(self, resolver, activate, analytics):
        boost = await activate(effect_type="speed")

        await resolver.resolve(BoostContext("p1", "g1", 1), "speed")

        assert await analytics.count_events(perk_id=boost.perk_id, event_type=PerkEventType.USAGE) == 1

    async def test_concurrent_resolutions_spend_a_single_use_once(self, resolver, activate):
        boost = await activate(effect_type="speed", duration_class=DurationClass.CONSUMABLE, magnitude=2)
        context = BoostContext("p1", "g1", 5)

        values = await asyncio.gather(
            resolver.calculate_modified_value(context, "speed"),
            resolver.calculate_modified_value(context, "speed"),
        )

        assert sorted(values) == [5, 7]
        recorded = await usages()
        assert [u.active_boost_id for u in recorded] == [boost.id]
