"""
Unit tests for PerkEffect metadata parsing.
"""

import math

import pytest

from perkboost.database.models.enums import DurationClass, EffectType, StackingRule
from perkboost.modules.catalog.effects import PerkEffect
from perkboost.modules.shared.exceptions import InvalidPerkConfigurationError


def bag(**overrides):
    data = {"effect_type": "rent", "stacking_rule": "multiplicative", "magnitude": 1.5}
    data.update(overrides)
    return data


@pytest.mark.unit
class TestParsing:
    def test_permanent_effect(self):
        effect = PerkEffect.from_metadata(bag(), DurationClass.PERMANENT, perk_id=1)

        assert effect.effect_type is EffectType.RENT
        assert effect.stacking_rule is StackingRule.MULTIPLICATIVE
        assert effect.magnitude == 1.5
        assert effect.duration_minutes is None
        assert effect.uses is None
        assert effect.is_stackable is False

    def test_aliases_are_accepted(self):
        metadata = {
            "boostType": "SPEED",
            "stackingRule": "ADDITIVE",
            "value": 2,
            "durationMinutes": 10,
            "isStackable": True,
        }

        effect = PerkEffect.from_metadata(metadata, DurationClass.TEMPORARY)

        assert effect.effect_type is EffectType.SPEED
        assert effect.stacking_rule is StackingRule.ADDITIVE
        assert effect.magnitude == 2.0
        assert effect.duration_minutes == 10
        assert effect.is_stackable is True

    def test_consumable_defaults_to_one_use(self):
        effect = PerkEffect.from_metadata(bag(), DurationClass.CONSUMABLE)

        assert effect.uses == 1

    def test_consumable_with_explicit_uses(self):
        effect = PerkEffect.from_metadata(bag(uses=3), "CONSUMABLE")

        assert effect.uses == 3

    def test_duration_ignored_for_permanent(self):
        effect = PerkEffect.from_metadata(bag(duration_minutes=5), DurationClass.PERMANENT)

        assert effect.duration_minutes is None

    def test_to_metadata_is_canonical(self):
        effect = PerkEffect.from_metadata(
            {"boost_type": "cash_gain", "stackingRule": "highest_only", "value": 1.25},
            DurationClass.PERMANENT,
        )

        assert effect.to_metadata() == {
            "effect_type": "cash_gain",
            "stacking_rule": "highest_only",
            "magnitude": 1.25,
            "is_stackable": False,
        }


@pytest.mark.unit
class TestRejections:
    @pytest.mark.parametrize(
        "metadata, key",
        [
            (None, "metadata"),
            (bag(effect_type="teleport"), "effect_type"),
            (bag(stacking_rule="sometimes"), "stacking_rule"),
            (bag(magnitude="big"), "magnitude"),
            (bag(magnitude=True), "magnitude"),
            (bag(magnitude=-1), "magnitude"),
            (bag(magnitude=math.inf), "magnitude"),
            (bag(is_stackable="yes"), "is_stackable"),
        ],
    )
    def test_malformed_bag(self, metadata, key):
        with pytest.raises(InvalidPerkConfigurationError) as exc_info:
            PerkEffect.from_metadata(metadata, DurationClass.PERMANENT, perk_id=9)

        assert exc_info.value.key == key
        assert exc_info.value.perk_id == 9

    def test_temporary_requires_duration(self):
        with pytest.raises(InvalidPerkConfigurationError) as exc_info:
            PerkEffect.from_metadata(bag(), DurationClass.TEMPORARY)

        assert exc_info.value.key == "duration_minutes"

    @pytest.mark.parametrize("uses", [0, -2, 1.5, True])
    def test_consumable_uses_must_be_positive_int(self, uses):
        with pytest.raises(InvalidPerkConfigurationError):
            PerkEffect.from_metadata(bag(uses=uses), DurationClass.CONSUMABLE)
