"""
Unit tests for the stacking strategy folds.

Pure functions only: no database, no clock.
"""

import itertools

import pytest

from perkboost.database.models.enums import StackingRule
from perkboost.modules.boosts.strategies import (
    STACKING_STRATEGIES,
    StackEntry,
    partition_by_rule,
    resolve_stack,
    select_highest,
)


def additive(key, magnitude):
    return StackEntry(key, StackingRule.ADDITIVE, magnitude)


def multiplicative(key, magnitude):
    return StackEntry(key, StackingRule.MULTIPLICATIVE, magnitude)


def highest(key, magnitude):
    return StackEntry(key, StackingRule.HIGHEST_ONLY, magnitude)


@pytest.mark.unit
class TestAdditive:
    def test_sums_every_magnitude(self):
        result = resolve_stack(10, [additive(1, 5), additive(2, 3), additive(3, 2)])

        assert result.value == 20
        assert result.applied == (1, 2, 3)

    def test_result_does_not_depend_on_order(self):
        entries = [additive(1, 5), additive(2, 3), additive(3, 2)]

        values = {resolve_stack(10, list(order)).value for order in itertools.permutations(entries)}

        assert values == {20}

    def test_fractional_magnitudes_sum_exactly(self):
        entries = [additive(i, 0.1) for i in range(10)]

        assert resolve_stack(0, entries).value == 1.0


@pytest.mark.unit
class TestMultiplicative:
    def test_multiplies_every_magnitude(self):
        result = resolve_stack(10, [multiplicative(1, 2), multiplicative(2, 1.5)])

        assert result.value == pytest.approx(30)
        assert result.applied == (1, 2)

    def test_magnitude_below_one_reduces(self):
        assert resolve_stack(100, [multiplicative(1, 0.5)]).value == 50

    def test_magnitude_of_one_is_a_no_op(self):
        assert resolve_stack(7, [multiplicative(1, 1.0)]).value == 7


@pytest.mark.unit
class TestHighestOnly:
    def test_applies_only_the_greatest_once(self):
        result = resolve_stack(10, [highest(1, 1.2), highest(2, 1.5), highest(3, 1.1)])

        assert result.value == pytest.approx(15)
        assert result.applied == (2,)
        assert result.selected_highest == 2
        assert result.highest_candidates == (1, 2, 3)

    def test_first_of_equal_maxima_wins(self):
        winner = select_highest([highest("a", 2.0), highest("b", 2.0), highest("c", 1.0)])

        assert winner.key == "a"

    def test_no_candidates_selects_nothing(self):
        assert select_highest([]) is None
        assert resolve_stack(4, []).selected_highest is None


@pytest.mark.unit
class TestMixedRules:
    def test_application_order_is_additive_then_multiplicative_then_highest(self):
        entries = [
            highest("h", 2.0),
            multiplicative("m", 3.0),
            additive("a", 1.0),
        ]

        result = resolve_stack(1, entries)

        # (1 + 1) * 3 * 2
        assert result.value == pytest.approx(12)
        assert result.applied == ("a", "m", "h")

    def test_no_entries_returns_base_value(self):
        result = resolve_stack(42, [])

        assert result.value == 42
        assert result.applied == ()

    def test_partition_preserves_input_order(self):
        entries = [additive(1, 1), highest(2, 1), additive(3, 1)]

        buckets = partition_by_rule(entries)

        assert [e.key for e in buckets[StackingRule.ADDITIVE]] == [1, 3]
        assert [e.key for e in buckets[StackingRule.HIGHEST_ONLY]] == [2]
        assert buckets[StackingRule.MULTIPLICATIVE] == []

    def test_strategy_table_is_read_only(self):
        with pytest.raises(TypeError):
            STACKING_STRATEGIES[StackingRule.ADDITIVE] = lambda value, magnitude: value  # type: ignore[index]

    def test_every_rule_is_applied_through_the_table(self, mocker):
        calls = []

        def recording(rule, fn):
            def apply(value, magnitude):
                calls.append((rule, magnitude))
                return fn(value, magnitude)

            return apply

        mocker.patch(
            "perkboost.modules.boosts.strategies.STACKING_STRATEGIES",
            {rule: recording(rule, fn) for rule, fn in STACKING_STRATEGIES.items()},
        )

        result = resolve_stack(
            1, [additive("a", 1.0), additive("b", 2.0), multiplicative("m", 2.0), highest("h", 1.5)]
        )

        assert result.value == pytest.approx(12)
        assert calls == [
            (StackingRule.ADDITIVE, 3.0),
            (StackingRule.MULTIPLICATIVE, 2.0),
            (StackingRule.HIGHEST_ONLY, 1.5),
        ]
