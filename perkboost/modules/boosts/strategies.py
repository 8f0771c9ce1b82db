"""
Stacking strategies: pure folds of boost magnitudes into a base value.

Purpose
-------
Combine the magnitudes of simultaneously active boosts of one effect type
into a single modified value. No I/O, no clock, no session; the resolver
feeds plain `StackEntry` records in and persists the outcome.

Rules
-----
- ADDITIVE: ``value + magnitude`` for every entry.
- MULTIPLICATIVE: ``value * magnitude`` for every entry. A magnitude below
  1.0 is a reduction; 1.0 is a no-op.
- HIGHEST_ONLY: the single greatest magnitude is applied once, as a
  multiplier. Ties go to the first entry in input order.

Order of application is fixed: additive, then multiplicative, then the
highest-only winner. Every rule is applied through ``STACKING_STRATEGIES``;
additive magnitudes are first summed with ``math.fsum`` so the result does
not depend on input order.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from perkboost.database.models.enums import StackingRule

StrategyFn = Callable[[float, float], float]


def apply_additive(value: float, magnitude: float) -> float:
    return value + magnitude


def apply_multiplicative(value: float, magnitude: float) -> float:
    return value * magnitude


# HIGHEST_ONLY selects first, then applies multiplicatively.
STACKING_STRATEGIES: Mapping[StackingRule, StrategyFn] = MappingProxyType(
    {
        StackingRule.ADDITIVE: apply_additive,
        StackingRule.MULTIPLICATIVE: apply_multiplicative,
        StackingRule.HIGHEST_ONLY: apply_multiplicative,
    }
)


@dataclass(frozen=True)
class StackEntry:
    """One boost's contribution: an opaque key (usually the boost id), its rule and magnitude."""

    key: Any
    rule: StackingRule
    magnitude: float


@dataclass(frozen=True)
class StackResolution:
    """
    Outcome of one fold.

    Attributes
    ----------
    value:
        Folded value at full precision.
    applied:
        Keys of entries whose magnitude was applied, in application order.
    highest_candidates:
        Keys of every HIGHEST_ONLY entry, selected or not, in input order.
    selected_highest:
        Key of the HIGHEST_ONLY winner, or None when there were no candidates.
    """

    value: float
    applied: tuple[Any, ...] = field(default_factory=tuple)
    highest_candidates: tuple[Any, ...] = field(default_factory=tuple)
    selected_highest: Optional[Any] = None


def partition_by_rule(entries: Iterable[StackEntry]) -> dict[StackingRule, list[StackEntry]]:
    """Group entries by rule, preserving input order within each group."""
    buckets: dict[StackingRule, list[StackEntry]] = {rule: [] for rule in StackingRule}
    for entry in entries:
        buckets[StackingRule(entry.rule)].append(entry)
    return buckets


def select_highest(entries: Sequence[StackEntry]) -> Optional[StackEntry]:
    """
    Return the entry with the greatest magnitude.

    Only a strictly greater magnitude replaces the current best, so the first
    of several equal maxima wins.
    """
    best: Optional[StackEntry] = None
    for entry in entries:
        if best is None or entry.magnitude > best.magnitude:
            best = entry
    return best


def resolve_stack(base_value: float, entries: Iterable[StackEntry]) -> StackResolution:
    """
    Fold ``entries`` into ``base_value``.

    Examples
    --------
    >>> resolve_stack(10, [StackEntry(1, StackingRule.ADDITIVE, 5),
    ...                    StackEntry(2, StackingRule.ADDITIVE, 3)]).value
    18.0
    """
    buckets = partition_by_rule(entries)
    additive = buckets[StackingRule.ADDITIVE]
    multiplicative = buckets[StackingRule.MULTIPLICATIVE]
    highest = buckets[StackingRule.HIGHEST_ONLY]

    applied: list[Any] = []

    value = float(base_value)
    if additive:
        total = math.fsum(float(e.magnitude) for e in additive)
        value = STACKING_STRATEGIES[StackingRule.ADDITIVE](value, total)
        applied.extend(e.key for e in additive)

    multiply = STACKING_STRATEGIES[StackingRule.MULTIPLICATIVE]
    for entry in multiplicative:
        value = multiply(value, float(entry.magnitude))
        applied.append(entry.key)

    winner = select_highest(highest)
    if winner is not None:
        value = STACKING_STRATEGIES[StackingRule.HIGHEST_ONLY](value, float(winner.magnitude))
        applied.append(winner.key)

    return StackResolution(
        value=value,
        applied=tuple(applied),
        highest_candidates=tuple(e.key for e in highest),
        selected_highest=winner.key if winner is not None else None,
    )
