"""
PerkEffect: validated view of a perk's metadata bag.

Purpose
-------
Turn the free-form ``metadata`` JSON on a Perk into typed effect parameters
the activation service snapshots onto an ActiveBoost. Malformed bags are
rejected here, at catalog-write or activation time, never during resolution.

Accepted keys
-------------
- ``effect_type`` (alias ``boost_type`` / ``boostType``): an `EffectType` value
- ``stacking_rule`` (alias ``stackingRule``): an `StackingRule` value or name
- ``magnitude`` (alias ``value``): finite number >= 0
- ``duration_minutes`` (alias ``durationMinutes``): positive int, TEMPORARY only
- ``uses``: positive int, CONSUMABLE only (default 1)
- ``is_stackable`` (alias ``isStackable``): bool (default False)
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping, Optional

from perkboost.database.models.enums import DurationClass, EffectType, StackingRule
from perkboost.modules.shared.exceptions import InvalidPerkConfigurationError

if TYPE_CHECKING:
    from perkboost.database.models import Perk

_ALIASES: dict[str, tuple[str, ...]] = {
    "effect_type": ("effect_type", "boost_type", "boostType"),
    "stacking_rule": ("stacking_rule", "stackingRule"),
    "magnitude": ("magnitude", "value"),
    "duration_minutes": ("duration_minutes", "durationMinutes"),
    "uses": ("uses",),
    "is_stackable": ("is_stackable", "isStackable"),
}


def _lookup(metadata: Mapping[str, Any], key: str) -> Any:
    for alias in _ALIASES[key]:
        if alias in metadata and metadata[alias] is not None:
            return metadata[alias]
    return None


def _positive_int(perk_id: Optional[int], key: str, raw: Any) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int) or raw <= 0:
        raise InvalidPerkConfigurationError(perk_id, key, f"must be a positive integer, got {raw!r}")
    return raw


@dataclass(frozen=True)
class PerkEffect:
    effect_type: EffectType
    stacking_rule: StackingRule
    magnitude: float
    duration_minutes: Optional[int] = None
    uses: Optional[int] = None
    is_stackable: bool = False

    @classmethod
    def from_metadata(
        cls,
        metadata: Optional[Mapping[str, Any]],
        duration_class: DurationClass,
        *,
        perk_id: Optional[int] = None,
    ) -> PerkEffect:
        """
        Parse and validate a metadata bag for a perk of ``duration_class``.

        Raises
        ------
        InvalidPerkConfigurationError
            On a missing or malformed key.
        """
        if not isinstance(metadata, Mapping):
            raise InvalidPerkConfigurationError(perk_id, "metadata", "must be a mapping")

        raw_effect = _lookup(metadata, "effect_type")
        try:
            effect_type = EffectType(str(raw_effect).lower())
        except ValueError:
            raise InvalidPerkConfigurationError(
                perk_id, "effect_type", f"unknown effect type {raw_effect!r}"
            ) from None

        raw_rule = _lookup(metadata, "stacking_rule")
        try:
            stacking_rule = StackingRule(str(raw_rule).lower())
        except ValueError:
            raise InvalidPerkConfigurationError(
                perk_id, "stacking_rule", f"unknown stacking rule {raw_rule!r}"
            ) from None

        raw_magnitude = _lookup(metadata, "magnitude")
        if isinstance(raw_magnitude, bool) or not isinstance(raw_magnitude, (int, float)):
            raise InvalidPerkConfigurationError(
                perk_id, "magnitude", f"must be a number, got {raw_magnitude!r}"
            )
        magnitude = float(raw_magnitude)
        if not math.isfinite(magnitude) or magnitude < 0:
            raise InvalidPerkConfigurationError(
                perk_id, "magnitude", f"must be finite and non-negative, got {raw_magnitude!r}"
            )

        duration_class = DurationClass(duration_class)

        duration_minutes: Optional[int] = None
        if duration_class is DurationClass.TEMPORARY:
            duration_minutes = _positive_int(
                perk_id, "duration_minutes", _lookup(metadata, "duration_minutes")
            )

        uses: Optional[int] = None
        if duration_class is DurationClass.CONSUMABLE:
            raw_uses = _lookup(metadata, "uses")
            uses = 1 if raw_uses is None else _positive_int(perk_id, "uses", raw_uses)

        raw_stackable = _lookup(metadata, "is_stackable")
        if raw_stackable is not None and not isinstance(raw_stackable, bool):
            raise InvalidPerkConfigurationError(
                perk_id, "is_stackable", f"must be a boolean, got {raw_stackable!r}"
            )

        return cls(
            effect_type=effect_type,
            stacking_rule=stacking_rule,
            magnitude=magnitude,
            duration_minutes=duration_minutes,
            uses=uses,
            is_stackable=bool(raw_stackable),
        )

    @classmethod
    def from_perk(cls, perk: Perk) -> PerkEffect:
        return cls.from_metadata(perk.perk_metadata, perk.duration_class, perk_id=perk.id)

    def to_metadata(self) -> dict[str, Any]:
        """Canonical bag, as written by the catalog service."""
        data: dict[str, Any] = {
            "effect_type": self.effect_type.value,
            "stacking_rule": self.stacking_rule.value,
            "magnitude": self.magnitude,
            "is_stackable": self.is_stackable,
        }
        if self.duration_minutes is not None:
            data["duration_minutes"] = self.duration_minutes
        if self.uses is not None:
            data["uses"] = self.uses
        return data
