"""
Database Model Enums
====================

Categorical constants shared by the perk/boost schema and the services that
read it. All are ``str`` enums so they compare equal to their stored values.
"""

from __future__ import annotations

import enum


class DurationClass(str, enum.Enum):
    """How a perk behaves once activated."""

    PERMANENT = "PERMANENT"
    TEMPORARY = "TEMPORARY"
    CONSUMABLE = "CONSUMABLE"


class StackingRule(str, enum.Enum):
    """
    How simultaneously active boosts of one effect type combine.

    ADDITIVE and MULTIPLICATIVE boosts all apply; of the HIGHEST_ONLY boosts
    only the greatest magnitude applies, as a multiplier.
    """

    ADDITIVE = "additive"
    MULTIPLICATIVE = "multiplicative"
    HIGHEST_ONLY = "highest_only"


class EffectType(str, enum.Enum):
    """Game values a boost can modify."""

    DICE_ROLL = "dice_roll"
    RENT = "rent"
    CASH_GAIN = "cash_gain"
    SPEED = "speed"
    PROPERTY_PRICE = "property_price"


class PerkEventType(str, enum.Enum):
    """Analytics event kinds."""

    PURCHASE = "purchase"
    ACTIVATION = "activation"
    USAGE = "usage"
    EXPIRATION = "expiration"


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Persist enum ``value``s rather than member names."""
    return [member.value for member in enum_cls]
