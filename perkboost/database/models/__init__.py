"""
Database Models Package
=======================

SQLAlchemy ORM models for the perk boost engine.

- Schema only, no business logic
- `Mapped[]` annotations with `mapped_column()`
- Shared `IdMixin` / `TimestampMixin` from `perkboost.core.database.base`

Importing this package registers every table on `Base.metadata`.
"""

from perkboost.core.database.base import Base

from .enums import DurationClass, EffectType, PerkEventType, StackingRule
from .perks import ActiveBoost, BoostUsage, Perk, PerkAnalyticsEvent, PlayerPerk

__all__ = [
    "Base",
    "ActiveBoost",
    "BoostUsage",
    "Perk",
    "PerkAnalyticsEvent",
    "PlayerPerk",
    "DurationClass",
    "EffectType",
    "PerkEventType",
    "StackingRule",
]
