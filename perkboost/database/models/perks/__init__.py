"""Perk catalog, ownership, live boosts, usage and analytics records."""

from .active_boost import ActiveBoost
from .analytics_event import PerkAnalyticsEvent
from .boost_usage import BoostUsage
from .perk import Perk
from .player_perk import PlayerPerk

__all__ = [
    "ActiveBoost",
    "BoostUsage",
    "Perk",
    "PerkAnalyticsEvent",
    "PlayerPerk",
]
