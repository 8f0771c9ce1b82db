"""Advisory analytics sink for perk activity."""

from perkboost.modules.analytics.service import PerkAnalyticsService

__all__ = ["PerkAnalyticsService"]
