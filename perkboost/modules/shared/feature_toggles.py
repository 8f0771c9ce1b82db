"""
Runtime feature switches for the perk and boost subsystems.

Toggles live in the shared ConfigManager under ``features.*`` so they can be
seeded from YAML and flipped in memory by admin tooling.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from perkboost.modules.shared.exceptions import FeatureDisabledError

if TYPE_CHECKING:
    from perkboost.core.config.manager import ConfigManager

PERKS_ENABLED = "perks_enabled"
BOOSTS_ENABLED = "boosts_enabled"
SEASONAL_PERKS_ENABLED = "seasonal_perks_enabled"


class FeatureToggles:
    """
    Reads and flips ``features.<name>`` flags.

    Unknown features are disabled.
    """

    def __init__(self, config_manager: ConfigManager) -> None:
        self._config = config_manager

    @staticmethod
    def _key(feature: str) -> str:
        return f"features.{feature}"

    def is_enabled(self, feature: str) -> bool:
        return self._config.get_bool(self._key(feature), False)

    def set_feature(self, feature: str, enabled: bool) -> None:
        self._config.set(self._key(feature), bool(enabled))

    def require(self, feature: str) -> None:
        """Raise FeatureDisabledError unless ``feature`` is on."""
        if not self.is_enabled(feature):
            raise FeatureDisabledError(feature)
