"""
Unit tests for FeatureToggles and BaseService argument validation.
"""

import logging
from datetime import datetime, timezone

import pytest

from perkboost.core.exceptions import ConfigurationError
from perkboost.modules.shared.base_service import BaseService
from perkboost.modules.shared.exceptions import FeatureDisabledError, ValidationError
from perkboost.modules.shared.feature_toggles import (
    BOOSTS_ENABLED,
    PERKS_ENABLED,
    SEASONAL_PERKS_ENABLED,
    FeatureToggles,
)


@pytest.fixture
def service(config_manager, event_bus):
    fixed = datetime(2026, 3, 1, tzinfo=timezone.utc)
    return BaseService(config_manager, event_bus, logging.getLogger("tests"), clock=lambda: fixed)


@pytest.mark.unit
class TestFeatureToggles:
    def test_defaults(self, config_manager):
        toggles = FeatureToggles(config_manager)

        assert toggles.is_enabled(PERKS_ENABLED)
        assert toggles.is_enabled(BOOSTS_ENABLED)
        assert not toggles.is_enabled(SEASONAL_PERKS_ENABLED)

    def test_unknown_feature_is_disabled(self, config_manager):
        assert FeatureToggles(config_manager).is_enabled("time_travel") is False

    def test_set_and_require(self, config_manager):
        toggles = FeatureToggles(config_manager)
        toggles.set_feature(PERKS_ENABLED, False)

        with pytest.raises(FeatureDisabledError) as exc_info:
            toggles.require(PERKS_ENABLED)

        assert exc_info.value.feature == PERKS_ENABLED
        assert config_manager.get("features.perks_enabled") is False


@pytest.mark.unit
class TestBaseService:
    def test_clock_is_injected(self, service):
        assert service.now() == datetime(2026, 3, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [0, -1, True, 1.0, "3", None])
    def test_positive_int_rejects(self, service, value):
        with pytest.raises(ValidationError):
            service.validate_positive_int(value, "perk_id")

    def test_positive_int_accepts(self, service):
        assert service.validate_positive_int(5, "perk_id") == 5

    def test_identifier_normalization(self, service):
        assert service.validate_identifier(" player-1 ", "player_id") == "player-1"
        assert service.validate_identifier(42, "game_id") == "42"

    @pytest.mark.parametrize("value", ["", "   ", "x" * 65, None, False, 1.5])
    def test_identifier_rejects(self, service, value):
        with pytest.raises(ValidationError):
            service.validate_identifier(value, "player_id")

    def test_required_config(self, service):
        assert service.get_config("boosts.sweeper.interval_seconds") == 60
        with pytest.raises(ConfigurationError):
            service.get_config("boosts.missing", required=True)

    async def test_emit_event_merges_context(self, service, event_bus):
        received = []

        async def handler(payload):
            received.append(payload)

        event_bus.subscribe("boost.activated", handler, identifier="t")

        await service.emit_event("boost.activated", {"boost_id": 1}, context={"source": "test"})

        assert received == [{"boost_id": 1, "source": "test"}]


