"""
Unit tests for ConfigManager: defaults, YAML merge, overrides and validators.
"""

import pytest

from perkboost.core.config.manager import DEFAULT_SETTINGS, ConfigManager
from perkboost.core.exceptions import ConfigurationError


@pytest.mark.unit
class TestReads:
    def test_built_in_defaults(self):
        config = ConfigManager()

        assert config.get("boosts.sweeper.interval_seconds") == 60
        assert config.get_bool("features.perks_enabled") is True
        assert config.get_bool("features.seasonal_perks_enabled") is False

    def test_missing_key_returns_caller_default(self):
        config = ConfigManager()

        assert config.get("boosts.unknown.key", "fallback") == "fallback"
        assert config.get("boosts.sweeper.interval_seconds.deeper", 5) == 5

    @pytest.mark.parametrize("raw, expected", [("yes", True), ("ON", True), ("0", False), ("nope", False)])
    def test_get_bool_parses_strings(self, raw, expected):
        config = ConfigManager({"features.boosts_enabled": raw})

        assert config.get_bool("features.boosts_enabled") is expected

    def test_defaults_are_not_shared_between_instances(self):
        first = ConfigManager()
        first.set("boosts.sweeper.interval_seconds", 5)

        assert ConfigManager().get("boosts.sweeper.interval_seconds") == 60
        assert DEFAULT_SETTINGS["boosts"]["sweeper"]["interval_seconds"] == 60


@pytest.mark.unit
class TestYamlLoading:
    def test_yaml_deep_merges_over_defaults(self, tmp_path):
        (tmp_path / "boosts.yaml").write_text(
            "boosts:\n  sweeper:\n    interval_seconds: 15\n", encoding="utf-8"
        )

        config = ConfigManager.from_directory(tmp_path)

        assert config.get("boosts.sweeper.interval_seconds") == 15
        assert config.get_bool("boosts.sweeper.run_on_start") is True

    def test_overrides_win_over_yaml(self, tmp_path):
        (tmp_path / "features.yml").write_text("features:\n  perks_enabled: true\n", encoding="utf-8")

        config = ConfigManager.from_directory(tmp_path, {"features.perks_enabled": False})

        assert config.get_bool("features.perks_enabled") is False

    def test_malformed_yaml_is_skipped(self, tmp_path):
        (tmp_path / "broken.yaml").write_text("boosts: [unclosed\n", encoding="utf-8")
        (tmp_path / "good.yaml").write_text("analytics:\n  enabled: false\n", encoding="utf-8")

        config = ConfigManager()
        loaded = config.load_yaml_directory(tmp_path)

        assert loaded == 1
        assert config.get_bool("analytics.enabled", True) is False
        assert config.get_metrics()["errors"] == 1

    def test_missing_directory_keeps_defaults(self, tmp_path):
        config = ConfigManager()

        assert config.load_yaml_directory(tmp_path / "absent") == 0
        assert config.get("boosts.sweeper.interval_seconds") == 60


@pytest.mark.unit
class TestWrites:
    def test_set_creates_intermediate_mappings(self):
        config = ConfigManager()

        config.set("custom.section.value", 3)

        assert config.get("custom.section.value") == 3

    def test_set_through_a_scalar_is_rejected(self):
        config = ConfigManager()

        with pytest.raises(ConfigurationError):
            config.set("boosts.sweeper.interval_seconds.nested", 1)

    def test_validator_can_reject_and_coerce(self):
        config = ConfigManager()

        def positive(value):
            value = float(value)
            if value <= 0:
                raise ValueError("must be positive")
            return value

        config.register_validator("boosts.sweeper.interval_seconds", positive)
        config.set("boosts.sweeper.interval_seconds", "30")

        assert config.get("boosts.sweeper.interval_seconds") == 30.0
        with pytest.raises(ConfigurationError):
            config.set("boosts.sweeper.interval_seconds", 0)

    def test_reset_drops_overrides(self):
        config = ConfigManager()
        config.set("features.boosts_enabled", False)

        config.reset()

        assert config.get_bool("features.boosts_enabled") is True
