"""
Unit tests for environment-backed static configuration.
"""

import pytest

from perkboost.core.config.config import Config


@pytest.fixture
def env(monkeypatch):
    """Set environment variables, reload Config, and restore both afterwards."""

    def apply(**values):
        for key, value in values.items():
            monkeypatch.setenv(key, value)
        Config.load()

    yield apply
    monkeypatch.undo()
    Config.load()


@pytest.mark.unit
class TestConfigLoading:
    def test_values_come_from_environment(self, env):
        env(DATABASE_POOL_SIZE="7", DATABASE_ECHO="yes", ENVIRONMENT="Staging")

        assert Config.DATABASE_POOL_SIZE == 7
        assert Config.DATABASE_ECHO is True
        assert Config.ENVIRONMENT == "staging"
        assert "DATABASE_POOL_SIZE" in Config.get_config_summary()["from_environment"]

    @pytest.mark.parametrize("raw", ["lots", "0", "500"])
    def test_invalid_integers_fall_back(self, env, raw):
        env(DATABASE_POOL_SIZE=raw)

        assert Config.DATABASE_POOL_SIZE == 20
        assert any("DATABASE_POOL_SIZE" in warning for warning in Config._load_warnings)

    def test_invalid_boolean_falls_back(self, env):
        env(DATABASE_ECHO="maybe")

        assert Config.DATABASE_ECHO is False

    def test_production_defaults_to_json_logs(self, env):
        env(ENVIRONMENT="production")

        assert Config.is_production() is True
        assert Config.LOG_JSON is True

    def test_paths_can_be_overridden(self, env, tmp_path):
        env(CONFIG_DIR=str(tmp_path))

        assert Config.CONFIG_DIR == tmp_path

    def test_test_session_runs_in_testing_mode(self):
        assert Config.is_testing() is True
