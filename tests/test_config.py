"""Tests for configuration loading."""

import pytest

from salary_engine.config import EngineOptions, Settings


class TestEngineOptions:
    """Test run tunable defaults."""

    @pytest.mark.parametrize("cpus,expected", [(2, 2), (64, 16), (None, 1)])
    def test_pool_size_follows_cpu_count(self, monkeypatch, cpus, expected):
        monkeypatch.setattr("salary_engine.config.os.cpu_count", lambda: cpus)
        assert EngineOptions().worker_pool_size == expected

    def test_explicit_pool_size_wins(self, monkeypatch):
        monkeypatch.setattr("salary_engine.config.os.cpu_count", lambda: 64)
        assert EngineOptions(worker_pool_size=3).worker_pool_size == 3


class TestSettingsFromEnv:
    """Test environment parsing."""

    def test_pool_size_defaults_to_cpu_count(self, monkeypatch):
        monkeypatch.delenv("WORKER_POOL_SIZE", raising=False)
        monkeypatch.setattr("salary_engine.config.os.cpu_count", lambda: 6)
        settings = Settings.from_env()

        assert settings.worker_pool_size == 6
        assert settings.engine_options().worker_pool_size == 6

    def test_pool_size_from_env(self, monkeypatch):
        monkeypatch.setenv("WORKER_POOL_SIZE", "2")
        assert Settings.from_env().worker_pool_size == 2

    def test_non_working_weekdays(self, monkeypatch):
        monkeypatch.setenv("NON_WORKING_WEEKDAYS", "6, 7")
        assert Settings.from_env().non_working_weekdays == frozenset({6, 7})

    def test_invalid_weekday_rejected(self, monkeypatch):
        monkeypatch.setenv("NON_WORKING_WEEKDAYS", "0")
        with pytest.raises(ValueError, match="Invalid ISO weekday"):
            Settings.from_env()
