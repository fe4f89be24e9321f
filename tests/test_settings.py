"""Tests for configuration validation."""

import pytest
from pydantic import ValidationError

from config.settings import BreakerSettings, DatabaseSettings, MonitoringSettings, Settings


class TestDatabaseSettings:
    def test_requires_async_driver(self):
        with pytest.raises(ValidationError):
            DatabaseSettings(url="sqlite:///data/appwatch.db")

    def test_sqlite_path(self):
        assert str(DatabaseSettings(url="sqlite+aiosqlite:///data/x.db").sqlite_path) == "data/x.db"
        assert DatabaseSettings(url="sqlite+aiosqlite:///:memory:").sqlite_path is None
        assert DatabaseSettings(url="postgresql+asyncpg://app@db/appwatch").sqlite_path is None


class TestMonitoringSettings:
    def test_deadline_must_fit_in_tick(self):
        with pytest.raises(ValidationError):
            MonitoringSettings(tick_interval=30, pass_deadline=45)

    def test_deadline_within_tick(self):
        settings = MonitoringSettings(tick_interval=30, pass_deadline=25)
        assert settings.pass_deadline == 25


class TestBreakerSettings:
    def test_max_cooldown_not_below_cooldown(self):
        with pytest.raises(ValidationError):
            BreakerSettings(cooldown_seconds=120, max_cooldown_seconds=60)


class TestSettings:
    def test_to_dict_hides_secrets(self):
        data = Settings().to_dict()

        assert "smtp_password" not in data["alerts"]
        assert "smtp_host" in data["alerts"]
        assert data["app_name"] == "AppWatch"
