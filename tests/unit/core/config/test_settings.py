"""Tests for Settings loading from the environment."""

from __future__ import annotations

from careboard.core.config.settings import get_settings


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("DB_PATH", raising=False)
        settings = get_settings()
        assert settings.careboard_host == "127.0.0.1"
        assert settings.careboard_port == 8001
        assert settings.message_alert_window_minutes == 2.0
        assert settings.rollup_timeout_seconds == 15.0
        assert settings.default_period == "day"
        assert settings.poll_interval_seconds == 60
        assert settings.db_path == "~/.careboard/monitoring.db"

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("MESSAGE_ALERT_WINDOW_MINUTES", "5")
        monkeypatch.setenv("ROLLUP_TIMEOUT_SECONDS", "3.5")
        monkeypatch.setenv("CAREBOARD_PORT", "9100")
        monkeypatch.setenv("DEFAULT_PERIOD", "month")
        settings = get_settings()
        assert settings.message_alert_window_minutes == 5.0
        assert settings.rollup_timeout_seconds == 3.5
        assert settings.careboard_port == 9100
        assert settings.default_period == "month"
