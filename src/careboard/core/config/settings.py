"""Application settings loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """CareBoard monitoring server configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Loopback by default: patient metrics must not be reachable from the LAN
    # unless the operator opts in.
    careboard_host: str = "127.0.0.1"
    careboard_port: int = 8001
    careboard_log_level: str = "info"
    careboard_allow_insecure_bind: bool = False

    # Storage (sample + alert store)
    db_path: str = "~/.careboard/monitoring.db"

    # Encryption of free-text notes and alert metadata at rest
    encryption_key: str = ""

    # Range table; empty means the packaged default table
    range_table_path: str = ""

    # Alerting
    message_alert_window_minutes: float = 2.0

    # Fleet rollups
    rollup_timeout_seconds: float = 15.0
    default_period: str = "day"

    # Advertised to dashboards; the engine itself never schedules work
    poll_interval_seconds: int = 60


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
