"""Process settings for alert-spine.

Configuration should be explicit, validated, and environment-driven.
Every field can be set through an ``ALERT_SPINE_``-prefixed environment
variable or a ``.env`` file; unknown keys are ignored.

Examples:
    >>> import os
    >>> os.environ["ALERT_SPINE_WEBHOOK_URL"] = "https://alerts.example.com/hook"
    >>> AlertSpineSettings().webhook_url
    'https://alerts.example.com/hook'

Tags:
    settings, configuration, pydantic, environment, alert-spine

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from alert_spine.loader import DEFAULT_PATTERN


class AlertSpineSettings(BaseSettings):
    """All alert-spine configuration.

    Fields
    ──────
    clickhouse_*         : Query backend connection
    query_timeout_seconds: Per-query HTTP timeout
    webhook_url          : Notification endpoint (empty disables delivery)
    id_group             : Suffix of the notification group (``dashica_<id_group>``)
    event_log            : Event log backend, ``sqlite`` or ``clickhouse``
    database_path        : SQLite file holding the alert event log
    event_table          : ClickHouse table holding the alert event log
    definitions_root     : Directory searched for definition files
    definitions_pattern  : Glob under ``definitions_root``
    log_level / log_format
    """

    model_config = SettingsConfigDict(
        env_prefix="ALERT_SPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Query backend ────────────────────────────────────────────
    clickhouse_url: str = "http://localhost:8123"
    clickhouse_user: str = ""
    clickhouse_password: str = ""
    clickhouse_database: str = ""
    query_timeout_seconds: float = Field(default=30.0, gt=0)

    # ── Notification ─────────────────────────────────────────────
    webhook_url: str = ""
    id_group: str = ""

    # ── Storage ──────────────────────────────────────────────────
    event_log: Literal["sqlite", "clickhouse"] = "sqlite"
    database_path: Path = Field(
        default_factory=lambda: Path.home() / ".alert_spine" / "alert_events.db",
        description="SQLite alert event log",
    )
    event_table: str = Field(
        default="dashica_alert_events",
        pattern=r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$",
        description="ClickHouse alert event log (``db.table`` allowed)",
    )

    # ── Definitions ──────────────────────────────────────────────
    definitions_root: Path = Path(".")
    definitions_pattern: str = DEFAULT_PATTERN

    # ── Observability ────────────────────────────────────────────
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["console", "json"] = "console"

    @field_validator("log_level", mode="before")
    @classmethod
    def upper_level(cls, v: object) -> object:
        return v.upper() if isinstance(v, str) else v

    @field_validator("event_log", mode="before")
    @classmethod
    def lower_event_log(cls, v: object) -> object:
        return v.lower() if isinstance(v, str) else v

    @field_validator("log_format", mode="before")
    @classmethod
    def lower_format(cls, v: object) -> object:
        return v.lower() if isinstance(v, str) else v


@lru_cache(maxsize=1)
def get_settings() -> AlertSpineSettings:
    """Process-wide settings instance (read once)."""
    return AlertSpineSettings()


__all__ = ["AlertSpineSettings", "get_settings"]
