"""
Centralized settings for spine-batch.

Manifesto:
    The supervisor and every worker process it spawns must agree on where
    batches are persisted and how much memory a worker may grow to.  Both
    read the same ``SPINE_BATCH_*`` environment (and ``.env`` file), so a
    spawned worker inherits its parent's configuration without flags.

Fields
──────
database_url     : SQLAlchemy URL for the snapshot store and operation queues
data_dir         : Directory holding the default SQLite database
memory_limit     : Advisory worker memory ceiling ("512M", "2G"; "-1"/"" = none)
halt_on_error    : Whether recorded errors are fatal outside operation calls
log_level        : structlog level
log_format       : "console" or "json"
worker_python    : Interpreter used to spawn worker processes
max_spawns       : Upper bound on worker spawns per supervision (0 = unbounded)
extra_modules    : Comma-separated modules every worker imports (handler registration)
stale_batch_days : Age after which ``batch purge`` removes snapshots

Tags:
    settings, configuration, pydantic, environment, spine-batch

Doc-Types:
    api-reference
"""

from __future__ import annotations

import sys
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BatchSettings(BaseSettings):
    """spine-batch configuration.

    All fields can be set via ``SPINE_BATCH_*`` environment variables (e.g.
    ``SPINE_BATCH_MEMORY_LIMIT=256M``) or through a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="SPINE_BATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Storage ──────────────────────────────────────────────────
    database_url: str = Field(default="", description="Empty means <data_dir>/spine_batch.db")
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".spine_batch")

    # ── Worker ───────────────────────────────────────────────────
    memory_limit: str = Field(default="", description="Advisory ceiling, e.g. 512M")
    halt_on_error: bool = Field(default=True)
    worker_python: str = Field(default_factory=lambda: sys.executable)
    max_spawns: int = Field(default=0, ge=0)
    extra_modules: str = Field(default="", description="e.g. myapp.batch_ops,myapp.more")

    # ── Maintenance ──────────────────────────────────────────────
    stale_batch_days: int = Field(default=10, ge=0)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("console", "json"):
            raise ValueError("log_format must be 'console' or 'json'")
        return value

    # ── Derived properties ───────────────────────────────────────

    @property
    def resolved_database_url(self) -> str:
        """Database URL with the data-dir default applied."""
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.data_dir / 'spine_batch.db'}"

    @property
    def extra_module_list(self) -> list[str]:
        return [m.strip() for m in self.extra_modules.split(",") if m.strip()]

    @property
    def json_logs(self) -> bool:
        return self.log_format == "json"


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, BatchSettings] = {}


def get_settings(*, _force_reload: bool = False) -> BatchSettings:
    """Load, validate, and cache a :class:`BatchSettings` instance."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]
    settings = BatchSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()
