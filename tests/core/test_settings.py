"""Tests for BatchSettings and the cached settings factory."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from spine_batch.core.settings import BatchSettings, clear_settings_cache, get_settings


class TestDefaults:
    def test_database_url_defaults_to_data_dir(self, tmp_path: Path):
        settings = BatchSettings()
        assert settings.database_url == ""
        assert settings.resolved_database_url == f"sqlite:///{tmp_path / 'data' / 'spine_batch.db'}"

    def test_worker_defaults(self):
        settings = BatchSettings()
        assert settings.halt_on_error is True
        assert settings.memory_limit == ""
        assert settings.max_spawns == 0
        assert settings.stale_batch_days == 10
        assert settings.extra_module_list == []
        assert settings.json_logs is False


class TestEnvironment:
    def test_reads_prefixed_variables(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("SPINE_BATCH_DATABASE_URL", "sqlite:///elsewhere.db")
        monkeypatch.setenv("SPINE_BATCH_MEMORY_LIMIT", "256M")
        monkeypatch.setenv("SPINE_BATCH_HALT_ON_ERROR", "false")
        monkeypatch.setenv("SPINE_BATCH_LOG_FORMAT", "JSON")
        monkeypatch.setenv("SPINE_BATCH_EXTRA_MODULES", "a.b, c ,")
        settings = BatchSettings()
        assert settings.resolved_database_url == "sqlite:///elsewhere.db"
        assert settings.memory_limit == "256M"
        assert settings.halt_on_error is False
        assert settings.json_logs is True
        assert settings.extra_module_list == ["a.b", "c"]

    def test_reads_dotenv_file(self, tmp_path: Path):
        (tmp_path / ".env").write_text("SPINE_BATCH_MAX_SPAWNS=7\n")
        assert BatchSettings().max_spawns == 7

    def test_rejects_unknown_log_format(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("SPINE_BATCH_LOG_FORMAT", "xml")
        with pytest.raises(ValidationError):
            BatchSettings()

    def test_rejects_negative_spawn_limit(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("SPINE_BATCH_MAX_SPAWNS", "-1")
        with pytest.raises(ValidationError):
            BatchSettings()


class TestCache:
    def test_get_settings_is_cached(self, monkeypatch: pytest.MonkeyPatch):
        first = get_settings()
        monkeypatch.setenv("SPINE_BATCH_MEMORY_LIMIT", "1G")
        assert get_settings() is first
        assert get_settings(_force_reload=True).memory_limit == "1G"

    def test_clear_settings_cache(self, monkeypatch: pytest.MonkeyPatch):
        first = get_settings()
        clear_settings_cache()
        assert get_settings() is not first
