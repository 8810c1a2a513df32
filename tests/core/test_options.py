"""Tests for RuntimeOptions."""

from __future__ import annotations

import pytest

from spine_batch.core.options import RuntimeOptions
from spine_batch.core.settings import BatchSettings


class TestRuntimeOptions:
    def test_halt_on_error_defaults_on(self):
        assert RuntimeOptions().halt_on_error is True

    def test_from_settings(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("SPINE_BATCH_HALT_ON_ERROR", "0")
        options = RuntimeOptions.from_settings(BatchSettings())
        assert options.halt_on_error is False

    def test_override_restores_previous_value(self):
        options = RuntimeOptions()
        with options.override("halt_on_error", False):
            assert options.halt_on_error is False
        assert options.halt_on_error is True

    def test_override_restores_on_exception(self):
        options = RuntimeOptions()
        with pytest.raises(RuntimeError):
            with options.override("halt_on_error", False):
                raise RuntimeError("boom")
        assert options.halt_on_error is True

    def test_override_of_unset_option_removes_it(self):
        options = RuntimeOptions()
        with options.override("verbose", True):
            assert options.get("verbose") is True
        assert "verbose" not in options.as_dict()

    def test_get_and_set(self):
        options = RuntimeOptions({"yes": True})
        options.set("limit", 5)
        assert options.get("limit") == 5
        assert options.get("missing", "default") == "default"
        assert options.as_dict() == {"halt_on_error": True, "yes": True, "limit": 5}
