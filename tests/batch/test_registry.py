"""Tests for the handler registry."""

from __future__ import annotations

from pathlib import Path

import pytest

from spine_batch.batch import registry as registry_module
from spine_batch.batch.registry import (
    CONTROL,
    FINISHED,
    OPERATION,
    HandlerRegistry,
    get_default_registry,
    load_extra_module,
    register_operation,
    reset_default_registry,
)
from spine_batch.core.errors import ConfigError, HandlerNotFoundError


class TestHandlerRegistry:
    def test_register_and_get(self):
        reg = HandlerRegistry()

        def handler(context):
            """Do a thing.

            More detail.
            """

        reg.register(OPERATION, "thing", handler)
        assert reg.get(OPERATION, "thing") is handler
        assert reg.has(OPERATION, "thing")
        assert reg.get_metadata(OPERATION, "thing")["description"] == "Do a thing."

    def test_kinds_are_separate_namespaces(self):
        reg = HandlerRegistry()
        reg.register(OPERATION, "same", lambda c: None)
        assert not reg.has(FINISHED, "same")
        with pytest.raises(HandlerNotFoundError):
            reg.get(FINISHED, "same")

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            HandlerRegistry().register("job", "x", lambda: None)

    def test_is_callable(self):
        reg = HandlerRegistry()
        reg.register(FINISHED, "ok", lambda *a: None)
        reg.register(FINISHED, "broken", "not callable")  # type: ignore[arg-type]
        assert reg.is_callable(FINISHED, "ok")
        assert not reg.is_callable(FINISHED, "broken")
        assert not reg.is_callable(FINISHED, "missing")
        assert not reg.is_callable(FINISHED, None)

    def test_listing_and_unregister(self):
        reg = HandlerRegistry()
        reg.register(OPERATION, "b", lambda c: None, description="B")
        reg.register(CONTROL, "a", lambda: [])
        assert reg.list_handlers() == [("control", "a"), ("operation", "b")]
        assert reg.list_handlers(OPERATION) == [("operation", "b")]
        assert reg.list_with_metadata(OPERATION)[0]["description"] == "B"
        assert reg.unregister(OPERATION, "b") is True
        assert reg.unregister(OPERATION, "b") is False
        reg.clear()
        assert reg.list_handlers() == []

    def test_not_found_lists_available(self):
        reg = HandlerRegistry()
        reg.register(OPERATION, "echo", lambda m, c: m)
        with pytest.raises(HandlerNotFoundError, match="echo"):
            reg.get(OPERATION, "ech0")


class TestDefaultRegistry:
    def test_contains_builtins(self):
        reg = get_default_registry()
        assert reg.has(OPERATION, "echo")
        assert reg.has(FINISHED, "log_summary")
        assert reg.has(CONTROL, "append_sets")

    def test_decorator_registers_on_default(self):
        @register_operation("decorated")
        def decorated(context):
            return None

        assert get_default_registry().get(OPERATION, "decorated") is decorated

    def test_decorator_with_explicit_registry(self):
        reg = HandlerRegistry()

        @register_operation("local", registry=reg)
        def local(context):
            return None

        assert reg.has(OPERATION, "local")
        assert not get_default_registry().has(OPERATION, "local")

    def test_reset(self):
        first = get_default_registry()
        reset_default_registry()
        assert get_default_registry() is not first


class TestExtraModules:
    def test_loading_registers_handlers(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        (tmp_path / "extra_ops_for_registry.py").write_text(
            "from spine_batch.batch.registry import register_operation\n"
            "\n"
            "@register_operation('from_extra')\n"
            "def from_extra(context):\n"
            "    return 'extra'\n"
        )
        monkeypatch.syspath_prepend(str(tmp_path))
        monkeypatch.setattr(registry_module, "_loaded_modules", set())
        load_extra_module("extra_ops_for_registry")
        assert get_default_registry().has(OPERATION, "from_extra")
        assert "extra_ops_for_registry" in registry_module._loaded_modules

    def test_none_is_a_noop(self):
        load_extra_module(None)
        load_extra_module("")

    def test_missing_module(self):
        with pytest.raises(ConfigError):
            load_extra_module("spine_batch_no_such_module")
