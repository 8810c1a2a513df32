"""
Shared pytest fixtures and configuration for spine-batch tests.

This module provides:
- Settings, registry and logging-context isolation
- An in-memory SQLite database with the batch schema
- Store, queue factory and handler registry fixtures
- A controllable clock for elapsed-time assertions
"""

from __future__ import annotations

from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest

from spine_batch.batch.builder import BatchBuilder
from spine_batch.batch.handlers import register_builtins
from spine_batch.batch.log import BatchLog
from spine_batch.batch.models import Batch
from spine_batch.batch.queue import QueueFactory, queue_factory_for
from spine_batch.batch.registry import HandlerRegistry, reset_default_registry
from spine_batch.batch.store import BatchStore
from spine_batch.core.logging import clear_context, configure_logging
from spine_batch.core.options import RuntimeOptions
from spine_batch.core.orm import batch_session_factory, create_batch_engine, init_schema
from spine_batch.core.settings import clear_settings_cache


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark every test without an explicit marker as a unit test."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Isolation Fixtures
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def _configure_test_logging() -> None:
    """Configure logging once for the session; records reach caplog through stdlib."""
    configure_logging(level="DEBUG", json_format=False, force=True)


@pytest.fixture(autouse=True)
def _isolate_environment(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> Generator[None, None, None]:
    """Keep settings, registries and log context from leaking between tests."""
    import os

    for key in list(os.environ):
        if key.startswith("SPINE_BATCH_"):
            monkeypatch.delenv(key)
    monkeypatch.setenv("SPINE_BATCH_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.chdir(tmp_path)
    clear_settings_cache()
    reset_default_registry()
    yield
    clear_settings_cache()
    reset_default_registry()
    clear_context()


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def engine():
    eng = create_batch_engine("sqlite://")
    init_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def sessions(engine):
    return batch_session_factory(engine)


@pytest.fixture
def store(sessions) -> BatchStore:
    return BatchStore(sessions)


@pytest.fixture
def queue_factory(sessions) -> QueueFactory:
    return queue_factory_for(sessions)


# =============================================================================
# Engine Fixtures
# =============================================================================


@pytest.fixture
def registry() -> HandlerRegistry:
    """A fresh registry holding only the built-in handlers."""
    reg = HandlerRegistry()
    register_builtins(reg)
    return reg


@pytest.fixture
def options() -> RuntimeOptions:
    return RuntimeOptions()


@pytest.fixture
def batch_log(options) -> BatchLog:
    return BatchLog(options)


class FakeClock:
    """Deterministic clock; advances only when told to."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_batch(queue_factory) -> Callable[..., Batch]:
    """Build and populate a batch from a list of set definitions."""

    def _make(*sets: dict[str, Any]) -> Batch:
        return BatchBuilder().build_populated(list(sets), queue_factory)

    return _make


@pytest.fixture
def persisted_batch(store, make_batch) -> Callable[..., Batch]:
    """Build, populate, assign an id and create the snapshot, as the supervisor does."""

    def _persist(*sets: dict[str, Any], batch_id: str = "01TESTBATCH0000000000000000") -> Batch:
        batch = make_batch(*sets)
        batch.assign_id(batch_id)
        batch.running = True
        store.create(batch)
        return batch

    return _persist
