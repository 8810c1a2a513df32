"""Tests for the spine-batch error hierarchy."""

from __future__ import annotations

import pytest

from spine_batch.core.errors import (
    BatchDefinitionError,
    BatchEngineError,
    BatchNotFoundError,
    ConfigError,
    CorruptBatchError,
    ErrorCategory,
    HaltOnErrorError,
    HandlerNotFoundError,
    OperationError,
    SpawnError,
    StorageError,
    categorize_error,
)


class TestCategories:
    @pytest.mark.parametrize(
        ("error", "category"),
        [
            (StorageError("x"), ErrorCategory.STORAGE),
            (BatchNotFoundError("b1"), ErrorCategory.STORAGE),
            (CorruptBatchError("b1"), ErrorCategory.STORAGE),
            (SpawnError("x"), ErrorCategory.SPAWN),
            (OperationError("x"), ErrorCategory.OPERATION),
            (HaltOnErrorError("CODE", "x"), ErrorCategory.OPERATION),
            (HandlerNotFoundError("operation", "nope"), ErrorCategory.REGISTRY),
            (ConfigError("x"), ErrorCategory.CONFIG),
            (BatchDefinitionError("x"), ErrorCategory.VALIDATION),
        ],
    )
    def test_default_category(self, error, category):
        assert error.category is category
        assert isinstance(error, BatchEngineError)

    def test_spawn_errors_are_retryable(self):
        assert SpawnError("x").retryable is True
        assert StorageError("x").retryable is False

    def test_categorize_foreign_errors(self):
        assert categorize_error(OSError("disk")) is ErrorCategory.STORAGE
        assert categorize_error(ValueError("bad")) is ErrorCategory.VALIDATION
        assert categorize_error(RuntimeError("?")) is ErrorCategory.UNKNOWN
        assert categorize_error(ConfigError("x")) is ErrorCategory.CONFIG


class TestContext:
    def test_with_context_sets_known_fields_and_metadata(self):
        err = OperationError("failed").with_context(batch_id="b1", set_index=2, shard=7)
        assert err.context.batch_id == "b1"
        assert err.context.set_index == 2
        assert err.context.metadata == {"shard": 7}

    def test_to_dict(self):
        cause = ValueError("root")
        err = StorageError("write failed", cause=cause).with_context(batch_id="b1")
        data = err.to_dict()
        assert data["error_type"] == "StorageError"
        assert data["message"] == "write failed"
        assert data["category"] == "STORAGE"
        assert data["retryable"] is False
        assert data["context"] == {"batch_id": "b1"}
        assert data["cause"] == "root"
        assert err.__cause__ is cause

    def test_not_found_carries_batch_id(self):
        err = BatchNotFoundError("b9")
        assert err.batch_id == "b9"
        assert "b9" in str(err)

    def test_halt_on_error_carries_code(self):
        err = HaltOnErrorError("BATCH_OPERATION_ERROR", "boom")
        assert err.code == "BATCH_OPERATION_ERROR"
        assert "boom" in err.message

    def test_handler_not_found_lists_available(self):
        err = HandlerNotFoundError("operation", "missing", ["echo", "sleep"])
        assert "echo, sleep" in err.message
        assert err.kind == "operation"
        assert err.name == "missing"
