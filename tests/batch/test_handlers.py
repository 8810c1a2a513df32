"""Tests for the built-in handlers."""

from __future__ import annotations

import pytest

from spine_batch.batch import handlers
from spine_batch.batch.context import OperationContext
from spine_batch.batch.models import OperationRef
from spine_batch.batch.registry import CONTROL, FINISHED, OPERATION, HandlerRegistry
from spine_batch.core.errors import BatchDefinitionError


@pytest.fixture
def context(batch_log) -> OperationContext:
    return OperationContext(log=batch_log)


class TestOperations:
    def test_echo(self, context):
        assert handlers.echo("hi", context) == "hi"
        assert context.results == ["hi"]

    def test_sleep(self, context, monkeypatch: pytest.MonkeyPatch):
        slept = []
        monkeypatch.setattr(handlers.time, "sleep", slept.append)
        handlers.sleep("0.5", context)
        assert slept == [0.5]
        assert context.results == ["0.5"]

    def test_count_to_subdivides(self, context):
        handlers.count_to(10, 4, context)
        assert context.sandbox == {"count": 4}
        assert context.finished == pytest.approx(0.4)
        handlers.count_to(10, 4, context)
        handlers.count_to(10, 4, context)
        assert context.sandbox == {"count": 10}
        assert context.finished == 1.0
        assert context.results == [10]

    @pytest.mark.parametrize("step", [0, -2])
    def test_count_to_rejects_non_positive_step(self, context, step):
        with pytest.raises(BatchDefinitionError, match="step must be positive"):
            handlers.count_to(10, step, context)
        assert context.sandbox == {}

    def test_fail(self, context):
        with pytest.raises(RuntimeError, match="nope"):
            handlers.fail("nope", context)


class TestOtherKinds:
    def test_log_summary(self):
        handlers.log_summary(True, ["a"], [OperationRef("echo", ("a",))], "1 sec")

    def test_append_sets_copies(self):
        definitions = [{"operations": ["echo"]}]
        returned = handlers.append_sets(definitions)
        assert returned == definitions
        assert returned is not definitions


def test_register_builtins():
    registry = HandlerRegistry()
    handlers.register_builtins(registry)
    assert registry.list_handlers(OPERATION) == [
        ("operation", "count_to"),
        ("operation", "echo"),
        ("operation", "fail"),
        ("operation", "sleep"),
    ]
    assert registry.has(FINISHED, "log_summary")
    assert registry.has(CONTROL, "append_sets")
