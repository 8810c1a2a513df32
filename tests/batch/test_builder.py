"""Tests for BatchBuilder and definition loading."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from spine_batch.batch.builder import BatchBuilder, load_definition, parse_operation
from spine_batch.batch.models import BatchSet, ControlRef, OperationRef
from spine_batch.core.errors import BatchDefinitionError


class TestParseOperation:
    @pytest.mark.parametrize(
        ("entry", "expected"),
        [
            ("echo", OperationRef("echo")),
            (["echo", ["hi"]], OperationRef("echo", ("hi",))),
            (("echo",), OperationRef("echo")),
            ({"name": "echo", "args": ["hi"]}, OperationRef("echo", ("hi",))),
            (OperationRef("x", (1,)), OperationRef("x", (1,))),
        ],
    )
    def test_forms(self, entry, expected):
        assert parse_operation(entry) == expected

    @pytest.mark.parametrize("entry", [42, [], ["echo", "notalist"], ["a", [], "extra"]])
    def test_invalid(self, entry):
        with pytest.raises(BatchDefinitionError):
            parse_operation(entry)


class TestBuild:
    def test_defaults_applied(self):
        batch = BatchBuilder().build([{"operations": ["echo"]}])
        batch_set = batch.sets[0]
        assert batch_set.title == "Processing"
        assert batch_set.init_message == "Initializing."
        assert batch_set.error_message == "An error has occurred."
        assert batch_set.operations == [OperationRef("echo")]
        assert batch.id is None

    def test_control_set(self):
        batch = BatchBuilder().build({"sets": [{"control": ["append_sets", [[]]]}]})
        assert batch.sets[0].control == ControlRef("append_sets", ([],))

    def test_rejects_control_and_operations(self):
        with pytest.raises(BatchDefinitionError):
            BatchBuilder().build([{"control": "append_sets", "operations": ["echo"]}])

    def test_rejects_unknown_keys(self):
        with pytest.raises(BatchDefinitionError, match="opertions"):
            BatchBuilder().build([{"opertions": ["echo"]}])

    @pytest.mark.parametrize("definition", [[], {"sets": []}, {}, "sets"])
    def test_rejects_empty(self, definition):
        with pytest.raises(BatchDefinitionError):
            BatchBuilder().build(definition)

    def test_passes_built_sets_through(self):
        existing = BatchSet(title="prebuilt")
        assert BatchBuilder().build_set(existing) is existing


class TestPopulate:
    def test_each_set_gets_its_own_queue(self, queue_factory):
        batch = BatchBuilder().build_populated(
            [
                {"operations": [["echo", ["a"]], ["echo", ["b"]]]},
                {"operations": [["echo", ["c"]]]},
                {"control": "append_sets"},
            ],
            queue_factory,
        )
        names = [s.queue_name for s in batch.sets]
        assert len(set(names)) == 3
        assert [(s.total_count, s.remaining_count) for s in batch.sets] == [(2, 2), (1, 1), (0, 0)]
        assert all(s.operations == [] for s in batch.sets)
        assert queue_factory(names[0]).claim().operation == OperationRef("echo", ("a",))

    def test_populate_is_idempotent(self, queue_factory):
        builder = BatchBuilder()
        batch = builder.build_populated([{"operations": ["echo"]}], queue_factory)
        name = batch.sets[0].queue_name
        builder.populate_queues(batch, queue_factory)
        assert batch.sets[0].queue_name == name
        assert queue_factory(name).pending_count() == 1


def build_nightly():
    return [{"title": "nightly", "operations": ["echo"]}]


NIGHTLY = {"sets": [{"operations": ["echo"]}]}


class TestLoadDefinition:
    def test_yaml_file(self, tmp_path: Path):
        path = tmp_path / "job.yaml"
        path.write_text(
            "sets:\n"
            "  - title: Greet\n"
            "    operations:\n"
            "      - [echo, [hello]]\n"
        )
        definition = load_definition(path)
        batch = BatchBuilder().build(definition)
        assert batch.sets[0].title == "Greet"
        assert batch.sets[0].operations == [OperationRef("echo", ("hello",))]

    def test_json_file(self, tmp_path: Path):
        path = tmp_path / "job.json"
        path.write_text(json.dumps(NIGHTLY))
        assert load_definition(str(path)) == NIGHTLY

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(BatchDefinitionError):
            load_definition(tmp_path / "absent.yml")

    def test_empty_file(self, tmp_path: Path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        with pytest.raises(BatchDefinitionError):
            load_definition(path)

    def test_callable_reference(self):
        assert load_definition(f"{__name__}:build_nightly")[0]["title"] == "nightly"

    def test_attribute_reference(self):
        assert load_definition(f"{__name__}:NIGHTLY") is NIGHTLY

    @pytest.mark.parametrize(
        "source", ["no_colon_here", "spine_batch_missing_mod:x", f"{__name__}:absent"]
    )
    def test_bad_references(self, source):
        with pytest.raises(BatchDefinitionError):
            load_definition(source)
