"""Batch builder: set definitions in, populated Batch out.

A definition is plain data, so it can live in YAML, be produced by a Python
callable, or be returned by a control operation at run time::

    sets:
      - title: Rebuild search index
        extra_module: myapp.batch_ops      # imported before the set runs
        finished: log_summary               # finisher name
        progress_message: "Indexed @current of @total (@percentage%)"
        operations:
          - [reindex_shard, [0]]
          - {name: reindex_shard, args: [1]}
      - control: {name: append_sets, args: [[{operations: [[echo, [done]]]}]]}

A top-level list is accepted as shorthand for ``{"sets": [...]}``.

``populate_queues`` gives each set its own queue and fixes the operation
counts.  A set that carries a control operation holds no operations; it
completes as soon as the cursor reaches it, after its control operation has
inserted the sets it returns.
"""

from __future__ import annotations

import importlib
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

import yaml

from spine_batch.batch.models import (
    DEFAULT_ERROR_MESSAGE,
    DEFAULT_INIT_MESSAGE,
    DEFAULT_PROGRESS_MESSAGE,
    DEFAULT_TITLE,
    Batch,
    BatchSet,
    ControlRef,
    OperationRef,
)
from spine_batch.batch.queue import OperationQueue, new_queue_name
from spine_batch.core.errors import BatchDefinitionError
from spine_batch.core.logging import get_logger
from spine_batch.core.timestamps import generate_ulid

logger = get_logger(__name__)

_SET_KEYS = {
    "title",
    "init_message",
    "progress_message",
    "error_message",
    "finished",
    "extra_module",
    "operations",
    "control",
}


def parse_operation(entry: Any) -> OperationRef:
    """Normalize ``[name, [args]]``, ``{name, args}`` or ``"name"`` to an OperationRef."""
    if isinstance(entry, OperationRef):
        return entry
    if isinstance(entry, str):
        return OperationRef(entry)
    if isinstance(entry, dict):
        return OperationRef.from_dict(entry)
    if isinstance(entry, (list, tuple)) and entry and isinstance(entry[0], str):
        if len(entry) > 2:
            raise BatchDefinitionError(f"Operation entry has too many parts: {entry!r}")
        args = entry[1] if len(entry) == 2 else ()
        if not isinstance(args, (list, tuple)):
            raise BatchDefinitionError(f"Operation arguments must be a list: {entry!r}")
        return OperationRef(entry[0], tuple(args))
    raise BatchDefinitionError(f"Invalid operation entry: {entry!r}")


def parse_control(entry: Any) -> ControlRef:
    if isinstance(entry, ControlRef):
        return entry
    ref = parse_operation(entry)
    return ControlRef(ref.name, ref.args)


class BatchBuilder:
    """Normalizes definitions into Batches and populates their queues."""

    def build_set(self, definition: dict[str, Any] | BatchSet) -> BatchSet:
        if isinstance(definition, BatchSet):
            return definition
        if not isinstance(definition, dict):
            raise BatchDefinitionError(f"Set definition must be a mapping: {definition!r}")

        unknown = set(definition) - _SET_KEYS
        if unknown:
            raise BatchDefinitionError(f"Unknown set keys: {sorted(unknown)}")

        operations = [parse_operation(e) for e in definition.get("operations") or []]
        control = definition.get("control")
        if control and operations:
            raise BatchDefinitionError("A set cannot carry both operations and a control operation")

        return BatchSet(
            title=definition.get("title") or DEFAULT_TITLE,
            init_message=definition.get("init_message") or DEFAULT_INIT_MESSAGE,
            progress_message=definition.get("progress_message") or DEFAULT_PROGRESS_MESSAGE,
            error_message=definition.get("error_message") or DEFAULT_ERROR_MESSAGE,
            finished=definition.get("finished"),
            extra_module=definition.get("extra_module"),
            control=parse_control(control) if control else None,
            operations=operations,
        )

    def build_sets(self, definitions: Iterable[dict[str, Any] | BatchSet]) -> list[BatchSet]:
        return [self.build_set(d) for d in definitions]

    def build(self, definition: dict[str, Any] | list[Any]) -> Batch:
        """Build an unpopulated Batch from a definition."""
        if isinstance(definition, list):
            definition = {"sets": definition}
        if not isinstance(definition, dict):
            raise BatchDefinitionError(f"Batch definition must be a mapping or list: {definition!r}")
        sets = definition.get("sets")
        if not sets:
            raise BatchDefinitionError("Batch definition has no sets")
        return Batch(sets=self.build_sets(sets))

    def populate_set(
        self,
        batch_set: BatchSet,
        queue_factory: Callable[[str], OperationQueue],
        index: int,
        prefix: str,
    ) -> OperationQueue | None:
        """Create *batch_set*'s queue and enqueue its operations."""
        if batch_set.is_populated:
            return None
        queue = queue_factory(new_queue_name(index, prefix))
        count = queue.populate(batch_set.operations)
        batch_set.queue_name = queue.name
        batch_set.total_count = count
        batch_set.remaining_count = count
        batch_set.operations = []
        return queue

    def populate_queues(
        self,
        batch: Batch,
        queue_factory: Callable[[str], OperationQueue],
    ) -> Batch:
        """Populate a queue for every set that does not have one yet."""
        prefix = generate_ulid()
        for index, batch_set in enumerate(batch.sets):
            self.populate_set(batch_set, queue_factory, index, prefix)
        logger.debug(
            "batch.builder.populated",
            sets=len(batch.sets),
            operations=sum(s.total_count for s in batch.sets),
        )
        return batch

    def build_populated(
        self,
        definition: dict[str, Any] | list[Any],
        queue_factory: Callable[[str], OperationQueue],
    ) -> Batch:
        return self.populate_queues(self.build(definition), queue_factory)


def load_definition(source: str | Path) -> dict[str, Any] | list[Any]:
    """Load a definition from a YAML file or a ``module:callable`` reference."""
    text = str(source)
    path = Path(text)
    if path.suffix.lower() in (".yaml", ".yml", ".json") or path.exists():
        if not path.exists():
            raise BatchDefinitionError(f"Definition file not found: {path}")
        with path.open(encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
        if data is None:
            raise BatchDefinitionError(f"Definition file is empty: {path}")
        return data

    module_path, sep, attr = text.partition(":")
    if not sep or not module_path or not attr:
        raise BatchDefinitionError(
            f"Definition must be a YAML file or 'module:callable', got {text!r}"
        )
    try:
        module = importlib.import_module(module_path)
    except ImportError as exc:
        raise BatchDefinitionError(f"Cannot import {module_path!r}: {exc}", cause=exc) from exc
    target = getattr(module, attr, None)
    if target is None:
        raise BatchDefinitionError(f"{module_path!r} has no attribute {attr!r}")
    return target() if callable(target) else target
