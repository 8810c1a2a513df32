"""Batch data model.

Manifesto:
    A batch outlives every process that works on it, so everything it holds
    must survive a JSON round-trip.  Operations are therefore not callables
    but :class:`OperationRef` values -- a registered name plus plain
    arguments -- resolved through the handler registry in whichever process
    picks them up.

ARCHITECTURE
────────────
::

    Batch
      ├── id                 ─ ULID, assigned once by the supervisor
      ├── active_set_index   ─ cursor, never decreases
      ├── running
      └── sets: [BatchSet, ...]
             ├── queue_name          ─ OperationQueue holding the operations
             ├── sandbox / results   ─ shared by the set's operations
             ├── remaining_count / total_count / success
             ├── start_time / elapsed
             ├── title / init_message / progress_message / error_message
             ├── finished            ─ finisher name (optional)
             ├── extra_module        ─ module imported before the set runs
             └── control             ─ ControlRef (sets with no operations)

Tags:
    spine-batch, batch, data-model, serialization

Doc-Types:
    api-reference, data-model
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from spine_batch.core.errors import BatchDefinitionError
from spine_batch.core.timestamps import epoch_now

DEFAULT_TITLE = "Processing"
DEFAULT_INIT_MESSAGE = "Initializing."
DEFAULT_PROGRESS_MESSAGE = "Completed @current of @total."
DEFAULT_ERROR_MESSAGE = "An error has occurred."


@dataclass(frozen=True)
class OperationRef:
    """Serializable reference to a registered operation plus its arguments."""

    name: str
    args: tuple[Any, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "args": list(self.args)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OperationRef:
        if not isinstance(data, dict) or "name" not in data:
            raise BatchDefinitionError(f"Invalid operation reference: {data!r}")
        return cls(name=str(data["name"]), args=tuple(data.get("args") or ()))


@dataclass(frozen=True)
class ControlRef(OperationRef):
    """Reference to a control operation.

    Its handler returns new set definitions.  The worker applies it only when
    the cursor advances onto the set that carries it.
    """

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ControlRef:
        if not isinstance(data, dict) or "name" not in data:
            raise BatchDefinitionError(f"Invalid control reference: {data!r}")
        return cls(name=str(data["name"]), args=tuple(data.get("args") or ()))


@dataclass
class BatchSet:
    """One unit of work: a queue of operations and its bookkeeping."""

    queue_name: str | None = None
    sandbox: dict[str, Any] = field(default_factory=dict)
    results: list[Any] = field(default_factory=list)
    remaining_count: int = 0
    total_count: int = 0
    success: bool = False
    start_time: float | None = None
    elapsed: float = 0.0
    title: str = DEFAULT_TITLE
    init_message: str = DEFAULT_INIT_MESSAGE
    progress_message: str = DEFAULT_PROGRESS_MESSAGE
    error_message: str = DEFAULT_ERROR_MESSAGE
    finished: str | None = None
    extra_module: str | None = None
    control: ControlRef | None = None
    # Operations awaiting population into the queue; never persisted.
    operations: list[OperationRef] = field(default_factory=list, repr=False)

    @property
    def is_populated(self) -> bool:
        return self.queue_name is not None

    @property
    def started(self) -> bool:
        return self.start_time is not None

    def mark_started(self, now: float) -> None:
        if self.start_time is None:
            self.start_time = now

    def record_elapsed(self, now: float) -> None:
        """Elapsed wall-clock time since the set first started."""
        if self.start_time is not None:
            self.elapsed = max(0.0, now - self.start_time)

    def complete_operation(self) -> None:
        """Account for one fully completed operation."""
        if self.remaining_count <= 0:
            raise BatchDefinitionError(
                f"Set {self.title!r} has no remaining operations to complete"
            )
        self.remaining_count -= 1
        self.sandbox = {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "queue_name": self.queue_name,
            "sandbox": self.sandbox,
            "results": self.results,
            "remaining_count": self.remaining_count,
            "total_count": self.total_count,
            "success": self.success,
            "start_time": self.start_time,
            "elapsed": self.elapsed,
            "title": self.title,
            "init_message": self.init_message,
            "progress_message": self.progress_message,
            "error_message": self.error_message,
            "finished": self.finished,
            "extra_module": self.extra_module,
            "control": self.control.to_dict() if self.control else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BatchSet:
        control = data.get("control")
        return cls(
            queue_name=data.get("queue_name"),
            sandbox=dict(data.get("sandbox") or {}),
            results=list(data.get("results") or []),
            remaining_count=int(data.get("remaining_count", 0)),
            total_count=int(data.get("total_count", 0)),
            success=bool(data.get("success", False)),
            start_time=data.get("start_time"),
            elapsed=float(data.get("elapsed", 0.0)),
            title=data.get("title", DEFAULT_TITLE),
            init_message=data.get("init_message", DEFAULT_INIT_MESSAGE),
            progress_message=data.get("progress_message", DEFAULT_PROGRESS_MESSAGE),
            error_message=data.get("error_message", DEFAULT_ERROR_MESSAGE),
            finished=data.get("finished"),
            extra_module=data.get("extra_module"),
            control=ControlRef.from_dict(control) if control else None,
        )


@dataclass
class Batch:
    """The whole job: an ordered list of sets plus a stable id."""

    sets: list[BatchSet] = field(default_factory=list)
    id: str | None = None
    active_set_index: int = 0
    running: bool = False
    created_at: float = field(default_factory=epoch_now)

    # -- identity -----------------------------------------------------------

    def assign_id(self, batch_id: str) -> None:
        """Assign the stable id.  It can never change afterwards."""
        if self.id is not None and self.id != batch_id:
            raise BatchDefinitionError(
                f"Batch already has id {self.id}; refusing to reassign to {batch_id}"
            )
        self.id = batch_id

    # -- cursor -------------------------------------------------------------

    @property
    def active_set(self) -> BatchSet:
        if not self.sets:
            raise BatchDefinitionError("Batch has no sets")
        return self.sets[self.active_set_index]

    def has_next_set(self) -> bool:
        return self.active_set_index + 1 < len(self.sets)

    def advance(self) -> BatchSet:
        """Move the cursor to the next set and return it."""
        if not self.has_next_set():
            raise BatchDefinitionError("No set to advance to")
        self.active_set_index += 1
        return self.active_set

    def insert_sets(self, new_sets: list[BatchSet], position: int) -> None:
        """Insert sets at *position*; only positions after the cursor are allowed."""
        if position <= self.active_set_index:
            raise BatchDefinitionError(
                f"Cannot insert sets at {position}; cursor is at {self.active_set_index}"
            )
        self.sets[position:position] = new_sets

    # -- progress -----------------------------------------------------------

    @property
    def is_finished(self) -> bool:
        return bool(self.sets) and all(s.success for s in self.sets)

    @property
    def remaining_operations(self) -> int:
        return sum(s.remaining_count for s in self.sets)

    # -- serialization ------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "active_set_index": self.active_set_index,
            "running": self.running,
            "created_at": self.created_at,
            "sets": [s.to_dict() for s in self.sets],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Batch:
        return cls(
            sets=[BatchSet.from_dict(s) for s in data.get("sets", [])],
            id=data.get("id"),
            active_set_index=int(data.get("active_set_index", 0)),
            running=bool(data.get("running", False)),
            created_at=float(data.get("created_at") or epoch_now()),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_json(cls, payload: str) -> Batch:
        return cls.from_dict(json.loads(payload))
