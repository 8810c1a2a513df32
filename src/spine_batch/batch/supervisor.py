"""Batch supervisor: the long-lived side of a batch run.

The supervisor gives a freshly built batch its id, persists it, and then
spawns one worker after another until a worker reports the batch finished::

    process(batch)
      ├── assign ULID id, running = True
      ├── store.create(batch)
      └── loop
            spawn("worker", [batch_id], worker_options)
              ├── no result        → stop, error
              ├── error            → stop, error
              ├── finished flag    → stop, done
              └── otherwise        → spawn again

``resume(batch_id)`` enters the same loop for a batch persisted by an
earlier, interrupted run.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from spine_batch.batch.log import BatchLog, LogEntry
from spine_batch.batch.models import Batch
from spine_batch.batch.spawn import WORKER_COMMAND, Spawner
from spine_batch.batch.store import BatchStore
from spine_batch.batch.worker import FINISHED_FLAG
from spine_batch.core.errors import BatchDefinitionError, BatchNotFoundError
from spine_batch.core.logging import LogContext, get_logger
from spine_batch.core.timestamps import generate_ulid

logger = get_logger(__name__)


@dataclass
class SupervisorResult:
    """Outcome of driving a batch."""

    batch_id: str
    finished: bool = False
    error: bool = False
    spawns: int = 0
    message: str = ""
    context: dict[str, Any] = field(default_factory=dict)
    log: list[LogEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "finished": self.finished,
            "error": self.error,
            "spawns": self.spawns,
            "message": self.message,
            "context": self.context,
            "log": [e.to_dict() for e in self.log],
        }


class BatchSupervisor:
    """Persists a batch and keeps spawning workers until it is done."""

    def __init__(
        self,
        store: BatchStore,
        spawner: Spawner,
        log: BatchLog | None = None,
        worker_options: Mapping[str, Any] | None = None,
        max_spawns: int = 0,
    ) -> None:
        self._store = store
        self._spawner = spawner
        self._log = log or BatchLog()
        self._worker_options = dict(worker_options or {})
        self._max_spawns = max_spawns

    @property
    def log(self) -> BatchLog:
        return self._log

    def process(self, batch: Batch) -> SupervisorResult:
        """Persist a new, populated *batch* and run it to completion."""
        if batch.id is not None:
            raise BatchDefinitionError(
                f"Batch {batch.id} already has an id; use resume() to continue it"
            )
        if not batch.sets:
            raise BatchDefinitionError("Batch has no sets")
        unpopulated = [
            i for i, s in enumerate(batch.sets) if not s.is_populated and s.control is None
        ]
        if unpopulated:
            raise BatchDefinitionError(f"Sets {unpopulated} have no queue; populate them first")

        batch.assign_id(generate_ulid())
        batch.running = True
        self._store.create(batch)
        logger.info(
            "batch.supervisor.created",
            batch_id=batch.id,
            sets=len(batch.sets),
            operations=batch.remaining_operations,
        )
        return self._drive(batch.id)

    def resume(self, batch_id: str) -> SupervisorResult:
        """Continue a batch persisted by an earlier run."""
        if not self._store.exists(batch_id):
            raise BatchNotFoundError(batch_id)
        logger.info("batch.supervisor.resuming", batch_id=batch_id)
        return self._drive(batch_id)

    def _drive(self, batch_id: str) -> SupervisorResult:
        spawns = 0
        with LogContext(batch_id=batch_id):
            while True:
                if self._max_spawns and spawns >= self._max_spawns:
                    message = f"Stopped after {spawns} worker(s); resume to continue"
                    logger.warning("batch.supervisor.spawn_limit", spawns=spawns)
                    return self._result(batch_id, spawns, message=message)

                result = self._spawner.spawn(WORKER_COMMAND, [batch_id], self._worker_options)
                spawns += 1

                if result is None:
                    self._log.log("error", "Worker produced no result", spawn=spawns)
                    return self._result(batch_id, spawns, error=True, message="no result")

                self._log.extend(result.log)
                context = result.context
                if result.error:
                    message = context.get("message") or "worker reported an error"
                    logger.error("batch.supervisor.worker_error", spawn=spawns, message=message)
                    return self._result(
                        batch_id, spawns, error=True, message=message, context=context
                    )

                if context.get(FINISHED_FLAG):
                    logger.info("batch.supervisor.finished", spawns=spawns)
                    return self._result(
                        batch_id,
                        spawns,
                        finished=True,
                        message=context.get("message", ""),
                        context=context,
                    )

                logger.info(
                    "batch.supervisor.progress",
                    spawn=spawns,
                    percentage=context.get("percentage"),
                    message=context.get("message"),
                )

    def _result(self, batch_id: str, spawns: int, **kwargs: Any) -> SupervisorResult:
        return SupervisorResult(batch_id=batch_id, spawns=spawns, log=self._log.entries, **kwargs)
