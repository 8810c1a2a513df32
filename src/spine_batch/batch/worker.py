"""Batch worker: one process invocation's share of a batch.

The worker loads the batch snapshot for an id, drains operations from the
active set's queue, and persists the batch again before the process exits.
The supervisor keeps spawning workers until one reports the batch finished.

Loop, per iteration::

    ┌──────────────────────────────────────────────────────────────┐
    │ 1. enter the active set on first touch                        │
    │      start time, extra module, init message, control op       │
    │ 2. claim the next queue item (none → fraction 1, no call)     │
    │ 3. build an OperationContext from the set's sandbox/results   │
    │ 4. invoke handler(*args, context) with halt_on_error off      │
    │ 5. surface a returned message                                 │
    │ 6. fraction >= 1 → delete item, remaining -= 1, clear sandbox │
    │    fraction <  1 → leave item in flight, re-invoked next time │
    │ 7. advance past every set whose remaining count is zero       │
    │ 8. memory ceiling exceeded → record elapsed, stop             │
    │ 9. stop when the batch finishes or a worked set completes     │
    └──────────────────────────────────────────────────────────────┘

Checkpointing: the batch is written back with ``store.update`` exactly once
per invocation, either from the ``finally`` of :meth:`BatchWorker.run` or
from the ``atexit`` handler registered while a batch is active (whichever
runs first).  SIGTERM is turned into ``SystemExit`` while the worker runs so
a polite kill still reaches that path.  A hard kill loses the progress made
since the previous checkpoint.

Usage::

    worker = BatchWorker(store, queue_factory_for(sessions))
    result = worker.run(batch_id)
    print(json.dumps(result.to_envelope()))
"""

from __future__ import annotations

import atexit
import signal
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from spine_batch.batch.builder import BatchBuilder
from spine_batch.batch.context import OperationContext
from spine_batch.batch.finalizer import BatchFinalizer
from spine_batch.batch.log import BatchLog, LogEntry
from spine_batch.batch.memory import MemoryCeiling
from spine_batch.batch.models import Batch, BatchSet
from spine_batch.batch.progress import (
    format_interval,
    progress_percentage,
    render_progress_message,
)
from spine_batch.batch.queue import OperationQueue, QueueFactory, QueueItem
from spine_batch.batch.registry import (
    CONTROL,
    OPERATION,
    HandlerRegistry,
    get_default_registry,
    load_extra_module,
)
from spine_batch.batch.store import BatchStore
from spine_batch.core.errors import (
    BatchDefinitionError,
    BatchEngineError,
    StorageError,
    categorize_error,
)
from spine_batch.core.logging import LogContext, get_logger
from spine_batch.core.options import RuntimeOptions
from spine_batch.core.timestamps import epoch_now, generate_ulid

logger = get_logger(__name__)

FINISHED_FLAG = "batch_process_finished"


@dataclass
class WorkerResult:
    """Outcome of one worker invocation."""

    batch_id: str
    finished: bool = False
    percentage: float = 0.0
    message: str = ""
    error: bool = False
    memory_exceeded: bool = False
    operations_processed: int = 0
    log: list[LogEntry] = field(default_factory=list)

    def to_context(self) -> dict[str, Any]:
        return {
            FINISHED_FLAG: self.finished,
            "batch_id": self.batch_id,
            "percentage": self.percentage,
            "message": self.message,
            "memory_exceeded": self.memory_exceeded,
            "operations_processed": self.operations_processed,
        }

    def to_envelope(self) -> dict[str, Any]:
        """The JSON document a worker process prints on stdout."""
        return {
            "context": self.to_context(),
            "error": self.error,
            "log": [entry.to_dict() for entry in self.log],
        }


@contextmanager
def _graceful_termination() -> Iterator[None]:
    """Turn SIGTERM into SystemExit so cleanup handlers run."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _raise_exit(signum: int, frame: Any) -> None:
        logger.warning("batch.worker.terminated", signal=signum)
        raise SystemExit(128 + signum)

    previous = signal.signal(signal.SIGTERM, _raise_exit)
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


class BatchWorker:
    """Runs the worker loop against a persisted batch."""

    def __init__(
        self,
        store: BatchStore,
        queue_factory: QueueFactory,
        registry: HandlerRegistry | None = None,
        options: RuntimeOptions | None = None,
        log: BatchLog | None = None,
        memory_ceiling: MemoryCeiling | None = None,
        finalizer: BatchFinalizer | None = None,
        builder: BatchBuilder | None = None,
        clock: Callable[[], float] = epoch_now,
        stop_at_set_boundary: bool = True,
    ) -> None:
        self._store = store
        self._queue_factory = queue_factory
        self._registry = registry or get_default_registry()
        self._options = options or RuntimeOptions()
        self._log = log or BatchLog(self._options)
        self._memory = memory_ceiling or MemoryCeiling(None)
        self._builder = builder or BatchBuilder()
        self._clock = clock
        self._finalizer = finalizer or BatchFinalizer(
            store, queue_factory, self._registry, self._log
        )
        self._stop_at_set_boundary = stop_at_set_boundary
        self._queues: dict[str, OperationQueue] = {}
        self._active: Batch | None = None

    @property
    def log(self) -> BatchLog:
        return self._log

    @property
    def active_batch(self) -> Batch | None:
        return self._active

    # ------------------------------------------------------------------ #
    # Entry point
    # ------------------------------------------------------------------ #

    def run(self, batch_id: str) -> WorkerResult:
        """Run one worker invocation for *batch_id*."""
        with LogContext(batch_id=batch_id), _graceful_termination():
            try:
                batch = self._store.load(batch_id)
            except StorageError as exc:
                logger.error("batch.worker.no_batch", error=exc.message)
                return WorkerResult(
                    batch_id=batch_id, error=True, message="no batch", log=self._log.entries
                )

            self._activate(batch)
            try:
                result = self._process(batch)
            except BatchEngineError as exc:
                logger.error("batch.worker.aborted", **exc.to_dict())
                result = WorkerResult(
                    batch_id=batch_id,
                    error=True,
                    message=exc.message,
                    percentage=self._percentage(batch, 0.0),
                )
            finally:
                persisted = self.checkpoint()

            if not persisted:
                # The snapshot is stale; no further worker may run against it.
                result.error = True
                result.message = "checkpoint failed"
            result.log = self._log.entries
            return result

    # ------------------------------------------------------------------ #
    # Checkpointing
    # ------------------------------------------------------------------ #

    def _activate(self, batch: Batch) -> None:
        self._active = batch
        atexit.register(self.checkpoint)

    def checkpoint(self) -> bool:
        """Persist the active batch once and release it.

        Returns False only when the snapshot could not be written.
        """
        batch, self._active = self._active, None
        atexit.unregister(self.checkpoint)
        if batch is None:
            return True
        if batch.sets:
            batch.active_set.record_elapsed(self._clock())
        try:
            self._store.update(batch)
        except StorageError as exc:
            logger.error("batch.worker.checkpoint_failed", batch_id=batch.id, error=exc.message)
            self._log.log("error", f"Could not save batch {batch.id}: {exc.message}")
            return False
        logger.debug(
            "batch.worker.checkpoint",
            batch_id=batch.id,
            active_set=batch.active_set_index,
            remaining=batch.remaining_operations,
        )
        return True

    # ------------------------------------------------------------------ #
    # Main loop
    # ------------------------------------------------------------------ #

    def _process(self, batch: Batch) -> WorkerResult:
        assert batch.id is not None
        batch.running = True
        processed = 0
        fraction = 0.0
        message = ""
        memory_exceeded = False

        while not batch.is_finished:
            batch_set = batch.active_set
            if batch_set.started:
                # A set started by an earlier process needs its code in this one too.
                load_extra_module(batch_set.extra_module)
            else:
                self._enter_set(batch, batch_set)

            fraction = 1.0
            item = self._claim(batch_set)
            if item is not None:
                fraction = self._invoke(batch_set, item)
                processed += 1
                if fraction >= 1:
                    self._queue(batch_set).delete(item)
                    batch_set.complete_operation()
                    fraction = 0.0
                batch_set.record_elapsed(self._clock())
                message = render_progress_message(batch_set.progress_message, batch_set, fraction)
                logger.info(
                    "batch.worker.progress",
                    message=message,
                    set_index=batch.active_set_index,
                    remaining=batch_set.remaining_count,
                )
            elif batch_set.remaining_count > 0:
                # Queue drained ahead of the snapshot: the item was already completed.
                batch_set.complete_operation()
                self._log.log(
                    "warning",
                    f"Queue {batch_set.queue_name} has no item for an outstanding operation; "
                    "counting it as complete.",
                    set_index=batch.active_set_index,
                )

            boundary = self._advance(batch)
            if batch.is_finished:
                break

            if item is not None and self._memory.exceeded():
                batch.active_set.record_elapsed(self._clock())
                memory_exceeded = True
                self._log.log(
                    "warning",
                    "Batch process has consumed in excess of 50% of available memory. "
                    "Starting new process.",
                    usage_bytes=self._memory.usage(),
                    limit_bytes=self._memory.limit_bytes,
                )
                break

            if boundary and processed and self._stop_at_set_boundary:
                break

        finished = batch.is_finished
        if finished:
            batch.active_set.record_elapsed(self._clock())
            self._active = None
            self._finalizer.finalize(batch)
            self._queues.clear()
            message = message or "Finished."
            logger.info("batch.worker.finished", operations_processed=processed)

        return WorkerResult(
            batch_id=batch.id,
            finished=finished,
            percentage=100.0 if finished else self._percentage(batch, fraction),
            message=message,
            memory_exceeded=memory_exceeded,
            operations_processed=processed,
        )

    def _percentage(self, batch: Batch, fraction: float) -> float:
        if batch.is_finished:
            return 100.0
        batch_set = batch.active_set
        return progress_percentage(batch_set.total_count, batch_set.remaining_count, fraction)

    # ------------------------------------------------------------------ #
    # Sets
    # ------------------------------------------------------------------ #

    def _queue(self, batch_set: BatchSet) -> OperationQueue:
        if batch_set.queue_name is None:
            raise BatchDefinitionError(f"Set {batch_set.title!r} has no queue; populate it first")
        queue = self._queues.get(batch_set.queue_name)
        if queue is None:
            queue = self._queue_factory(batch_set.queue_name)
            self._queues[batch_set.queue_name] = queue
        return queue

    def _claim(self, batch_set: BatchSet) -> QueueItem | None:
        if batch_set.remaining_count <= 0:
            return None
        return self._queue(batch_set).claim()

    def _enter_set(self, batch: Batch, batch_set: BatchSet) -> None:
        """First touch of a set: start time, extra code, init message, control op."""
        batch_set.mark_started(self._clock())
        load_extra_module(batch_set.extra_module)
        logger.info(
            "batch.worker.set_started",
            set_index=batch.active_set_index,
            title=batch_set.title,
            total=batch_set.total_count,
        )
        if batch_set.init_message:
            self._log.log("info", batch_set.init_message, set_index=batch.active_set_index)
        if batch_set.control is not None:
            self._apply_control(batch, batch_set)

    def _apply_control(self, batch: Batch, batch_set: BatchSet) -> None:
        """Run the set's control operation and insert the sets it returns."""
        control = batch_set.control
        assert control is not None
        with self._options.override("halt_on_error", False):
            try:
                handler = self._registry.get(CONTROL, control.name)
                new_sets = self._builder.build_sets(handler(*control.args) or [])
            except Exception as exc:
                self._log.record_error(
                    "BATCH_CONTROL_FAILED",
                    f"{batch_set.error_message} {control.name}: {type(exc).__name__}: {exc}",
                    control=control.name,
                    category=categorize_error(exc).value,
                )
                return
        prefix = generate_ulid()
        position = batch.active_set_index + 1
        for offset, new_set in enumerate(new_sets):
            self._builder.populate_set(new_set, self._queue_factory, position + offset, prefix)
        batch.insert_sets(new_sets, position)
        logger.info(
            "batch.worker.sets_inserted",
            control=control.name,
            count=len(new_sets),
            position=position,
        )

    def _advance(self, batch: Batch) -> bool:
        """Mark empty sets successful and move the cursor past them.

        Returns True if at least one set completed.
        """
        completed = False
        while batch.active_set.remaining_count == 0:
            batch_set = batch.active_set
            if not batch_set.success:
                batch_set.record_elapsed(self._clock())
                batch_set.success = True
                completed = True
                logger.info(
                    "batch.worker.set_completed",
                    set_index=batch.active_set_index,
                    title=batch_set.title,
                    elapsed=format_interval(batch_set.elapsed),
                )
            if not batch.has_next_set():
                break
            next_set = batch.advance()
            self._enter_set(batch, next_set)
        return completed

    # ------------------------------------------------------------------ #
    # Operations
    # ------------------------------------------------------------------ #

    def _invoke(self, batch_set: BatchSet, item: QueueItem) -> float:
        """Invoke one operation, tolerating any error it raises."""
        operation = item.operation
        context = OperationContext.for_set(batch_set, self._log)
        returned: Any = None

        with self._options.override("halt_on_error", False):
            try:
                handler = self._registry.get(OPERATION, operation.name)
                returned = handler(*operation.args, context)
            except Exception as exc:
                # The operation counts as done so a persistent failure cannot loop forever.
                context.finished = 1.0
                self._log.record_error(
                    "BATCH_OPERATION_FAILED",
                    f"{batch_set.error_message} {operation.name}: {type(exc).__name__}: {exc}",
                    operation=operation.name,
                    item_id=item.item_id,
                    category=categorize_error(exc).value,
                )
            finally:
                context.fold_into(batch_set)

            if isinstance(returned, str) and returned:
                self._log.log("notice", returned, operation=operation.name)

            try:
                return float(context.finished)
            except (TypeError, ValueError):
                self._log.record_error(
                    "BATCH_INVALID_FRACTION",
                    f"Operation {operation.name} reported an invalid completion value "
                    f"{context.finished!r}; treating it as complete",
                    operation=operation.name,
                )
                return 1.0
