"""Batch finalizer and stale-batch purge.

When the last set succeeds, the worker hands the batch to
:class:`BatchFinalizer`.  For every set that names a finisher it calls::

    finisher(success, results, operations, elapsed)

where ``operations`` is every operation the set's queue ever held and
``elapsed`` is a human-readable duration.  Afterwards the snapshot and all
queues are released; the batch cannot be resumed once finalized.

``purge_stale_batches`` is the maintenance counterpart: it discards
snapshots nobody has touched for a while, along with their queues.
"""

from __future__ import annotations

from spine_batch.batch.log import BatchLog
from spine_batch.batch.models import Batch, BatchSet
from spine_batch.batch.progress import format_interval
from spine_batch.batch.queue import QueueFactory
from spine_batch.batch.registry import (
    FINISHED,
    HandlerRegistry,
    get_default_registry,
    load_extra_module,
)
from spine_batch.batch.store import BatchStore
from spine_batch.core.errors import CorruptBatchError
from spine_batch.core.logging import get_logger

logger = get_logger(__name__)


class BatchFinalizer:
    """Runs finishers and releases a completed batch's storage."""

    def __init__(
        self,
        store: BatchStore,
        queue_factory: QueueFactory,
        registry: HandlerRegistry | None = None,
        log: BatchLog | None = None,
    ) -> None:
        self._store = store
        self._queue_factory = queue_factory
        self._registry = registry or get_default_registry()
        self._log = log or BatchLog()

    def finalize(self, batch: Batch) -> bool:
        """Invoke finishers, then discard the batch.  Returns True."""
        for index, batch_set in enumerate(batch.sets):
            self._run_finisher(index, batch_set)
        self.discard(batch)
        batch.running = False
        logger.info("batch.finalizer.finalized", batch_id=batch.id, sets=len(batch.sets))
        return True

    def _run_finisher(self, index: int, batch_set: BatchSet) -> None:
        name = batch_set.finished
        if not name:
            return
        # The finisher may be registered by the set's extra module.
        load_extra_module(batch_set.extra_module)
        if not self._registry.is_callable(FINISHED, name):
            logger.warning("batch.finalizer.finisher_missing", finisher=name, set_index=index)
            return

        finisher = self._registry.get(FINISHED, name)
        operations = (
            self._queue_factory(batch_set.queue_name).list_all() if batch_set.queue_name else []
        )
        with self._log.options.override("halt_on_error", False):
            try:
                finisher(
                    batch_set.success,
                    batch_set.results,
                    operations,
                    format_interval(batch_set.elapsed),
                )
            except Exception as exc:
                self._log.record_error(
                    "BATCH_FINISHED_FAILED",
                    f"Finisher {name} failed: {type(exc).__name__}: {exc}",
                    set_index=index,
                )

    def discard(self, batch: Batch) -> None:
        """Delete the snapshot and destroy every queue the batch owns."""
        for batch_set in batch.sets:
            if batch_set.queue_name:
                self._queue_factory(batch_set.queue_name).destroy()
        if batch.id is not None:
            self._store.delete(batch.id)


def purge_stale_batches(
    store: BatchStore,
    queue_factory: QueueFactory,
    older_than_seconds: float,
) -> list[str]:
    """Discard snapshots not updated within *older_than_seconds*.

    Returns the purged batch ids.  A corrupt snapshot is deleted on its own;
    its queues cannot be discovered.
    """
    purged = []
    for batch_id in store.stale_ids(older_than_seconds):
        try:
            batch = store.read(batch_id)
        except CorruptBatchError:
            logger.warning("batch.purge.corrupt_snapshot", batch_id=batch_id)
            store.delete(batch_id)
            purged.append(batch_id)
            continue
        if batch is None:
            continue
        for batch_set in batch.sets:
            if batch_set.queue_name:
                queue_factory(batch_set.queue_name).destroy()
        store.delete(batch_id)
        purged.append(batch_id)
    logger.info("batch.purge.completed", purged=len(purged))
    return purged
