"""Batch engine: models, persistence, worker loop and supervision."""

from spine_batch.batch.builder import BatchBuilder, load_definition
from spine_batch.batch.context import OperationContext
from spine_batch.batch.finalizer import BatchFinalizer, purge_stale_batches
from spine_batch.batch.log import BatchLog, LogEntry
from spine_batch.batch.memory import MemoryCeiling
from spine_batch.batch.models import Batch, BatchSet, ControlRef, OperationRef
from spine_batch.batch.queue import OperationQueue, queue_factory_for
from spine_batch.batch.registry import (
    HandlerRegistry,
    get_default_registry,
    register_control,
    register_finished,
    register_operation,
)
from spine_batch.batch.spawn import InProcessSpawner, SpawnResult, SubprocessSpawner
from spine_batch.batch.store import BatchStore
from spine_batch.batch.supervisor import BatchSupervisor, SupervisorResult
from spine_batch.batch.worker import BatchWorker, WorkerResult

__all__ = [
    "Batch",
    "BatchBuilder",
    "BatchFinalizer",
    "BatchLog",
    "BatchSet",
    "BatchStore",
    "BatchSupervisor",
    "BatchWorker",
    "ControlRef",
    "HandlerRegistry",
    "InProcessSpawner",
    "LogEntry",
    "MemoryCeiling",
    "OperationContext",
    "OperationQueue",
    "OperationRef",
    "SpawnResult",
    "SubprocessSpawner",
    "SupervisorResult",
    "WorkerResult",
    "get_default_registry",
    "load_definition",
    "purge_stale_batches",
    "queue_factory_for",
    "register_control",
    "register_finished",
    "register_operation",
]
