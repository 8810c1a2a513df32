"""SQLAlchemy persistence layer for spine-batch."""

from spine_batch.core.orm.base import BatchBase
from spine_batch.core.orm.session import (
    BatchSession,
    batch_session_factory,
    create_batch_engine,
    init_schema,
)
from spine_batch.core.orm.tables import BatchSnapshotTable, QueueItemTable

__all__ = [
    "BatchBase",
    "BatchSession",
    "BatchSnapshotTable",
    "QueueItemTable",
    "batch_session_factory",
    "create_batch_engine",
    "init_schema",
]
