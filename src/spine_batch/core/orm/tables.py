"""SQLAlchemy 2.0 ORM table definitions for spine-batch.

Two tables carry all state that crosses a process boundary:

* ``batch_snapshots`` -- one row per live batch, holding the serialized
  :class:`~spine_batch.batch.models.Batch` as JSON text.
* ``batch_queue``     -- operation queue items, one row per enqueued
  operation, grouped by queue ``name``.  Items are soft-deleted (``done``)
  so the finalizer can still report every operation a set ever held.

Timestamps are epoch seconds (``float``) so age comparisons stay portable
across SQLite and server databases.

Usage::

    from spine_batch.core.orm import BatchBase, create_batch_engine

    engine = create_batch_engine("sqlite:///spine_batch.db")
    BatchBase.metadata.create_all(engine)
"""

from __future__ import annotations

from sqlalchemy import Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from spine_batch.core.orm.base import BatchBase


class BatchSnapshotTable(BatchBase):
    __tablename__ = "batch_snapshots"

    bid: Mapped[str] = mapped_column(Text, primary_key=True)
    token: Mapped[str] = mapped_column(Text, nullable=False)
    snapshot: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[float] = mapped_column(nullable=False)
    updated_at: Mapped[float] = mapped_column(nullable=False)


class QueueItemTable(BatchBase):
    __tablename__ = "batch_queue"

    __table_args__ = (Index("ix_batch_queue_name_done", "name", "done", "item_id"),)

    item_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict] = mapped_column(nullable=False)
    claimed_at: Mapped[float | None] = mapped_column(default=None)
    done: Mapped[bool] = mapped_column(default=False, nullable=False)
    created_at: Mapped[float] = mapped_column(nullable=False)
