"""Durable FIFO operation queue.

Each batch set owns one queue, identified by name, stored in the
``batch_queue`` table.

Lifecycle of an item::

    create_item()  ─►  pending
    claim()        ─►  in flight (claimed_at stamped)
    delete()       ─►  done (never claimed again)
    destroy()      ─►  row removed

Only one worker is ever live for a batch, so ``claim`` is not a contended
lease.  It always returns the oldest item that is not done, including one
already in flight: a partially complete operation left in flight by the
previous process is handed back to the next one, which is how cooperative
sub-division resumes.

Items are soft-deleted so :meth:`OperationQueue.list_all` can report every
operation the set ever held when the finalizer runs.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, sessionmaker

from spine_batch.batch.models import OperationRef
from spine_batch.core.logging import get_logger
from spine_batch.core.orm.tables import QueueItemTable
from spine_batch.core.timestamps import epoch_now, generate_ulid

logger = get_logger(__name__)

QueueFactory = Callable[[str], "OperationQueue"]


def new_queue_name(set_index: int, prefix: str | None = None) -> str:
    """Queue name for the set at *set_index* of a batch being populated."""
    return f"spine_batch_{prefix or generate_ulid()}_{set_index}"


@dataclass(frozen=True)
class QueueItem:
    """A claimed queue entry."""

    item_id: int
    operation: OperationRef
    claimed_at: float | None = None


class OperationQueue:
    """Named FIFO queue with completion marking."""

    def __init__(self, name: str, session_factory: sessionmaker[Session]) -> None:
        self._name = name
        self._session_factory = session_factory

    @property
    def name(self) -> str:
        return self._name

    def create_item(self, operation: OperationRef) -> int:
        """Append *operation* to the queue and return its item id."""
        with self._session_factory() as session, session.begin():
            row = QueueItemTable(
                name=self._name,
                data=operation.to_dict(),
                done=False,
                created_at=epoch_now(),
            )
            session.add(row)
            session.flush()
            return row.item_id

    def populate(self, operations: Iterable[OperationRef]) -> int:
        """Append every operation in order; returns how many were queued."""
        now = epoch_now()
        rows = [
            QueueItemTable(name=self._name, data=op.to_dict(), done=False, created_at=now)
            for op in operations
        ]
        with self._session_factory() as session, session.begin():
            session.add_all(rows)
        logger.debug("batch.queue.populated", queue=self._name, count=len(rows))
        return len(rows)

    def claim(self) -> QueueItem | None:
        """Return the oldest item that is not done, stamping it in flight."""
        now = epoch_now()
        with self._session_factory() as session, session.begin():
            row = session.scalars(
                select(QueueItemTable)
                .where(QueueItemTable.name == self._name, QueueItemTable.done.is_(False))
                .order_by(QueueItemTable.item_id)
                .limit(1)
            ).first()
            if row is None:
                return None
            if row.claimed_at is None:
                row.claimed_at = now
            return QueueItem(
                item_id=row.item_id,
                operation=OperationRef.from_dict(row.data),
                claimed_at=row.claimed_at,
            )

    def delete(self, item: QueueItem) -> None:
        """Mark an in-flight item permanently done."""
        with self._session_factory() as session, session.begin():
            session.execute(
                update(QueueItemTable)
                .where(QueueItemTable.item_id == item.item_id, QueueItemTable.name == self._name)
                .values(done=True)
            )

    def list_all(self) -> list[OperationRef]:
        """Every operation ever enqueued, done or not, in enqueue order."""
        with self._session_factory() as session:
            rows = session.scalars(
                select(QueueItemTable.data)
                .where(QueueItemTable.name == self._name)
                .order_by(QueueItemTable.item_id)
            ).all()
        return [OperationRef.from_dict(data) for data in rows]

    def pending_count(self) -> int:
        with self._session_factory() as session:
            return session.scalar(
                select(func.count())
                .select_from(QueueItemTable)
                .where(QueueItemTable.name == self._name, QueueItemTable.done.is_(False))
            ) or 0

    def destroy(self) -> None:
        """Release all storage for the queue."""
        with self._session_factory() as session, session.begin():
            session.execute(delete(QueueItemTable).where(QueueItemTable.name == self._name))
        logger.debug("batch.queue.destroyed", queue=self._name)

    def __repr__(self) -> str:
        return f"OperationQueue({self._name!r})"


def queue_factory_for(session_factory: sessionmaker[Session]) -> QueueFactory:
    """Return a callable building queues that share *session_factory*."""

    def factory(name: str) -> OperationQueue:
        return OperationQueue(name, session_factory)

    return factory
