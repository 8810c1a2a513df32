"""Persistence store for batch snapshots.

The store never holds a live :class:`~spine_batch.batch.models.Batch`.  It
keeps a JSON snapshot keyed by batch id, written at the checkpoints the
supervisor and worker define:

    supervisor ──create()──► batch_snapshots ◄──read()/update()── worker
                                    ▲
                 finalizer ──delete()┘

Each row carries a token derived from the id.  ``read`` verifies it, so a
row whose id and token disagree is rejected as corrupt rather than resumed.

Tags:
    spine-batch, persistence, snapshot, sqlalchemy
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from spine_batch.batch.models import Batch
from spine_batch.core.errors import (
    BatchDefinitionError,
    BatchNotFoundError,
    CorruptBatchError,
    StorageError,
)
from spine_batch.core.logging import get_logger
from spine_batch.core.orm.tables import BatchSnapshotTable
from spine_batch.core.timestamps import epoch_now

logger = get_logger(__name__)


def batch_token(batch_id: str) -> str:
    """Stable token for *batch_id*."""
    return hashlib.sha256(f"spine-batch:{batch_id}".encode()).hexdigest()


@dataclass(frozen=True)
class SnapshotInfo:
    """Lightweight view of a stored snapshot, for status listings."""

    batch_id: str
    created_at: float
    updated_at: float
    snapshot: dict[str, Any]


class BatchStore:
    """create / read / update / delete of batch snapshots by id."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def create(self, batch: Batch) -> None:
        if batch.id is None:
            raise BatchDefinitionError("Cannot persist a batch without an id")
        now = epoch_now()
        with self._session_factory() as session, session.begin():
            if session.get(BatchSnapshotTable, batch.id) is not None:
                raise StorageError(f"Batch {batch.id} already exists").with_context(
                    batch_id=batch.id
                )
            session.add(
                BatchSnapshotTable(
                    bid=batch.id,
                    token=batch_token(batch.id),
                    snapshot=batch.to_json(),
                    created_at=now,
                    updated_at=now,
                )
            )
        logger.debug("batch.store.created", batch_id=batch.id)

    def read(self, batch_id: str) -> Batch | None:
        """Return the stored batch, ``None`` if absent.

        Raises:
            CorruptBatchError: The snapshot exists but cannot be decoded.
        """
        with self._session_factory() as session:
            row = session.get(BatchSnapshotTable, batch_id)
            if row is None:
                return None
            token, payload = row.token, row.snapshot

        if token != batch_token(batch_id):
            raise CorruptBatchError(batch_id, f"Token mismatch for batch {batch_id}")
        try:
            batch = Batch.from_json(payload)
        except (ValueError, TypeError, KeyError, BatchDefinitionError) as exc:
            raise CorruptBatchError(batch_id, cause=exc) from exc
        if batch.id != batch_id:
            raise CorruptBatchError(batch_id, f"Snapshot id {batch.id!r} does not match {batch_id}")
        return batch

    def load(self, batch_id: str) -> Batch:
        """Like :meth:`read`, but a missing batch raises ``BatchNotFoundError``."""
        batch = self.read(batch_id)
        if batch is None:
            raise BatchNotFoundError(batch_id)
        return batch

    def update(self, batch: Batch) -> None:
        if batch.id is None:
            raise BatchDefinitionError("Cannot update a batch without an id")
        with self._session_factory() as session, session.begin():
            row = session.get(BatchSnapshotTable, batch.id)
            if row is None:
                raise BatchNotFoundError(batch.id)
            row.snapshot = batch.to_json()
            row.updated_at = epoch_now()
        logger.debug("batch.store.updated", batch_id=batch.id)

    def delete(self, batch_id: str) -> bool:
        with self._session_factory() as session, session.begin():
            result = session.execute(
                delete(BatchSnapshotTable).where(BatchSnapshotTable.bid == batch_id)
            )
        removed = bool(result.rowcount)
        logger.debug("batch.store.deleted", batch_id=batch_id, removed=removed)
        return removed

    def exists(self, batch_id: str) -> bool:
        with self._session_factory() as session:
            return session.get(BatchSnapshotTable, batch_id) is not None

    def list_ids(self) -> list[str]:
        with self._session_factory() as session:
            return list(
                session.scalars(select(BatchSnapshotTable.bid).order_by(BatchSnapshotTable.bid))
            )

    def list_snapshots(self) -> list[SnapshotInfo]:
        """All stored snapshots, oldest first.  Undecodable rows are skipped."""
        with self._session_factory() as session:
            rows = session.execute(
                select(
                    BatchSnapshotTable.bid,
                    BatchSnapshotTable.created_at,
                    BatchSnapshotTable.updated_at,
                    BatchSnapshotTable.snapshot,
                ).order_by(BatchSnapshotTable.created_at)
            ).all()

        infos = []
        for bid, created_at, updated_at, payload in rows:
            try:
                data = json.loads(payload)
            except ValueError:
                logger.warning("batch.store.unreadable_snapshot", batch_id=bid)
                continue
            infos.append(SnapshotInfo(bid, created_at, updated_at, data))
        return infos

    def stale_ids(self, older_than_seconds: float) -> list[str]:
        """Ids of snapshots not updated within *older_than_seconds*."""
        cutoff = epoch_now() - older_than_seconds
        with self._session_factory() as session:
            return list(
                session.scalars(
                    select(BatchSnapshotTable.bid).where(BatchSnapshotTable.updated_at < cutoff)
                )
            )
