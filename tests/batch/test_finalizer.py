"""Tests for BatchFinalizer and stale-batch purging."""

from __future__ import annotations

from typing import Any

import pytest
from sqlalchemy import update

from spine_batch.batch.finalizer import BatchFinalizer, purge_stale_batches
from spine_batch.batch.log import BatchLog
from spine_batch.batch.registry import FINISHED
from spine_batch.core.options import RuntimeOptions
from spine_batch.core.orm.tables import BatchSnapshotTable


# ── Helpers ─────────────────────────────────────────────────────────────


@pytest.fixture
def calls() -> list[tuple[Any, ...]]:
    return []


@pytest.fixture
def finalizer(store, queue_factory, registry, calls) -> BatchFinalizer:
    registry.register(FINISHED, "record", lambda *args: calls.append(args))
    return BatchFinalizer(store, queue_factory, registry, BatchLog(RuntimeOptions()))


def _age(sessions, batch_id: str) -> None:
    with sessions() as session, session.begin():
        session.execute(
            update(BatchSnapshotTable)
            .where(BatchSnapshotTable.bid == batch_id)
            .values(updated_at=0.0)
        )


class TestFinalize:
    def test_calls_finisher_with_set_outcome(self, finalizer, persisted_batch, calls):
        batch = persisted_batch({"operations": [["echo", ["a"]]], "finished": "record"})
        batch_set = batch.sets[0]
        batch_set.success = True
        batch_set.results = ["a"]
        batch_set.elapsed = 75

        assert finalizer.finalize(batch) is True

        success, results, operations, elapsed = calls[0]
        assert success is True
        assert results == ["a"]
        assert [op.name for op in operations] == ["echo"]
        assert elapsed == "1 min 15 sec"
        assert batch.running is False

    def test_discards_snapshot_and_queues(self, finalizer, persisted_batch, store, queue_factory):
        batch = persisted_batch({"operations": ["echo"]}, {"operations": ["echo"]})

        finalizer.finalize(batch)

        assert store.read(batch.id) is None
        for batch_set in batch.sets:
            assert queue_factory(batch_set.queue_name).list_all() == []

    def test_skips_unregistered_finisher(self, finalizer, persisted_batch, store, calls):
        batch = persisted_batch({"operations": ["echo"], "finished": "not_registered"})

        assert finalizer.finalize(batch) is True

        assert calls == []
        assert store.read(batch.id) is None

    def test_failing_finisher_is_logged(self, store, queue_factory, registry, persisted_batch):
        registry.register(FINISHED, "explode", lambda *a: 1 / 0)
        log = BatchLog(RuntimeOptions())
        batch = persisted_batch({"operations": ["echo"], "finished": "explode"})

        BatchFinalizer(store, queue_factory, registry, log).finalize(batch)

        assert log.error_log()[0].code == "BATCH_FINISHED_FAILED"
        assert store.read(batch.id) is None


class TestPurge:
    def test_purges_only_stale_batches(self, store, queue_factory, sessions, persisted_batch):
        old = persisted_batch({"operations": ["echo"]}, batch_id="OLD")
        persisted_batch({"operations": ["echo"]}, batch_id="NEW")
        _age(sessions, "OLD")

        purged = purge_stale_batches(store, queue_factory, 3600)

        assert purged == ["OLD"]
        assert store.list_ids() == ["NEW"]
        assert queue_factory(old.sets[0].queue_name).list_all() == []

    def test_purges_corrupt_snapshots(self, store, queue_factory, sessions, persisted_batch):
        persisted_batch({"operations": ["echo"]}, batch_id="BAD")
        with sessions() as session, session.begin():
            session.execute(
                update(BatchSnapshotTable)
                .where(BatchSnapshotTable.bid == "BAD")
                .values(snapshot="{broken", updated_at=0.0)
            )

        assert purge_stale_batches(store, queue_factory, 60) == ["BAD"]
        assert store.list_ids() == []
