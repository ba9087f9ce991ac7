"""
Tests for claimsync/operation_queue.py

- Durable enqueue and FIFO ordering (created_at, then insertion order)
- Retry policy and terminal failure
- Non-retryable failures
- Crash recovery, manual retry, pruning, advisory expiry
"""

import pytest
from datetime import timedelta

from claimsync.errors import LocalStoreError, PermanentSyncError
from claimsync.operation_queue import OperationQueue
from claimsync.sync_queue_models import (
    MAX_RETRIES_REACHED_MESSAGE,
    OperationType,
    QueueEntry,
    QueueStatus,
)


def make_entry(clock, record_id="rec-1", operation=OperationType.CREATE, table="claims"):
    return QueueEntry(
        operation_type=operation,
        target_table=table,
        record_id=record_id,
        payload={"id": record_id},
        created_at=clock(),
    )


class TestEnqueue:
    """Tests for enqueue and reads"""

    def test_enqueue_persists_entry(self, queue, clock):
        entry = queue.enqueue(make_entry(clock))

        stored = queue.get(entry.id)
        assert stored is not None
        assert stored.status == QueueStatus.PENDING
        assert stored.device_id == "test-device"
        assert stored.payload == {"id": "rec-1"}
        assert stored.seq is not None

    def test_enqueue_survives_reopen(self, db, clock, tmp_path):
        queue = OperationQueue(db, clock=clock)
        entry = queue.enqueue(make_entry(clock))
        db.close()

        from claimsync.db import LocalDatabase
        reopened = LocalDatabase(tmp_path / "claimsync_test.db")
        try:
            assert OperationQueue(reopened).get(entry.id) is not None
        finally:
            reopened.close()

    def test_enqueue_rejects_unknown_table(self, queue, clock):
        with pytest.raises(PermanentSyncError):
            queue.enqueue(make_entry(clock, table="profiles"))
        assert queue.pending_count() == 0

    def test_next_batch_orders_by_created_at(self, queue, clock):
        late = make_entry(clock, "late")
        late.created_at = clock() + timedelta(seconds=10)
        queue.enqueue(late)
        queue.enqueue(make_entry(clock, "early"))

        assert [e.record_id for e in queue.next_batch()] == ["early", "late"]

    def test_next_batch_breaks_ties_by_insertion(self, queue, clock):
        for record_id in ("a", "b", "c", "d"):
            queue.enqueue(make_entry(clock, record_id))

        assert [e.record_id for e in queue.next_batch()] == ["a", "b", "c", "d"]

    def test_next_batch_limit(self, queue, clock):
        for record_id in ("a", "b", "c"):
            queue.enqueue(make_entry(clock, record_id))

        assert len(queue.next_batch(limit=2)) == 2

    def test_list_entries_by_status(self, queue, clock):
        first = queue.enqueue(make_entry(clock, "a"))
        queue.enqueue(make_entry(clock, "b"))
        queue.mark_completed(first.id)

        completed = queue.list_entries(status=QueueStatus.COMPLETED)
        assert [e.record_id for e in completed] == ["a"]
        assert len(queue.list_entries()) == 2


class TestTransitions:
    """Tests for status transitions and retry policy"""

    def test_mark_completed(self, queue, clock):
        entry = queue.enqueue(make_entry(clock))
        queue.mark_processing(entry.id)
        assert queue.get(entry.id).status == QueueStatus.PROCESSING

        queue.mark_completed(entry.id)
        stored = queue.get(entry.id)
        assert stored.status == QueueStatus.COMPLETED
        assert stored.processed_at == clock()
        assert queue.next_batch() == []

    def test_mark_failed_reverts_to_pending(self, queue, clock):
        entry = queue.enqueue(make_entry(clock))

        updated = queue.mark_failed(entry.id, "timeout")
        assert updated.status == QueueStatus.PENDING
        assert updated.retry_count == 1
        assert updated.error_message == "timeout"
        assert queue.pending_count() == 1

    def test_retry_exhaustion_is_terminal(self, queue, clock):
        entry = queue.enqueue(make_entry(clock))

        for _ in range(3):
            updated = queue.mark_failed(entry.id, "server error")

        assert updated.status == QueueStatus.FAILED
        assert updated.retry_count == updated.max_retries == 3
        assert updated.error_message == MAX_RETRIES_REACHED_MESSAGE
        assert updated.can_retry is False
        assert queue.next_batch() == []
        assert queue.pending_count() == 0
        assert queue.failed_count() == 1

    def test_permanent_failure_keeps_retry_count(self, queue, clock):
        entry = queue.enqueue(make_entry(clock))
        queue.mark_failed(entry.id, "timeout")

        updated = queue.mark_permanently_failed(entry.id, "validation rejected")
        assert updated.status == QueueStatus.FAILED
        assert updated.retry_count == 1
        assert queue.next_batch() == []
        assert queue.failed_count() == 1

    def test_unknown_entry_raises(self, queue):
        with pytest.raises(LocalStoreError):
            queue.mark_completed("missing")

    def test_recover_interrupted(self, queue, clock):
        entry = queue.enqueue(make_entry(clock))
        queue.mark_processing(entry.id)

        assert queue.recover_interrupted() == 1
        assert queue.get(entry.id).status == QueueStatus.PENDING
        assert queue.recover_interrupted() == 0

    def test_retry_failed_resets_budget(self, queue, clock):
        exhausted = queue.enqueue(make_entry(clock, "a"))
        rejected = queue.enqueue(make_entry(clock, "b"))
        for _ in range(3):
            queue.mark_failed(exhausted.id, "timeout")
        queue.mark_permanently_failed(rejected.id, "bad payload")

        assert queue.retry_failed() == 2
        for entry_id in (exhausted.id, rejected.id):
            stored = queue.get(entry_id)
            assert stored.status == QueueStatus.PENDING
            assert stored.retry_count == 0
            assert stored.error_message is None
        assert queue.failed_count() == 0
        assert len(queue.next_batch()) == 2


class TestMaintenance:
    """Tests for open-entry lookup, pruning and expiry"""

    def test_has_open_entries(self, queue, clock):
        entry = queue.enqueue(make_entry(clock, "a"))
        assert queue.has_open_entries("claims", "a") is True
        assert queue.has_open_entries("photos", "a") is False

        queue.mark_completed(entry.id)
        assert queue.has_open_entries("claims", "a") is False

    def test_prune_completed(self, queue, clock):
        old = queue.enqueue(make_entry(clock, "old"))
        queue.mark_completed(old.id)
        clock.advance(3600)
        recent = queue.enqueue(make_entry(clock, "recent"))
        queue.mark_completed(recent.id)
        open_entry = queue.enqueue(make_entry(clock, "open"))

        assert queue.prune_completed(clock() - timedelta(minutes=30)) == 1
        assert queue.get(old.id) is None
        assert queue.get(recent.id) is not None
        assert queue.get(open_entry.id) is not None

    def test_expiry_is_advisory(self, queue, clock):
        entry = queue.enqueue(make_entry(clock))
        clock.advance(timedelta(days=8).total_seconds())

        expired = queue.expired_entries()
        assert [e.id for e in expired] == [entry.id]
        # Still drained and retried
        assert [e.id for e in queue.next_batch()] == [entry.id]
        assert queue.mark_failed(entry.id, "timeout").status == QueueStatus.PENDING
