"""
Tests for claimsync/realtime_bridge.py

- Inserts: new rows stored as synced, echoes of our own creates ignored
- Updates: last-write-wins on updated_at, ties keep the local row
- Deletes: always applied, tombstone activity when unsynced edits are lost
- The bridge never writes the operation queue
- Stream loop: subscribe, apply, reconnect
"""

import asyncio
from datetime import timedelta

import pytest

from claimsync.events import LocalEditsDiscarded, RecordDeleted, RecordInserted, RecordUpdated
from claimsync.record_models import ActivityType, Photo, SyncStatus
from claimsync.utils import to_iso

from tests.conftest import OWNER_ID
from tests.fakes import raw_change


def remote_row(record, **changes):
    row = record.to_payload()
    row["user_id"] = OWNER_ID
    row.update(changes)
    return row


class TestInsert:
    """Tests for remote inserts"""

    def test_new_record_is_stored_as_synced(self, bridge, store, event_bus, make_claim, clock):
        events = []
        event_bus.subscribe(events.append, RecordInserted)
        claim = make_claim(updated_at=clock() - timedelta(minutes=5))

        assert bridge.apply(raw_change("claims", "insert", new=remote_row(claim))) is True

        loaded = store.get("claims", claim.id)
        assert loaded.sync_status == SyncStatus.SYNCED
        assert loaded.last_synced_at == clock()
        assert loaded.has_unsynced_changes is False
        assert [e.record_id for e in events] == [claim.id]

    def test_echo_of_local_create_is_ignored(self, bridge, orchestrator, store, make_claim):
        claim = orchestrator.create(make_claim())
        echo = remote_row(claim, insured_name="Someone Else")

        assert bridge.apply(raw_change("claims", "insert", new=echo)) is False
        assert store.get("claims", claim.id).insured_name == "Dana Reyes"

    def test_insert_never_enqueues(self, bridge, queue, make_claim):
        bridge.apply(raw_change("claims", "insert", new=remote_row(make_claim())))
        assert queue.list_entries() == []


class TestUpdate:
    """Tests for last-write-wins updates"""

    def test_newer_remote_update_wins(self, bridge, orchestrator, store, event_bus, make_claim, clock):
        events = []
        event_bus.subscribe(events.append, RecordUpdated)
        claim = orchestrator.create(make_claim())
        newer = claim.updated_at + timedelta(seconds=30)

        changed = bridge.apply(raw_change(
            "claims", "update",
            new=remote_row(claim, insured_name="Sam Okafor", updated_at=to_iso(newer)),
        ))

        assert changed is True
        loaded = store.get("claims", claim.id)
        assert loaded.insured_name == "Sam Okafor"
        assert loaded.updated_at == newer
        assert loaded.sync_status == SyncStatus.SYNCED
        assert loaded.last_synced_at == newer
        assert loaded.has_unsynced_changes is False
        assert [e.record_id for e in events] == [claim.id]

    def test_older_remote_update_is_discarded(self, bridge, orchestrator, store, make_claim):
        claim = orchestrator.create(make_claim())
        older = claim.updated_at - timedelta(seconds=30)

        changed = bridge.apply(raw_change(
            "claims", "update",
            new=remote_row(claim, insured_name="Sam Okafor", updated_at=to_iso(older)),
        ))

        assert changed is False
        loaded = store.get("claims", claim.id)
        assert loaded.insured_name == "Dana Reyes"
        assert loaded.sync_status == SyncStatus.PENDING

    def test_equal_timestamp_keeps_local(self, bridge, orchestrator, store, make_claim):
        claim = orchestrator.create(make_claim())

        changed = bridge.apply(raw_change(
            "claims", "update",
            new=remote_row(claim, insured_name="Sam Okafor"),
        ))

        assert changed is False
        assert store.get("claims", claim.id).insured_name == "Dana Reyes"

    def test_unknown_record_update_is_inserted(self, bridge, store, make_claim):
        claim = make_claim()

        assert bridge.apply(raw_change("claims", "update", new=remote_row(claim))) is True
        assert store.get("claims", claim.id).sync_status == SyncStatus.SYNCED

    def test_update_keeps_local_file_path(self, bridge, store, clock):
        photo = store.insert(Photo(claim_id="claim-1", local_path="/data/photos/p.jpg", updated_at=clock()))

        bridge.apply(raw_change(
            "photos", "update",
            new=remote_row(
                photo,
                damage_type="water",
                storage_path="owner-1/claim-1/p.jpg",
                is_synced=True,
                updated_at=to_iso(clock() + timedelta(seconds=5)),
            ),
        ))

        loaded = store.get("photos", photo.id)
        assert loaded.damage_type == "water"
        assert loaded.local_path == "/data/photos/p.jpg"
        assert loaded.storage_path == "owner-1/claim-1/p.jpg"

    def test_update_never_enqueues(self, bridge, orchestrator, queue, make_claim):
        claim = orchestrator.create(make_claim())
        before = len(queue.list_entries())

        bridge.apply(raw_change(
            "claims", "update",
            new=remote_row(claim, updated_at=to_iso(claim.updated_at + timedelta(seconds=1))),
        ))

        assert len(queue.list_entries()) == before


class TestDelete:
    """Tests for remote deletes"""

    def test_clean_delete(self, bridge, store, event_bus, make_claim):
        deleted = []
        discarded = []
        event_bus.subscribe(deleted.append, RecordDeleted)
        event_bus.subscribe(discarded.append, LocalEditsDiscarded)
        claim = make_claim()
        bridge.apply(raw_change("claims", "insert", new=remote_row(claim)))

        assert bridge.apply(raw_change("claims", "delete", old={"id": claim.id})) is True

        assert store.get("claims", claim.id) is None
        assert store.list_records("activity_timeline") == []
        assert [e.record_id for e in deleted] == [claim.id]
        assert discarded == []

    def test_delete_with_unsynced_edits_leaves_tombstone(self, bridge, orchestrator, store, queue, event_bus, make_claim):
        discarded = []
        event_bus.subscribe(discarded.append, LocalEditsDiscarded)
        claim = orchestrator.create(make_claim())
        entries_before = len(queue.list_entries())

        assert bridge.apply(raw_change("claims", "delete", old={"id": claim.id})) is True

        assert store.get("claims", claim.id) is None
        tombstones = store.list_records("activity_timeline")
        assert len(tombstones) == 1
        tombstone = tombstones[0]
        assert tombstone.activity_type == ActivityType.REMOTE_DELETE_OVERRODE_LOCAL.value
        assert tombstone.claim_id == claim.id
        assert tombstone.metadata["discarded_values"]["insured_name"] == "Dana Reyes"
        assert tombstone.sync_status == SyncStatus.SYNCED
        assert len(queue.list_entries()) == entries_before
        assert [(e.record_id, e.tombstone_id) for e in discarded] == [(claim.id, tombstone.id)]

    def test_tombstone_for_child_record_uses_claim_id(self, bridge, orchestrator, store, make_checklist_item):
        item = orchestrator.create(make_checklist_item("claim-9"))

        bridge.apply(raw_change("inspection_checklist", "delete", old={"id": item.id}))

        tombstone = store.list_records("activity_timeline", claim_id="claim-9")[0]
        assert tombstone.metadata["table"] == "inspection_checklist"

    def test_delete_of_unknown_record_is_noop(self, bridge):
        assert bridge.apply(raw_change("claims", "delete", old={"id": "nope"})) is False
        assert bridge.recent_events() == []


class TestMalformed:
    """Tests for events that cannot be decoded"""

    @pytest.mark.parametrize("raw", [
        raw_change("profiles", "insert", new={"id": "x"}),
        raw_change("claims", "insert", new={}),
        raw_change("claims", "insert", new={"id": "x", "claim_number": "C"}),
        raw_change("claims", "delete", old={}),
        raw_change("claims", "truncate", new={"id": "x"}),
    ])
    def test_malformed_event_is_dropped(self, bridge, store, raw):
        assert bridge.apply(raw) is False
        assert store.list_records("claims") == []


class TestRecentEvents:
    """Tests for recent_events / clear_events"""

    def test_newest_first(self, bridge, make_claim, clock):
        first = make_claim()
        second = make_claim()
        bridge.apply(raw_change("claims", "insert", new=remote_row(first)))
        clock.advance(1)
        bridge.apply(raw_change("claims", "insert", new=remote_row(second)))

        events = bridge.recent_events()
        assert [e["record_id"] for e in events] == [second.id, first.id]
        assert events[0]["operation"] == "insert"
        assert bridge.last_update == clock()
        assert len(bridge.recent_events(limit=1)) == 1

        bridge.clear_events()
        assert bridge.recent_events() == []

    def test_bounded(self, store, queue, remote, make_claim):
        from claimsync.realtime_bridge import RealtimeBridge

        bridge = RealtimeBridge(store, queue, remote, OWNER_ID, max_recent_events=2)
        for _ in range(3):
            bridge.apply(raw_change("claims", "insert", new=remote_row(make_claim())))

        assert len(bridge.recent_events()) == 2


class TestStreamLoop:
    """Tests for RealtimeBridge.run"""

    @pytest.mark.asyncio
    async def test_applies_stream_and_reconnects(self, bridge, remote, store, make_claim):
        first = make_claim()
        second = make_claim()

        await bridge.start()
        try:
            await remote.feed.put(raw_change("claims", "insert", new=remote_row(first)))
            await remote.feed.put(ConnectionError("socket closed"))
            await remote.feed.put(raw_change("claims", "insert", new=remote_row(second)))

            for _ in range(200):
                if store.get("claims", second.id) is not None:
                    break
                await asyncio.sleep(0.01)
        finally:
            await bridge.stop()

        assert store.get("claims", first.id) is not None
        assert store.get("claims", second.id) is not None
        assert len(remote.subscriptions) == 2
        owner, tables = remote.subscriptions[0]
        assert owner == OWNER_ID
        assert "claims" in tables and "activity_timeline" in tables
        assert bridge.is_connected is False

    @pytest.mark.asyncio
    async def test_no_owner_does_not_subscribe(self, store, queue, remote):
        from claimsync.realtime_bridge import RealtimeBridge

        bridge = RealtimeBridge(store, queue, remote, owner_id=None)
        await bridge.run()

        assert remote.subscriptions == []
