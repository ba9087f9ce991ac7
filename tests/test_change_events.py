"""
Tests for claimsync/change_events.py
"""

import pytest

from claimsync.change_events import DeleteEvent, InsertEvent, UpdateEvent, decode_change_event
from claimsync.errors import InvalidChangeEventError
from claimsync.record_models import Claim, EntityTable, Photo

from tests.fakes import raw_change


class TestDecode:

    def test_insert(self, make_claim):
        claim = make_claim()
        event = decode_change_event(raw_change("claims", "insert", new=claim.to_payload()))

        assert isinstance(event, InsertEvent)
        assert event.table == EntityTable.CLAIMS
        assert isinstance(event.record, Claim)
        assert event.record_id == claim.id

    def test_update_operation_is_case_insensitive(self):
        photo = Photo(claim_id="claim-1", storage_path="o/c/p.jpg", is_synced=True)
        event = decode_change_event(raw_change("photos", "UPDATE", new=photo.to_payload()))

        assert isinstance(event, UpdateEvent)
        assert event.record.storage_path == "o/c/p.jpg"
        assert event.record.local_path is None

    def test_delete_needs_only_id(self):
        event = decode_change_event(raw_change("inspections", "delete", old={"id": "insp-1"}))

        assert isinstance(event, DeleteEvent)
        assert event.record_id == "insp-1"
        assert event.operation == "delete"

    def test_activity_row_without_updated_at(self):
        event = decode_change_event(raw_change("activity_timeline", "insert", new={
            "id": "act-1",
            "claim_id": "claim-1",
            "activity_type": "note_added",
            "description": "Spoke with contractor",
            "created_at": "2026-01-15T09:00:00+00:00",
        }))

        assert event.record.updated_at == event.record.created_at

    @pytest.mark.parametrize("raw,message", [
        ("not a dict", "not an object"),
        (raw_change("users", "insert", new={"id": "u"}), "unsupported table"),
        (raw_change("claims", "update"), "without new values"),
        (raw_change("claims", "insert", new={"id": "c", "claim_number": "C-1"}), "Malformed"),
        (raw_change("claims", "delete"), "without record id"),
        (raw_change("claims", "upsert", new={"id": "c"}), "Unknown change operation"),
    ])
    def test_invalid(self, raw, message):
        with pytest.raises(InvalidChangeEventError) as exc_info:
            decode_change_event(raw)
        assert message in exc_info.value.message
