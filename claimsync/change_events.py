"""
Change Events - decoded realtime notifications

Raw realtime payloads are decoded once, at the boundary, into a tagged union:
InsertEvent | UpdateEvent | DeleteEvent. Each carries the table and a typed
Record (for delete, only the id is guaranteed).

Canonical raw shape (produced by the realtime client):
    {"table": "claims", "operation": "update",
     "new_values": {...}, "old_values": {...}}
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from claimsync.errors import ClaimSyncError, InvalidChangeEventError
from claimsync.record_models import EntityTable, Record, record_type_for


@dataclass(frozen=True)
class InsertEvent:
    table: EntityTable
    record: Record

    operation = "insert"

    @property
    def record_id(self) -> str:
        return self.record.id


@dataclass(frozen=True)
class UpdateEvent:
    table: EntityTable
    record: Record

    operation = "update"

    @property
    def record_id(self) -> str:
        return self.record.id


@dataclass(frozen=True)
class DeleteEvent:
    table: EntityTable
    record_id: str
    old_values: Optional[Dict[str, Any]] = None

    operation = "delete"


ChangeEvent = Union[InsertEvent, UpdateEvent, DeleteEvent]


def decode_change_event(raw: Dict[str, Any]) -> ChangeEvent:
    """
    Decode a raw realtime payload

    Raises:
        InvalidChangeEventError: If the table, operation or row values are unusable
    """
    if not isinstance(raw, dict):
        raise InvalidChangeEventError("Change event is not an object")

    table_name = raw.get("table")
    operation = str(raw.get("operation") or "").lower()

    try:
        record_type = record_type_for(str(table_name))
    except ClaimSyncError:
        raise InvalidChangeEventError(
            f"Change event for unsupported table: {table_name}",
            details={"table": table_name}
        )
    table = record_type.table

    if operation in ("insert", "update"):
        new_values = raw.get("new_values")
        if not isinstance(new_values, dict) or not new_values:
            raise InvalidChangeEventError(
                f"{operation} event without new values",
                details={"table": table_name}
            )
        try:
            record = record_type.from_payload(new_values)
        except (ValidationError, TypeError) as e:
            raise InvalidChangeEventError(
                f"Malformed {table_name} row in {operation} event: {e}",
                details={"table": table_name, "record_id": new_values.get("id")}
            )
        if operation == "insert":
            return InsertEvent(table=table, record=record)
        return UpdateEvent(table=table, record=record)

    if operation == "delete":
        old_values = raw.get("old_values") or {}
        record_id = old_values.get("id") if isinstance(old_values, dict) else None
        if not record_id:
            raise InvalidChangeEventError(
                "delete event without record id",
                details={"table": table_name}
            )
        return DeleteEvent(table=table, record_id=str(record_id), old_values=old_values)

    raise InvalidChangeEventError(
        f"Unknown change operation: {operation!r}",
        details={"table": table_name}
    )
