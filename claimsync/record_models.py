"""
Record Models - Domain entities, wire models and the syncable table registry

Provides:
- SyncStatus and per-entity enums
- Pydantic wire models (one per remote table) used to validate payloads
  in both directions: queue snapshots going out, realtime rows coming in
- Record dataclasses (Claim, Photo, Document, Inspection, ChecklistItem,
  ActivityEvent) carrying sync metadata
- SYNCABLE_TABLES allowlist and record_type_for() lookup

Field names follow the remote schema (snake_case) so a payload is a
wire model dump with no renaming.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Annotated, Any, ClassVar, Dict, Iterable, List, Optional, Type

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator

from claimsync.errors import ErrorType, PermanentSyncError
from claimsync.utils import ensure_utc, new_id, utc_now

UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]

# Columns that live only in the local store and never reach the remote backend
SYNC_METADATA_FIELDS: frozenset[str] = frozenset({"sync_status", "last_synced_at"})


# ===== Enums =====

class SyncStatus(str, Enum):
    """Per-record sync state"""
    PENDING = "pending"
    SYNCING = "syncing"
    SYNCED = "synced"
    FAILED = "failed"


class EntityTable(str, Enum):
    """Remote tables the sync core knows how to push and merge"""
    CLAIMS = "claims"
    PHOTOS = "photos"
    DOCUMENTS = "documents"
    INSPECTIONS = "inspections"
    CHECKLIST = "inspection_checklist"
    ACTIVITY = "activity_timeline"


class ClaimStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    DRAFT = "draft"
    CANCELLED = "cancelled"


class ClaimPriority(str, Enum):
    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class DamageSeverity(str, Enum):
    MINOR = "minor"
    MODERATE = "moderate"
    SEVERE = "severe"


class DocumentType(str, Enum):
    FNOL = "fnol"
    POLICY = "policy"
    ESTIMATE = "estimate"
    REPORT = "report"
    INVOICE = "invoice"
    OTHER = "other"


class InspectionStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ChecklistStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    NOT_APPLICABLE = "na"


class ActivityType(str, Enum):
    CLAIM_CREATED = "claim_created"
    CLAIM_UPDATED = "claim_updated"
    STATUS_CHANGED = "status_changed"
    PHOTO_ADDED = "photo_added"
    PHOTO_DELETED = "photo_deleted"
    DOCUMENT_ADDED = "document_added"
    DOCUMENT_DELETED = "document_deleted"
    INSPECTION_SCHEDULED = "inspection_scheduled"
    INSPECTION_STARTED = "inspection_started"
    INSPECTION_COMPLETED = "inspection_completed"
    CHECKLIST_UPDATED = "checklist_updated"
    NOTE_ADDED = "note_added"
    SYNC_COMPLETED = "sync_completed"
    SYNC_FAILED = "sync_failed"
    REMOTE_DELETE_OVERRODE_LOCAL = "remote_delete_overrode_local_edits"


# ===== Wire Models =====

class WireModel(BaseModel):
    """Common columns of every syncable remote table"""
    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1)
    created_at: UtcDatetime
    updated_at: UtcDatetime

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        # Remote UUID columns may arrive as uuid.UUID from some clients
        return str(v) if v is not None else v


class ClaimWire(WireModel):
    claim_number: str
    policy_number: Optional[str] = None
    insured_name: str
    insured_phone: Optional[str] = None
    insured_email: Optional[str] = None
    address: str
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    loss_date: Optional[date] = None
    loss_description: Optional[str] = None
    status: ClaimStatus = ClaimStatus.ACTIVE
    priority: ClaimPriority = ClaimPriority.NORMAL
    coverage_type: Optional[str] = None
    deductible: Optional[float] = None


class ClaimChildWire(WireModel):
    claim_id: str = Field(..., min_length=1)

    @field_validator("claim_id", mode="before")
    @classmethod
    def coerce_claim_id(cls, v: Any) -> Any:
        return str(v) if v is not None else v


class BinaryAssetWire(ClaimChildWire):
    storage_path: str = ""
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    is_synced: bool = False


class PhotoWire(BinaryAssetWire):
    thumbnail_path: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    damage_type: Optional[str] = None
    damage_severity: Optional[DamageSeverity] = None
    ai_detections: Optional[Any] = None
    annotations: Optional[Any] = None
    metadata: Optional[Any] = None


class DocumentWire(BinaryAssetWire):
    document_type: DocumentType = DocumentType.OTHER
    title: str
    extracted_data: Optional[Any] = None


class InspectionWire(ClaimChildWire):
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[time] = None
    arrival_time: Optional[UtcDatetime] = None
    completion_time: Optional[UtcDatetime] = None
    status: InspectionStatus = InspectionStatus.PENDING
    notes: Optional[str] = None
    weather_conditions: Optional[Any] = None


class ChecklistItemWire(ClaimChildWire):
    category: str
    item_name: str
    status: ChecklistStatus = ChecklistStatus.PENDING
    required: bool = False
    evidence_count: int = Field(default=0, ge=0)
    notes: Optional[str] = None
    completed_at: Optional[UtcDatetime] = None


class ActivityEventWire(ClaimChildWire):
    # activity_timeline rows are append-only and have no updated_at column
    updated_at: Optional[UtcDatetime] = None
    activity_type: str = Field(..., min_length=1)
    description: str
    metadata: Optional[Any] = None

    @model_validator(mode="after")
    def default_updated_at(self) -> "ActivityEventWire":
        if self.updated_at is None:
            self.updated_at = self.created_at
        return self


# ===== Records =====

@dataclass(kw_only=True)
class Record:
    """
    Base for every syncable entity held in the local store.

    Attributes:
        id: Client-generated identifier, never reassigned by the backend
        created_at: Creation time (UTC)
        updated_at: Set on every local mutation; the last-write-wins key
        sync_status: pending / syncing / synced / failed
        last_synced_at: When the remote last acknowledged this record
    """
    table: ClassVar[EntityTable]
    wire_model: ClassVar[Type[WireModel]]
    # Wire fields the remote table does not have
    remote_excluded_fields: ClassVar[frozenset[str]] = frozenset()

    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    sync_status: SyncStatus = SyncStatus.PENDING
    last_synced_at: Optional[datetime] = None

    @property
    def has_unsynced_changes(self) -> bool:
        return (
            self.sync_status != SyncStatus.SYNCED
            or self.last_synced_at is None
            or self.updated_at > self.last_synced_at
        )

    def touch(self, now: Optional[datetime] = None) -> None:
        """Record a local mutation"""
        self.updated_at = now or utc_now()
        self.sync_status = SyncStatus.PENDING

    # ----- serialization -----

    @classmethod
    def local_extra_fields(cls) -> List[str]:
        """Dataclass fields kept in the local store only (besides sync metadata)"""
        return [
            f.name for f in fields(cls)
            if f.name not in cls.wire_model.model_fields and f.name not in SYNC_METADATA_FIELDS
        ]

    def to_wire(self) -> WireModel:
        values = {name: getattr(self, name) for name in self.wire_model.model_fields}
        return self.wire_model.model_validate(values)

    def to_payload(self) -> Dict[str, Any]:
        """JSON-ready snapshot of the record as the remote table expects it"""
        return self.to_wire().model_dump(mode="json", exclude=set(self.remote_excluded_fields))

    def to_storage(self) -> Dict[str, Any]:
        """JSON-ready document for the local store's data column"""
        data = self.to_wire().model_dump(mode="json")
        for name in self.local_extra_fields():
            data[name] = getattr(self, name)
        return data

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], **local_fields: Any) -> "Record":
        """
        Validate a remote (or snapshot) payload and build a record from it

        Raises:
            pydantic.ValidationError: If the payload doesn't match the table's wire model
        """
        wire = cls.wire_model.model_validate(payload)
        return cls(**wire.model_dump(), **local_fields)

    @classmethod
    def from_storage(
        cls,
        data: Dict[str, Any],
        sync_status: str,
        last_synced_at: Optional[datetime]
    ) -> "Record":
        local_fields = {name: data[name] for name in cls.local_extra_fields() if name in data}
        return cls.from_payload(
            data,
            sync_status=SyncStatus(sync_status),
            last_synced_at=last_synced_at,
            **local_fields
        )


@dataclass(kw_only=True)
class Claim(Record):
    table: ClassVar[EntityTable] = EntityTable.CLAIMS
    wire_model: ClassVar[Type[WireModel]] = ClaimWire

    claim_number: str
    insured_name: str
    address: str
    policy_number: Optional[str] = None
    insured_phone: Optional[str] = None
    insured_email: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    loss_date: Optional[date] = None
    loss_description: Optional[str] = None
    status: ClaimStatus = ClaimStatus.ACTIVE
    priority: ClaimPriority = ClaimPriority.NORMAL
    coverage_type: Optional[str] = None
    deductible: Optional[float] = None

    def completion_percentage(self, checklist: Iterable["ChecklistItem"]) -> float:
        """Share of required checklist items completed, 0-100"""
        required = [item for item in checklist if item.required]
        if not required:
            return 100.0
        completed = sum(1 for item in required if item.status == ChecklistStatus.COMPLETED)
        return completed / len(required) * 100


@dataclass(kw_only=True)
class ClaimChildRecord(Record):
    claim_id: str


@dataclass(kw_only=True)
class BinaryAssetRecord(ClaimChildRecord):
    """Record whose bytes live in object storage; storage_path is the remote locator"""
    bucket_setting: ClassVar[str] = ""

    storage_path: str = ""
    local_path: Optional[str] = None
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    is_synced: bool = False

    @property
    def needs_upload(self) -> bool:
        return not self.is_synced


@dataclass(kw_only=True)
class Photo(BinaryAssetRecord):
    table: ClassVar[EntityTable] = EntityTable.PHOTOS
    wire_model: ClassVar[Type[WireModel]] = PhotoWire
    bucket_setting: ClassVar[str] = "photo_bucket"

    mime_type: Optional[str] = "image/jpeg"
    thumbnail_path: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    damage_type: Optional[str] = None
    damage_severity: Optional[DamageSeverity] = None
    ai_detections: Optional[Any] = None
    annotations: Optional[Any] = None
    metadata: Optional[Any] = None


@dataclass(kw_only=True)
class Document(BinaryAssetRecord):
    table: ClassVar[EntityTable] = EntityTable.DOCUMENTS
    wire_model: ClassVar[Type[WireModel]] = DocumentWire
    bucket_setting: ClassVar[str] = "documents_bucket"

    title: str
    document_type: DocumentType = DocumentType.OTHER
    mime_type: Optional[str] = "application/pdf"
    extracted_data: Optional[Any] = None


@dataclass(kw_only=True)
class Inspection(ClaimChildRecord):
    table: ClassVar[EntityTable] = EntityTable.INSPECTIONS
    wire_model: ClassVar[Type[WireModel]] = InspectionWire

    scheduled_date: Optional[date] = None
    scheduled_time: Optional[time] = None
    arrival_time: Optional[datetime] = None
    completion_time: Optional[datetime] = None
    status: InspectionStatus = InspectionStatus.PENDING
    notes: Optional[str] = None
    weather_conditions: Optional[Any] = None

    def is_overdue(self, today: Optional[date] = None) -> bool:
        if self.scheduled_date is None:
            return False
        today = today or utc_now().date()
        return self.scheduled_date < today and self.status == InspectionStatus.PENDING

    @property
    def duration(self) -> Optional[timedelta]:
        if self.arrival_time is None or self.completion_time is None:
            return None
        return self.completion_time - self.arrival_time


@dataclass(kw_only=True)
class ChecklistItem(ClaimChildRecord):
    table: ClassVar[EntityTable] = EntityTable.CHECKLIST
    wire_model: ClassVar[Type[WireModel]] = ChecklistItemWire

    category: str
    item_name: str
    status: ChecklistStatus = ChecklistStatus.PENDING
    required: bool = False
    evidence_count: int = 0
    notes: Optional[str] = None
    completed_at: Optional[datetime] = None

    @property
    def needs_attention(self) -> bool:
        return self.required and self.status == ChecklistStatus.PENDING and self.evidence_count == 0

    def mark_completed(self, now: Optional[datetime] = None) -> None:
        now = now or utc_now()
        self.status = ChecklistStatus.COMPLETED
        self.completed_at = now
        self.touch(now)

    def mark_pending(self, now: Optional[datetime] = None) -> None:
        self.status = ChecklistStatus.PENDING
        self.completed_at = None
        self.touch(now)

    def skip(self, now: Optional[datetime] = None) -> None:
        self.status = ChecklistStatus.SKIPPED
        self.touch(now)

    def mark_not_applicable(self, now: Optional[datetime] = None) -> None:
        self.status = ChecklistStatus.NOT_APPLICABLE
        self.touch(now)

    def add_evidence(self, now: Optional[datetime] = None) -> None:
        self.evidence_count += 1
        self.touch(now)

    def remove_evidence(self, now: Optional[datetime] = None) -> None:
        if self.evidence_count > 0:
            self.evidence_count -= 1
            self.touch(now)


@dataclass(kw_only=True)
class ActivityEvent(ClaimChildRecord):
    table: ClassVar[EntityTable] = EntityTable.ACTIVITY
    wire_model: ClassVar[Type[WireModel]] = ActivityEventWire
    remote_excluded_fields: ClassVar[frozenset[str]] = frozenset({"updated_at"})

    activity_type: str
    description: str
    metadata: Optional[Any] = None


# ===== Registry =====

RECORD_TYPES: Dict[EntityTable, Type[Record]] = {
    EntityTable.CLAIMS: Claim,
    EntityTable.PHOTOS: Photo,
    EntityTable.DOCUMENTS: Document,
    EntityTable.INSPECTIONS: Inspection,
    EntityTable.CHECKLIST: ChecklistItem,
    EntityTable.ACTIVITY: ActivityEvent,
}

# Only these tables may be written by queue replay or realtime merges.
# Table names are interpolated into SQL, so nothing outside this set is accepted.
SYNCABLE_TABLES: frozenset[str] = frozenset(table.value for table in RECORD_TYPES)


def record_type_for(table: str) -> Type[Record]:
    """
    Resolve a table name to its record class

    Raises:
        PermanentSyncError: If the table is not syncable
    """
    try:
        return RECORD_TYPES[EntityTable(table)]
    except ValueError:
        raise PermanentSyncError(
            f"Unsupported table: {table}",
            error_type=ErrorType.UNKNOWN_TABLE,
            details={"table": table}
        )


__all__ = [
    "SyncStatus",
    "EntityTable",
    "ClaimStatus",
    "ClaimPriority",
    "DamageSeverity",
    "DocumentType",
    "InspectionStatus",
    "ChecklistStatus",
    "ActivityType",
    "WireModel",
    "Record",
    "BinaryAssetRecord",
    "Claim",
    "Photo",
    "Document",
    "Inspection",
    "ChecklistItem",
    "ActivityEvent",
    "RECORD_TYPES",
    "SYNCABLE_TABLES",
    "SYNC_METADATA_FIELDS",
    "record_type_for",
]
