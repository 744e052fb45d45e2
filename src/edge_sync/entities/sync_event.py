"""Sync event domain entity and its typed change payloads."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SyncOperation(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class SyncEventStatus(str, Enum):
    PENDING = "pending"
    SYNCED = "synced"


@dataclass(frozen=True)
class RecordSnapshot:
    """Full snapshot of a created or updated record."""

    fields: dict[str, Any]

    kind = "snapshot"


@dataclass(frozen=True)
class RecordTombstone:
    """Marker for a deleted record, with whatever identifying fields the producer kept."""

    fields: dict[str, Any] = field(default_factory=dict)

    kind = "tombstone"


EventPayload = RecordSnapshot | RecordTombstone


def payload_for(operation: SyncOperation, data: dict[str, Any] | None) -> EventPayload:
    """Build the payload variant that matches an operation."""
    if operation is SyncOperation.DELETE:
        return RecordTombstone(fields=dict(data or {}))
    return RecordSnapshot(fields=dict(data or {}))


def payload_to_dict(payload: EventPayload) -> dict[str, Any]:
    return {"kind": payload.kind, "fields": payload.fields}


def payload_from_dict(value: dict[str, Any]) -> EventPayload:
    kind = value.get("kind")
    fields = value.get("fields") or {}
    if kind == RecordSnapshot.kind:
        return RecordSnapshot(fields=fields)
    if kind == RecordTombstone.kind:
        return RecordTombstone(fields=fields)
    raise ValueError(f"Unknown payload kind: {kind!r}")


@dataclass(frozen=True)
class SyncEventEntity:
    """A local data change that must be replicated to the central system.

    Only the replication engine changes ``synced``, ``retry_count`` and
    ``last_error`` (through the local store).
    """

    id: str
    table_name: str
    operation: SyncOperation
    record_id: str
    payload: EventPayload
    timestamp: float
    establishment_id: str
    synced: bool = False
    synced_at: float | None = None
    retry_count: int = 0
    last_error: str | None = None

    def __post_init__(self) -> None:
        expects_tombstone = self.operation is SyncOperation.DELETE
        if expects_tombstone != isinstance(self.payload, RecordTombstone):
            raise ValueError(
                f"{self.operation.value} event requires a "
                f"{'tombstone' if expects_tombstone else 'snapshot'} payload"
            )

    def to_wire(self) -> dict[str, Any]:
        """Serialize the event the way the central system expects it."""
        return {
            "id": self.id,
            "tableName": self.table_name,
            "operation": self.operation.value,
            "recordId": self.record_id,
            "data": payload_to_dict(self.payload),
            "timestamp": self.timestamp,
            "establishmentId": self.establishment_id,
        }
