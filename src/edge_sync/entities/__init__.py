"""Domain entities for internal representation.

These are pure dataclasses (frozen) used internally by services
and repositories. They are NOT used for API contracts - use DTOs
from the dto package for that.
"""

from .cache_entry import CacheEntryEntity, CacheLookup, CachePriority, LookupStatus
from .offline_operation import OfflineOperationEntity, OperationStatus, OperationType
from .sync_event import (
    EventPayload,
    RecordSnapshot,
    RecordTombstone,
    SyncEventEntity,
    SyncEventStatus,
    SyncOperation,
    payload_for,
    payload_from_dict,
    payload_to_dict,
)

__all__ = [
    "CacheEntryEntity",
    "CacheLookup",
    "CachePriority",
    "LookupStatus",
    "OfflineOperationEntity",
    "OperationStatus",
    "OperationType",
    "EventPayload",
    "RecordSnapshot",
    "RecordTombstone",
    "SyncEventEntity",
    "SyncEventStatus",
    "SyncOperation",
    "payload_for",
    "payload_from_dict",
    "payload_to_dict",
]
