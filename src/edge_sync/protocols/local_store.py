"""Local store protocol.

Defines the interface for the edge node's durable storage: cache entries,
the sync event log and the offline operation queue.

The cache engine and the replication engine only ever talk to this
protocol, so the persistence format can change without touching them.

Implementations can include:
- Redis with AOF persistence (default)
- SQLite
- In-memory fakes for unit tests
"""

from collections.abc import Iterable
from typing import Any, Protocol, runtime_checkable

from edge_sync.entities import (
    CacheEntryEntity,
    CachePriority,
    OfflineOperationEntity,
    OperationStatus,
    SyncEventEntity,
    SyncEventStatus,
)


@runtime_checkable
class LocalStore(Protocol):
    """Protocol for the edge node's local persistence.

    Every method raises LocalStoreError on a storage fault; none of them
    silently drops a write.
    """

    # Cache entries

    def set_cache(
        self,
        key: str,
        value: Any,
        ttl_seconds: float,
        tags: Iterable[str] = (),
        priority: CachePriority = CachePriority.MEDIUM,
    ) -> CacheEntryEntity:
        """Upsert a cache entry with ``expires_at = now + ttl_seconds``."""
        ...

    def get_cache(self, key: str) -> CacheEntryEntity | None:
        """Return a live entry and record the access, or None."""
        ...

    def peek_cache(self, key: str) -> CacheEntryEntity | None:
        """Return a live entry without access bookkeeping."""
        ...

    def delete_cache(self, key: str) -> bool:
        """Delete one entry. Returns True if it existed."""
        ...

    def delete_cache_by_tags(self, tags: Iterable[str]) -> int:
        """Delete every entry carrying any of the tags."""
        ...

    def cleanup_expired_cache(self) -> int:
        """Delete every expired entry and return how many were removed."""
        ...

    def count_cache_entries(self) -> int:
        """Count stored entries (expired ones included until swept)."""
        ...

    def list_cache_entries(self) -> list[CacheEntryEntity]:
        """Return every stored entry without access bookkeeping."""
        ...

    def evict_cache_entries(self, keys: Iterable[str]) -> int:
        """Delete the given entries and return how many were removed."""
        ...

    # Sync events

    def create_sync_event(self, event: SyncEventEntity) -> str:
        """Append an event to the log and return its id."""
        ...

    def get_sync_event(self, event_id: str) -> SyncEventEntity | None:
        ...

    def get_pending_sync_events(self, limit: int = 100) -> list[SyncEventEntity]:
        """Return unsynced events, oldest timestamp first."""
        ...

    def update_sync_event_status(
        self,
        event_id: str,
        status: SyncEventStatus,
        error: str | None = None,
    ) -> bool:
        """Set an event's status and error, incrementing its retry count."""
        ...

    def mark_sync_events_synced(self, event_ids: Iterable[str]) -> int:
        """Mark acknowledged events as synced. Returns how many changed."""
        ...

    def increment_pending_retry_counts(self, error: str | None = None) -> int:
        """Increment the retry count of every pending event."""
        ...

    def list_pending_sync_events(self, limit: int = 50, offset: int = 0) -> list[SyncEventEntity]:
        ...

    def list_synced_events(
        self,
        since: float,
        limit: int = 50,
        offset: int = 0,
    ) -> list[SyncEventEntity]:
        """Return events synced at or after ``since``, most recent first."""
        ...

    def delete_synced_events_before(self, cutoff: float) -> int:
        """Purge events synced before ``cutoff``."""
        ...

    def get_sync_counts(self, max_retries: int) -> dict[str, Any]:
        """Return pending/synced/failed counts and the last sync time."""
        ...

    # Offline operations

    def create_offline_operation(self, operation: OfflineOperationEntity) -> str:
        ...

    def get_offline_operation(self, operation_id: str) -> OfflineOperationEntity | None:
        ...

    def get_pending_operations(self, limit: int = 100) -> list[OfflineOperationEntity]:
        """Return pending operations with retries left, oldest first."""
        ...

    def update_operation_status(
        self,
        operation_id: str,
        status: OperationStatus,
        response: Any = None,
        error: str | None = None,
    ) -> bool:
        """Set an operation's status, incrementing its retry count."""
        ...

    def get_operation_counts(self) -> dict[str, int]:
        ...

    # Housekeeping

    def health_check(self) -> bool:
        ...

    def get_stats(self) -> dict[str, Any]:
        ...
