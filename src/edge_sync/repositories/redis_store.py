"""Redis implementation of LocalStore.

This repository keeps the edge node's cache entries, sync event log and
offline operation queue in Redis (run it with AOF persistence enabled on
the node). It is the default implementation and satisfies the LocalStore
protocol.

Key layout (``{p}`` is the configured prefix):
    {p}:cache:{key}              hash, one cache entry
    {p}:cache:expiry             zset, key -> expires_at
    {p}:cache:tag:{tag}          set of keys carrying the tag
    {p}:event:{id}               hash, one sync event
    {p}:events:{status}          zset, id -> timestamp (pending) / synced_at (synced)
    {p}:operation:{id}           hash, one offline operation
    {p}:operations:{status}      zset, id -> timestamp
"""

import json
import logging
import time
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from typing import Any

import redis

from edge_sync.config import get_redis_client, settings
from edge_sync.entities import (
    CacheEntryEntity,
    CachePriority,
    OfflineOperationEntity,
    OperationStatus,
    OperationType,
    SyncEventEntity,
    SyncEventStatus,
    SyncOperation,
    payload_from_dict,
    payload_to_dict,
)
from edge_sync.errors import LocalStoreError

logger = logging.getLogger(__name__)

# Optimistic-lock attempts before a contended key is reported as a store fault
_WATCH_ATTEMPTS = 3


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    """Surface any Redis fault as a LocalStoreError."""
    try:
        yield
    except redis.RedisError as e:
        raise LocalStoreError(f"Failed to {action}: {e}") from e


def _opt_float(value: str | None) -> float | None:
    return float(value) if value else None


class RedisLocalStore:
    """Redis implementation of the edge node's local store.

    This class satisfies the LocalStore and ManagedService protocols through
    structural typing - no explicit inheritance needed.

    Multi-key updates run inside MULTI/EXEC pipelines so each table sees one
    writer at a time.
    """

    name = "local_store"

    def __init__(
        self,
        redis_client: redis.Redis | None = None,
        key_prefix: str | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Initialize the Redis local store.

        Args:
            redis_client: Redis client instance (decode_responses=True). If None, creates default.
            key_prefix: Namespace for all keys. Defaults to settings.
            clock: Time source returning Unix seconds. Defaults to time.time.
        """
        self._client = redis_client or get_redis_client()
        self._prefix = key_prefix or settings.store_key_prefix
        self._clock = clock or time.time

    @classmethod
    def create(
        cls,
        redis_url: str | None = None,
        key_prefix: str | None = None,
    ) -> "RedisLocalStore":
        """Factory method to create RedisLocalStore with defaults.

        Args:
            redis_url: Redis URL. If None, uses settings.
            key_prefix: Key namespace. If None, uses settings.

        Returns:
            Configured RedisLocalStore
        """
        return cls(redis_client=get_redis_client(redis_url), key_prefix=key_prefix)

    # Key helpers

    def _cache_key(self, key: str) -> str:
        return f"{self._prefix}:cache:{key}"

    def _tag_key(self, tag: str) -> str:
        return f"{self._prefix}:cache:tag:{tag}"

    @property
    def _expiry_index(self) -> str:
        return f"{self._prefix}:cache:expiry"

    def _event_key(self, event_id: str) -> str:
        return f"{self._prefix}:event:{event_id}"

    def _event_index(self, status: SyncEventStatus) -> str:
        return f"{self._prefix}:events:{status.value}"

    def _operation_key(self, operation_id: str) -> str:
        return f"{self._prefix}:operation:{operation_id}"

    def _operation_index(self, status: OperationStatus) -> str:
        return f"{self._prefix}:operations:{status.value}"

    # Cache entries

    def set_cache(
        self,
        key: str,
        value: Any,
        ttl_seconds: float,
        tags: Iterable[str] = (),
        priority: CachePriority = CachePriority.MEDIUM,
    ) -> CacheEntryEntity:
        """Upsert a cache entry.

        Overwriting an entry resets its access bookkeeping and replaces its tags.

        Args:
            key: Cache key
            value: Any JSON-serializable value
            ttl_seconds: Time-to-live, must be positive
            tags: Labels for bulk invalidation
            priority: Eviction class

        Returns:
            The stored entry

        Raises:
            ValueError: If ttl_seconds is not positive
            LocalStoreError: If Redis fails
        """
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")

        now = self._clock()
        entry = CacheEntryEntity(
            key=key,
            data=value,
            created_at=now,
            expires_at=now + ttl_seconds,
            tags=frozenset(tags),
            priority=CachePriority(priority),
        )
        hash_key = self._cache_key(key)

        mapping = {
            "data": json.dumps(value),
            "created_at": str(entry.created_at),
            "expires_at": str(entry.expires_at),
            "tags": json.dumps(sorted(entry.tags)),
            "priority": entry.priority.value,
            "access_count": 0,
            "last_accessed_at": "",
        }

        with _storage_errors(f"write cache entry {key}"), self._client.pipeline() as pipe:
            for _ in range(_WATCH_ATTEMPTS):
                try:
                    pipe.watch(hash_key)
                    old_tags = self._entry_tags(pipe, hash_key)

                    pipe.multi()
                    pipe.delete(hash_key)
                    pipe.hset(hash_key, mapping=mapping)
                    pipe.zadd(self._expiry_index, {key: entry.expires_at})
                    for tag in old_tags - entry.tags:
                        pipe.srem(self._tag_key(tag), key)
                    for tag in entry.tags:
                        pipe.sadd(self._tag_key(tag), key)
                    pipe.execute()
                    return entry
                except redis.WatchError:
                    logger.debug("Concurrent write on cache entry %s, retrying", key)
            raise LocalStoreError(f"Failed to write cache entry {key}: too much contention")

    def get_cache(self, key: str) -> CacheEntryEntity | None:
        """Get a live cache entry and record the access.

        Args:
            key: Cache key

        Returns:
            The entry with updated access_count/last_accessed_at, or None if
            missing or expired
        """
        hash_key = self._cache_key(key)
        now = self._clock()

        with _storage_errors(f"read cache entry {key}"), self._client.pipeline() as pipe:
            for _ in range(_WATCH_ATTEMPTS):
                try:
                    pipe.watch(hash_key)
                    raw = pipe.hgetall(hash_key)
                    if not raw:
                        return None
                    entry = self._to_cache_entry(key, raw)
                    if entry.is_expired(now):
                        return None

                    pipe.multi()
                    pipe.hincrby(hash_key, "access_count", 1)
                    pipe.hset(hash_key, "last_accessed_at", str(now))
                    access_count, _ = pipe.execute()
                    return replace(entry, access_count=int(access_count), last_accessed_at=now)
                except redis.WatchError:
                    logger.debug("Concurrent write on cache entry %s, retrying read", key)
            raise LocalStoreError(f"Failed to read cache entry {key}: too much contention")

    def peek_cache(self, key: str) -> CacheEntryEntity | None:
        """Get a live cache entry without touching its access bookkeeping."""
        with _storage_errors(f"read cache entry {key}"):
            raw = self._client.hgetall(self._cache_key(key))
        if not raw:
            return None
        entry = self._to_cache_entry(key, raw)
        return None if entry.is_expired(self._clock()) else entry

    def delete_cache(self, key: str) -> bool:
        """Delete a specific cache entry.

        Returns:
            True if deleted, False otherwise
        """
        return self._delete_cache_keys([key]) > 0

    def delete_cache_by_tags(self, tags: Iterable[str]) -> int:
        """Delete every entry carrying any of the given tags.

        Returns:
            Number of entries deleted
        """
        tag_keys = [self._tag_key(tag) for tag in tags]
        if not tag_keys:
            return 0
        with _storage_errors("resolve cache tags"):
            keys = self._client.sunion(tag_keys)
        return self._delete_cache_keys(keys)

    def cleanup_expired_cache(self) -> int:
        """Delete every entry whose expires_at has passed.

        Returns:
            Number of entries deleted (0 if nothing was expired)
        """
        with _storage_errors("scan expired cache entries"):
            keys = self._client.zrangebyscore(self._expiry_index, "-inf", self._clock())
        return self._delete_cache_keys(keys)

    def count_cache_entries(self) -> int:
        with _storage_errors("count cache entries"):
            return int(self._client.zcard(self._expiry_index))

    def list_cache_entries(self) -> list[CacheEntryEntity]:
        """Return every stored entry (expired ones included) without bookkeeping."""
        with _storage_errors("list cache entries"):
            keys = self._client.zrange(self._expiry_index, 0, -1)
            pipe = self._client.pipeline(transaction=False)
            for key in keys:
                pipe.hgetall(self._cache_key(key))
            rows = pipe.execute()
        return [self._to_cache_entry(key, raw) for key, raw in zip(keys, rows) if raw]

    def evict_cache_entries(self, keys: Iterable[str]) -> int:
        return self._delete_cache_keys(keys)

    def _delete_cache_keys(self, keys: Iterable[str]) -> int:
        keys = list(keys)
        if not keys:
            return 0

        with _storage_errors("delete cache entries"):
            read = self._client.pipeline(transaction=False)
            for key in keys:
                read.hget(self._cache_key(key), "tags")
            tag_lists = read.execute()

            pipe = self._client.pipeline()
            for key, tags in zip(keys, tag_lists):
                pipe.delete(self._cache_key(key))
                for tag in json.loads(tags or "[]"):
                    pipe.srem(self._tag_key(tag), key)
            pipe.zrem(self._expiry_index, *keys)
            results = pipe.execute()

        # delete() results are the ints at the start of each per-key group
        deleted = 0
        position = 0
        for tags in tag_lists:
            deleted += int(results[position])
            position += 1 + len(json.loads(tags or "[]"))
        return deleted

    def _entry_tags(self, pipe: redis.client.Pipeline, hash_key: str) -> set[str]:
        return set(json.loads(pipe.hget(hash_key, "tags") or "[]"))

    def _to_cache_entry(self, key: str, raw: dict[str, str]) -> CacheEntryEntity:
        return CacheEntryEntity(
            key=key,
            data=json.loads(raw["data"]),
            created_at=float(raw["created_at"]),
            expires_at=float(raw["expires_at"]),
            tags=frozenset(json.loads(raw.get("tags") or "[]")),
            priority=CachePriority(raw.get("priority", CachePriority.MEDIUM.value)),
            access_count=int(raw.get("access_count", 0)),
            last_accessed_at=_opt_float(raw.get("last_accessed_at")),
        )

    # Sync events

    def create_sync_event(self, event: SyncEventEntity) -> str:
        """Append an event to the sync log.

        Returns:
            The event id

        Raises:
            LocalStoreError: If the id already exists or Redis fails
        """
        event_key = self._event_key(event.id)
        status = SyncEventStatus.SYNCED if event.synced else SyncEventStatus.PENDING
        score = event.synced_at if event.synced and event.synced_at else event.timestamp

        with _storage_errors(f"create sync event {event.id}"):
            if self._client.exists(event_key):
                raise LocalStoreError(f"Sync event {event.id} already exists")
            pipe = self._client.pipeline()
            pipe.hset(event_key, mapping=self._sync_event_mapping(event))
            pipe.zadd(self._event_index(status), {event.id: score})
            pipe.execute()

        return event.id

    def get_sync_event(self, event_id: str) -> SyncEventEntity | None:
        with _storage_errors(f"read sync event {event_id}"):
            raw = self._client.hgetall(self._event_key(event_id))
        return self._to_sync_event(event_id, raw) if raw else None

    def get_pending_sync_events(self, limit: int = 100) -> list[SyncEventEntity]:
        """Return up to ``limit`` unsynced events, oldest timestamp first."""
        return self.list_pending_sync_events(limit=limit, offset=0)

    def list_pending_sync_events(self, limit: int = 50, offset: int = 0) -> list[SyncEventEntity]:
        if limit <= 0:
            return []
        with _storage_errors("list pending sync events"):
            ids = self._client.zrange(
                self._event_index(SyncEventStatus.PENDING), offset, offset + limit - 1
            )
        return self._load_sync_events(ids)

    def list_synced_events(
        self,
        since: float,
        limit: int = 50,
        offset: int = 0,
    ) -> list[SyncEventEntity]:
        if limit <= 0:
            return []
        with _storage_errors("list synced events"):
            ids = self._client.zrevrangebyscore(
                self._event_index(SyncEventStatus.SYNCED), "+inf", since, start=offset, num=limit
            )
        return self._load_sync_events(ids)

    def update_sync_event_status(
        self,
        event_id: str,
        status: SyncEventStatus,
        error: str | None = None,
    ) -> bool:
        """Set an event's status and last error, incrementing its retry count.

        Returns:
            True if the event exists, False otherwise
        """
        status = SyncEventStatus(status)
        event = self.get_sync_event(event_id)
        if event is None:
            return False

        now = self._clock()
        event_key = self._event_key(event_id)
        with _storage_errors(f"update sync event {event_id}"):
            pipe = self._client.pipeline()
            pipe.hset(
                event_key,
                mapping={
                    "synced": int(status is SyncEventStatus.SYNCED),
                    "synced_at": str(now) if status is SyncEventStatus.SYNCED else "",
                    "last_error": error or "",
                },
            )
            pipe.hincrby(event_key, "retry_count", 1)
            pipe.zrem(self._event_index(SyncEventStatus.PENDING), event_id)
            pipe.zrem(self._event_index(SyncEventStatus.SYNCED), event_id)
            score = now if status is SyncEventStatus.SYNCED else event.timestamp
            pipe.zadd(self._event_index(status), {event_id: score})
            pipe.execute()
        return True

    def mark_sync_events_synced(self, event_ids: Iterable[str]) -> int:
        """Mark acknowledged events as synced.

        Unknown and already-synced ids are ignored.

        Returns:
            Number of events that moved from pending to synced
        """
        event_ids = list(dict.fromkeys(event_ids))
        if not event_ids:
            return 0

        pending_index = self._event_index(SyncEventStatus.PENDING)
        now = self._clock()
        with _storage_errors("mark sync events synced"):
            check = self._client.pipeline(transaction=False)
            for event_id in event_ids:
                check.zscore(pending_index, event_id)
            pending = [eid for eid, score in zip(event_ids, check.execute()) if score is not None]
            if not pending:
                return 0

            pipe = self._client.pipeline()
            for event_id in pending:
                pipe.hset(
                    self._event_key(event_id),
                    mapping={"synced": 1, "synced_at": str(now), "last_error": ""},
                )
            pipe.zrem(pending_index, *pending)
            pipe.zadd(self._event_index(SyncEventStatus.SYNCED), {eid: now for eid in pending})
            pipe.execute()

        return len(pending)

    def increment_pending_retry_counts(self, error: str | None = None) -> int:
        """Increment the retry count of every pending event.

        Returns:
            Number of events touched
        """
        with _storage_errors("increment pending retry counts"):
            ids = self._client.zrange(self._event_index(SyncEventStatus.PENDING), 0, -1)
            if not ids:
                return 0
            pipe = self._client.pipeline()
            for event_id in ids:
                event_key = self._event_key(event_id)
                pipe.hincrby(event_key, "retry_count", 1)
                if error:
                    pipe.hset(event_key, "last_error", error)
            pipe.execute()
        return len(ids)

    def delete_synced_events_before(self, cutoff: float) -> int:
        """Purge synced events whose synced_at is older than ``cutoff``.

        Returns:
            Number of events deleted
        """
        synced_index = self._event_index(SyncEventStatus.SYNCED)
        with _storage_errors("purge synced events"):
            ids = self._client.zrangebyscore(synced_index, "-inf", f"({cutoff}")
            if not ids:
                return 0
            pipe = self._client.pipeline()
            for event_id in ids:
                pipe.delete(self._event_key(event_id))
            pipe.zrem(synced_index, *ids)
            pipe.execute()
        return len(ids)

    def get_sync_counts(self, max_retries: int) -> dict[str, Any]:
        """Count events by state.

        Pending events at or beyond ``max_retries`` are reported as failed;
        they are still retried.

        Returns:
            Dict with pending, synced, failed, total and last_sync
        """
        with _storage_errors("count sync events"):
            pending_ids = self._client.zrange(self._event_index(SyncEventStatus.PENDING), 0, -1)
            pipe = self._client.pipeline(transaction=False)
            for event_id in pending_ids:
                pipe.hget(self._event_key(event_id), "retry_count")
            retry_counts = [int(count or 0) for count in pipe.execute()] if pending_ids else []

            synced_index = self._event_index(SyncEventStatus.SYNCED)
            synced = int(self._client.zcard(synced_index))
            latest = self._client.zrevrange(synced_index, 0, 0, withscores=True)

        failed = sum(1 for count in retry_counts if count >= max_retries)
        return {
            "pending": len(retry_counts) - failed,
            "synced": synced,
            "failed": failed,
            "total": len(retry_counts) + synced,
            "last_sync": latest[0][1] if latest else None,
        }

    def _load_sync_events(self, ids: list[str]) -> list[SyncEventEntity]:
        if not ids:
            return []
        with _storage_errors("load sync events"):
            pipe = self._client.pipeline(transaction=False)
            for event_id in ids:
                pipe.hgetall(self._event_key(event_id))
            rows = pipe.execute()
        return [self._to_sync_event(eid, raw) for eid, raw in zip(ids, rows) if raw]

    @staticmethod
    def _sync_event_mapping(event: SyncEventEntity) -> dict[str, Any]:
        return {
            "table_name": event.table_name,
            "operation": event.operation.value,
            "record_id": event.record_id,
            "payload": json.dumps(payload_to_dict(event.payload)),
            "timestamp": str(event.timestamp),
            "establishment_id": event.establishment_id,
            "synced": int(event.synced),
            "synced_at": str(event.synced_at) if event.synced_at else "",
            "retry_count": event.retry_count,
            "last_error": event.last_error or "",
        }

    @staticmethod
    def _to_sync_event(event_id: str, raw: dict[str, str]) -> SyncEventEntity:
        return SyncEventEntity(
            id=event_id,
            table_name=raw["table_name"],
            operation=SyncOperation(raw["operation"]),
            record_id=raw["record_id"],
            payload=payload_from_dict(json.loads(raw["payload"])),
            timestamp=float(raw["timestamp"]),
            establishment_id=raw.get("establishment_id", ""),
            synced=raw.get("synced") == "1",
            synced_at=_opt_float(raw.get("synced_at")),
            retry_count=int(raw.get("retry_count", 0)),
            last_error=raw.get("last_error") or None,
        )

    # Offline operations

    def create_offline_operation(self, operation: OfflineOperationEntity) -> str:
        """Store a captured offline operation.

        Returns:
            The operation id
        """
        operation_key = self._operation_key(operation.id)
        with _storage_errors(f"create offline operation {operation.id}"):
            if self._client.exists(operation_key):
                raise LocalStoreError(f"Offline operation {operation.id} already exists")
            pipe = self._client.pipeline()
            pipe.hset(
                operation_key,
                mapping={
                    "type": operation.type.value,
                    "resource": operation.resource,
                    "operation": operation.operation,
                    "data": json.dumps(operation.data),
                    "timestamp": str(operation.timestamp),
                    "retry_count": operation.retry_count,
                    "max_retries": operation.max_retries,
                    "status": operation.status.value,
                    "response": json.dumps(operation.response),
                    "last_error": operation.last_error or "",
                },
            )
            pipe.zadd(self._operation_index(operation.status), {operation.id: operation.timestamp})
            pipe.execute()
        return operation.id

    def get_offline_operation(self, operation_id: str) -> OfflineOperationEntity | None:
        with _storage_errors(f"read offline operation {operation_id}"):
            raw = self._client.hgetall(self._operation_key(operation_id))
        return self._to_operation(operation_id, raw) if raw else None

    def get_pending_operations(self, limit: int = 100) -> list[OfflineOperationEntity]:
        """Return pending operations with retries left, oldest first."""
        if limit <= 0:
            return []

        pending_index = self._operation_index(OperationStatus.PENDING)
        result: list[OfflineOperationEntity] = []
        start = 0
        with _storage_errors("list pending offline operations"):
            while len(result) < limit:
                ids = self._client.zrange(pending_index, start, start + limit - 1)
                if not ids:
                    break
                pipe = self._client.pipeline(transaction=False)
                for operation_id in ids:
                    pipe.hgetall(self._operation_key(operation_id))
                for operation_id, raw in zip(ids, pipe.execute()):
                    if raw:
                        operation = self._to_operation(operation_id, raw)
                        if operation.can_retry:
                            result.append(operation)
                start += len(ids)
        return result[:limit]

    def update_operation_status(
        self,
        operation_id: str,
        status: OperationStatus,
        response: Any = None,
        error: str | None = None,
    ) -> bool:
        """Set an operation's status, incrementing its retry count.

        Returns:
            True if the operation exists, False otherwise
        """
        status = OperationStatus(status)
        operation = self.get_offline_operation(operation_id)
        if operation is None:
            return False

        operation_key = self._operation_key(operation_id)
        with _storage_errors(f"update offline operation {operation_id}"):
            pipe = self._client.pipeline()
            pipe.hset(
                operation_key,
                mapping={
                    "status": status.value,
                    "response": json.dumps(response),
                    "last_error": error or "",
                },
            )
            pipe.hincrby(operation_key, "retry_count", 1)
            pipe.zrem(self._operation_index(operation.status), operation_id)
            pipe.zadd(self._operation_index(status), {operation_id: operation.timestamp})
            pipe.execute()
        return True

    def get_operation_counts(self) -> dict[str, int]:
        with _storage_errors("count offline operations"):
            pipe = self._client.pipeline(transaction=False)
            for status in OperationStatus:
                pipe.zcard(self._operation_index(status))
            counts = {status.value: int(n) for status, n in zip(OperationStatus, pipe.execute())}
        counts["total"] = sum(counts.values())
        return counts

    @staticmethod
    def _to_operation(operation_id: str, raw: dict[str, str]) -> OfflineOperationEntity:
        return OfflineOperationEntity(
            id=operation_id,
            type=OperationType(raw["type"]),
            resource=raw["resource"],
            operation=raw["operation"],
            data=json.loads(raw.get("data") or "null"),
            timestamp=float(raw["timestamp"]),
            retry_count=int(raw.get("retry_count", 0)),
            max_retries=int(raw.get("max_retries", 3)),
            status=OperationStatus(raw.get("status", OperationStatus.PENDING.value)),
            response=json.loads(raw.get("response") or "null"),
            last_error=raw.get("last_error") or None,
        )

    # Housekeeping

    def health_check(self) -> bool:
        """Check if Redis is accessible.

        Returns:
            True if healthy, False otherwise
        """
        try:
            return bool(self._client.ping())
        except redis.RedisError:
            return False

    def get_stats(self) -> dict[str, Any]:
        """Get repository statistics.

        Returns:
            Dictionary with cache, sync event and offline operation counts
        """
        with _storage_errors("collect store statistics"):
            cache_total = int(self._client.zcard(self._expiry_index))
            cache_expired = int(self._client.zcount(self._expiry_index, "-inf", self._clock()))
        return {
            "key_prefix": self._prefix,
            "offline_cache": {"total": cache_total, "expired": cache_expired},
            "sync_events": self.get_sync_counts(settings.sync_max_retries),
            "offline_operations": self.get_operation_counts(),
        }

    async def initialize(self) -> None:
        """Verify Redis is reachable before dependent services start."""
        if not self.health_check():
            raise LocalStoreError(f"Redis is not reachable for prefix {self._prefix}")
        logger.info("Local store ready (prefix=%s)", self._prefix)

    async def shutdown(self) -> None:
        self._client.close()
        logger.info("Local store closed")

    @property
    def client(self) -> redis.Redis:
        """Get the Redis client."""
        return self._client
