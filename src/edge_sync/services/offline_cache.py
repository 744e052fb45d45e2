"""Offline cache engine.

Keeps the edge node useful while the central system is unreachable:

- a TTL + tag + priority cache on top of the local store
- a connectivity monitor that classifies the node as online/offline
- a backlog of client operations captured while offline, replayed on reconnect

Capacity is handled internally: when the cache is full, the least valuable
10% of entries are evicted before the next write. Callers never see a
capacity error.
"""

import asyncio
import contextlib
import inspect
import logging
import math
import time
import uuid
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

from edge_sync.config import settings
from edge_sync.entities import (
    CacheEntryEntity,
    CacheLookup,
    CachePriority,
    LookupStatus,
    OfflineOperationEntity,
    OperationStatus,
    OperationType,
)
from edge_sync.errors import LocalStoreError
from edge_sync.protocols import LocalStore, OperationReplayer
from edge_sync.repositories import CentralClient
from edge_sync.services.replay import EventLogReplayer

logger = logging.getLogger(__name__)

EVICTION_FRACTION = 0.1

ReconnectListener = Callable[[], Awaitable[None] | None]


@dataclass(frozen=True)
class FlushResult:
    """Outcome of one backlog flush."""

    processed: int = 0
    completed: int = 0
    retrying: int = 0
    failed: int = 0


class OfflineCacheService:
    """Offline cache and connectivity service.

    This service depends on the LocalStore protocol, not on Redis. The
    replayer decides what replaying a captured operation means; by default
    writes are recorded as sync events so the replication engine carries
    them to the central system.

    Example:
        ```python
        cache = OfflineCacheService.create(store=store, central=central)
        await cache.initialize()

        await cache.set("patient:1", {"name": "Ana"}, tags=["patients"])
        lookup = await cache.lookup("patient:1")
        if lookup.status is LookupStatus.OFFLINE_MISS:
            ...  # offline and uncached
        ```
    """

    name = "offline_cache"

    def __init__(
        self,
        store: LocalStore,
        central: CentralClient,
        replayer: OperationReplayer | None = None,
        max_size: int | None = None,
        default_ttl: float | None = None,
        check_interval: float | None = None,
        max_retries: int | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Initialize the offline cache service.

        Args:
            store: Local store backend (required).
            central: Central client used for connectivity probes (required).
            replayer: Replays captured operations. Defaults to EventLogReplayer.
            max_size: Entry count that triggers eviction. Defaults to settings.
            default_ttl: TTL in seconds when set() gets none. Defaults to settings.
            check_interval: Seconds between connectivity probes. Defaults to settings.
            max_retries: Replay attempts for new offline operations. Defaults to settings.
            clock: Time source returning Unix seconds.
        """
        self._store = store
        self._central = central
        self._clock = clock or time.time
        self._replayer = replayer or EventLogReplayer(store)
        self._max_size = max_size or settings.cache_max_size
        self._default_ttl = default_ttl or settings.cache_default_ttl
        self._check_interval = check_interval or settings.connection_check_interval
        self._max_retries = max_retries or settings.sync_max_retries

        # None until the first probe; reads as online
        self._offline: bool | None = None
        self._last_connection_check: float | None = None
        self._reconnect_listeners: list[ReconnectListener] = []
        self._monitor_task: asyncio.Task | None = None
        self._flush_lock = asyncio.Lock()
        self._hits = 0
        self._misses = 0

    @classmethod
    def create(
        cls,
        store: LocalStore,
        central: CentralClient,
        replayer: OperationReplayer | None = None,
    ) -> "OfflineCacheService":
        """Factory method to create OfflineCacheService with settings defaults.

        Args:
            store: Local store backend (required).
            central: Central client (required).
            replayer: Optional custom replayer.

        Returns:
            Configured OfflineCacheService instance
        """
        return cls(store=store, central=central, replayer=replayer)

    # Cache

    async def get(self, key: str) -> Any | None:
        """Get a cached value.

        Returns:
            The value, or None on miss, expiry or a store fault
        """
        return (await self.lookup(key)).data

    async def lookup(self, key: str) -> CacheLookup:
        """Look up a key and say why it missed.

        Returns:
            CacheLookup with HIT, MISS, or OFFLINE_MISS when the node is
            offline and the key is not cached
        """
        try:
            entry = self._store.get_cache(key)
        except LocalStoreError:
            logger.exception("Failed to read cache entry %s", key)
            entry = None

        if entry is not None:
            self._hits += 1
            return CacheLookup(key=key, status=LookupStatus.HIT, data=entry.data)

        self._misses += 1
        status = LookupStatus.OFFLINE_MISS if self.is_offline() else LookupStatus.MISS
        return CacheLookup(key=key, status=status)

    async def set(
        self,
        key: str,
        data: Any,
        ttl: float | None = None,
        tags: Iterable[str] | None = None,
        priority: CachePriority = CachePriority.MEDIUM,
    ) -> CacheEntryEntity:
        """Cache a value, evicting first if the cache is full.

        Args:
            key: Cache key
            data: JSON-serializable value
            ttl: Time-to-live in seconds. Defaults to 24 hours.
            tags: Labels for bulk invalidation
            priority: Eviction class

        Returns:
            The stored entry

        Raises:
            LocalStoreError: If the write fails
        """
        self._evict_if_needed()
        entry = self._store.set_cache(
            key,
            data,
            ttl_seconds=ttl or self._default_ttl,
            tags=tags or (),
            priority=priority,
        )
        logger.debug("Cached %s (priority=%s)", key, entry.priority.value)
        return entry

    async def delete(self, key: str) -> bool:
        deleted = self._store.delete_cache(key)
        if deleted:
            logger.debug("Removed cache entry %s", key)
        return deleted

    async def delete_by_tags(self, tags: Iterable[str]) -> int:
        """Delete every entry carrying any of the tags.

        Returns:
            Number of entries removed
        """
        tags = list(tags)
        deleted = self._store.delete_cache_by_tags(tags)
        logger.info("Removed %d cache entries by tags %s", deleted, ", ".join(tags))
        return deleted

    async def cleanup_expired(self) -> int:
        """Sweep expired entries.

        Returns:
            Number of entries removed (0 on a store fault)
        """
        try:
            deleted = self._store.cleanup_expired_cache()
        except LocalStoreError:
            logger.exception("Failed to sweep expired cache entries")
            return 0
        if deleted:
            logger.info("Removed %d expired cache entries", deleted)
        return deleted

    def _evict_if_needed(self) -> None:
        try:
            if self._store.count_cache_entries() < self._max_size:
                return
            to_remove = math.ceil(self._max_size * EVICTION_FRACTION)
            victims = sorted(self._store.list_cache_entries(), key=CacheEntryEntity.eviction_key)
            removed = self._store.evict_cache_entries(entry.key for entry in victims[:to_remove])
        except LocalStoreError:
            logger.exception("Cache eviction failed")
            return
        logger.info("Evicted %d cache entries (max size %d)", removed, self._max_size)

    # Connectivity

    def is_offline(self) -> bool:
        """Last known connectivity. Before the first probe the node counts as online."""
        return bool(self._offline)

    @property
    def last_connection_check(self) -> float | None:
        return self._last_connection_check

    def add_reconnect_listener(self, listener: ReconnectListener) -> None:
        """Register a callback fired after the backlog flush on reconnect."""
        self._reconnect_listeners.append(listener)

    async def check_connection(self) -> bool:
        """Probe the central system and update the offline classification.

        A successful probe while offline (or before any probe) flushes the
        offline backlog and fires the reconnect listeners.

        Returns:
            True if the central system is reachable
        """
        online = await self._central.check_health()
        previous = self._offline
        self._offline = not online
        self._last_connection_check = self._clock()

        if online and previous is not False:
            if previous:
                logger.info("Connection to central system restored, flushing offline backlog")
            await self._handle_reconnect()
        elif not online and previous is not True:
            logger.warning("Central system unreachable, operating from local cache")

        return online

    async def _handle_reconnect(self) -> None:
        await self.flush_offline_operations()
        for listener in list(self._reconnect_listeners):
            try:
                result = listener()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Reconnect listener failed")

    async def _monitor(self) -> None:
        while True:
            try:
                await self.check_connection()
            except Exception:
                logger.exception("Connectivity check failed")
            await asyncio.sleep(self._check_interval)

    # Offline operations

    async def store_offline_operation(
        self,
        operation_type: OperationType,
        resource: str,
        operation: str,
        data: Any = None,
        max_retries: int | None = None,
    ) -> OfflineOperationEntity:
        """Capture a client operation for replay once the node is back online.

        Raises:
            LocalStoreError: If the operation cannot be stored
        """
        entity = OfflineOperationEntity(
            id=uuid.uuid4().hex,
            type=OperationType(operation_type),
            resource=resource,
            operation=operation,
            data=data,
            timestamp=self._clock(),
            max_retries=max_retries or self._max_retries,
        )
        self._store.create_offline_operation(entity)
        logger.info("Stored offline operation %s (%s %s.%s)", entity.id, entity.type.value, resource, operation)
        return entity

    async def get_pending_operations(self, limit: int = 100) -> list[OfflineOperationEntity]:
        return self._store.get_pending_operations(limit)

    async def flush_offline_operations(self, limit: int = 100) -> FlushResult:
        """Replay pending offline operations, oldest first.

        A failed replay leaves the operation pending with the error recorded
        until its retries run out, then marks it failed.

        Returns:
            FlushResult with per-outcome counts
        """
        async with self._flush_lock:
            operations = self._store.get_pending_operations(limit)
            if not operations:
                logger.debug("No pending offline operations")
                return FlushResult()

            logger.info("Replaying %d offline operations", len(operations))
            completed = retrying = failed = 0
            for operation in operations:
                try:
                    response = await self._replayer.replay(operation)
                except Exception as e:
                    exhausted = operation.retry_count + 1 >= operation.max_retries
                    status = OperationStatus.FAILED if exhausted else OperationStatus.PENDING
                    self._store.update_operation_status(operation.id, status, error=str(e))
                    logger.warning(
                        "Replay of offline operation %s failed (%s): %s",
                        operation.id,
                        "giving up" if exhausted else "will retry",
                        e,
                    )
                    if exhausted:
                        failed += 1
                    else:
                        retrying += 1
                else:
                    self._store.update_operation_status(
                        operation.id, OperationStatus.COMPLETED, response=response
                    )
                    completed += 1

        result = FlushResult(
            processed=len(operations),
            completed=completed,
            retrying=retrying,
            failed=failed,
        )
        logger.info("Offline backlog flush finished: %s", result)
        return result

    # Stats & lifecycle

    async def get_stats(self) -> dict[str, Any]:
        """Get cache and backlog statistics."""
        store_stats = self._store.get_stats()
        operations = store_stats["offline_operations"]
        lookups = self._hits + self._misses
        return {
            "total_entries": store_stats["offline_cache"]["total"],
            "expired_entries": store_stats["offline_cache"]["expired"],
            "max_size": self._max_size,
            "offline_operations": operations["total"],
            "pending_operations": operations[OperationStatus.PENDING.value],
            "failed_operations": operations[OperationStatus.FAILED.value],
            "cache_hit_rate": self._hits / lookups if lookups else 0.0,
            "is_offline": self.is_offline(),
            "last_connection_check": self._last_connection_check,
        }

    async def initialize(self) -> None:
        """Start the connectivity monitor."""
        if self._monitor_task is None:
            self._monitor_task = asyncio.create_task(self._monitor(), name="offline-cache-monitor")
        logger.info("Offline cache started (probe every %ss)", self._check_interval)

    async def shutdown(self) -> None:
        """Stop the connectivity monitor."""
        if self._monitor_task is not None:
            self._monitor_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._monitor_task
            self._monitor_task = None
        logger.info("Offline cache stopped")

    async def health_check(self) -> bool:
        return self._store.health_check()
