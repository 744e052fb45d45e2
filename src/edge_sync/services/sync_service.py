"""Replication engine: moves pending sync events to the central system.

One cycle runs IDLE -> DRAINING -> TRANSMITTING -> RECONCILING -> IDLE:

1. Drain up to ``batch_size`` pending events, oldest first
2. Wrap them in a secure envelope and post them to the central system
3. Mark exactly the acknowledged events as synced

Delivery is at-least-once: an event stays pending until the central system
acknowledges it by id, so a crash between transmit and reconcile re-sends
it. The central side is expected to apply events idempotently by id.

Cycles are triggered by the interval timer (and once on start), by an
operator, or by the offline cache when connectivity comes back. A trigger
that arrives while a cycle is active is skipped, never queued.
"""

import asyncio
import contextlib
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from edge_sync.config import settings
from edge_sync.entities import SyncEventEntity, SyncOperation, payload_for
from edge_sync.errors import EdgeSyncError, SyncTransmissionError
from edge_sync.protocols import LocalStore
from edge_sync.repositories import CentralClient
from edge_sync.services.secure_envelope import SecureEnvelope

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


class SyncState(str, Enum):
    IDLE = "idle"
    DRAINING = "draining"
    TRANSMITTING = "transmitting"
    RECONCILING = "reconciling"


class SyncStatus(str, Enum):
    SKIPPED = "skipped"
    EMPTY = "empty"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class SyncCycleResult:
    """Outcome of one replication cycle.

    Attributes:
        status: skipped (cycle already active), empty, success or failed
        attempted: Events sent to the central system
        synced: Events marked synced after acknowledgement
        conflicts: Conflicts the central system reported
        error: Failure reason, if any
        started_at: Unix timestamp the cycle began
        duration_ms: Wall time of the cycle
    """

    status: SyncStatus
    attempted: int = 0
    synced: int = 0
    conflicts: int = 0
    error: str | None = None
    started_at: float | None = None
    duration_ms: float = 0.0


class SyncService:
    """Replication engine service.

    Depends on the LocalStore protocol for the event log, the CentralClient
    for transport and the SecureEnvelope for packaging.

    Example:
        ```python
        sync = SyncService(store=store, central=central, envelope=envelope)
        sync.record_event("patients", SyncOperation.CREATE, "p-1", {"id": "p-1"})
        result = await sync.trigger()
        print(result.status, result.synced)
        ```
    """

    name = "sync_service"

    def __init__(
        self,
        store: LocalStore,
        central: CentralClient,
        envelope: SecureEnvelope,
        establishment_id: str | None = None,
        sync_interval: float | None = None,
        batch_size: int | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        retention_days: int | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Initialize the sync service.

        Args:
            store: Local store holding the event log (required).
            central: Central system client (required).
            envelope: Secure envelope used to package batches (required).
            establishment_id: This node's establishment. Defaults to settings.
            sync_interval: Seconds between periodic cycles. Defaults to settings.
            batch_size: Max events per cycle. Defaults to settings.
            max_retries: Retry count at which pending events report as failed.
            retry_delay: Seconds to back off after a failed cycle.
            retention_days: Default audit window for synced events.
            clock: Time source returning Unix seconds.
        """
        self._store = store
        self._central = central
        self._envelope = envelope
        self._establishment_id = establishment_id or settings.establishment_id
        self._sync_interval = sync_interval if sync_interval is not None else settings.sync_interval
        self._batch_size = batch_size or settings.sync_batch_size
        self._max_retries = max_retries or settings.sync_max_retries
        self._retry_delay = retry_delay if retry_delay is not None else settings.sync_retry_delay
        self._retention_days = retention_days if retention_days is not None else settings.sync_retention_days
        self._clock = clock or time.time

        self._state = SyncState.IDLE
        self._last_result: SyncCycleResult | None = None
        self._loop_task: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_syncing(self) -> bool:
        return self._state is not SyncState.IDLE

    @property
    def last_result(self) -> SyncCycleResult | None:
        """Result of the most recent non-skipped cycle."""
        return self._last_result

    # Domain boundary

    def record_event(
        self,
        table_name: str,
        operation: SyncOperation,
        record_id: str,
        data: dict[str, Any] | None,
        establishment_id: str | None = None,
    ) -> SyncEventEntity:
        """Record a local change that must reach the central system.

        Args:
            table_name: Table (resource) that changed
            operation: CREATE, UPDATE or DELETE
            record_id: Id of the changed record
            data: Record fields (snapshot for CREATE/UPDATE, identifying fields for DELETE)
            establishment_id: Origin establishment. Defaults to this node's.

        Returns:
            The stored event

        Raises:
            LocalStoreError: If the event cannot be stored
        """
        operation = SyncOperation(operation)
        event = SyncEventEntity(
            id=uuid.uuid4().hex,
            table_name=table_name,
            operation=operation,
            record_id=record_id,
            payload=payload_for(operation, data),
            timestamp=self._clock(),
            establishment_id=establishment_id or self._establishment_id,
        )
        self._store.create_sync_event(event)
        logger.info("Recorded sync event %s.%s#%s", table_name, operation.value, record_id)
        return event

    # Cycle

    async def sync(self) -> SyncCycleResult:
        """Run one replication cycle.

        Never raises: failures are recorded on the pending events and reported
        in the returned result.
        """
        if self._state is not SyncState.IDLE:
            logger.info("Sync already in progress (%s), skipping", self._state.value)
            return SyncCycleResult(status=SyncStatus.SKIPPED)

        self._state = SyncState.DRAINING
        started_at = self._clock()
        started = time.perf_counter()
        try:
            result = await self._run_cycle(started_at)
        finally:
            self._state = SyncState.IDLE

        result = SyncCycleResult(
            status=result.status,
            attempted=result.attempted,
            synced=result.synced,
            conflicts=result.conflicts,
            error=result.error,
            started_at=started_at,
            duration_ms=(time.perf_counter() - started) * 1000,
        )
        self._last_result = result
        logger.info("Sync cycle finished: %s in %.1fms", result.status.value, result.duration_ms)
        return result

    async def _run_cycle(self, started_at: float) -> SyncCycleResult:
        attempted = 0
        try:
            events = self._store.get_pending_sync_events(self._batch_size)
            if not events:
                logger.debug("No pending sync events")
                return SyncCycleResult(status=SyncStatus.EMPTY)

            attempted = len(events)
            logger.info("Sending %d pending sync events", attempted)

            self._state = SyncState.TRANSMITTING
            package = self._envelope.create_secure_sync_package(events, self._establishment_id)
            headers = self._envelope.create_security_headers(self._establishment_id)
            response = await self._central.send_events(package, headers=headers)
            if not response.success:
                raise SyncTransmissionError(response.message or "Central system rejected the batch")

            self._state = SyncState.RECONCILING
            batch_ids = {event.id for event in events}
            acknowledged = [event_id for event_id in response.synced_events if event_id in batch_ids]
            if len(acknowledged) != len(response.synced_events):
                logger.warning(
                    "Ignoring %d acknowledged ids that were not in the batch",
                    len(response.synced_events) - len(acknowledged),
                )
            synced = self._store.mark_sync_events_synced(acknowledged)

            for conflict in response.conflicts:
                logger.warning(
                    "Conflict resolved by central system: event %s %s -> %s",
                    conflict.event_id,
                    conflict.conflict_type,
                    conflict.resolution,
                )

            logger.info("%d of %d events synced", synced, attempted)
            return SyncCycleResult(
                status=SyncStatus.SUCCESS,
                attempted=attempted,
                synced=synced,
                conflicts=len(response.conflicts),
            )

        except Exception as e:
            if isinstance(e, EdgeSyncError):
                logger.warning("Sync cycle failed: %s", e)
            else:
                logger.exception("Unexpected error during sync cycle")
            await self._handle_failure(e)
            return SyncCycleResult(status=SyncStatus.FAILED, attempted=attempted, error=str(e))

    async def _handle_failure(self, error: Exception) -> None:
        try:
            touched = self._store.increment_pending_retry_counts(str(error))
            logger.debug("Incremented retry count of %d pending events", touched)
        except EdgeSyncError:
            logger.exception("Failed to record sync failure on pending events")
        if self._retry_delay > 0:
            await asyncio.sleep(self._retry_delay)

    # Triggers

    async def trigger(self) -> SyncCycleResult:
        """Run a cycle now (operator trigger) and wait for its result."""
        return await asyncio.shield(self._spawn_cycle())

    def request_sync(self) -> None:
        """Schedule a cycle without waiting for it (reconnect signal)."""
        self._spawn_cycle()

    def _spawn_cycle(self) -> asyncio.Task:
        task = asyncio.create_task(self.sync(), name="sync-cycle")
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _run_periodically(self) -> None:
        while True:
            await asyncio.shield(self._spawn_cycle())
            await asyncio.sleep(self._sync_interval)

    async def start(self) -> None:
        """Run a cycle immediately, then every ``sync_interval`` seconds."""
        if self._loop_task is not None:
            logger.info("Sync service already running")
            return
        self._loop_task = asyncio.create_task(self._run_periodically(), name="sync-loop")
        logger.info("Sync scheduled every %ss", self._sync_interval)

    async def stop(self) -> None:
        """Cancel the timer and wait for any in-flight cycle to finish."""
        if self._loop_task is not None:
            self._loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        logger.info("Sync service stopped")

    # Housekeeping

    def cleanup_synced_events(self, days_to_keep: int | None = None) -> int:
        """Purge synced events older than the retention window.

        Returns:
            Number of events removed
        """
        days = days_to_keep if days_to_keep is not None else self._retention_days
        deleted = self._store.delete_synced_events_before(self._clock() - days * SECONDS_PER_DAY)
        logger.info("Removed %d synced events older than %d days", deleted, days)
        return deleted

    def get_sync_stats(self) -> dict[str, Any]:
        """Pending, synced and failed counts plus the last sync time.

        Failed counts pending events whose retry count reached max_retries;
        they keep being retried.
        """
        stats = self._store.get_sync_counts(self._max_retries)
        stats["is_syncing"] = self.is_syncing
        stats["state"] = self._state.value
        return stats

    def list_pending_events(self, limit: int = 50, offset: int = 0) -> list[SyncEventEntity]:
        return self._store.list_pending_sync_events(limit=limit, offset=offset)

    def list_synced_events(self, hours: float = 24, limit: int = 50, offset: int = 0) -> list[SyncEventEntity]:
        since = self._clock() - hours * 60 * 60
        return self._store.list_synced_events(since, limit=limit, offset=offset)

    # Managed service

    async def initialize(self) -> None:
        await self.start()

    async def shutdown(self) -> None:
        await self.stop()

    async def health_check(self) -> bool:
        return self._store.health_check()
