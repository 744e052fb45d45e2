"""Tests for the replication engine."""

import asyncio

import httpx
import pytest

from edge_sync.entities import SyncOperation
from edge_sync.repositories import CentralClient
from edge_sync.services import OfflineCacheService, SecureEnvelope, SyncSecurityConfig, SyncService
from edge_sync.services.sync_service import SyncState, SyncStatus

from conftest import CENTRAL_URL, ESTABLISHMENT_ID, JWT_SECRET, SHARED_SECRET


def build_service(store, central, envelope, clock, **overrides):
    options = {
        "establishment_id": ESTABLISHMENT_ID,
        "sync_interval": 3600,
        "batch_size": 100,
        "max_retries": 3,
        "retry_delay": 0,
        "retention_days": 30,
        "clock": clock,
    }
    options.update(overrides)
    return SyncService(store=store, central=central, envelope=envelope, **options)


@pytest.fixture
def sync_service(store, central, envelope, clock):
    return build_service(store, central, envelope, clock)


def record(service, count=1, table="patients"):
    return [
        service.record_event(table, SyncOperation.CREATE, f"p-{i}", {"id": f"p-{i}", "name": f"P{i}"})
        for i in range(count)
    ]


class TestCycle:
    async def test_pending_events_reach_central_and_are_marked_synced(self, sync_service, store, central_stub):
        events = record(sync_service, 3)

        result = await sync_service.trigger()

        assert result.status is SyncStatus.SUCCESS
        assert result.attempted == 3
        assert result.synced == 3
        assert sorted(central_stub.received_event_ids) == sorted(e.id for e in events)
        assert store.get_pending_sync_events() == []
        assert sync_service.last_result == result
        assert sync_service.state is SyncState.IDLE

    async def test_empty_log_is_a_no_op(self, sync_service, central_stub):
        result = await sync_service.sync()

        assert result.status is SyncStatus.EMPTY
        assert central_stub.packages == []

    async def test_only_acknowledged_events_are_marked_synced(self, sync_service, store, central_stub):
        record(sync_service, 2)
        central_stub.acknowledge = lambda ids: ids[:1]

        result = await sync_service.sync()

        assert result.synced == 1
        remaining = store.get_pending_sync_events()
        assert len(remaining) == 1
        assert remaining[0].retry_count == 0

        central_stub.acknowledge = lambda ids: ids
        await sync_service.sync()

        assert store.get_pending_sync_events() == []
        assert central_stub.received_event_ids.count(remaining[0].id) == 2

    async def test_acknowledged_ids_outside_the_batch_are_ignored(self, sync_service, store, central_stub):
        record(sync_service, 1)
        central_stub.acknowledge = lambda ids: ids + ["someone-else"]

        result = await sync_service.sync()

        assert result.synced == 1
        assert store.get_sync_counts(3)["synced"] == 1

    async def test_batch_size_bounds_each_cycle(self, store, central, envelope, clock, central_stub):
        service = build_service(store, central, envelope, clock, batch_size=2)
        record(service, 3)

        first = await service.sync()
        second = await service.sync()

        assert (first.attempted, second.attempted) == (2, 1)
        assert store.get_pending_sync_events() == []

    async def test_conflicts_are_reported(self, sync_service, central_stub):
        events = record(sync_service, 1)
        central_stub.conflicts = [{"eventId": events[0].id, "conflictType": "update", "resolution": "central-wins"}]

        result = await sync_service.sync()

        assert result.status is SyncStatus.SUCCESS
        assert result.conflicts == 1

    async def test_security_headers_accompany_the_package(self, sync_service, central_stub, clock):
        record(sync_service, 1)

        await sync_service.sync()

        headers = central_stub.headers[0]
        assert headers["X-Establishment-Id"] == ESTABLISHMENT_ID
        assert headers["X-Sync-Timestamp"] == str(int(clock.now))
        assert headers["X-API-Key"] == "test-api-key"


class TestFailures:
    async def test_unreachable_central_keeps_events_pending(self, sync_service, store, central_stub):
        events = record(sync_service, 2)
        central_stub.online = False

        result = await sync_service.sync()

        assert result.status is SyncStatus.FAILED
        assert result.attempted == 2
        assert "unreachable" in result.error
        pending = {e.id: e for e in store.get_pending_sync_events()}
        assert set(pending) == {e.id for e in events}
        assert all(e.retry_count == 1 for e in pending.values())
        assert all(e.last_error for e in pending.values())

        central_stub.online = True
        assert (await sync_service.sync()).status is SyncStatus.SUCCESS
        assert store.get_pending_sync_events() == []

    async def test_server_error_is_a_failed_cycle(self, sync_service, store, central_stub):
        record(sync_service, 1)
        central_stub.status_code = 503

        result = await sync_service.sync()

        assert result.status is SyncStatus.FAILED
        assert "503" in result.error
        assert store.get_pending_sync_events()[0].retry_count == 1

    async def test_rejected_package_is_a_failed_cycle(self, store, central, clock, central_stub):
        sender = SecureEnvelope(
            SyncSecurityConfig(
                jwt_secret=JWT_SECRET,
                local_system_secret="rotated-secret",
                central_system_secret=SHARED_SECRET,
            ),
            clock=clock,
        )
        service = build_service(store, central, sender, clock)
        record(service, 1)

        result = await service.sync()

        assert result.status is SyncStatus.FAILED
        assert result.error == "Encryption key mismatch"
        assert central_stub.rejections == ["Encryption key mismatch"]
        assert len(store.get_pending_sync_events()) == 1

    async def test_events_keep_retrying_after_max_retries(self, sync_service, store, central_stub):
        record(sync_service, 1)
        central_stub.online = False
        for _ in range(4):
            await sync_service.sync()

        stats = sync_service.get_sync_stats()
        assert stats["failed"] == 1
        assert stats["pending"] == 0

        central_stub.online = True
        result = await sync_service.sync()

        assert result.synced == 1
        assert sync_service.get_sync_stats()["synced"] == 1


class TestTriggers:
    async def test_trigger_while_active_is_skipped(self, store, envelope, clock, central_stub):
        gate = asyncio.Event()

        async def slow_handler(request):
            await gate.wait()
            return central_stub.handler(request)

        central = CentralClient(
            base_url=CENTRAL_URL,
            api_key="test-api-key",
            establishment_id=ESTABLISHMENT_ID,
            transport=httpx.MockTransport(slow_handler),
        )
        service = build_service(store, central, envelope, clock)
        record(service, 1)

        try:
            running = asyncio.create_task(service.sync())
            for _ in range(100):
                if service.state is SyncState.TRANSMITTING:
                    break
                await asyncio.sleep(0)
            assert service.is_syncing

            skipped = await service.sync()
            assert skipped.status is SyncStatus.SKIPPED

            gate.set()
            finished = await running
        finally:
            await central.close()

        assert finished.status is SyncStatus.SUCCESS
        assert service.last_result == finished
        assert len(central_stub.packages) == 1

    async def test_reconnect_probe_returns_while_cycle_runs(self, store, envelope, clock, central_stub):
        gate = asyncio.Event()

        async def slow_upload(request):
            if request.url.path.endswith("/sync/events"):
                await gate.wait()
            return central_stub.handler(request)

        central = CentralClient(
            base_url=CENTRAL_URL,
            api_key="test-api-key",
            establishment_id=ESTABLISHMENT_ID,
            transport=httpx.MockTransport(slow_upload),
        )
        service = build_service(store, central, envelope, clock)
        cache = OfflineCacheService(store=store, central=central, check_interval=3600, clock=clock)
        cache.add_reconnect_listener(service.request_sync)
        record(service, 1)

        try:
            assert await cache.check_connection() is True
            for _ in range(100):
                if service.state is SyncState.TRANSMITTING:
                    break
                await asyncio.sleep(0)
            assert service.is_syncing
            assert service.last_result is None

            gate.set()
            await service.stop()
        finally:
            gate.set()
            await central.close()

        assert service.last_result.status is SyncStatus.SUCCESS
        assert store.get_pending_sync_events() == []

    async def test_start_runs_a_cycle_immediately(self, sync_service, store):
        record(sync_service, 1)

        await sync_service.start()
        try:
            for _ in range(200):
                if sync_service.last_result is not None:
                    break
                await asyncio.sleep(0)
        finally:
            await sync_service.stop()

        assert sync_service.last_result.status is SyncStatus.SUCCESS
        assert store.get_pending_sync_events() == []

    async def test_stop_without_start(self, sync_service):
        await sync_service.stop()

        assert sync_service.state is SyncState.IDLE


class TestHousekeeping:
    async def test_cleanup_respects_retention(self, sync_service, store, clock):
        record(sync_service, 1)
        await sync_service.sync()
        clock.advance(10 * 24 * 60 * 60)
        record(sync_service, 1, table="exams")
        await sync_service.sync()
        clock.advance(25 * 24 * 60 * 60)

        assert sync_service.cleanup_synced_events() == 1
        assert sync_service.cleanup_synced_events(days_to_keep=0) == 1
        assert store.get_sync_counts(3)["synced"] == 0

    async def test_list_recently_synced(self, sync_service, clock):
        record(sync_service, 1)
        await sync_service.sync()
        clock.advance(2 * 60 * 60)
        recent = record(sync_service, 1, table="exams")
        await sync_service.sync()

        listed = sync_service.list_synced_events(hours=1)

        assert [e.id for e in listed] == [recent[0].id]

    def test_list_pending(self, sync_service):
        events = record(sync_service, 3)

        assert len(sync_service.list_pending_events(limit=2)) == 2
        assert {e.id for e in sync_service.list_pending_events()} == {e.id for e in events}

    def test_stats_include_engine_state(self, sync_service):
        record(sync_service, 2)

        stats = sync_service.get_sync_stats()

        assert stats["pending"] == 2
        assert stats["total"] == 2
        assert stats["last_sync"] is None
        assert stats["is_syncing"] is False
        assert stats["state"] == "idle"

    def test_delete_event_needs_tombstone_payload(self, sync_service, store):
        event = sync_service.record_event("patients", SyncOperation.DELETE, "p-1", {"id": "p-1"})

        assert store.get_sync_event(event.id).payload.kind == "tombstone"
