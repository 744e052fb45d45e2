#!/usr/bin/env python3
"""
Demo script for edge sync.

Runs an edge node against the Redis in REDIS_URL and a simulated central
system, then walks through caching, an outage with offline writes, the
reconnect replay and the secure envelope's replay protection.
"""

import asyncio
import dataclasses

import httpx

from edge_sync.config import get_settings
from edge_sync.dto import SecureSyncPackage
from edge_sync.entities import CachePriority, OperationType, SyncOperation
from edge_sync.node import create_edge_node
from edge_sync.services import SecureEnvelope, SyncSecurityConfig


class SimulatedCentral:
    """In-process central system: validates packages and acknowledges every event."""

    def __init__(self, config: SyncSecurityConfig) -> None:
        self.receiver = SecureEnvelope(config)
        self.online = True
        self.received = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        if not self.online:
            raise httpx.ConnectError("central system down", request=request)
        if request.url.path.endswith("/health"):
            return httpx.Response(200, json={"status": "ok"})

        package = SecureSyncPackage.model_validate_json(request.content)
        result = self.receiver.validate_and_process_sync_package(
            package, request.headers["X-Establishment-Id"]
        )
        if not result.is_valid:
            return httpx.Response(200, json={"success": False, "message": result.error.value})

        ids = [event["id"] for event in result.payload.events]
        self.received += len(ids)
        return httpx.Response(200, json={"success": True, "syncedEvents": ids})


def print_section(title: str) -> None:
    """Print a section header."""
    print("\n" + "=" * 70)
    print(f"  {title}")
    print("=" * 70)


def demo_settings():
    settings = get_settings()
    if settings.has_envelope_secrets:
        return settings
    # Demo-only secrets so the script runs without a .env
    return dataclasses.replace(
        settings,
        store_key_prefix="edge_sync_demo",
        sync_jwt_secret="demo-jwt-secret",
        local_system_secret="demo-shared-secret",
        central_system_secret="demo-shared-secret",
        sync_retry_delay=0,
    )


async def demo_cache(node) -> None:
    """Demonstrate offline cache operations."""
    print_section("Offline Cache")

    cache = node.offline_cache
    await cache.set("patient:1", {"name": "Ana", "ward": 3}, tags=["patients"], priority=CachePriority.HIGH)
    await cache.set("exam:7", {"type": "MRI"}, tags=["exams"], ttl=60)
    print("\n📝 Stored patient:1 (high priority) and exam:7 (60s TTL)")

    for key in ("patient:1", "exam:7", "patient:2"):
        lookup = await cache.lookup(key)
        print(f"  {key:<12} -> {lookup.status.value}: {lookup.data}")

    removed = await cache.delete_by_tags(["exams"])
    print(f"\n🧹 Removed {removed} entries tagged 'exams'")


async def demo_outage(node, central: SimulatedCentral) -> None:
    """Demonstrate an outage, offline writes and the reconnect replay."""
    print_section("Outage and Reconnect")

    central.online = False
    await node.offline_cache.check_connection()
    print(f"\n📡 Central reachable: {not node.offline_cache.is_offline()}")

    miss = await node.offline_cache.lookup("patient:99")
    print(f"  Uncached read while offline -> {miss.status.value}")

    for i in range(3):
        await node.offline_cache.store_offline_operation(
            OperationType.WRITE,
            "patients",
            "CREATE",
            data={"id": f"p-{i}", "name": f"Patient {i}"},
        )
    print("  ✓ Captured 3 offline writes")

    central.online = True
    await node.offline_cache.check_connection()
    print(f"\n📡 Central reachable: {not node.offline_cache.is_offline()}")

    # Reconnect schedules a sync cycle in the background
    await asyncio.sleep(0.5)
    stats = node.sync_service.get_sync_stats()
    print(f"  Events received by central: {central.received}")
    print(f"  Sync stats: pending={stats['pending']} synced={stats['synced']} failed={stats['failed']}")


async def demo_envelope(node) -> None:
    """Demonstrate package validation and replay rejection."""
    print_section("Secure Envelope")

    event = node.sync_service.record_event("patients", SyncOperation.UPDATE, "p-1", {"id": "p-1", "ward": 4})
    envelope = node.envelope
    establishment_id = node.settings.establishment_id
    package = envelope.create_secure_sync_package([event], establishment_id)

    fresh = envelope.validate_and_process_sync_package(package, establishment_id)
    print(f"\n🔐 Fresh package valid: {fresh.is_valid}")

    late = SecureEnvelope(envelope.config, clock=lambda: package.timestamp + 301)
    replayed = late.validate_and_process_sync_package(package, establishment_id)
    print(f"  Same package 301s later: {replayed.error.value}")

    spoofed = envelope.validate_and_process_sync_package(package, "someone-else")
    print(f"  Claimed by another establishment: {spoofed.error.value}")


async def run() -> None:
    settings = demo_settings()
    central = SimulatedCentral(SyncSecurityConfig.from_settings(settings))
    node = create_edge_node(settings=settings, transport=httpx.MockTransport(central.handler))

    await node.start()
    try:
        await demo_cache(node)
        await demo_outage(node, central)
        await demo_envelope(node)
    finally:
        await node.stop()


def main() -> None:
    """Run all demos."""
    print("\n🚀 Edge Sync Demo")
    print("=" * 70)
    print("This demo runs an edge node against a simulated central system")

    try:
        asyncio.run(run())

        print("\n" + "=" * 70)
        print("✅ Demo completed successfully!")
        print("=" * 70)

    except Exception as e:
        print(f"\n❌ Error: {e}")
        print("\nMake sure Redis is running:")
        print("  docker compose up -d")
        print("\nOr set REDIS_URL to your Redis instance.")


if __name__ == "__main__":
    main()
