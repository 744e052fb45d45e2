"""
Tests for the edge sync operator API.
"""

import time

import httpx
import pytest
import redis
from fastapi.testclient import TestClient

from edge_sync.api.app import create_app
from edge_sync.api.dependencies import build_lifespan
from edge_sync.entities import SyncOperation
from edge_sync.errors import ServiceInitializationError
from edge_sync.node import create_edge_node

from conftest import ESTABLISHMENT_ID


@pytest.fixture
def app(test_settings, redis_client, central_stub, clock):
    """Create an app whose edge node runs on fakes."""

    def node_factory():
        return create_edge_node(
            settings=test_settings,
            redis_client=redis_client,
            transport=httpx.MockTransport(central_stub.handler),
            clock=clock,
        )

    return create_app(lifespan=build_lifespan(node_factory))


@pytest.fixture
def client(app):
    """Create a test client with the node started."""
    with TestClient(app) as client:
        node = client.app.state.node
        # Startup cycle and first probe run in the background
        wait_until(
            lambda: node.sync_service.last_result is not None
            and node.offline_cache.last_connection_check is not None
        )
        yield client


@pytest.fixture
def node(client):
    return client.app.state.node


def trigger_sync(client):
    """Trigger a cycle, retrying while a background cycle holds the engine."""
    for _ in range(50):
        body = client.post("/sync/trigger").json()
        if body["status"] != "skipped":
            return body
        time.sleep(0.01)
    raise AssertionError("sync engine stayed busy")


def wait_until(predicate):
    for _ in range(100):
        if predicate():
            return
        time.sleep(0.01)
    raise AssertionError("condition not reached")


def test_root(client):
    """Test root endpoint."""
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["name"] == "Edge Sync API"


def test_health(client):
    """Test health check endpoint."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["services"] == {
        "local_store": True,
        "central_client": True,
        "offline_cache": True,
        "sync_service": True,
    }


def test_services_started_in_dependency_order(client):
    response = client.get("/services")
    assert response.status_code == 200
    services = {item["name"]: item for item in response.json()}
    assert all(item["initialized"] for item in services.values())
    assert services["sync_service"]["dependencies"] == ["local_store", "offline_cache", "central_client"]
    assert client.app.state.node.manager.initialization_order[-1] == "sync_service"


def test_cache_round_trip(client, clock):
    """Test storing, reading and deleting a cache entry."""
    response = client.post(
        "/offline-cache",
        json={"key": "patient:1", "data": {"name": "Ana"}, "tags": ["patients"], "priority": "high"},
    )
    assert response.status_code == 201
    assert response.json()["expires_at"] == clock.now + 86400

    response = client.get("/offline-cache/patient:1")
    assert response.status_code == 200
    assert response.json() == {"key": "patient:1", "status": "hit", "data": {"name": "Ana"}}

    assert client.delete("/offline-cache/patient:1").status_code == 200
    assert client.delete("/offline-cache/patient:1").status_code == 404
    assert client.get("/offline-cache/patient:1").json()["status"] == "miss"


def test_cache_rejects_non_positive_ttl(client):
    response = client.post("/offline-cache", json={"key": "k", "data": 1, "ttl": 0})
    assert response.status_code == 422


def test_delete_by_tags(client):
    client.post("/offline-cache", json={"key": "p1", "data": 1, "tags": ["patients"]})
    client.post("/offline-cache", json={"key": "e1", "data": 2, "tags": ["exams"]})
    client.post("/offline-cache", json={"key": "x", "data": 3})

    response = client.delete("/offline-cache/tags", params={"tag": ["patients", "exams"]})

    assert response.status_code == 200
    assert response.json()["deleted"] == 2
    assert client.get("/offline-cache/x").json()["status"] == "hit"


def test_cleanup_expired_and_stats(client, clock):
    client.post("/offline-cache", json={"key": "short", "data": 1, "ttl": 5})
    client.post("/offline-cache", json={"key": "long", "data": 2})
    clock.advance(6)

    stats = client.get("/offline-cache/stats").json()
    assert stats["total_entries"] == 2
    assert stats["expired_entries"] == 1
    assert stats["max_size"] == 100

    response = client.delete("/offline-cache/expired")
    assert response.json()["deleted"] == 1


def test_offline_writes_reach_central_after_reconnect(client, central_stub):
    central_stub.online = False
    response = client.post("/sync/connectivity")
    assert response.json()["online"] is False
    assert response.json()["is_offline"] is True
    assert client.get("/offline-cache/patient:9").json()["status"] == "offline_miss"

    response = client.post(
        "/offline-operations",
        json={"type": "WRITE", "resource": "patients", "operation": "CREATE", "data": {"id": "p-9"}},
    )
    assert response.status_code == 201
    assert response.json()["status"] == "pending"

    central_stub.online = True
    response = client.post("/sync/connectivity")
    assert response.json()["online"] is True

    wait_until(lambda: client.get("/sync/stats").json()["synced"] == 1)
    synced = client.get("/sync/synced", params={"hours": 1}).json()["events"]
    assert [(e["table_name"], e["record_id"], e["establishment_id"]) for e in synced] == [
        ("patients", "p-9", ESTABLISHMENT_ID)
    ]
    assert client.get("/offline-cache/stats").json()["pending_operations"] == 0


def test_trigger_syncs_recorded_events(client, node, central_stub):
    event = node.sync_service.record_event("patients", SyncOperation.UPDATE, "p-1", {"id": "p-1", "name": "Ana"})

    body = trigger_sync(client)

    assert body["status"] == "success"
    assert body["synced"] == 1
    assert event.id in central_stub.received_event_ids
    stats = client.get("/sync/stats").json()
    assert stats["synced"] == 1
    assert stats["pending"] == 0
    assert stats["last_sync"] is not None


def test_trigger_reports_failure(client, node, central_stub):
    node.sync_service.record_event("patients", SyncOperation.CREATE, "p-1", {"id": "p-1"})
    central_stub.online = False

    body = trigger_sync(client)

    assert body["status"] == "failed"
    pending = client.get("/sync/pending").json()["events"]
    assert pending[0]["retry_count"] == 1
    assert pending[0]["last_error"]


def test_pending_events_paginate(client, node, central_stub):
    central_stub.acknowledge = lambda ids: []
    for i in range(3):
        node.sync_service.record_event("patients", SyncOperation.CREATE, f"p-{i}", {"id": f"p-{i}"})

    response = client.get("/sync/pending", params={"limit": 2, "offset": 0})

    assert response.status_code == 200
    body = response.json()
    assert len(body["events"]) == 2
    assert body["limit"] == 2
    assert body["events"][0]["data"]["id"].startswith("p-")


def test_cleanup_synced_events(client, node, clock):
    node.sync_service.record_event("patients", SyncOperation.CREATE, "p-1", {"id": "p-1"})
    trigger_sync(client)
    clock.advance(1)

    response = client.post("/sync/cleanup", params={"days_to_keep": 0})

    assert response.status_code == 200
    assert response.json()["deleted"] == 1


def test_startup_fails_when_redis_is_down(app, redis_client, monkeypatch):
    def broken_ping(*args, **kwargs):
        raise redis.ConnectionError("connection refused")

    monkeypatch.setattr(redis_client, "ping", broken_ping)

    with pytest.raises(ServiceInitializationError):
        with TestClient(app):
            pass
