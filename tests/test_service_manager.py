"""Tests for the lifecycle orchestrator."""

import pytest

from edge_sync.errors import (
    CircularDependencyError,
    MissingDependencyError,
    ServiceInitializationError,
    ServiceRegistrationError,
)
from edge_sync.services import ServiceManager


class RecordingService:
    def __init__(self, name, journal, fail_on=None, healthy=True):
        self.name = name
        self.journal = journal
        self.fail_on = fail_on
        self.healthy = healthy

    async def initialize(self):
        if self.fail_on == "initialize":
            raise RuntimeError(f"{self.name} cannot start")
        self.journal.append(("init", self.name))

    async def shutdown(self):
        self.journal.append(("shutdown", self.name))
        if self.fail_on == "shutdown":
            raise RuntimeError(f"{self.name} cannot stop")

    async def health_check(self):
        if self.fail_on == "health":
            raise RuntimeError("probe crashed")
        return self.healthy


@pytest.fixture
def journal():
    return []


@pytest.fixture
def manager():
    return ServiceManager()


def register_node_graph(manager, journal, **options):
    # Registered out of order on purpose
    manager.register(
        RecordingService("sync_service", journal, **options.get("sync_service", {})),
        dependencies=["local_store", "offline_cache", "central_client"],
    )
    manager.register(
        RecordingService("offline_cache", journal, **options.get("offline_cache", {})),
        dependencies=["local_store", "central_client"],
    )
    manager.register(RecordingService("central_client", journal, **options.get("central_client", {})))
    manager.register(RecordingService("local_store", journal, **options.get("local_store", {})))


def position(order, name):
    return order.index(name)


class TestInitialization:
    async def test_dependencies_start_first(self, manager, journal):
        register_node_graph(manager, journal)

        await manager.initialize_all()

        order = manager.initialization_order
        assert position(order, "local_store") < position(order, "offline_cache")
        assert position(order, "central_client") < position(order, "offline_cache")
        assert order[-1] == "sync_service"
        assert [name for _, name in journal] == order
        assert manager.is_initialized
        assert all(manager.is_service_initialized(name) for name in order)

    async def test_cycle_is_detected_before_anything_starts(self, manager, journal):
        manager.register(RecordingService("a", journal), dependencies=["b"])
        manager.register(RecordingService("b", journal), dependencies=["c"])
        manager.register(RecordingService("c", journal), dependencies=["a"])
        manager.register(RecordingService("d", journal))

        with pytest.raises(CircularDependencyError, match="a -> b -> c -> a"):
            await manager.initialize_all()

        assert journal == []

    async def test_missing_dependency(self, manager, journal):
        manager.register(RecordingService("sync_service", journal), dependencies=["local_store"])

        with pytest.raises(MissingDependencyError):
            await manager.initialize_all()

        assert journal == []

    async def test_failure_is_wrapped_and_earlier_services_stay_up(self, manager, journal):
        register_node_graph(manager, journal, offline_cache={"fail_on": "initialize"})

        with pytest.raises(ServiceInitializationError) as excinfo:
            await manager.initialize_all()

        assert excinfo.value.service_name == "offline_cache"
        assert isinstance(excinfo.value.__cause__, RuntimeError)
        assert manager.is_service_initialized("local_store")
        assert not manager.is_service_initialized("offline_cache")
        assert not manager.is_service_initialized("sync_service")
        assert not manager.is_initialized

    async def test_second_initialize_is_a_no_op(self, manager, journal):
        register_node_graph(manager, journal)
        await manager.initialize_all()

        await manager.initialize_all()

        assert len(journal) == 4

    def test_duplicate_registration(self, manager, journal):
        manager.register(RecordingService("local_store", journal))

        with pytest.raises(ServiceRegistrationError):
            manager.register(RecordingService("local_store", journal))


class TestShutdown:
    async def test_reverse_order(self, manager, journal):
        register_node_graph(manager, journal)
        await manager.initialize_all()
        journal.clear()

        await manager.shutdown_all()

        assert [name for _, name in journal] == list(reversed(manager.initialization_order))
        assert not manager.is_initialized

    async def test_shutdown_errors_do_not_stop_the_rest(self, manager, journal):
        register_node_graph(manager, journal, offline_cache={"fail_on": "shutdown"})
        await manager.initialize_all()
        journal.clear()

        await manager.shutdown_all()

        assert len(journal) == 4
        status = {item["name"]: item for item in manager.get_status()}
        assert status["offline_cache"]["last_error"] == "offline_cache cannot stop"
        assert not any(item["initialized"] for item in status.values())

    async def test_only_started_services_are_stopped(self, manager, journal):
        register_node_graph(manager, journal, offline_cache={"fail_on": "initialize"})
        with pytest.raises(ServiceInitializationError):
            await manager.initialize_all()
        started = [name for _, name in journal]
        journal.clear()

        await manager.shutdown_all()

        assert [name for _, name in journal] == list(reversed(started))

    async def test_shutdown_before_start(self, manager, journal):
        register_node_graph(manager, journal)

        await manager.shutdown_all()

        assert journal == []


class TestHealthAndStatus:
    async def test_health_of_every_service(self, manager, journal):
        register_node_graph(
            manager,
            journal,
            central_client={"healthy": False},
            offline_cache={"fail_on": "health"},
        )
        await manager.initialize_all()

        health = await manager.health_check_all()

        assert health == {
            "sync_service": True,
            "offline_cache": False,
            "central_client": False,
            "local_store": True,
        }

    async def test_synchronous_health_check(self, manager, store):
        manager.register(store)
        await manager.initialize_all()

        assert await manager.health_check_all() == {"local_store": True}

    async def test_uninitialized_services_report_unhealthy(self, manager, journal):
        register_node_graph(manager, journal)

        health = await manager.health_check_all()

        assert set(health.values()) == {False}

    def test_lookup(self, manager, journal):
        service = RecordingService("local_store", journal)
        manager.register(service)

        assert manager.get_service("local_store") is service
        assert manager.get_service("missing") is None
        assert manager.is_service_initialized("missing") is False
        assert manager.get_status() == [
            {"name": "local_store", "initialized": False, "dependencies": [], "last_error": None}
        ]
