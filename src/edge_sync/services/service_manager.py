"""Lifecycle orchestrator for the edge node's managed services.

Services are registered with the names of the services they depend on,
started in dependency order and stopped in exactly the reverse order.
"""

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any

from edge_sync.errors import (
    CircularDependencyError,
    MissingDependencyError,
    ServiceInitializationError,
    ServiceRegistrationError,
)
from edge_sync.protocols import ManagedService

logger = logging.getLogger(__name__)


@dataclass
class ServiceNode:
    """Registration record for one managed service.

    Attributes:
        service: The managed service
        dependencies: Names of services that must start first
        initialized: Whether initialize() completed and shutdown() has not run
        last_error: Last shutdown or health-check error, kept for operators
    """

    service: ManagedService
    dependencies: list[str] = field(default_factory=list)
    initialized: bool = False
    last_error: str | None = None


class ServiceManager:
    """Starts, health-checks and stops services in dependency order.

    Example:
        ```python
        manager = ServiceManager()
        manager.register(store)
        manager.register(central)
        manager.register(cache, dependencies=["local_store", "central_client"])
        await manager.initialize_all()
        ...
        await manager.shutdown_all()
        ```
    """

    def __init__(self) -> None:
        self._services: dict[str, ServiceNode] = {}
        self._initialization_order: list[str] = []
        self._initialized = False

    @property
    def initialization_order(self) -> list[str]:
        return list(self._initialization_order)

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def register(self, service: ManagedService, dependencies: list[str] | tuple[str, ...] = ()) -> None:
        """Register a service.

        Raises:
            ServiceRegistrationError: If a service with the same name exists
        """
        if service.name in self._services:
            raise ServiceRegistrationError(f"Service {service.name} is already registered")

        self._services[service.name] = ServiceNode(service=service, dependencies=list(dependencies))
        logger.info("Registered service %s (depends on: %s)", service.name, ", ".join(dependencies) or "-")

    def _resolve_order(self) -> list[str]:
        """Depth-first topological sort over the dependency graph.

        Raises:
            MissingDependencyError: If a dependency was never registered
            CircularDependencyError: If the graph has a cycle
        """
        visited: set[str] = set()
        visiting: set[str] = set()
        order: list[str] = []

        def visit(name: str, path: list[str]) -> None:
            if name in visited:
                return
            if name in visiting:
                cycle = " -> ".join(path[path.index(name) :] + [name])
                raise CircularDependencyError(f"Circular dependency detected: {cycle}")

            visiting.add(name)
            for dependency in self._services[name].dependencies:
                if dependency not in self._services:
                    raise MissingDependencyError(
                        f"Dependency {dependency} of service {name} is not registered"
                    )
                visit(dependency, path + [name])
            visiting.discard(name)
            visited.add(name)
            order.append(name)

        for name in self._services:
            visit(name, [])
        return order

    async def initialize_all(self) -> None:
        """Start every service in dependency order.

        The whole order is computed before anything starts, so graph errors
        never leave services half started.

        Raises:
            MissingDependencyError: If a dependency was never registered
            CircularDependencyError: If the graph has a cycle
            ServiceInitializationError: If a service fails to start; services
                started before it stay initialized
        """
        if self._initialized:
            logger.warning("Services are already initialized")
            return

        self._initialization_order = self._resolve_order()
        logger.info("Starting services: %s", " -> ".join(self._initialization_order))

        for name in self._initialization_order:
            node = self._services[name]
            if node.initialized:
                continue
            try:
                await node.service.initialize()
            except Exception as e:
                node.last_error = str(e)
                logger.error("Failed to initialize %s: %s", name, e)
                raise ServiceInitializationError(name, e) from e
            node.initialized = True
            logger.info("Service %s initialized", name)

        self._initialized = True
        logger.info("All services initialized")

    async def shutdown_all(self) -> None:
        """Stop initialized services in reverse start order.

        Errors are logged and recorded on the service node; shutdown continues
        with the remaining services.
        """
        started = [name for name in self._initialization_order if self._services[name].initialized]
        if not started:
            logger.warning("No initialized services to shut down")
            return

        for name in reversed(started):
            node = self._services[name]
            try:
                await node.service.shutdown()
            except Exception as e:
                node.last_error = str(e)
                logger.error("Failed to shut down %s: %s", name, e)
            else:
                logger.info("Service %s shut down", name)
            node.initialized = False

        self._initialized = False
        logger.info("All services shut down")

    async def health_check_all(self) -> dict[str, bool]:
        """Health of every registered service.

        Uninitialized services report False without being called.
        """
        results: dict[str, bool] = {}
        for name, node in self._services.items():
            if not node.initialized:
                results[name] = False
                continue
            try:
                healthy = node.service.health_check()
                if inspect.isawaitable(healthy):
                    healthy = await healthy
                results[name] = bool(healthy)
            except Exception as e:
                node.last_error = str(e)
                logger.error("Health check failed for %s: %s", name, e)
                results[name] = False
        return results

    def get_service(self, name: str) -> Any | None:
        node = self._services.get(name)
        return node.service if node else None

    def is_service_initialized(self, name: str) -> bool:
        node = self._services.get(name)
        return node.initialized if node else False

    def get_status(self) -> list[dict[str, Any]]:
        return [
            {
                "name": name,
                "initialized": node.initialized,
                "dependencies": list(node.dependencies),
                "last_error": node.last_error,
            }
            for name, node in self._services.items()
        ]
