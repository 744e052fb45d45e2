"""Managed service protocol.

Anything the ServiceManager starts, health-checks and stops.
"""

from collections.abc import Awaitable
from typing import Protocol, runtime_checkable


@runtime_checkable
class ManagedService(Protocol):
    """Protocol for services driven by the lifecycle orchestrator.

    Example:
        ```python
        manager = ServiceManager()
        manager.register(store)
        manager.register(cache, dependencies=["local_store"])
        await manager.initialize_all()
        ```
    """

    @property
    def name(self) -> str:
        """Unique service name used for dependency declarations."""
        ...

    async def initialize(self) -> None:
        """Start the service. Raising aborts the whole startup."""
        ...

    async def shutdown(self) -> None:
        """Stop the service and release its resources."""
        ...

    def health_check(self) -> bool | Awaitable[bool]:
        """Return True if the service is healthy. May be sync or async."""
        ...
