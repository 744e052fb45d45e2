"""Edge Sync - edge-to-central synchronization core for hospital/clinic nodes.

Lets an edge node keep serving reads from a local cache while the central
system is unreachable, and reliably replicate local changes once it is back.

Layers:
    - protocols: Interface contracts (LocalStore, ManagedService, OperationReplayer)
    - repositories: Redis local store, central system HTTP client
    - services: Offline cache, secure envelope, sync, lifecycle orchestration
    - handlers: HTTP endpoint handlers
    - dto: Data transfer objects (API and wire contracts)
    - entities: Domain models (internal)

Usage:
    ```python
    from edge_sync.node import create_edge_node

    node = create_edge_node()
    await node.start()
    node.sync_service.record_event("patients", SyncOperation.CREATE, "p-1", {"id": "p-1"})
    ```

For HTTP API:
    ```python
    from edge_sync.api.app import app
    ```
"""

from edge_sync.config import get_redis_client, settings
from edge_sync.entities import (
    CacheEntryEntity,
    CachePriority,
    OfflineOperationEntity,
    SyncEventEntity,
    SyncOperation,
)
from edge_sync.node import EdgeNode, create_edge_node
from edge_sync.protocols import LocalStore, ManagedService, OperationReplayer
from edge_sync.repositories import CentralClient, RedisLocalStore
from edge_sync.services import (
    OfflineCacheService,
    SecureEnvelope,
    ServiceManager,
    SyncSecurityConfig,
    SyncService,
)

__all__ = [
    # Configuration
    "settings",
    "get_redis_client",
    # Protocols (interfaces)
    "LocalStore",
    "ManagedService",
    "OperationReplayer",
    # Services (business logic)
    "OfflineCacheService",
    "SecureEnvelope",
    "ServiceManager",
    "SyncSecurityConfig",
    "SyncService",
    # Repositories (data access)
    "CentralClient",
    "RedisLocalStore",
    # Entities (domain models)
    "CacheEntryEntity",
    "CachePriority",
    "OfflineOperationEntity",
    "SyncEventEntity",
    "SyncOperation",
    # Assembly
    "EdgeNode",
    "create_edge_node",
]
