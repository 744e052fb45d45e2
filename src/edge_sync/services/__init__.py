"""Service layer for business logic.

This layer contains the core business logic and orchestration.
Services depend on protocols (interfaces), not concrete implementations,
making them testable and flexible.

Architecture:
    Handler -> Service -> Repository
    (HTTP)  -> (Business) -> (Data Access)

Usage:
    ```python
    from edge_sync.services import OfflineCacheService, SyncService

    cache = OfflineCacheService.create(store=store, central=central)
    sync = SyncService(store=store, central=central, envelope=envelope)
    cache.add_reconnect_listener(sync.request_sync)
    ```
"""

from .replay import EventLogReplayer
from .secure_envelope import (
    EnvelopeRejection,
    SecureEnvelope,
    SyncSecurityConfig,
    ValidationResult,
)
from .offline_cache import FlushResult, OfflineCacheService
from .service_manager import ServiceManager, ServiceNode
from .sync_service import SyncCycleResult, SyncService, SyncState, SyncStatus

__all__ = [
    "EnvelopeRejection",
    "EventLogReplayer",
    "FlushResult",
    "OfflineCacheService",
    "SecureEnvelope",
    "ServiceManager",
    "ServiceNode",
    "SyncCycleResult",
    "SyncSecurityConfig",
    "SyncService",
    "SyncState",
    "SyncStatus",
    "ValidationResult",
]
