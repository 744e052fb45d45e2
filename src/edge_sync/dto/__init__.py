"""Data Transfer Objects for API contracts.

These Pydantic models define the external contracts: the operator API
(requests/responses) and the edge-to-central wire format (wire).

Internal domain logic should use entities from the entities package.
"""

from .requests import CacheSetRequest, OfflineOperationRequest
from .responses import (
    CacheEntryResponse,
    CacheStatsResponse,
    CacheStoreResponse,
    CleanupResponse,
    ConnectivityResponse,
    HealthCheckResponse,
    OfflineOperationResponse,
    ServiceStatusItem,
    SyncEventItem,
    SyncEventListResponse,
    SyncStatsResponse,
    SyncTriggerResponse,
)
from .wire import CentralSyncResponse, SecureSyncPackage, SyncConflict, SyncPayload

__all__ = [
    "CacheSetRequest",
    "OfflineOperationRequest",
    "CacheEntryResponse",
    "CacheStatsResponse",
    "CacheStoreResponse",
    "CleanupResponse",
    "ConnectivityResponse",
    "HealthCheckResponse",
    "OfflineOperationResponse",
    "ServiceStatusItem",
    "SyncEventItem",
    "SyncEventListResponse",
    "SyncStatsResponse",
    "SyncTriggerResponse",
    "CentralSyncResponse",
    "SecureSyncPackage",
    "SyncConflict",
    "SyncPayload",
]
