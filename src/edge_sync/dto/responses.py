"""Response DTOs for API endpoints."""

from typing import Any

from pydantic import BaseModel, Field


class HealthCheckResponse(BaseModel):
    """Response DTO for health check."""

    status: str = Field(..., description="Health status: 'healthy' or 'unhealthy'")
    services: dict[str, bool] = Field(default_factory=dict, description="Health per managed service")
    is_offline: bool = Field(..., description="Whether the central system is currently unreachable")


class ServiceStatusItem(BaseModel):
    """Lifecycle state of one managed service."""

    name: str
    initialized: bool
    dependencies: list[str] = Field(default_factory=list)
    last_error: str | None = None


class SyncStatsResponse(BaseModel):
    """Response DTO for replication statistics."""

    pending: int = Field(..., ge=0, description="Unsynced events below the retry threshold")
    synced: int = Field(..., ge=0, description="Events acknowledged by the central system")
    failed: int = Field(..., ge=0, description="Unsynced events at or above the retry threshold")
    total: int = Field(..., ge=0)
    last_sync: float | None = Field(None, description="Unix timestamp of the latest acknowledgement")
    is_syncing: bool = False
    state: str = "idle"


class SyncEventItem(BaseModel):
    """One sync event as shown to operators."""

    id: str
    table_name: str
    operation: str
    record_id: str
    data: dict[str, Any]
    timestamp: float
    establishment_id: str
    synced: bool
    synced_at: float | None = None
    retry_count: int = 0
    last_error: str | None = None


class SyncEventListResponse(BaseModel):
    events: list[SyncEventItem] = Field(default_factory=list)
    limit: int
    offset: int


class SyncTriggerResponse(BaseModel):
    """Response DTO for a manually triggered replication cycle."""

    status: str = Field(..., description="skipped, empty, success or failed")
    attempted: int = 0
    synced: int = 0
    conflicts: int = 0
    error: str | None = None
    duration_ms: float = 0.0


class CleanupResponse(BaseModel):
    deleted: int = Field(..., ge=0, description="Number of records removed")
    message: str


class ConnectivityResponse(BaseModel):
    online: bool = Field(..., description="Result of the probe just made")
    is_offline: bool
    last_connection_check: float | None = None


class CacheEntryResponse(BaseModel):
    """Response DTO for a cache lookup."""

    key: str
    status: str = Field(..., description="hit, miss or offline_miss")
    data: Any = None


class CacheStoreResponse(BaseModel):
    """Response DTO for cache store operation."""

    success: bool = Field(..., description="Whether the operation succeeded")
    key: str = Field(..., description="The cache key")
    expires_at: float = Field(..., description="Unix timestamp the entry expires at")
    message: str = Field(..., description="Human-readable status message")


class CacheStatsResponse(BaseModel):
    """Response DTO for offline cache statistics."""

    total_entries: int = Field(..., ge=0)
    expired_entries: int = Field(..., ge=0)
    max_size: int = Field(..., gt=0)
    offline_operations: int = Field(..., ge=0)
    pending_operations: int = Field(..., ge=0)
    failed_operations: int = Field(..., ge=0)
    cache_hit_rate: float = Field(..., ge=0.0, le=1.0)
    is_offline: bool
    last_connection_check: float | None = None


class OfflineOperationResponse(BaseModel):
    """Response DTO for a captured offline operation."""

    id: str
    type: str
    resource: str
    operation: str
    status: str
    max_retries: int
    timestamp: float
