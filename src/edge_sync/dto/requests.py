"""Request DTOs for API endpoints."""

from typing import Any

from pydantic import BaseModel, Field

from edge_sync.entities import CachePriority, OperationType


class CacheSetRequest(BaseModel):
    """Request DTO for storing a value in the offline cache.

    The handler will convert this to a call to the offline cache service.
    """

    key: str = Field(..., description="Cache key", min_length=1)
    data: Any = Field(..., description="Any JSON value")
    ttl: float | None = Field(
        None,
        description="Time-to-live in seconds (defaults to 24 hours)",
        gt=0,
    )
    tags: list[str] = Field(default_factory=list, description="Labels for bulk invalidation")
    priority: CachePriority = Field(CachePriority.MEDIUM, description="Eviction class")


class OfflineOperationRequest(BaseModel):
    """Request DTO for capturing an operation while offline."""

    type: OperationType = Field(..., description="READ or WRITE")
    resource: str = Field(..., description="Target resource (table)", min_length=1)
    operation: str = Field(..., description="Operation name, e.g. CREATE", min_length=1)
    data: dict[str, Any] | None = Field(None, description="Operation body")
    max_retries: int | None = Field(None, description="Replay attempts allowed", gt=0)
