"""HTTP handlers for offline cache operations.

Handlers convert between DTOs (API contracts) and service calls.
They handle HTTP concerns like status codes, validation, and error handling.
"""

from fastapi import HTTPException, status

from edge_sync.dto import (
    CacheEntryResponse,
    CacheSetRequest,
    CacheStatsResponse,
    CacheStoreResponse,
    CleanupResponse,
    OfflineOperationRequest,
    OfflineOperationResponse,
)
from edge_sync.services import OfflineCacheService


class CacheHandler:
    """HTTP handlers for the offline cache.

    This handler delegates business logic to OfflineCacheService
    and handles HTTP-specific concerns like:
    - Converting entities to DTOs
    - Setting appropriate status codes
    - Error handling and responses

    Example:
        ```python
        handler = CacheHandler(offline_cache=node.offline_cache)

        @app.get("/offline-cache/{key}", response_model=CacheEntryResponse)
        async def get_entry(key: str):
            return await handler.get_entry(key)
        ```
    """

    def __init__(self, offline_cache: OfflineCacheService) -> None:
        """Initialize the cache handler.

        Args:
            offline_cache: The offline cache service (required).
        """
        self._cache = offline_cache

    async def get_entry(self, key: str) -> CacheEntryResponse:
        """Handle GET /offline-cache/{key} requests.

        A miss is not an error: the status field says whether the key was
        found, missing, or missing while the node is offline.
        """
        lookup = await self._cache.lookup(key)
        return CacheEntryResponse(key=key, status=lookup.status.value, data=lookup.data)

    async def set_entry(self, request: CacheSetRequest) -> CacheStoreResponse:
        """Handle POST /offline-cache requests.

        Raises:
            HTTPException: If the entry cannot be stored
        """
        try:
            entry = await self._cache.set(
                request.key,
                request.data,
                ttl=request.ttl,
                tags=request.tags,
                priority=request.priority,
            )
        except Exception as e:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Failed to store entry: {e}",
            ) from e

        return CacheStoreResponse(
            success=True,
            key=entry.key,
            expires_at=entry.expires_at,
            message="Entry stored successfully",
        )

    async def delete_entry(self, key: str) -> dict:
        """Handle DELETE /offline-cache/{key} requests.

        Raises:
            HTTPException: 404 if the key does not exist
        """
        try:
            deleted = await self._cache.delete(key)
        except Exception as e:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Failed to delete entry: {e}",
            ) from e

        if not deleted:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Cache key {key} not found")
        return {"success": True, "key": key}

    async def delete_by_tags(self, tags: list[str]) -> CleanupResponse:
        """Handle DELETE /offline-cache/tags?tag=... requests."""
        try:
            deleted = await self._cache.delete_by_tags(tags)
        except Exception as e:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Failed to delete entries by tags: {e}",
            ) from e
        return CleanupResponse(deleted=deleted, message=f"Removed {deleted} entries")

    async def cleanup_expired(self) -> CleanupResponse:
        deleted = await self._cache.cleanup_expired()
        return CleanupResponse(deleted=deleted, message=f"Removed {deleted} expired entries")

    async def get_stats(self) -> CacheStatsResponse:
        """Handle GET /offline-cache/stats requests.

        Raises:
            HTTPException: If an error occurs while fetching stats
        """
        try:
            stats = await self._cache.get_stats()
        except Exception as e:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Failed to get stats: {e}",
            ) from e
        return CacheStatsResponse(**stats)

    async def store_operation(self, request: OfflineOperationRequest) -> OfflineOperationResponse:
        """Handle POST /offline-operations requests."""
        try:
            operation = await self._cache.store_offline_operation(
                request.type,
                request.resource,
                request.operation,
                data=request.data,
                max_retries=request.max_retries,
            )
        except Exception as e:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Failed to store offline operation: {e}",
            ) from e

        return OfflineOperationResponse(
            id=operation.id,
            type=operation.type.value,
            resource=operation.resource,
            operation=operation.operation,
            status=operation.status.value,
            max_retries=operation.max_retries,
            timestamp=operation.timestamp,
        )
