"""HTTP handlers for replication and node lifecycle operations."""

from fastapi import HTTPException, status

from edge_sync.dto import (
    CleanupResponse,
    ConnectivityResponse,
    HealthCheckResponse,
    ServiceStatusItem,
    SyncEventItem,
    SyncEventListResponse,
    SyncStatsResponse,
    SyncTriggerResponse,
)
from edge_sync.entities import SyncEventEntity
from edge_sync.services import OfflineCacheService, ServiceManager, SyncService


def _to_event_item(event: SyncEventEntity) -> SyncEventItem:
    return SyncEventItem(
        id=event.id,
        table_name=event.table_name,
        operation=event.operation.value,
        record_id=event.record_id,
        data=event.payload.fields,
        timestamp=event.timestamp,
        establishment_id=event.establishment_id,
        synced=event.synced,
        synced_at=event.synced_at,
        retry_count=event.retry_count,
        last_error=event.last_error,
    )


class SyncHandler:
    """HTTP handlers for the replication engine and service health.

    Example:
        ```python
        handler = SyncHandler(sync_service=node.sync_service,
                              offline_cache=node.offline_cache,
                              manager=node.manager)
        ```
    """

    def __init__(
        self,
        sync_service: SyncService,
        offline_cache: OfflineCacheService,
        manager: ServiceManager,
    ) -> None:
        self._sync = sync_service
        self._cache = offline_cache
        self._manager = manager

    async def health_check(self) -> HealthCheckResponse:
        """Handle GET /health requests.

        Being offline is a normal operating mode and does not make the node unhealthy.
        """
        services = await self._manager.health_check_all()
        healthy = bool(services) and all(services.values())
        return HealthCheckResponse(
            status="healthy" if healthy else "unhealthy",
            services=services,
            is_offline=self._cache.is_offline(),
        )

    async def list_services(self) -> list[ServiceStatusItem]:
        return [ServiceStatusItem(**item) for item in self._manager.get_status()]

    async def get_stats(self) -> SyncStatsResponse:
        """Handle GET /sync/stats requests.

        Raises:
            HTTPException: If an error occurs while fetching stats
        """
        try:
            stats = self._sync.get_sync_stats()
        except Exception as e:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Failed to get sync stats: {e}",
            ) from e
        return SyncStatsResponse(**stats)

    async def list_pending(self, limit: int, offset: int) -> SyncEventListResponse:
        try:
            events = self._sync.list_pending_events(limit=limit, offset=offset)
        except Exception as e:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Failed to list pending events: {e}",
            ) from e
        return SyncEventListResponse(events=[_to_event_item(e) for e in events], limit=limit, offset=offset)

    async def list_synced(self, hours: float, limit: int, offset: int) -> SyncEventListResponse:
        try:
            events = self._sync.list_synced_events(hours=hours, limit=limit, offset=offset)
        except Exception as e:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Failed to list synced events: {e}",
            ) from e
        return SyncEventListResponse(events=[_to_event_item(e) for e in events], limit=limit, offset=offset)

    async def trigger(self) -> SyncTriggerResponse:
        """Handle POST /sync/trigger requests.

        A cycle never raises; its outcome is reported in the body.
        """
        result = await self._sync.trigger()
        return SyncTriggerResponse(
            status=result.status.value,
            attempted=result.attempted,
            synced=result.synced,
            conflicts=result.conflicts,
            error=result.error,
            duration_ms=result.duration_ms,
        )

    async def cleanup(self, days_to_keep: int | None) -> CleanupResponse:
        try:
            deleted = self._sync.cleanup_synced_events(days_to_keep)
        except Exception as e:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Failed to clean up synced events: {e}",
            ) from e
        return CleanupResponse(deleted=deleted, message=f"Removed {deleted} synced events")

    async def check_connectivity(self) -> ConnectivityResponse:
        """Handle POST /sync/connectivity requests: probe now and report."""
        online = await self._cache.check_connection()
        return ConnectivityResponse(
            online=online,
            is_offline=self._cache.is_offline(),
            last_connection_check=self._cache.last_connection_check,
        )
