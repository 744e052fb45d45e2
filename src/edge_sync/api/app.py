from typing import Any

from fastapi import FastAPI, Query, status
from fastapi.middleware.cors import CORSMiddleware

from edge_sync.api.dependencies import CacheHandlerDep, SyncHandlerDep, lifespan
from edge_sync.config import settings
from edge_sync.dto import (
    CacheEntryResponse,
    CacheSetRequest,
    CacheStatsResponse,
    CacheStoreResponse,
    CleanupResponse,
    ConnectivityResponse,
    HealthCheckResponse,
    OfflineOperationRequest,
    OfflineOperationResponse,
    ServiceStatusItem,
    SyncEventListResponse,
    SyncStatsResponse,
    SyncTriggerResponse,
)

API_VERSION = "0.1.0"


def create_app(lifespan=lifespan) -> FastAPI:
    """Build the operator API.

    Args:
        lifespan: Lifespan that starts the edge node (see api.dependencies).
    """
    app = FastAPI(
        title="Edge Sync API",
        description="Operator surface of the edge-to-central synchronization core",
        version=API_VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    async def root() -> dict[str, Any]:
        """Root endpoint with API information."""
        return {
            "name": "Edge Sync API",
            "version": API_VERSION,
            "establishment_id": settings.establishment_id,
            "endpoints": {
                "health": "/health",
                "services": "/services",
                "sync": "/sync/stats",
                "offline_cache": "/offline-cache/stats",
                "docs": "/docs",
            },
        }

    @app.get("/health", response_model=HealthCheckResponse)
    async def health(handler: SyncHandlerDep) -> HealthCheckResponse:
        return await handler.health_check()

    @app.get("/services", response_model=list[ServiceStatusItem])
    async def services(handler: SyncHandlerDep) -> list[ServiceStatusItem]:
        return await handler.list_services()

    # Replication

    @app.get("/sync/stats", response_model=SyncStatsResponse)
    async def sync_stats(handler: SyncHandlerDep) -> SyncStatsResponse:
        return await handler.get_stats()

    @app.get("/sync/pending", response_model=SyncEventListResponse)
    async def sync_pending(
        handler: SyncHandlerDep,
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
    ) -> SyncEventListResponse:
        return await handler.list_pending(limit=limit, offset=offset)

    @app.get("/sync/synced", response_model=SyncEventListResponse)
    async def sync_synced(
        handler: SyncHandlerDep,
        hours: float = Query(24, gt=0),
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
    ) -> SyncEventListResponse:
        return await handler.list_synced(hours=hours, limit=limit, offset=offset)

    @app.post("/sync/trigger", response_model=SyncTriggerResponse)
    async def sync_trigger(handler: SyncHandlerDep) -> SyncTriggerResponse:
        return await handler.trigger()

    @app.post("/sync/cleanup", response_model=CleanupResponse)
    async def sync_cleanup(
        handler: SyncHandlerDep,
        days_to_keep: int | None = Query(None, ge=0),
    ) -> CleanupResponse:
        return await handler.cleanup(days_to_keep)

    @app.post("/sync/connectivity", response_model=ConnectivityResponse)
    async def sync_connectivity(handler: SyncHandlerDep) -> ConnectivityResponse:
        return await handler.check_connectivity()

    # Offline cache (fixed paths before /offline-cache/{key})

    @app.get("/offline-cache/stats", response_model=CacheStatsResponse)
    async def cache_stats(handler: CacheHandlerDep) -> CacheStatsResponse:
        return await handler.get_stats()

    @app.delete("/offline-cache/expired", response_model=CleanupResponse)
    async def cache_cleanup_expired(handler: CacheHandlerDep) -> CleanupResponse:
        return await handler.cleanup_expired()

    @app.delete("/offline-cache/tags", response_model=CleanupResponse)
    async def cache_delete_by_tags(
        handler: CacheHandlerDep,
        tag: list[str] = Query(...),
    ) -> CleanupResponse:
        return await handler.delete_by_tags(tag)

    @app.post("/offline-cache", response_model=CacheStoreResponse, status_code=status.HTTP_201_CREATED)
    async def cache_set(request: CacheSetRequest, handler: CacheHandlerDep) -> CacheStoreResponse:
        return await handler.set_entry(request)

    @app.get("/offline-cache/{key}", response_model=CacheEntryResponse)
    async def cache_get(key: str, handler: CacheHandlerDep) -> CacheEntryResponse:
        return await handler.get_entry(key)

    @app.delete("/offline-cache/{key}")
    async def cache_delete(key: str, handler: CacheHandlerDep) -> dict:
        return await handler.delete_entry(key)

    @app.post(
        "/offline-operations",
        response_model=OfflineOperationResponse,
        status_code=status.HTTP_201_CREATED,
    )
    async def offline_operation(
        request: OfflineOperationRequest,
        handler: CacheHandlerDep,
    ) -> OfflineOperationResponse:
        return await handler.store_operation(request)

    return app


app = create_app()


def main() -> None:
    import uvicorn

    uvicorn.run(
        "edge_sync.api.app:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
    )


if __name__ == "__main__":
    main()
