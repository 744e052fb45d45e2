"""Edge node assembly.

Builds every component explicitly and registers them with the lifecycle
orchestrator. Start order:

    local_store, central_client -> offline_cache -> sync_service
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx
import redis

from edge_sync.config import Settings, get_redis_client, get_settings
from edge_sync.repositories import CentralClient, RedisLocalStore
from edge_sync.services import (
    EventLogReplayer,
    OfflineCacheService,
    SecureEnvelope,
    ServiceManager,
    SyncSecurityConfig,
    SyncService,
)

logger = logging.getLogger(__name__)


@dataclass
class EdgeNode:
    """All components of one edge node, wired together."""

    settings: Settings
    store: RedisLocalStore
    central: CentralClient
    envelope: SecureEnvelope
    offline_cache: OfflineCacheService
    sync_service: SyncService
    manager: ServiceManager

    async def start(self) -> None:
        await self.manager.initialize_all()

    async def stop(self) -> None:
        await self.manager.shutdown_all()


def create_edge_node(
    settings: Settings | None = None,
    redis_client: redis.Redis | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    clock: Callable[[], float] | None = None,
) -> EdgeNode:
    """Build an edge node from settings.

    Args:
        settings: Configuration. Defaults to the process settings.
        redis_client: Redis client for the local store. Defaults to settings.redis_url.
        transport: httpx transport for the central client (tests).
        clock: Time source shared by every component.

    Returns:
        An EdgeNode whose services are registered but not started

    Raises:
        ValueError: If the envelope secrets are not configured
    """
    settings = settings or get_settings()
    clock = clock or time.time

    store = RedisLocalStore(
        redis_client=redis_client or get_redis_client(settings.redis_url),
        key_prefix=settings.store_key_prefix,
        clock=clock,
    )
    central = CentralClient(
        base_url=settings.central_api_url,
        api_key=settings.central_api_key,
        establishment_id=settings.establishment_id,
        probe_timeout=settings.probe_timeout,
        transmit_timeout=settings.transmit_timeout,
        transport=transport,
    )
    envelope = SecureEnvelope(SyncSecurityConfig.from_settings(settings), clock=clock)
    offline_cache = OfflineCacheService(
        store=store,
        central=central,
        replayer=EventLogReplayer(store, establishment_id=settings.establishment_id),
        max_size=settings.cache_max_size,
        default_ttl=settings.cache_default_ttl,
        check_interval=settings.connection_check_interval,
        max_retries=settings.sync_max_retries,
        clock=clock,
    )
    sync_service = SyncService(
        store=store,
        central=central,
        envelope=envelope,
        establishment_id=settings.establishment_id,
        sync_interval=settings.sync_interval,
        batch_size=settings.sync_batch_size,
        max_retries=settings.sync_max_retries,
        retry_delay=settings.sync_retry_delay,
        retention_days=settings.sync_retention_days,
        clock=clock,
    )
    offline_cache.add_reconnect_listener(sync_service.request_sync)

    manager = ServiceManager()
    manager.register(store)
    manager.register(central)
    manager.register(offline_cache, dependencies=[store.name, central.name])
    manager.register(sync_service, dependencies=[store.name, offline_cache.name, central.name])

    logger.info("Edge node assembled for establishment %s", settings.establishment_id)
    return EdgeNode(
        settings=settings,
        store=store,
        central=central,
        envelope=envelope,
        offline_cache=offline_cache,
        sync_service=sync_service,
        manager=manager,
    )
