"""Dependency injection configuration for FastAPI app.

Uses FastAPI's app.state pattern for storing service instances.

Pattern:
    - The edge node is built and started during lifespan
    - Dependency functions retrieve handlers from request.app.state
    - Clean separation, no global mutable state
"""

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, Request

from edge_sync.config import configure_logging
from edge_sync.handlers import CacheHandler, SyncHandler
from edge_sync.node import EdgeNode, create_edge_node

logger = logging.getLogger(__name__)


def get_cache_handler(request: Request) -> CacheHandler:
    """Dependency injection for CacheHandler from app.state.

    Raises:
        RuntimeError: If handler is not initialized
    """
    handler = getattr(request.app.state, "cache_handler", None)
    if handler is None:
        raise RuntimeError("CacheHandler not initialized. Check lifespan setup.")
    return handler


def get_sync_handler(request: Request) -> SyncHandler:
    """Dependency injection for SyncHandler from app.state.

    Raises:
        RuntimeError: If handler is not initialized
    """
    handler = getattr(request.app.state, "sync_handler", None)
    if handler is None:
        raise RuntimeError("SyncHandler not initialized. Check lifespan setup.")
    return handler


def build_lifespan(node_factory: Callable[[], EdgeNode] = create_edge_node):
    """Create a lifespan that builds, starts and stops an edge node.

    Args:
        node_factory: Builds the node; tests pass one wired to fakes.

    Returns:
        An async context manager usable as FastAPI's lifespan
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Lifespan context manager for FastAPI app.

        Startup failures (missing or circular dependencies, a service that
        fails to initialize) propagate and abort the process.
        """
        configure_logging()
        node = node_factory()
        try:
            await node.start()
        except Exception:
            await node.stop()
            raise

        app.state.node = node
        app.state.cache_handler = CacheHandler(offline_cache=node.offline_cache)
        app.state.sync_handler = SyncHandler(
            sync_service=node.sync_service,
            offline_cache=node.offline_cache,
            manager=node.manager,
        )
        logger.info("Edge node started: %s", " -> ".join(node.manager.initialization_order))

        try:
            yield
        finally:
            # Cleanup - remove from app.state
            del app.state.sync_handler
            del app.state.cache_handler
            del app.state.node
            await node.stop()
            logger.info("Edge node shut down")

    return lifespan


lifespan = build_lifespan()

# Type aliases for cleaner dependency injection
CacheHandlerDep = Annotated[CacheHandler, Depends(get_cache_handler)]
SyncHandlerDep = Annotated[SyncHandler, Depends(get_sync_handler)]
