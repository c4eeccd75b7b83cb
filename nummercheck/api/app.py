"""FastAPI application factory."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from nummercheck.config.settings import get_settings

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import APIRouter

logger = logging.getLogger(__name__)


async def _cache_cleanup_loop(app: FastAPI, interval: float) -> None:
    """Periodically drop expired status cache entries.

    Args:
        app: Application holding the cache on its state.
        interval: Seconds between sweeps.
    """
    while True:
        await asyncio.sleep(interval)
        removed = app.state.status_cache.cleanup_expired()
        if removed:
            logger.debug("status_cache_swept", extra={"removed": removed})


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown lifecycle.

    Creates the status cache and its cleanup task on startup; on
    shutdown stops the task and disposes the database engine.

    Args:
        app: FastAPI application instance.

    Yields:
        Control to the running application.
    """
    from nummercheck.api.webhooks import build_status_cache
    from nummercheck.db.session import dispose_engine

    settings = get_settings()
    app.state.status_cache = build_status_cache(settings)
    cleanup_task = asyncio.create_task(
        _cache_cleanup_loop(app, settings.status_cache_cleanup_interval_seconds)
    )
    logger.info("status_cache_started")
    yield
    cleanup_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await cleanup_task
    await dispose_engine()
    logger.info("status_cache_stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI instance.
    """
    app = FastAPI(
        title="Nummercheck",
        description="Call-status reconciliation for AI phone lookups",
        version="0.1.0",
        lifespan=_lifespan,
    )

    settings = get_settings()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["ETag", "Last-Modified"],
    )

    app.include_router(_health_router())

    from nummercheck.api.dev import router as dev_router
    from nummercheck.api.lookups import router as lookups_router
    from nummercheck.api.webhooks import router as webhooks_router

    app.include_router(webhooks_router)
    app.include_router(lookups_router)
    app.include_router(dev_router)

    return app


def _health_router() -> APIRouter:
    """Create health check router.

    Returns:
        Router with health endpoints.
    """
    from fastapi import APIRouter

    router = APIRouter(tags=["health"])

    @router.get("/health")
    async def health() -> dict[str, str]:
        """Return application health status.

        Returns:
            Dict with status key.
        """
        return {"status": "ok"}

    return router


app = create_app()
