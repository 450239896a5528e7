"""Application factory for FastAPI app.

Centralizes app construction (database, limiter registry, middleware,
handlers, routers) so tests can build isolated instances.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager, suppress
from typing import AsyncIterator, Callable

from fastapi import FastAPI

from ratekeeper.adapters.rate_limit.factory import create_rate_limit_store
from ratekeeper.adapters.rate_limit.registry import RateLimiterRegistry
from ratekeeper.api.routes import health_router, rate_limits_router
from ratekeeper.core.config import Settings, settings as default_settings
from ratekeeper.core.exception_handlers import setup_exception_handlers
from ratekeeper.core.logging import configure_logging
from ratekeeper.core.middleware import request_id_middleware
from ratekeeper.core.openapi import apply_openapi_customizations
from ratekeeper.db.session import Database

logger = logging.getLogger(__name__)


async def cleanup_loop(registry: RateLimiterRegistry, interval_seconds: int) -> None:
    """Periodically purge expired windows when per-request cleanup is disabled."""

    while True:
        await asyncio.sleep(interval_seconds)
        removed = await asyncio.to_thread(registry.purge_expired)
        if removed:
            logger.info("rate_limit.cleanup_sweep", extra={"removed": removed})


def _build_lifespan(app_settings: Settings):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        cleanup_task: asyncio.Task | None = None
        if not app_settings.rate_limit.cleanup_on_request:
            cleanup_task = asyncio.create_task(
                cleanup_loop(app.state.rate_limiters, app_settings.rate_limit.cleanup_interval_seconds)
            )
            logger.info(
                "rate_limit.cleanup_task_started",
                extra={"interval_s": app_settings.rate_limit.cleanup_interval_seconds},
            )
        try:
            yield
        finally:
            if cleanup_task:
                cleanup_task.cancel()
                with suppress(asyncio.CancelledError):
                    await cleanup_task
            app.state.database.dispose()

    return lifespan


def create_app(
    app_settings: Settings | None = None,
    *,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        app_settings: Settings to build from; defaults to the environment.
        clock: Time source handed to every limiter (tests pass a fake clock).

    Returns:
        Configured FastAPI app with database, limiter registry, middleware,
        handlers and routers.
    """
    cfg = app_settings or default_settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    database = Database.from_settings(cfg.db)
    if cfg.db.create_tables:
        database.create_tables()

    store = create_rate_limit_store(cfg.rate_limit, database)
    registry = RateLimiterRegistry.from_settings(store, cfg.rate_limit, clock=clock)

    app = FastAPI(
        title="Ratekeeper API",
        description=(
            "Fixed-window rate limiting with counters persisted in a shared "
            "relational table, so limits hold across restarts and replicas."
        ),
        version="0.1.0",
        lifespan=_build_lifespan(cfg),
    )
    app.state.settings = cfg
    app.state.database = database
    app.state.rate_limiters = registry

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(rate_limits_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    logger.info(
        "app.initialised",
        extra={"backend": cfg.rate_limit.backend, "policies": sorted(registry), "env": cfg.app_env},
    )
    return app
