"""FastAPI application entrypoint.

Application startup order:
1. Load settings (from environment)
2. Build the cache engine (creates the cache directory, registers rules)
3. Register middleware (request ID, metrics, response cache)
4. Include the cache admin router and /metrics

Host applications add their own routers to the returned app; every route
whose path matches a cache rule is served through the cache.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI

from respcache.api.cache import router as cache_router
from respcache.cache.engine import CacheEngine
from respcache.cache.middleware import CacheMiddleware
from respcache.config import Settings, get_settings
from respcache.middleware.prometheus import PrometheusMiddleware, get_metrics
from respcache.telemetry.logging import RequestIdMiddleware, configure_logging

log = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings

    configure_logging(
        json_logs=settings.is_prod,
        log_level=settings.effective_log_level,
    )

    log.info(
        "app.starting",
        environment=settings.environment,
        cache_enabled=settings.cache_enabled,
        cache_dir=str(settings.cache_dir),
    )
    yield
    log.info("app.shutdown", **app.state.cache_engine.stats())


def create_app(settings: Settings | None = None) -> FastAPI:
    """Application factory."""
    settings = settings or get_settings()
    engine = CacheEngine.from_settings(settings)

    app = FastAPI(
        title="Response Cache",
        version="0.1.0",
        docs_url="/docs" if settings.is_dev else None,
        redoc_url="/redoc" if settings.is_dev else None,
        openapi_url="/openapi.json" if settings.is_dev else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.cache_engine = engine

    # ------------------------------------------------------------------ #
    # Middleware (added in reverse order - last added = first executed)
    # ------------------------------------------------------------------ #

    # Response cache sits innermost so stored headers never include the
    # request ID or anything else added by outer middleware
    app.add_middleware(CacheMiddleware, engine=engine, enabled=settings.cache_enabled)

    app.add_middleware(PrometheusMiddleware)

    app.add_middleware(RequestIdMiddleware)

    # ------------------------------------------------------------------ #
    # Routers
    # ------------------------------------------------------------------ #
    app.include_router(cache_router, prefix=settings.admin_api_prefix)

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Any:
        """Prometheus metrics endpoint."""
        return get_metrics()

    return app
