"""Cache management API endpoints.

Endpoints for inspecting and invalidating the response cache:

GET  <prefix>/stats       - Entry count, stored bytes, hit/miss counters
POST <prefix>/invalidate  - Drop every entry whose key starts with a prefix

The engine is resolved from app.state via FastAPI dependency injection so
it can be replaced in tests with app.dependency_overrides.
"""

from __future__ import annotations

import asyncio

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from respcache.cache.engine import CacheEngine
from respcache.middleware.prometheus import record_invalidation

log = structlog.get_logger(__name__)

router = APIRouter(tags=["cache"])


# ---------------------------------------------------------------------------
# Dependency: the process-wide engine built by create_app()
# ---------------------------------------------------------------------------


def get_cache_engine(request: Request) -> CacheEngine:
    engine: CacheEngine | None = getattr(request.app.state, "cache_engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Response cache is not configured",
        )
    return engine


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class CacheStatsResponse(BaseModel):
    entries: int
    total_body_bytes: int
    hits: int
    misses: int
    hit_rate: float
    sendfile_threshold: int
    cache_dir: str


class InvalidateRequest(BaseModel):
    prefix: str = Field(
        min_length=1,
        description="Key prefix to drop. Cache keys are hex digests, so this is a digest prefix.",
    )


class InvalidateResponse(BaseModel):
    prefix: str
    success: bool
    message: str


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/stats", response_model=CacheStatsResponse, summary="Cache statistics")
async def get_cache_stats(engine: CacheEngine = Depends(get_cache_engine)) -> CacheStatsResponse:
    """Return entry counts and hit/miss statistics."""
    return CacheStatsResponse(**engine.stats())


@router.post("/invalidate", response_model=InvalidateResponse, summary="Invalidate by key prefix")
async def invalidate_cache(
    body: InvalidateRequest,
    engine: CacheEngine = Depends(get_cache_engine),
) -> InvalidateResponse:
    """Remove every cached entry and body file whose key starts with prefix."""
    success = await asyncio.to_thread(engine.invalidate, body.prefix)
    record_invalidation(success)

    if not success:
        log.error("cache.api.invalidate_failed", prefix=body.prefix)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to delete cached files for prefix {body.prefix!r}",
        )

    log.info("cache.api.invalidated", prefix=body.prefix)
    return InvalidateResponse(
        prefix=body.prefix,
        success=True,
        message=f"Invalidated cache entries with prefix {body.prefix}",
    )
