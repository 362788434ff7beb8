"""Prometheus metrics for the response cache.

Exports metrics in Prometheus exposition format for scraping.

Metrics exported:
- http_requests_total: Requests by method, endpoint, status and cache outcome
- http_request_duration_seconds: Latency by method and cache outcome, so
  hits and misses can be compared directly
- respcache_lookups_total: Cache lookups by result (hit, miss, bypass)
- respcache_stores_total: Capture outcomes (stored, failed, skipped)
- respcache_invalidations_total: Invalidation calls by outcome
- respcache_served_bytes_total: Bytes served from cache by mode (sendfile, buffered)
- respcache_inflight_captures: Gauge of cache misses currently being captured

The cache outcome label is read from the X-Cache response header: "hit",
"miss", or "none" for paths without a cache rule.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from fastapi import Request, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware

# Custom registry so tests and embedding apps don't collide with the default one
REGISTRY = CollectorRegistry(auto_describe=True)

METRICS_PATH = "/metrics"
NO_CACHE_OUTCOME = "none"


# ------------------------------------------------------------------ #
# HTTP Metrics
# ------------------------------------------------------------------ #

http_requests_total = Counter(
    "http_requests_total",
    "HTTP requests by cache outcome",
    ["method", "endpoint", "status", "cache"],
    registry=REGISTRY,
)

# Hits are expected in the low milliseconds, misses as slow as the handler
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds by cache outcome",
    ["method", "cache"],
    buckets=[0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=REGISTRY,
)


# ------------------------------------------------------------------ #
# Cache Metrics
# ------------------------------------------------------------------ #

cache_lookups_total = Counter(
    "respcache_lookups_total",
    "Cache lookups on cacheable paths",
    ["result"],
    registry=REGISTRY,
)

cache_stores_total = Counter(
    "respcache_stores_total",
    "Outcome of captured cache misses",
    ["outcome"],
    registry=REGISTRY,
)

cache_invalidations_total = Counter(
    "respcache_invalidations_total",
    "Prefix invalidations",
    ["outcome"],
    registry=REGISTRY,
)

cache_served_bytes_total = Counter(
    "respcache_served_bytes_total",
    "Bytes served from the cache",
    ["mode"],
    registry=REGISTRY,
)

inflight_captures = Gauge(
    "respcache_inflight_captures",
    "Cache misses whose response is currently being captured",
    registry=REGISTRY,
)


# ------------------------------------------------------------------ #
# Instrumentation Functions
# ------------------------------------------------------------------ #


def record_http_request(
    method: str,
    endpoint: str,
    status_code: int,
    duration_seconds: float,
    cache: str = NO_CACHE_OUTCOME,
) -> None:
    """Record one served request.

    Args:
        method: HTTP method
        endpoint: Request path
        status_code: Response status code
        duration_seconds: Time until the response object was ready
        cache: "hit", "miss" or "none"
    """
    http_requests_total.labels(method=method, endpoint=endpoint, status=str(status_code), cache=cache).inc()
    http_request_duration_seconds.labels(method=method, cache=cache).observe(duration_seconds)


def record_lookup(result: str) -> None:
    """Record a cache lookup: hit, miss, or bypass (client sent no-cache)."""
    cache_lookups_total.labels(result=result).inc()


def record_store(outcome: str) -> None:
    """Record what happened to a captured response: stored, failed, skipped."""
    cache_stores_total.labels(outcome=outcome).inc()


def record_invalidation(success: bool) -> None:
    cache_invalidations_total.labels(outcome="success" if success else "failed").inc()


def record_served_bytes(mode: str, size: int) -> None:
    cache_served_bytes_total.labels(mode=mode).inc(size)


# ------------------------------------------------------------------ #
# Middleware
# ------------------------------------------------------------------ #


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Record request counts and latency, labelled with the X-Cache outcome.

    Sits outside CacheMiddleware so cache hits are timed too.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path == METRICS_PATH:
            return await call_next(request)

        started = time.perf_counter()
        status_code = 500
        cache = NO_CACHE_OUTCOME
        try:
            response = await call_next(request)
            status_code = response.status_code
            cache = response.headers.get("x-cache", NO_CACHE_OUTCOME).lower()
            return response
        finally:
            record_http_request(
                method=request.method,
                endpoint=request.url.path,
                status_code=status_code,
                duration_seconds=time.perf_counter() - started,
                cache=cache,
            )


# ------------------------------------------------------------------ #
# Metrics Endpoint
# ------------------------------------------------------------------ #


def get_metrics() -> Response:
    """Render REGISTRY in Prometheus exposition format."""
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)
