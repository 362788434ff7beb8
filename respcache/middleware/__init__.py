"""Middleware package for request processing.

This package contains:
- PrometheusMiddleware: Prometheus metrics export
- Cache metric helpers used by the response cache
"""

from __future__ import annotations

from respcache.middleware.prometheus import (
    PrometheusMiddleware,
    get_metrics,
    record_http_request,
    record_invalidation,
    record_lookup,
    record_served_bytes,
    record_store,
)

__all__ = [
    "PrometheusMiddleware",
    "get_metrics",
    "record_http_request",
    "record_invalidation",
    "record_lookup",
    "record_served_bytes",
    "record_store",
]
