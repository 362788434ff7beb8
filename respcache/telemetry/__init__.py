"""Telemetry package for observability.

This package contains:
- Structured logging with trace correlation
- Request ID middleware
- Prometheus metrics (in respcache/middleware/prometheus.py)
"""

from __future__ import annotations

from respcache.telemetry.logging import (
    RequestIdMiddleware,
    clear_context,
    configure_logging,
)

__all__ = [
    "RequestIdMiddleware",
    "clear_context",
    "configure_logging",
]
