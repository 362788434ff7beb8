"""Integration tests for observability stack.

Tests Prometheus metrics, structured logging, and request IDs.
"""

from __future__ import annotations

import httpx
import pytest
import structlog
from httpx import AsyncClient

from respcache.main import create_app
from respcache.middleware.prometheus import REGISTRY


def _sample(name: str, **labels: str) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


@pytest.fixture
def app(fake_settings):
    app = create_app(fake_settings)

    @app.get("/api/pastes/{paste_id}")
    async def read_paste(paste_id: str):
        return {"id": paste_id}

    return app


@pytest.mark.asyncio
async def test_prometheus_metrics_endpoint(app):
    """Test /metrics endpoint returns Prometheus format."""
    async with AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        await client.get("/api/pastes/metrics-probe")
        response = await client.get("/metrics")

    assert response.status_code == 200
    assert "text/plain" in response.headers["content-type"]

    content = response.text
    assert "http_requests_total" in content
    assert "http_request_duration_seconds" in content
    assert "respcache_lookups_total" in content
    assert "respcache_inflight_captures" in content


@pytest.mark.asyncio
async def test_cache_lookups_are_counted(app):
    hits_before = _sample("respcache_lookups_total", result="hit")
    misses_before = _sample("respcache_lookups_total", result="miss")
    stored_before = _sample("respcache_stores_total", outcome="stored")

    async with AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        await client.get("/api/pastes/counted")
        await client.get("/api/pastes/counted")

    assert _sample("respcache_lookups_total", result="miss") == misses_before + 1
    assert _sample("respcache_lookups_total", result="hit") == hits_before + 1
    assert _sample("respcache_stores_total", outcome="stored") == stored_before + 1
    assert _sample("respcache_inflight_captures") == 0


@pytest.mark.asyncio
async def test_prometheus_middleware_records_metrics(app):
    """Test PrometheusMiddleware records HTTP request metrics."""
    labels = {"method": "GET", "endpoint": "/api/pastes/recorded", "status": "200"}
    misses_before = _sample("http_requests_total", cache="miss", **labels)
    hits_before = _sample("http_requests_total", cache="hit", **labels)
    hit_latency_before = _sample("http_request_duration_seconds_count", method="GET", cache="hit")

    async with AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/pastes/recorded")
        assert response.status_code == 200
        await client.get("/api/pastes/recorded")

    assert _sample("http_requests_total", cache="miss", **labels) == misses_before + 1
    assert _sample("http_requests_total", cache="hit", **labels) == hits_before + 1
    assert _sample("http_request_duration_seconds_count", method="GET", cache="hit") == hit_latency_before + 1


@pytest.mark.asyncio
async def test_uncached_paths_are_labelled_none(app):
    labels = {"method": "GET", "endpoint": "/_cache/stats", "status": "200", "cache": "none"}
    before = _sample("http_requests_total", **labels)

    async with AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        await client.get("/_cache/stats")

    assert _sample("http_requests_total", **labels) == before + 1


@pytest.mark.asyncio
async def test_request_id_middleware(app):
    """Test RequestIdMiddleware adds request ID to fresh and cached responses."""
    async with AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        miss = await client.get("/api/pastes/rid")
        hit = await client.get("/api/pastes/rid")

    assert hit.headers["x-cache"] == "HIT"
    assert miss.headers["x-request-id"].startswith("req_")
    assert hit.headers["x-request-id"].startswith("req_")
    assert miss.headers["x-request-id"] != hit.headers["x-request-id"]


@pytest.mark.asyncio
async def test_upstream_request_id_is_reused(app):
    async with AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/pastes/upstream", headers={"X-Request-ID": "lb-1234.abcd"})

    assert response.headers["x-request-id"] == "lb-1234.abcd"


@pytest.mark.asyncio
async def test_malformed_request_id_is_replaced(app):
    async with AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/pastes/upstream", headers={"X-Request-ID": "bad id with spaces"})

    assert response.headers["x-request-id"].startswith("req_")
    assert response.headers.get_list("x-request-id") == [response.headers["x-request-id"]]


def test_structured_logging_configuration():
    """Test structured logging can be configured."""
    from respcache.telemetry.logging import configure_logging

    configure_logging(json_logs=False, log_level="DEBUG")

    log = structlog.get_logger(__name__)
    assert log is not None
    log.info("test.message", test_key="test_value")


def test_trace_context_processor():
    """Test trace context is left out when no span is recording."""
    from respcache.telemetry.logging import add_trace_context

    event_dict = {"event": "test"}
    result = add_trace_context(None, "info", event_dict)
    assert result == {"event": "test"}


def test_log_context_clearing():
    from respcache.telemetry.logging import clear_context

    structlog.contextvars.bind_contextvars(request_id="req_abc")
    clear_context()
    assert structlog.contextvars.get_contextvars() == {}
