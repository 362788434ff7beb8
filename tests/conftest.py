"""
Shared test fixtures for pytest.

Provides:
- cache_dir: Fresh per-test directory for body files
- clock: Controllable UTC clock for expiry tests
- engine: CacheEngine rooted at cache_dir and driven by clock
- fake_settings: Test environment configuration
- test_headers / make_content: Sample response data
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from respcache.cache.engine import CacheEngine
from respcache.config import Environment, Settings, get_settings


@pytest.fixture(autouse=True, scope="session")
def _clear_settings_cache():
    """Clear the lru_cache on get_settings so test overrides take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    path = tmp_path / "cache"
    path.mkdir()
    return path


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine(cache_dir: Path, clock: FakeClock) -> CacheEngine:
    return CacheEngine(cache_dir, clock=clock)


@pytest.fixture
def fake_settings(cache_dir: Path) -> Settings:
    """Test environment settings with safe defaults."""
    return Settings(
        environment=Environment.TEST,
        cache_dir=cache_dir,
        sendfile_threshold=16384,
        cache_rules=[
            {"pattern": "^/api/pastes/", "content_type": "text/plain", "ttl": 600},
        ],
    )


@pytest.fixture
def test_headers() -> dict[str, str]:
    return {
        "Cache-Control": "public, max-age=3600",
        "X-Custom-Header": "test-value",
        "Content-Type": "application/json",
    }


@pytest.fixture
def make_content():
    """Factory for bodies of a given size."""

    def _make(size: int = 100) -> bytes:
        return b"x" * size

    return _make
