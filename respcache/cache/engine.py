"""Cache engine: rules + metadata index + body store.

The engine is the public contract of the cache. Storage problems never
escape it as exceptions:

- get() / get_body() return None on any miss, expiry, missing body or
  read error
- set() / invalidate() return False on write/delete failures

A get() that finds an indexed entry whose body file has disappeared evicts
that entry (self-healing) and reports a miss.

One engine is created per process (see from_settings) and injected into
CacheMiddleware and the admin API. It carries its own locking, so it is
safe to share between concurrent requests and worker threads.
"""

from __future__ import annotations

import re
import threading
from collections.abc import Callable, Mapping
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from respcache.cache.body_store import BodyStore
from respcache.cache.metadata import CacheMetadata, MetadataIndex, utcnow
from respcache.cache.rules import CacheRule, CacheRuleRegistry

if TYPE_CHECKING:
    from respcache.config import Settings

log = structlog.get_logger(__name__)

DEFAULT_SENDFILE_THRESHOLD = 16384  # 16 KB


class CacheEngine:
    """Two-tier response cache: metadata in memory, bodies on disk."""

    def __init__(
        self,
        cache_dir: str | Path,
        *,
        sendfile_threshold: int = DEFAULT_SENDFILE_THRESHOLD,
        rules: CacheRuleRegistry | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = BodyStore(cache_dir)
        self._store.ensure_root()
        self._index = MetadataIndex()
        self._rules = rules if rules is not None else CacheRuleRegistry()
        self._clock = clock
        self.sendfile_threshold = sendfile_threshold
        self._counter_lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> CacheEngine:
        """Build the process-wide engine from application settings."""
        engine = cls(
            settings.cache_dir,
            sendfile_threshold=settings.sendfile_threshold,
        )
        for rule in settings.cache_rules:
            engine.add_rule(rule.pattern, rule.content_type, rule.ttl)
        log.info(
            "cache.engine.configured",
            cache_dir=str(settings.cache_dir),
            sendfile_threshold=settings.sendfile_threshold,
            rules=len(settings.cache_rules),
        )
        return engine

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def cache_dir(self) -> Path:
        return self._store.root

    @property
    def sendfile_threshold(self) -> int:
        return self._sendfile_threshold

    @sendfile_threshold.setter
    def sendfile_threshold(self, value: int) -> None:
        if value < 0:
            raise ValueError("sendfile_threshold must be >= 0")
        self._sendfile_threshold = int(value)

    @property
    def rules(self) -> CacheRuleRegistry:
        return self._rules

    @property
    def index(self) -> MetadataIndex:
        return self._index

    def add_rule(
        self,
        pattern: str | re.Pattern[str],
        content_type: str,
        ttl: int | None = None,
    ) -> CacheRule:
        return self._rules.add_rule(pattern, content_type, ttl)

    def find_rule(self, path: str) -> CacheRule | None:
        return self._rules.find_rule(path)

    def body_path(self, key: str) -> Path:
        return self._store.path_for(key)

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def get(self, key: str) -> CacheMetadata | None:
        """Return live metadata for key, evicting it if expired or orphaned."""
        metadata = self._index.get(key)
        if metadata is None:
            self._count(hit=False)
            return None

        if metadata.is_expired(self._clock()):
            self._index.discard(key, expected=metadata)
            log.debug("cache.engine.expired", key=key, ttl=metadata.ttl)
            self._count(hit=False)
            return None

        if not self._store.exists(metadata.body_path):
            self._index.discard(key, expected=metadata)
            log.warning("cache.engine.body_missing", key=key, body_path=str(metadata.body_path))
            self._count(hit=False)
            return None

        self._count(hit=True)
        return metadata

    def get_body(self, key: str) -> bytes | None:
        """Read the stored body for key; None when absent or unreadable."""
        metadata = self._index.get(key)
        if metadata is None:
            return None
        try:
            return self._store.read(metadata.body_path)
        except OSError as exc:
            log.warning(
                "cache.engine.body_read_failed",
                key=key,
                body_path=str(metadata.body_path),
                error=str(exc),
            )
            return None

    def set(
        self,
        key: str,
        content: bytes | str,
        content_type: str,
        ttl: int | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> bool:
        """Store a response body on disk and publish its metadata.

        Returns False (and leaves any previous entry untouched) when the body
        cannot be written.
        """
        if isinstance(content, str):
            content = content.encode("utf-8")
        try:
            body_path = self._store.write(key, content)
        except OSError as exc:
            log.warning("cache.engine.store_failed", key=key, error=str(exc))
            return False

        metadata = CacheMetadata(
            content_type=content_type,
            ttl=ttl,
            headers=dict(headers or {}),
            body_path=body_path,
            body_size=len(content),
            created_at=self._clock(),
        )
        self._index.publish(key, metadata)
        log.debug("cache.engine.stored", key=key, body_size=len(content), ttl=ttl)
        return True

    def invalidate(self, prefix: str) -> bool:
        """Drop every entry and body file whose key starts with prefix.

        Returns False only when an existing file could not be deleted.
        """
        removed = self._index.remove_where(lambda k: k.startswith(prefix))
        try:
            files_deleted = self._store.delete_prefix(prefix)
        except OSError as exc:
            log.warning("cache.engine.invalidate_failed", prefix=prefix, error=str(exc))
            return False

        log.info(
            "cache.engine.invalidated",
            prefix=prefix,
            entries_removed=len(removed),
            files_deleted=files_deleted,
        )
        return True

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def _count(self, *, hit: bool) -> None:
        with self._counter_lock:
            if hit:
                self._hits += 1
            else:
                self._misses += 1

    def stats(self) -> dict[str, Any]:
        entries = self._index.snapshot()
        with self._counter_lock:
            hits, misses = self._hits, self._misses
        lookups = hits + misses
        return {
            "entries": len(entries),
            "total_body_bytes": sum(m.body_size for m in entries.values()),
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / lookups, 4) if lookups else 0.0,
            "sendfile_threshold": self.sendfile_threshold,
            "cache_dir": str(self.cache_dir),
        }
