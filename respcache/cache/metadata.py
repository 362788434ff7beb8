"""In-memory metadata for cached responses.

Metadata (content type, headers, TTL, body location) lives only in process
memory; the body itself is on disk (see body_store.py). Losing the process
loses the index, and every entry becomes a miss until it is stored again.

MetadataIndex is the one piece of shared mutable state in the cache. Every
access goes through a threading.Lock held only for the dict operation, never
across disk I/O. Entries are immutable and replaced wholesale, so readers can
never observe a half-built entry.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class CacheMetadata:
    """Descriptor of one cached response, excluding its body bytes."""

    content_type: str
    ttl: int | None
    headers: dict[str, str]
    body_path: Path
    body_size: int
    created_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: datetime | None = None) -> bool:
        """True once more than ttl seconds have passed. ttl=None never expires."""
        if self.ttl is None:
            return False
        now = now or utcnow()
        return (now - self.created_at).total_seconds() > self.ttl


class MetadataIndex:
    """Thread-safe mapping of cache key -> CacheMetadata."""

    def __init__(self) -> None:
        self._entries: dict[str, CacheMetadata] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> CacheMetadata | None:
        with self._lock:
            return self._entries.get(key)

    def publish(self, key: str, metadata: CacheMetadata) -> None:
        """Make a fully constructed entry visible under key."""
        with self._lock:
            self._entries[key] = metadata

    def discard(self, key: str, expected: CacheMetadata | None = None) -> bool:
        """Remove key. With expected set, only remove that exact entry.

        The expected check keeps a reader that found a stale entry from
        deleting a newer one published by a concurrent writer.
        """
        with self._lock:
            current = self._entries.get(key)
            if current is None:
                return False
            if expected is not None and current is not expected:
                return False
            del self._entries[key]
            return True

    def remove_where(self, predicate: Callable[[str], bool]) -> list[str]:
        """Remove every key matching predicate; return the removed keys."""
        with self._lock:
            doomed = [k for k in self._entries if predicate(k)]
            for k in doomed:
                del self._entries[k]
            return doomed

    def snapshot(self) -> dict[str, CacheMetadata]:
        with self._lock:
            return dict(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
