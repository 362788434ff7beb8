"""On-disk storage for cached response bodies.

Layout under the cache directory:

    <key>.body      raw response body, one file per cache key
    <key>*.cache    legacy combined metadata+body files; never written,
                    only swept by delete_prefix()

Writes go to a temporary file in the same directory and are moved into
place with os.replace(), so a concurrent reader sees either the previous
body or the new one, never a partial file.

All methods raise OSError on failure; CacheEngine converts those into
boolean / None results.
"""

from __future__ import annotations

import glob
import os
import tempfile
from pathlib import Path

import structlog

log = structlog.get_logger(__name__)

BODY_SUFFIX = ".body"
LEGACY_SUFFIX = ".cache"


class BodyStore:
    """Content files named deterministically from the cache key."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def ensure_root(self) -> None:
        self._root.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        return self._root / f"{key}{BODY_SUFFIX}"

    def write(self, key: str, content: bytes) -> Path:
        """Atomically replace the body file for key and return its path."""
        target = self.path_for(key)
        fd, tmp_name = tempfile.mkstemp(dir=self._root, prefix=f".{key[:16]}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(content)
            os.replace(tmp_name, target)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return target

    @staticmethod
    def read(path: Path) -> bytes:
        return path.read_bytes()

    @staticmethod
    def exists(path: Path) -> bool:
        return path.is_file()

    def delete_prefix(self, prefix: str) -> int:
        """Delete every legacy and current body file whose name starts with prefix.

        Returns the number of files removed. A file that vanishes between
        the glob and the unlink is treated as already deleted.
        """
        escaped = glob.escape(str(self._root / prefix))
        deleted = 0
        for suffix in (LEGACY_SUFFIX, BODY_SUFFIX):
            for name in glob.glob(f"{escaped}*{suffix}"):
                try:
                    os.unlink(name)
                except FileNotFoundError:
                    continue
                deleted += 1
        log.debug("cache.body_store.swept", prefix=prefix, files_deleted=deleted)
        return deleted
