"""Response capture primitives for the cache middleware.

On a cache miss the middleware swaps the ASGI ``send`` callable (the
response sink) for a ResponseCapture buffer, lets the handler run, and then
restores the real sink to flush what was captured.

The original sinks of all in-flight captures are parked in a SinkTable
keyed by a random per-request token. The token travels with the request in
a CaptureContext; the table owns the saved sink until restore() hands it
back and forgets it, so the table never holds more entries than there are
concurrent cache misses.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field

from starlette.types import Message, Send


@dataclass(frozen=True)
class CaptureContext:
    """Request-scoped record of an in-flight capture."""

    token: str
    cache_key: str
    content_type: str
    ttl: int | None


class SinkTable:
    """Shared token -> original send mapping."""

    def __init__(self) -> None:
        self._sinks: dict[str, Send] = {}
        self._lock = threading.Lock()

    def swap(self, send: Send) -> str:
        """Park send and return the token needed to get it back."""
        token = uuid.uuid4().hex
        with self._lock:
            self._sinks[token] = send
        return token

    def restore(self, token: str) -> Send | None:
        """Return the parked send for token and drop it from the table."""
        with self._lock:
            return self._sinks.pop(token, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sinks)


@dataclass
class ResponseCapture:
    """Buffering stand-in for ``send`` that records one HTTP response."""

    start: Message | None = None
    chunks: list[bytes] = field(default_factory=list)
    complete: bool = False

    async def __call__(self, message: Message) -> None:
        if message["type"] == "http.response.start":
            self.start = message
        elif message["type"] == "http.response.body":
            self.chunks.append(message.get("body", b""))
            if not message.get("more_body", False):
                self.complete = True

    @property
    def status_code(self) -> int | None:
        return self.start["status"] if self.start is not None else None

    @property
    def raw_headers(self) -> list[tuple[bytes, bytes]]:
        if self.start is None:
            return []
        return list(self.start.get("headers", []))

    @property
    def body(self) -> bytes:
        return b"".join(self.chunks)

    def headers(self) -> dict[str, str]:
        """Captured headers as str -> str; repeated names are joined with ', '."""
        merged: dict[str, str] = {}
        for raw_name, raw_value in self.raw_headers:
            name = raw_name.decode("latin-1")
            value = raw_value.decode("latin-1")
            if name in merged:
                merged[name] = f"{merged[name]}, {value}"
            else:
                merged[name] = value
        return merged

    async def flush(self, send: Send, extra_headers: list[tuple[bytes, bytes]] | None = None) -> None:
        """Replay the captured response through send as a single body message."""
        if self.start is None:
            return
        start = dict(self.start)
        start["headers"] = self.raw_headers + list(extra_headers or [])
        await send(start)
        await send({"type": "http.response.body", "body": self.body, "more_body": False})
