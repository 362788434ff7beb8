"""Cache key derivation for HTTP requests.

A cache key identifies the cacheable identity of a request:

    sha256("<METHOD>:<path>:<sorted query>:<body hash>")

- Query parameters are serialised as ``k=v`` pairs sorted by key and joined
  with ``&``. Repeated parameters keep their FIRST value.
- Only POST and PUT bodies take part in the key, as the first 16 hex chars
  of the body's SHA-256 digest. Other methods (and empty bodies) contribute
  an empty segment.

Reading the body to hash it consumes the ASGI receive stream, so
read_request_body() hands back a replacement receive callable that replays
the same bytes for the downstream handler.
"""

from __future__ import annotations

import hashlib
from collections.abc import Mapping
from urllib.parse import parse_qsl

from starlette.types import Message, Receive

BODY_HASH_METHODS = frozenset({"POST", "PUT"})
_BODY_HASH_LENGTH = 16


def query_mapping(query_string: str | bytes) -> dict[str, str]:
    """Parse a raw query string into a mapping, first value per key wins."""
    if isinstance(query_string, bytes):
        query_string = query_string.decode("latin-1")
    params: dict[str, str] = {}
    for key, value in parse_qsl(query_string, keep_blank_values=True):
        params.setdefault(key, value)
    return params


def body_digest(body: bytes) -> str:
    """Return the short body fingerprint mixed into POST/PUT keys."""
    return hashlib.sha256(body).hexdigest()[:_BODY_HASH_LENGTH]


def generate_cache_key(
    method: str,
    path: str,
    query: Mapping[str, str] | None = None,
    body: bytes | None = None,
) -> str:
    """Build a deterministic cache key for a request.

    Args:
        method: HTTP method (case-insensitive)
        path: Request path, used verbatim
        query: Query parameters, any order
        body: Raw request body; ignored unless method is POST or PUT

    Returns:
        64-char hex SHA-256 digest
    """
    method = method.upper()
    query_part = "&".join(f"{k}={v}" for k, v in sorted((query or {}).items()))

    body_hash = ""
    if method in BODY_HASH_METHODS and body:
        body_hash = body_digest(body)

    raw = f"{method}:{path}:{query_part}:{body_hash}"
    return hashlib.sha256(raw.encode()).hexdigest()


async def read_request_body(receive: Receive) -> tuple[bytes, Receive]:
    """Drain the request body and return it with a replaying receive.

    The replacement yields the buffered body as a single ``http.request``
    message, then defers to the original receive (so ``http.disconnect``
    still reaches the handler).
    """
    chunks: list[bytes] = []
    while True:
        message = await receive()
        if message["type"] != "http.request":
            # Client went away before the body was complete
            break
        chunks.append(message.get("body", b""))
        if not message.get("more_body", False):
            break

    body = b"".join(chunks)
    replayed = False

    async def replay() -> Message:
        nonlocal replayed
        if not replayed:
            replayed = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return body, replay
