"""Response cache middleware (pure ASGI).

For every HTTP request whose path matches a cache rule:

- HIT   - fresh metadata and a body on disk exist for the request's key.
          The handler is skipped. Bodies of at least sendfile_threshold
          bytes are streamed straight from disk (FileResponse); smaller ones
          are read into memory and sent in one shot. Saved headers are
          restored; the rule's content type applies when the handler set
          none.
- MISS  - the ASGI send callable is swapped for a buffer, the handler runs
          as usual, and afterwards a 200 response is stored. The original
          send is then restored and the captured bytes flushed through it,
          so the client gets the response whether or not storage worked.
          If the app raises after finishing its response (a failing
          background task), that response is still flushed, unstored.

Requests on paths without a rule pass through untouched.

Client directives (request Cache-Control header):
- no-cache  - skip the lookup; the response is still captured and stored
- no-store  - do not store the response; it is still delivered

Headers added to responses:
- X-Cache: HIT   - served from cache
- X-Cache: MISS  - produced by the handler on a cacheable path

A present-but-unreadable body on a hit is answered with 503 instead of an
empty 200.
"""

from __future__ import annotations

import asyncio
import os
from typing import Any

import structlog
from starlette.datastructures import Headers
from starlette.responses import FileResponse, PlainTextResponse, Response
from starlette.types import ASGIApp, Receive, Scope, Send

from respcache.cache.capture import CaptureContext, ResponseCapture, SinkTable
from respcache.cache.engine import CacheEngine
from respcache.cache.keys import BODY_HASH_METHODS, generate_cache_key, query_mapping, read_request_body
from respcache.cache.metadata import CacheMetadata
from respcache.cache.rules import CacheRule
from respcache.middleware.prometheus import (
    inflight_captures,
    record_lookup,
    record_served_bytes,
    record_store,
)

log = structlog.get_logger(__name__)

CAPTURE_STATE_KEY = "cache_capture"

# Recomputed when a cached response is replayed
_RECOMPUTED_HEADERS = frozenset({"content-length"})
_PATHSEND_EXTENSION = "http.response.pathsend"


def cache_control_directives(value: str | None) -> frozenset[str]:
    """Parse a Cache-Control header into lower-cased directive names."""
    if not value:
        return frozenset()
    directives = set()
    for part in value.split(","):
        name = part.split("=", 1)[0].strip().lower()
        if name:
            directives.add(name)
    return frozenset(directives)


class CacheMiddleware:
    """ASGI middleware that serves and captures cacheable responses.

    The engine is injected so one instance can be shared with the admin API
    and replaced in tests.
    """

    def __init__(self, app: ASGIApp, engine: CacheEngine, *, enabled: bool = True) -> None:
        self.app = app
        self.engine = engine
        self.enabled = enabled
        self.sinks = SinkTable()

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not self.enabled:
            await self.app(scope, receive, send)
            return

        rule = self.engine.find_rule(scope["path"])
        if rule is None:
            await self.app(scope, receive, send)
            return

        method = scope["method"].upper()
        body: bytes | None = None
        if method in BODY_HASH_METHODS:
            body, receive = await read_request_body(receive)

        cache_key = generate_cache_key(
            method,
            scope["path"],
            query_mapping(scope.get("query_string", b"")),
            body,
        )
        directives = cache_control_directives(", ".join(Headers(scope=scope).getlist("cache-control")))

        with structlog.contextvars.bound_contextvars(cache_key=cache_key):
            if "no-cache" in directives:
                record_lookup("bypass")
                log.debug("cache.middleware.bypass", path=scope["path"])
            else:
                metadata = self.engine.get(cache_key)
                if metadata is not None:
                    record_lookup("hit")
                    log.debug("cache.middleware.hit", path=scope["path"])
                    response = await self._cached_response(cache_key, metadata)
                    await response(scope, receive, send)
                    return
                record_lookup("miss")

            await self._capture(scope, receive, send, cache_key, rule, store="no-store" not in directives)

    # ------------------------------------------------------------------
    # HIT
    # ------------------------------------------------------------------

    async def _cached_response(self, cache_key: str, metadata: CacheMetadata) -> Response:
        headers = {
            name: value
            for name, value in metadata.headers.items()
            if name.lower() not in _RECOMPUTED_HEADERS
        }
        headers["x-cache"] = "HIT"

        if metadata.body_size >= self.engine.sendfile_threshold:
            try:
                stat_result = await asyncio.to_thread(os.stat, metadata.body_path)
            except OSError as exc:
                log.warning("cache.middleware.sendfile_failed", error=str(exc))
                return _body_missing()
            record_served_bytes("sendfile", metadata.body_size)
            return FileResponse(
                metadata.body_path,
                headers=headers,
                media_type=metadata.content_type,
                stat_result=stat_result,
            )

        content = await asyncio.to_thread(self.engine.get_body, cache_key)
        if content is None:
            return _body_missing()
        record_served_bytes("buffered", len(content))
        return Response(content=content, status_code=200, headers=headers, media_type=metadata.content_type)

    # ------------------------------------------------------------------
    # MISS
    # ------------------------------------------------------------------

    async def _capture(
        self,
        scope: Scope,
        receive: Receive,
        send: Send,
        cache_key: str,
        rule: CacheRule,
        *,
        store: bool,
    ) -> None:
        token = self.sinks.swap(send)
        context = CaptureContext(
            token=token,
            cache_key=cache_key,
            content_type=rule.content_type,
            ttl=rule.ttl,
        )
        scope.setdefault("state", {})[CAPTURE_STATE_KEY] = context
        capture = ResponseCapture()
        inflight_captures.inc()

        try:
            await self.app(_without_pathsend(scope), receive, capture)
        except BaseException:
            original = self.sinks.restore(token)
            # A response finished before the failure (e.g. a background
            # task raised) still reaches the client, unstored
            if original is not None and capture.start is not None and capture.complete:
                record_store("skipped")
                log.warning("cache.middleware.failed_after_response")
                await capture.flush(original, extra_headers=[(b"x-cache", b"MISS")])
            raise
        finally:
            inflight_captures.dec()

        await self._finish_capture(context, capture, store=store)

    async def _finish_capture(self, context: CaptureContext, capture: ResponseCapture, *, store: bool) -> None:
        if not store:
            record_store("skipped")
            log.debug("cache.middleware.no_store")
        elif capture.status_code == 200:
            stored = await asyncio.to_thread(
                self.engine.set,
                context.cache_key,
                capture.body,
                context.content_type,
                context.ttl,
                capture.headers(),
            )
            record_store("stored" if stored else "failed")
            log.debug("cache.middleware.stored", stored=stored, ttl=context.ttl)
        else:
            record_store("skipped")

        original = self.sinks.restore(context.token)
        if original is None:
            log.error("cache.middleware.sink_lost")
            return
        await capture.flush(original, extra_headers=[(b"x-cache", b"MISS")])


def _body_missing() -> Response:
    return PlainTextResponse("Cache error: body file missing", status_code=503)


def _without_pathsend(scope: Scope) -> Scope:
    """Hide the pathsend extension so file responses arrive as body messages."""
    extensions: dict[str, Any] = scope.get("extensions") or {}
    if _PATHSEND_EXTENSION not in extensions:
        return scope
    scope = dict(scope)
    scope["extensions"] = {k: v for k, v in extensions.items() if k != _PATHSEND_EXTENSION}
    return scope
