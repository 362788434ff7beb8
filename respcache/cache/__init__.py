"""Response Caching Layer.

Public API:
    CacheEngine           - Rules + metadata index + body store
    CacheMetadata         - In-memory descriptor of a cached response
    MetadataIndex         - Thread-safe key -> metadata mapping
    BodyStore             - <key>.body files under the cache directory
    CacheRule             - Path pattern with content type and TTL
    CacheRuleRegistry     - Ordered, first-match-wins rule list
    generate_cache_key    - Request -> cache key digest

    CacheMiddleware       - ASGI middleware serving hits and capturing misses
    CaptureContext        - Request-scoped state of an in-flight capture
    SinkTable             - Token -> original send bookkeeping
"""

from respcache.cache.body_store import BodyStore
from respcache.cache.capture import CaptureContext, ResponseCapture, SinkTable
from respcache.cache.engine import CacheEngine
from respcache.cache.keys import generate_cache_key, query_mapping, read_request_body
from respcache.cache.metadata import CacheMetadata, MetadataIndex
from respcache.cache.middleware import CacheMiddleware, cache_control_directives
from respcache.cache.rules import CacheRule, CacheRuleRegistry

__all__ = [
    "BodyStore",
    "CacheEngine",
    "CacheMetadata",
    "MetadataIndex",
    "CacheRule",
    "CacheRuleRegistry",
    "generate_cache_key",
    "query_mapping",
    "read_request_body",
    "CacheMiddleware",
    "cache_control_directives",
    "CaptureContext",
    "ResponseCapture",
    "SinkTable",
]
