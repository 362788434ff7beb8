"""Tests for cache key generation and cache rules."""

from __future__ import annotations

import hashlib
import re

import pytest

from respcache.cache.keys import generate_cache_key, query_mapping, read_request_body
from respcache.cache.rules import CacheRuleRegistry


class TestGenerateCacheKey:
    def test_key_is_sha256_hex(self):
        key = generate_cache_key("GET", "/api/data", {})
        assert len(key) == 64
        assert key == hashlib.sha256(b"GET:/api/data::").hexdigest()

    def test_parameter_order_does_not_matter(self):
        k1 = generate_cache_key("GET", "/search", {"q": "cats", "page": "2", "lang": "en"})
        k2 = generate_cache_key("GET", "/search", {"lang": "en", "page": "2", "q": "cats"})
        assert k1 == k2

    def test_query_values_change_key(self):
        k1 = generate_cache_key("GET", "/search", {"q": "cats"})
        k2 = generate_cache_key("GET", "/search", {"q": "dogs"})
        assert k1 != k2

    def test_method_and_path_change_key(self):
        base = generate_cache_key("GET", "/a")
        assert base != generate_cache_key("DELETE", "/a")
        assert base != generate_cache_key("GET", "/b")

    def test_query_is_serialised_sorted(self):
        key = generate_cache_key("GET", "/p", {"b": "2", "a": "1"})
        assert key == hashlib.sha256(b"GET:/p:a=1&b=2:").hexdigest()

    def test_post_bodies_change_key(self):
        k1 = generate_cache_key("POST", "/render", {}, b'{"text": "one"}')
        k2 = generate_cache_key("POST", "/render", {}, b'{"text": "two"}')
        assert k1 != k2

    def test_put_body_hash_is_sixteen_hex_chars(self):
        body = b"payload"
        body_hash = hashlib.sha256(body).hexdigest()[:16]
        expected = hashlib.sha256(f"PUT:/doc::{body_hash}".encode()).hexdigest()
        assert generate_cache_key("PUT", "/doc", {}, body) == expected

    @pytest.mark.parametrize("method", ["GET", "DELETE", "PATCH"])
    def test_body_ignored_for_other_methods(self, method):
        assert generate_cache_key(method, "/x", {}, b"one") == generate_cache_key(method, "/x", {}, b"two")

    def test_empty_body_adds_no_hash(self):
        assert generate_cache_key("POST", "/x", {}, b"") == generate_cache_key("POST", "/x", {}, None)


class TestQueryMapping:
    def test_first_value_wins_for_repeated_keys(self):
        assert query_mapping("a=1&a=2&b=3") == {"a": "1", "b": "3"}

    def test_accepts_raw_bytes_and_blank_values(self):
        assert query_mapping(b"flag=&q=hello%20world") == {"flag": "", "q": "hello world"}

    def test_empty_query(self):
        assert query_mapping("") == {}


class TestReadRequestBody:
    @pytest.mark.asyncio
    async def test_body_is_replayed_for_downstream(self):
        messages = [
            {"type": "http.request", "body": b"hello ", "more_body": True},
            {"type": "http.request", "body": b"world", "more_body": False},
            {"type": "http.disconnect"},
        ]

        async def receive():
            return messages.pop(0)

        body, replay = await read_request_body(receive)
        assert body == b"hello world"

        first = await replay()
        assert first == {"type": "http.request", "body": b"hello world", "more_body": False}
        assert (await replay())["type"] == "http.disconnect"


class TestCacheRuleRegistry:
    def test_first_registered_rule_wins(self):
        registry = CacheRuleRegistry()
        registry.add_rule(r"^/api", "application/json", 60)
        registry.add_rule(r"^/api/v1", "text/html", 10)

        rule = registry.find_rule("/api/v1/users")
        assert rule.content_type == "application/json"
        assert rule.ttl == 60

    def test_no_match_returns_none(self):
        registry = CacheRuleRegistry()
        registry.add_rule(r"^/api/v1", "application/json", 600)
        assert registry.find_rule("/other/path") is None

    def test_manages_rules(self):
        registry = CacheRuleRegistry()
        registry.add_rule(r"^/test$", "application/json", 3600)
        registry.add_rule(re.compile(r"^/api"), "text/html")

        rules = registry.rules
        assert len(registry) == 2
        assert rules[0].matches("/test")
        assert not rules[0].matches("/test/extra")
        assert rules[1].matches("/api/data")
        assert rules[1].ttl is None

        registry.clear()
        assert len(registry) == 0

    def test_patterns_are_searched_not_anchored(self):
        registry = CacheRuleRegistry()
        registry.add_rule(r"\.png$", "image/png")
        assert registry.find_rule("/images/cat.png") is not None
