"""Path-based cache rules.

Each rule maps a path regex to the content type and TTL used when a
matching response is stored. Rules are evaluated in registration order and
the first match wins, so register specific patterns before broad ones.
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass


@dataclass(frozen=True)
class CacheRule:
    """A single cacheable path pattern."""

    pattern: re.Pattern[str]
    content_type: str
    ttl: int | None = None

    def matches(self, path: str) -> bool:
        return self.pattern.search(path) is not None


class CacheRuleRegistry:
    """Ordered, first-match-wins collection of CacheRule."""

    def __init__(self) -> None:
        self._rules: list[CacheRule] = []
        self._lock = threading.Lock()

    def add_rule(
        self,
        pattern: str | re.Pattern[str],
        content_type: str,
        ttl: int | None = None,
    ) -> CacheRule:
        """Append a rule. String patterns are compiled as regular expressions."""
        compiled = re.compile(pattern) if isinstance(pattern, str) else pattern
        rule = CacheRule(pattern=compiled, content_type=content_type, ttl=ttl)
        with self._lock:
            self._rules.append(rule)
        return rule

    def find_rule(self, path: str) -> CacheRule | None:
        """Return the first rule matching path, or None if not cacheable."""
        for rule in self.rules:
            if rule.matches(path):
                return rule
        return None

    @property
    def rules(self) -> tuple[CacheRule, ...]:
        with self._lock:
            return tuple(self._rules)

    def clear(self) -> None:
        with self._lock:
            self._rules.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._rules)
