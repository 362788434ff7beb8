"""
Application configuration via pydantic-settings.

All settings are loaded from environment variables (or a .env file in dev).
Cache rules are supplied as a JSON list in CACHE_RULES, for example:

    CACHE_RULES='[{"pattern": "^/api/v1/pastes/", "content_type": "text/html", "ttl": 600}]'

Rules keep their order: the first pattern matching a request path decides
its content type and TTL.
"""

from __future__ import annotations

import re
from enum import StrEnum
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEV = "dev"
    PROD = "prod"
    TEST = "test"


class CacheRuleSettings(BaseModel):
    """One entry of CACHE_RULES."""

    pattern: str = Field(description="Regular expression searched in the request path")
    content_type: str = Field(description="Content type served for cached responses")
    ttl: int | None = Field(
        default=None,
        ge=0,
        description="Seconds until a stored response expires; null never expires",
    )

    @field_validator("pattern")
    @classmethod
    def _pattern_compiles(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"invalid cache rule pattern {value!r}: {exc}") from exc
        return value


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Application
    # ------------------------------------------------------------------ #
    environment: Environment = Environment.DEV
    debug: bool = False
    log_level: str = Field(
        default="INFO",
        description="Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    # ------------------------------------------------------------------ #
    # Response cache
    # ------------------------------------------------------------------ #
    cache_enabled: bool = Field(
        default=True,
        description="Turn the response cache middleware on or off",
    )
    cache_dir: Path = Field(
        default=Path("./public/cache"),
        description="Directory holding cached response bodies (<key>.body)",
    )
    sendfile_threshold: int = Field(
        default=16384,
        ge=0,
        description="Cached bodies of at least this many bytes are streamed from disk",
    )
    cache_rules: list[CacheRuleSettings] = Field(
        default_factory=list,
        description="Ordered cache rules; first matching pattern wins",
    )
    admin_api_prefix: str = Field(
        default="/_cache",
        description="Mount point of the cache admin endpoints",
    )

    # ------------------------------------------------------------------ #
    # Derived / Computed
    # ------------------------------------------------------------------ #
    @model_validator(mode="after")
    def _set_debug_from_env(self) -> Settings:
        if self.environment == Environment.DEV:
            self.debug = True
        return self

    @property
    def is_dev(self) -> bool:
        return self.environment in (Environment.DEV, Environment.TEST)

    @property
    def is_prod(self) -> bool:
        return self.environment == Environment.PROD

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.debug else self.log_level.upper()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings singleton.

    Use FastAPI dependency injection via Depends(get_settings) in endpoints,
    or call directly in non-request contexts (startup, scripts).
    """
    return Settings()
