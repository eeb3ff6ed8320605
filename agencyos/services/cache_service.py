"""Redis cache service for short-lived, advisory caching."""

import json
import re
from typing import Optional, Any
import redis

from agencyos.core.config import settings

_GLOB_CHARS = re.compile(r"([*?\[\]\\])")


def escape_glob(value: str) -> str:
    """Escape redis glob metacharacters so ``value`` matches literally in a pattern."""
    return _GLOB_CHARS.sub(r"\\\1", value)


class CacheService:
    """Redis-backed caching service. Every failure is treated as a cache miss."""

    def __init__(self, url: str = settings.REDIS_URL, prefix: str = "agencyos:"):
        self.url = url
        self.prefix = prefix
        self._client: Optional[redis.Redis] = None

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(
                self.url,
                decode_responses=True,
                max_connections=50,
                socket_timeout=2,
            )
        return self._client

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> Optional[str]:
        """Get a cached value by key."""
        try:
            return self.client.get(self._key(key))
        except redis.RedisError:
            return None

    def set(self, key: str, value: str, ttl_seconds: int = 300) -> None:
        """Set a cached value with TTL."""
        try:
            self.client.setex(self._key(key), ttl_seconds, value)
        except redis.RedisError:
            pass  # Cache failures are non-fatal

    def get_json(self, key: str) -> Optional[Any]:
        """Get and parse a JSON cached value."""
        raw = self.get(key)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return None

    def set_json(self, key: str, value: Any, ttl_seconds: int = 300) -> None:
        """Serialize and cache a JSON value."""
        self.set(key, json.dumps(value, default=str), ttl_seconds)

    def delete(self, key: str) -> None:
        """Delete a cached key."""
        try:
            self.client.delete(self._key(key))
        except redis.RedisError:
            pass

    def invalidate_prefix(self, key_prefix: str) -> None:
        """Delete all keys starting with ``key_prefix``."""
        pattern = escape_glob(self._key(key_prefix)) + "*"
        try:
            keys = list(self.client.scan_iter(match=pattern))
            if keys:
                self.client.delete(*keys)
        except redis.RedisError:
            pass

    def health_check(self) -> bool:
        """Check if Redis is reachable."""
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            return False
