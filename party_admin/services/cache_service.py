"""Redis cache service for advisory read caching."""

import json
import logging
from typing import Optional, Any
import redis

from party_admin.core.config import settings

logger = logging.getLogger("party_admin.cache")


class CacheService:
    """Redis-backed caching service.

    Every failure degrades to a cache miss. Nothing read from here may be
    used to authorize a mutation.
    """

    def __init__(self, url: Optional[str] = None, enabled: Optional[bool] = None):
        self._url = url or settings.REDIS_URL
        self.enabled = settings.CACHE_ENABLED if enabled is None else enabled
        self._client: Optional[redis.Redis] = None

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(
                self._url,
                decode_responses=True,
                max_connections=100,
            )
        return self._client

    def get(self, key: str) -> Optional[str]:
        """Get a cached value by key."""
        if not self.enabled:
            return None
        try:
            return self.client.get(key)
        except redis.RedisError as e:
            logger.debug("Cache get %s failed: %s", key, e)
            return None

    def set(self, key: str, value: str, ttl_seconds: int = 600) -> None:
        """Set a cached value with TTL."""
        if not self.enabled:
            return
        try:
            self.client.setex(key, ttl_seconds, value)
        except redis.RedisError as e:
            logger.debug("Cache set %s failed: %s", key, e)

    def get_json(self, key: str) -> Optional[Any]:
        """Get and parse a JSON cached value."""
        raw = self.get(key)
        if raw:
            try:
                return json.loads(raw)
            except ValueError:
                return None
        return None

    def set_json(self, key: str, value: Any, ttl_seconds: int = 600) -> None:
        """Serialize and cache a JSON value."""
        self.set(key, json.dumps(value, default=str), ttl_seconds)

    def delete(self, key: str) -> None:
        """Delete a cached key."""
        if not self.enabled:
            return
        try:
            self.client.delete(key)
        except redis.RedisError as e:
            logger.debug("Cache delete %s failed: %s", key, e)

    def health_check(self) -> bool:
        """Check if Redis is reachable."""
        if not self.enabled:
            return False
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            return False


cache_service = CacheService()
