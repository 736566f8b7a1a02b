import logging
from typing import Any, Hashable, Optional

from app.core.config import settings
from app.core.redis_cache import RedisCache
from app.core.ttl_cache import TTLCache

logger = logging.getLogger(__name__)


class RedisTTLCache(TTLCache):
    """TTL cache backed by Redis, shared by every API instance.

    Values must be JSON-serializable. Reads miss and writes are skipped
    when Redis is unavailable.
    """

    def __init__(self, prefix: str, ttl_seconds: float, redis_cache: Optional[RedisCache] = None):
        super().__init__(ttl_seconds)
        self.prefix = prefix
        self._redis = redis_cache or get_cache()

    def _key(self, key: Hashable) -> str:
        return f"{self.prefix}:{key}"

    def get(self, key: Hashable) -> Optional[Any]:
        return self._redis.get(self._key(key))

    def set(self, key: Hashable, value: Any):
        self._redis.set(self._key(key), value, ttl_seconds=int(self.ttl_seconds))

    def invalidate(self, key: Hashable):
        self._redis.delete(self._key(key))

    def clear(self):
        self._redis.delete_prefix(f"{self.prefix}:")


# Global cache instance
_cache_instance: Optional[RedisCache] = None


def get_cache() -> RedisCache:
    """Get global Redis cache instance"""
    global _cache_instance
    if _cache_instance is None:
        _cache_instance = RedisCache()
    return _cache_instance


def get_billing_metadata_cache() -> TTLCache:
    """Shared cache for Stripe price/product lookups made by the webhook handler"""
    return RedisTTLCache("stripe_meta", settings.billing_metadata_cache_ttl_seconds)
