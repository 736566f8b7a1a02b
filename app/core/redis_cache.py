import json
import logging
import time
import uuid
from typing import Optional, Dict, Any
import redis
from redis.exceptions import RedisError, ConnectionError as RedisConnectionError
from app.core.config import settings

logger = logging.getLogger(__name__)


class RedisCache:
    """Redis-backed cache for rate limiting, billing metadata and locks.

    Every operation degrades gracefully: when Redis is unreachable reads
    return None and writes are skipped, so callers never fail on cache
    outages.
    """

    def __init__(self, redis_url: Optional[str] = None):
        """Initialize Redis cache (lazy connection)"""
        self._redis_url = redis_url or settings.redis_url
        self._client: Optional[redis.Redis] = None
        self._connected = False

    def _client_kwargs(self) -> Dict[str, Any]:
        kwargs = {
            'decode_responses': False,
            'socket_connect_timeout': 2,
            'socket_timeout': 2,
            'retry_on_timeout': False,
            'health_check_interval': 0,
        }
        # settings.redis_password takes precedence over a password in the URL
        if settings.redis_password:
            kwargs['password'] = settings.redis_password
        return kwargs

    def _connect(self):
        """Connect to Redis server"""
        try:
            self._client = redis.from_url(self._redis_url, **self._client_kwargs())
            self._client.ping()
            self._connected = True
            logger.info("RedisCache: Connected to Redis")
        except RedisConnectionError as e:
            logger.error(f"RedisCache: Failed to connect to Redis - {e}")
            self._connected = False
            self._client = None
        except RedisError as e:
            error_msg = str(e)
            if 'auth' in error_msg.lower() or 'password' in error_msg.lower():
                logger.error(f"RedisCache: Authentication failed - {error_msg}. Ensure REDIS_PASSWORD is set correctly.")
            else:
                logger.warning(f"RedisCache: Connection test failed - {error_msg}")
            self._connected = False
            self._client = None
        except ValueError as e:
            logger.error(f"RedisCache: Invalid Redis URL - {e}")
            self._connected = False
            self._client = None

    def _ensure_connected(self) -> bool:
        """Ensure Redis connection is established (lazy connection)"""
        if self._connected and self._client is not None:
            return True
        self._connect()
        return self._client is not None

    def _on_error(self, action: str, key: str, error: Exception):
        logger.error(f"RedisCache: Error {action} key {key}: {error}")
        # Force a reconnect on the next call
        self._connected = False
        self._client = None

    def get(self, key: str) -> Optional[Any]:
        """Get cached JSON value if not expired"""
        if not self._ensure_connected():
            logger.warning(f"RedisCache: Cannot get key {key} - Redis not available")
            return None

        try:
            data = self._client.get(key)
            if data is None:
                logger.debug(f"Cache miss: {key}")
                return None

            try:
                decoded = json.loads(data.decode('utf-8'))
                logger.debug(f"Cache hit: {key}")
                return decoded
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                logger.warning(f"RedisCache: Failed to decode value for key {key}: {e}")
                self._client.delete(key)
                return None
        except RedisError as e:
            self._on_error('getting', key, e)
            return None

    def get_int(self, key: str) -> Optional[int]:
        """Get cached integer counter (for rate limiting)"""
        if not self._ensure_connected():
            logger.warning(f"RedisCache: Cannot get integer key {key} - Redis not available")
            return None

        try:
            data = self._client.get(key)
            if data is None:
                return None
            try:
                return int(data.decode('utf-8'))
            except (ValueError, UnicodeDecodeError) as e:
                logger.warning(f"RedisCache: Failed to decode integer for key {key}: {e}")
                self._client.delete(key)
                return None
        except RedisError as e:
            self._on_error('getting integer', key, e)
            return None

    def set(self, key: str, value: Any, ttl_seconds: int):
        """Set cache value with TTL in seconds (ints stored raw, everything else as JSON)"""
        if not self._ensure_connected():
            logger.warning(f"RedisCache: Cannot set key {key} - Redis not available")
            return

        try:
            if isinstance(value, int) and not isinstance(value, bool):
                serialized = str(value).encode('utf-8')
            else:
                serialized = json.dumps(value, default=str).encode('utf-8')

            self._client.setex(key, max(1, int(ttl_seconds)), serialized)
            logger.debug(f"Cache set: {key}, TTL: {ttl_seconds} seconds")
        except RedisError as e:
            self._on_error('setting', key, e)

    def delete(self, key: str):
        """Delete cache entry"""
        if not self._ensure_connected():
            logger.warning(f"RedisCache: Cannot delete key {key} - Redis not available")
            return

        try:
            self._client.delete(key)
            logger.debug(f"Cache deleted: {key}")
        except RedisError as e:
            self._on_error('deleting', key, e)

    def delete_prefix(self, prefix: str):
        """Delete every key under a prefix"""
        if not self._ensure_connected():
            logger.warning(f"RedisCache: Cannot clear prefix {prefix} - Redis not available")
            return

        try:
            keys = list(self._client.scan_iter(match=f"{prefix}*"))
            if keys:
                self._client.delete(*keys)
            logger.debug(f"Cache cleared: {prefix}* ({len(keys)} keys)")
        except RedisError as e:
            self._on_error('clearing prefix', prefix, e)

    def incr(self, key: str, ttl_seconds: int, amount: int = 1) -> Optional[int]:
        """Atomically increment a counter, setting its TTL on first use"""
        if not self._ensure_connected():
            logger.warning(f"RedisCache: Cannot increment key {key} - Redis not available")
            return None

        try:
            new_value = self._client.incrby(key, amount)
            if new_value == amount:
                self._client.expire(key, ttl_seconds)
            return new_value
        except RedisError as e:
            self._on_error('incrementing', key, e)
            return None

    def ping(self) -> bool:
        """Check if Redis connection is alive"""
        if not self._ensure_connected():
            return False
        try:
            return bool(self._client.ping())
        except RedisError:
            return False

    def acquire_lock(self, lock_key: str, timeout_seconds: int = 10, block_seconds: float = 5) -> Optional[str]:
        """
        Acquire a distributed lock using SET NX EX.

        Args:
            lock_key: Unique key for the lock
            timeout_seconds: How long the lock will be held (auto-release)
            block_seconds: How long to wait trying to acquire the lock

        Returns:
            The lock token if acquired, None otherwise (including when Redis is down)
        """
        if not self._ensure_connected():
            logger.warning(f"RedisCache: Cannot acquire lock {lock_key} - Redis not available")
            return None

        token = str(uuid.uuid4())
        deadline = time.monotonic() + block_seconds
        try:
            while True:
                if self._client.set(lock_key, token, nx=True, ex=timeout_seconds):
                    logger.debug(f"RedisCache: Lock acquired - {lock_key}")
                    return token
                if time.monotonic() >= deadline:
                    break
                time.sleep(0.05)
        except RedisError as e:
            self._on_error('acquiring lock', lock_key, e)
            return None

        logger.debug(f"RedisCache: Failed to acquire lock - {lock_key}")
        return None

    def release_lock(self, lock_key: str, token: str):
        """Release a lock if it is still held by this token"""
        if not self._ensure_connected():
            return

        try:
            current = self._client.get(lock_key)
            if current is not None and current.decode('utf-8') == token:
                self._client.delete(lock_key)
                logger.debug(f"RedisCache: Lock released - {lock_key}")
        except RedisError as e:
            self._on_error('releasing lock', lock_key, e)
