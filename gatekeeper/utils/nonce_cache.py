"""
Login Nonce Cache (Redis with in-memory fallback)

Short-lived key/value storage for the login challenge nonce. `pop_if_match`
compares and deletes in one step so that two concurrent verifications cannot
both claim one nonce; `set_if_absent` hands a claimed nonce back after a
failed attempt without clobbering a newer login.
"""

import logging
import math
import time
from collections.abc import Callable

import redis.asyncio as redis
from pyotp.utils import strings_equal

from gatekeeper.config import settings

logger = logging.getLogger(__name__)

NONCE_KEY_PREFIX = "2fa:nonce:"


def nonce_key(user_id: int) -> str:
    return f"{NONCE_KEY_PREFIX}{user_id}"


class InMemoryNonceCache:
    """
    In-memory nonce storage used when Redis is not available.
    Note: Entries are lost on server restart and won't scale across instances.
    """

    def __init__(self, monotonic: Callable[[], float] = time.monotonic):
        self._values: dict[str, str] = {}
        self._expirations: dict[str, float] = {}
        self._monotonic = monotonic

    def _cleanup_expired(self):
        now = self._monotonic()
        expired = [key for key, exp in self._expirations.items() if exp <= now]
        for key in expired:
            self._values.pop(key, None)
            self._expirations.pop(key, None)

    async def connect(self):
        """No-op for in-memory"""
        logger.info("Using in-memory nonce storage (Redis not available)")

    async def disconnect(self):
        self._values.clear()
        self._expirations.clear()

    async def set(self, key: str, value: str, ttl: int) -> None:
        self._values[key] = value
        self._expirations[key] = self._monotonic() + ttl

    async def get(self, key: str) -> str | None:
        self._cleanup_expired()
        return self._values.get(key)

    async def set_if_absent(self, key: str, value: str, ttl: int) -> bool:
        self._cleanup_expired()
        if key in self._values:
            return False
        await self.set(key, value, ttl)
        return True

    async def ttl(self, key: str) -> int | None:
        """Whole seconds left before `key` expires, or None when it is gone."""
        self._cleanup_expired()
        if key not in self._expirations:
            return None
        return max(1, math.ceil(self._expirations[key] - self._monotonic()))

    async def delete(self, key: str) -> bool:
        self._expirations.pop(key, None)
        return self._values.pop(key, None) is not None

    async def pop_if_match(self, key: str, value: str) -> bool:
        # No await between the check and the delete, so this is atomic on the event loop
        self._cleanup_expired()
        current = self._values.get(key)
        if current is None or not strings_equal(current, value):
            return False
        self._values.pop(key, None)
        self._expirations.pop(key, None)
        return True


class RedisNonceCache:
    """Nonce storage in Redis; expiry is delegated to SETEX."""

    # Compare-and-delete in a single round trip
    POP_IF_MATCH_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""

    def __init__(self, url: str | None = None):
        self.url = url or settings.redis_url
        self._redis: redis.Redis | None = None
        self._pool: redis.ConnectionPool | None = None

    async def connect(self):
        """Establish connection to Redis"""
        if self._redis is not None:
            return

        try:
            self._pool = redis.ConnectionPool.from_url(self.url, decode_responses=True)
            self._redis = redis.Redis(connection_pool=self._pool)

            # Test connection
            await self._redis.ping()
            logger.info("Nonce cache connected to Redis")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            self._redis = None
            raise

    async def disconnect(self):
        """Close Redis connection"""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
        if self._pool:
            await self._pool.aclose()
            self._pool = None
        logger.info("Nonce cache disconnected from Redis")

    async def set(self, key: str, value: str, ttl: int) -> None:
        if not self._redis:
            await self.connect()
        await self._redis.setex(key, ttl, value)

    async def get(self, key: str) -> str | None:
        if not self._redis:
            await self.connect()
        return await self._redis.get(key)

    async def set_if_absent(self, key: str, value: str, ttl: int) -> bool:
        if not self._redis:
            await self.connect()
        return bool(await self._redis.set(key, value, ex=ttl, nx=True))

    async def ttl(self, key: str) -> int | None:
        if not self._redis:
            await self.connect()
        remaining = await self._redis.ttl(key)
        # -2: missing key, -1: no expiry
        return remaining if remaining > 0 else None

    async def delete(self, key: str) -> bool:
        if not self._redis:
            await self.connect()
        return bool(await self._redis.delete(key))

    async def pop_if_match(self, key: str, value: str) -> bool:
        if not self._redis:
            await self.connect()
        deleted = await self._redis.eval(self.POP_IF_MATCH_SCRIPT, 1, key, value)
        return bool(deleted)


# Global nonce cache instance (will be set on first access)
_nonce_cache: RedisNonceCache | InMemoryNonceCache | None = None


async def get_nonce_cache() -> RedisNonceCache | InMemoryNonceCache:
    """
    Dependency to get the nonce cache instance.
    Uses Redis if configured and reachable, falls back to in-memory storage.
    """
    global _nonce_cache

    if _nonce_cache is not None:
        return _nonce_cache

    if settings.redis_url:
        try:
            redis_cache = RedisNonceCache(settings.redis_url)
            await redis_cache.connect()
            _nonce_cache = redis_cache
            return _nonce_cache
        except Exception as e:
            logger.warning(f"Redis not available, using in-memory nonce storage: {e}")

    _nonce_cache = InMemoryNonceCache()
    await _nonce_cache.connect()
    return _nonce_cache


async def close_nonce_cache() -> None:
    global _nonce_cache
    if _nonce_cache is not None:
        await _nonce_cache.disconnect()
        _nonce_cache = None
