"""
Cache strategies using Strategy Pattern.
Allows switching between different cache backends (Redis, In-Memory, Null).

Backends only store strings. They raise CacheUnavailableError when the
backing store can't be reached; CacheLayer turns that into a no-op.
"""

import fnmatch
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import WatchError

from shortlinks_app.errors import CacheUnavailableError

logger = logging.getLogger(__name__)


class CacheStrategy(ABC):
    """
    Abstract base class for cache strategies.

    All methods are async because cache operations involve I/O (network for Redis).
    """

    async def connect(self) -> None:
        """Open connections (no-op for local backends)"""

    async def close(self) -> None:
        """Release connections (no-op for local backends)"""

    @abstractmethod
    async def ping(self) -> bool:
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """
        Get value from cache.

        Returns:
            Cached value or None if not found / expired
        """
        pass

    @abstractmethod
    async def set(
        self, key: str, value: str, ttl: Optional[int] = 3600, only_if_absent: bool = False
    ) -> bool:
        """
        Set value in cache with TTL (Time To Live) in seconds.
        ``ttl=None`` keeps the key until it is deleted.

        Args:
            only_if_absent: Leave an existing live key untouched (SET NX)

        Returns:
            True if the value was written
        """
        pass

    @abstractmethod
    async def compare_and_set(self, key: str, expected: str, value: str) -> bool:
        """
        Replace ``expected`` with ``value`` atomically, keeping the key's
        remaining TTL.

        Returns:
            False (nothing written) if the key is gone or holds something else
        """
        pass

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """
        Delete keys from cache.

        Returns:
            Number of keys removed
        """
        pass

    @abstractmethod
    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern (``user_urls:42:*``)"""
        pass

    @abstractmethod
    async def incr(self, key: str) -> int:
        """Atomically increment an integer counter, creating it at 0"""
        pass

    @abstractmethod
    async def exists(self, key: str) -> bool:
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Clear all cache entries"""
        pass


class RedisCache(CacheStrategy):
    """
    Redis cache implementation on redis.asyncio.

    Production cache:
    - Distributed (multiple servers share it)
    - TTL enforced by Redis
    - Non-blocking I/O
    """

    def __init__(self, redis_url: str, socket_timeout: float = 2.0):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.redis = None

    async def connect(self) -> None:
        if self.redis is None:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=self.socket_timeout,
                socket_timeout=self.socket_timeout,
            )

    async def close(self) -> None:
        if self.redis is not None:
            client, self.redis = self.redis, None
            try:
                await client.aclose()
            except redis.RedisError as e:
                logger.warning("Error closing Redis cache connection: %s", e)

    def _client(self):
        if self.redis is None:
            raise CacheUnavailableError("Redis cache is not connected")
        return self.redis

    async def ping(self) -> bool:
        try:
            return bool(await self._client().ping())
        except (redis.RedisError, CacheUnavailableError):
            return False

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._client().get(key)
        except redis.RedisError as e:
            raise CacheUnavailableError(str(e)) from e

    async def set(
        self, key: str, value: str, ttl: Optional[int] = 3600, only_if_absent: bool = False
    ) -> bool:
        try:
            written = await self._client().set(key, value, ex=ttl or None, nx=only_if_absent)
            return bool(written)
        except redis.RedisError as e:
            raise CacheUnavailableError(str(e)) from e

    async def compare_and_set(self, key: str, expected: str, value: str) -> bool:
        # WATCH aborts the MULTI if anyone writes the key after our GET
        try:
            async with self._client().pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    if await pipe.get(key) != expected:
                        await pipe.unwatch()
                        return False
                    pipe.multi()
                    pipe.set(key, value, keepttl=True)
                    await pipe.execute()
                    return True
                except WatchError:
                    return False
        except redis.RedisError as e:
            raise CacheUnavailableError(str(e)) from e

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return await self._client().delete(*keys)
        except redis.RedisError as e:
            raise CacheUnavailableError(str(e)) from e

    async def delete_pattern(self, pattern: str) -> int:
        # SCAN instead of KEYS so a large keyspace doesn't block Redis
        try:
            client = self._client()
            keys = [key async for key in client.scan_iter(match=pattern, count=500)]
            return await client.delete(*keys) if keys else 0
        except redis.RedisError as e:
            raise CacheUnavailableError(str(e)) from e

    async def incr(self, key: str) -> int:
        try:
            return await self._client().incr(key)
        except redis.RedisError as e:
            raise CacheUnavailableError(str(e)) from e

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self._client().exists(key))
        except redis.RedisError as e:
            raise CacheUnavailableError(str(e)) from e

    async def clear(self) -> None:
        """Clear all Redis keys (use with caution!)"""
        try:
            await self._client().flushdb()
        except redis.RedisError as e:
            raise CacheUnavailableError(str(e)) from e


class InMemoryCache(CacheStrategy):
    """
    In-memory cache implementation using Python dict, with lazy TTL expiry.

    Not distributed and lost on restart. Used in development/testing.
    The clock is injectable so tests can step past a TTL.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self._cache: Dict[str, Tuple[str, Optional[float]]] = {}

    def _live(self, key: str) -> Optional[str]:
        entry = self._cache.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self.clock() >= expires_at:
            del self._cache[key]
            return None
        return value

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def set(
        self, key: str, value: str, ttl: Optional[int] = 3600, only_if_absent: bool = False
    ) -> bool:
        if only_if_absent and self._live(key) is not None:
            return False
        expires_at = self.clock() + ttl if ttl else None
        self._cache[key] = (value, expires_at)
        return True

    async def compare_and_set(self, key: str, expected: str, value: str) -> bool:
        if self._live(key) != expected:
            return False
        _, expires_at = self._cache[key]
        self._cache[key] = (value, expires_at)
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._cache.pop(key, None) is not None:
                removed += 1
        return removed

    async def delete_pattern(self, pattern: str) -> int:
        matches = [key for key in self._cache if fnmatch.fnmatchcase(key, pattern)]
        return await self.delete(*matches)

    async def incr(self, key: str) -> int:
        current = self._live(key)
        _, expires_at = self._cache.get(key, (None, None))
        value = int(current or 0) + 1
        self._cache[key] = (str(value), expires_at)
        return value

    async def exists(self, key: str) -> bool:
        return self._live(key) is not None

    async def clear(self) -> None:
        self._cache.clear()


class NullCache(CacheStrategy):
    """
    Null Object Pattern - cache that does nothing.

    Every read is a miss; every write is dropped.
    """

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> Optional[str]:
        return None

    async def set(
        self, key: str, value: str, ttl: Optional[int] = 3600, only_if_absent: bool = False
    ) -> bool:
        return False

    async def compare_and_set(self, key: str, expected: str, value: str) -> bool:
        return False

    async def delete(self, *keys: str) -> int:
        return 0

    async def delete_pattern(self, pattern: str) -> int:
        return 0

    async def incr(self, key: str) -> int:
        return 0

    async def exists(self, key: str) -> bool:
        return False

    async def clear(self) -> None:
        return None
