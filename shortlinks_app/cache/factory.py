"""
Factory for creating cache instances.
"""

from enum import Enum
from .layer import CacheLayer
from .strategies import CacheStrategy, RedisCache, InMemoryCache, NullCache
from shortlinks_app.config import settings


class CacheBackend(Enum):
    """Available cache backends"""
    REDIS = "redis"
    MEMORY = "memory"
    NULL = "null"


class CacheFactory:
    """
    Simple factory for creating cache backends and the policy layer on top.

    Gets configuration from settings (not passed as parameters). Instances
    are not cached here; the service container owns the single instance.
    """

    @classmethod
    def create(cls, backend: CacheBackend) -> CacheStrategy:
        """
        Create a cache backend.

        A Redis backend is returned even if Redis is down right now: the
        layer degrades to misses/no-ops until it comes back.
        """
        if backend == CacheBackend.REDIS:
            return RedisCache(settings.redis_url, socket_timeout=settings.redis_socket_timeout)
        elif backend == CacheBackend.MEMORY:
            return InMemoryCache()
        elif backend == CacheBackend.NULL:
            return NullCache()
        else:
            raise ValueError(f"Unknown cache backend: {backend}")

    @classmethod
    def create_layer(cls, backend: CacheBackend) -> CacheLayer:
        return CacheLayer(
            cls.create(backend),
            url_ttl=settings.url_cache_ttl,
            list_ttl=settings.list_cache_ttl,
            analytics_ttl=settings.analytics_cache_ttl,
        )
