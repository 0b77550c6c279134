"""
Cache module for URL shortener.
Implements Strategy Pattern for flexible cache backends, with the
cache-aside policy in CacheLayer.
"""

from .strategies import CacheStrategy, RedisCache, InMemoryCache, NullCache
from .layer import CacheLayer
from .factory import CacheBackend, CacheFactory

__all__ = [
    "CacheBackend",
    "CacheFactory",
    "CacheLayer",
    "CacheStrategy",
    "InMemoryCache",
    "NullCache",
    "RedisCache",
]
