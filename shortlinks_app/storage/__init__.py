"""
Storage module.

UrlStore is the durable source of truth for short URLs; hit storage keeps the
raw click rows written by the event worker.
"""

from .url_store import UrlStore, SQLAlchemyUrlStore
from .strategies import HitStorageStrategy, SQLiteHitStorage

__all__ = [
    "UrlStore",
    "SQLAlchemyUrlStore",
    "HitStorageStrategy",
    "SQLiteHitStorage",
]
