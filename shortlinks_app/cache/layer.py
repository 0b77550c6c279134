"""
Cache-aside policy over URL, list and analytics snapshots.

Key families:
    url:{shortCode}                                  TTL 1h
    analytics:{urlId}                                TTL 5m
    user_urls:{ownerId}:{page}:{limit}:{true|false|all}  TTL 5m
    clicks:{shortCode}                               independent counter, no TTL

The cache is never authoritative. Every method here swallows backend
failures (logged) so a dead cache turns reads into misses and writes into
no-ops without aborting the caller.
"""

import logging
from typing import Optional

from shortlinks_app.errors import CacheUnavailableError
from shortlinks_app.schemas.url import ShortUrlRecord, URLAnalytics, URLPage
from .strategies import CacheStrategy

logger = logging.getLogger(__name__)

CACHE_ERRORS = (CacheUnavailableError, ValueError)


def url_key(short_code: str) -> str:
    return f"url:{short_code}"


def analytics_key(url_id: str) -> str:
    return f"analytics:{url_id}"


def clicks_key(short_code: str) -> str:
    return f"clicks:{short_code}"


def owner_list_key(owner_id: str, page: int, limit: int, is_active: Optional[bool]) -> str:
    flag = "all" if is_active is None else str(is_active).lower()
    return f"user_urls:{owner_id}:{page}:{limit}:{flag}"


def owner_list_pattern(owner_id: str) -> str:
    return f"user_urls:{owner_id}:*"


class CacheLayer:
    """
    Explicit cache handle injected into the service layer.

    Lifecycle: connect() / disconnect() / is_healthy().
    """

    def __init__(
        self,
        backend: CacheStrategy,
        url_ttl: int = 3600,
        list_ttl: int = 300,
        analytics_ttl: int = 300,
    ):
        self.backend = backend
        self.url_ttl = url_ttl
        self.list_ttl = list_ttl
        self.analytics_ttl = analytics_ttl

    async def connect(self) -> None:
        try:
            await self.backend.connect()
        except CACHE_ERRORS as e:
            logger.warning("Cache connect failed, running without cache: %s", e)

    async def disconnect(self) -> None:
        await self.backend.close()

    async def is_healthy(self) -> bool:
        return await self.backend.ping()

    # ------------------------------------------------------------------
    # Single URL snapshots
    # ------------------------------------------------------------------

    async def get_url(self, short_code: str) -> Optional[ShortUrlRecord]:
        try:
            cached = await self.backend.get(url_key(short_code))
            return ShortUrlRecord.model_validate_json(cached) if cached else None
        except CACHE_ERRORS as e:
            logger.warning("Error getting cached URL %s: %s", short_code, e)
            return None

    async def cache_url(self, record: ShortUrlRecord) -> None:
        """Write-through a single URL snapshot (overwrites)"""
        try:
            await self.backend.set(url_key(record.short_code), record.model_dump_json(), ttl=self.url_ttl)
        except CACHE_ERRORS as e:
            logger.warning("Error caching URL %s: %s", record.short_code, e)

    async def populate_url(self, record: ShortUrlRecord) -> None:
        """
        Backfill after a read miss. Never overwrites: a write-through that
        landed since the store read is newer than this record.
        """
        try:
            await self.backend.set(
                url_key(record.short_code), record.model_dump_json(), ttl=self.url_ttl, only_if_absent=True
            )
        except CACHE_ERRORS as e:
            logger.warning("Error populating URL cache %s: %s", record.short_code, e)

    async def invalidate_url(self, short_code: str) -> None:
        try:
            await self.backend.delete(url_key(short_code))
        except CACHE_ERRORS as e:
            logger.warning("Error invalidating URL cache %s: %s", short_code, e)

    # ------------------------------------------------------------------
    # Click counters
    # ------------------------------------------------------------------

    async def increment_cached_clicks(self, short_code: str) -> None:
        """
        Best-effort click bump: the independent counter, plus the cached
        snapshot if one exists. Never reads the store; may drift from it.

        The snapshot is replaced only if it is still the one read here, and
        keeps its remaining TTL.
        """
        try:
            await self.backend.incr(clicks_key(short_code))
            cached = await self.backend.get(url_key(short_code))
            if cached:
                record = ShortUrlRecord.model_validate_json(cached)
                record.clicks += 1
                if not await self.backend.compare_and_set(url_key(short_code), cached, record.model_dump_json()):
                    logger.debug("Snapshot for %s changed during click bump, left as is", short_code)
        except CACHE_ERRORS as e:
            logger.warning("Error incrementing cached clicks for %s: %s", short_code, e)

    async def get_cached_click_count(self, short_code: str) -> int:
        try:
            count = await self.backend.get(clicks_key(short_code))
            return int(count) if count else 0
        except CACHE_ERRORS as e:
            logger.warning("Error getting click count for %s: %s", short_code, e)
            return 0

    # ------------------------------------------------------------------
    # Analytics snapshots
    # ------------------------------------------------------------------

    async def get_analytics(self, url_id: str) -> Optional[URLAnalytics]:
        try:
            cached = await self.backend.get(analytics_key(url_id))
            return URLAnalytics.model_validate_json(cached) if cached else None
        except CACHE_ERRORS as e:
            logger.warning("Error getting cached analytics %s: %s", url_id, e)
            return None

    async def cache_analytics(self, analytics: URLAnalytics) -> None:
        try:
            await self.backend.set(analytics_key(analytics.id), analytics.model_dump_json(), ttl=self.analytics_ttl)
        except CACHE_ERRORS as e:
            logger.warning("Error caching analytics %s: %s", analytics.id, e)

    async def invalidate_analytics(self, url_id: str) -> None:
        try:
            await self.backend.delete(analytics_key(url_id))
        except CACHE_ERRORS as e:
            logger.warning("Error invalidating analytics cache %s: %s", url_id, e)

    # ------------------------------------------------------------------
    # Per-owner paginated lists
    # ------------------------------------------------------------------

    async def get_owner_list(
        self, owner_id: str, page: int, limit: int, is_active: Optional[bool]
    ) -> Optional[URLPage]:
        try:
            cached = await self.backend.get(owner_list_key(owner_id, page, limit, is_active))
            return URLPage.model_validate_json(cached) if cached else None
        except CACHE_ERRORS as e:
            logger.warning("Error getting cached URL list for %s: %s", owner_id, e)
            return None

    async def cache_owner_list(
        self, owner_id: str, page: int, limit: int, is_active: Optional[bool], url_page: URLPage
    ) -> None:
        try:
            await self.backend.set(
                owner_list_key(owner_id, page, limit, is_active),
                url_page.model_dump_json(),
                ttl=self.list_ttl,
            )
        except CACHE_ERRORS as e:
            logger.warning("Error caching URL list for %s: %s", owner_id, e)

    async def invalidate_owner_lists(self, owner_id: str) -> None:
        """Drop every cached page for the owner; lists are never patched"""
        try:
            await self.backend.delete_pattern(owner_list_pattern(owner_id))
        except CACHE_ERRORS as e:
            logger.warning("Error invalidating URL lists for %s: %s", owner_id, e)

    # ------------------------------------------------------------------
    # Composite policies used by the service
    # ------------------------------------------------------------------

    async def write_through(self, record: ShortUrlRecord) -> None:
        """After create/update: fresh snapshot in, derived caches out"""
        await self.cache_url(record)
        await self.invalidate_analytics(record.id)
        await self.invalidate_owner_lists(record.owner_id)

    async def evict(self, record: ShortUrlRecord) -> None:
        """After delete"""
        await self.invalidate_url(record.short_code)
        await self.invalidate_analytics(record.id)
        await self.invalidate_owner_lists(record.owner_id)
