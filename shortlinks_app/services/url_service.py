import logging
from datetime import datetime
from typing import Optional

from shortlinks_app.cache.layer import CacheLayer
from shortlinks_app.config import settings
from shortlinks_app.errors import (
    CodeConflictError,
    ConflictError,
    ExpiredError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from shortlinks_app.queue.channel import EventChannel
from shortlinks_app.queue.models import ClickEvent, URLAnalyticsEvent, UserActivityEvent
from shortlinks_app.schemas.url import (
    ClickMetadata,
    NewShortUrl,
    Pagination,
    ShortUrlRecord,
    URLAnalytics,
    URLPage,
    URLUpdate,
    as_utc,
    check_original_url,
)
from shortlinks_app.services.background import BestEffortTasks
from shortlinks_app.services.short_code_strategies import (
    RandomShortCodeStrategy,
    ShortCodeStrategy,
    validate_short_code,
)
from shortlinks_app.storage.url_store import UrlStore

logger = logging.getLogger(__name__)


class URLService:
    """
    URL lifecycle and redirect orchestration.

    Store, cache, event channel and side-effect runner are injected.
    Ordering rule for every mutation:
    1. Store mutation (fatal: its errors propagate)
    2. Cache write-through / invalidation (best-effort task)
    3. Event publish (best-effort task)

    Ownership policy: any lookup scoped to an owner returns NotFoundError
    both when the row doesn't exist and when it belongs to someone else.
    Redirects also report inactive URLs as NotFoundError.
    """

    def __init__(
        self,
        store: UrlStore,
        cache: CacheLayer,
        events: EventChannel,
        side_effects: Optional[BestEffortTasks] = None,
        code_strategy: Optional[ShortCodeStrategy] = None,
        code_length: int = settings.short_code_length,
        max_retries: int = settings.max_retries,
    ):
        self.store = store
        self.cache = cache
        self.events = events
        self.side_effects = side_effects or BestEffortTasks()
        self.code_strategy = code_strategy or RandomShortCodeStrategy()
        self.code_length = code_length
        self.max_retries = max_retries

    async def create_short_url(
        self,
        original_url: str,
        owner_id: str,
        custom_short_code: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> ShortUrlRecord:
        """
        Create a new short URL.

        Always creates a new row even if the long URL already exists, so
        different campaigns for the same destination are tracked apart.

        Raises:
            ValidationError: Bad URL or malformed custom code
            CodeConflictError: Custom code already taken
            StoreError: Store failed or no unique code after max_retries
        """
        try:
            original_url = check_original_url(str(original_url))
        except ValueError as e:
            raise ValidationError(str(e), original_url=original_url) from e
        expires_at = as_utc(expires_at)

        if custom_short_code is not None:
            short_code = validate_short_code(custom_short_code)
            try:
                record = self.store.insert(NewShortUrl(
                    original_url=original_url,
                    short_code=short_code,
                    owner_id=owner_id,
                    expires_at=expires_at,
                ))
            except ConflictError as e:
                raise CodeConflictError(short_code=short_code) from e
        else:
            record = self._insert_with_generated_code(original_url, owner_id, expires_at)

        logger.info("Created short URL %s for owner %s", record.short_code, owner_id)
        self._after_write(record, "created")
        return record

    def _insert_with_generated_code(
        self, original_url: str, owner_id: str, expires_at: Optional[datetime]
    ) -> ShortUrlRecord:
        """Generate, try the insert, regenerate on collision"""
        for attempt in range(1, self.max_retries + 1):
            short_code = self.code_strategy.generate(self.code_length)
            try:
                return self.store.insert(NewShortUrl(
                    original_url=original_url,
                    short_code=short_code,
                    owner_id=owner_id,
                    expires_at=expires_at,
                ))
            except ConflictError:
                logger.info(
                    "Short code collision on %s (attempt %d/%d)", short_code, attempt, self.max_retries
                )
        raise StoreError(f"Could not generate unique short code after {self.max_retries} attempts")

    async def resolve_redirect(self, short_code: str, client: Optional[ClickMetadata] = None) -> str:
        """
        Resolve a short code to its original URL and record the click.

        Flow:
        1. Cache lookup; on miss read the store and backfill the cache
        2. Absent or inactive -> NotFoundError, expired -> ExpiredError
        3. Atomic click increment in the store (fatal)
        4. Cached click bump and click event (best-effort)
        """
        record = await self.cache.get_url(short_code)
        if record is None:
            record = self.store.find_by_short_code(short_code)
            if record is None:
                raise NotFoundError("Short URL not found")
            self.side_effects.dispatch("cache populate", self.cache.populate_url(record))

        if not record.is_active:
            raise NotFoundError("Short URL not found")
        if record.is_expired():
            raise ExpiredError()

        self.store.increment_clicks(short_code)

        client = client or ClickMetadata()
        self.side_effects.dispatch("cached click increment", self.cache.increment_cached_clicks(short_code))
        self.side_effects.dispatch("click event", self.events.publish_click(ClickEvent(
            short_code=record.short_code,
            url_id=record.id,
            owner_id=record.owner_id,
            original_url=record.original_url,
            user_agent=client.user_agent,
            ip_address=client.ip_address,
            referrer=client.referrer,
        )))
        return record.original_url

    async def list_urls(
        self,
        owner_id: str,
        page: int = 1,
        limit: Optional[int] = None,
        is_active: Optional[bool] = None,
    ) -> URLPage:
        """Owner's URLs, newest first, through the list cache"""
        limit = limit or settings.default_page_size
        if page < 1 or not 1 <= limit <= settings.max_page_size:
            raise ValidationError(
                f"page must be >= 1 and limit between 1 and {settings.max_page_size}",
                page=page,
                limit=limit,
            )

        cached = await self.cache.get_owner_list(owner_id, page, limit, is_active)
        if cached is not None:
            return cached

        rows, total = self.store.list_by_owner(owner_id, page, limit, is_active)
        url_page = URLPage(rows=rows, pagination=Pagination.build(page, limit, total))
        self.side_effects.dispatch(
            "list cache populate",
            self.cache.cache_owner_list(owner_id, page, limit, is_active, url_page),
        )
        return url_page

    async def get_url(self, url_id: str, owner_id: str) -> ShortUrlRecord:
        record = self.store.find_owned(url_id, owner_id)
        if record is None:
            raise NotFoundError()
        return record

    async def update_url(self, url_id: str, owner_id: str, patch: URLUpdate) -> ShortUrlRecord:
        record = self.store.update(url_id, owner_id, patch)
        if record is None:
            raise NotFoundError()
        logger.info("Updated short URL %s", record.short_code)
        self._after_write(record, "updated", metadata={"fields": sorted(patch.changes())})
        return record

    async def delete_url(self, url_id: str, owner_id: str) -> ShortUrlRecord:
        """Hard delete; the short code can be reused afterwards"""
        record = self.store.delete(url_id, owner_id)
        if record is None:
            raise NotFoundError()
        logger.info("Deleted short URL %s", record.short_code)
        self.side_effects.dispatch("cache eviction", self.cache.evict(record))
        self._publish_lifecycle(record, "deleted")
        return record

    async def get_url_analytics(self, url_id: str, owner_id: str) -> URLAnalytics:
        """
        Analytics view through the analytics cache.

        A cached snapshot belonging to another owner is treated as a miss,
        which then ends in NotFoundError from the owner-scoped store lookup.
        """
        cached = await self.cache.get_analytics(url_id)
        if cached is not None and cached.owner_id == owner_id:
            return cached

        record = self.store.find_owned(url_id, owner_id)
        if record is None:
            raise NotFoundError()

        analytics = URLAnalytics.model_validate(record.model_dump())
        self.side_effects.dispatch("analytics cache populate", self.cache.cache_analytics(analytics))
        self.side_effects.dispatch("analytics event", self.events.publish_url_analytics(URLAnalyticsEvent(
            url_id=record.id,
            owner_id=owner_id,
            action="viewed",
        )))
        return analytics

    def _after_write(self, record: ShortUrlRecord, action: str, metadata: Optional[dict] = None) -> None:
        self.side_effects.dispatch("cache write-through", self.cache.write_through(record))
        self._publish_lifecycle(record, action, metadata)

    def _publish_lifecycle(self, record: ShortUrlRecord, action: str, metadata: Optional[dict] = None) -> None:
        metadata = {"shortCode": record.short_code, **(metadata or {})}
        self.side_effects.dispatch("analytics event", self.events.publish_url_analytics(URLAnalyticsEvent(
            url_id=record.id,
            owner_id=record.owner_id,
            action=action,
            metadata=metadata,
        )))
        self.side_effects.dispatch("activity event", self.events.publish_user_activity(UserActivityEvent(
            owner_id=record.owner_id,
            action=f"url.{action}",
            resource="url",
            resource_id=record.id,
            metadata=metadata,
        )))
