"""
Tests for URLService: create/redirect/list/update/delete/analytics
orchestration over an in-memory store, cache and event transport.
"""
import asyncio
import random
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from shortlinks_app.cache.layer import CacheLayer
from shortlinks_app.cache.strategies import NullCache
from shortlinks_app.database.connection import build_engine
from shortlinks_app.errors import (
    CodeConflictError,
    ConflictError,
    ExpiredError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from shortlinks_app.queue.models import ClickEvent
from shortlinks_app.schemas.url import ClickMetadata, NewShortUrl, URLUpdate
from shortlinks_app.services.background import BestEffortTasks
from shortlinks_app.services.short_code_strategies import ShortCodeStrategy
from shortlinks_app.services.url_service import URLService
from shortlinks_app.storage.url_store import SQLAlchemyUrlStore

from conftest import BrokenCache, YieldingCache, published


class ScriptedStrategy(ShortCodeStrategy):
    """Hands out a fixed sequence of codes, repeating the last one"""

    def __init__(self, *codes):
        self.codes = list(codes)
        self.calls = 0

    def generate(self, length=6):
        self.calls += 1
        return self.codes.pop(0) if len(self.codes) > 1 else self.codes[0]


def decoded(transport, name):
    return [message.decode(name) for message in published(transport, name)]


def past():
    return datetime.now(timezone.utc) - timedelta(minutes=1)


def future():
    return datetime.now(timezone.utc) + timedelta(days=1)


async def test_create_redirect_deactivate_scenario(url_service, store, side_effects):
    record = await url_service.create_short_url("https://example.com", "user-1")

    assert len(record.short_code) == 6
    assert record.short_code.isalnum()
    assert record.clicks == 0

    assert await url_service.resolve_redirect(record.short_code) == "https://example.com"
    assert store.find_by_short_code(record.short_code).clicks == 1

    await url_service.update_url(record.id, "user-1", URLUpdate(is_active=False))
    await side_effects.drain()

    with pytest.raises(NotFoundError):
        await url_service.resolve_redirect(record.short_code)


class TestCreate:

    async def test_interleaved_creates_get_unique_codes(self, url_service):
        records = await asyncio.gather(*(
            url_service.create_short_url("https://example.com", "user-1") for _ in range(50)
        ))

        assert len({r.short_code for r in records}) == 50
        assert len({r.id for r in records}) == 50

    async def test_same_url_twice_gets_two_rows(self, url_service):
        first = await url_service.create_short_url("https://example.com", "user-1")
        second = await url_service.create_short_url("https://example.com", "user-1")

        assert first.short_code != second.short_code

    async def test_regenerates_on_collision(self, store, cache, events, side_effects):
        store.insert(NewShortUrl(original_url="https://a.example", short_code="taken1", owner_id="user-2"))
        strategy = ScriptedStrategy("taken1", "taken1", "fresh1")
        service = URLService(store, cache, events, side_effects, code_strategy=strategy)

        record = await service.create_short_url("https://example.com", "user-1")

        assert record.short_code == "fresh1"
        assert strategy.calls == 3

    async def test_gives_up_after_max_retries(self, store, cache, events, side_effects):
        store.insert(NewShortUrl(original_url="https://a.example", short_code="taken1", owner_id="user-2"))
        strategy = ScriptedStrategy("taken1")
        service = URLService(store, cache, events, side_effects, code_strategy=strategy, max_retries=3)

        with pytest.raises(StoreError) as exc_info:
            await service.create_short_url("https://example.com", "user-1")

        assert not isinstance(exc_info.value, ConflictError)
        assert strategy.calls == 3

    async def test_custom_code(self, url_service):
        record = await url_service.create_short_url(
            "https://example.com", "user-1", custom_short_code="Promo2025"
        )

        assert record.short_code == "Promo2025"

    async def test_custom_code_conflict(self, url_service):
        await url_service.create_short_url("https://example.com", "user-1", custom_short_code="promo")

        with pytest.raises(CodeConflictError):
            await url_service.create_short_url("https://example.org", "user-2", custom_short_code="promo")

    @pytest.mark.parametrize("code", ["ab", "waytoolongcode", "my-code", "health"])
    async def test_malformed_custom_code(self, url_service, code):
        with pytest.raises(ValidationError):
            await url_service.create_short_url("https://example.com", "user-1", custom_short_code=code)

    @pytest.mark.parametrize("url", ["", "   ", "not a url", "example.com/path", "ftp://example.com"])
    async def test_rejects_bad_urls(self, url_service, url):
        with pytest.raises(ValidationError):
            await url_service.create_short_url(url, "user-1")

    async def test_naive_expiry_is_treated_as_utc(self, url_service):
        record = await url_service.create_short_url(
            "https://example.com", "user-1", expires_at=datetime(2030, 1, 1, 12, 0)
        )

        assert record.expires_at == datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)

    async def test_publishes_lifecycle_events(self, url_service, transport, side_effects):
        record = await url_service.create_short_url("https://example.com", "user-1")
        await side_effects.drain()

        [analytics] = decoded(transport, "url_analytics")
        [activity] = decoded(transport, "user_activities")
        assert analytics.action == "created"
        assert analytics.url_id == record.id
        assert analytics.metadata == {"shortCode": record.short_code}
        assert activity.action == "url.created"
        assert activity.resource == "url"
        assert activity.resource_id == record.id

    async def test_writes_through_to_cache(self, url_service, cache, side_effects):
        record = await url_service.create_short_url("https://example.com", "user-1")
        await side_effects.drain()

        assert await cache.get_url(record.short_code) == record

    async def test_store_failure_is_fatal(self, tmp_path, cache, events, side_effects):
        engine = build_engine(f"sqlite:///{tmp_path}/missing/dir/urls.db")
        service = URLService(SQLAlchemyUrlStore(sessionmaker(bind=engine)), cache, events, side_effects)

        with pytest.raises(StoreError):
            await service.create_short_url("https://example.com", "user-1")


class TestRedirect:

    async def test_returns_exact_stored_url(self, url_service):
        url = "https://Example.com/Path?q=1&b=2#frag"
        record = await url_service.create_short_url(url, "user-1")

        assert await url_service.resolve_redirect(record.short_code) == url

    async def test_unknown_code(self, url_service):
        with pytest.raises(NotFoundError):
            await url_service.resolve_redirect("nope42")

    async def test_expired(self, url_service, store):
        record = await url_service.create_short_url("https://example.com", "user-1", expires_at=past())

        with pytest.raises(ExpiredError):
            await url_service.resolve_redirect(record.short_code)
        assert store.find_by_short_code(record.short_code).clicks == 0

    async def test_not_yet_expired(self, url_service):
        record = await url_service.create_short_url("https://example.com", "user-1", expires_at=future())

        assert await url_service.resolve_redirect(record.short_code) == "https://example.com"

    async def test_inactive_wins_over_expired(self, url_service, side_effects):
        record = await url_service.create_short_url("https://example.com", "user-1", expires_at=past())
        await url_service.update_url(record.id, "user-1", URLUpdate(is_active=False))
        await side_effects.drain()

        with pytest.raises(NotFoundError):
            await url_service.resolve_redirect(record.short_code)

    @pytest.mark.parametrize("warm_cache", [True, False])
    async def test_interleaved_redirects_count_exactly(
        self, url_service, store, cache, cache_backend, side_effects, warm_cache
    ):
        record = await url_service.create_short_url("https://example.com", "user-1")
        await side_effects.drain()
        if not warm_cache:
            await cache_backend.clear()

        await asyncio.gather(*(url_service.resolve_redirect(record.short_code) for _ in range(25)))
        await side_effects.drain()

        assert store.find_by_short_code(record.short_code).clicks == 25
        assert await cache.get_cached_click_count(record.short_code) == 25

    async def test_deactivation_survives_inflight_click_bump(self, store, clock, events, side_effects):
        cache = CacheLayer(YieldingCache(clock=clock))
        service = URLService(store, cache, events, side_effects)
        record = await service.create_short_url("https://example.com", "user-1")

        assert await service.resolve_redirect(record.short_code) == "https://example.com"
        await service.update_url(record.id, "user-1", URLUpdate(is_active=False))
        await side_effects.drain()

        assert (await cache.get_url(record.short_code)).is_active is False
        with pytest.raises(NotFoundError):
            await service.resolve_redirect(record.short_code)

    async def test_cache_miss_backfills(self, url_service, cache, cache_backend, side_effects):
        record = await url_service.create_short_url("https://example.com", "user-1")
        await side_effects.drain()
        await cache_backend.clear()

        await url_service.resolve_redirect(record.short_code)
        await side_effects.drain()

        cached = await cache.get_url(record.short_code)
        assert cached is not None
        assert cached.original_url == "https://example.com"

    async def test_publishes_click_event(self, url_service, transport, side_effects):
        record = await url_service.create_short_url("https://example.com", "user-1")

        await url_service.resolve_redirect(
            record.short_code,
            ClickMetadata(user_agent="Mozilla/5.0", ip_address="10.0.0.1", referrer="https://news.example"),
        )
        await side_effects.drain()

        [event] = decoded(transport, "url_clicks")
        assert isinstance(event, ClickEvent)
        assert event.short_code == record.short_code
        assert event.url_id == record.id
        assert event.owner_id == "user-1"
        assert event.original_url == "https://example.com"
        assert event.user_agent == "Mozilla/5.0"
        assert event.ip_address == "10.0.0.1"
        assert event.referrer == "https://news.example"


class TestDegradedDependencies:

    async def test_transport_lost_mid_flight(self, url_service, store, transport, side_effects):
        transport.go_down()

        record = await url_service.create_short_url("https://example.com", "user-1")
        assert await url_service.resolve_redirect(record.short_code) == "https://example.com"
        await side_effects.drain()

        assert store.find_by_short_code(record.short_code).clicks == 1

    async def test_transport_never_connected(self, store, cache, channel, side_effects):
        service = URLService(store, cache, channel, side_effects)

        record = await service.create_short_url("https://example.com", "user-1")
        assert await service.resolve_redirect(record.short_code) == "https://example.com"
        await side_effects.drain()

    async def test_cache_down(self, store, events, side_effects):
        service = URLService(store, CacheLayer(BrokenCache()), events, side_effects)

        record = await service.create_short_url("https://example.com", "user-1")
        assert await service.resolve_redirect(record.short_code) == "https://example.com"
        page = await service.list_urls("user-1")
        analytics = await service.get_url_analytics(record.id, "user-1")
        await side_effects.drain()

        assert page.pagination.total == 1
        assert analytics.clicks == 1


class TestListing:

    async def test_newest_first_with_pagination(self, url_service):
        for i in range(3):
            await url_service.create_short_url(f"https://example.com/{i}", "user-1")

        first = await url_service.list_urls("user-1", page=1, limit=2)
        second = await url_service.list_urls("user-1", page=2, limit=2)

        assert [r.original_url for r in first.rows] == ["https://example.com/2", "https://example.com/1"]
        assert [r.original_url for r in second.rows] == ["https://example.com/0"]
        assert first.pagination.total == 3
        assert first.pagination.total_pages == 2

    async def test_served_from_cache_until_invalidated(self, url_service, store, side_effects):
        await url_service.create_short_url("https://example.com", "user-1")
        await side_effects.drain()
        await url_service.list_urls("user-1")
        await side_effects.drain()

        # Written behind the service's back: invisible until the list entry goes
        store.insert(NewShortUrl(original_url="https://x.example", short_code="direct1", owner_id="user-1"))
        assert (await url_service.list_urls("user-1")).pagination.total == 1

        await url_service.create_short_url("https://example.org", "user-1")
        await side_effects.drain()

        assert (await url_service.list_urls("user-1")).pagination.total == 3

    async def test_update_invalidates_filtered_lists(self, url_service, side_effects):
        first = await url_service.create_short_url("https://example.com", "user-1")
        await url_service.create_short_url("https://example.org", "user-1")
        await side_effects.drain()
        assert (await url_service.list_urls("user-1", is_active=True)).pagination.total == 2
        await side_effects.drain()

        await url_service.update_url(first.id, "user-1", URLUpdate(is_active=False))
        await side_effects.drain()

        active = await url_service.list_urls("user-1", is_active=True)
        inactive = await url_service.list_urls("user-1", is_active=False)
        assert active.pagination.total == 1
        assert [r.id for r in inactive.rows] == [first.id]

    async def test_scoped_to_owner(self, url_service):
        await url_service.create_short_url("https://example.com", "user-1")

        page = await url_service.list_urls("user-2")

        assert page.rows == []
        assert page.pagination.total == 0

    @pytest.mark.parametrize("page,limit", [(0, 10), (1, 101), (-2, 5)])
    async def test_rejects_bad_pagination(self, url_service, page, limit):
        with pytest.raises(ValidationError):
            await url_service.list_urls("user-1", page=page, limit=limit)


class TestOwnership:

    async def test_other_owner_sees_not_found(self, url_service):
        record = await url_service.create_short_url("https://example.com", "user-1")

        with pytest.raises(NotFoundError):
            await url_service.get_url(record.id, "user-2")
        with pytest.raises(NotFoundError):
            await url_service.update_url(record.id, "user-2", URLUpdate(is_active=False))
        with pytest.raises(NotFoundError):
            await url_service.delete_url(record.id, "user-2")
        with pytest.raises(NotFoundError):
            await url_service.get_url_analytics(record.id, "user-2")

        assert (await url_service.get_url(record.id, "user-1")).is_active is True

    async def test_missing_and_foreign_are_indistinguishable(self, url_service):
        record = await url_service.create_short_url("https://example.com", "user-1")

        with pytest.raises(NotFoundError) as foreign:
            await url_service.get_url(record.id, "user-2")
        with pytest.raises(NotFoundError) as missing:
            await url_service.get_url("no-such-id", "user-2")

        assert foreign.value.detail == missing.value.detail

    async def test_cached_analytics_not_leaked(self, url_service, side_effects):
        record = await url_service.create_short_url("https://example.com", "user-1")
        await url_service.get_url_analytics(record.id, "user-1")
        await side_effects.drain()

        with pytest.raises(NotFoundError):
            await url_service.get_url_analytics(record.id, "user-2")


class TestUpdateDelete:

    async def test_update_changes_redirect_target(self, url_service, side_effects):
        record = await url_service.create_short_url("https://example.com", "user-1")
        await side_effects.drain()

        await url_service.update_url(record.id, "user-1", URLUpdate(original_url="https://example.org/new"))
        await side_effects.drain()

        assert await url_service.resolve_redirect(record.short_code) == "https://example.org/new"

    async def test_update_event_lists_changed_fields(self, url_service, transport, side_effects):
        record = await url_service.create_short_url("https://example.com", "user-1")

        await url_service.update_url(
            record.id, "user-1", URLUpdate(is_active=False, expires_at=future())
        )
        await side_effects.drain()

        updated = [e for e in decoded(transport, "url_analytics") if e.action == "updated"]
        assert updated[0].metadata["fields"] == ["expires_at", "is_active"]

    async def test_delete_evicts_and_releases_code(self, url_service, transport, side_effects):
        record = await url_service.create_short_url(
            "https://example.com", "user-1", custom_short_code="promo"
        )
        await side_effects.drain()

        await url_service.delete_url(record.id, "user-1")
        await side_effects.drain()

        with pytest.raises(NotFoundError):
            await url_service.resolve_redirect("promo")
        with pytest.raises(NotFoundError):
            await url_service.get_url(record.id, "user-1")
        assert "deleted" in [e.action for e in decoded(transport, "url_analytics")]

        reused = await url_service.create_short_url("https://example.org", "user-2", custom_short_code="promo")
        assert reused.owner_id == "user-2"


class TestAnalytics:

    async def test_view_includes_clicks_and_short_url(self, url_service):
        record = await url_service.create_short_url("https://example.com", "user-1")
        await url_service.resolve_redirect(record.short_code)
        await url_service.resolve_redirect(record.short_code)

        analytics = await url_service.get_url_analytics(record.id, "user-1")

        assert analytics.clicks == 2
        assert analytics.short_url.endswith(f"/{record.short_code}")

    async def test_cached_view_skips_store_and_event(self, url_service, transport, side_effects):
        record = await url_service.create_short_url("https://example.com", "user-1")
        await side_effects.drain()

        await url_service.get_url_analytics(record.id, "user-1")
        await side_effects.drain()
        await url_service.resolve_redirect(record.short_code)
        cached = await url_service.get_url_analytics(record.id, "user-1")
        await side_effects.drain()

        viewed = [e for e in decoded(transport, "url_analytics") if e.action == "viewed"]
        assert len(viewed) == 1
        assert cached.clicks == 0

    async def test_update_refreshes_view(self, url_service, side_effects):
        record = await url_service.create_short_url("https://example.com", "user-1")
        await url_service.get_url_analytics(record.id, "user-1")
        await side_effects.drain()

        await url_service.update_url(record.id, "user-1", URLUpdate(original_url="https://example.org"))
        await side_effects.drain()

        analytics = await url_service.get_url_analytics(record.id, "user-1")
        assert analytics.original_url == "https://example.org"


class SmallPoolStrategy(ShortCodeStrategy):
    """Draws from a handful of codes so parallel creates collide"""

    def __init__(self, size):
        self.codes = [f"pool{i:02d}" for i in range(size)]

    def generate(self, length=6):
        return random.choice(self.codes)


class TestParallelRequests:
    """Each thread runs its own event loop and service over one SQLite file"""

    def run_in_threads(self, count, request):
        with ThreadPoolExecutor(max_workers=8) as pool:
            return list(pool.map(lambda _: asyncio.run(request()), range(count)))

    def test_parallel_creates_retry_into_unique_codes(self, file_store, channel):
        strategy = SmallPoolStrategy(40)

        async def create():
            service = URLService(
                file_store, CacheLayer(NullCache()), channel, BestEffortTasks(),
                code_strategy=strategy, max_retries=200,
            )
            record = await service.create_short_url("https://example.com", "user-1")
            await service.side_effects.drain()
            return record

        records = self.run_in_threads(24, create)

        assert len({r.short_code for r in records}) == 24
        rows, total = file_store.list_by_owner("user-1", 1, 100)
        assert total == 24
        assert {r.short_code for r in rows} == {r.short_code for r in records}

    def test_parallel_redirects_count_exactly(self, file_store, channel):
        record = file_store.insert(NewShortUrl(
            original_url="https://example.com", short_code="abc123", owner_id="user-1"
        ))

        async def redirect():
            service = URLService(file_store, CacheLayer(NullCache()), channel, BestEffortTasks())
            target = await service.resolve_redirect(record.short_code)
            await service.side_effects.drain()
            return target

        targets = self.run_in_threads(100, redirect)

        assert set(targets) == {"https://example.com"}
        assert file_store.find_by_short_code("abc123").clicks == 100
