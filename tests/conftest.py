"""
Test configuration and fixtures.

Everything runs in-process: SQLite in memory for the store, InMemoryCache
for the cache, a controllable InMemoryQueue for the event transport and a
virtual clock for reconnect timers.
"""

import asyncio
from typing import List, Optional

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from main import create_app
from shortlinks_app.cache.layer import CacheLayer
from shortlinks_app.cache.strategies import CacheStrategy, InMemoryCache
from shortlinks_app.database.connection import Base, build_engine
from shortlinks_app.dependencies import ServiceContainer
from shortlinks_app.errors import CacheUnavailableError, TransportUnavailableError
from shortlinks_app.models import ShortUrl  # noqa: F401  (registers the table)
from shortlinks_app.queue.channel import EventChannel
from shortlinks_app.queue.models import QueueMessage
from shortlinks_app.queue.scheduling import ScheduledCall, Scheduler
from shortlinks_app.queue.strategies import InMemoryQueue
from shortlinks_app.services.background import BestEffortTasks
from shortlinks_app.services.url_service import URLService
from shortlinks_app.storage.url_store import SQLAlchemyUrlStore


class FakeClock:
    """Manually advanced clock for TTLs and retention windows"""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class VirtualCall(ScheduledCall):

    def __init__(self, due: float, callback):
        self.due = due
        self.callback = callback
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class VirtualScheduler(Scheduler):
    """Timers fire only when the test advances the clock"""

    def __init__(self):
        self.now = 0.0
        self.calls: List[VirtualCall] = []

    def call_later(self, delay: float, callback) -> VirtualCall:
        call = VirtualCall(self.now + delay, callback)
        self.calls.append(call)
        return call

    @property
    def pending(self) -> List[VirtualCall]:
        return [call for call in self.calls if not call.cancelled]

    def next_delay(self) -> Optional[float]:
        pending = self.pending
        return min(call.due for call in pending) - self.now if pending else None

    async def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [call for call in self.pending if call.due <= target]
            if not due:
                break
            call = min(due, key=lambda c: c.due)
            self.calls.remove(call)
            self.now = call.due
            await call.callback()
        self.now = target


class FlakyQueue(InMemoryQueue):
    """In-memory transport whose broker can be taken down and brought back"""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.down = False

    def go_down(self) -> None:
        self.down = True
        self.connected = False

    def come_back(self) -> None:
        self.down = False

    async def connect(self) -> None:
        if self.down:
            raise TransportUnavailableError("broker unreachable")
        await super().connect()


class BrokenCache(CacheStrategy):
    """Cache backend that is always unreachable"""

    async def ping(self) -> bool:
        return False

    async def get(self, key):
        raise CacheUnavailableError("down")

    async def set(self, key, value, ttl=3600, only_if_absent=False):
        raise CacheUnavailableError("down")

    async def compare_and_set(self, key, expected, value):
        raise CacheUnavailableError("down")

    async def delete(self, *keys):
        raise CacheUnavailableError("down")

    async def delete_pattern(self, pattern):
        raise CacheUnavailableError("down")

    async def incr(self, key):
        raise CacheUnavailableError("down")

    async def exists(self, key):
        raise CacheUnavailableError("down")

    async def clear(self):
        raise CacheUnavailableError("down")


class YieldingCache(InMemoryCache):
    """In-memory backend whose reads suspend like a network round trip"""

    async def get(self, key):
        value = await super().get(key)
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        return value


def published(transport: InMemoryQueue, queue_name: str) -> List[QueueMessage]:
    """Messages currently waiting on a queue (not yet fetched)"""
    return list(transport._get_queue(queue_name))


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def store(session_factory):
    return SQLAlchemyUrlStore(session_factory)


@pytest.fixture
def file_store(tmp_path):
    """Store on a file-backed SQLite database, one connection per thread"""
    engine = build_engine(f"sqlite:///{tmp_path / 'urls.db'}")
    Base.metadata.create_all(bind=engine)
    yield SQLAlchemyUrlStore(sessionmaker(bind=engine, autoflush=False, expire_on_commit=False))
    engine.dispose()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache_backend(clock):
    return InMemoryCache(clock=clock)


@pytest.fixture
def cache(cache_backend):
    return CacheLayer(cache_backend, url_ttl=3600, list_ttl=300, analytics_ttl=300)


@pytest.fixture
def scheduler():
    return VirtualScheduler()


@pytest.fixture
def transport(clock):
    return FlakyQueue(retention_seconds=86400, clock=clock)


@pytest.fixture
def channel(transport, scheduler):
    return EventChannel(
        transport,
        scheduler=scheduler,
        base_delay=1.0,
        max_delay=30.0,
        max_reconnect_attempts=5,
        batch_size=10,
        idle_sleep=0,
    )


@pytest_asyncio.fixture
async def events(channel):
    """Channel already connected to the in-memory transport"""
    await channel.connect()
    yield channel
    await channel.disconnect()


@pytest_asyncio.fixture
async def side_effects():
    tasks = BestEffortTasks()
    yield tasks
    await tasks.drain()


@pytest.fixture
def url_service(store, cache, events, side_effects):
    return URLService(store=store, cache=cache, events=events, side_effects=side_effects)


@pytest.fixture
def container(store, cache, channel):
    """Unstarted container; the app lifespan connects it"""
    return ServiceContainer(store=store, cache=cache, events=channel)


@pytest.fixture
def client(container):
    with TestClient(create_app(container)) as test_client:
        yield test_client


@pytest.fixture
def owner_headers():
    return {"X-User-Id": "user-1"}
