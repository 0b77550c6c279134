"""
FastAPI dependencies for dependency injection.

Cache, event channel and store are built once into a ServiceContainer at
application startup (see main.py lifespan) and handed to routes through
``request.app.state``. Nothing here is a module-level singleton, so tests
can build a container from in-memory parts and pass it to ``create_app``.
"""

import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status

from shortlinks_app.cache.factory import CacheBackend, CacheFactory
from shortlinks_app.cache.layer import CacheLayer
from shortlinks_app.config import settings
from shortlinks_app.database.connection import SessionLocal, init_db
from shortlinks_app.queue.channel import EventChannel
from shortlinks_app.queue.factory import QueueBackend, QueueFactory
from shortlinks_app.services.background import BestEffortTasks
from shortlinks_app.services.url_service import URLService
from shortlinks_app.storage.url_store import SQLAlchemyUrlStore, UrlStore

logger = logging.getLogger(__name__)


class ServiceContainer:
    """
    Process-wide component handles with an explicit lifecycle.

    start(): connect cache and event channel (neither failure is fatal)
    stop():  drain best-effort tasks, then disconnect channel and cache
    """

    def __init__(
        self,
        store: UrlStore,
        cache: CacheLayer,
        events: EventChannel,
        side_effects: Optional[BestEffortTasks] = None,
    ):
        self.store = store
        self.cache = cache
        self.events = events
        self.side_effects = side_effects or BestEffortTasks()
        self.url_service = URLService(
            store=store,
            cache=cache,
            events=events,
            side_effects=self.side_effects,
        )

    @classmethod
    def from_settings(cls) -> "ServiceContainer":
        init_db()
        return cls(
            store=SQLAlchemyUrlStore(SessionLocal),
            cache=CacheFactory.create_layer(CacheBackend(settings.cache_backend)),
            events=QueueFactory.create_channel(QueueBackend(settings.queue_backend)),
        )

    async def start(self) -> None:
        await self.cache.connect()
        await self.events.connect()
        logger.info(
            "Services started (cache healthy=%s, events healthy=%s)",
            await self.cache.is_healthy(),
            self.events.is_healthy(),
        )

    async def stop(self) -> None:
        await self.side_effects.drain()
        await self.events.disconnect()
        await self.cache.disconnect()
        logger.info("Services stopped")


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_url_service(container: ServiceContainer = Depends(get_container)) -> URLService:
    """
    Get URLService with all dependencies injected.

    Controllers depend on the service; the service depends on
    infrastructure (store, cache, events).
    """
    return container.url_service


def get_current_owner(x_user_id: Optional[str] = Header(None)) -> str:
    """
    Principal of the request.

    Authentication happens upstream; the gateway forwards the verified
    user id in ``X-User-Id``.
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header"
        )
    return x_user_id
