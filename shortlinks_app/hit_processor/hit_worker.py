"""
Event Worker

Consumes the three event channels:
- url_clicks:      raw click rows written to hit storage (deduplicated by event id)
- url_analytics:   lifecycle events, logged
- user_activities: audit events, logged

Delivery is at-least-once. A handler that raises leaves its message to be
redelivered; the click handler is idempotent through hit storage's
INSERT OR IGNORE on event_id.
"""

import asyncio
import logging
from typing import Dict

from shortlinks_app.config import settings
from shortlinks_app.logging_config import setup_logging
from shortlinks_app.queue.channel import EventChannel
from shortlinks_app.queue.models import ClickEvent, QueueName, URLAnalyticsEvent, UserActivityEvent
from shortlinks_app.storage.strategies import HitStorageStrategy

logger = logging.getLogger(__name__)


class EventWorker:
    """
    Registers handlers on an EventChannel and runs its consume loop.
    """

    def __init__(self, channel: EventChannel, storage: HitStorageStrategy):
        """
        Args:
            channel: Connected (or reconnecting) event channel
            storage: Hit storage for raw click rows
        """
        self.channel = channel
        self.storage = storage
        self.hit_counts: Dict[str, int] = {}  # Per short code, this process only
        self.processed_count = 0

    def register(self) -> bool:
        registered = [
            self.channel.consume(QueueName.URL_CLICKS, self.handle_click),
            self.channel.consume(QueueName.URL_ANALYTICS, self.handle_url_analytics),
            self.channel.consume(QueueName.USER_ACTIVITIES, self.handle_user_activity),
        ]
        return all(registered)

    async def handle_click(self, event: ClickEvent) -> None:
        stored = await self.storage.store_hit(event)
        if stored:
            self.hit_counts[event.short_code] = self.hit_counts.get(event.short_code, 0) + 1
            self.processed_count += 1
        else:
            logger.debug("Duplicate click event %s ignored", event.event_id)

    async def handle_url_analytics(self, event: URLAnalyticsEvent) -> None:
        logger.info("URL %s %s by %s", event.url_id, event.action, event.owner_id)

    async def handle_user_activity(self, event: UserActivityEvent) -> None:
        logger.info(
            "User %s: %s on %s %s", event.owner_id, event.action, event.resource, event.resource_id or ""
        )

    async def start(self) -> None:
        """Connect, register handlers and consume until stop()"""
        if not await self.channel.connect():
            logger.warning("Event transport unavailable at startup; reconnecting in background")
        while not self.register():
            if self.channel.gave_up:
                raise RuntimeError("Event transport unreachable, giving up")
            await asyncio.sleep(settings.reconnect_base_delay)
        logger.info("Event worker started")
        await self.channel.run()
        logger.info("Event worker stopped")

    async def stop(self) -> None:
        await self.channel.disconnect()


async def main():
    """
    Main entry point for the event worker.

    Usage:
        python -m shortlinks_app.hit_processor.hit_worker
    """
    setup_logging(settings.log_level)
    logger.info("Queue backend: %s", settings.queue_backend)

    from shortlinks_app.queue.factory import QueueFactory, QueueBackend
    from shortlinks_app.storage.strategies import SQLiteHitStorage

    channel = QueueFactory.create_channel(QueueBackend(settings.queue_backend))
    storage = SQLiteHitStorage(db_path=settings.hit_storage_sqlite_path)
    worker = EventWorker(channel=channel, storage=storage)

    try:
        await worker.start()
    finally:
        await worker.stop()
        storage.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
