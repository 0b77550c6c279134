"""
Factory for creating event transports and channels.
Gets configuration from settings (not passed as parameters).
"""

from enum import Enum
from typing import Optional

from shortlinks_app.config import settings
from .channel import EventChannel
from .scheduling import Scheduler
from .strategies import QueueStrategy, RedisStreamQueue, InMemoryQueue


class QueueBackend(Enum):
    """Available queue backends"""
    REDIS_STREAMS = "redis_streams"
    MEMORY = "memory"


class QueueFactory:
    """
    Simple factory for creating transports and the channel wrapping them.

    No fallback to memory here: a Redis transport that is down stays a Redis
    transport, and EventChannel keeps reconnecting to it with backoff.
    """

    @classmethod
    def create(cls, backend: QueueBackend) -> QueueStrategy:
        """
        Create a transport for the given backend.

        Args:
            backend: Type of queue backend (from enum)
        """
        if backend == QueueBackend.REDIS_STREAMS:
            return RedisStreamQueue(
                settings.redis_url,
                consumer_group=settings.queue_consumer_group,
                retention_seconds=settings.message_retention_seconds,
                socket_timeout=settings.redis_socket_timeout,
            )
        elif backend == QueueBackend.MEMORY:
            return InMemoryQueue(retention_seconds=settings.message_retention_seconds)
        else:
            raise ValueError(f"Unknown queue backend: {backend}")

    @classmethod
    def create_channel(
        cls,
        backend: QueueBackend,
        scheduler: Optional[Scheduler] = None
    ) -> EventChannel:
        return EventChannel(
            cls.create(backend),
            scheduler=scheduler,
            base_delay=settings.reconnect_base_delay,
            max_delay=settings.reconnect_max_delay,
            max_reconnect_attempts=settings.max_reconnect_attempts,
            batch_size=settings.queue_batch_size,
            block_ms=settings.queue_block_ms,
        )
