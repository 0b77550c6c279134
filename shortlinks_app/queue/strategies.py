"""
Queue strategies using Strategy Pattern.
Allows switching between different transport backends (Redis Streams, In-Memory).

Transports are deliberately dumb: they move JSON strings and raise
TransportUnavailableError when the broker can't be reached. Connection
state, reconnects and handler dispatch live in EventChannel.
"""

import logging
import socket
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import Callable, Deque, Dict, List

import redis.asyncio as redis

from shortlinks_app.errors import TransportUnavailableError
from .models import QueueMessage

logger = logging.getLogger(__name__)


class QueueStrategy(ABC):
    """
    Abstract base class for event transports.

    Similar to Celery's broker abstraction.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the broker connection. Raises TransportUnavailableError."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @abstractmethod
    async def ensure_queue(self, queue_name: str) -> None:
        """Declare a durable queue (idempotent)"""
        pass

    @abstractmethod
    async def publish(self, queue_name: str, payload: str) -> str:
        """
        Append a message to the queue.

        Returns:
            Transport-assigned message id
        """
        pass

    @abstractmethod
    async def fetch(self, queue_name: str, batch_size: int = 1, block_ms: int = 1000) -> List[QueueMessage]:
        """
        Hand out up to batch_size messages. They stay pending until ack/requeue.
        """
        pass

    @abstractmethod
    async def ack(self, queue_name: str, message_ids: List[str]) -> None:
        """Acknowledge messages (remove them for good)"""
        pass

    @abstractmethod
    async def requeue(self, queue_name: str, message: QueueMessage) -> None:
        """Return a pending message to the queue for redelivery"""
        pass


class RedisStreamQueue(QueueStrategy):
    """
    Redis Streams implementation for the event transport.

    How it works:
    1. Producer publishes messages using XADD (MINID trims entries past retention)
    2. Consumer reads messages using XREADGROUP
    3. Consumer acknowledges messages using XACK
    4. Failed messages are re-added with XADD and the old entry is XACKed
    5. Entries left pending by a crashed consumer are reclaimed with XAUTOCLAIM

    Durability across broker restarts depends on Redis persistence (AOF/RDB).
    """

    def __init__(
        self,
        redis_url: str,
        consumer_group: str = "shortlinks_workers",
        retention_seconds: int = 86400,
        claim_idle_ms: int = 60000,
        socket_timeout: float = 2.0,
    ):
        self.redis_url = redis_url
        self.consumer_group = consumer_group
        self.retention_seconds = retention_seconds
        self.claim_idle_ms = claim_idle_ms
        self.socket_timeout = socket_timeout
        self.consumer_name = f"worker-{socket.gethostname()}-{id(self)}"
        self.redis = None
        self._initialized_streams = set()

    async def connect(self) -> None:
        client = redis.from_url(
            self.redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=self.socket_timeout,
            socket_timeout=self.socket_timeout,
        )
        try:
            await client.ping()
        except redis.RedisError as e:
            await client.aclose()
            raise TransportUnavailableError(str(e)) from e
        self.redis = client
        self._initialized_streams.clear()

    async def close(self) -> None:
        if self.redis is not None:
            client, self.redis = self.redis, None
            try:
                await client.aclose()
            except redis.RedisError as e:
                logger.warning("Error closing Redis stream connection: %s", e)

    def _client(self):
        if self.redis is None:
            raise TransportUnavailableError("Redis stream transport is not connected")
        return self.redis

    async def ensure_queue(self, queue_name: str) -> None:
        """
        Ensure stream and consumer group exist.
        Creates them if they don't exist.
        """
        if queue_name in self._initialized_streams:
            return
        try:
            # If stream doesn't exist, this creates it with MKSTREAM
            await self._client().xgroup_create(
                name=queue_name,
                groupname=self.consumer_group,
                id='0',
                mkstream=True
            )
            logger.info("Created Redis stream %s", queue_name)
        except redis.ResponseError as e:
            # Group might already exist, that's OK
            if "BUSYGROUP" not in str(e):
                raise TransportUnavailableError(str(e)) from e
        except redis.RedisError as e:
            raise TransportUnavailableError(str(e)) from e
        self._initialized_streams.add(queue_name)

    def _min_id(self) -> str:
        return f"{int((time.time() - self.retention_seconds) * 1000)}-0"

    async def publish(self, queue_name: str, payload: str) -> str:
        try:
            await self.ensure_queue(queue_name)
            return await self._client().xadd(
                queue_name,
                {'data': payload},
                minid=self._min_id(),
                approximate=True,
            )
        except redis.RedisError as e:
            raise TransportUnavailableError(str(e)) from e

    async def fetch(self, queue_name: str, batch_size: int = 1, block_ms: int = 1000) -> List[QueueMessage]:
        try:
            await self.ensure_queue(queue_name)
            client = self._client()

            # Take over messages a dead consumer left pending
            claimed = await client.xautoclaim(
                queue_name,
                self.consumer_group,
                self.consumer_name,
                min_idle_time=self.claim_idle_ms,
                start_id="0-0",
                count=batch_size,
            )
            entries = list(claimed[1]) if claimed else []

            if len(entries) < batch_size:
                # '>' means "messages never delivered to other consumers"
                response = await client.xreadgroup(
                    groupname=self.consumer_group,
                    consumername=self.consumer_name,
                    streams={queue_name: '>'},
                    count=batch_size - len(entries),
                    block=block_ms
                )
                for _stream, stream_messages in response or []:
                    entries.extend(stream_messages)
        except redis.RedisError as e:
            raise TransportUnavailableError(str(e)) from e

        messages = []
        for message_id, fields in entries:
            if not fields or 'data' not in fields:
                # Entry trimmed by retention while pending
                continue
            enqueued_at = int(message_id.split("-")[0]) / 1000
            messages.append(
                QueueMessage(message_id=message_id, payload=fields['data'], enqueued_at=enqueued_at)
            )
        return messages

    async def ack(self, queue_name: str, message_ids: List[str]) -> None:
        if not message_ids:
            return
        try:
            await self._client().xack(queue_name, self.consumer_group, *message_ids)
        except redis.RedisError as e:
            raise TransportUnavailableError(str(e)) from e

    async def requeue(self, queue_name: str, message: QueueMessage) -> None:
        try:
            client = self._client()
            await client.xadd(queue_name, {'data': message.payload}, minid=self._min_id(), approximate=True)
            await client.xack(queue_name, self.consumer_group, message.message_id)
        except redis.RedisError as e:
            raise TransportUnavailableError(str(e)) from e


class InMemoryQueue(QueueStrategy):
    """
    In-memory transport using Python deques.

    Messages live on the object, so they survive close()/connect() cycles the
    same way a durable broker queue survives a client reconnect. Undelivered
    messages older than the retention window are dropped on fetch.

    Used in development/testing environments.
    """

    def __init__(self, retention_seconds: int = 86400, clock: Callable[[], float] = time.time):
        self.retention_seconds = retention_seconds
        self.clock = clock
        self.connected = False
        self._queues: Dict[str, Deque[QueueMessage]] = {}
        self._pending: Dict[str, Dict[str, QueueMessage]] = {}
        self._next_id = 0

    def _check(self):
        if not self.connected:
            raise TransportUnavailableError("In-memory transport is closed")

    def _get_queue(self, queue_name: str) -> Deque[QueueMessage]:
        """Get or create queue"""
        if queue_name not in self._queues:
            self._queues[queue_name] = deque()
            self._pending[queue_name] = {}
        return self._queues[queue_name]

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.connected = False

    async def ensure_queue(self, queue_name: str) -> None:
        self._check()
        self._get_queue(queue_name)

    async def publish(self, queue_name: str, payload: str) -> str:
        self._check()
        self._next_id += 1
        message = QueueMessage(message_id=str(self._next_id), payload=payload, enqueued_at=self.clock())
        self._get_queue(queue_name).append(message)
        return message.message_id

    async def fetch(self, queue_name: str, batch_size: int = 1, block_ms: int = 1000) -> List[QueueMessage]:
        """
        Note: block_ms is ignored (no blocking in this simple implementation)
        """
        self._check()
        queue = self._get_queue(queue_name)
        cutoff = self.clock() - self.retention_seconds
        messages = []
        while queue and len(messages) < batch_size:
            message = queue.popleft()
            if message.enqueued_at < cutoff:
                logger.debug("Dropping expired message %s from %s", message.message_id, queue_name)
                continue
            self._pending[queue_name][message.message_id] = message
            messages.append(message)
        return messages

    async def ack(self, queue_name: str, message_ids: List[str]) -> None:
        self._check()
        pending = self._pending.get(queue_name, {})
        for message_id in message_ids:
            pending.pop(message_id, None)

    async def requeue(self, queue_name: str, message: QueueMessage) -> None:
        self._check()
        self._pending.get(queue_name, {}).pop(message.message_id, None)
        self._get_queue(queue_name).append(message)

    def pending_count(self, queue_name: str) -> int:
        return len(self._pending.get(queue_name, {}))
