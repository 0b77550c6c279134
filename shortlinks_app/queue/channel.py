"""
EventChannel: reconnecting publish/consume on top of a QueueStrategy.

Connection state machine::

    DISCONNECTED --connect()--> CONNECTING --ok--> CONNECTED
         ^                          |                  |
         |<--------- failure -------+                  |
         |<--------------- transport error ------------+
         |
         +-- reconnect scheduled with backoff min(base * 2^(n-1), max),
             at most max_reconnect_attempts times, then gave_up until restart()

While not CONNECTED, publish() returns False and consume() registers nothing.
Neither ever raises into the caller.

Delivery is at-least-once: a handler that raises gets its message requeued,
so handlers must tolerate duplicates.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Set, Union

from shortlinks_app.errors import TransportUnavailableError
from .models import (
    ClickEvent,
    Event,
    QueueMessage,
    QueueName,
    URLAnalyticsEvent,
    UserActivityEvent,
)
from .scheduling import AsyncioScheduler, ScheduledCall, Scheduler
from .strategies import QueueStrategy

logger = logging.getLogger(__name__)

Handler = Callable[[Event], Awaitable[None]]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class EventChannel:
    """
    Durable, reconnecting event channel.

    Constructed once per process and injected where needed; its lifecycle is
    connect() / disconnect() / is_healthy().
    """

    def __init__(
        self,
        transport: QueueStrategy,
        scheduler: Optional[Scheduler] = None,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        max_reconnect_attempts: int = 5,
        batch_size: int = 100,
        block_ms: int = 1000,
        idle_sleep: float = 0.1,
    ):
        self.transport = transport
        self.scheduler = scheduler or AsyncioScheduler()
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_reconnect_attempts = max_reconnect_attempts
        self.batch_size = batch_size
        self.block_ms = block_ms
        self.idle_sleep = idle_sleep

        self.state = ConnectionState.DISCONNECTED
        self.reconnect_attempts = 0
        self.gave_up = False

        self._reconnect_call: Optional[ScheduledCall] = None
        self._handlers: Dict[str, Handler] = {}
        self._inflight: Set[asyncio.Task] = set()
        self._closing = False
        self._running = False

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    def is_healthy(self) -> bool:
        return self.is_connected

    async def connect(self) -> bool:
        """
        Try to connect once. On failure a reconnect is scheduled and False
        is returned; this never raises.
        """
        if self.state != ConnectionState.DISCONNECTED:
            return self.is_connected

        self._closing = False
        self.state = ConnectionState.CONNECTING
        logger.info("Connecting to event transport...")
        try:
            await self.transport.connect()
            for queue_name in QueueName:
                await self.transport.ensure_queue(queue_name.value)
        except TransportUnavailableError as e:
            logger.warning("Failed to connect to event transport: %s", e)
            self.state = ConnectionState.DISCONNECTED
            self._schedule_reconnect()
            return False

        self.state = ConnectionState.CONNECTED
        self.reconnect_attempts = 0
        self.gave_up = False
        logger.info("Event transport connected")
        return True

    async def restart(self) -> bool:
        """Explicit external restart; clears a previous give-up."""
        self._cancel_reconnect()
        self.reconnect_attempts = 0
        self.gave_up = False
        self._closing = False
        if self.is_connected:
            return True
        return await self.connect()

    async def disconnect(self) -> None:
        """
        Shut down: cancel the reconnect timer, stop the consume loop, let
        in-flight deliveries finish their ack/requeue, then close the transport.
        """
        self._closing = True
        self._running = False
        self._cancel_reconnect()

        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

        self.state = ConnectionState.DISCONNECTED
        await self.transport.close()
        await self.scheduler.shutdown()
        logger.info("Event transport disconnected")

    def backoff_delay(self, attempt: int) -> float:
        """Delay before reconnect attempt number ``attempt`` (1-based)"""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    def _schedule_reconnect(self) -> None:
        if self._closing or self._reconnect_call is not None:
            return
        if self.reconnect_attempts >= self.max_reconnect_attempts:
            self.gave_up = True
            logger.error("Max reconnection attempts reached. Giving up.")
            return

        self.reconnect_attempts += 1
        delay = self.backoff_delay(self.reconnect_attempts)
        logger.info(
            "Attempting to reconnect to event transport in %.1fs (attempt %d/%d)",
            delay, self.reconnect_attempts, self.max_reconnect_attempts,
        )
        self._reconnect_call = self.scheduler.call_later(delay, self._reconnect)

    async def _reconnect(self) -> None:
        self._reconnect_call = None
        if self._closing:
            return
        await self.connect()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_call is not None:
            self._reconnect_call.cancel()
            self._reconnect_call = None

    async def _connection_lost(self, error: Exception) -> None:
        if self.state != ConnectionState.CONNECTED:
            return
        logger.warning("Event transport connection lost: %s", error)
        self.state = ConnectionState.DISCONNECTED
        await self.transport.close()
        self._schedule_reconnect()

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    async def publish(self, queue_name: Union[QueueName, str], event: Event) -> bool:
        """
        Publish an event. Returns False (never raises) if it was not handed
        to the transport; callers treat that as best-effort loss.
        """
        name = QueueName(queue_name).value
        if not self.is_connected:
            logger.warning("Event transport not connected, skipping publish to %s", name)
            return False
        try:
            await self.transport.publish(name, event.to_json())
        except TransportUnavailableError as e:
            await self._connection_lost(e)
            return False
        logger.debug("Message sent to queue %s", name)
        return True

    async def publish_click(self, event: ClickEvent) -> bool:
        return await self.publish(QueueName.URL_CLICKS, event)

    async def publish_url_analytics(self, event: URLAnalyticsEvent) -> bool:
        return await self.publish(QueueName.URL_ANALYTICS, event)

    async def publish_user_activity(self, event: UserActivityEvent) -> bool:
        return await self.publish(QueueName.USER_ACTIVITIES, event)

    # ------------------------------------------------------------------
    # Consuming
    # ------------------------------------------------------------------

    def consume(self, queue_name: Union[QueueName, str], handler: Handler) -> bool:
        """
        Register ``handler`` for a channel. Registered handlers survive
        reconnects. No-op returning False while disconnected.
        """
        name = QueueName(queue_name).value
        if not self.is_connected:
            logger.warning("Event transport not connected, cannot consume %s", name)
            return False
        self._handlers[name] = handler
        logger.info("Started consuming messages from queue %s", name)
        return True

    async def poll(self) -> int:
        """
        Fetch one batch per registered channel and dispatch it.

        Returns:
            Number of messages handled successfully
        """
        if not self.is_connected:
            return 0

        processed = 0
        for name, handler in list(self._handlers.items()):
            try:
                messages = await self.transport.fetch(name, self.batch_size, self.block_ms)
            except TransportUnavailableError as e:
                await self._connection_lost(e)
                return processed
            if not messages:
                continue

            tasks = []
            for message in messages:
                task = asyncio.create_task(self._deliver(name, handler, message))
                self._inflight.add(task)
                task.add_done_callback(self._inflight.discard)
                tasks.append(task)
            results = await asyncio.gather(*tasks)
            processed += sum(1 for ok in results if ok)
        return processed

    async def run(self) -> None:
        """Consume loop; returns after disconnect()"""
        self._running = True
        while self._running:
            try:
                processed = await self.poll() if self._handlers else 0
                if processed == 0:
                    await asyncio.sleep(self.idle_sleep)
            except asyncio.CancelledError:
                logger.info("Event consume loop cancelled")
                break

    async def _deliver(self, name: str, handler: Handler, message: QueueMessage) -> bool:
        try:
            event = message.decode(name)
        except ValueError as e:
            # Poison message: redelivery would never succeed
            logger.error("Dropping undecodable message %s from %s: %s", message.message_id, name, e)
            await self._settle(self.transport.ack(name, [message.message_id]))
            return False

        try:
            await handler(event)
        except Exception:
            logger.exception("Error processing message %s from %s, requeueing", message.message_id, name)
            await self._settle(self.transport.requeue(name, message))
            return False

        await self._settle(self.transport.ack(name, [message.message_id]))
        return True

    async def _settle(self, operation: Awaitable[None]) -> None:
        try:
            await operation
        except TransportUnavailableError as e:
            # Left pending; the transport redelivers it later
            logger.warning("Could not settle message: %s", e)
            await self._connection_lost(e)
