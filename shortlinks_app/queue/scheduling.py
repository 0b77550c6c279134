"""
Timer abstraction for reconnect backoff.

EventChannel never calls ``asyncio.sleep``/``loop.call_later`` directly; it
asks a Scheduler. Production uses the event loop, tests plug in a virtual
clock and advance it by hand.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)

Callback = Callable[[], Awaitable[None]]


class ScheduledCall(ABC):
    """Handle for a pending timer"""

    @abstractmethod
    def cancel(self) -> None:
        pass

    @property
    @abstractmethod
    def cancelled(self) -> bool:
        pass


class Scheduler(ABC):

    @abstractmethod
    def call_later(self, delay: float, callback: Callback) -> ScheduledCall:
        """Run ``await callback()`` after ``delay`` seconds"""
        pass

    async def shutdown(self) -> None:
        """Cancel whatever is still scheduled or running"""


class _AsyncioCall(ScheduledCall):

    def __init__(self):
        self.timer: Optional[asyncio.TimerHandle] = None
        self.task: Optional[asyncio.Task] = None
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True
        if self.timer is not None:
            self.timer.cancel()
        if self.task is not None and not self.task.done():
            self.task.cancel()

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class AsyncioScheduler(Scheduler):
    """Scheduler backed by the running event loop"""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def call_later(self, delay: float, callback: Callback) -> ScheduledCall:
        call = _AsyncioCall()
        loop = asyncio.get_running_loop()

        def fire():
            task = loop.create_task(self._run(callback))
            call.task = task
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        call.timer = loop.call_later(delay, fire)
        return call

    async def _run(self, callback: Callback) -> None:
        try:
            await callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Scheduled callback failed")

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
