"""
Best-effort side effects.

Cache writes and event publishes run after the store commit as detached
tasks. Whatever they raise ends up in one place: a WARNING log here. The
request that dispatched them has already returned.
"""

import asyncio
import logging
from typing import Awaitable, Set

logger = logging.getLogger(__name__)


class BestEffortTasks:
    """Fire-and-forget task runner with a drain() for shutdown and tests"""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def dispatch(self, description: str, operation: Awaitable) -> asyncio.Task:
        task = asyncio.create_task(self._run(description, operation))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, description: str, operation: Awaitable) -> None:
        try:
            result = await operation
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.warning("Best-effort %s failed", description, exc_info=True)
            return
        if result is False:
            logger.info("Best-effort %s was dropped", description)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every dispatched task (and any they spawned) finished"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
