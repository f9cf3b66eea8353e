import asyncio
import logging
from typing import Awaitable, Optional, Set

logger = logging.getLogger(__name__)


class TaskSupervisor:
    """Fire-and-forget background work. Failures are counted and logged, never raised."""

    def __init__(self):
        self.started = 0
        self.failed = 0
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Awaitable, name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        if name:
            task.set_name(name)
        self.started += 1
        self._tasks.add(task)
        task.add_done_callback(self._done)
        return task

    def _done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.failed += 1
            logger.warning("background task %s failed: %r", task.get_name(), exc)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: Optional[float] = None):
        """Wait for outstanding tasks (tests and shutdown)."""
        if not self._tasks:
            return
        await asyncio.wait(set(self._tasks), timeout=timeout)

    async def cancel_all(self):
        tasks = list(self._tasks)
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
