# formgen/core/background.py
"""
Detached background work for side effects that must not hold up a request
(embedding upserts, webhook delivery sequences).

Tasks run on the current event loop. Failures are logged from a done
callback and never propagate back to whoever submitted the task.
"""

import asyncio
import logging
from typing import Awaitable, Set

logger = logging.getLogger(__name__)


class BackgroundTaskRunner:

    def __init__(self):
        # Strong references, otherwise the loop may garbage-collect running tasks
        self._tasks: Set[asyncio.Task] = set()

    def submit(self, coro: Awaitable, name: str = "background-task") -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f"Background task {task.get_name()} was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                f"❌ Background task {task.get_name()} failed: {exc}",
                exc_info=(type(exc), exc, exc.__traceback__)
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every outstanding task, including ones submitted while waiting"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
