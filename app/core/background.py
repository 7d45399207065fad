"""Fire-and-forget task runner for best-effort side effects."""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class BackgroundTaskRunner:
    """Schedules detached coroutines behind an error boundary.

    Callers never await the scheduled work. Exceptions raised by a task are
    logged and swallowed here so a failed broadcast or notification can never
    surface in the operation that scheduled it.
    """

    def __init__(self) -> None:
        # asyncio only keeps weak references to tasks
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task:
        """Schedule a coroutine without waiting for it."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.info("Background task cancelled", extra={"task": task.get_name()})
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background task failed",
                exc_info=(type(exc), exc, exc.__traceback__),
                extra={"task": task.get_name()},
            )

    @property
    def pending(self) -> int:
        """Number of tasks still running."""
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every in-flight task, including ones they schedule."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


background_tasks = BackgroundTaskRunner()
