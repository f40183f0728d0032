"""Registry of fire-and-forget tasks started by key handlers and the loop."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Callable, Coroutine

__all__ = ["BackgroundTaskRegistry"]

logger = logging.getLogger(__name__)


def _log_task_error(task: asyncio.Task[Any], exc: BaseException) -> None:
    logger.error("Unhandled exception in background task %s", task.get_name(), exc_info=exc)


class BackgroundTaskRegistry:
    """Keeps running tasks alive and cancels them on shutdown.

    Finished tasks remove themselves.  A task that fails with an exception
    (cancellation excluded) is reported to ``on_error``.
    """

    def __init__(
        self,
        on_error: Callable[[asyncio.Task[Any], BaseException], None] | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._tasks: set[asyncio.Task[Any]] = set()
        self.on_error = on_error or _log_task_error

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)

    @property
    def tasks(self) -> list[asyncio.Task[Any]]:
        with self._lock:
            return list(self._tasks)

    def create(
        self,
        coroutine: Coroutine[Any, Any, Any],
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> asyncio.Task[Any]:
        """Start *coroutine* as a task and track it until it completes."""
        loop = loop or asyncio.get_running_loop()
        task = loop.create_task(coroutine)
        with self._lock:
            self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        with self._lock:
            self._tasks.discard(task)

        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.on_error(task, exc)

    def clear(self) -> None:
        """Forget all tasks without cancelling them."""
        with self._lock:
            self._tasks.clear()

    async def cancel_and_wait(self, timeout: float | None = None) -> None:
        """Cancel every task and wait for them to finish, up to *timeout*.

        Tasks that ignore the cancellation past the timeout are logged and
        abandoned.
        """
        tasks = self.tasks
        if not tasks:
            return

        for task in tasks:
            task.cancel()

        _, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            logger.warning(
                "%d background task(s) still running %.1fs after cancellation",
                len(pending),
                timeout or 0,
            )
