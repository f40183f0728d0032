"""Coalesce "something changed" notifications into scheduled redraws.

Any thread may call :meth:`RedrawCoordinator.invalidate`.  The first call
sets a flag and schedules a redraw on the event loop; further calls are
no-ops until that redraw starts.  The redraw can be throttled
(``min_redraw_interval``) and postponed while the loop is busy with input,
but never for longer than ``max_render_postpone_time``.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Callable

__all__ = ["RedrawCoordinator"]

logger = logging.getLogger(__name__)


class RedrawCoordinator:
    """Schedules at most one pending redraw at a time.

    Parameters
    ----------
    redraw:
        Performs the actual render; runs on the event loop.
    is_running:
        Invalidations are ignored while this returns ``False``.
    min_redraw_interval:
        Seconds that must pass between the start of two redraws.
    max_render_postpone_time:
        Longest a redraw waits while *is_busy* reports pending work.
    is_busy:
        Optional predicate, ``True`` while input is waiting to be processed.
    on_invalidate:
        Called once per coalesced batch of invalidations.
    on_error:
        Receives exceptions raised by *redraw*; without it they propagate
        to the event loop's exception handler.
    """

    def __init__(
        self,
        redraw: Callable[[], None],
        is_running: Callable[[], bool],
        min_redraw_interval: float | None = None,
        max_render_postpone_time: float | None = 0.01,
        is_busy: Callable[[], bool] | None = None,
        on_invalidate: Callable[[], None] | None = None,
        on_error: Callable[[BaseException], None] | None = None,
    ) -> None:
        self._redraw = redraw
        self._is_running = is_running
        self.min_redraw_interval = min_redraw_interval
        self.max_render_postpone_time = max_render_postpone_time
        self._is_busy = is_busy
        self._on_invalidate = on_invalidate
        self._on_error = on_error

        self._lock = threading.Lock()
        self._invalidated = False
        self.last_redraw_time = 0.0
        self._loop: asyncio.AbstractEventLoop | None = None
        self._handles: set[asyncio.Handle] = set()

    # -- lifecycle ----------------------------------------------------------

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def stop(self) -> None:
        """Cancel scheduled redraws and forget the loop."""
        for handle in list(self._handles):
            handle.cancel()
        self._handles.clear()
        self._loop = None
        with self._lock:
            self._invalidated = False

    @property
    def invalidated(self) -> bool:
        """``True`` while a redraw is scheduled but has not started."""
        with self._lock:
            return self._invalidated

    # -- invalidation -------------------------------------------------------

    def invalidate(self) -> None:
        """Request a redraw.  Safe to call from any thread."""
        loop = self._loop
        if loop is None or not self._is_running():
            return

        with self._lock:
            if self._invalidated:
                return
            self._invalidated = True

        if self._on_invalidate is not None:
            self._on_invalidate()

        try:
            loop.call_soon_threadsafe(self._schedule)
        except RuntimeError:
            # Loop closed between the check and the call.
            with self._lock:
                self._invalidated = False

    def _track(self, handle: asyncio.Handle) -> None:
        self._handles.add(handle)

    def _untrack(self, handle: asyncio.Handle | None) -> None:
        if handle is not None:
            self._handles.discard(handle)

    def _schedule(self) -> None:
        loop = self._loop
        if loop is None:
            return

        if self.min_redraw_interval:
            elapsed = time.monotonic() - self.last_redraw_time
            if elapsed < self.min_redraw_interval:
                delay = self.min_redraw_interval - elapsed
                handle: asyncio.TimerHandle | None = None

                def throttled() -> None:
                    self._untrack(handle)
                    self._postpone_while_busy(time.monotonic())

                handle = loop.call_later(delay, throttled)
                self._track(handle)
                return

        self._postpone_while_busy(time.monotonic())

    def _postpone_while_busy(self, started: float) -> None:
        """Redraw now, or on a later loop iteration while input is pending."""
        loop = self._loop
        if loop is None:
            return

        busy = self._is_busy is not None and self._is_busy()
        deadline = started + (self.max_render_postpone_time or 0)
        if busy and time.monotonic() < deadline:
            handle: asyncio.Handle | None = None

            def retry() -> None:
                self._untrack(handle)
                self._postpone_while_busy(started)

            handle = loop.call_soon(retry)
            self._track(handle)
            return

        self.redraw_now()

    def redraw_now(self) -> None:
        """Clear the flag and redraw immediately (on the loop thread)."""
        with self._lock:
            self._invalidated = False
            self.last_redraw_time = time.monotonic()

        if not self._is_running():
            return

        try:
            self._redraw()
        except Exception as e:
            if self._on_error is None:
                raise
            logger.debug("Redraw failed: %s", e)
            self._on_error(e)
