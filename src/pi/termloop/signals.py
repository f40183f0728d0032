"""Resize and interrupt notifications.

SIGWINCH and SIGINT are routed through the event loop with
``loop.add_signal_handler`` so their handlers run on the loop thread,
never in the middle of a render.  Where native resize signals are not
available (non-POSIX, or a loop running outside the main thread) the
terminal size is polled instead.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import weakref
from typing import Any, Callable, Coroutine

from pi.termloop.screen import Size

__all__ = ["SignalWatcher"]

logger = logging.getLogger(__name__)


class _SignalStack:
    """Handlers installed for one signal on one loop; the last one is active."""

    def __init__(self, previous: Any) -> None:
        # The process-level handler from before the first install.
        self.previous = previous
        self.handlers: list[Callable[[], None]] = []


_stacks: weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, dict[int, _SignalStack]] = (
    weakref.WeakKeyDictionary()
)


class SignalWatcher:
    """Installs resize/interrupt handlers for the lifetime of a run.

    Parameters
    ----------
    on_resize:
        Called after the terminal size changed.
    get_size:
        Returns the current terminal size; used when polling.
    on_interrupt:
        Called on SIGINT.  ``None`` leaves SIGINT alone.
    polling_interval:
        Seconds between size polls when SIGWINCH is unavailable.  ``None``
        disables polling.
    create_task:
        Used to start the polling task (so it is tracked with the other
        background work).  Defaults to ``loop.create_task``.
    """

    def __init__(
        self,
        on_resize: Callable[[], None],
        get_size: Callable[[], Size],
        on_interrupt: Callable[[], None] | None = None,
        polling_interval: float | None = 0.5,
        create_task: Callable[[Coroutine[Any, Any, None]], asyncio.Task[Any]] | None = None,
    ) -> None:
        self.on_resize = on_resize
        self.get_size = get_size
        self.on_interrupt = on_interrupt
        self.polling_interval = polling_interval
        self._create_task = create_task

        self._loop: asyncio.AbstractEventLoop | None = None
        self._installed: dict[int, Callable[[], None]] = {}
        self._poll_task: asyncio.Task[Any] | None = None
        self.native_resize = False

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

        sigwinch = getattr(signal, "SIGWINCH", None)
        self.native_resize = sigwinch is not None and self._install(sigwinch, self._on_sigwinch)

        if self.on_interrupt is not None:
            self._install(signal.SIGINT, self._on_sigint)

        if not self.native_resize and self.polling_interval:
            logger.debug("No native resize signal, polling every %.2fs", self.polling_interval)
            coro = self._poll_size(self.polling_interval)
            if self._create_task is not None:
                self._poll_task = self._create_task(coro)
            else:
                self._poll_task = loop.create_task(coro)

    def stop(self) -> None:
        """Remove the handlers and restore whatever was installed before.

        When watchers are nested on one loop (an application started from
        inside another), the outer watcher's handlers become active again.
        """
        loop = self._loop
        if loop is not None:
            for signum, handler in self._installed.items():
                _uninstall(loop, signum, handler)
        self._installed.clear()

        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None

        self._loop = None

    def _install(self, signum: int, handler: Callable[[], None]) -> bool:
        loop = self._loop
        assert loop is not None
        stacks = _stacks.setdefault(loop, {})
        stack = stacks.get(signum)
        try:
            previous = signal.getsignal(signum) if stack is None else None
            loop.add_signal_handler(signum, handler)
        except (NotImplementedError, RuntimeError, ValueError) as e:
            logger.debug("Cannot handle signal %d on this loop: %s", signum, e)
            return False

        if stack is None:
            stack = stacks[signum] = _SignalStack(previous)
        stack.handlers.append(handler)
        self._installed[signum] = handler
        return True

    def _on_sigwinch(self) -> None:
        logger.debug("SIGWINCH received")
        self.on_resize()

    def _on_sigint(self) -> None:
        logger.debug("SIGINT received")
        if self.on_interrupt is not None:
            self.on_interrupt()

    async def _poll_size(self, interval: float) -> None:
        size = self.get_size()
        while True:
            await asyncio.sleep(interval)
            new_size = self.get_size()
            if new_size != size:
                logger.debug("Terminal size changed from %s to %s", size, new_size)
                size = new_size
                self.on_resize()


def _uninstall(loop: asyncio.AbstractEventLoop, signum: int, handler: Callable[[], None]) -> None:
    stacks = _stacks.get(loop)
    stack = stacks.get(signum) if stacks is not None else None
    if stack is None or handler not in stack.handlers:
        return

    was_active = stack.handlers[-1] == handler
    stack.handlers.remove(handler)

    if stack.handlers:
        if was_active:
            loop.add_signal_handler(signum, stack.handlers[-1])
        return

    assert stacks is not None
    del stacks[signum]
    loop.remove_signal_handler(signum)
    if stack.previous is not None:
        signal.signal(signum, stack.previous)
