"""Print above a running application.

Text written to a :class:`StdoutProxy` is buffered until a newline and
then handed to a background thread.  While the application runs, that
thread prints through :func:`run_in_terminal` on the application's loop,
so the layout is erased, the text is written and the layout is drawn
again below it.  When no application is running the text goes straight
to the output.

Usage::

    app = Application(layout=...)
    with patch_stdout(app):
        await app.run_async()
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import queue
import sys
import threading
import time
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Generator, Iterable, TextIO, Union

from pi.termloop.context import set_app
from pi.termloop.run_in_terminal import run_in_terminal

if TYPE_CHECKING:
    from pi.termloop.application import Application

__all__ = ["StdoutProxy", "patch_stdout"]

logger = logging.getLogger(__name__)

# Text to print, or None to stop the flush thread.
_QueueItem = Union[str, None]


@contextmanager
def patch_stdout(
    app: Application[Any], raw: bool = False, sleep_between_writes: float = 0.2
) -> Generator[StdoutProxy, None, None]:
    """Replace ``sys.stdout`` and ``sys.stderr`` with a :class:`StdoutProxy`.

    Both are restored, and the proxy is closed (remaining text printed),
    when the block exits.
    """
    proxy = StdoutProxy(app, raw=raw, sleep_between_writes=sleep_between_writes)

    original_stdout = sys.stdout
    original_stderr = sys.stderr
    sys.stdout = proxy  # type: ignore[assignment]
    sys.stderr = proxy  # type: ignore[assignment]
    try:
        yield proxy
    finally:
        sys.stdout = original_stdout
        sys.stderr = original_stderr
        proxy.close()


class StdoutProxy:
    """File-like object that prints above *app*'s layout.

    Thread-safe.  Complete lines are queued on every write; a partial
    line waits for its newline or for :meth:`flush`.

    Parameters
    ----------
    app:
        The application to print above.  Its output is used directly
        while it is not running.
    raw:
        Pass escape sequences through instead of neutralising them.
    sleep_between_writes:
        Pause after each print while the application runs, so a burst of
        writes costs one erase and redraw.
    """

    def __init__(
        self, app: Application[Any], raw: bool = False, sleep_between_writes: float = 0.2
    ) -> None:
        if sleep_between_writes < 0:
            raise ValueError("sleep_between_writes must be non-negative")

        self.app = app
        self.raw = raw
        self.sleep_between_writes = sleep_between_writes
        self.closed = False

        self._lock = threading.Lock()
        self._buffer: list[str] = []
        self._flush_queue: queue.Queue[_QueueItem] = queue.Queue()
        self._flush_thread = threading.Thread(
            target=self._write_thread, daemon=True, name="patch-stdout-flush-thread"
        )
        self._flush_thread.start()

    # -- file interface -----------------------------------------------------

    @property
    def encoding(self) -> str:
        return "utf-8"

    @property
    def errors(self) -> str:
        return "strict"

    @property
    def original_stdout(self) -> TextIO | None:
        """The stream the application writes to (the real stdout)."""
        return getattr(self.app.output, "stdout", None) or sys.__stdout__

    def write(self, data: str) -> int:
        with self._lock:
            if data and not self.closed:
                self._write(data)
        return len(data)

    def writelines(self, lines: Iterable[str]) -> None:
        for line in lines:
            self.write(line)

    def flush(self) -> None:
        """Queue the buffered text even without a trailing newline."""
        with self._lock:
            if not self.closed:
                self._flush()

    def close(self) -> None:
        """Print what is left and stop the flush thread.  Idempotent."""
        with self._lock:
            if self.closed:
                return
            self._flush()
            self.closed = True

        self._flush_queue.put(None)
        self._flush_thread.join()

    def fileno(self) -> int:
        stdout = self.original_stdout
        if stdout is None:
            raise OSError("no underlying stdout")
        return stdout.fileno()

    def isatty(self) -> bool:
        stdout = self.original_stdout
        if stdout is None:
            return False
        try:
            return bool(stdout.isatty())
        except (AttributeError, ValueError):
            return False

    def __enter__(self) -> StdoutProxy:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # -- buffering (under the lock) -------------------------------------------

    def _write(self, data: str) -> None:
        if "\n" not in data:
            self._buffer.append(data)
            return

        before, after = data.rsplit("\n", 1)
        self._buffer.append(before + "\n")
        self._flush_queue.put("".join(self._buffer))
        self._buffer = [after] if after else []

    def _flush(self) -> None:
        if self._buffer:
            self._flush_queue.put("".join(self._buffer))
            self._buffer = []

    # -- flush thread -------------------------------------------------------

    def _write_thread(self) -> None:
        done = False
        while not done:
            item = self._flush_queue.get()
            if item is None:
                break

            # Take whatever else arrived in the meantime.
            parts = [item]
            while True:
                try:
                    item = self._flush_queue.get_nowait()
                except queue.Empty:
                    break
                if item is None:
                    done = True
                    break
                parts.append(item)

            text = "".join(parts)
            if not text:
                continue

            try:
                self._write_and_flush(text)
            except Exception:
                logger.exception("Could not print %d characters above the application", len(text))

            if self.sleep_between_writes and self._running_loop() is not None:
                time.sleep(self.sleep_between_writes)

    def _running_loop(self) -> asyncio.AbstractEventLoop | None:
        loop = self.app.loop
        if loop is None or not self.app.is_running or loop.is_closed():
            return None
        return loop

    def _write_and_flush(self, text: str) -> None:
        output = self.app.output

        def write_output() -> None:
            output.enable_autowrap()
            if self.raw:
                output.write_raw(text)
            else:
                output.write(text)
            output.flush()

        loop = self._running_loop()
        if loop is None:
            write_output()
            return

        async def write_in_terminal() -> None:
            with set_app(self.app):
                await run_in_terminal(write_output)

        coro = write_in_terminal()
        try:
            future = asyncio.run_coroutine_threadsafe(coro, loop)
        except RuntimeError:
            # The loop closed in the meantime.
            coro.close()
            write_output()
            return

        try:
            future.result()
        except concurrent.futures.CancelledError:
            logger.debug("Print above the application was cancelled")
