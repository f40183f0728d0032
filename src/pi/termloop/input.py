"""Input sources: the ``Input`` protocol, a POSIX terminal reader and an
in-memory pipe for tests and embedding.

An input is *attached* to the event loop with a callback that fires when
key presses can be read.  Attachments stack: attaching a second callback
suspends the first until the inner context exits, and :meth:`detach`
temporarily removes the current one (used while the terminal is handed to
another program).
"""

from __future__ import annotations

import asyncio
import codecs
import os
import select
import sys
import termios
import threading
import tty
from contextlib import contextmanager
from typing import Callable, ContextManager, Generator, Iterable, Protocol, TextIO, Union

from pi.termloop.decoder import KeyDecoder
from pi.termloop.keys import KeyPress

__all__ = [
    "Input",
    "PipeInput",
    "Vt100Input",
    "clear_typeahead",
    "get_typeahead",
    "store_typeahead",
]


# ---------------------------------------------------------------------------
# Input protocol
# ---------------------------------------------------------------------------


class Input(Protocol):
    """Interface for key press sources."""

    @property
    def closed(self) -> bool: ...

    def read_keys(self) -> list[KeyPress]: ...

    def flush_keys(self) -> list[KeyPress]: ...

    def has_pending_input(self) -> bool: ...

    def attach(self, input_ready_callback: Callable[[], None]) -> ContextManager[None]: ...

    def detach(self) -> ContextManager[None]: ...

    def raw_mode(self) -> ContextManager[None]: ...

    def cooked_mode(self) -> ContextManager[None]: ...

    def typeahead_hash(self) -> str: ...


# ---------------------------------------------------------------------------
# Typeahead
# ---------------------------------------------------------------------------

_typeahead_lock = threading.Lock()
_typeahead_buffers: dict[str, list[KeyPress]] = {}


def store_typeahead(input_obj: Input, key_presses: list[KeyPress]) -> None:
    """Keep keys that were typed but not processed for the next run."""
    key = input_obj.typeahead_hash()
    with _typeahead_lock:
        _typeahead_buffers.setdefault(key, []).extend(key_presses)


def get_typeahead(input_obj: Input) -> list[KeyPress]:
    """Take (and forget) the stored typeahead of *input_obj*."""
    key = input_obj.typeahead_hash()
    with _typeahead_lock:
        return _typeahead_buffers.pop(key, [])


def clear_typeahead(input_obj: Input) -> None:
    key = input_obj.typeahead_hash()
    with _typeahead_lock:
        _typeahead_buffers.pop(key, None)


# ---------------------------------------------------------------------------
# Attachment stack shared by both implementations
# ---------------------------------------------------------------------------

_Attachment = tuple[asyncio.AbstractEventLoop, Callable[[], None]]


class _AttachableInput:
    def __init__(self) -> None:
        self._attachments: list[_Attachment] = []

    def _activate(self, attachment: _Attachment) -> None:
        pass

    def _deactivate(self, attachment: _Attachment) -> None:
        pass

    @contextmanager
    def attach(self, input_ready_callback: Callable[[], None]) -> Generator[None, None, None]:
        """Call *input_ready_callback* on the running loop when keys arrive."""
        loop = asyncio.get_running_loop()
        previous = self._attachments[-1] if self._attachments else None
        if previous is not None:
            self._deactivate(previous)

        attachment = (loop, input_ready_callback)
        self._attachments.append(attachment)
        self._activate(attachment)
        try:
            yield
        finally:
            self._deactivate(attachment)
            self._attachments.remove(attachment)
            if previous is not None and previous in self._attachments:
                self._activate(previous)

    @contextmanager
    def detach(self) -> Generator[None, None, None]:
        """Stop delivering input to the current callback for a while."""
        if not self._attachments:
            yield
            return

        attachment = self._attachments.pop()
        self._deactivate(attachment)
        try:
            yield
        finally:
            self._attachments.append(attachment)
            self._activate(attachment)


# ---------------------------------------------------------------------------
# PipeInput
# ---------------------------------------------------------------------------


class PipeInput(_AttachableInput):
    """In-memory input.  ``send_text`` and ``send_keys`` are thread-safe."""

    _counter = 0

    def __init__(self) -> None:
        super().__init__()
        self._lock = threading.Lock()
        self._pending: list[Union[str, KeyPress]] = []
        self._decoder = KeyDecoder()
        self._closed = False
        PipeInput._counter += 1
        self._id = PipeInput._counter

    @property
    def closed(self) -> bool:
        return self._closed

    def send_text(self, data: str) -> None:
        """Queue raw terminal text (escape sequences are decoded)."""
        if self._closed:
            raise EOFError("PipeInput is closed")
        with self._lock:
            self._pending.append(data)
        self._notify()

    def send_bytes(self, data: bytes) -> None:
        self.send_text(data.decode("utf-8"))

    def send_keys(self, key_presses: Iterable[KeyPress]) -> None:
        """Queue already decoded key presses."""
        if self._closed:
            raise EOFError("PipeInput is closed")
        with self._lock:
            self._pending.extend(key_presses)
        self._notify()

    def close(self) -> None:
        self._closed = True
        self._notify()

    def _notify(self) -> None:
        if not self._attachments:
            return
        loop, callback = self._attachments[-1]
        try:
            loop.call_soon_threadsafe(callback)
        except RuntimeError:
            # Loop already closed.
            pass

    def _activate(self, attachment: _Attachment) -> None:
        with self._lock:
            has_data = bool(self._pending)
        if has_data or self._closed:
            loop, callback = attachment
            loop.call_soon_threadsafe(callback)

    def read_keys(self) -> list[KeyPress]:
        with self._lock:
            pending, self._pending = self._pending, []

        result: list[KeyPress] = []
        for item in pending:
            if isinstance(item, KeyPress):
                result.append(item)
            else:
                result.extend(self._decoder.feed(item))
        return result

    def flush_keys(self) -> list[KeyPress]:
        return self._decoder.flush()

    def has_pending_input(self) -> bool:
        with self._lock:
            return bool(self._pending)

    @contextmanager
    def raw_mode(self) -> Generator[None, None, None]:
        yield

    @contextmanager
    def cooked_mode(self) -> Generator[None, None, None]:
        yield

    def typeahead_hash(self) -> str:
        return f"pipe-input-{self._id}"

    def __enter__(self) -> PipeInput:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


# ---------------------------------------------------------------------------
# Vt100Input
# ---------------------------------------------------------------------------


class Vt100Input(_AttachableInput):
    """Reads from a POSIX terminal file descriptor (``sys.stdin``)."""

    def __init__(self, stdin: TextIO | None = None) -> None:
        super().__init__()
        self.stdin = stdin or sys.stdin
        self._fileno = self.stdin.fileno()
        self._decoder = KeyDecoder()
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="surrogateescape")
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def fileno(self) -> int:
        return self._fileno

    def _activate(self, attachment: _Attachment) -> None:
        loop, callback = attachment
        loop.add_reader(self._fileno, callback)

    def _deactivate(self, attachment: _Attachment) -> None:
        loop, _ = attachment
        loop.remove_reader(self._fileno)

    def read_keys(self) -> list[KeyPress]:
        try:
            data = os.read(self._fileno, 1024)
        except BlockingIOError:
            return []
        except OSError:
            self._closed = True
            return []

        if not data:
            self._closed = True
            return []
        return self._decoder.feed(self._utf8.decode(data))

    def flush_keys(self) -> list[KeyPress]:
        return self._decoder.flush()

    def has_pending_input(self) -> bool:
        """True when bytes are waiting on the descriptor."""
        if self._closed:
            return False
        try:
            readable, _, _ = select.select([self._fileno], [], [], 0)
        except (OSError, ValueError):
            return False
        return bool(readable)

    @contextmanager
    def raw_mode(self) -> Generator[None, None, None]:
        """Put the terminal in raw mode; restore the previous attributes after."""
        try:
            original = termios.tcgetattr(self._fileno)
        except termios.error:
            # Not a terminal.
            yield
            return

        tty.setraw(self._fileno)
        try:
            yield
        finally:
            termios.tcsetattr(self._fileno, termios.TCSADRAIN, original)

    @contextmanager
    def cooked_mode(self) -> Generator[None, None, None]:
        """Line-buffered, echoing mode for the duration of the block."""
        try:
            original = termios.tcgetattr(self._fileno)
        except termios.error:
            yield
            return

        cooked = list(original)
        cooked[0] |= termios.ICRNL
        cooked[1] |= termios.OPOST
        cooked[3] |= termios.ECHO | termios.ICANON | termios.IEXTEN | termios.ISIG
        termios.tcsetattr(self._fileno, termios.TCSANOW, cooked)
        try:
            yield
        finally:
            termios.tcsetattr(self._fileno, termios.TCSANOW, original)

    def typeahead_hash(self) -> str:
        return f"fd-{self._fileno}"
