"""Output sinks: the ``Output`` protocol and the VT100/ANSI implementation.

Writes are buffered and only reach the terminal on :meth:`Vt100Output.flush`
so a whole render cycle goes out in one system call.
"""

from __future__ import annotations

import errno
import logging
import os
import sys
from typing import Callable, Protocol, TextIO

from pi.termloop.screen import Size
from pi.termloop.styles import Attrs, ColorDepth, attrs_to_sgr

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# ANSI escape constants
# ---------------------------------------------------------------------------

_ERASE_SCREEN = "\x1b[2J"
_ERASE_END_OF_LINE = "\x1b[K"
_ERASE_DOWN = "\x1b[J"
_ENTER_ALTERNATE_SCREEN = "\x1b[?1049h\x1b[H"
_QUIT_ALTERNATE_SCREEN = "\x1b[?1049l"
_ENABLE_MOUSE = "\x1b[?1000h\x1b[?1003h\x1b[?1015h\x1b[?1006h"
_DISABLE_MOUSE = "\x1b[?1000l\x1b[?1015l\x1b[?1006l\x1b[?1003l"
_ENABLE_BRACKETED_PASTE = "\x1b[?2004h"
_DISABLE_BRACKETED_PASTE = "\x1b[?2004l"
_DISABLE_AUTOWRAP = "\x1b[?7l"
_ENABLE_AUTOWRAP = "\x1b[?7h"
_HIDE_CURSOR = "\x1b[?25l"
_SHOW_CURSOR = "\x1b[?12l\x1b[?25h"
_ASK_FOR_CPR = "\x1b[6n"
_RESET_CURSOR_KEY_MODE = "\x1b[?1l"
_RESET_ATTRIBUTES = "\x1b[0m"
_BEGIN_SYNCHRONIZED_OUTPUT = "\x1b[?2026h"
_END_SYNCHRONIZED_OUTPUT = "\x1b[?2026l"
_BELL = "\a"
_SET_TITLE_FMT = "\x1b]2;{}\x07"

_TRANSIENT_ERRNOS = (errno.EAGAIN, errno.EINTR)


# ---------------------------------------------------------------------------
# Output protocol
# ---------------------------------------------------------------------------


class Output(Protocol):
    """Interface for the terminal output sink used by the renderer."""

    def write(self, data: str) -> None: ...

    def write_raw(self, data: str) -> None: ...

    def flush(self) -> None: ...

    def get_size(self) -> Size: ...

    def get_rows_below_cursor_position(self) -> int: ...

    def get_default_color_depth(self) -> ColorDepth: ...

    @property
    def responds_to_cpr(self) -> bool: ...

    def set_attributes(self, attrs: Attrs, color_depth: ColorDepth) -> None: ...

    def reset_attributes(self) -> None: ...

    def erase_screen(self) -> None: ...

    def erase_end_of_line(self) -> None: ...

    def erase_down(self) -> None: ...

    def enter_alternate_screen(self) -> None: ...

    def quit_alternate_screen(self) -> None: ...

    def enable_mouse_support(self) -> None: ...

    def disable_mouse_support(self) -> None: ...

    def enable_bracketed_paste(self) -> None: ...

    def disable_bracketed_paste(self) -> None: ...

    def enable_autowrap(self) -> None: ...

    def disable_autowrap(self) -> None: ...

    def cursor_goto(self, row: int = 0, column: int = 0) -> None: ...

    def cursor_up(self, amount: int) -> None: ...

    def cursor_down(self, amount: int) -> None: ...

    def cursor_forward(self, amount: int) -> None: ...

    def cursor_backward(self, amount: int) -> None: ...

    def hide_cursor(self) -> None: ...

    def show_cursor(self) -> None: ...

    def ask_for_cpr(self) -> None: ...

    def reset_cursor_key_mode(self) -> None: ...

    def begin_synchronized_output(self) -> None: ...

    def end_synchronized_output(self) -> None: ...

    def bell(self) -> None: ...

    def set_title(self, title: str) -> None: ...


# ---------------------------------------------------------------------------
# Vt100Output implementation
# ---------------------------------------------------------------------------


class Vt100Output:
    """Buffered VT100 writer backed by a text stream (``sys.stdout``).

    Parameters
    ----------
    stdout:
        Text stream to write to.
    get_size:
        Optional callable returning the terminal :class:`Size`.  Defaults
        to asking the OS for the size of *stdout*.
    term:
        Value of ``$TERM``; used to pick the default color depth.
    enable_cpr:
        Set to ``False`` to never ask the terminal for cursor position
        reports.
    """

    def __init__(
        self,
        stdout: TextIO,
        get_size: Callable[[], Size] | None = None,
        term: str | None = None,
        enable_cpr: bool = True,
    ) -> None:
        self.stdout = stdout
        self._get_size = get_size
        self.term = term if term is not None else os.environ.get("TERM", "")
        self.enable_cpr = enable_cpr
        self._buffer: list[str] = []
        self._stream_flush_pending = False
        self._cursor_visible: bool | None = None
        self._write_log_path: str = os.environ.get("PI_TERMLOOP_WRITE_LOG", "")

    @classmethod
    def from_pty(cls, stdout: TextIO | None = None, term: str | None = None) -> Vt100Output:
        return cls(stdout or sys.stdout, term=term)

    def fileno(self) -> int:
        return self.stdout.fileno()

    # -- writing ------------------------------------------------------------

    def write(self, data: str) -> None:
        """Queue text; escape characters are neutralised to ``?``."""
        self._buffer.append(data.replace("\x1b", "?"))

    def write_raw(self, data: str) -> None:
        """Queue text as-is (escape sequences pass through)."""
        self._buffer.append(data)

    def flush(self) -> None:
        """Write the buffered data to the stream.

        A transient failure (the stream would block or the call was
        interrupted) keeps the part the stream did not accept for the next
        flush. Text the stream accepted is never queued again; if only the
        stream's own flush failed, the next call retries that flush.
        """
        if not self._buffer:
            if self._stream_flush_pending:
                self._flush_stream()
            return

        data = "".join(self._buffer)
        self._buffer = []

        try:
            self.stdout.write(data)
        except (BlockingIOError, InterruptedError) as e:
            written = getattr(e, "characters_written", 0) or 0
            self._buffer = [data[written:]]
            self._log_write(data[:written])
            logger.debug("Output write deferred after %d chars: %s", written, e)
            return
        except OSError as e:
            if e.errno in _TRANSIENT_ERRNOS:
                self._buffer = [data]
                logger.debug("Output write deferred: %s", e)
                return
            raise

        self._log_write(data)
        self._flush_stream()

    def _flush_stream(self) -> None:
        self._stream_flush_pending = False
        try:
            self.stdout.flush()
        except (BlockingIOError, InterruptedError) as e:
            self._stream_flush_pending = True
            logger.debug("Stream flush deferred: %s", e)
        except OSError as e:
            if e.errno not in _TRANSIENT_ERRNOS:
                raise
            self._stream_flush_pending = True
            logger.debug("Stream flush deferred: %s", e)

    def _log_write(self, data: str) -> None:
        if self._write_log_path and data:
            try:
                with open(self._write_log_path, "a") as f:
                    f.write(data)
            except OSError:
                logger.debug("Could not append to write log %s", self._write_log_path)

    @property
    def pending(self) -> str:
        """Text queued but not flushed yet."""
        return "".join(self._buffer)

    # -- terminal queries ---------------------------------------------------

    def get_size(self) -> Size:
        if self._get_size is not None:
            return self._get_size()
        try:
            size = os.get_terminal_size(self.stdout.fileno())
        except (ValueError, OSError, AttributeError):
            return Size(rows=24, columns=80)
        return Size(rows=size.lines or 24, columns=size.columns or 80)

    def get_rows_below_cursor_position(self) -> int:
        raise NotImplementedError("VT100 terminals report the cursor position through CPR")

    @property
    def responds_to_cpr(self) -> bool:
        if not self.enable_cpr:
            return False
        if os.environ.get("PI_TERMLOOP_NO_CPR") == "1":
            return False
        try:
            return self.stdout.isatty()
        except ValueError:
            return False

    def get_default_color_depth(self) -> ColorDepth:
        forced = ColorDepth.from_env()
        if forced is not None:
            return forced
        if self.term in ("dumb", "linux", "eterm-color"):
            return ColorDepth.DEPTH_4_BIT if self.term != "dumb" else ColorDepth.DEPTH_1_BIT
        colorterm = os.environ.get("COLORTERM", "")
        if colorterm in ("truecolor", "24bit"):
            return ColorDepth.DEPTH_24_BIT
        return ColorDepth.DEPTH_8_BIT

    # -- attributes ---------------------------------------------------------

    def set_attributes(self, attrs: Attrs, color_depth: ColorDepth) -> None:
        self.write_raw(attrs_to_sgr(attrs, color_depth))

    def reset_attributes(self) -> None:
        self.write_raw(_RESET_ATTRIBUTES)

    # -- erasing ------------------------------------------------------------

    def erase_screen(self) -> None:
        self.write_raw(_ERASE_SCREEN)

    def erase_end_of_line(self) -> None:
        self.write_raw(_ERASE_END_OF_LINE)

    def erase_down(self) -> None:
        self.write_raw(_ERASE_DOWN)

    # -- modes --------------------------------------------------------------

    def enter_alternate_screen(self) -> None:
        self.write_raw(_ENTER_ALTERNATE_SCREEN)

    def quit_alternate_screen(self) -> None:
        self.write_raw(_QUIT_ALTERNATE_SCREEN)

    def enable_mouse_support(self) -> None:
        self.write_raw(_ENABLE_MOUSE)

    def disable_mouse_support(self) -> None:
        self.write_raw(_DISABLE_MOUSE)

    def enable_bracketed_paste(self) -> None:
        self.write_raw(_ENABLE_BRACKETED_PASTE)

    def disable_bracketed_paste(self) -> None:
        self.write_raw(_DISABLE_BRACKETED_PASTE)

    def enable_autowrap(self) -> None:
        self.write_raw(_ENABLE_AUTOWRAP)

    def disable_autowrap(self) -> None:
        self.write_raw(_DISABLE_AUTOWRAP)

    def reset_cursor_key_mode(self) -> None:
        self.write_raw(_RESET_CURSOR_KEY_MODE)

    def begin_synchronized_output(self) -> None:
        self.write_raw(_BEGIN_SYNCHRONIZED_OUTPUT)

    def end_synchronized_output(self) -> None:
        self.write_raw(_END_SYNCHRONIZED_OUTPUT)

    # -- cursor -------------------------------------------------------------

    def cursor_goto(self, row: int = 0, column: int = 0) -> None:
        """Move to the 0-based (row, column)."""
        self.write_raw(f"\x1b[{row + 1};{column + 1}H")

    def cursor_up(self, amount: int) -> None:
        if amount == 0:
            return
        if amount == 1:
            self.write_raw("\x1b[A")
        else:
            self.write_raw(f"\x1b[{amount}A")

    def cursor_down(self, amount: int) -> None:
        if amount == 0:
            return
        if amount == 1:
            self.write_raw("\x1b[B")
        else:
            self.write_raw(f"\x1b[{amount}B")

    def cursor_forward(self, amount: int) -> None:
        if amount == 0:
            return
        if amount == 1:
            self.write_raw("\x1b[C")
        else:
            self.write_raw(f"\x1b[{amount}C")

    def cursor_backward(self, amount: int) -> None:
        if amount == 0:
            return
        if amount == 1:
            self.write_raw("\b")
        else:
            self.write_raw(f"\x1b[{amount}D")

    def hide_cursor(self) -> None:
        if self._cursor_visible in (True, None):
            self._cursor_visible = False
            self.write_raw(_HIDE_CURSOR)

    def show_cursor(self) -> None:
        if self._cursor_visible in (False, None):
            self._cursor_visible = True
            self.write_raw(_SHOW_CURSOR)

    def ask_for_cpr(self) -> None:
        self.write_raw(_ASK_FOR_CPR)
        self.flush()

    # -- misc ---------------------------------------------------------------

    def bell(self) -> None:
        self.write_raw(_BELL)
        self.flush()

    def set_title(self, title: str) -> None:
        if self.term in ("linux", "eterm-color"):
            return
        self.write_raw(_SET_TITLE_FMT.format(title.replace("\x1b", "").replace("\x07", "")))

    def clear_title(self) -> None:
        self.set_title("")
