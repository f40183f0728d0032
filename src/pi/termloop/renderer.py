"""Differential renderer.

The renderer keeps the last :class:`Screen` it drew and, on every render,
compares the new screen with it cell by cell.  Only cells that changed are
written, and the cursor is moved with the shortest relative sequence that
gets it there.  It also owns the cursor-position-report (CPR) round trips
used to learn how much room is left below the prompt in inline mode.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import threading
from collections import deque
from typing import Callable, Protocol

from pi.termloop.output import Output
from pi.termloop.screen import Char, Point, Screen, Size, WritePosition
from pi.termloop.styles import DEFAULT_STYLE, Attrs, ColorDepth, Style
from pi.termloop.utils import FilterOrBool, to_filter

__all__ = [
    "CPR_TIMEOUT",
    "CprSupport",
    "HeightIsUnknownError",
    "Renderer",
]

logger = logging.getLogger(__name__)

CPR_TIMEOUT = 2.0
"""Seconds to wait for the first CPR answer before giving up on CPR."""


class HeightIsUnknownError(Exception):
    """Raised when the number of rows above the layout is not known yet."""


class CprSupport(enum.Enum):
    UNKNOWN = "UNKNOWN"
    SUPPORTED = "SUPPORTED"
    NOT_SUPPORTED = "NOT_SUPPORTED"


class _LayoutLike(Protocol):
    @property
    def current_window(self) -> object: ...

    def preferred_height(self, width: int, max_available_height: int) -> int: ...

    def write_to_screen(self, screen: Screen, write_position: WritePosition) -> None: ...


# ---------------------------------------------------------------------------
# Style caches
# ---------------------------------------------------------------------------


class _StyleStringToAttrsCache(dict):
    """``style string -> Attrs``, filled on first lookup."""

    def __init__(self, get_attrs_for_style_str: Callable[[str], Attrs]) -> None:
        super().__init__()
        self.get_attrs_for_style_str = get_attrs_for_style_str

    def __missing__(self, style_str: str) -> Attrs:
        attrs = self.get_attrs_for_style_str(style_str)
        self[style_str] = attrs
        return attrs


class _StyleStringHasStyleCache(dict):
    """``style string -> bool``: would a space in this style be visible?"""

    def __init__(self, style_string_to_attrs: _StyleStringToAttrsCache) -> None:
        super().__init__()
        self.style_string_to_attrs = style_string_to_attrs

    def __missing__(self, style_str: str) -> bool:
        attrs = self.style_string_to_attrs[style_str]
        result = bool(
            attrs.color
            or attrs.bgcolor
            or attrs.underline
            or attrs.strike
            or attrs.blink
            or attrs.reverse
        )
        self[style_str] = result
        return result


# ---------------------------------------------------------------------------
# Screen diff
# ---------------------------------------------------------------------------


def _output_screen_diff(
    output: Output,
    screen: Screen,
    current_pos: Point,
    color_depth: ColorDepth,
    previous_screen: Screen | None,
    last_style: str | None,
    is_done: bool,
    full_screen: bool,
    attrs_for_style_string: _StyleStringToAttrsCache,
    style_string_has_style: _StyleStringHasStyleCache,
    size: Size,
    previous_width: int,
    cursor_position: Point,
) -> tuple[Point, str | None]:
    """Write the difference between *previous_screen* and *screen*.

    Returns the new cursor position and the last style string written.
    """
    width, height = size.columns, size.rows

    # Hide cursor before rendering to avoid flicker.
    output.hide_cursor()

    def reset_attributes() -> None:
        nonlocal last_style
        output.reset_attributes()
        last_style = None

    def move_cursor(new: Point) -> Point:
        current_x, current_y = current_pos.x, current_pos.y

        if new.y > current_y:
            # Newlines instead of CUD: they scroll when needed.  Reset first
            # so the newline does not paint a background color.
            reset_attributes()
            output.write("\r\n" * (new.y - current_y))
            current_x = 0
            output.cursor_forward(new.x)
            return new
        elif new.y < current_y:
            output.cursor_up(current_y - new.y)

        if current_x >= width - 1:
            output.write("\r")
            output.cursor_forward(new.x)
        elif new.x < current_x:
            output.cursor_backward(current_x - new.x)
        elif new.x > current_x:
            output.cursor_forward(new.x - current_x)

        return new

    def output_char(char: Char) -> None:
        nonlocal last_style
        if last_style == char.style:
            output.write(char.char)
        else:
            new_attrs = attrs_for_style_string[char.style]
            if not last_style or new_attrs != attrs_for_style_string[last_style]:
                output.set_attributes(new_attrs, color_depth)
            output.write(char.char)
            last_style = char.style

    def get_max_column_index(row: dict) -> int:
        """Last column holding something visible; trailing plain spaces
        do not count."""
        numbers = [
            index
            for index, cell in row.items()
            if cell.char != " " or style_string_has_style[cell.style]
        ]
        numbers.append(0)
        return max(numbers)

    # First render: reset styling.
    if previous_screen is None:
        reset_attributes()

    # Disable autowrap while painting.
    if previous_screen is None or not full_screen:
        output.disable_autowrap()

    # Redraw everything after a width change, on the first and the final render.
    if is_done or previous_screen is None or previous_width != width:
        current_pos = move_cursor(Point(x=0, y=0))
        reset_attributes()
        output.erase_down()
        previous_screen = Screen()

    current_height = min(screen.height, height)

    row_count = min(max(screen.height, previous_screen.height), height)
    for y in range(row_count):
        new_row = screen.row(y)
        previous_row = previous_screen.row(y)
        zero_width_escapes = screen.zero_width_escapes.get(y, {})

        new_max_line_len = min(width - 1, get_max_column_index(new_row))
        previous_max_line_len = min(width - 1, get_max_column_index(previous_row))

        c = 0
        while c <= new_max_line_len:
            new_char = new_row.get(c, screen.default_char)
            old_char = previous_row.get(c, previous_screen.default_char)
            char_width = new_char.width or 1

            if new_char.char != old_char.char or new_char.style != old_char.style:
                current_pos = move_cursor(Point(x=c, y=y))

                if c in zero_width_escapes:
                    output.write_raw(zero_width_escapes[c])

                output_char(new_char)
                current_pos = Point(x=current_pos.x + char_width, y=current_pos.y)

            c += char_width

        # The new line is shorter: erase the rest of the old one.
        if new_max_line_len < previous_max_line_len:
            current_pos = move_cursor(Point(x=new_max_line_len + 1, y=y))
            reset_attributes()
            output.erase_end_of_line()

    # Reserve the vertical space the layout asked for; this scrolls the
    # terminal when the prompt sits at the bottom.
    if current_height > previous_screen.height:
        current_pos = move_cursor(Point(x=0, y=current_height - 1))

    if is_done:
        current_pos = move_cursor(Point(x=0, y=current_height))
        output.erase_down()
    else:
        current_pos = move_cursor(cursor_position)

    if is_done or not full_screen:
        output.enable_autowrap()

    reset_attributes()

    if screen.show_cursor:
        output.show_cursor()

    return current_pos, last_style


# ---------------------------------------------------------------------------
# Renderer
# ---------------------------------------------------------------------------


class Renderer:
    """Draws screens to an :class:`Output`, diffing against the last one.

    Parameters
    ----------
    style:
        Style used to resolve the style strings of the cells.
    output:
        Where escape sequences are written.
    full_screen:
        Use the alternate screen and the whole terminal.
    mouse_support:
        Bool or predicate; checked on every render.
    cpr_not_supported_callback:
        Called once when the terminal did not answer the first CPR request.
    cpr_timeout:
        Seconds to wait for that first answer.
    """

    def __init__(
        self,
        style: Style | None,
        output: Output,
        full_screen: bool = False,
        mouse_support: FilterOrBool = False,
        cpr_not_supported_callback: Callable[[], None] | None = None,
        cpr_timeout: float = CPR_TIMEOUT,
        color_depth: ColorDepth | None = None,
    ) -> None:
        self.style = style or DEFAULT_STYLE
        self.output = output
        self.full_screen = full_screen
        self.mouse_support = to_filter(mouse_support)
        self.cpr_not_supported_callback = cpr_not_supported_callback
        self.cpr_timeout = cpr_timeout
        self._color_depth = color_depth

        self._in_alternate_screen = False
        self._mouse_support_enabled = False
        self._bracketed_paste_enabled = False
        self._cursor_key_mode_reset = False

        self._cpr_lock = threading.Lock()
        self._waiting_for_cpr_futures: deque[asyncio.Future[None]] = deque()
        self.cpr_support = (
            CprSupport.UNKNOWN if output.responds_to_cpr else CprSupport.NOT_SUPPORTED
        )
        self._cpr_timer: asyncio.TimerHandle | None = None

        self._attrs_for_style: _StyleStringToAttrsCache | None = None
        self._style_string_has_style: _StyleStringHasStyleCache | None = None
        self._last_style_hash: int | None = None
        self._last_color_depth: ColorDepth | None = None

        self.reset()

    # -- state --------------------------------------------------------------

    def reset(self, leave_alternate_screen: bool = True) -> None:
        """Forget what was drawn; the next render repaints everything.

        Does not touch the cells already on the terminal.
        """
        self._cursor_pos = Point(x=0, y=0)
        self._last_screen: Screen | None = None
        self._last_size: Size | None = None
        self._last_style: str | None = None
        self._min_available_height = 0

        if self._in_alternate_screen and leave_alternate_screen:
            self.output.quit_alternate_screen()
            self._in_alternate_screen = False

        if self._mouse_support_enabled:
            self.output.disable_mouse_support()
            self._mouse_support_enabled = False

        if self._bracketed_paste_enabled:
            self.output.disable_bracketed_paste()
            self._bracketed_paste_enabled = False

        self.output.show_cursor()
        self.output.flush()

    @property
    def color_depth(self) -> ColorDepth:
        if self._color_depth is not None:
            return self._color_depth
        return self.output.get_default_color_depth()

    @color_depth.setter
    def color_depth(self, value: ColorDepth | None) -> None:
        self._color_depth = value

    @property
    def last_rendered_screen(self) -> Screen | None:
        return self._last_screen

    @property
    def cursor_pos(self) -> Point:
        return self._cursor_pos

    @property
    def height_is_known(self) -> bool:
        """``True`` when the rows below the cursor are known (or irrelevant)."""
        if self.full_screen or self._min_available_height > 0:
            return True
        try:
            self._min_available_height = self.output.get_rows_below_cursor_position()
            return True
        except NotImplementedError:
            return False

    @property
    def rows_above_layout(self) -> int:
        """Rows between the top of the terminal and the layout."""
        if self._in_alternate_screen:
            return 0
        if self._min_available_height > 0:
            total_rows = self.output.get_size().rows
            last_screen_height = self._last_screen.height if self._last_screen else 0
            return total_rows - max(self._min_available_height, last_screen_height)
        raise HeightIsUnknownError("Rows above layout is unknown.")

    # -- CPR ----------------------------------------------------------------

    @property
    def waiting_for_cpr(self) -> bool:
        with self._cpr_lock:
            return bool(self._waiting_for_cpr_futures)

    def request_absolute_cursor_position(self) -> None:
        """Find out how many rows are available below the cursor.

        Full screen needs no query.  Otherwise the output is asked
        directly, and if it cannot answer a CPR request is sent.  The very
        first request tests support: if no answer arrives within
        ``cpr_timeout`` seconds CPR is considered unsupported for good.
        """
        if self.full_screen:
            self._min_available_height = self.output.get_size().rows
            return

        try:
            self._min_available_height = self.output.get_rows_below_cursor_position()
            return
        except NotImplementedError:
            pass

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, not requesting a CPR")
            return

        with self._cpr_lock:
            if self.cpr_support == CprSupport.NOT_SUPPORTED:
                return

            if self.cpr_support == CprSupport.SUPPORTED:
                self._waiting_for_cpr_futures.append(loop.create_future())
                self.output.ask_for_cpr()
                return

            # Support unknown: one outstanding request at most.
            if self._waiting_for_cpr_futures:
                return

            self._waiting_for_cpr_futures.append(loop.create_future())
            self.output.ask_for_cpr()

        logger.debug("Sent CPR request, waiting %.1fs for an answer", self.cpr_timeout)
        self._cpr_timer = loop.call_later(self.cpr_timeout, self._on_cpr_timeout)

    def _on_cpr_timeout(self) -> None:
        self._cpr_timer = None
        with self._cpr_lock:
            if self.cpr_support != CprSupport.UNKNOWN:
                return
            self.cpr_support = CprSupport.NOT_SUPPORTED

        logger.debug("Terminal did not answer the CPR request, height stays unknown")
        if self.cpr_not_supported_callback is not None:
            self.cpr_not_supported_callback()

    def report_absolute_cursor_row(self, row: int) -> None:
        """Handle a CPR answer; *row* is 1-based."""
        with self._cpr_lock:
            self.cpr_support = CprSupport.SUPPORTED
            if self._cpr_timer is not None:
                self._cpr_timer.cancel()
                self._cpr_timer = None

            total_rows = self.output.get_size().rows
            self._min_available_height = total_rows - row + 1

            future = None
            if self._waiting_for_cpr_futures:
                future = self._waiting_for_cpr_futures.popleft()

        if future is not None and not future.done():
            future.set_result(None)

    async def wait_for_cpr_responses(self, timeout: float = 1.0) -> None:
        """Wait until all pending CPR requests are answered or *timeout*."""
        with self._cpr_lock:
            if not self._waiting_for_cpr_futures or self.cpr_support == CprSupport.NOT_SUPPORTED:
                return
            futures = list(self._waiting_for_cpr_futures)

        _, pending = await asyncio.wait(futures, timeout=timeout)

        if pending:
            logger.debug("Gave up on %d CPR answer(s)", len(pending))
            with self._cpr_lock:
                for future in self._waiting_for_cpr_futures:
                    future.cancel()
                self._waiting_for_cpr_futures.clear()

    # -- rendering ----------------------------------------------------------

    def render(self, layout: _LayoutLike, is_done: bool = False, exit_style: str = "") -> Screen:
        """Let *layout* paint a fresh screen and draw it.  Returns the screen."""
        size = self.output.get_size()
        screen = Screen()
        screen.show_cursor = False

        if self.full_screen:
            height = size.rows
        elif is_done:
            height = layout.preferred_height(size.columns, size.rows)
        else:
            last_height = self._last_screen.height if self._last_screen else 0
            height = max(
                self._min_available_height,
                last_height,
                layout.preferred_height(size.columns, size.rows),
            )
        height = min(height, size.rows)

        layout.write_to_screen(screen, WritePosition(xpos=0, ypos=0, width=size.columns, height=height))
        screen.draw_all_floats()

        if exit_style:
            screen.append_style_to_content(exit_style)

        self.render_screen(
            screen,
            screen.get_cursor_position(layout.current_window),
            is_done=is_done,
            size=size,
        )
        return screen

    def render_screen(
        self,
        screen: Screen,
        cursor_position: Point,
        is_done: bool = False,
        size: Size | None = None,
    ) -> None:
        """Diff *screen* against the previous one and write the changes."""
        output = self.output

        if self.full_screen and not self._in_alternate_screen:
            self._in_alternate_screen = True
            output.enter_alternate_screen()

        if not self._bracketed_paste_enabled:
            output.enable_bracketed_paste()
            self._bracketed_paste_enabled = True

        if not self._cursor_key_mode_reset:
            output.reset_cursor_key_mode()
            self._cursor_key_mode_reset = True

        needs_mouse_support = self.mouse_support()
        if needs_mouse_support and not self._mouse_support_enabled:
            output.enable_mouse_support()
            self._mouse_support_enabled = True
        elif not needs_mouse_support and self._mouse_support_enabled:
            output.disable_mouse_support()
            self._mouse_support_enabled = False

        if size is None:
            size = output.get_size()

        if self._last_size != size:
            self._last_screen = None

        color_depth = self.color_depth
        style_hash = self.style.invalidation_hash()
        if style_hash != self._last_style_hash or color_depth != self._last_color_depth:
            self._last_screen = None
            self._attrs_for_style = None
            self._style_string_has_style = None

        if self._attrs_for_style is None:
            self._attrs_for_style = _StyleStringToAttrsCache(self.style.get_attrs_for_style_str)
        if self._style_string_has_style is None:
            self._style_string_has_style = _StyleStringHasStyleCache(self._attrs_for_style)

        self._last_style_hash = style_hash
        self._last_color_depth = color_depth

        output.begin_synchronized_output()
        try:
            self._cursor_pos, self._last_style = _output_screen_diff(
                output,
                screen,
                self._cursor_pos,
                color_depth,
                self._last_screen,
                self._last_style,
                is_done,
                full_screen=self.full_screen,
                attrs_for_style_string=self._attrs_for_style,
                style_string_has_style=self._style_string_has_style,
                size=size,
                previous_width=(self._last_size.columns if self._last_size else 0),
                cursor_position=cursor_position,
            )
            self._last_screen = screen
            self._last_size = size
        finally:
            output.end_synchronized_output()
            output.flush()

        if is_done:
            self.reset()

    def erase(self, leave_alternate_screen: bool = True) -> None:
        """Remove the drawn layout and move the cursor back to its origin."""
        output = self.output

        output.begin_synchronized_output()
        output.cursor_backward(self._cursor_pos.x)
        output.cursor_up(self._cursor_pos.y)
        output.erase_down()
        output.reset_attributes()
        output.enable_autowrap()
        output.end_synchronized_output()
        output.flush()

        self.reset(leave_alternate_screen=leave_alternate_screen)

    def clear(self) -> None:
        """Erase the layout, clear the whole screen and start at the top."""
        output = self.output

        output.begin_synchronized_output()
        output.cursor_backward(self._cursor_pos.x)
        output.cursor_up(self._cursor_pos.y)
        output.erase_down()
        output.reset_attributes()
        output.enable_autowrap()
        output.erase_screen()
        output.cursor_goto(0, 0)
        output.end_synchronized_output()
        output.flush()

        self.reset()
        self.request_absolute_cursor_position()
