"""Sparse screen buffer used as the render target and the diff baseline.

A :class:`Screen` maps ``row -> column -> Char``.  Only cells that were
written are stored; everything else reads back as ``default_char``.  The
dimensions grow automatically as cells are written.  Floating overlays
register draw functions with a z-index and are painted by
:meth:`Screen.draw_all_floats` after the main content.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Hashable, NamedTuple

from pi.termloop.utils import get_cwidth, split_graphemes

# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------


class Point(NamedTuple):
    x: int
    y: int


class Size(NamedTuple):
    rows: int
    columns: int


@dataclass(frozen=True)
class WritePosition:
    """The rectangle a layout is allowed to draw into."""

    xpos: int
    ypos: int
    width: int
    height: int


# ---------------------------------------------------------------------------
# Char
# ---------------------------------------------------------------------------

TRANSPARENT = "[Transparent]"

_CONTROL_STYLE = "class:control-character"
_NBSP_STYLE = "class:nbsp"


def _display_form(ch: str) -> str | None:
    """Caret or hex notation for C0/DEL/C1 control characters."""
    cp = ord(ch)
    if cp < 0x20:
        return "^" + chr(cp + 0x40)
    if cp == 0x7F:
        return "^?"
    if 0x80 <= cp <= 0x9F:
        return f"<{cp:x}>"
    return None


class Char:
    """An immutable styled cell.

    Use :meth:`Char.create` to get interned instances; direct construction
    is fine for one-offs.  Control characters are replaced by their visible
    form (``^A``) and a non-breaking space becomes a plain space, each with
    an extra class in the style.
    """

    __slots__ = ("char", "style", "width")

    def __init__(self, char: str = " ", style: str = "") -> None:
        if len(char) == 1:
            display = _display_form(char)
            if display is not None:
                char = display
                style = f"{_CONTROL_STYLE} {style}" if style else _CONTROL_STYLE
            elif char == "\xa0":
                char = " "
                style = f"{_NBSP_STYLE} {style}" if style else _NBSP_STYLE

        self.char = char
        self.style = style
        if len(char) == 1:
            self.width = get_cwidth(char)
        else:
            self.width = sum(get_cwidth(g) for g in split_graphemes(char))

    @classmethod
    def create(cls, char: str, style: str) -> Char:
        key = (char, style)
        cached = _char_cache.get(key)
        if cached is not None:
            return cached
        if len(_char_cache) >= _CHAR_CACHE_MAX:
            _char_cache.clear()
        result = _char_cache[key] = cls(char, style)
        return result

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Char):
            return NotImplemented
        return self.char == other.char and self.style == other.style

    def __ne__(self, other: object) -> bool:
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    def __hash__(self) -> int:
        return hash((self.char, self.style))

    def __repr__(self) -> str:
        return f"Char({self.char!r}, {self.style!r})"


_char_cache: dict[tuple[str, str], Char] = {}
_CHAR_CACHE_MAX = 1_000_000


# ---------------------------------------------------------------------------
# Screen
# ---------------------------------------------------------------------------


class Screen:
    """Sparse two-dimensional buffer of :class:`Char` cells."""

    def __init__(
        self,
        default_char: Char | None = None,
        initial_width: int = 0,
        initial_height: int = 0,
    ) -> None:
        self.default_char = default_char or Char.create(" ", TRANSPARENT)
        self._initial_width = max(0, initial_width)
        self._initial_height = max(0, initial_height)

        self.data_buffer: dict[int, dict[int, Char]] = {}
        self.zero_width_escapes: dict[int, dict[int, str]] = {}
        self.cursor_positions: dict[Hashable, Point] = {}
        self.menu_positions: dict[Hashable, Point] = {}
        self.visible_windows_to_write_positions: dict[Hashable, WritePosition] = {}
        self.show_cursor = True

        self.width = self._initial_width
        self.height = self._initial_height

        self._draw_float_functions: list[tuple[int, int, Callable[[], None]]] = []
        self._draw_order = 0

    # -- cells --------------------------------------------------------------

    def __getitem__(self, pos: tuple[int, int]) -> Char:
        row, col = pos
        row_data = self.data_buffer.get(row)
        if row_data is None:
            return self.default_char
        return row_data.get(col, self.default_char)

    def __setitem__(self, pos: tuple[int, int], char: Char) -> None:
        row, col = pos
        self.data_buffer.setdefault(row, {})[col] = char
        if col >= 0 and col + 1 > self.width:
            self.width = col + 1
        if row >= 0 and row + 1 > self.height:
            self.height = row + 1

    def row(self, row: int) -> dict[int, Char]:
        """Stored cells of *row* (empty dict when nothing was written)."""
        return self.data_buffer.get(row, {})

    def write_text(
        self, row: int, col: int, text: str, style: str = "", max_col: int | None = None
    ) -> int:
        """Write *text* starting at (row, col); return the column after it.

        Wide glyphs occupy two columns: the glyph itself and an empty
        continuation cell.  Writing stops before *max_col*.
        """
        for g in split_graphemes(text):
            char = Char.create(g, style)
            width = char.width
            if max_col is not None and col + max(width, 1) > max_col:
                break
            if width == 0:
                continue
            self[row, col] = char
            if width == 2:
                self[row, col + 1] = Char.create("", style)
            col += max(width, 1)
        return col

    # -- cursor & menu ------------------------------------------------------

    def set_cursor_position(self, window: Hashable, position: Point) -> None:
        self.cursor_positions[window] = position

    def get_cursor_position(self, window: Hashable) -> Point:
        return self.cursor_positions.get(window, Point(x=0, y=0))

    def set_menu_position(self, window: Hashable, position: Point) -> None:
        self.menu_positions[window] = position

    def get_menu_position(self, window: Hashable) -> Point:
        """Menu position, falling back to the cursor position, then origin."""
        if window in self.menu_positions:
            return self.menu_positions[window]
        return self.get_cursor_position(window)

    # -- zero width escapes -------------------------------------------------

    def add_zero_width_escape(self, row: int, col: int, escape: str) -> None:
        if not escape:
            return
        row_data = self.zero_width_escapes.setdefault(row, {})
        row_data[col] = row_data.get(col, "") + escape

    def get_zero_width_escapes(self, row: int, col: int) -> str:
        return self.zero_width_escapes.get(row, {}).get(col, "")

    # -- floats -------------------------------------------------------------

    def draw_with_z_index(self, z_index: int, draw_func: Callable[[], None]) -> None:
        self._draw_float_functions.append((z_index, self._draw_order, draw_func))
        self._draw_order += 1

    def draw_all_floats(self) -> None:
        """Run queued draw functions, lowest z-index first.

        Draw functions may queue further draw functions; those are picked up
        in the same pass.  On error the queue is dropped.
        """
        try:
            while self._draw_float_functions:
                self._draw_float_functions.sort(key=lambda item: (item[0], item[1]))
                _, _, draw_func = self._draw_float_functions.pop(0)
                draw_func()
        except BaseException:
            self._draw_float_functions.clear()
            raise

    # -- bulk styling -------------------------------------------------------

    def fill_area(
        self, write_position: WritePosition, style: str = "", after: bool = False
    ) -> None:
        """Add *style* to every cell of the rectangle (before or after theirs)."""
        if not style.strip():
            return
        for row in range(write_position.ypos, write_position.ypos + write_position.height):
            for col in range(write_position.xpos, write_position.xpos + write_position.width):
                existing = self[row, col]
                if not existing.style:
                    new_style = style
                elif after:
                    new_style = f"{existing.style} {style}"
                else:
                    new_style = f"{style} {existing.style}"
                self[row, col] = Char.create(existing.char, new_style)

    def append_style_to_content(self, style_str: str) -> None:
        """Append *style_str* to the style of every stored cell."""
        if not style_str.strip():
            return
        for row_data in self.data_buffer.values():
            for col, existing in list(row_data.items()):
                new_style = f"{existing.style} {style_str}" if existing.style else style_str
                row_data[col] = Char.create(existing.char, new_style)

    def clear(self) -> None:
        self.data_buffer.clear()
        self.zero_width_escapes.clear()
        self.cursor_positions.clear()
        self.menu_positions.clear()
        self.visible_windows_to_write_positions.clear()
        self._draw_float_functions.clear()
        self._draw_order = 0
        self.width = self._initial_width
        self.height = self._initial_height
