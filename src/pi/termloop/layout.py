"""The layout seam between the application and the renderer.

The renderer does not know about widgets.  It asks a :class:`Layout` how
tall it wants to be and then lets it paint into a :class:`Screen`.
:class:`FormattedTextLayout` is the simplest useful layout: it paints a
list of ``(style, text)`` fragments.
"""

from __future__ import annotations

from typing import Callable, Hashable, Protocol, Sequence, Union

from pi.termloop.screen import Point, Screen, WritePosition
from pi.termloop.utils import get_cwidth, split_graphemes

StyleAndTextTuples = list[tuple[str, str]]
AnyFormattedText = Union[str, Sequence[tuple[str, str]], Callable[[], Sequence[tuple[str, str]]]]

SET_CURSOR_POSITION = "[SetCursorPosition]"
"""Put this marker in a fragment's style to place the cursor there."""


class Layout(Protocol):
    """What the renderer needs from a layout."""

    @property
    def current_window(self) -> Hashable: ...

    def preferred_height(self, width: int, max_available_height: int) -> int: ...

    def write_to_screen(self, screen: Screen, write_position: WritePosition) -> None: ...

    def reset(self) -> None: ...


def to_formatted_text(value: AnyFormattedText) -> StyleAndTextTuples:
    if callable(value):
        value = value()
    if isinstance(value, str):
        return [("", value)]
    return list(value)


def _split_lines(fragments: StyleAndTextTuples) -> list[StyleAndTextTuples]:
    lines: list[StyleAndTextTuples] = [[]]
    for style, text in fragments:
        parts = text.split("\n")
        for i, part in enumerate(parts):
            if i > 0:
                lines.append([])
            if part or SET_CURSOR_POSITION in style:
                lines[-1].append((style, part))
    return lines


class FormattedTextLayout:
    """Paints formatted text, one screen row per line, wrapping long lines.

    Parameters
    ----------
    text:
        A string, a list of ``(style, text)`` fragments, or a callable
        returning either; the callable is evaluated on every render.
    style:
        Style string prepended to every fragment.
    wrap_lines:
        Wrap lines wider than the write position instead of cutting them.
    """

    def __init__(
        self,
        text: AnyFormattedText,
        style: str = "",
        wrap_lines: bool = True,
    ) -> None:
        self.text = text
        self.style = style
        self.wrap_lines = wrap_lines

    @property
    def current_window(self) -> Hashable:
        return self

    def reset(self) -> None:
        pass

    def _rows(self, width: int) -> list[list[tuple[str, str]]]:
        """Lines as rows of ``(style, grapheme)`` cells after wrapping."""
        rows: list[list[tuple[str, str]]] = []
        for line in _split_lines(to_formatted_text(self.text)):
            row: list[tuple[str, str]] = []
            col = 0
            for style, text in line:
                if not text:
                    row.append((style, ""))
                    continue
                for g in split_graphemes(text):
                    w = max(get_cwidth(g), 1)
                    if col + w > width and width > 0:
                        if not self.wrap_lines:
                            break
                        rows.append(row)
                        row, col = [], 0
                    row.append((style, g))
                    col += w
            rows.append(row)
        return rows

    def preferred_height(self, width: int, max_available_height: int) -> int:
        return min(len(self._rows(width)), max_available_height)

    def write_to_screen(self, screen: Screen, write_position: WritePosition) -> None:
        xpos, ypos = write_position.xpos, write_position.ypos
        max_col = xpos + write_position.width

        for y, row in enumerate(self._rows(write_position.width)):
            if y >= write_position.height:
                break
            col = xpos
            for style, g in row:
                full_style = f"{self.style} {style}".strip() if self.style else style
                if SET_CURSOR_POSITION in style:
                    screen.set_cursor_position(self, Point(x=col, y=ypos + y))
                    screen.show_cursor = True
                if g:
                    col = screen.write_text(ypos + y, col, g, full_style, max_col=max_col)

        screen.visible_windows_to_write_positions[self] = write_position
