"""Small shared helpers: hook events and display-width measurement."""

from __future__ import annotations

import unicodedata
from typing import Any, Callable, Generic, TypeVar, Union

import grapheme
import wcwidth as _wcwidth

_SenderT = TypeVar("_SenderT")


# ---------------------------------------------------------------------------
# Event hooks
# ---------------------------------------------------------------------------


class Event(Generic[_SenderT]):
    """A list of handlers called with the sender as the only argument.

    ``subscribe`` returns an unsubscribe function.  ``+=`` and ``-=`` are
    accepted as shorthands.
    """

    def __init__(
        self,
        sender: _SenderT,
        handler: Callable[[_SenderT], Any] | None = None,
    ) -> None:
        self.sender = sender
        self._handlers: list[Callable[[_SenderT], Any]] = []
        if handler is not None:
            self._handlers.append(handler)

    def __call__(self) -> None:
        """Fire the event."""
        for handler in list(self._handlers):
            handler(self.sender)

    def fire(self) -> None:
        self()

    def subscribe(self, handler: Callable[[_SenderT], Any]) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            self.remove_handler(handler)

        return unsubscribe

    def remove_handler(self, handler: Callable[[_SenderT], Any]) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def __iadd__(self, handler: Callable[[_SenderT], Any]) -> Event[_SenderT]:
        self.subscribe(handler)
        return self

    def __isub__(self, handler: Callable[[_SenderT], Any]) -> Event[_SenderT]:
        self.remove_handler(handler)
        return self

    def __len__(self) -> int:
        return len(self._handlers)


# ---------------------------------------------------------------------------
# Width cache (capped at 512 entries)
# ---------------------------------------------------------------------------

_width_cache: dict[str, int] = {}
_WIDTH_CACHE_MAX = 512


def _cache_width(key: str, value: int) -> int:
    if len(_width_cache) >= _WIDTH_CACHE_MAX:
        _width_cache.clear()
    _width_cache[key] = value
    return value


def get_cwidth(g: str) -> int:
    """Return the number of terminal columns a grapheme cluster occupies.

    Control characters and combining marks are 0, emoji sequences
    (VS16, ZWJ, skin tones, regional indicators) are 2, everything else
    is whatever ``wcwidth`` says for the first code point.
    """
    if not g:
        return 0

    if len(g) == 1:
        cp = ord(g)
        if cp < 0x20 or (0x7F <= cp <= 0x9F):
            return 0
        if cp < 0x7F:
            return 1
        cached = _width_cache.get(g)
        if cached is not None:
            return cached
        return _cache_width(g, max(_wcwidth.wcwidth(g), 0))

    cached = _width_cache.get(g)
    if cached is not None:
        return cached

    for ch in g:
        cp = ord(ch)
        if cp in (0xFE0F, 0x200D):
            return _cache_width(g, 2)
        if 0x1F3FB <= cp <= 0x1F3FF or 0x1F1E6 <= cp <= 0x1F1FF:
            return _cache_width(g, 2)

    first = g[0]
    if ord(first) >= 0x1F000:
        return _cache_width(g, 2)

    cat = unicodedata.category(first)
    if cat.startswith("M") or cat == "Cf":
        return _cache_width(g, 0)

    return _cache_width(g, max(_wcwidth.wcwidth(first), 0))


def split_graphemes(text: str) -> list[str]:
    """Split *text* into grapheme clusters."""
    if text.isascii():
        return list(text)
    return list(grapheme.graphemes(text))


def text_width(text: str) -> int:
    """Display width of *text* measured per grapheme cluster."""
    if text.isascii() and text.isprintable():
        return len(text)
    return sum(get_cwidth(g) for g in split_graphemes(text))


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------

FilterOrBool = Union[bool, Callable[[], bool]]


def to_filter(value: bool | Callable[[], bool]) -> Callable[[], bool]:
    """Turn a bool or a zero-argument predicate into a predicate."""
    if callable(value):
        return value
    if value:
        return _always
    return _never


def _always() -> bool:
    return True


def _never() -> bool:
    return False
