"""Style strings, resolved attributes and SGR generation.

A style string is a space separated list of tokens::

    "class:prompt,title bold fg:ansired bg:#202020"

``class:`` tokens pull in the rules of the active :class:`Style`; the other
tokens set attributes directly and win over class rules that come before
them.  Tokens in square brackets (``[Transparent]``) are markers used by
the screen and carry no attributes.
"""

from __future__ import annotations

import enum
import os
import re
from dataclasses import dataclass, fields, replace
from typing import Iterable, Mapping

# ---------------------------------------------------------------------------
# Attrs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Attrs:
    """Resolved text attributes.  ``None`` means "not set"."""

    color: str | None = None
    bgcolor: str | None = None
    bold: bool | None = None
    dim: bool | None = None
    italic: bool | None = None
    underline: bool | None = None
    strike: bool | None = None
    blink: bool | None = None
    reverse: bool | None = None
    hidden: bool | None = None


DEFAULT_ATTRS = Attrs(
    color="",
    bgcolor="",
    bold=False,
    dim=False,
    italic=False,
    underline=False,
    strike=False,
    blink=False,
    reverse=False,
    hidden=False,
)

_EMPTY_ATTRS = Attrs()

_ATTR_NAMES = ("bold", "dim", "italic", "underline", "strike", "blink", "reverse", "hidden")


def merge_attrs(list_of_attrs: Iterable[Attrs]) -> Attrs:
    """Combine attrs left to right; later values override earlier ones."""
    result: dict[str, object] = {}
    for attrs in list_of_attrs:
        for f in fields(attrs):
            value = getattr(attrs, f.name)
            if value is not None:
                result[f.name] = value
    return replace(_EMPTY_ATTRS, **result)  # type: ignore[arg-type]


def _with_defaults(attrs: Attrs) -> Attrs:
    return merge_attrs([DEFAULT_ATTRS, attrs])


# ---------------------------------------------------------------------------
# Colors
# ---------------------------------------------------------------------------

ANSI_COLOR_NAMES: tuple[str, ...] = (
    "ansidefault",
    "ansiblack",
    "ansired",
    "ansigreen",
    "ansiyellow",
    "ansiblue",
    "ansimagenta",
    "ansicyan",
    "ansigray",
    "ansibrightblack",
    "ansibrightred",
    "ansibrightgreen",
    "ansibrightyellow",
    "ansibrightblue",
    "ansibrightmagenta",
    "ansibrightcyan",
    "ansiwhite",
)

_NAMED_ALIASES: dict[str, str] = {
    "default": "ansidefault",
    "black": "ansiblack",
    "red": "ansired",
    "green": "ansigreen",
    "yellow": "ansiyellow",
    "blue": "ansiblue",
    "magenta": "ansimagenta",
    "cyan": "ansicyan",
    "gray": "ansigray",
    "grey": "ansigray",
    "white": "ansiwhite",
}

_FG_ANSI_CODES: dict[str, int] = {
    "ansidefault": 39,
    "ansiblack": 30,
    "ansired": 31,
    "ansigreen": 32,
    "ansiyellow": 33,
    "ansiblue": 34,
    "ansimagenta": 35,
    "ansicyan": 36,
    "ansigray": 37,
    "ansibrightblack": 90,
    "ansibrightred": 91,
    "ansibrightgreen": 92,
    "ansibrightyellow": 93,
    "ansibrightblue": 94,
    "ansibrightmagenta": 95,
    "ansibrightcyan": 96,
    "ansiwhite": 97,
}

# Approximate xterm RGB values used to pick the nearest 16-color entry.
_ANSI_RGB: dict[str, tuple[int, int, int]] = {
    "ansiblack": (0x00, 0x00, 0x00),
    "ansired": (0xCD, 0x00, 0x00),
    "ansigreen": (0x00, 0xCD, 0x00),
    "ansiyellow": (0xCD, 0xCD, 0x00),
    "ansiblue": (0x00, 0x00, 0xEE),
    "ansimagenta": (0xCD, 0x00, 0xCD),
    "ansicyan": (0x00, 0xCD, 0xCD),
    "ansigray": (0xE5, 0xE5, 0xE5),
    "ansibrightblack": (0x7F, 0x7F, 0x7F),
    "ansibrightred": (0xFF, 0x00, 0x00),
    "ansibrightgreen": (0x00, 0xFF, 0x00),
    "ansibrightyellow": (0xFF, 0xFF, 0x00),
    "ansibrightblue": (0x5C, 0x5C, 0xFF),
    "ansibrightmagenta": (0xFF, 0x00, 0xFF),
    "ansibrightcyan": (0x00, 0xFF, 0xFF),
    "ansiwhite": (0xFF, 0xFF, 0xFF),
}

_HEX_RE = re.compile(r"^#?([0-9a-fA-F]{6}|[0-9a-fA-F]{3})$")


def parse_color(text: str) -> str:
    """Normalize a color to an ``ansi*`` name or six lowercase hex digits.

    Raises ``ValueError`` for anything else.
    """
    lowered = text.lower()
    if lowered in _FG_ANSI_CODES:
        return lowered
    if lowered in _NAMED_ALIASES:
        return _NAMED_ALIASES[lowered]
    if lowered in ("", "default"):
        return ""

    m = _HEX_RE.match(text)
    if m:
        digits = m.group(1).lower()
        if len(digits) == 3:
            digits = "".join(c * 2 for c in digits)
        return digits

    raise ValueError(f"Wrong color format {text!r}")


def _hex_to_rgb(color: str) -> tuple[int, int, int]:
    return int(color[0:2], 16), int(color[2:4], 16), int(color[4:6], 16)


def _distance(a: tuple[int, int, int], b: tuple[int, int, int]) -> int:
    return (a[0] - b[0]) ** 2 + (a[1] - b[1]) ** 2 + (a[2] - b[2]) ** 2


_16_cache: dict[tuple[int, int, int], str] = {}
_256_cache: dict[tuple[int, int, int], int] = {}


def _closest_ansi(rgb: tuple[int, int, int]) -> str:
    cached = _16_cache.get(rgb)
    if cached is None:
        cached = min(_ANSI_RGB, key=lambda name: _distance(_ANSI_RGB[name], rgb))
        _16_cache[rgb] = cached
    return cached


def _build_256_palette() -> list[tuple[int, tuple[int, int, int]]]:
    palette: list[tuple[int, tuple[int, int, int]]] = []
    levels = (0x00, 0x5F, 0x87, 0xAF, 0xD7, 0xFF)
    for i in range(216):
        r, g, b = levels[(i // 36) % 6], levels[(i // 6) % 6], levels[i % 6]
        palette.append((16 + i, (r, g, b)))
    for i in range(24):
        v = 8 + i * 10
        palette.append((232 + i, (v, v, v)))
    return palette


_PALETTE_256 = _build_256_palette()


def _closest_256(rgb: tuple[int, int, int]) -> int:
    cached = _256_cache.get(rgb)
    if cached is None:
        cached = min(_PALETTE_256, key=lambda entry: _distance(entry[1], rgb))[0]
        _256_cache[rgb] = cached
    return cached


class ColorDepth(str, enum.Enum):
    """Number of colors the output is allowed to use."""

    DEPTH_1_BIT = "DEPTH_1_BIT"
    DEPTH_4_BIT = "DEPTH_4_BIT"
    DEPTH_8_BIT = "DEPTH_8_BIT"
    DEPTH_24_BIT = "DEPTH_24_BIT"

    MONOCHROME = DEPTH_1_BIT
    ANSI_COLORS_ONLY = DEPTH_4_BIT
    DEFAULT = DEPTH_8_BIT
    TRUE_COLOR = DEPTH_24_BIT

    @classmethod
    def from_env(cls) -> ColorDepth | None:
        """Color depth forced through the environment, if any."""
        if "NO_COLOR" in os.environ:
            return cls.DEPTH_1_BIT
        value = os.environ.get("PI_TERMLOOP_COLOR_DEPTH", "")
        if value in cls.__members__:
            return cls[value]
        return None


def _color_codes(color: str, depth: ColorDepth, background: bool) -> list[str]:
    if not color or depth == ColorDepth.DEPTH_1_BIT:
        return []

    offset = 10 if background else 0
    if color in _FG_ANSI_CODES:
        return [str(_FG_ANSI_CODES[color] + offset)]

    rgb = _hex_to_rgb(color)
    if depth == ColorDepth.DEPTH_24_BIT:
        return ["48" if background else "38", "2", str(rgb[0]), str(rgb[1]), str(rgb[2])]
    if depth == ColorDepth.DEPTH_8_BIT:
        return ["48" if background else "38", "5", str(_closest_256(rgb))]
    return [str(_FG_ANSI_CODES[_closest_ansi(rgb)] + offset)]


_SGR_CODES = {
    "bold": "1",
    "dim": "2",
    "italic": "3",
    "underline": "4",
    "blink": "5",
    "reverse": "7",
    "hidden": "8",
    "strike": "9",
}


def attrs_to_sgr(attrs: Attrs, depth: ColorDepth = ColorDepth.DEPTH_8_BIT) -> str:
    """Escape sequence that resets and then applies *attrs*."""
    attrs = _with_defaults(attrs)
    parts: list[str] = []
    parts.extend(_color_codes(attrs.color or "", depth, background=False))
    parts.extend(_color_codes(attrs.bgcolor or "", depth, background=True))
    for name, code in _SGR_CODES.items():
        if getattr(attrs, name):
            parts.append(code)

    if parts:
        return "\x1b[0;" + ";".join(parts) + "m"
    return "\x1b[0m"


# ---------------------------------------------------------------------------
# Style
# ---------------------------------------------------------------------------


def _parse_style_tokens(style_str: str) -> tuple[Attrs, list[str]]:
    """Parse the attribute tokens of a rule; returns attrs and class names."""
    values: dict[str, object] = {}
    classes: list[str] = []
    for token in style_str.split():
        if token.startswith("[") and token.endswith("]"):
            continue
        if token.startswith("class:"):
            classes.extend(c for c in token[6:].lower().split(",") if c)
        elif token in _ATTR_NAMES:
            values[token] = True
        elif token.startswith("no") and token[2:] in _ATTR_NAMES:
            values[token[2:]] = False
        elif token == "noinherit":
            values.update(
                {f.name: getattr(DEFAULT_ATTRS, f.name) for f in fields(DEFAULT_ATTRS)}
            )
        elif token.startswith("fg:"):
            values["color"] = parse_color(token[3:])
        elif token.startswith("bg:"):
            values["bgcolor"] = parse_color(token[3:])
        else:
            values["color"] = parse_color(token)
    return replace(_EMPTY_ATTRS, **values), classes  # type: ignore[arg-type]


class Style:
    """An ordered list of ``(selector, style string)`` rules.

    A selector is a dotted set of class names (``"prompt.arg"``); it
    matches when all of its names are active.  The empty selector always
    matches and provides the defaults.  Later rules win.
    """

    def __init__(self, rules: Iterable[tuple[str, str]] | Mapping[str, str] = ()) -> None:
        if isinstance(rules, Mapping):
            rules = list(rules.items())
        self.rules: list[tuple[str, str]] = list(rules)
        self._compiled: list[tuple[frozenset[str], Attrs, list[str]]] = []
        for selector, style_str in self.rules:
            names = frozenset(n for n in selector.lower().split(".") if n)
            attrs, nested = _parse_style_tokens(style_str)
            self._compiled.append((names, attrs, nested))
        self._cache: dict[str, Attrs] = {}

    def _rule_attrs(self, active: set[str], applied: set[int]) -> list[Attrs]:
        """Attrs of rules that match *active* and were not applied yet."""
        result = []
        for index, (names, attrs, _) in enumerate(self._compiled):
            if index not in applied and names <= active:
                applied.add(index)
                result.append(attrs)
        return result

    def _expand(self, classes: Iterable[str], active: set[str]) -> None:
        pending = list(classes)
        while pending:
            name = pending.pop(0)
            if name in active:
                continue
            active.add(name)
            for names, _, nested in self._compiled:
                if name in names and names <= active:
                    pending.extend(nested)

    def get_attrs_for_style_str(self, style_str: str, default: Attrs = DEFAULT_ATTRS) -> Attrs:
        """Resolve *style_str* to attrs, filling unset fields from *default*."""
        cached = self._cache.get(style_str)
        if cached is not None and default is DEFAULT_ATTRS:
            return cached

        layers: list[Attrs] = [default]
        active: set[str] = set()
        applied: set[int] = set()
        layers.extend(self._rule_attrs(active, applied))

        for token in style_str.split():
            if token.startswith("class:"):
                self._expand((c for c in token[6:].lower().split(",") if c), active)
                layers.extend(self._rule_attrs(active, applied))
            else:
                attrs, _ = _parse_style_tokens(token)
                layers.append(attrs)

        result = merge_attrs(layers)
        if default is DEFAULT_ATTRS:
            if len(self._cache) >= _STYLE_CACHE_MAX:
                self._cache.clear()
            self._cache[style_str] = result
        return result

    def invalidation_hash(self) -> int:
        return hash(tuple(self.rules))


_STYLE_CACHE_MAX = 10_000

DEFAULT_STYLE = Style([("control-character", "ansiblue"), ("nbsp", "underline ansiyellow")])
