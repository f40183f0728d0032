"""Key identifiers and the ``KeyPress`` value passed through dispatch.

Key identities are plain strings.  Printable characters stand for
themselves; everything else uses the names defined on :class:`Keys`
(``"escape"``, ``"ctrl+a"``, ``"up"`` ...).  A handful of pseudo keys
(``Keys.ANY``, ``Keys.SIGINT``, ``Keys.CPR_RESPONSE`` ...) never come from
a keyboard and are used internally by the dispatcher.
"""

from __future__ import annotations

import string
from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Key names
# ---------------------------------------------------------------------------


class Keys:
    """Named key constants and modifier combinators."""

    # Special keys
    escape = "escape"
    enter = "enter"
    tab = "tab"
    backtab = "shift+tab"
    backspace = "backspace"
    delete = "delete"
    insert = "insert"
    home = "home"
    end = "end"
    page_up = "pageUp"
    page_down = "pageDown"
    up = "up"
    down = "down"
    left = "left"
    right = "right"

    # Function keys
    f1 = "f1"
    f2 = "f2"
    f3 = "f3"
    f4 = "f4"
    f5 = "f5"
    f6 = "f6"
    f7 = "f7"
    f8 = "f8"
    f9 = "f9"
    f10 = "f10"
    f11 = "f11"
    f12 = "f12"

    # Pseudo keys
    ANY = "<any>"
    SIGINT = "<sigint>"
    CPR_RESPONSE = "<cpr-response>"
    BRACKETED_PASTE = "<bracketed-paste>"
    VT100_MOUSE_EVENT = "<vt100-mouse-event>"
    IGNORE = "<ignore>"

    @staticmethod
    def ctrl(key: str) -> str:
        return f"ctrl+{key}"

    @staticmethod
    def shift(key: str) -> str:
        return f"shift+{key}"

    @staticmethod
    def alt(key: str) -> str:
        return f"alt+{key}"

    @staticmethod
    def ctrl_shift(key: str) -> str:
        return f"ctrl+shift+{key}"


# ``ctrl+@`` is NUL, ``ctrl+a`` .. ``ctrl+z`` are 0x01 .. 0x1a, then the
# four symbol controls.  Tab, enter, escape and backspace get their own
# names because that is how bindings refer to them.
CONTROL_CHARACTERS: dict[str, str] = {"\x00": "ctrl+@"}
for _i, _letter in enumerate(string.ascii_lowercase, start=1):
    CONTROL_CHARACTERS[chr(_i)] = f"ctrl+{_letter}"
CONTROL_CHARACTERS.update(
    {
        "\x1c": "ctrl+\\",
        "\x1d": "ctrl+]",
        "\x1e": "ctrl+^",
        "\x1f": "ctrl+_",
        "\t": Keys.tab,
        "\r": Keys.enter,
        "\x1b": Keys.escape,
        "\x7f": Keys.backspace,
        "\x08": Keys.backspace,
    }
)
del _i, _letter


def is_pseudo_key(key: str) -> bool:
    """Return ``True`` for keys that never come from the keyboard."""
    return key.startswith("<") and key.endswith(">") and len(key) > 2


# ---------------------------------------------------------------------------
# KeyPress
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class KeyPress:
    """One decoded key event.

    ``key`` is a :class:`Keys` name or a single character; ``data`` is the
    raw text the terminal sent for it (defaults to ``key`` itself).
    """

    key: str
    data: str = ""

    def __post_init__(self) -> None:
        if not self.data:
            object.__setattr__(self, "data", self.key)

    def __repr__(self) -> str:
        return f"KeyPress(key={self.key!r}, data={self.data!r})"
