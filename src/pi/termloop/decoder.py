"""Turn raw terminal input into :class:`KeyPress` values.

Input arrives in arbitrary chunks, so an escape sequence may be split over
several reads.  :class:`KeyDecoder` keeps the incomplete tail until more
data arrives or :meth:`KeyDecoder.flush` is called (which is how a lone
ESC becomes the ``escape`` key).  Bracketed paste content is delivered as
one ``Keys.BRACKETED_PASTE`` key press.
"""

from __future__ import annotations

import re

from pi.termloop.keys import CONTROL_CHARACTERS, KeyPress, Keys

__all__ = ["KeyDecoder", "ANSI_SEQUENCES"]

ESC = "\x1b"
BRACKETED_PASTE_START = "\x1b[200~"
BRACKETED_PASTE_END = "\x1b[201~"

_CPR_RESPONSE_RE = re.compile(r"^\x1b\[\d+;\d+R$")
_MOUSE_EVENT_RE = re.compile(r"^\x1b\[(<\d+;\d+;\d+[mM]|M...|\d+;\d+;\d+M)$", re.S)
_SGR_MOUSE_PAYLOAD_RE = re.compile(r"^<\d+;\d+;\d+[Mm]$")

# ---------------------------------------------------------------------------
# Escape sequence table
# ---------------------------------------------------------------------------

ANSI_SEQUENCES: dict[str, str] = {
    "\x1b[A": Keys.up,
    "\x1b[B": Keys.down,
    "\x1b[C": Keys.right,
    "\x1b[D": Keys.left,
    "\x1b[H": Keys.home,
    "\x1b[F": Keys.end,
    "\x1bOA": Keys.up,
    "\x1bOB": Keys.down,
    "\x1bOC": Keys.right,
    "\x1bOD": Keys.left,
    "\x1bOH": Keys.home,
    "\x1bOF": Keys.end,
    "\x1b[1~": Keys.home,
    "\x1b[2~": Keys.insert,
    "\x1b[3~": Keys.delete,
    "\x1b[4~": Keys.end,
    "\x1b[5~": Keys.page_up,
    "\x1b[6~": Keys.page_down,
    "\x1b[7~": Keys.home,
    "\x1b[8~": Keys.end,
    "\x1b[Z": Keys.backtab,
    "\x1bOP": Keys.f1,
    "\x1bOQ": Keys.f2,
    "\x1bOR": Keys.f3,
    "\x1bOS": Keys.f4,
    "\x1b[11~": Keys.f1,
    "\x1b[12~": Keys.f2,
    "\x1b[13~": Keys.f3,
    "\x1b[14~": Keys.f4,
    "\x1b[15~": Keys.f5,
    "\x1b[17~": Keys.f6,
    "\x1b[18~": Keys.f7,
    "\x1b[19~": Keys.f8,
    "\x1b[20~": Keys.f9,
    "\x1b[21~": Keys.f10,
    "\x1b[23~": Keys.f11,
    "\x1b[24~": Keys.f12,
    "\x1b[E": Keys.IGNORE,
    "\x1b[G": Keys.IGNORE,
}

# xterm modifier parameter -> prefix.  ``\x1b[1;5A`` is ctrl+up.
_MODIFIER_PREFIXES: dict[int, str] = {
    2: "shift+",
    3: "alt+",
    4: "shift+alt+",
    5: "ctrl+",
    6: "ctrl+shift+",
    7: "ctrl+alt+",
    8: "ctrl+shift+alt+",
}

for _code, _prefix in _MODIFIER_PREFIXES.items():
    for _final, _name in (
        ("A", Keys.up),
        ("B", Keys.down),
        ("C", Keys.right),
        ("D", Keys.left),
        ("H", Keys.home),
        ("F", Keys.end),
    ):
        ANSI_SEQUENCES[f"\x1b[1;{_code}{_final}"] = _prefix + _name
    for _number, _name in (
        (2, Keys.insert),
        (3, Keys.delete),
        (5, Keys.page_up),
        (6, Keys.page_down),
    ):
        ANSI_SEQUENCES[f"\x1b[{_number};{_code}~"] = _prefix + _name
del _code, _prefix, _final, _name, _number


# ---------------------------------------------------------------------------
# Sequence splitting
# ---------------------------------------------------------------------------


def _csi_status(data: str) -> str:
    if len(data) < 3:
        return "incomplete"
    payload = data[2:]
    if payload.startswith("M"):
        # X10 mouse: ESC [ M followed by three raw bytes.
        return "complete" if len(data) >= 6 else "incomplete"
    if 0x40 <= ord(payload[-1]) <= 0x7E:
        if payload.startswith("<") and not _SGR_MOUSE_PAYLOAD_RE.match(payload):
            return "incomplete" if payload[-1] not in "Mm" else "complete"
        return "complete"
    return "incomplete"


def _sequence_status(data: str) -> str:
    """``"complete"``, ``"incomplete"`` or ``"not-escape"``."""
    if not data.startswith(ESC):
        return "not-escape"
    if len(data) == 1:
        return "incomplete"

    second = data[1]
    if second == "[":
        return _csi_status(data)
    if second == "O":
        return "complete" if len(data) >= 3 else "incomplete"
    if second == "]":
        return "complete" if data.endswith("\x07") or data.endswith(ESC + "\\") else "incomplete"
    if second in "P_":
        return "complete" if len(data) > 2 and data.endswith(ESC + "\\") else "incomplete"
    # Meta: ESC followed by one character.
    return "complete"


def _split_sequences(buffer: str) -> tuple[list[str], str]:
    """Split *buffer* into complete sequences and an incomplete remainder."""
    sequences: list[str] = []
    pos = 0
    while pos < len(buffer):
        if buffer[pos] != ESC:
            sequences.append(buffer[pos])
            pos += 1
            continue

        end = pos + 1
        while True:
            if end > len(buffer):
                return sequences, buffer[pos:]
            status = _sequence_status(buffer[pos:end])
            if status == "incomplete":
                end += 1
                continue
            sequences.append(buffer[pos:end])
            pos = end
            break

    return sequences, ""


def _to_key_presses(sequence: str) -> list[KeyPress]:
    if len(sequence) == 1:
        return [KeyPress(CONTROL_CHARACTERS.get(sequence, sequence), sequence)]

    key = ANSI_SEQUENCES.get(sequence)
    if key is not None:
        return [KeyPress(key, sequence)]
    if _CPR_RESPONSE_RE.match(sequence):
        return [KeyPress(Keys.CPR_RESPONSE, sequence)]
    if _MOUSE_EVENT_RE.match(sequence):
        return [KeyPress(Keys.VT100_MOUSE_EVENT, sequence)]

    if len(sequence) == 2:
        # Meta prefix: ESC followed by a key.
        return [KeyPress(Keys.escape, ESC)] + _to_key_presses(sequence[1])

    return [KeyPress(Keys.IGNORE, sequence)]


# ---------------------------------------------------------------------------
# KeyDecoder
# ---------------------------------------------------------------------------


class KeyDecoder:
    """Incremental decoder from terminal text to key presses."""

    def __init__(self) -> None:
        self._buffer = ""
        self._paste_mode = False
        self._paste_buffer = ""

    @property
    def pending(self) -> str:
        """Undecoded input held back as a possibly incomplete sequence."""
        return self._buffer

    def reset(self) -> None:
        self._buffer = ""
        self._paste_mode = False
        self._paste_buffer = ""

    def feed(self, data: str) -> list[KeyPress]:
        """Decode *data*; incomplete trailing sequences are kept."""
        result: list[KeyPress] = []

        if self._paste_mode:
            self._paste_buffer += data
            end = self._paste_buffer.find(BRACKETED_PASTE_END)
            if end == -1:
                return result
            result.append(KeyPress(Keys.BRACKETED_PASTE, self._paste_buffer[:end]))
            remaining = self._paste_buffer[end + len(BRACKETED_PASTE_END):]
            self._paste_mode = False
            self._paste_buffer = ""
            result.extend(self.feed(remaining))
            return result

        self._buffer += data

        start = self._buffer.find(BRACKETED_PASTE_START)
        if start != -1:
            before, after = self._buffer[:start], self._buffer[start + len(BRACKETED_PASTE_START):]
            self._buffer = ""
            sequences, remainder = _split_sequences(before)
            for sequence in sequences + ([remainder] if remainder else []):
                result.extend(self._decode_flushed(sequence))
            self._paste_mode = True
            result.extend(self.feed(after))
            return result

        sequences, self._buffer = _split_sequences(self._buffer)
        for sequence in sequences:
            result.extend(_to_key_presses(sequence))
        return result

    def flush(self) -> list[KeyPress]:
        """Give up waiting and decode whatever is buffered."""
        if not self._buffer:
            return []
        data, self._buffer = self._buffer, ""
        return self._decode_flushed(data)

    @staticmethod
    def _decode_flushed(data: str) -> list[KeyPress]:
        key = ANSI_SEQUENCES.get(data)
        if key is not None:
            return [KeyPress(key, data)]
        if data == ESC:
            return [KeyPress(Keys.escape, data)]
        if data.startswith(ESC) and len(data) > 1:
            # An unfinished sequence: the escape, then the rest as typed.
            result = [KeyPress(Keys.escape, ESC)]
            for ch in data[1:]:
                result.extend(_to_key_presses(ch))
            return result
        return [kp for ch in data for kp in _to_key_presses(ch)]
