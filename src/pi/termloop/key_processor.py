"""Key dispatch state machine.

Keys are fed into an input queue.  :meth:`KeyProcessor.process_keys` moves
them one by one into the key buffer and looks the buffer up in the binding
registry:

* an *eager* exact match fires at once;
* an exact match that is not also the prefix of a longer binding fires;
* an exact match that could still grow (or a bare prefix) waits for the
  next key, or for the flush timeout;
* no match at all: the longest leading part of the buffer that does match
  fires, otherwise the first key is dropped, and the rest is retried.

``Keys.SIGINT`` is dispatched on its own without touching the key buffer,
so an interrupt is handled before a pending prefix resolves.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from typing import TYPE_CHECKING, Any, Callable, Iterable

from pi.termloop.context import get_app_or_none
from pi.termloop.key_binding import Binding, KeyBindingsBase, KeyHandlerCallable
from pi.termloop.keys import KeyPress, Keys
from pi.termloop.utils import Event

if TYPE_CHECKING:
    from pi.termloop.application import Application

__all__ = ["KeyPressEvent", "KeyProcessor"]

logger = logging.getLogger(__name__)

# Fed into the queue to resolve a buffered prefix without a new key.
_Flush = KeyPress("?", data="_Flush")

_MAX_ARG = 1_000_000


class KeyProcessor:
    """Buffers key presses and calls the matching handlers.

    Parameters
    ----------
    key_bindings:
        Registry to look bindings up in.
    timeout_len:
        Seconds to wait for the next key of an ambiguous sequence before
        the buffer is flushed.  ``None`` waits forever.
    """

    def __init__(self, key_bindings: KeyBindingsBase, timeout_len: float | None = 1.0) -> None:
        self._bindings = key_bindings
        self.timeout_len = timeout_len

        self.before_key_press: Event[KeyProcessor] = Event(self)
        self.after_key_press: Event[KeyProcessor] = Event(self)

        # Called for keys no binding wanted; they are dropped afterwards.
        self.on_unhandled: Callable[[KeyPress], None] | None = None

        # Receives exceptions from handlers run by the flush timer.
        # Unset, they go to the event loop.
        self.on_error: Callable[[Exception], None] | None = None

        # When set, the next key goes to ``literal_handler`` untouched.
        self.quoted_insert = False
        self.literal_handler: KeyHandlerCallable | None = None

        self._flush_timer: asyncio.TimerHandle | None = None
        self.reset()

    def reset(self) -> None:
        self._previous_key_sequence: list[KeyPress] = []
        self._previous_handler: Binding | None = None

        self.input_queue: deque[KeyPress] = deque()
        self.key_buffer: list[KeyPress] = []

        # Numeric argument typed before a command ("-", "12" ...).
        self.arg: str | None = None

        self._cancel_flush_timer()

    # -- feeding ------------------------------------------------------------

    def feed(self, key_press: KeyPress, first: bool = False) -> None:
        """Add a key to the input queue; ``first=True`` puts it in front."""
        if first:
            self.input_queue.appendleft(key_press)
        else:
            self.input_queue.append(key_press)

    def feed_multiple(self, key_presses: Iterable[KeyPress], first: bool = False) -> None:
        if first:
            self.input_queue.extendleft(reversed(list(key_presses)))
        else:
            self.input_queue.extend(key_presses)

    def empty_queue(self) -> list[KeyPress]:
        """Take everything not processed yet, key buffer first.

        CPR responses are dropped.  Used to carry typeahead into the next
        run.
        """
        key_presses = list(self.key_buffer)
        key_presses.extend(k for k in self.input_queue if k.key != Keys.CPR_RESPONSE)
        self.key_buffer = []
        self.input_queue.clear()
        self._cancel_flush_timer()
        return key_presses

    def send_sigint(self) -> None:
        """Dispatch an interrupt right away, ahead of queued keys."""
        self.feed(KeyPress(Keys.SIGINT), first=True)
        self.process_keys()

    def flush(self) -> None:
        """Resolve the key buffer as if the flush timeout expired."""
        self.feed(_Flush)
        self.process_keys()

    # -- processing ---------------------------------------------------------

    def process_keys(self) -> None:
        """Process everything in the input queue.

        While the application is done only CPR responses are taken; other
        keys stay queued as typeahead.
        """
        app = get_app_or_none()

        def is_done() -> bool:
            return app is not None and app.is_done

        def not_empty() -> bool:
            if is_done():
                return any(k.key == Keys.CPR_RESPONSE for k in self.input_queue)
            return bool(self.input_queue)

        def get_next() -> KeyPress:
            if is_done():
                cpr = next(k for k in self.input_queue if k.key == Keys.CPR_RESPONSE)
                self.input_queue.remove(cpr)
                return cpr
            return self.input_queue.popleft()

        is_flush = False

        while not_empty():
            key_press = get_next()

            is_flush = key_press is _Flush
            is_cpr = key_press.key == Keys.CPR_RESPONSE

            if not is_flush and not is_cpr:
                self.before_key_press.fire()

            try:
                self._process_key(key_press, is_flush)
            except Exception:
                # Start from scratch so the next key is not misread.
                self.reset()
                self.empty_queue()
                raise

            if not is_flush and not is_cpr:
                self.after_key_press.fire()

        if not is_flush:
            self._start_timeout()

    def _process_key(self, key_press: KeyPress, is_flush: bool) -> None:
        if not is_flush:
            if key_press.key == Keys.SIGINT:
                self._dispatch_out_of_band(key_press)
                return

            if self.quoted_insert and key_press.key != Keys.CPR_RESPONSE:
                self.quoted_insert = False
                self._call_literal(key_press)
                return

            self.key_buffer.append(key_press)

        self._process_buffer(is_flush)

    def _process_buffer(self, is_flush: bool) -> None:
        buffer = self.key_buffer
        if not buffer:
            return

        matches = self._get_matches(buffer)
        is_prefix_of_longer_match = False if is_flush else self._is_prefix_of_longer_match(buffer)

        # Eager matches win, even over a possible longer match.
        eager_matches = [m for m in matches if m.eager()]
        if eager_matches:
            matches = eager_matches
            is_prefix_of_longer_match = False

        if not is_prefix_of_longer_match and matches:
            self._call_handler(matches[-1], key_sequence=buffer[:])
            del buffer[:]

        elif not is_prefix_of_longer_match and not matches:
            found = False

            # Try the longest leading part first.
            for i in range(len(buffer), 0, -1):
                sub_matches = self._get_matches(buffer[:i])
                if sub_matches:
                    self._call_handler(sub_matches[-1], key_sequence=buffer[:i])
                    del buffer[:i]
                    found = True
                    break

            if not found:
                self._unhandled(buffer.pop(0))

            if buffer:
                self._process_buffer(is_flush=True)

    def _dispatch_out_of_band(self, key_press: KeyPress) -> None:
        matches = self._get_matches([key_press])
        if matches:
            self._call_handler(matches[-1], key_sequence=[key_press])
        else:
            self._unhandled(key_press)

    def _get_matches(self, key_presses: list[KeyPress]) -> list[Binding]:
        keys = tuple(k.key for k in key_presses)
        return [b for b in self._bindings.get_bindings_for_keys(keys) if b.filter()]

    def _is_prefix_of_longer_match(self, key_presses: list[KeyPress]) -> bool:
        keys = tuple(k.key for k in key_presses)
        # Each distinct filter is evaluated once.
        filters = {b.filter for b in self._bindings.get_bindings_starting_with_keys(keys)}
        return any(f() for f in filters)

    def _unhandled(self, key_press: KeyPress) -> None:
        logger.debug("Dropping unhandled key %r", key_press)
        if self.on_unhandled is not None:
            self.on_unhandled(key_press)

    # -- handlers -----------------------------------------------------------

    def _call_handler(self, handler: Binding, key_sequence: list[KeyPress]) -> None:
        arg = self.arg
        self.arg = None

        event = KeyPressEvent(
            key_processor=self,
            arg=arg,
            key_sequence=key_sequence,
            previous_key_sequence=self._previous_key_sequence,
            is_repeat=(handler is self._previous_handler),
        )

        self._run(handler.call(event), event)

        self._previous_key_sequence = key_sequence
        self._previous_handler = handler

    def _call_literal(self, key_press: KeyPress) -> None:
        if self.literal_handler is None:
            self._unhandled(key_press)
            return
        event = KeyPressEvent(
            key_processor=self,
            arg=None,
            key_sequence=[key_press],
            previous_key_sequence=self._previous_key_sequence,
            is_repeat=False,
        )
        self._run(self.literal_handler(event), event)

    def _run(self, result: Any, event: KeyPressEvent) -> None:
        """Schedule coroutine handlers as background tasks."""
        if not inspect.isawaitable(result):
            return
        app = event.app
        if app is not None:
            app.create_background_task(result)
        else:
            asyncio.ensure_future(result)

    # -- flush timeout ------------------------------------------------------

    def _cancel_flush_timer(self) -> None:
        if self._flush_timer is not None:
            self._flush_timer.cancel()
            self._flush_timer = None

    def _start_timeout(self) -> None:
        """Flush the key buffer after ``timeout_len`` seconds without keys."""
        self._cancel_flush_timer()
        if self.timeout_len is None or not self.key_buffer:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No event loop; the buffer is resolved by an explicit flush().
            return
        self._flush_timer = loop.call_later(self.timeout_len, self._on_flush_timeout)

    def _on_flush_timeout(self) -> None:
        self._flush_timer = None
        if self.key_buffer:
            try:
                self.flush()
            except Exception as e:
                if self.on_error is None:
                    raise
                self.on_error(e)
                return
            app = get_app_or_none()
            if app is not None:
                app.invalidate()


class KeyPressEvent:
    """What a key handler receives.

    ``key_sequence`` holds the keys that triggered the binding,
    ``previous_key_sequence`` those of the handler called before it.
    """

    def __init__(
        self,
        key_processor: KeyProcessor,
        arg: str | None,
        key_sequence: list[KeyPress],
        previous_key_sequence: list[KeyPress],
        is_repeat: bool,
    ) -> None:
        self.key_processor = key_processor
        self.key_sequence = key_sequence
        self.previous_key_sequence = previous_key_sequence
        self.is_repeat = is_repeat
        self._arg = arg
        self._app = get_app_or_none()

    def __repr__(self) -> str:
        return (
            f"KeyPressEvent(arg={self._arg!r}, key_sequence={self.key_sequence!r}, "
            f"is_repeat={self.is_repeat!r})"
        )

    @property
    def data(self) -> str:
        return self.key_sequence[-1].data

    @property
    def app(self) -> Application[Any] | None:
        return self._app

    @property
    def arg(self) -> int:
        """Repetition count; 1 when none was typed."""
        if self._arg == "-":
            return -1
        result = int(self._arg or 1)
        if abs(result) >= _MAX_ARG:
            result = 1
        return result

    @property
    def arg_present(self) -> bool:
        return self._arg is not None

    def append_to_arg_count(self, data: str) -> None:
        """Add a digit (or a leading ``-``) to the argument of the next command."""
        if len(data) != 1 or data not in "-0123456789":
            raise ValueError(f"Not a digit or '-': {data!r}")
        current = self._arg
        if data == "-":
            if current not in (None, "-"):
                raise ValueError("'-' is only allowed as the first character of the argument")
            result = data
        elif current is None:
            result = data
        else:
            result = f"{current}{data}"
        self.key_processor.arg = result
