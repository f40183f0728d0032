"""Tests for pi.termloop.key_processor -- prefix, eager and timeout dispatch."""

from __future__ import annotations

import asyncio

import pytest

from pi.termloop.key_binding import KeyBindings
from pi.termloop.key_processor import KeyPressEvent, KeyProcessor
from pi.termloop.keys import KeyPress, Keys


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class Recorder:
    """Binds key sequences to handlers that record their name."""

    def __init__(self) -> None:
        self.kb = KeyBindings()
        self.calls: list[str] = []
        self.events: list[KeyPressEvent] = []

    def bind(self, *keys: str, name: str | None = None, **kwargs: object) -> None:
        label = name or "".join(keys)

        def handler(event: KeyPressEvent) -> None:
            self.calls.append(label)
            self.events.append(event)

        self.kb.add(*keys, **kwargs)(handler)  # type: ignore[arg-type]


def press(processor: KeyProcessor, *keys: str) -> None:
    processor.feed_multiple(KeyPress(k) for k in keys)
    processor.process_keys()


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


class TestDispatch:
    def test_single_key(self) -> None:
        rec = Recorder()
        rec.bind("a")
        processor = KeyProcessor(rec.kb)
        press(processor, "a")
        assert rec.calls == ["a"]

    def test_prefix_waits_then_longer_match(self) -> None:
        rec = Recorder()
        rec.bind("a")
        rec.bind("a", "b")
        processor = KeyProcessor(rec.kb)

        press(processor, "a")
        assert rec.calls == []
        assert [k.key for k in processor.key_buffer] == ["a"]

        press(processor, "b")
        assert rec.calls == ["ab"]
        assert processor.key_buffer == []

    def test_flush_dispatches_exact_match(self) -> None:
        rec = Recorder()
        rec.bind("a")
        rec.bind("a", "b")
        processor = KeyProcessor(rec.kb)

        press(processor, "a")
        processor.flush()

        assert rec.calls == ["a"]
        assert processor.key_buffer == []

    @pytest.mark.asyncio
    async def test_timeout_dispatches_exact_match_once(self) -> None:
        rec = Recorder()
        rec.bind("a")
        rec.bind("a", "b")
        processor = KeyProcessor(rec.kb, timeout_len=0.02)

        press(processor, "a")
        await asyncio.sleep(0.1)

        assert rec.calls == ["a"]

    @pytest.mark.asyncio
    async def test_second_key_cancels_timeout(self) -> None:
        rec = Recorder()
        rec.bind("a")
        rec.bind("a", "b")
        processor = KeyProcessor(rec.kb, timeout_len=0.02)

        press(processor, "a")
        press(processor, "b")
        await asyncio.sleep(0.1)

        assert rec.calls == ["ab"]

    @pytest.mark.asyncio
    async def test_no_timeout_waits_forever(self) -> None:
        rec = Recorder()
        rec.bind("a")
        rec.bind("a", "b")
        processor = KeyProcessor(rec.kb, timeout_len=None)

        press(processor, "a")
        await asyncio.sleep(0.05)

        assert rec.calls == []

    @pytest.mark.asyncio
    async def test_timeout_handler_error_goes_to_on_error(self) -> None:
        kb = KeyBindings()

        @kb.add("a")
        def _(event: KeyPressEvent) -> None:
            raise ValueError("boom")

        @kb.add("a", "b")
        def _(event: KeyPressEvent) -> None:
            pass

        errors: list[Exception] = []
        processor = KeyProcessor(kb, timeout_len=0.02)
        processor.on_error = errors.append

        press(processor, "a")
        await asyncio.sleep(0.06)

        assert len(errors) == 1
        assert isinstance(errors[0], ValueError)
        assert processor.key_buffer == []

    def test_eager_dispatches_immediately(self) -> None:
        rec = Recorder()
        rec.bind("a", eager=True)
        rec.bind("a", "b")
        processor = KeyProcessor(rec.kb)

        press(processor, "a")
        assert rec.calls == ["a"]

        press(processor, "b")
        assert rec.calls == ["a"]

    def test_last_added_binding_wins(self) -> None:
        rec = Recorder()
        rec.bind("a", name="first")
        rec.bind("a", name="second")
        processor = KeyProcessor(rec.kb)
        press(processor, "a")
        assert rec.calls == ["second"]

    def test_specific_beats_any(self) -> None:
        rec = Recorder()
        rec.bind("a", name="specific")
        rec.bind(Keys.ANY, name="any")
        processor = KeyProcessor(rec.kb)
        press(processor, "a", "z")
        assert rec.calls == ["specific", "any"]

    def test_filter_disables_binding(self) -> None:
        enabled = [False]
        rec = Recorder()
        rec.bind("a", filter=lambda: enabled[0])
        processor = KeyProcessor(rec.kb)

        press(processor, "a")
        assert rec.calls == []

        enabled[0] = True
        press(processor, "a")
        assert rec.calls == ["a"]

    def test_inactive_longer_binding_does_not_block(self) -> None:
        rec = Recorder()
        rec.bind("a")
        rec.bind("a", "b", filter=lambda: False)
        processor = KeyProcessor(rec.kb)
        press(processor, "a")
        assert rec.calls == ["a"]

    def test_longest_leading_match_then_rest(self) -> None:
        rec = Recorder()
        rec.bind("a")
        rec.bind("a", "b", "c")
        rec.bind("x")
        processor = KeyProcessor(rec.kb)

        press(processor, "a", "x")

        assert rec.calls == ["a", "x"]
        assert processor.key_buffer == []

    def test_unhandled_key_is_reported_and_dropped(self) -> None:
        rec = Recorder()
        rec.bind("b")
        processor = KeyProcessor(rec.kb)
        unhandled: list[KeyPress] = []
        processor.on_unhandled = unhandled.append

        press(processor, "q", "b")

        assert [k.key for k in unhandled] == ["q"]
        assert rec.calls == ["b"]

    def test_keys_processed_in_arrival_order(self) -> None:
        rec = Recorder()
        for k in "xyz":
            rec.bind(k)
        processor = KeyProcessor(rec.kb)
        press(processor, "z", "x", "y")
        assert rec.calls == ["z", "x", "y"]

    def test_feed_first_goes_to_front(self) -> None:
        rec = Recorder()
        rec.bind("a")
        rec.bind("b")
        processor = KeyProcessor(rec.kb)
        processor.feed(KeyPress("a"))
        processor.feed(KeyPress("b"), first=True)
        processor.process_keys()
        assert rec.calls == ["b", "a"]


# ---------------------------------------------------------------------------
# Queue management
# ---------------------------------------------------------------------------


class TestQueue:
    def test_empty_queue_returns_buffered_prefix(self) -> None:
        rec = Recorder()
        rec.bind("a", "b")
        processor = KeyProcessor(rec.kb)
        press(processor, "a")

        assert [k.key for k in processor.empty_queue()] == ["a"]
        assert processor.empty_queue() == []

    def test_empty_queue_drops_cpr_responses(self) -> None:
        processor = KeyProcessor(KeyBindings())
        processor.feed(KeyPress("x"))
        processor.feed(KeyPress(Keys.CPR_RESPONSE, "\x1b[1;1R"))
        assert [k.key for k in processor.empty_queue()] == ["x"]

    @pytest.mark.asyncio
    async def test_empty_queue_cancels_timeout(self) -> None:
        rec = Recorder()
        rec.bind("a")
        rec.bind("a", "b")
        processor = KeyProcessor(rec.kb, timeout_len=0.02)
        press(processor, "a")
        processor.empty_queue()
        await asyncio.sleep(0.06)
        assert rec.calls == []

    def test_reset_clears_state(self) -> None:
        rec = Recorder()
        rec.bind("a", "b")
        processor = KeyProcessor(rec.kb)
        press(processor, "a")
        processor.arg = "3"
        processor.reset()
        assert processor.key_buffer == []
        assert len(processor.input_queue) == 0
        assert processor.arg is None


# ---------------------------------------------------------------------------
# SIGINT
# ---------------------------------------------------------------------------


class TestSigint:
    def test_sigint_dispatched_before_pending_prefix(self) -> None:
        rec = Recorder()
        rec.bind("a")
        rec.bind("a", "b")
        rec.bind(Keys.SIGINT, name="sigint")
        processor = KeyProcessor(rec.kb)

        press(processor, "a")
        processor.send_sigint()

        assert rec.calls == ["sigint"]
        assert [k.key for k in processor.key_buffer] == ["a"]

        processor.flush()
        assert rec.calls == ["sigint", "a"]

    def test_sigint_ahead_of_queued_keys(self) -> None:
        rec = Recorder()
        rec.bind("x")
        rec.bind(Keys.SIGINT, name="sigint")
        processor = KeyProcessor(rec.kb)
        processor.feed(KeyPress("x"))
        processor.send_sigint()
        assert rec.calls == ["sigint", "x"]

    def test_unbound_sigint_is_unhandled(self) -> None:
        processor = KeyProcessor(KeyBindings())
        unhandled: list[KeyPress] = []
        processor.on_unhandled = unhandled.append
        processor.send_sigint()
        assert [k.key for k in unhandled] == [Keys.SIGINT]


# ---------------------------------------------------------------------------
# Hooks, errors and special modes
# ---------------------------------------------------------------------------


class TestHooksAndModes:
    def test_before_and_after_key_press_events(self) -> None:
        rec = Recorder()
        rec.bind("a")
        processor = KeyProcessor(rec.kb)
        order: list[str] = []
        processor.before_key_press += lambda kp: order.append("before")
        processor.after_key_press += lambda kp: order.append("after")
        rec.kb.add("b")(lambda e: order.append("handler"))

        press(processor, "b")

        assert order == ["before", "handler", "after"]

    def test_flush_does_not_fire_key_press_events(self) -> None:
        processor = KeyProcessor(KeyBindings())
        fired: list[str] = []
        processor.before_key_press += lambda kp: fired.append("before")
        processor.flush()
        assert fired == []

    def test_handler_exception_resets_and_propagates(self) -> None:
        kb = KeyBindings()

        @kb.add("a")
        def _(event: KeyPressEvent) -> None:
            raise RuntimeError("handler failed")

        processor = KeyProcessor(kb)
        processor.feed_multiple([KeyPress("a"), KeyPress("b")])
        with pytest.raises(RuntimeError, match="handler failed"):
            processor.process_keys()

        assert processor.key_buffer == []
        assert len(processor.input_queue) == 0

    def test_quoted_insert_bypasses_bindings(self) -> None:
        rec = Recorder()
        rec.bind("ctrl+a")
        processor = KeyProcessor(rec.kb)
        literal: list[str] = []
        processor.literal_handler = lambda e: literal.append(e.data)
        processor.quoted_insert = True

        processor.feed(KeyPress("ctrl+a", "\x01"))
        processor.process_keys()

        assert literal == ["\x01"]
        assert rec.calls == []
        assert processor.quoted_insert is False

    def test_event_fields(self) -> None:
        rec = Recorder()
        rec.bind("a")
        processor = KeyProcessor(rec.kb)

        press(processor, "a")
        press(processor, "a")

        first, second = rec.events
        assert first.is_repeat is False
        assert second.is_repeat is True
        assert [k.key for k in second.previous_key_sequence] == ["a"]
        assert second.data == "a"
        assert second.app is None

    def test_numeric_argument(self) -> None:
        kb = KeyBindings()
        args: list[tuple[int, bool]] = []

        @kb.add("1")
        @kb.add("2")
        def _(event: KeyPressEvent) -> None:
            event.append_to_arg_count(event.data)

        @kb.add("x")
        def _(event: KeyPressEvent) -> None:
            args.append((event.arg, event.arg_present))

        processor = KeyProcessor(kb)
        press(processor, "1", "2", "x", "x")

        assert args == [(12, True), (1, False)]

    def test_negative_argument(self) -> None:
        kb = KeyBindings()
        args: list[int] = []

        @kb.add("-")
        def _(event: KeyPressEvent) -> None:
            event.append_to_arg_count("-")

        @kb.add("x")
        def _(event: KeyPressEvent) -> None:
            args.append(event.arg)

        processor = KeyProcessor(kb)
        press(processor, "-", "x")
        assert args == [-1]

    def test_append_to_arg_count_rejects_garbage(self) -> None:
        processor = KeyProcessor(KeyBindings())
        event = KeyPressEvent(processor, None, [KeyPress("a")], [], False)
        with pytest.raises(ValueError):
            event.append_to_arg_count("q")

    def test_huge_argument_is_capped(self) -> None:
        processor = KeyProcessor(KeyBindings())
        event = KeyPressEvent(processor, "99999999", [KeyPress("a")], [], False)
        assert event.arg == 1

    @pytest.mark.asyncio
    async def test_coroutine_handler_is_scheduled(self) -> None:
        kb = KeyBindings()
        done = asyncio.Event()

        @kb.add("a")
        async def _(event: KeyPressEvent) -> None:
            done.set()

        processor = KeyProcessor(kb)
        press(processor, "a")
        await asyncio.wait_for(done.wait(), 1.0)
