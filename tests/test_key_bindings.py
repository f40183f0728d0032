"""Tests for pi.termloop.key_binding -- registry, lookup and merging."""

from __future__ import annotations

import threading

import pytest

from pi.termloop.key_binding import Binding, KeyBindings, merge_key_bindings
from pi.termloop.keys import Keys


def handler_a(event: object) -> None:
    pass


def handler_b(event: object) -> None:
    pass


class TestAdd:
    def test_decorator_returns_function(self) -> None:
        kb = KeyBindings()
        assert kb.add("a")(handler_a) is handler_a
        assert [b.keys for b in kb.bindings] == [("a",)]

    def test_empty_keys_rejected(self) -> None:
        kb = KeyBindings()
        with pytest.raises(ValueError):
            kb.add()

    def test_filter_false_is_not_stored(self) -> None:
        kb = KeyBindings()
        kb.add("a", filter=False)(handler_a)
        assert kb.bindings == []

    def test_version_increments(self) -> None:
        kb = KeyBindings()
        v0 = kb.version
        kb.add("a")(handler_a)
        assert kb.version == v0 + 1

    def test_non_callable_rejected(self) -> None:
        kb = KeyBindings()
        with pytest.raises(TypeError):
            kb.add("a")("not a handler")

    def test_rebinding_a_binding_combines_filters(self) -> None:
        source = KeyBindings()
        source.add("a", filter=lambda: True, eager=True)(handler_a)
        binding = source.bindings[0]

        kb = KeyBindings()
        kb.add("b", filter=lambda: False)(binding)

        new = kb.bindings[0]
        assert new.keys == ("b",)
        assert new.handler is handler_a
        assert new.filter() is False
        assert new.eager() is True

    def test_options_become_filters(self) -> None:
        kb = KeyBindings()
        kb.add("a", eager=True)(handler_a)
        b = kb.bindings[0]
        assert b.eager() is True
        assert b.filter() is True

    def test_only_filter_and_eager_are_options(self) -> None:
        kb = KeyBindings()
        with pytest.raises(TypeError):
            kb.add("a", save_before=lambda e: False)  # type: ignore[call-arg]


class TestRemove:
    def test_remove_by_handler(self) -> None:
        kb = KeyBindings()
        kb.add("a")(handler_a)
        kb.add("b")(handler_a)
        kb.add("c")(handler_b)
        kb.remove(handler_a)
        assert [b.keys for b in kb.bindings] == [("c",)]

    def test_remove_by_keys(self) -> None:
        kb = KeyBindings()
        kb.add("x", "y")(handler_a)
        kb.add("x")(handler_b)
        kb.remove("x", "y")
        assert [b.keys for b in kb.bindings] == [("x",)]

    def test_remove_missing_raises(self) -> None:
        kb = KeyBindings()
        with pytest.raises(ValueError):
            kb.remove(handler_a)

    def test_remove_clears_lookup_cache(self) -> None:
        kb = KeyBindings()
        kb.add("a")(handler_a)
        assert len(kb.get_bindings_for_keys(("a",))) == 1
        kb.remove(handler_a)
        assert kb.get_bindings_for_keys(("a",)) == []


class TestLookup:
    def test_exact_match(self) -> None:
        kb = KeyBindings()
        kb.add("a", "b")(handler_a)
        kb.add("a")(handler_b)
        assert [b.handler for b in kb.get_bindings_for_keys(("a",))] == [handler_b]
        assert [b.handler for b in kb.get_bindings_for_keys(("a", "b"))] == [handler_a]

    def test_any_is_wildcard(self) -> None:
        kb = KeyBindings()
        kb.add(Keys.ANY)(handler_a)
        assert len(kb.get_bindings_for_keys(("z",))) == 1

    def test_specific_binding_sorted_last(self) -> None:
        kb = KeyBindings()
        kb.add("a")(handler_b)
        kb.add(Keys.ANY)(handler_a)
        result = kb.get_bindings_for_keys(("a",))
        assert [b.handler for b in result] == [handler_a, handler_b]

    def test_later_binding_sorted_last_among_equals(self) -> None:
        kb = KeyBindings()
        kb.add("a")(handler_a)
        kb.add("a")(handler_b)
        assert kb.get_bindings_for_keys(("a",))[-1].handler is handler_b

    def test_starting_with_is_strictly_longer(self) -> None:
        kb = KeyBindings()
        kb.add("a")(handler_a)
        kb.add("a", "b")(handler_b)
        result = kb.get_bindings_starting_with_keys(("a",))
        assert [b.keys for b in result] == [("a", "b")]

    def test_starting_with_honors_any(self) -> None:
        kb = KeyBindings()
        kb.add(Keys.ANY, "x")(handler_a)
        assert len(kb.get_bindings_starting_with_keys(("q",))) == 1

    def test_any_count(self) -> None:
        b = Binding((Keys.ANY, "a", Keys.ANY), handler_a)
        assert b.any_count == 2

    def test_lookup_while_adding_from_another_thread(self) -> None:
        kb = KeyBindings()
        stop = threading.Event()

        def lookups() -> None:
            while not stop.is_set():
                kb.get_bindings_for_keys(("a",))
                kb.get_bindings_starting_with_keys(("a",))

        reader = threading.Thread(target=lookups)
        reader.start()
        try:
            for _ in range(200):
                kb.add("a")(handler_a)
                kb.add("a", "b")(handler_b)
        finally:
            stop.set()
            reader.join()

        assert len(kb.get_bindings_for_keys(("a",))) == 200
        assert len(kb.get_bindings_starting_with_keys(("a",))) == 200


class TestMerge:
    def test_merged_contains_all_in_order(self) -> None:
        first = KeyBindings()
        second = KeyBindings()
        first.add("a")(handler_a)
        second.add("a")(handler_b)
        merged = merge_key_bindings([first, second])
        assert [b.handler for b in merged.get_bindings_for_keys(("a",))] == [handler_a, handler_b]

    def test_merged_follows_child_changes(self) -> None:
        child = KeyBindings()
        merged = merge_key_bindings([child])
        assert merged.get_bindings_for_keys(("a",)) == []
        v0 = merged.version

        child.add("a")(handler_a)

        assert merged.version != v0
        assert len(merged.get_bindings_for_keys(("a",))) == 1

    def test_merged_is_read_only(self) -> None:
        merged = merge_key_bindings([KeyBindings()])
        with pytest.raises(TypeError):
            merged.add("a")  # type: ignore[attr-defined]
        with pytest.raises(TypeError):
            merged.remove(handler_a)  # type: ignore[attr-defined]

    def test_nested_merge(self) -> None:
        inner = KeyBindings()
        inner.add("x")(handler_a)
        merged = merge_key_bindings([merge_key_bindings([inner]), KeyBindings()])
        assert len(merged.bindings) == 1
