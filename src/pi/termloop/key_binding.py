"""Key binding registry.

Usage::

    kb = KeyBindings()

    @kb.add("ctrl+x", "ctrl+c")
    def _(event):
        event.app.exit()

    @kb.add("a", eager=True)
    def _(event):
        ...

A binding is a tuple of keys, a handler and a few options.  The dispatcher
asks the registry for bindings whose keys equal a buffered sequence
(:meth:`KeyBindings.get_bindings_for_keys`) and for bindings that are
strictly longer and start with it
(:meth:`KeyBindings.get_bindings_starting_with_keys`).
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Protocol, Sequence, Union

from pi.termloop.keys import Keys
from pi.termloop.utils import FilterOrBool, to_filter

if TYPE_CHECKING:
    from pi.termloop.key_processor import KeyPressEvent

__all__ = [
    "Binding",
    "KeyBindings",
    "KeyBindingsBase",
    "KeyHandlerCallable",
    "merge_key_bindings",
]

KeyHandlerCallable = Callable[["KeyPressEvent"], Union[None, Awaitable[None]]]

_FOR_KEYS_CACHE_MAX = 10_000
_STARTING_CACHE_MAX = 1_000


class Binding:
    """One key sequence bound to a handler.

    ``filter`` decides whether the binding is active right now.  ``eager``
    bindings fire as soon as they match, even when a longer binding could
    still match.
    """

    def __init__(
        self,
        keys: tuple[str, ...],
        handler: KeyHandlerCallable,
        filter: FilterOrBool = True,
        eager: FilterOrBool = False,
    ) -> None:
        self.keys = keys
        self.handler = handler
        self.filter = to_filter(filter)
        self.eager = to_filter(eager)

    @property
    def any_count(self) -> int:
        return sum(1 for k in self.keys if k == Keys.ANY)

    def call(self, event: KeyPressEvent) -> Any:
        return self.handler(event)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(keys={self.keys!r}, handler={self.handler!r})"


class KeyBindingsBase(Protocol):
    """What the key processor needs from a binding registry."""

    @property
    def version(self) -> Any: ...

    @property
    def bindings(self) -> list[Binding]: ...

    def get_bindings_for_keys(self, keys: Sequence[str]) -> list[Binding]: ...

    def get_bindings_starting_with_keys(self, keys: Sequence[str]) -> list[Binding]: ...


def _matches(binding_keys: tuple[str, ...], keys: Sequence[str]) -> bool:
    """Compare the first ``len(keys)`` keys; ``Keys.ANY`` matches anything."""
    for bk, k in zip(binding_keys, keys):
        if bk != Keys.ANY and bk != k:
            return False
    return True


def _and(first: Callable[[], bool], second: Callable[[], bool]) -> Callable[[], bool]:
    return lambda: first() and second()


def _or(first: Callable[[], bool], second: Callable[[], bool]) -> Callable[[], bool]:
    return lambda: first() or second()


class KeyBindings:
    """A mutable, thread-safe list of :class:`Binding` objects."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._bindings: list[Binding] = []
        self._version = 0
        self._get_bindings_for_keys_cache: dict[tuple[str, ...], list[Binding]] = {}
        self._get_bindings_starting_with_keys_cache: dict[tuple[str, ...], list[Binding]] = {}

    def _clear_cache(self) -> None:
        self._version += 1
        self._get_bindings_for_keys_cache.clear()
        self._get_bindings_starting_with_keys_cache.clear()

    @property
    def version(self) -> int:
        return self._version

    @property
    def bindings(self) -> list[Binding]:
        with self._lock:
            return list(self._bindings)

    def add(
        self,
        *keys: str,
        filter: FilterOrBool = True,
        eager: FilterOrBool = False,
    ) -> Callable[[Any], Any]:
        """Decorator that binds *keys* to the decorated handler.

        Decorating an existing :class:`Binding` rebinds its handler to the
        new keys; filters are combined (``filter`` AND, ``eager`` OR).  A ``filter=False`` binding is never stored.
        """
        if not keys:
            raise ValueError("Keys must not be empty.")

        if filter is False:

            def decorator_noop(func: Any) -> Any:
                return func

            return decorator_noop

        key_tuple = tuple(keys)

        def decorator(func: Any) -> Any:
            if isinstance(func, Binding):
                binding = Binding(
                    key_tuple,
                    func.handler,
                    filter=_and(func.filter, to_filter(filter)),
                    eager=_or(func.eager, to_filter(eager)),
                )
            elif callable(func):
                binding = Binding(
                    key_tuple,
                    func,
                    filter=filter,
                    eager=eager,
                )
            else:
                raise TypeError(f"Expected a handler or a Binding, got {func!r}")

            with self._lock:
                self._bindings.append(binding)
                self._clear_cache()
            return func

        return decorator

    def remove(self, *args: Any) -> None:
        """Remove bindings by handler (one argument) or by key sequence.

        Raises ``ValueError`` when nothing matched.
        """
        if not args:
            raise ValueError("Nothing to remove.")

        with self._lock:
            before = len(self._bindings)
            if len(args) == 1 and callable(args[0]):
                handler = args[0]
                self._bindings = [b for b in self._bindings if b.handler is not handler]
            else:
                key_tuple = tuple(args)
                self._bindings = [b for b in self._bindings if b.keys != key_tuple]

            if len(self._bindings) == before:
                raise ValueError(f"Binding not found: {args!r}")
            self._clear_cache()

    def get_bindings_for_keys(self, keys: Sequence[str]) -> list[Binding]:
        """Bindings whose keys equal *keys*.

        Sorted so that the most specific binding (fewest ``Keys.ANY``) comes
        last; among equally specific ones the most recently added is last.
        """
        key_tuple = tuple(keys)
        cache = self._get_bindings_for_keys_cache

        # Lookup and store happen in one lock hold; add() clears the cache.
        with self._lock:
            cached = cache.get(key_tuple)
            if cached is not None:
                return cached

            result: list[tuple[int, Binding]] = []
            for b in self._bindings:
                if len(b.keys) == len(key_tuple) and _matches(b.keys, key_tuple):
                    result.append((b.any_count, b))
            result.sort(key=lambda item: -item[0])
            bindings = [item[1] for item in result]

            if len(cache) >= _FOR_KEYS_CACHE_MAX:
                cache.clear()
            cache[key_tuple] = bindings
            return bindings

    def get_bindings_starting_with_keys(self, keys: Sequence[str]) -> list[Binding]:
        """Bindings that are strictly longer than *keys* and start with them."""
        key_tuple = tuple(keys)
        cache = self._get_bindings_starting_with_keys_cache

        with self._lock:
            cached = cache.get(key_tuple)
            if cached is not None:
                return cached

            bindings = [
                b
                for b in self._bindings
                if len(b.keys) > len(key_tuple) and _matches(b.keys, key_tuple)
            ]

            if len(cache) >= _STARTING_CACHE_MAX:
                cache.clear()
            cache[key_tuple] = bindings
            return bindings


class _MergedKeyBindings(KeyBindings):
    """Read-through union of several registries, in priority order.

    The merged list is rebuilt whenever one of the children changes
    version.
    """

    def __init__(self, registries: Sequence[KeyBindingsBase]) -> None:
        super().__init__()
        self.registries = list(registries)
        self._last_version: tuple[Any, ...] | None = None

    def _update_cache(self) -> None:
        version = tuple(r.version for r in self.registries)
        if version == self._last_version:
            return
        bindings: list[Binding] = []
        for registry in self.registries:
            bindings.extend(registry.bindings)
        with self._lock:
            self._bindings = bindings
            self._clear_cache()
        self._last_version = version

    @property
    def version(self) -> tuple[Any, ...]:
        self._update_cache()
        return tuple(r.version for r in self.registries)

    @property
    def bindings(self) -> list[Binding]:
        self._update_cache()
        return super().bindings

    def add(self, *keys: str, **kwargs: Any) -> Callable[[Any], Any]:
        raise TypeError("Merged key bindings are read-only; add to one of the children.")

    def remove(self, *args: Any) -> None:
        raise TypeError("Merged key bindings are read-only; remove from one of the children.")

    def get_bindings_for_keys(self, keys: Sequence[str]) -> list[Binding]:
        self._update_cache()
        return super().get_bindings_for_keys(keys)

    def get_bindings_starting_with_keys(self, keys: Sequence[str]) -> list[Binding]:
        self._update_cache()
        return super().get_bindings_starting_with_keys(keys)


def merge_key_bindings(bindings: Sequence[KeyBindingsBase]) -> KeyBindingsBase:
    """Combine registries; later ones take priority."""
    return _MergedKeyBindings(bindings)
