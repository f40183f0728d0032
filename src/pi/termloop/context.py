"""The application that is currently running, per async context."""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any, Generator

if TYPE_CHECKING:
    from pi.termloop.application import Application

__all__ = ["get_app", "get_app_or_none", "set_app"]

_current_app: ContextVar[Application[Any] | None] = ContextVar("_current_app", default=None)


def get_app() -> Application[Any]:
    """Return the running application.

    Raises ``RuntimeError`` when called outside of one.
    """
    app = _current_app.get()
    if app is None:
        raise RuntimeError("No application is running in this context.")
    return app


def get_app_or_none() -> Application[Any] | None:
    return _current_app.get()


@contextmanager
def set_app(app: Application[Any]) -> Generator[None, None, None]:
    """Make *app* the current application inside the ``with`` block."""
    token = _current_app.set(app)
    try:
        yield
    finally:
        _current_app.reset(token)
