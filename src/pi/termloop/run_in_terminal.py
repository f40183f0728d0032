"""Hand the terminal to other code for a while.

While the application is running it owns the terminal: raw mode, input
attached, a rendered layout on screen.  :func:`in_terminal` erases the
layout, restores cooked mode and detaches input for the duration of the
block; afterwards everything is restored and redrawn.  Concurrent callers
are served one at a time, in the order they asked.
"""

from __future__ import annotations

import asyncio
import inspect
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Awaitable, Callable, TypeVar

from pi.termloop.context import get_app_or_none

__all__ = ["in_terminal", "run_in_terminal"]

_T = TypeVar("_T")


def run_in_terminal(
    func: Callable[[], _T | Awaitable[_T]],
    render_cli_done: bool = False,
    in_executor: bool = False,
) -> Awaitable[_T]:
    """Run *func* with the terminal released; returns a future of its result.

    *func* may return an awaitable, which is awaited.  With
    ``in_executor=True`` it runs in the default thread pool executor.
    """

    async def run() -> Any:
        async with in_terminal(render_cli_done=render_cli_done):
            if in_executor:
                return await asyncio.get_running_loop().run_in_executor(None, func)
            result = func()
            if inspect.isawaitable(result):
                return await result
            return result

    return asyncio.ensure_future(run())


@asynccontextmanager
async def in_terminal(render_cli_done: bool = False) -> AsyncGenerator[None, None]:
    """Release the terminal for the duration of the ``async with`` block.

    With ``render_cli_done=True`` the layout is drawn in its final state
    instead of being erased.
    """
    app = get_app_or_none()
    if app is None or not app.is_running:
        yield
        return

    loop = asyncio.get_running_loop()

    # Queue behind the previous suspension.
    previous_run_in_terminal_f = app._running_in_terminal_f
    new_run_in_terminal_f: asyncio.Future[None] = loop.create_future()
    app._running_in_terminal_f = new_run_in_terminal_f

    try:
        if previous_run_in_terminal_f is not None:
            await previous_run_in_terminal_f

        # CPR answers must not end up in the other program's input.
        if app.output.responds_to_cpr:
            await app.renderer.wait_for_cpr_responses(timeout=app.config.cpr_wait_timeout)

        if render_cli_done:
            app._redraw(render_as_done=True)
        else:
            app.renderer.erase()

        app._running_in_terminal = True
        try:
            with app.input.detach():
                with app.input.cooked_mode():
                    yield
        finally:
            app._running_in_terminal = False
            app.renderer.reset()
            app._request_absolute_cursor_position()
            app.invalidate()
    finally:
        if not new_run_in_terminal_f.done():
            new_run_in_terminal_f.set_result(None)
