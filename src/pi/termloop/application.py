"""The application: owns the loop that reads keys, dispatches them and
redraws the layout.

Usage::

    kb = KeyBindings()

    @kb.add("enter")
    def _(event):
        event.app.exit(result="done")

    app = Application(layout=FormattedTextLayout("Press enter"), key_bindings=kb)
    result = app.run()
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from typing import Any, Callable, Coroutine, Generic, TypeVar

from pi.termloop.background import BackgroundTaskRegistry
from pi.termloop.config import LoopConfig
from pi.termloop.context import set_app
from pi.termloop.input import Input, Vt100Input, get_typeahead, store_typeahead
from pi.termloop.invalidation import RedrawCoordinator
from pi.termloop.key_binding import KeyBindings, KeyBindingsBase, merge_key_bindings
from pi.termloop.key_processor import KeyPressEvent, KeyProcessor
from pi.termloop.keys import Keys
from pi.termloop.layout import FormattedTextLayout, Layout
from pi.termloop.output import Output, Vt100Output
from pi.termloop.renderer import Renderer
from pi.termloop.run_in_terminal import in_terminal, run_in_terminal
from pi.termloop.signals import SignalWatcher
from pi.termloop.styles import ColorDepth, Style
from pi.termloop.utils import Event, FilterOrBool

__all__ = ["Application"]

logger = logging.getLogger(__name__)

_AppResult = TypeVar("_AppResult")


# ---------------------------------------------------------------------------
# Built-in bindings
# ---------------------------------------------------------------------------


def _load_default_bindings() -> KeyBindings:
    kb = KeyBindings()

    @kb.add(Keys.CPR_RESPONSE)
    def _(event: KeyPressEvent) -> None:
        # data is "\x1b[<row>;<col>R"
        row, _col = map(int, event.data[2:-1].split(";"))
        if event.app is not None:
            event.app.renderer.report_absolute_cursor_row(row)

    @kb.add(Keys.SIGINT)
    def _(event: KeyPressEvent) -> None:
        if event.app is not None and not event.app.is_done:
            event.app.exit(exception=KeyboardInterrupt())

    @kb.add(Keys.IGNORE)
    def _(event: KeyPressEvent) -> None:
        pass

    return kb


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


class Application(Generic[_AppResult]):
    """Runs a layout in the terminal until :meth:`exit` is called.

    Parameters
    ----------
    layout:
        What to draw.  Defaults to an empty :class:`FormattedTextLayout`.
    key_bindings:
        User bindings; they take priority over the built-in ones.
    full_screen:
        Draw in the alternate screen using the whole terminal.
    erase_when_done:
        Erase the layout on exit instead of leaving its final state.
    config:
        Timing configuration, by default :meth:`LoopConfig.from_env`.
        Keyword arguments in *timing* override single fields
        (``min_redraw_interval=0.05``).
    handle_sigint:
        Route SIGINT through the key processor as ``Keys.SIGINT``.
    """

    def __init__(
        self,
        layout: Layout | None = None,
        key_bindings: KeyBindingsBase | None = None,
        style: Style | None = None,
        full_screen: bool = False,
        mouse_support: FilterOrBool = False,
        erase_when_done: bool = False,
        color_depth: ColorDepth | None = None,
        config: LoopConfig | None = None,
        input: Input | None = None,
        output: Output | None = None,
        handle_sigint: bool = True,
        before_render: Callable[[Application[_AppResult]], None] | None = None,
        after_render: Callable[[Application[_AppResult]], None] | None = None,
        on_reset: Callable[[Application[_AppResult]], None] | None = None,
        on_invalidate: Callable[[Application[_AppResult]], None] | None = None,
        on_background_task_error: Callable[[asyncio.Task[Any], BaseException], None] | None = None,
        **timing: float | None,
    ) -> None:
        self.config = (config or LoopConfig.from_env()).replace(**timing)

        self.layout = layout or FormattedTextLayout("")
        self.key_bindings = key_bindings or KeyBindings()
        self.full_screen = full_screen
        self.erase_when_done = erase_when_done
        self.handle_sigint = handle_sigint

        self.input = input or Vt100Input()
        self.output = output or Vt100Output.from_pty()

        self.before_render: Event[Application[_AppResult]] = Event(self, before_render)
        self.after_render: Event[Application[_AppResult]] = Event(self, after_render)
        self.on_reset: Event[Application[_AppResult]] = Event(self, on_reset)
        self.on_invalidate: Event[Application[_AppResult]] = Event(self, on_invalidate)

        self.renderer = Renderer(
            style,
            self.output,
            full_screen=full_screen,
            mouse_support=mouse_support,
            cpr_not_supported_callback=self._on_cpr_not_supported,
            cpr_timeout=self.config.cpr_timeout,
            color_depth=color_depth,
        )

        self._default_bindings = _load_default_bindings()
        self.key_processor = KeyProcessor(
            merge_key_bindings([self._default_bindings, self.key_bindings]),
            timeout_len=self.config.timeout_len,
        )
        self.key_processor.on_error = self._fail

        self.background_tasks = BackgroundTaskRegistry(on_error=on_background_task_error)

        self._coordinator = RedrawCoordinator(
            self._redraw_from_loop,
            is_running=lambda: self._is_running,
            min_redraw_interval=self.config.min_redraw_interval,
            max_render_postpone_time=self.config.max_render_postpone_time,
            is_busy=self.is_busy,
            on_invalidate=self.on_invalidate.fire,
            on_error=self._fail,
        )

        self.future: asyncio.Future[_AppResult] | None = None
        # The loop of the current run; None while not running.
        self.loop: asyncio.AbstractEventLoop | None = None
        self.render_counter = 0
        self.exit_style = ""
        self._is_running = False
        self._running_in_terminal = False
        self._running_in_terminal_f: asyncio.Future[None] | None = None
        self._flush_task: asyncio.Task[Any] | None = None

        self.reset()

    # -- state --------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def is_done(self) -> bool:
        """``True`` once a result or exception has been set."""
        return self.future is not None and self.future.done()

    @property
    def running_in_terminal(self) -> bool:
        return self._running_in_terminal

    @property
    def invalidated(self) -> bool:
        return self._coordinator.invalidated

    def reset(self) -> None:
        """Prepare for a (new) run.  Background tasks are forgotten, not
        cancelled."""
        self.exit_style = ""
        self.background_tasks.clear()
        self.renderer.reset()
        self.key_processor.reset()
        self.layout.reset()
        self.on_reset.fire()

    # -- invalidation & redraw ----------------------------------------------

    def invalidate(self) -> None:
        """Schedule a redraw.  Thread-safe; calls are coalesced."""
        self._coordinator.invalidate()

    def is_busy(self) -> bool:
        """True while typed keys are waiting to be read or dispatched.

        Redraws are postponed (up to ``max_render_postpone_time``) while
        this holds, so a burst of input is drawn once.
        """
        return bool(self.key_processor.input_queue) or self.input.has_pending_input()

    def _redraw_from_loop(self) -> None:
        self._redraw()

    def _redraw(self, render_as_done: bool = False) -> None:
        """Render now.  Skipped while not running or while suspended."""
        if not self._is_running or self._running_in_terminal:
            return

        with set_app(self):
            self.render_counter += 1
            self.before_render.fire()

            if render_as_done:
                if self.erase_when_done:
                    self.renderer.erase()
                else:
                    self.renderer.render(self.layout, is_done=True, exit_style=self.exit_style)
            else:
                self.renderer.render(self.layout, exit_style=self.exit_style)

            self.after_render.fire()

    def _request_absolute_cursor_position(self) -> None:
        # Pending input may already contain the answer to an older request.
        if not self.key_processor.input_queue and not self.is_done:
            self.renderer.request_absolute_cursor_position()

    def _on_cpr_not_supported(self) -> None:
        logger.warning("Terminal does not answer cursor position requests (CPR)")

    def _on_resize(self) -> None:
        logger.debug("Terminal resized to %s", self.output.get_size())
        with set_app(self):
            self.renderer.erase(leave_alternate_screen=False)
            self._request_absolute_cursor_position()
        self.invalidate()

    def _fail(self, exc: BaseException) -> None:
        """Deliver *exc* to whoever awaits the run."""
        if self.future is not None and not self.future.done():
            self.future.set_exception(exc)
            return
        raise exc

    # -- input --------------------------------------------------------------

    def _read_from_input(self) -> None:
        # A CPR answer may still arrive after the result was set.
        if not self._is_running and not self.renderer.waiting_for_cpr:
            return

        with set_app(self):
            try:
                keys = self.input.read_keys()
                self.key_processor.feed_multiple(keys)
                self.key_processor.process_keys()
            except Exception as e:
                self._fail(e)
                return

        if self.input.closed:
            if self.future is not None and not self.future.done():
                self.future.set_exception(EOFError())
            return

        self.invalidate()

        if self._flush_task is not None:
            self._flush_task.cancel()
        if self.config.ttimeout_len is not None and self._is_running:
            with set_app(self):
                self._flush_task = self.create_background_task(self._auto_flush_input())

    async def _auto_flush_input(self) -> None:
        """Resolve a lone ESC (or another partial sequence) after a pause."""
        await asyncio.sleep(self.config.ttimeout_len or 0)
        keys = self.input.flush_keys()
        if not keys:
            return
        try:
            self.key_processor.feed_multiple(keys)
            self.key_processor.process_keys()
        except Exception as e:
            self._fail(e)
            return
        self.invalidate()

    def _handle_sigint(self) -> None:
        with set_app(self):
            try:
                self.key_processor.send_sigint()
            except Exception as e:
                self._fail(e)
                return
        self.invalidate()

    # -- running ------------------------------------------------------------

    async def run_async(self, pre_run: Callable[[], None] | None = None) -> _AppResult:
        """Run until :meth:`exit` is called and return its result.

        Raises whatever exception was passed to :meth:`exit` or escaped a
        key handler, after the terminal has been restored.
        """
        if self._is_running:
            raise RuntimeError("Application is already running.")

        loop = asyncio.get_running_loop()

        with set_app(self):
            try:
                return await self._run(loop, pre_run)
            finally:
                await self.cancel_and_wait_for_background_tasks()

    async def _run(
        self, loop: asyncio.AbstractEventLoop, pre_run: Callable[[], None] | None
    ) -> _AppResult:
        self.reset()
        if pre_run is not None:
            pre_run()

        self.key_processor.timeout_len = self.config.timeout_len

        f: asyncio.Future[_AppResult] = loop.create_future()
        self.future = f

        watcher = SignalWatcher(
            on_resize=self._on_resize,
            get_size=self.output.get_size,
            on_interrupt=self._handle_sigint if self.handle_sigint else None,
            polling_interval=self.config.terminal_size_polling_interval,
            create_task=self.create_background_task,
        )

        self.loop = loop
        self._is_running = True
        try:
            with self.input.raw_mode(), self.input.attach(self._read_from_input):
                self._coordinator.start(loop)
                watcher.start(loop)
                try:
                    # Keys typed during the previous run go first.
                    self.key_processor.feed_multiple(get_typeahead(self.input))
                    self.key_processor.process_keys()

                    self._request_absolute_cursor_position()
                    self._redraw()
                    if self.config.refresh_interval:
                        self.create_background_task(self._poll_refresh(self.config.refresh_interval))

                    return await f
                finally:
                    watcher.stop()
                    try:
                        self._redraw(render_as_done=True)
                    finally:
                        self.renderer.reset()
                        self._is_running = False
                        self._coordinator.stop()

                        if self._flush_task is not None:
                            self._flush_task.cancel()
                            self._flush_task = None

                        if self.output.responds_to_cpr:
                            await self.renderer.wait_for_cpr_responses(
                                timeout=self.config.cpr_wait_timeout
                            )

                        previous_run_in_terminal_f = self._running_in_terminal_f
                        if previous_run_in_terminal_f is not None:
                            await previous_run_in_terminal_f

                        store_typeahead(self.input, self.key_processor.empty_queue())
        finally:
            self._is_running = False
            self.loop = None

    def run(self, pre_run: Callable[[], None] | None = None) -> _AppResult:
        """Blocking version of :meth:`run_async` (starts its own event loop)."""
        return asyncio.run(self.run_async(pre_run=pre_run))

    async def _poll_refresh(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.invalidate()

    def exit(
        self,
        result: _AppResult | None = None,
        exception: BaseException | type[BaseException] | None = None,
        style: str = "",
    ) -> None:
        """Stop the run with *result*, or make it raise *exception*.

        *style* is applied to the whole layout for the final render.
        """
        if self.future is None:
            raise RuntimeError("Application is not running. Application.exit() failed.")
        if self.future.done():
            raise RuntimeError("Result has already been set.")

        self.exit_style = style
        if exception is not None:
            self.future.set_exception(exception)
        else:
            self.future.set_result(result)  # type: ignore[arg-type]

    # -- background tasks ---------------------------------------------------

    def create_background_task(
        self, coroutine: Coroutine[Any, Any, None]
    ) -> asyncio.Task[None]:
        """Run *coroutine* alongside the application; cancelled on exit."""
        return self.background_tasks.create(coroutine)

    async def cancel_and_wait_for_background_tasks(self) -> None:
        await self.background_tasks.cancel_and_wait(
            timeout=self.config.background_task_shutdown_timeout
        )

    # -- terminal hand-off --------------------------------------------------

    async def run_system_command(
        self,
        command: str,
        wait_for_enter: bool = True,
        display_before_text: str = "",
        wait_text: str = "Press ENTER to continue...",
    ) -> None:
        """Run a shell command with the terminal released to it."""
        async with in_terminal():
            if display_before_text:
                self.output.write(display_before_text)
                self.output.flush()

            process = await asyncio.create_subprocess_shell(command)
            await process.wait()

            if wait_for_enter:
                await self._wait_for_enter(wait_text)

    async def _wait_for_enter(self, wait_text: str) -> None:
        kb = KeyBindings()

        @kb.add("enter")
        @kb.add("ctrl+j")
        def _(event: KeyPressEvent) -> None:
            event.app.exit()

        @kb.add(Keys.ANY)
        def _(event: KeyPressEvent) -> None:
            pass

        prompt: Application[None] = Application(
            layout=FormattedTextLayout(wait_text),
            key_bindings=kb,
            input=self.input,
            output=self.output,
            handle_sigint=False,
        )
        await prompt.run_async()

    def suspend_to_background(self, suspend_group: bool = True) -> asyncio.Future[None] | None:
        """Stop the process (like Ctrl-Z in a shell) with the terminal released.

        Returns ``None`` where SIGTSTP does not exist.
        """
        sigtstp = getattr(signal, "SIGTSTP", None)
        if sigtstp is None:
            return None

        def run() -> None:
            if suspend_group:
                os.kill(0, sigtstp)
            else:
                os.kill(os.getpid(), sigtstp)

        return run_in_terminal(run)  # type: ignore[return-value]
