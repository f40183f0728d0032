"""Tests for pi.termloop.patch_stdout."""

from __future__ import annotations

import asyncio
import sys
import time
from typing import Any

import pytest

from pi.termloop.application import Application
from pi.termloop.config import LoopConfig
from pi.termloop.input import PipeInput
from pi.termloop.layout import FormattedTextLayout
from pi.termloop.patch_stdout import StdoutProxy, patch_stdout

from .virtual_output import VirtualOutput

ENABLE_AUTOWRAP = "\x1b[?7h"


def make_app() -> tuple[Application[Any], VirtualOutput]:
    output = VirtualOutput()
    app: Application[Any] = Application(
        layout=FormattedTextLayout("layout"),
        input=PipeInput(),
        output=output,
        config=LoopConfig(),
    )
    return app, output


def printed(output: VirtualOutput) -> str:
    """What reached the terminal, without the autowrap switch sent before each print."""
    return output.output.replace(ENABLE_AUTOWRAP, "")


class TestWithoutApplication:
    def test_lines_written_directly(self) -> None:
        app, output = make_app()
        proxy = StdoutProxy(app, sleep_between_writes=0)
        proxy.write("first\nsecond\n")
        proxy.close()
        assert printed(output) == "first\nsecond\n"

    def test_partial_line_waits_for_newline(self) -> None:
        app, output = make_app()
        proxy = StdoutProxy(app, sleep_between_writes=0)
        proxy.write("abc")
        time.sleep(0.05)
        assert "abc" not in printed(output)

        proxy.write("def\ngh")
        proxy.close()
        assert printed(output) == "abcdef\ngh"

    def test_flush_sends_partial_line(self) -> None:
        app, output = make_app()
        proxy = StdoutProxy(app, sleep_between_writes=0)
        proxy.write("prompt> ")
        proxy.flush()
        deadline = time.monotonic() + 1.0
        while "prompt> " not in printed(output) and time.monotonic() < deadline:
            time.sleep(0.01)
        proxy.close()
        assert printed(output) == "prompt> "

    def test_escapes_neutralised_unless_raw(self) -> None:
        app, output = make_app()
        with StdoutProxy(app, sleep_between_writes=0) as proxy:
            proxy.write("\x1b[31mred\n")
        assert "?[31mred" in output.output

        output.clear_buffer()
        with StdoutProxy(app, raw=True, sleep_between_writes=0) as proxy:
            proxy.write("\x1b[31mred\n")
        assert "\x1b[31mred" in output.output

    def test_closed_proxy_ignores_writes(self) -> None:
        app, output = make_app()
        proxy = StdoutProxy(app, sleep_between_writes=0)
        proxy.close()
        proxy.close()
        assert proxy.write("late\n") == 5
        assert "late" not in printed(output)

    def test_negative_sleep_rejected(self) -> None:
        app, _ = make_app()
        with pytest.raises(ValueError):
            StdoutProxy(app, sleep_between_writes=-1)


class TestPatchStdout:
    def test_replaces_and_restores_streams(self) -> None:
        app, output = make_app()
        stdout, stderr = sys.stdout, sys.stderr

        with patch_stdout(app, sleep_between_writes=0) as proxy:
            assert sys.stdout is proxy
            assert sys.stderr is proxy
            print("printed")
            print("warned", file=sys.stderr)

        assert sys.stdout is stdout
        assert sys.stderr is stderr
        assert printed(output) == "printed\nwarned\n"

    @pytest.mark.asyncio
    async def test_prints_above_running_application(self) -> None:
        app, output = make_app()
        task = asyncio.ensure_future(app.run_async())
        await asyncio.sleep(0.02)
        loop = asyncio.get_running_loop()

        proxy = StdoutProxy(app, sleep_between_writes=0)
        output.clear_buffer()
        before = app.render_counter
        proxy.write("log line\n")

        deadline = loop.time() + 2.0
        while "log line" not in output.text and loop.time() < deadline:
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.05)

        text = output.text
        assert "log line" in text
        assert text.rindex("layout") > text.index("log line")
        assert app.render_counter > before

        await loop.run_in_executor(None, proxy.close)
        app.exit()
        await asyncio.wait_for(task, 2.0)

    @pytest.mark.asyncio
    async def test_after_application_exits_writes_go_direct(self) -> None:
        app, output = make_app()
        task = asyncio.ensure_future(app.run_async())
        await asyncio.sleep(0.02)
        app.exit()
        await asyncio.wait_for(task, 2.0)

        output.clear_buffer()
        proxy = StdoutProxy(app, sleep_between_writes=0)
        proxy.write("after\n")
        await asyncio.get_running_loop().run_in_executor(None, proxy.close)
        assert printed(output) == "after\n"
