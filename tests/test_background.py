"""Tests for pi.termloop.background.BackgroundTaskRegistry."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import pytest

from pi.termloop.background import BackgroundTaskRegistry


class TestRegistry:
    @pytest.mark.asyncio
    async def test_finished_task_removes_itself(self) -> None:
        registry = BackgroundTaskRegistry()

        async def quick() -> None:
            pass

        task = registry.create(quick())
        assert len(registry) == 1
        await task
        await asyncio.sleep(0)
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_exception_goes_to_hook(self) -> None:
        errors: list[BaseException] = []
        registry = BackgroundTaskRegistry(on_error=lambda task, exc: errors.append(exc))

        async def failing() -> None:
            raise ValueError("boom")

        registry.create(failing())
        await asyncio.sleep(0.01)

        assert len(errors) == 1
        assert isinstance(errors[0], ValueError)

    @pytest.mark.asyncio
    async def test_default_hook_logs_error(self, caplog: pytest.LogCaptureFixture) -> None:
        registry = BackgroundTaskRegistry()

        async def failing() -> None:
            raise ValueError("boom")

        with caplog.at_level(logging.ERROR, logger="pi.termloop.background"):
            registry.create(failing())
            await asyncio.sleep(0.01)

        assert any("background task" in r.getMessage() for r in caplog.records)
        assert caplog.records[-1].exc_info is not None

    @pytest.mark.asyncio
    async def test_cancellation_is_not_an_error(self) -> None:
        errors: list[BaseException] = []
        registry = BackgroundTaskRegistry(on_error=lambda task, exc: errors.append(exc))

        task = registry.create(asyncio.sleep(10))
        task.cancel()
        await asyncio.sleep(0.01)

        assert errors == []
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_clear_forgets_without_cancelling(self) -> None:
        registry = BackgroundTaskRegistry()
        task = registry.create(asyncio.sleep(10))
        registry.clear()
        assert len(registry) == 0
        assert not task.cancelled()
        task.cancel()


class TestShutdown:
    @pytest.mark.asyncio
    async def test_cancel_and_wait_cancels_everything(self) -> None:
        registry = BackgroundTaskRegistry()
        tasks = [registry.create(asyncio.sleep(10)) for _ in range(3)]

        await registry.cancel_and_wait(timeout=1.0)

        assert all(t.cancelled() for t in tasks)
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_cancel_and_wait_lets_cleanup_finish(self) -> None:
        registry = BackgroundTaskRegistry()
        cleaned: list[str] = []

        async def with_cleanup() -> None:
            try:
                await asyncio.sleep(10)
            finally:
                await asyncio.sleep(0.01)
                cleaned.append("done")

        registry.create(with_cleanup())
        await asyncio.sleep(0)
        await registry.cancel_and_wait(timeout=1.0)

        assert cleaned == ["done"]

    @pytest.mark.asyncio
    async def test_stubborn_task_is_abandoned_after_timeout(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        registry = BackgroundTaskRegistry()
        release = asyncio.Event()

        async def stubborn() -> None:
            while not release.is_set():
                try:
                    await release.wait()
                except asyncio.CancelledError:
                    continue

        task: asyncio.Task[Any] = registry.create(stubborn())
        await asyncio.sleep(0)

        loop = asyncio.get_running_loop()
        started = loop.time()
        with caplog.at_level(logging.WARNING, logger="pi.termloop.background"):
            await registry.cancel_and_wait(timeout=0.05)
        elapsed = loop.time() - started

        assert elapsed < 1.0
        assert not task.done()
        assert any("still running" in r.getMessage() for r in caplog.records)

        release.set()
        await asyncio.wait_for(task, 1.0)

    @pytest.mark.asyncio
    async def test_nothing_to_cancel(self) -> None:
        await BackgroundTaskRegistry().cancel_and_wait(timeout=0.01)
