"""Unit tests for the cancellation token and executor helper."""

import asyncio
import threading

import pytest

from chronome.async_utils import CancellationToken, run_blocking

pytestmark = pytest.mark.unit


class TestCancellationToken:
    @pytest.mark.asyncio
    async def test_run_returns_result(self):
        token = CancellationToken()

        async def work():
            return 42

        assert await token.run(work()) == 42

    @pytest.mark.asyncio
    async def test_run_propagates_failure(self):
        token = CancellationToken()

        async def work():
            raise ValueError("boom")

        with pytest.raises(ValueError):
            await token.run(work())

    @pytest.mark.asyncio
    async def test_cancel_resolves_pending_to_default(self):
        token = CancellationToken()
        started = asyncio.Event()
        inner_cancelled = asyncio.Event()

        async def slow():
            started.set()
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                inner_cancelled.set()
                raise
            return "late"

        task = asyncio.create_task(token.run(slow(), default=[]))
        await started.wait()
        token.cancel()

        assert await asyncio.wait_for(task, timeout=1.0) == []
        assert inner_cancelled.is_set()
        assert token.cancelled

    @pytest.mark.asyncio
    async def test_run_after_cancel_does_not_start_work(self):
        token = CancellationToken()
        token.cancel()
        calls = []

        async def work():
            calls.append(1)

        assert await token.run(work(), default="skipped") == "skipped"
        assert calls == []

    @pytest.mark.asyncio
    async def test_outer_cancellation_cancels_inner(self):
        token = CancellationToken()
        inner_cancelled = asyncio.Event()

        async def slow():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                inner_cancelled.set()
                raise

        task = asyncio.create_task(token.run(slow()))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0)
        assert inner_cancelled.is_set()

    @pytest.mark.asyncio
    async def test_sleep_times_out_without_cancel(self):
        token = CancellationToken()
        assert await token.sleep(0.01) is False

    @pytest.mark.asyncio
    async def test_sleep_wakes_on_cancel(self):
        token = CancellationToken()
        loop = asyncio.get_running_loop()
        loop.call_later(0.01, token.cancel)
        assert await asyncio.wait_for(token.sleep(10), timeout=1.0) is True
        assert await token.sleep(10) is True


class TestRunBlocking:
    @pytest.mark.asyncio
    async def test_runs_off_the_event_loop_thread(self):
        def work(a, b=0):
            return a + b, threading.get_ident()

        result, thread_id = await run_blocking(work, 1, b=2)
        assert result == 3
        assert thread_id != threading.get_ident()
