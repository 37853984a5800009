"""
Tests for the rate gate, retry policy and timer race.
"""

from __future__ import annotations

import asyncio

import pytest

from media_tracker.clients.transport import ModelCallError
from media_tracker.concurrency import (
    RateGate,
    call_with_retry,
    run_in_background,
    status_code_of,
    with_timeout,
)


class TestRateGate:

    @pytest.mark.asyncio
    async def test_never_exceeds_capacity(self):
        gate = RateGate(2)
        release = asyncio.Event()
        peak = 0

        async def worker():
            nonlocal peak
            async with gate:
                peak = max(peak, gate.in_flight)
                await release.wait()

        tasks = [asyncio.ensure_future(worker()) for _ in range(5)]
        await asyncio.sleep(0.01)
        assert gate.in_flight == 2
        assert gate.waiting == 3

        release.set()
        await asyncio.gather(*tasks)
        assert peak == 2
        assert gate.in_flight == 0

    @pytest.mark.asyncio
    async def test_release_hands_slot_to_oldest_waiter(self):
        gate = RateGate(1)
        await gate.acquire()
        order = []

        async def waiter(name):
            await gate.acquire()
            order.append(name)

        tasks = []
        for name in ("a", "b", "c"):
            tasks.append(asyncio.ensure_future(waiter(name)))
            await asyncio.sleep(0)

        for _ in range(3):
            gate.release()
            await asyncio.sleep(0)
        await asyncio.gather(*tasks)
        assert order == ["a", "b", "c"]
        assert gate.in_flight == 1

    @pytest.mark.asyncio
    async def test_release_resolves_exactly_one_waiter(self):
        gate = RateGate(1)
        await gate.acquire()
        tasks = [asyncio.ensure_future(gate.acquire()) for _ in range(3)]
        await asyncio.sleep(0)

        gate.release()
        await asyncio.sleep(0)
        assert sum(t.done() for t in tasks) == 1
        assert gate.waiting == 2
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    @pytest.mark.asyncio
    async def test_cancelled_waiter_leaves_queue(self):
        gate = RateGate(1)
        await gate.acquire()
        task = asyncio.ensure_future(gate.acquire())
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert gate.waiting == 0
        gate.release()
        assert gate.in_flight == 0

    @pytest.mark.asyncio
    async def test_slot_released_on_exception(self):
        gate = RateGate(1)
        with pytest.raises(ValueError):
            async with gate:
                raise ValueError("boom")
        assert gate.in_flight == 0

    def test_over_release_raises(self):
        with pytest.raises(RuntimeError):
            RateGate(1).release()


class _RateLimited(Exception):
    status_code = 429


class TestRetryPolicy:

    @pytest.mark.asyncio
    async def test_retries_429_with_backoff(self):
        delays = []
        attempts = 0

        async def fake_sleep(seconds):
            delays.append(seconds)

        async def call():
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise _RateLimited()
            return "ok"

        result = await call_with_retry(call, gate=RateGate(2), sleep=fake_sleep)
        assert result == "ok"
        assert attempts == 3
        assert delays == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_other_error_fails_immediately(self):
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)

        async def call():
            raise ModelCallError("server error", status_code=500)

        with pytest.raises(ModelCallError):
            await call_with_retry(call, gate=RateGate(2), sleep=fake_sleep)
        assert delays == []

    @pytest.mark.asyncio
    async def test_exhausted_retries_surface_last_error(self):
        gate = RateGate(2)

        async def fake_sleep(seconds):
            pass

        async def call():
            raise _RateLimited()

        with pytest.raises(_RateLimited):
            await call_with_retry(call, gate=gate, max_attempts=3, sleep=fake_sleep)
        assert gate.in_flight == 0

    @pytest.mark.asyncio
    async def test_each_attempt_passes_the_gate(self):
        gate = RateGate(1)
        seen = []

        async def fake_sleep(seconds):
            seen.append(("sleep", gate.in_flight))

        async def call():
            seen.append(("call", gate.in_flight))
            if len(seen) == 1:
                raise _RateLimited()
            return "done"

        assert await call_with_retry(call, gate=gate, sleep=fake_sleep) == "done"
        assert seen == [("call", 1), ("sleep", 0), ("call", 1)]

    def test_status_code_detection(self):
        assert status_code_of(ModelCallError("x", 429)) == 429
        assert status_code_of(ModelCallError.from_message("HTTP error (429): slow down")) == 429
        assert status_code_of(ValueError("x")) is None


class TestWithTimeout:

    @pytest.mark.asyncio
    async def test_fast_result_wins(self):
        async def fast():
            return "image"

        assert await with_timeout(fast(), 1.0) == "image"

    @pytest.mark.asyncio
    async def test_timer_wins_and_loser_is_cancelled(self):
        started = asyncio.Event()

        async def never():
            started.set()
            await asyncio.Event().wait()

        coro = never()
        result = await with_timeout(coro, 0.05, fallback="fallback")
        assert result == "fallback"
        assert started.is_set()

    @pytest.mark.asyncio
    async def test_caller_cancellation_cancels_inner_task(self):
        started = asyncio.Event()
        inner_cancelled = asyncio.Event()

        async def slow():
            started.set()
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                inner_cancelled.set()
                raise

        outer = asyncio.ensure_future(with_timeout(slow(), 10.0, fallback="fallback"))
        await started.wait()
        outer.cancel()

        with pytest.raises(asyncio.CancelledError):
            await outer
        await asyncio.wait_for(inner_cancelled.wait(), 1.0)

    @pytest.mark.asyncio
    async def test_failure_yields_fallback(self):
        async def broken():
            raise RuntimeError("network down")

        assert await with_timeout(broken(), 1.0, fallback=None) is None


@pytest.mark.asyncio
async def test_background_task_runs_to_completion():
    done = asyncio.Event()

    async def work():
        await asyncio.sleep(0)
        done.set()
        return "discarded"

    task = run_in_background(work())
    await task
    assert done.is_set()
