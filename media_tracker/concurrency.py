"""
Media Tracker AI — Concurrency primitives

Design patterns:
  - Semaphore with hand-off: RateGate passes a released slot straight to the
    oldest waiter, so newcomers cannot overtake the queue
  - Retry with Backoff: exponential backoff on HTTP 429 only
  - Race against a timer: with_timeout() abandons the slower branch
  - Fire and forget: run_in_background() keeps a strong reference until done
"""

from __future__ import annotations

import asyncio
import collections
import logging
from typing import Any, Awaitable, Callable, Deque, Optional, Set, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ── Rate gate ─────────────────────────────────────────────


class RateGate:
    """Bounded admission control for outbound model calls (FIFO fair)."""

    def __init__(self, max_concurrent: int = 2) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self._max = max_concurrent
        self._in_flight = 0
        self._waiters: Deque[asyncio.Future] = collections.deque()

    @property
    def max_concurrent(self) -> int:
        return self._max

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def waiting(self) -> int:
        return sum(1 for w in self._waiters if not w.done())

    async def acquire(self) -> None:
        if self._in_flight < self._max and not self._waiters:
            self._in_flight += 1
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # The slot was already handed to us; pass it on.
                self.release()
            else:
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
            raise

    def release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                # In-flight count is unchanged: the slot moves to the waiter.
                waiter.set_result(None)
                return
        if self._in_flight <= 0:
            raise RuntimeError("RateGate released more times than acquired")
        self._in_flight -= 1

    async def __aenter__(self) -> "RateGate":
        await self.acquire()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.release()


_gate: Optional[RateGate] = None


def get_rate_gate() -> RateGate:
    """Process-wide gate shared by every logical operation."""
    global _gate
    if _gate is None:
        from media_tracker.config import settings

        _gate = RateGate(settings.model_max_concurrent)
    return _gate


# ── Retry policy ──────────────────────────────────────────


def status_code_of(exc: BaseException) -> Optional[int]:
    """Best-effort HTTP status of an error raised by a model client."""
    code = getattr(exc, "status_code", None)
    if isinstance(code, int):
        return code
    response = getattr(exc, "response", None)
    code = getattr(response, "status_code", None)
    return code if isinstance(code, int) else None


async def call_with_retry(
    call: Callable[[], Awaitable[T]],
    *,
    gate: Optional[RateGate] = None,
    max_attempts: int = 3,
    base_delay: float = 2.0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Run ``call`` through the rate gate, retrying on HTTP 429.

    Every attempt acquires and releases the gate on its own; the backoff
    sleep happens outside the gate. Any other error propagates at once.
    """
    gate = gate or get_rate_gate()
    attempt = 0
    while True:
        attempt += 1
        try:
            async with gate:
                return await call()
        except Exception as exc:
            if status_code_of(exc) != 429 or attempt >= max_attempts:
                raise
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning(
                "Model call rate-limited (attempt %d/%d), waiting %.1fs",
                attempt, max_attempts, delay,
            )
            await sleep(delay)


# ── Racing against a timer ────────────────────────────────


async def with_timeout(
    awaitable: Awaitable[T],
    seconds: float,
    fallback: Any = None,
) -> Any:
    """
    Return the awaitable's result, or ``fallback`` if the timer wins or the
    task fails. The losing task is cancelled and never awaited.
    """
    task = asyncio.ensure_future(awaitable)
    try:
        done, _ = await asyncio.wait({task}, timeout=seconds)
    except asyncio.CancelledError:
        task.cancel()
        raise
    if not done:
        task.cancel()
        return fallback
    if task.cancelled():
        return fallback
    exc = task.exception()
    if exc is not None:
        logger.debug("Raced lookup failed: %s", exc)
        return fallback
    return task.result()


# ── Background continuation ──────────────────────────────

_background: Set[asyncio.Task] = set()


def _log_background_failure(task: asyncio.Task) -> None:
    _background.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.warning("Background task failed: %s", task.exception())


def run_in_background(awaitable: Awaitable[Any]) -> asyncio.Task:
    """Let remaining work finish after the caller lost interest; discard the result."""
    task = asyncio.ensure_future(awaitable)
    _background.add(task)
    task.add_done_callback(_log_background_failure)
    return task
