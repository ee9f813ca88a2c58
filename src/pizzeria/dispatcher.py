"""
Work queue that feeds order keys to the reconciler.

Guarantees:
- a key is reconciled by at most one worker at a time;
- a key already waiting in the queue is not queued twice;
- a key added while it is being reconciled is reconciled again afterwards;
- a timed-out attempt keeps its key until the cancelled reconcile has
  unwound, including any store call it was waiting on;
- failed keys are retried after an exponential, capped, jittered delay,
  without limit. Success resets the delay.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable

import structlog
from tenacity import RetryCallState, wait_exponential, wait_random

from pizzeria.core.errors import is_retryable
from pizzeria.domain.models import ObjectKey
from pizzeria.reconciler import Result

logger = structlog.get_logger()

ReconcileFunc = Callable[[ObjectKey], Awaitable[Result]]


@dataclass(frozen=True, slots=True)
class BackoffPolicy:
    """Per-key retry delay: ``initial * 2**(failures-1)`` plus jitter, capped at ``maximum``."""

    initial: float = 0.005
    maximum: float = 1000.0
    jitter: float = 1.0

    def delay(self, failures: int) -> float:
        wait = wait_exponential(multiplier=self.initial, max=self.maximum) + wait_random(0, self.jitter)
        # tenacity strategies only read attempt_number from the call state.
        state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})
        state.attempt_number = max(failures, 1)
        return min(wait(state), self.maximum)


class Dispatcher:
    def __init__(
        self,
        reconcile: ReconcileFunc,
        *,
        workers: int = 2,
        backoff: BackoffPolicy | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._reconcile = reconcile
        self._workers = workers
        self._backoff = backoff or BackoffPolicy()
        self._timeout = timeout

        self._queue: asyncio.Queue[ObjectKey] = asyncio.Queue()
        self._queued: set[ObjectKey] = set()
        self._processing: set[ObjectKey] = set()
        self._dirty: set[ObjectKey] = set()
        self._failures: dict[ObjectKey, int] = {}
        self._timers: dict[ObjectKey, asyncio.TimerHandle] = {}
        self._tasks: list[asyncio.Task[None]] = []

    def __len__(self) -> int:
        return len(self._queued)

    def failures(self, key: ObjectKey) -> int:
        return self._failures.get(key, 0)

    def add(self, key: ObjectKey) -> None:
        if key in self._processing:
            self._dirty.add(key)
            return
        if key in self._queued:
            return
        self._queued.add(key)
        self._queue.put_nowait(key)

    def add_after(self, key: ObjectKey, delay: float) -> None:
        loop = asyncio.get_running_loop()
        existing = self._timers.get(key)
        if existing is not None:
            if existing.when() <= loop.time() + delay:
                return
            existing.cancel()
        self._timers[key] = loop.call_later(delay, self._fire_timer, key)

    def _fire_timer(self, key: ObjectKey) -> None:
        self._timers.pop(key, None)
        self.add(key)

    def _add_rate_limited(self, key: ObjectKey) -> float:
        self._failures[key] = self._failures.get(key, 0) + 1
        delay = self._backoff.delay(self._failures[key])
        self.add_after(key, delay)
        return delay

    async def _process(self, key: ObjectKey) -> None:
        log = logger.bind(order=str(key))
        try:
            # On timeout wait_for cancels the reconcile and waits for it to unwind.
            result = await asyncio.wait_for(self._reconcile(key), self._timeout)
        except asyncio.TimeoutError:
            delay = self._add_rate_limited(key)
            log.warning("reconcile_timeout", timeout=self._timeout, retry_in=delay)
            return
        except Exception as exc:
            delay = self._add_rate_limited(key)
            log.warning(
                "reconcile_failed",
                error_type=type(exc).__name__,
                error=str(exc),
                retryable=is_retryable(exc),
                failures=self._failures[key],
                retry_in=delay,
            )
            return

        if result.requeue_after is not None:
            self._failures.pop(key, None)
            self.add_after(key, result.requeue_after)
        elif result.requeue:
            self._add_rate_limited(key)
        else:
            self._failures.pop(key, None)

    async def _worker(self, number: int) -> None:
        while True:
            key = await self._queue.get()
            self._queued.discard(key)
            self._processing.add(key)
            try:
                await self._process(key)
            finally:
                self._processing.discard(key)
                if key in self._dirty:
                    self._dirty.discard(key)
                    self.add(key)
                self._queue.task_done()

    def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._worker(n), name=f"pizzeria-worker-{n}")
            for n in range(self._workers)
        ]
        logger.info("dispatcher_started", workers=self._workers)

    async def run(self) -> None:
        """Run the workers until cancelled."""
        self.start()
        try:
            await asyncio.gather(*self._tasks)
        finally:
            await self.shutdown()

    async def join(self) -> None:
        """Wait until every queued key has been processed."""
        await self._queue.join()

    async def shutdown(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
