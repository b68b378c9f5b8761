"""Bounded-concurrency, rate-limited bulk dispatch (core domain).

A fixed pool of asyncio workers drains a shared FIFO queue. Before every send
a worker asks the batch's ``RateLimiter`` for a slot; the limiter is a plain
object owned by the caller, so unrelated batches only share a throughput cap
when the caller passes them the same limiter.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Iterable, Optional

from budgetwatch.core.config import DispatchConfig
from budgetwatch.core.models import (
    DispatchFailure,
    DispatchJob,
    DispatchOutcome,
    DispatchReport,
    DispatchResult,
)

LOGGER = logging.getLogger(__name__)

SendJob = Callable[[DispatchJob], Awaitable[None]]
ProgressHook = Callable[[int, int, DispatchJob], None]


class RateLimiter:
    """Sliding-window limiter: at most ``max_per_interval`` slots per window.

    ``clock`` and ``sleep`` are injectable so tests can drive time.
    """

    def __init__(
        self,
        max_per_interval: int,
        interval_ms: int,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_per_interval < 1 or interval_ms < 1:
            raise ValueError("max_per_interval and interval_ms must be positive")
        self._max = max_per_interval
        self._interval = interval_ms / 1000.0
        self._clock = clock
        self._sleep = sleep
        self._granted: deque[float] = deque()

    @classmethod
    def from_config(cls, config: DispatchConfig) -> "RateLimiter":
        return cls(config.rate_limit.max_per_interval, config.rate_limit.interval_ms)

    def _prune(self, now: float) -> None:
        cutoff = now - self._interval
        while self._granted and self._granted[0] <= cutoff:
            self._granted.popleft()

    async def acquire(self) -> None:
        """Wait until the window has room, then take a slot."""

        while True:
            now = self._clock()
            self._prune(now)
            # No await between the check and the append: the slot is claimed
            # atomically with respect to other workers on the loop.
            if len(self._granted) < self._max:
                self._granted.append(now)
                return
            wait = self._granted[0] + self._interval - now
            LOGGER.debug("Rate limit reached; waiting %.3fs", wait)
            await self._sleep(max(wait, 0.0))

    def refund(self) -> None:
        """Give back the most recent slot when it ended up unused."""

        if self._granted:
            self._granted.pop()


class BulkDispatcher:
    """Drain jobs through ``send`` with a worker pool and a rate limiter."""

    def __init__(
        self,
        config: Optional[DispatchConfig] = None,
        limiter: Optional[RateLimiter] = None,
        on_progress: Optional[ProgressHook] = None,
    ) -> None:
        self._config = config or DispatchConfig()
        self._limiter = limiter
        self._on_progress = on_progress

    async def dispatch(self, jobs: Iterable[DispatchJob], send: SendJob) -> DispatchReport:
        """Send every job and return a report; send failures never propagate."""

        queue: deque[DispatchJob] = deque(jobs)
        total = len(queue)
        report = DispatchReport(sent=0, total=total)
        if not total:
            return report

        limiter = self._limiter or RateLimiter.from_config(self._config)
        stop_on_error = self._config.stop_on_error
        aborted = False

        async def worker(worker_id: int) -> None:
            nonlocal aborted
            while not aborted and queue:
                job = queue.popleft()
                await limiter.acquire()
                if aborted:
                    # The batch stopped while this worker waited for a slot.
                    limiter.refund()
                    queue.appendleft(job)
                    break
                try:
                    await send(job)
                except Exception as exc:
                    LOGGER.warning("Send to %s failed (worker %s): %s", job.recipient, worker_id, exc)
                    report.errors.append(DispatchFailure(job=job, error=exc))
                    report.results.append(DispatchResult(job=job, outcome=DispatchOutcome.ERROR, error=exc))
                    if stop_on_error:
                        aborted = True
                    continue
                report.sent += 1
                report.results.append(DispatchResult(job=job, outcome=DispatchOutcome.SUCCESS))
                if self._on_progress is not None:
                    self._on_progress(report.sent, total, job)

        worker_count = min(self._config.concurrency, total)
        await asyncio.gather(*(worker(index) for index in range(worker_count)))

        if aborted:
            LOGGER.warning("Batch aborted after first failure; %s job(s) not attempted", len(queue))
        LOGGER.info("Dispatch finished: sent=%s failed=%s total=%s", report.sent, report.failed, total)
        return report


async def dispatch(
    jobs: Iterable[DispatchJob],
    config: DispatchConfig,
    send: SendJob,
    limiter: Optional[RateLimiter] = None,
) -> DispatchReport:
    """Convenience wrapper around ``BulkDispatcher.dispatch``."""

    return await BulkDispatcher(config, limiter=limiter).dispatch(jobs, send)
