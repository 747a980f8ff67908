"""Concurrent batch runner.

Rows are resolved by a semaphore-bounded task pool.  A failure in one row
becomes an ERROR_* decision for that row and never stops the batch.  A
provider rate limit trips a shared cooldown that pauses new rows.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Awaitable, Callable, Iterable
from pathlib import Path

import structlog

from siteresolver.batch.writer import CsvSink, DecisionWriter
from siteresolver.config import SystemConfig
from siteresolver.models import Decision, DecisionStatus, InputRow
from siteresolver.observability import RunMetrics, memory_watchdog
from siteresolver.resolution.pipeline import RowResolver, error_decision

logger = structlog.get_logger(__name__)

ResolveFn = Callable[[InputRow], Awaitable[Decision]]


class Throttle:
    """Shared cooldown entered when a search provider says "slow down"."""

    def __init__(
        self,
        cooldown_s: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.cooldown_s = cooldown_s
        self._clock = clock
        self._sleep = sleep
        self._until = 0.0
        self.trips = 0

    @property
    def remaining_s(self) -> float:
        return max(0.0, self._until - self._clock())

    def trip(self) -> None:
        self.trips += 1
        self._until = max(self._until, self._clock() + self.cooldown_s)
        logger.warning("rate_limit_cooldown", seconds=self.cooldown_s, trips=self.trips)

    async def wait(self) -> None:
        remaining = self.remaining_s
        if remaining > 0:
            logger.info("throttle_wait", seconds=round(remaining, 1))
            await self._sleep(remaining)


class RunControl:
    """Cross-cutting run state: the throttle and the graceful-stop flag."""

    def __init__(self, throttle: Throttle | None = None) -> None:
        self.throttle = throttle or Throttle(0)
        self.stop_requested = False

    def request_stop(self) -> None:
        """Stop scheduling new rows; rows already running are finished and written."""
        if not self.stop_requested:
            logger.warning("stop_requested")
        self.stop_requested = True


async def run_rows(
    rows: Iterable[InputRow],
    resolve: ResolveFn,
    writer: DecisionWriter,
    system: SystemConfig,
    *,
    run_id: str,
    wave: str = "",
    control: RunControl | None = None,
    metrics: RunMetrics | None = None,
) -> RunMetrics:
    """Resolve *rows* concurrently, writing one decision per scheduled row."""
    control = control or RunControl(Throttle(system.rate_limit_cooldown_s))
    metrics = metrics or RunMetrics()
    semaphore = asyncio.Semaphore(system.concurrency)
    tasks: set[asyncio.Task[None]] = set()

    async def _one(row: InputRow) -> None:
        start = time.perf_counter()
        try:
            try:
                decision = await resolve(row)
            except Exception as exc:
                logger.exception("row_crashed", line=row.line_number)
                decision = error_decision(row, exc, run_id, wave)
            if decision.status is DecisionStatus.ERROR_RATE_LIMIT:
                control.throttle.trip()
            await writer.put(decision)
            metrics.record(decision, (time.perf_counter() - start) * 1000)
            if metrics.total % system.progress_log_every == 0:
                logger.info("progress", wave=wave, **metrics.summary())
        finally:
            semaphore.release()

    watchdog = asyncio.create_task(
        memory_watchdog(system.watchdog_interval_s, system.memory_warn_mb)
    )
    try:
        for row in rows:
            await semaphore.acquire()
            await control.throttle.wait()
            if control.stop_requested:
                semaphore.release()
                break
            task = asyncio.create_task(_one(row))
            tasks.add(task)
            task.add_done_callback(tasks.discard)
        if tasks:
            await asyncio.gather(*tasks)
    finally:
        watchdog.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await watchdog

    logger.info("run_complete", wave=wave, stopped=control.stop_requested, **metrics.summary())
    return metrics


async def run_single_pass(
    rows: Iterable[InputRow],
    resolver: RowResolver,
    output_path: str | Path,
    system: SystemConfig,
    control: RunControl | None = None,
) -> RunMetrics:
    """Resolve every row once with default settings into one output CSV."""
    sink = CsvSink(output_path, truncate=True)
    writer = DecisionWriter(
        sink,
        batch_size=system.writer_batch_size,
        queue_size=system.writer_queue_size,
        flush_interval_s=system.flush_interval_s,
    )
    async with writer:
        return await run_rows(
            rows, resolver.resolve, writer, system, run_id=resolver.ctx.run_id, control=control
        )
