"""Buffered, single-consumer decision writer.

Producers ``put`` decisions onto a bounded queue (so a slow disk applies
backpressure); one consumer task flushes them to a sink in batches, and
also on a timer so a quiet run still makes progress on disk.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

import pandas as pd
import structlog

from siteresolver.models import OUTPUT_COLUMNS, Decision

logger = structlog.get_logger(__name__)


class DecisionSink(Protocol):
    def write(self, decisions: Sequence[Decision]) -> None: ...


def append_records(path: Path, decisions: Sequence[Decision]) -> None:
    """Append decisions to a CSV, writing the header only for a new file."""
    if not decisions:
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    new_file = not path.exists() or path.stat().st_size == 0
    df = pd.DataFrame([d.to_record() for d in decisions], columns=list(OUTPUT_COLUMNS))
    df.to_csv(path, mode="a", header=new_file, index=False)


class CsvSink:
    """Append every decision to one CSV file."""

    def __init__(self, path: str | Path, truncate: bool = False) -> None:
        self.path = Path(path)
        if truncate and self.path.exists():
            self.path.unlink()

    def write(self, decisions: Sequence[Decision]) -> None:
        append_records(self.path, decisions)


class DecisionWriter:
    """Queue decisions and flush them to *sink* from a single task.

    Use as an async context manager, or call :meth:`start` and
    :meth:`close` explicitly.
    """

    def __init__(
        self,
        sink: DecisionSink,
        batch_size: int = 25,
        queue_size: int = 200,
        flush_interval_s: float = 5.0,
    ) -> None:
        self.sink = sink
        self.batch_size = batch_size
        self.flush_interval_s = flush_interval_s
        self.written = 0
        self._queue: asyncio.Queue[Decision | None] = asyncio.Queue(maxsize=queue_size)
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._consume())

    async def put(self, decision: Decision) -> None:
        if self._task is None:
            msg = "DecisionWriter.put called before start()"
            raise RuntimeError(msg)
        if self._task.done():
            # Surface a crashed consumer instead of blocking on a full queue.
            self._task.result()
            msg = "DecisionWriter is closed"
            raise RuntimeError(msg)
        await self._queue.put(decision)

    async def close(self) -> None:
        if self._task is None:
            return
        if not self._task.done():
            await self._queue.put(None)
        await self._task
        logger.debug("writer_closed", written=self.written)

    async def __aenter__(self) -> DecisionWriter:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _flush(self, buffer: list[Decision]) -> None:
        if not buffer:
            return
        self.sink.write(list(buffer))
        self.written += len(buffer)
        buffer.clear()

    async def _consume(self) -> None:
        buffer: list[Decision] = []
        while True:
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout=self.flush_interval_s)
            except TimeoutError:
                self._flush(buffer)
                continue
            if item is None:
                self._flush(buffer)
                return
            buffer.append(item)
            if len(buffer) >= self.batch_size:
                self._flush(buffer)
