"""Logging setup, run metrics and the memory watchdog."""

from __future__ import annotations

import asyncio
import logging
import os
from collections import Counter
from dataclasses import dataclass, field

import psutil
import structlog

from siteresolver.models import Decision

logger = structlog.get_logger(__name__)


def configure_logging(level: str = "INFO", json: bool = False) -> None:
    """Configure structlog for console (default) or JSON-lines output."""
    renderer = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        cache_logger_on_first_use=False,
    )


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


@dataclass
class RunMetrics:
    """Counts decisions by status and tracks latency for one run or wave."""

    by_status: Counter[str] = field(default_factory=Counter)
    total: int = 0
    total_latency_ms: float = 0.0

    def record(self, decision: Decision, latency_ms: float) -> None:
        self.total += 1
        self.by_status[decision.status.value] += 1
        self.total_latency_ms += latency_ms

    @property
    def avg_latency_ms(self) -> float:
        return round(self.total_latency_ms / self.total, 1) if self.total else 0.0

    def summary(self) -> dict[str, object]:
        return {
            "total": self.total,
            "avg_latency_ms": self.avg_latency_ms,
            **dict(sorted(self.by_status.items())),
        }


# ---------------------------------------------------------------------------
# Memory watchdog
# ---------------------------------------------------------------------------


def current_rss_mb() -> float:
    return psutil.Process(os.getpid()).memory_info().rss / 1024 / 1024


async def memory_watchdog(interval_s: float, warn_mb: float) -> None:
    """Log RSS every *interval_s* seconds, warning above *warn_mb*.

    Runs until cancelled.  Never stops the process.
    """
    while True:
        await asyncio.sleep(interval_s)
        rss = current_rss_mb()
        if rss > warn_mb:
            logger.warning("memory_high", rss_mb=round(rss, 1), warn_mb=warn_mb)
        else:
            logger.debug("memory_sample", rss_mb=round(rss, 1))
