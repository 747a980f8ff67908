"""Batch layer: CSV ingestion, concurrent runner, decision writer and resumable waves."""

from __future__ import annotations

from siteresolver.batch.checkpoint import CheckpointStore
from siteresolver.batch.ingest import detect_delimiter, map_header, read_input_rows
from siteresolver.batch.runner import RunControl, Throttle, run_rows, run_single_pass
from siteresolver.batch.waves import (
    BatchState,
    MergeSummary,
    WaveOrchestrator,
    merge_waves,
    select_waves,
)
from siteresolver.batch.writer import CsvSink, DecisionWriter

__all__ = [
    "BatchState",
    "CheckpointStore",
    "CsvSink",
    "DecisionWriter",
    "MergeSummary",
    "RunControl",
    "Throttle",
    "WaveOrchestrator",
    "detect_delimiter",
    "map_header",
    "merge_waves",
    "read_input_rows",
    "run_rows",
    "run_single_pass",
    "select_waves",
]
