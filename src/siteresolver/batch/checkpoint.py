"""Per-wave checkpoint files, one CSV per outcome.

A wave's files are ``wave{n}_{name}_{valid|invalid|not_found}.csv``.  The
union of their ``company_key`` column is what the wave has already done,
so an interrupted wave resumes without writing any row twice.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from pathlib import Path

import pandas as pd
import structlog

from siteresolver.batch.writer import append_records
from siteresolver.models import OUTPUT_COLUMNS, Decision, Outcome

logger = structlog.get_logger(__name__)


def read_decisions_csv(path: Path) -> pd.DataFrame:
    """Read a decisions CSV as strings; empty frame with the output columns if absent."""
    if not path.exists() or path.stat().st_size == 0:
        return pd.DataFrame(columns=list(OUTPUT_COLUMNS))
    return pd.read_csv(path, dtype=str, keep_default_na=False)


class CheckpointStore:
    """Checkpoint files of wave number *index* named *name* under *output_dir*."""

    def __init__(self, output_dir: str | Path, index: int, name: str) -> None:
        self.output_dir = Path(output_dir)
        self.index = index
        self.name = name

    def path(self, outcome: Outcome) -> Path:
        return self.output_dir / f"wave{self.index}_{self.name}_{outcome.value}.csv"

    def read(self, outcome: Outcome) -> pd.DataFrame:
        return read_decisions_csv(self.path(outcome))

    def keys(self, outcome: Outcome) -> set[str]:
        df = self.read(outcome)
        return set(df["company_key"]) if "company_key" in df.columns else set()

    def completed_keys(self) -> set[str]:
        done: set[str] = set()
        for outcome in Outcome:
            done |= self.keys(outcome)
        return done

    def write(self, decisions: Sequence[Decision]) -> None:
        """Append decisions, routed by outcome.  Usable as a writer sink."""
        grouped: dict[Outcome, list[Decision]] = defaultdict(list)
        for decision in decisions:
            grouped[decision.outcome].append(decision)
        for outcome, batch in grouped.items():
            append_records(self.path(outcome), batch)
        logger.debug(
            "checkpoint_flush",
            wave=self.name,
            **{o.value: len(b) for o, b in grouped.items()},
        )
