"""Multi-wave, resumable batch orchestration.

Each wave re-resolves the rows earlier waves could not confirm, with a
harder mining strategy and looser thresholds.  Progress is kept in
per-wave checkpoint CSVs plus a small ``state.json``, so a killed batch
picks up where it stopped.  When every wave is done the checkpoints are
merged into ``final_valid.csv``, ``final_invalid.csv`` and
``final_not_found.csv``.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

import pandas as pd
import structlog

from siteresolver.batch.checkpoint import CheckpointStore
from siteresolver.batch.runner import RunControl, Throttle, run_rows
from siteresolver.batch.writer import DecisionWriter
from siteresolver.config import SystemConfig
from siteresolver.models import OUTPUT_COLUMNS, InputRow, Outcome
from siteresolver.observability import RunMetrics
from siteresolver.resolution.pipeline import (
    DEFAULT_WAVES,
    RowResolver,
    WaveSpec,
    utc_now,
    wave_specs,
)

logger = structlog.get_logger(__name__)

__all__ = [
    "DEFAULT_WAVES",
    "BatchState",
    "MergeSummary",
    "WaveOrchestrator",
    "WaveSpec",
    "merge_waves",
    "select_waves",
]

NOT_STARTED = "NOT_STARTED"
MERGED = "MERGED"
STATE_FILE = "state.json"

FINAL_FILES = {
    Outcome.VALID: "final_valid.csv",
    Outcome.INVALID: "final_invalid.csv",
    Outcome.NOT_FOUND: "final_not_found.csv",
}


def select_waves(
    names: Sequence[str] | None, waves: Sequence[WaveSpec] = DEFAULT_WAVES
) -> list[WaveSpec]:
    """Pick waves by name, keeping their default order."""
    if not names:
        return list(waves)
    wanted = {n.strip().lower() for n in names if n.strip()}
    known = {w.name for w in waves}
    unknown = sorted(wanted - known)
    if unknown:
        msg = f"Unknown wave(s) {unknown}; expected some of {sorted(known)}"
        raise ValueError(msg)
    return [w for w in waves if w.name in wanted]


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


@dataclass
class BatchState:
    """``NOT_STARTED -> WAVE_1 ... WAVE_N -> MERGED``, persisted as JSON.

    ``WAVE_k`` means wave *k* has been entered; on restart it is run again,
    which the checkpoints make idempotent.
    """

    path: Path
    phase: str = NOT_STARTED
    waves: list[str] = field(default_factory=list)
    run_id: str = ""
    updated_at: str = ""

    @classmethod
    def load(cls, output_dir: str | Path) -> BatchState:
        path = Path(output_dir) / STATE_FILE
        if not path.exists():
            return cls(path=path)
        data = json.loads(path.read_text(encoding="utf-8"))
        return cls(
            path=path,
            phase=data.get("phase", NOT_STARTED),
            waves=list(data.get("waves", [])),
            run_id=data.get("run_id", ""),
            updated_at=data.get("updated_at", ""),
        )

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.updated_at = utc_now()
        payload = {
            "phase": self.phase,
            "waves": self.waves,
            "run_id": self.run_id,
            "updated_at": self.updated_at,
        }
        self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    @property
    def wave_index(self) -> int:
        """Index of the entered wave; 0 before any wave, N+1 once merged."""
        if self.phase == NOT_STARTED:
            return 0
        if self.phase == MERGED:
            return len(self.waves) + 1
        return int(self.phase.removeprefix("WAVE_"))

    def enter_wave(self, index: int) -> None:
        if index < self.wave_index:
            msg = f"Cannot go back from {self.phase} to WAVE_{index}"
            raise ValueError(msg)
        self.phase = f"WAVE_{index}"
        self.save()

    def mark_merged(self) -> None:
        self.phase = MERGED
        self.save()


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MergeSummary:
    valid: int
    invalid: int
    not_found: int

    @property
    def total(self) -> int:
        return self.valid + self.invalid + self.not_found


def merge_waves(output_dir: str | Path, waves: Sequence[WaveSpec]) -> MergeSummary:
    """Fold every wave's checkpoints into the three final CSVs.

    VALID records: the first wave that found the key wins.  Everything else:
    the latest wave's record for the key, unless any wave marked it VALID.
    """
    out = Path(output_dir)
    stores = [CheckpointStore(out, i, w.name) for i, w in enumerate(waves, start=1)]

    valid = pd.concat([s.read(Outcome.VALID) for s in stores], ignore_index=True)
    valid = valid.drop_duplicates(subset="company_key", keep="first")
    valid_keys = set(valid["company_key"])

    others = []
    for store in stores:
        for outcome in (Outcome.INVALID, Outcome.NOT_FOUND):
            df = store.read(outcome).assign(_outcome=outcome.value, _wave=store.index)
            others.append(df)
    rest = pd.concat(others, ignore_index=True)
    rest = rest[~rest["company_key"].isin(valid_keys)]
    rest = rest.sort_values("_wave", kind="stable").drop_duplicates(
        subset="company_key", keep="last"
    )

    frames = {
        Outcome.VALID: valid,
        Outcome.INVALID: rest[rest["_outcome"] == Outcome.INVALID.value],
        Outcome.NOT_FOUND: rest[rest["_outcome"] == Outcome.NOT_FOUND.value],
    }
    out.mkdir(parents=True, exist_ok=True)
    for outcome, df in frames.items():
        df.reindex(columns=list(OUTPUT_COLUMNS)).to_csv(out / FINAL_FILES[outcome], index=False)

    summary = MergeSummary(
        valid=len(frames[Outcome.VALID]),
        invalid=len(frames[Outcome.INVALID]),
        not_found=len(frames[Outcome.NOT_FOUND]),
    )
    logger.info(
        "waves_merged",
        output_dir=str(out),
        valid=summary.valid,
        invalid=summary.invalid,
        not_found=summary.not_found,
    )
    return summary


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class WaveOrchestrator:
    """Run *waves* (default: the resolver's configured waves) over the input rows.

    Checkpoints go into *output_dir*.
    """

    def __init__(
        self,
        resolver: RowResolver,
        output_dir: str | Path,
        system: SystemConfig,
        waves: Sequence[WaveSpec] | None = None,
        control: RunControl | None = None,
    ) -> None:
        if waves is None:
            waves = wave_specs(resolver.ctx.config)
        if not waves:
            msg = "WaveOrchestrator needs at least one wave"
            raise ValueError(msg)
        self.resolver = resolver
        self.output_dir = Path(output_dir)
        self.system = system
        self.waves = list(waves)
        self.control = control or RunControl(Throttle(system.rate_limit_cooldown_s))

    def store(self, index: int) -> CheckpointStore:
        return CheckpointStore(self.output_dir, index, self.waves[index - 1].name)

    def load_state(self) -> BatchState:
        state = BatchState.load(self.output_dir)
        names = [w.name for w in self.waves]
        if state.phase == NOT_STARTED:
            state.waves = names
            state.run_id = self.resolver.ctx.run_id
        elif state.waves != names:
            msg = (
                f"{self.output_dir} was started with waves {state.waves}, "
                f"not {names}; use a fresh output directory"
            )
            raise ValueError(msg)
        return state

    def rows_for_wave(self, index: int, rows: Sequence[InputRow]) -> list[InputRow]:
        """Apply the wave's entry rule, drop done keys and in-wave duplicates."""
        wave = self.waves[index - 1]
        if wave.entry == "all":
            eligible = list(rows)
        else:
            resolved: set[str] = set()
            for earlier in range(1, index):
                resolved |= self.store(earlier).keys(Outcome.VALID)
            eligible = [r for r in rows if r.is_valid and r.company_key not in resolved]

        done = self.store(index).completed_keys()
        selected: list[InputRow] = []
        seen: set[str] = set()
        for row in eligible:
            key = row.company_key
            if key in done or key in seen:
                continue
            seen.add(key)
            selected.append(row)
        logger.info(
            "wave_rows_selected",
            wave=wave.name,
            eligible=len(eligible),
            already_done=len(done),
            selected=len(selected),
        )
        return selected

    async def run_wave(self, index: int, rows: Sequence[InputRow]) -> RunMetrics:
        wave = self.waves[index - 1]
        todo = self.rows_for_wave(index, rows)
        writer = DecisionWriter(
            self.store(index),
            batch_size=self.system.writer_batch_size,
            queue_size=self.system.writer_queue_size,
            flush_interval_s=self.system.flush_interval_s,
        )
        async with writer:
            return await run_rows(
                todo,
                lambda row: self.resolver.resolve_wave(row, wave),
                writer,
                self.system,
                run_id=self.resolver.ctx.run_id,
                wave=wave.name,
                control=self.control,
            )

    async def run(self, rows: Sequence[InputRow]) -> MergeSummary | None:
        """Run the remaining waves and merge.  ``None`` if stopped early."""
        state = self.load_state()
        start = max(state.wave_index, 1)
        for index in range(start, len(self.waves) + 1):
            state.enter_wave(index)
            logger.info("wave_started", wave=self.waves[index - 1].name, index=index)
            await self.run_wave(index, rows)
            if self.control.stop_requested:
                logger.warning("batch_stopped", phase=state.phase)
                return None

        summary = merge_waves(self.output_dir, self.waves)
        state.mark_merged()
        return summary

    def merge(self) -> MergeSummary:
        return merge_waves(self.output_dir, self.waves)
