#!/usr/bin/env python3
"""CLI script to run the resumable multi-wave resolution batch and merge its results."""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path

import httpx
import structlog
import typer

from siteresolver.batch.ingest import read_input_rows
from siteresolver.batch.runner import RunControl, Throttle
from siteresolver.batch.waves import WaveOrchestrator, merge_waves, select_waves
from siteresolver.config import ResolverConfig, get_settings, load_resolver_config
from siteresolver.observability import configure_logging
from siteresolver.resolution.pipeline import RowResolver, WaveSpec, build_context, wave_specs

logger = structlog.get_logger(__name__)
app = typer.Typer()


async def _run(
    input_path: Path, output_dir: Path, config: ResolverConfig, waves: list[WaveSpec]
) -> None:
    settings = get_settings()
    rows = read_input_rows(input_path)

    control = RunControl(Throttle(config.system.rate_limit_cooldown_s))
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, control.request_stop)

    async with httpx.AsyncClient(follow_redirects=True) as client:
        ctx = build_context(settings, config, client)
        orchestrator = WaveOrchestrator(
            RowResolver(ctx), output_dir, config.system, waves=waves, control=control
        )
        try:
            summary = await orchestrator.run(rows)
        finally:
            if ctx.search_cache is not None:
                ctx.search_cache.save()

    if summary is None:
        logger.warning("batch_interrupted", output_dir=str(output_dir))
    else:
        logger.info("batch_complete", output_dir=str(output_dir), total=summary.total)


@app.command()
def main(
    input_path: Path | None = typer.Argument(
        None, exists=True, dir_okay=False, help="Input CSV (not needed with --merge-only)"
    ),
    output_dir: Path | None = typer.Option(
        None, "--output-dir", "-o", help="Checkpoint/output directory (defaults to SR_OUTPUT_DIR)"
    ),
    config_path: Path | None = typer.Option(None, "--config", help="Resolver YAML config"),
    waves: str | None = typer.Option(
        None, "--waves", help="Comma-separated subset, e.g. fast,deep (default: all waves)"
    ),
    merge_only: bool = typer.Option(
        False, "--merge-only", help="Skip resolution; only merge existing checkpoints"
    ),
) -> None:
    """Run the configured waves (fast, deep, aggressive, exhaustive by default), resuming."""
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)
    out = output_dir or Path(settings.output_dir)
    config = load_resolver_config(config_path or settings.resolver_config_path or None)
    selected = select_waves(waves.split(",") if waves else None, wave_specs(config))

    if merge_only:
        summary = merge_waves(out, selected)
        logger.info("merge_complete", output_dir=str(out), total=summary.total)
        return

    if input_path is None:
        msg = "INPUT_PATH is required unless --merge-only is given"
        raise typer.BadParameter(msg)
    asyncio.run(_run(input_path, out, config, selected))


if __name__ == "__main__":
    app()
