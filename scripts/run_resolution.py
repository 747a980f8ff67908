#!/usr/bin/env python3
"""CLI script to resolve official websites for every row of an input CSV (single pass)."""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path

import httpx
import structlog
import typer

from siteresolver.batch.ingest import read_input_rows
from siteresolver.batch.runner import RunControl, Throttle, run_single_pass
from siteresolver.config import get_settings, load_resolver_config
from siteresolver.observability import configure_logging
from siteresolver.resolution.pipeline import RowResolver, build_context

logger = structlog.get_logger(__name__)
app = typer.Typer()


async def _run(
    input_path: Path, output_path: Path, config_path: Path | None, limit: int | None
) -> None:
    settings = get_settings()
    config = load_resolver_config(config_path or settings.resolver_config_path or None)
    rows = read_input_rows(input_path)
    if limit:
        rows = rows[:limit]

    control = RunControl(Throttle(config.system.rate_limit_cooldown_s))
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, control.request_stop)

    async with httpx.AsyncClient(follow_redirects=True) as client:
        ctx = build_context(settings, config, client)
        try:
            metrics = await run_single_pass(
                rows, RowResolver(ctx), output_path, config.system, control
            )
        finally:
            if ctx.search_cache is not None:
                ctx.search_cache.save()

    logger.info("resolution_complete", output=str(output_path), **metrics.summary())


@app.command()
def main(
    input_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Input CSV"),
    output_path: Path = typer.Option(Path("output/resolved.csv"), "--output", "-o"),
    config_path: Path | None = typer.Option(
        None, "--config", help="Resolver YAML config (defaults to SR_RESOLVER_CONFIG_PATH)"
    ),
    limit: int | None = typer.Option(None, help="Only process the first N rows"),
) -> None:
    """Resolve each input row to its official website, writing one output row per input row."""
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)
    asyncio.run(_run(input_path, output_path, config_path, limit))


if __name__ == "__main__":
    app()
