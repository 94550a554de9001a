"""Command line entry points: the web server, the cache warmer and the sync."""

from __future__ import annotations

import asyncio
import json
import logging

import typer
import uvicorn

from .config import Settings, get_settings
from .runtime import open_services
from .services.sync import WarmSummary

logger = logging.getLogger(__name__)

cli = typer.Typer(
    name="dramalink",
    help="Resolve and cache MyDramaList data for TMDB titles.",
    no_args_is_help=True,
)


@cli.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO)


@cli.command()
def serve(
    host: str | None = typer.Option(None, help="Interface to bind"),
    port: int | None = typer.Option(None, help="Port to listen on"),
) -> None:
    """Run the HTTP API under uvicorn."""

    app_settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host=host or app_settings.server_host,
        port=port or app_settings.server_port,
        reload=app_settings.environment == "development",
    )


@cli.command()
def warm(
    phase1_only: bool = typer.Option(
        False, "--phase1-only", help="Only resolve and enrich watch-list titles"
    ),
    phase2_only: bool = typer.Option(
        False, "--phase2-only", help="Only refresh cached person profiles"
    ),
) -> None:
    """Bulk-populate the link and person caches."""

    if phase1_only and phase2_only:
        typer.echo("Error: --phase1-only and --phase2-only are mutually exclusive", err=True)
        raise typer.Exit(2)
    summary = asyncio.run(
        _warm(get_settings(), phase1_only=phase1_only, phase2_only=phase2_only)
    )
    phases = (("Phase 1 (titles)", summary.phase1), ("Phase 2 (people)", summary.phase2))
    for name, phase in phases:
        if not phase.ran:
            continue
        typer.echo(
            f"{name}: {phase.total} total, {phase.fresh} fresh, "
            f"{phase.succeeded} cached, {phase.failed} failed"
        )


@cli.command()
def sync(
    budget: float | None = typer.Option(
        None, "--budget", min=1.0, help="Time budget in seconds"
    ),
) -> None:
    """Run one time-boxed scheduled sync and record its outcome."""

    results = asyncio.run(_sync(get_settings(), budget))
    typer.echo(json.dumps(results, indent=2))
    if not all(entry.get("success") for entry in results):
        raise typer.Exit(1)


async def _warm(
    app_settings: Settings, *, phase1_only: bool, phase2_only: bool
) -> WarmSummary:
    async with open_services(app_settings) as services:
        return await services.sync.warm_all(
            phase1_only=phase1_only, phase2_only=phase2_only
        )


async def _sync(app_settings: Settings, budget: float | None) -> list[dict]:
    async with open_services(app_settings) as services:
        results = await services.sync.run_scheduled_sync(budget)
        record = await services.sync_log.save(results)
        return record.results


def main() -> None:
    cli()


if __name__ == "__main__":  # pragma: no cover - manual execution
    main()
