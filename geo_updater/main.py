#!/usr/bin/env python3
"""
Geo Resolver - Data Updater Entry Point

Downloads country, region and city boundaries, loads them into PostGIS and
repairs region links and non-Latin names.

Usage:
    python -m geo_updater.main run
    python -m geo_updater.main postprocess
    python -m geo_updater.main status
    python -m geo_updater.main serve
"""

import sys

import click
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from geo_updater.config import DATA_SOURCES, settings
from geo_updater.database import (
    SessionLocal,
    create_all_tables,
    get_last_update,
    get_table_counts,
    verify_postgis,
)
from geo_updater.orchestrator import RunResult, RunStatus, UpdatePipeline
from geo_updater.scheduler import is_update_due, run_forever
from geo_updater.utils.cancellation import CancellationToken, install_signal_handlers


console = Console()

STATUS_STYLES = {
    RunStatus.SUCCEEDED: "[green]Succeeded[/green]",
    RunStatus.FAILED: "[red]Failed[/red]",
    RunStatus.SKIPPED: "[yellow]Skipped (another update is running)[/yellow]",
    RunStatus.CANCELLED: "[yellow]Cancelled[/yellow]",
}


def print_run_summary(result: RunResult) -> None:
    console.print(f"\n[bold]Update {STATUS_STYLES[result.status]}[/bold]")

    table = Table()
    table.add_column("Stage")
    table.add_column("Status")
    table.add_column("Rows")
    table.add_column("Skipped")
    table.add_column("Duration")

    for stage in result.stages:
        table.add_row(
            stage.name,
            "[green]OK[/green]" if stage.ok else "[red]Failed[/red]",
            f"{stage.rows:,}" if stage.rows is not None else "-",
            f"{stage.skipped:,}" if stage.skipped is not None else "-",
            f"{stage.duration_seconds:.1f}s",
        )

    console.print(table)
    if result.error and result.status != RunStatus.SUCCEEDED:
        console.print(f"[red]{escape(result.error)}[/red]")
    if result.duration_seconds is not None:
        console.print(f"Total: {result.duration_seconds:.1f}s")


def exit_code(result: RunResult) -> int:
    """Non-zero only for runs that started and did not complete."""
    return 1 if result.status in (RunStatus.FAILED, RunStatus.CANCELLED) else 0


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def cli(debug):
    """Geo Resolver Data Updater"""
    if debug:
        from geo_updater.utils.logging import setup_logging
        setup_logging(level="DEBUG")


@cli.command()
@click.option("--countries", "city_countries", default=None,
              help="Comma-separated ISO alpha-2 codes to load cities for (default: all)")
def run(city_countries: str | None):
    """Run a full data update (clear, import, post-process)."""
    console.print("\n[bold blue]Geo Resolver - Data Update[/bold blue]")

    cancel = CancellationToken()
    install_signal_handlers(cancel)

    codes = None
    if city_countries is not None:
        codes = [c.strip().upper() for c in city_countries.split(",") if c.strip()]

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task("Updating reference data...", total=None)
        result = UpdatePipeline(cancel=cancel, city_countries=codes).run()
        progress.update(task, description="Update finished")

    print_run_summary(result)
    sys.exit(exit_code(result))


@cli.command()
def postprocess():
    """Re-run region backfill and transliteration on the current data."""
    cancel = CancellationToken()
    install_signal_handlers(cancel)

    result = UpdatePipeline(cancel=cancel).run(postprocess_only=True)
    print_run_summary(result)

    stage = result.stage("postprocess")
    if stage and stage.detail is not None:
        detail = stage.detail
        console.print(f"Cities backfilled: {detail.cities_backfilled:,}")
        for table, counts in detail.transliteration.items():
            console.print(
                f"{table}: {counts.updated:,} transliterated, {counts.failed:,} failed, "
                f"{counts.batches_failed} batches rolled back"
            )
            for message in counts.errors:
                console.print(f"  [red]{escape(message)}[/red]")

    sys.exit(exit_code(result))


@cli.command()
def status():
    """Show last update and table statistics."""
    console.print("\n[bold blue]Geo Resolver - Data Status[/bold blue]\n")

    session = SessionLocal()

    try:
        last_updated = get_last_update(session)
        due = is_update_due(last_updated, settings.pipeline.update_interval_days)

        console.print(f"Last update: {last_updated.strftime('%Y-%m-%d %H:%M %Z') if last_updated else 'Never'}")
        console.print(f"Update due:  {'[yellow]yes[/yellow]' if due else '[green]no[/green]'}\n")

        table = Table()
        table.add_column("Table")
        table.add_column("Rows")
        for name, count in get_table_counts(session).items():
            table.add_row(name, f"{count:,}")
        console.print(table)

    finally:
        session.close()


@cli.command("init-db")
def init_db():
    """Create the PostGIS extension and all tables."""
    create_all_tables()

    session = SessionLocal()
    try:
        version = verify_postgis(session)
    finally:
        session.close()

    if version is None:
        console.print("[red]PostGIS is not available in this database[/red]")
        sys.exit(1)

    console.print(f"[green]Tables created (PostGIS {version})[/green]")


@cli.command()
def sources():
    """List configured data sources."""
    console.print("\n[bold blue]Configured Data Sources[/bold blue]\n")

    urls = {
        "countries": settings.pipeline.countries_url_list + settings.pipeline.countries_shapefile_url_list,
        "regions": settings.pipeline.regions_url_list,
        "cities": [f"{settings.pipeline.geofabrik_base_url}/<region>-latest-free.shp.zip"],
        "timezones": settings.pipeline.timezones_url_list,
    }

    table = Table()
    table.add_column("Entity")
    table.add_column("Name")
    table.add_column("URLs (in fallback order)")

    for entity, info in DATA_SOURCES.items():
        table.add_row(
            entity,
            info["name"],
            "\n".join(urls[entity]) or "[dim]not configured[/dim]",
        )

    console.print(table)
    if settings.pipeline.city_country_list:
        console.print(f"City allow-list: {', '.join(settings.pipeline.city_country_list)}")


@cli.command()
def serve():
    """Run updates on schedule until interrupted."""
    cancel = CancellationToken()
    install_signal_handlers(cancel)

    run_forever(lambda: UpdatePipeline(cancel=cancel), cancel)
    logger.info("Scheduler exited")


if __name__ == "__main__":
    cli()
