"""CLI entry point."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from productsync.schemas.sync import SyncReport, SyncStatus
from productsync.services.job_controller import SyncAlreadyRunningError
from productsync.services.sync_engine import RunChunk, SyncEngine
from productsync.tenant_database import UnknownTenantError

app = typer.Typer(name="productsync", help="Replicate master-tenant products to target tenants")
console = Console()

USAGE = "Usage: productsync sync --start [--limit=N] [--force] [--run] | --status | --cancel"


@asynccontextmanager
async def _open_engine() -> AsyncIterator[SyncEngine]:
    from productsync.config import settings
    from productsync.control_database import AsyncSessionLocal, engine as control_engine, init_control_db
    from productsync.logging_config import configure_logging
    from productsync.services.sync_engine import build_engine

    configure_logging()
    await init_control_db()
    engine = build_engine(settings, AsyncSessionLocal)
    try:
        await engine.registry.init_schemas()
        yield engine
    finally:
        await engine.close()
        await control_engine.dispose()


def _print_report(report: SyncReport) -> None:
    table = Table(title="Product sync", show_header=False)
    table.add_column("field", style="dim")
    table.add_column("value")
    table.add_row("status", report.status.value)
    table.add_row("progress", f"{report.processed}/{report.total} ({report.percentage}%)")
    table.add_row("current", str(report.current))
    table.add_row("elapsed", f"{report.elapsed}s")
    table.add_row("estimated", f"{report.estimated}s")
    table.add_row("errors", str(len(report.errors)))
    console.print(table)
    for error in report.errors:
        tenant = escape(f" [{error.tenant}]") if error.tenant else ""
        console.print(f"[red]{error.timestamp} product {error.record_id}{tenant}: {escape(error.message)}[/red]")


async def _drive(engine: SyncEngine) -> None:
    while True:
        result = await engine.dispatch(RunChunk())
        if result.status == SyncStatus.processing and result.remaining is not None:
            console.print(f"[cyan]{result.message}[/cyan] [dim]({result.remaining} remaining)[/dim]")
            continue
        if result.status == SyncStatus.processing:
            # Another worker holds the chunk; poll again shortly
            await asyncio.sleep(1)
            continue
        style = "green" if result.status == SyncStatus.completed else "yellow"
        console.print(f"[{style}]{result.message}[/{style}]")
        return


async def _sync(start: bool, status: bool, cancel: bool, run: bool, limit: Optional[int], force: bool) -> None:
    async with _open_engine() as engine:
        if start:
            job = await engine.jobs.start(limit=limit, force=force)
            console.print(f"[green]Sync started for {job.total} products[/green]")
        elif cancel:
            await engine.jobs.cancel()
            console.print("[yellow]Sync cancelled[/yellow]")
        elif status:
            _print_report(await engine.jobs.status())

        if run:
            await _drive(engine)
            _print_report(await engine.jobs.status())


@app.command()
def sync(
    start: bool = typer.Option(False, "--start", help="Start a new sync job"),
    status: bool = typer.Option(False, "--status", help="Show the current sync job"),
    cancel: bool = typer.Option(False, "--cancel", help="Cancel the running sync job"),
    run: bool = typer.Option(False, "--run", help="Process chunks in the foreground until the job ends"),
    limit: Optional[int] = typer.Option(None, "--limit", min=1, help="Sync at most N products"),
    force: bool = typer.Option(False, "--force", help="Restart a job that is still processing"),
) -> None:
    """Start, inspect, cancel or drive the product sync job.

    Examples:
        productsync sync --start --limit=20 --run
        productsync sync --status
        productsync sync --cancel
    """
    if not (start or status or cancel or run):
        typer.echo(USAGE)
        return

    try:
        asyncio.run(_sync(start, status, cancel, run, limit, force))
    except UnknownTenantError as e:
        console.print(f"[red]Error: {escape(e.args[0])}[/red]")
        raise typer.Exit(code=1)
    except SyncAlreadyRunningError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="API server host"),
    port: int = typer.Option(8000, help="API server port"),
    reload: bool = typer.Option(False, help="Auto-reload on code changes"),
) -> None:
    """Start the sync API server, including the periodic chunk scheduler."""
    import uvicorn

    console.print(f"[green]Starting product sync API on {host}:{port}[/green]")
    uvicorn.run("productsync.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
