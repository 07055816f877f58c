"""
Aurora Sentinel CLI
===================

Usage:
    aurora-sentinel check               # One fetch + status report
    aurora-sentinel monitor -i 60       # Refresh loop
    aurora-sentinel run                 # One scheduled evaluation (alerts + push)
    aurora-sentinel serve               # HTTP service + background scheduler
    aurora-sentinel seed-config         # Write default thresholds to the store
    aurora-sentinel vapid-keys          # Generate a VAPID key pair
    aurora-sentinel stats               # Key-value store statistics
"""

import json
import logging
import time
from pathlib import Path

import typer
from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from aurora_sentinel.config import REFRESH_INTERVAL_SEC, load_settings
from aurora_sentinel.monitoring.feeds import fetch_all
from aurora_sentinel.monitoring.formatting import StatusFormatter
from aurora_sentinel.monitoring.fusion import build_context
from aurora_sentinel.notify.evaluator import run_scheduled
from aurora_sentinel.notify.store import open_store
from aurora_sentinel.notify.thresholds import DEFAULT_THRESHOLDS, seed_config
from aurora_sentinel.notify.webpush import generate_vapid_keys

LOG_FORMAT = '%(asctime)s | %(levelname)-5s | %(name)s | %(message)s'

app = typer.Typer(
    name="aurora-sentinel",
    help="🌌 Aurora Sentinel - real-time aurora, substorm and flare alerts",
    add_completion=False,
    rich_markup_mode="rich",
)
console = Console()


def setup_logging(verbose: bool = False, plain: bool = False):
    """
    Configure root logging once at the entry point.

    plain=True uses the line format with UTC timestamps (service logs);
    otherwise output goes through RichHandler.
    """
    level = logging.DEBUG if verbose else logging.INFO
    if plain:
        logging.basicConfig(format=LOG_FORMAT, datefmt='%Y-%m-%dT%H:%M:%SZ', level=level, force=True)
        logging.Formatter.converter = time.gmtime
    else:
        logging.basicConfig(format='%(message)s', datefmt='[%X]', level=level, force=True,
                            handlers=[RichHandler(console=console, rich_tracebacks=True)])


def _settings(db: Path = None):
    settings = load_settings()
    if db is not None:
        settings.db_path = db
    return settings


@app.callback()
def main_options(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    setup_logging(verbose)


@app.command()
def check(
    as_json: bool = typer.Option(False, "--json", help="Print the substorm assessment as JSON"),
):
    """
    🔭 Fetch all feeds once and print the status report.
    """
    settings = load_settings()
    ctx = build_context(fetch_all(settings), ground_is_rate=settings.ground_mag_is_rate)
    if as_json:
        console.print_json(json.dumps({
            'score': ctx.score,
            'substorm': ctx.assessment.to_dict() if ctx.assessment else None,
            'feeds': ctx.available,
            'events': len(ctx.events),
        }))
        return
    StatusFormatter(console).print_report(ctx)


@app.command()
def monitor(
    interval: int = typer.Option(REFRESH_INTERVAL_SEC, "--interval", "-i", help="Refresh interval in seconds"),
):
    """
    📡 Continuous refresh loop; each cycle re-derives everything from the feeds.
    """
    console.print(f"[bold cyan]Starting continuous monitoring[/] (interval: {interval}s)")
    console.print("[dim]Press Ctrl+C to stop[/]\n")
    settings = load_settings()
    formatter = StatusFormatter(console)
    try:
        while True:
            ctx = build_context(fetch_all(settings), ground_is_rate=settings.ground_mag_is_rate)
            formatter.print_report(ctx)
            time.sleep(interval)
    except KeyboardInterrupt:
        console.print("\n  Monitoring stopped.")


@app.command()
def run(
    db: Path = typer.Option(None, "--db", help="Key-value store path"),
):
    """
    🔔 One scheduled evaluation: thresholds, cooldowns, push delivery.
    """
    settings = _settings(db)
    with open_store(settings.db_path) as store:
        result = run_scheduled(settings, store)
    if result.context is not None:
        StatusFormatter(console).print_report(result.context, result.alerts)
    if not result.ok:
        console.print(f"[bold red]Run aborted:[/] {result.error}")
        raise typer.Exit(code=1)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", "-p", help="Port"),
    db: Path = typer.Option(None, "--db", help="Key-value store path"),
    no_scheduler: bool = typer.Option(False, "--no-scheduler", help="HTTP only, no background runs"),
):
    """
    🌐 Run the push service (FastAPI) with the background scheduler.
    """
    import uvicorn
    from aurora_sentinel.server import create_app

    setup_logging(plain=True)
    settings = _settings(db)
    server_app = create_app(settings, start_scheduler=not no_scheduler)
    uvicorn.run(server_app, host=host, port=port, log_config=None)


@app.command(name="seed-config")
def seed_config_cmd(
    db: Path = typer.Option(None, "--db", help="Key-value store path"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing configuration"),
):
    """
    ⚙️ Write the default threshold ladders to CONFIG_THRESHOLDS.
    """
    settings = _settings(db)
    with open_store(settings.db_path) as store:
        written = seed_config(store, DEFAULT_THRESHOLDS, overwrite=force)
    if written:
        console.print(f"[green]✓ Threshold configuration written[/] [dim]({settings.db_path})[/]")
    else:
        console.print("[yellow]Configuration already present; use --force to overwrite.[/]")


@app.command(name="vapid-keys")
def vapid_keys():
    """
    🔑 Generate a VAPID key pair for the environment.
    """
    private, public = generate_vapid_keys()
    console.print(f"VAPID_PRIVATE_KEY={private}")
    console.print(f"VAPID_PUBLIC_KEY={public}")


@app.command()
def stats(
    db: Path = typer.Option(None, "--db", help="Key-value store path"),
):
    """
    📊 Show key-value store statistics.
    """
    settings = _settings(db)
    with open_store(settings.db_path) as store:
        store_stats = store.get_stats()

    table = Table(title="📊 Aurora Sentinel Store", box=box.ROUNDED)
    table.add_column("Namespace", style="bold")
    table.add_column("Value", justify="right")
    for name, value in store_stats.items():
        table.add_row(name, f"{value:,}" if isinstance(value, int) and not isinstance(value, bool) else str(value))

    console.print(table)
    console.print(f"[dim]Path: {settings.db_path}[/]")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
