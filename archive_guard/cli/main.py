"""
CLI interface for Archive Guard.

Operator access to API usage accounting, the catalog cache, missing show
detection and gap reports.
"""

import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import typer
from rich.console import Console
from rich.table import Table

from archive_guard.config.loader import GuardConfig, load_config, load_monitor_config
from archive_guard.core.catalog import CatalogStore
from archive_guard.core.detection import detect_missing_shows
from archive_guard.core.errors import ArchiveGuardError
from archive_guard.core.ledger import UsageLedger
from archive_guard.core.listing import LocalArchiveLister, SshArchiveLister
from archive_guard.core.reconciler import ArchiveReconciler
from archive_guard.core.report import (
    ReportSort,
    build_gap_reports,
    render_csv,
    render_json,
    sort_reports,
)
from archive_guard.sdk.client import GovernedClient
from archive_guard.storage.archive_state import ArchiveStateStore
from archive_guard.storage.request_log import RequestLog
from archive_guard.storage.state_store import JsonFileStateStore

app = typer.Typer()
catalog_app = typer.Typer(help="Inspect and refresh the catalog cache.")
app.add_typer(catalog_app, name="catalog")
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _config(ctx: typer.Context) -> GuardConfig:
    return ctx.obj["config"]


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/] {message}")
    sys.exit(EXIT_CODE_FAIL)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to YAML configuration file"
    ),
    monitor_path: Path = typer.Option(
        Path("configs/monitor_config.yaml"), "--monitor-config", "-m",
        help="Path to monitored artists YAML file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Archive Guard CLI."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)
    try:
        config = load_config(str(config_path) if config_path else None)
    except (FileNotFoundError, ValueError) as e:
        _fail(str(e))
    ctx.obj = {"config": config, "monitor_path": monitor_path}

    if ctx.invoked_subcommand is None:
        console.print("Archive Guard - Use --help to see available commands")


# ----------------------------------------------------------------------
# API usage
# ----------------------------------------------------------------------

def _breaker_status(is_open: bool) -> str:
    return "[red]OPEN (blocking requests)[/]" if is_open else "[green]CLOSED (allowing requests)[/]"


@app.command()
def stats(ctx: typer.Context):
    """Show current API usage statistics."""
    config = _config(ctx)
    state = UsageLedger.from_config(config).snapshot()
    limits = config.limits

    console.print("\n[bold]API Usage Statistics[/bold]")
    console.print("-" * 40)
    console.print(f"Date: {state.current_date}")
    console.print(f"Time: {state.current_hour:02d}:{state.current_minute:02d}")
    console.print(f"Requests Today: {state.requests_today} / {limits.max_requests_per_day}")
    console.print(f"Requests This Hour: {state.requests_this_hour} / {limits.max_requests_per_hour}")
    console.print(f"Requests This Minute: {state.requests_this_minute} / {limits.max_requests_per_minute}")
    console.print(f"Last Request: {state.last_request_time or 'never'}")
    console.print(f"Circuit Breaker: {_breaker_status(state.circuit_breaker_open)}")
    console.print(f"Consecutive Errors: {state.consecutive_errors} / {limits.max_consecutive_errors}")

    if state.endpoints:
        table = Table(title="Per-Endpoint Statistics")
        table.add_column("Endpoint")
        table.add_column("Requests", justify="right")
        table.add_column("Errors", justify="right")
        table.add_column("Error %", justify="right")
        ordered = sorted(state.endpoints.items(), key=lambda item: -item[1].count)
        for name, endpoint in ordered:
            attempts = endpoint.count + endpoint.errors
            error_pct = endpoint.errors / attempts * 100 if attempts else 0.0
            table.add_row(name, str(endpoint.count), str(endpoint.errors), f"{error_pct:.1f}%")
        console.print(table)


@app.command()
def status(ctx: typer.Context):
    """Show overall system status."""
    config = _config(ctx)
    ledger = UsageLedger.from_config(config)
    state = ledger.snapshot()
    limits = config.limits

    console.print("\n[bold]System Status[/bold]")
    console.print("-" * 40)
    if ledger.emergency_stop_active():
        console.print("Emergency Stop: [red]ENABLED[/]")
    else:
        console.print("Emergency Stop: [green]DISABLED[/]")
    console.print(f"Circuit Breaker: {_breaker_status(state.circuit_breaker_open)}")

    rate_status = "[green]OK[/]"
    if state.requests_this_minute >= limits.max_requests_per_minute:
        rate_status = "[red]LIMIT[/]"
    elif state.requests_this_minute >= limits.max_requests_per_minute * 0.8:
        rate_status = "[yellow]HIGH[/]"
    console.print(
        f"Rate Limits: {rate_status} "
        f"({state.requests_this_minute}/{limits.max_requests_per_minute} per min, "
        f"{state.requests_this_hour}/{limits.max_requests_per_hour} per hour, "
        f"{state.requests_today}/{limits.max_requests_per_day} per day)"
    )

    total_ok = sum(e.count for e in state.endpoints.values())
    total_errors = sum(e.errors for e in state.endpoints.values())
    attempts = total_ok + total_errors
    error_rate = total_errors / attempts * 100 if attempts else 0.0
    error_status = "[green]OK[/]"
    if error_rate > 20:
        error_status = "[red]CRITICAL[/]"
    elif error_rate > 5:
        error_status = "[yellow]HIGH[/]"
    console.print(f"Error Rate: {error_status} ({error_rate:.1f}%)")

    log_file = RequestLog(config.paths.log_directory).path_for()
    if log_file.exists():
        console.print(f"Log File: {log_file} ({log_file.stat().st_size / 1024:.1f} KB)")
    else:
        console.print("Log File: No logs for today")


@app.command()
def reset(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Reset API counters and the circuit breaker."""
    if not yes and not typer.confirm("Reset all API statistics?"):
        console.print("Reset cancelled.")
        sys.exit(EXIT_CODE_PASS)
    UsageLedger.from_config(_config(ctx)).reset()
    console.print("[green]✓[/] API statistics reset")


@app.command()
def logs(
    ctx: typer.Context,
    limit: int = typer.Option(50, "--limit", "-n", help="Number of entries to show"),
):
    """Show today's most recent API requests."""
    entries = RequestLog(_config(ctx).paths.log_directory).read_recent(limit)
    if not entries:
        console.print("No log entries found for today.")
        return
    _print_log_table(f"Recent API Requests (last {len(entries)})", entries)


@app.command()
def errors(
    ctx: typer.Context,
    limit: int = typer.Option(20, "--limit", "-n", help="Number of errors to show"),
):
    """Show today's most recent failed API requests."""
    entries = RequestLog(_config(ctx).paths.log_directory).read_errors(limit)
    if not entries:
        console.print("No errors found in today's logs.")
        return
    _print_log_table(f"Recent API Errors (last {len(entries)})", entries)


def _print_log_table(title: str, entries) -> None:
    table = Table(title=title)
    table.add_column("Time")
    table.add_column("Endpoint")
    table.add_column("Attempt", justify="right")
    table.add_column("Code", justify="right")
    table.add_column("Latency", justify="right")
    table.add_column("Error")
    for entry in entries:
        table.add_row(
            entry.timestamp[11:19],
            entry.endpoint,
            str(entry.attempt),
            str(entry.response_code),
            f"{entry.response_time_ms}ms",
            entry.error or "",
        )
    console.print(table)


@app.command()
def stop(ctx: typer.Context):
    """Enable the emergency stop; all API requests are blocked."""
    try:
        marker = UsageLedger.from_config(_config(ctx)).engage_emergency_stop()
    except (ValueError, OSError) as e:
        _fail(str(e))
    console.print(f"[red]Emergency stop ENABLED[/] ({marker}) - all API requests will be blocked")


@app.command()
def start(ctx: typer.Context):
    """Disable the emergency stop."""
    if UsageLedger.from_config(_config(ctx)).release_emergency_stop():
        console.print("[green]✓[/] Emergency stop DISABLED - API requests are allowed")
    else:
        console.print("Emergency stop is not currently enabled.")


# ----------------------------------------------------------------------
# Catalog
# ----------------------------------------------------------------------

@contextmanager
def _open_catalog(config: GuardConfig) -> Iterator[CatalogStore]:
    """Catalog backed by a governed client; closes the client and ledger on exit."""
    with UsageLedger.from_config(config) as ledger:
        client = GovernedClient.from_config(config, ledger)
        try:
            yield CatalogStore.from_config(config, client)
        finally:
            client.close()


@catalog_app.command("refresh")
def catalog_refresh(ctx: typer.Context):
    """Force a catalog refresh regardless of cache age."""
    with _open_catalog(_config(ctx)) as catalog:
        try:
            snapshot = catalog.force_refresh()
        except (ArchiveGuardError, OSError) as e:
            _fail(f"Refresh failed: {e}")
    console.print(
        f"[green]✓[/] Catalog refreshed: {snapshot.total_shows} shows "
        f"from {snapshot.total_artists} artists"
    )


@catalog_app.command("stats")
def catalog_stats(
    ctx: typer.Context,
    top: int = typer.Option(10, "--top", help="Number of artists to list"),
):
    """Show catalog statistics."""
    with _open_catalog(_config(ctx)) as catalog:
        try:
            snapshot = catalog.get_catalog()
        except ArchiveGuardError as e:
            _fail(str(e))
        top_artists = catalog.top_artists(top)

    console.print("\n[bold]Catalog Statistics[/bold]")
    console.print("-" * 40)
    console.print(f"Last Updated: {snapshot.last_update}")
    console.print(f"Total Shows: {snapshot.total_shows:,}")
    console.print(f"Total Artists: {snapshot.total_artists:,}")

    table = Table(title=f"Top {top} Artists by Show Count")
    table.add_column("#", justify="right")
    table.add_column("Artist")
    table.add_column("Shows", justify="right")
    for rank, (artist, count) in enumerate(top_artists, start=1):
        table.add_row(str(rank), artist, str(count))
    console.print(table)


@catalog_app.command("artist")
def catalog_artist(ctx: typer.Context, name: str = typer.Argument(..., help="Exact artist name")):
    """List every cataloged show for an artist."""
    with _open_catalog(_config(ctx)) as catalog:
        try:
            shows = catalog.get_shows_for_artist(name)
        except ArchiveGuardError as e:
            _fail(str(e))

    if not shows:
        console.print(f"No shows found for {name}")
        return
    console.print(f"\n[bold]Shows for {name}[/bold] ({len(shows)})")
    for show in shows:
        console.print(
            f"  {show.container_id} - {show.performance_date_short} at "
            f"{show.venue_name}, {show.venue_city} {show.venue_state}"
        )


# ----------------------------------------------------------------------
# Detection and reports
# ----------------------------------------------------------------------

@app.command()
def detect(ctx: typer.Context):
    """Find missing shows for every monitored artist and save the results."""
    config = _config(ctx)
    try:
        monitor_config = load_monitor_config(str(ctx.obj["monitor_path"]))
    except (FileNotFoundError, ValueError) as e:
        _fail(str(e))

    if config.archive.ssh_host:
        lister = SshArchiveLister(config.archive.ssh_host)
    else:
        lister = LocalArchiveLister()
    state_store = ArchiveStateStore(JsonFileStateStore(config.paths.archive_state_file))

    with _open_catalog(config) as catalog:
        try:
            run = detect_missing_shows(
                monitor_config, catalog, ArchiveReconciler(catalog, lister), state_store
            )
        except OSError as e:
            _fail(f"Could not save archive state: {e}")

    table = Table(title="Missing Show Detection")
    table.add_column("Artist")
    table.add_column("Available", justify="right")
    table.add_column("Archived", justify="right")
    table.add_column("Missing", justify="right")
    table.add_column("Skipped folders", justify="right")
    for artist in run.artists:
        if artist.result is None:
            table.add_row(artist.artist, "-", "-", "-", f"[red]{artist.error}[/]")
            continue
        gaps = artist.result
        table.add_row(
            artist.artist,
            str(len(gaps.available_ids)),
            str(len(gaps.archived_ids)),
            str(len(gaps.missing_ids)),
            str(gaps.diagnostics.skipped),
        )
    console.print(table)

    if run.failed:
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def report(
    ctx: typer.Context,
    output_format: str = typer.Option(
        "terminal", "--format", "-f", help="Output format: terminal, json, csv"
    ),
    sort_by: ReportSort = typer.Option(ReportSort.ARTIST, "--sort", "-s", help="Sort order"),
    artist: Optional[str] = typer.Option(None, "--artist", "-a", help="Only artists containing this text"),
    min_missing: int = typer.Option(0, "--min-missing", help="Only artists with at least N missing shows"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write to file instead of stdout"),
):
    """Report collection completeness from the saved archive state."""
    if output_format not in ("terminal", "json", "csv"):
        _fail(f"Unknown format: {output_format}")

    config = _config(ctx)
    try:
        monitor_config = load_monitor_config(str(ctx.obj["monitor_path"]))
    except (FileNotFoundError, ValueError) as e:
        _fail(str(e))

    document = ArchiveStateStore(JsonFileStateStore(config.paths.archive_state_file)).load()
    with _open_catalog(config) as catalog:
        try:
            snapshot = catalog.get_catalog()
        except ArchiveGuardError as e:
            _fail(str(e))

    reports, summary = build_gap_reports(
        document, monitor_config, snapshot, artist_filter=artist, min_missing=min_missing
    )
    reports = sort_reports(reports, sort_by)

    if output_format == "terminal":
        _display_reports(reports, summary)
        return

    rendered = render_json(reports, summary) if output_format == "json" else render_csv(reports)
    if output is not None:
        output.write_text(rendered, encoding="utf-8")
        console.print(f"{output_format.upper()} report written to: {output}")
    else:
        typer.echo(rendered)


def _display_reports(reports, summary) -> None:
    console.print("\n[bold]Collection Gap Report[/bold]")
    console.print("-" * 40)
    console.print(f"Artists: {summary.total_artists}")
    console.print(f"Shows archived: {summary.total_shows_have:,}")
    console.print(f"Shows available: {summary.total_shows_available:,}")
    console.print(f"Overall completion: {summary.overall_completion:.1f}%")
    console.print(f"Missing shows: {summary.total_missing:,}")

    for gap in reports:
        console.print(f"\n[bold]{gap.artist}[/bold]")
        console.print(
            f"  Archived: {gap.total_downloaded}/{gap.total_available} "
            f"({gap.completion_pct:.1f}% complete)"
        )
        console.print(f"  Missing: {gap.missing_count} shows")
        if 0 < gap.missing_count <= 20:
            for show in gap.missing_shows:
                console.print(
                    f"    • {show.date} - {show.venue}, {show.city} {show.state} (#{show.container_id})"
                )
        elif gap.missing_count > 20:
            console.print(f"    ... {gap.missing_count} missing shows (use --format json for the full list)")


if __name__ == "__main__":
    app()
