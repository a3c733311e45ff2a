"""
CLI interface for proxy-usage.

Provides command-line access to the log watcher, the authoritative sync and
the stored usage statistics.
"""

import json
import logging
import sys
from datetime import datetime
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from proxy_usage.config.loader import AppConfig, load_config
from proxy_usage.core.context import WatcherContext
from proxy_usage.core.correlation import CorrelationCache
from proxy_usage.core.parser import LineParser, ParseKind
from proxy_usage.core.stats import UsageStats, compute_usage_stats
from proxy_usage.core.watcher import LogWatcher
from proxy_usage.storage.files import PersistenceError, write_json_atomic
from proxy_usage.storage.models import RequestEvent
from proxy_usage.storage.owner import AggregateOwner
from proxy_usage.storage.repository import AnalyticsRepository
from proxy_usage.sync.client import UsageClient
from proxy_usage.sync.report import SyncError
from proxy_usage.sync.scheduler import PeriodicSync, UsageSynchronizer

app = typer.Typer()
console = Console()
logger = logging.getLogger(__name__)

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


def _config(ctx: typer.Context) -> AppConfig:
    return ctx.obj


def _owner(config: AppConfig) -> AggregateOwner:
    return AggregateOwner(AnalyticsRepository(config.data_dir))


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a YAML configuration file"
    ),
):
    """Usage analytics for a local LLM proxy."""
    try:
        config = load_config(config_path)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Error loading configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    logging.basicConfig(
        level=config.logging_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = config

    if ctx.invoked_subcommand is None:
        console.print("proxy-usage - Use --help to see available commands")


@app.command()
def watch(ctx: typer.Context):
    """
    Tail the proxy log and record every request until interrupted.

    Runs the aggregate owner, the log watcher and, when enabled, the
    periodic authoritative sync.
    """
    config = _config(ctx)
    owner = _owner(config)
    owner.start()
    owner.migrate().result()

    watcher = LogWatcher(
        config.log_file,
        owner,
        poll_interval=config.watcher.poll_interval,
        attach_timeout=config.watcher.attach_timeout,
        correlation_capacity=config.watcher.correlation_capacity,
    )
    watcher.add_listener(_print_event)

    periodic = None
    if config.sync.enabled:
        synchronizer = UsageSynchronizer(UsageClient(config.proxy), owner)
        periodic = PeriodicSync(synchronizer, interval=config.sync.interval)

    context = WatcherContext()
    console.print(f"[green]✓[/] Watching {config.log_file} (Ctrl+C to stop)")
    watcher.start(context)
    if periodic is not None:
        periodic.start()

    exit_code = EXIT_CODE_PASS
    try:
        while watcher.running and not context.wait(1.0):
            pass
        if not watcher.running:
            console.print(f"[red]Log file {config.log_file} not found, stopped watching[/]")
            exit_code = EXIT_CODE_FAIL
    except KeyboardInterrupt:
        console.print("\nStopping...")
    finally:
        watcher.stop()
        if periodic is not None:
            periodic.stop()
        owner.stop()

    sys.exit(exit_code)


def _print_event(event: RequestEvent) -> None:
    style = "green" if event.success else "red"
    console.print(
        f"[{style}]{event.status}[/] {event.method} {event.path} "
        f"[dim]{event.model} ({event.provider}) {event.duration_ms}ms[/]"
    )


@app.command()
def sync(ctx: typer.Context):
    """Pull authoritative usage from the proxy and merge it now."""
    config = _config(ctx)
    synchronizer = UsageSynchronizer(UsageClient(config.proxy), _owner(config))
    try:
        report = synchronizer.sync()
    except (SyncError, PersistenceError) as e:
        console.print(f"[red]Sync failed:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(
        f"[green]✓[/] Synced {report.total_requests:,} requests, "
        f"{report.total_tokens:,} tokens across {len(report.model_stats)} models"
    )
    sys.exit(EXIT_CODE_PASS)


@app.command()
def stats(ctx: typer.Context):
    """Show usage statistics from the stored aggregate."""
    repository = AnalyticsRepository(_config(ctx).data_dir)
    usage = compute_usage_stats(repository.load_aggregate(), repository.load_history())

    if usage.total_requests == 0:
        console.print("\n[bold yellow]No usage recorded yet[/]")
        console.print("\nRun `proxy-usage watch` while the proxy is serving requests.\n")
        sys.exit(EXIT_CODE_PASS)

    _display_stats(usage)
    sys.exit(EXIT_CODE_PASS)


def _format_currency(amount: float) -> str:
    """Format currency with proper symbols and formatting."""
    return f"${abs(amount):,.2f}"


def _display_stats(usage: UsageStats) -> None:
    console.print("\n[bold]Proxy Usage[/bold]")
    console.print("-" * 40)
    console.print(f"Requests: {usage.total_requests:,} "
                  f"({usage.success_count:,} ok, {usage.failure_count:,} failed, "
                  f"{usage.success_rate:.1%} success)")
    console.print(f"Tokens: {usage.total_tokens:,} "
                  f"(in {usage.input_tokens:,}, out {usage.output_tokens:,}, "
                  f"cached {usage.cached_tokens:,})")
    console.print(f"Today: {usage.requests_today:,} requests, {usage.tokens_today:,} tokens")
    console.print(f"Estimated cost: {_format_currency(usage.estimated_cost_usd)}")

    if usage.models:
        table = Table(title="Models")
        table.add_column("Model")
        table.add_column("Requests", justify="right")
        table.add_column("Tokens", justify="right")
        for model in usage.models:
            table.add_row(model.model, f"{model.requests:,}", f"{model.tokens:,}")
        console.print(table)

    if usage.providers:
        table = Table(title="Providers")
        table.add_column("Provider")
        table.add_column("Requests", justify="right")
        table.add_column("Tokens", justify="right")
        for provider in usage.providers:
            table.add_row(provider.provider, f"{provider.requests:,}", f"{provider.tokens:,}")
        console.print(table)

    if usage.requests_by_day:
        table = Table(title="Last 14 days")
        table.add_column("Day")
        table.add_column("Requests", justify="right")
        tokens = {p.label: p.value for p in usage.tokens_by_day}
        table.add_column("Tokens", justify="right")
        for point in usage.requests_by_day:
            table.add_row(point.label, f"{point.value:,}", f"{tokens.get(point.label, 0):,}")
        console.print(table)


@app.command()
def history(
    ctx: typer.Context,
    limit: int = typer.Option(
        20,
        "--limit",
        "-n",
        help="Number of most recent requests to show"
    ),
):
    """Show the most recent requests."""
    if limit <= 0:
        console.print("[red]Error:[/] --limit must be > 0")
        sys.exit(EXIT_CODE_FAIL)

    recent = AnalyticsRepository(_config(ctx).data_dir).load_history()
    if not recent.requests:
        console.print("[dim]No requests recorded yet.[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title=f"Recent requests ({recent.total_request_count:,} total)")
    table.add_column("Time")
    table.add_column("Status", justify="right")
    table.add_column("Method")
    table.add_column("Path")
    table.add_column("Model")
    table.add_column("Provider")
    table.add_column("Duration", justify="right")
    for event in reversed(recent.requests[-limit:]):
        table.add_row(
            datetime.fromtimestamp(event.timestamp / 1000).strftime("%Y-%m-%d %H:%M:%S"),
            str(event.status),
            event.method,
            event.path,
            event.model,
            event.provider,
            f"{event.duration_ms}ms",
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def clear(
    ctx: typer.Context,
    all_data: bool = typer.Option(
        False,
        "--all",
        help="Also reset the cumulative aggregate"
    ),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Do not ask for confirmation"
    ),
):
    """Clear the recent-request history."""
    what = "history and aggregate" if all_data else "request history"
    if not yes and not typer.confirm(f"Clear {what}?"):
        console.print("Aborted.")
        sys.exit(EXIT_CODE_PASS)

    owner = _owner(_config(ctx))
    try:
        if all_data:
            owner.clear_all().result()
        else:
            owner.clear_history().result()
    except PersistenceError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[green]✓[/] Cleared {what}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def parse(line: str = typer.Argument(..., help="One proxy log line")):
    """Show how a single log line is classified."""
    parser = LineParser(CorrelationCache(), WatcherContext().next_id)
    result = parser.parse(line)

    if result.kind == ParseKind.IGNORED:
        console.print("[dim]ignored[/]")
    elif result.kind == ParseKind.CORRELATION_HINT:
        console.print(f"correlation hint: {result.request_id} -> {result.model}")
    else:
        console.print_json(data=result.event.to_dict())
    sys.exit(EXIT_CODE_PASS)


@app.command("export")
def export_usage(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="File to write the usage backup to"),
):
    """Download the proxy's usage backup to a file."""
    client = UsageClient(_config(ctx).proxy)
    try:
        data = client.export_usage()
        write_json_atomic(path, data)
    except (SyncError, PersistenceError) as e:
        console.print(f"[red]Export failed:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[green]✓[/] Usage exported to {path}")
    sys.exit(EXIT_CODE_PASS)


@app.command("import")
def import_usage(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="Usage backup produced by export"),
):
    """Upload a usage backup to the proxy."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Cannot read {path}:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    client = UsageClient(_config(ctx).proxy)
    try:
        client.import_usage(data)
    except SyncError as e:
        console.print(f"[red]Import failed:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[green]✓[/] Usage imported from {path}")
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
