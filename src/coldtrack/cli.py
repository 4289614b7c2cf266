"""Command-line interface for coldtrack."""

import logging
from datetime import datetime, timezone

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from coldtrack import __version__
from coldtrack.alerts import AlertEvaluator
from coldtrack.config import Settings
from coldtrack.errors import ColdtrackError
from coldtrack.export import export_snapshots_to_csv
from coldtrack.models import AccountRecord, Alert, AuthContext, FunctionRecord, MetricsSnapshot
from coldtrack.parser import build_cold_start_query, default_log_group
from coldtrack.ranges import is_valid_range, parse_range
from coldtrack.refresh import MetricsRefresher
from coldtrack.store import InMemoryAlertStore, InMemoryDirectory, InMemorySnapshotStore

console = Console()

CLI_USER = "cli"


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def validate_range(ctx, param, value):
    """Click callback rejecting ranges outside the NNN[smhdw] grammar."""
    if value is not None and not is_valid_range(value):
        raise click.BadParameter(
            f"Invalid range '{value}'. Use format like: 60s, 15m, 24h, 7d, 2w"
        )
    return value


def format_ms(ms: float | None) -> str:
    """Format an init duration for display."""
    if ms is None:
        return "-"
    if ms < 1000:
        return f"{ms:.0f}ms"
    return f"{ms/1000:.2f}s"


def format_epoch(epoch: int) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def load_settings(config_path: str | None, **overrides) -> Settings:
    if config_path:
        settings = Settings.from_file(config_path)
    else:
        settings = Settings.from_env()
    values = {k: v for k, v in overrides.items() if v is not None}
    if values:
        settings = Settings.from_dict({**vars(settings), **values})
    return settings


def build_refresher(
    function_name: str,
    role_arn: str,
    external_id: str,
    region: str | None,
    settings: Settings,
) -> tuple[MetricsRefresher, InMemoryAlertStore]:
    """Wire a one-shot refresher around a single function and account."""
    directory = InMemoryDirectory()
    directory.add_account(AccountRecord(id="account", role_arn=role_arn, external_id=external_id))
    directory.add_function(
        FunctionRecord(
            id=function_name,
            function_name=function_name,
            org_id="local",
            aws_account_id="account",
            region=region,
        )
    )
    alert_store = InMemoryAlertStore()
    refresher = MetricsRefresher(
        directory,
        InMemorySnapshotStore(),
        alerts=AlertEvaluator.from_settings(alert_store, settings),
        settings=settings,
    )
    return refresher, alert_store


def print_snapshot(snapshot: MetricsSnapshot) -> None:
    """Print a snapshot table."""
    table = Table(title="Cold Starts", show_header=True, header_style="bold cyan")
    table.add_column("Metric", style="dim")
    table.add_column("Value", justify="right")

    table.add_row("Region", snapshot.region)
    table.add_row("Cold starts", str(snapshot.cold_count))
    table.add_row("Warm invocations", str(snapshot.warm_count))
    table.add_row("Cold start rate", f"{snapshot.cold_start_rate * 100:.1f}%")
    table.add_row("p50 init", format_ms(snapshot.p50_init_ms))
    table.add_row("p90 init", format_ms(snapshot.p90_init_ms))
    table.add_row("p99 init", format_ms(snapshot.p99_init_ms))

    console.print(table)


def print_alerts(alerts: list[Alert]) -> None:
    """Print open alerts, or a success line when there are none."""
    if not alerts:
        console.print("[green]No thresholds exceeded.[/green]")
        return

    table = Table(title="Alerts", show_header=True, header_style="bold cyan")
    table.add_column("Metric")
    table.add_column("Severity")
    table.add_column("Message")

    for alert in alerts:
        color = "red" if alert.severity.value == "critical" else "yellow"
        table.add_row(alert.metric, f"[{color}]{alert.severity.value}[/{color}]", alert.message)

    console.print(table)


@click.group(invoke_without_command=True)
@click.version_option(version=__version__)
@click.pass_context
def main(ctx):
    """coldtrack: Lambda cold-start metrics from CloudWatch Logs Insights."""
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@main.command()
@click.argument("range_str", metavar="RANGE", required=False, callback=validate_range)
def window(range_str: str | None):
    """
    Show the absolute window for a relative RANGE (default 7d).

        coldtrack window 15m
    """
    start, end = parse_range(range_str)
    console.print(f"Start: {format_epoch(start)} UTC ({start})")
    console.print(f"End:   {format_epoch(end)} UTC ({end})")
    console.print(f"[dim]{end - start} seconds[/dim]")


@main.command()
@click.argument("function_name")
@click.option(
    "--limit",
    default=10000,
    type=click.IntRange(1, 10000),
    help="Maximum rows returned by the query. Default: 10000",
)
def query(function_name: str, limit: int):
    """
    Print the Logs Insights query used for FUNCTION_NAME.

    Paste it into the CloudWatch console to inspect the raw rows.
    """
    console.print(f"[dim]Log group: {default_log_group(function_name)}[/dim]")
    click.echo(build_cold_start_query(limit))


def aws_options(f):
    """Options shared by commands that assume the cross-account role."""
    options = [
        click.option("--role-arn", required=True, help="Cross-account role to assume."),
        click.option("--external-id", required=True, help="External id for the role's trust policy."),
        click.option("--region", default=None, help="Region of the function."),
        click.option("--config", "config_path", default=None, help="JSON settings file."),
        click.option("--timeout", default=None, type=int, help="Query timeout in milliseconds."),
        click.option("--verbose", "-v", is_flag=True, help="Log progress."),
    ]
    for option in reversed(options):
        f = option(f)
    return f


@main.command()
@click.argument("function_name")
@aws_options
@click.option(
    "--range",
    "range_str",
    default="24h",
    callback=validate_range,
    help="Relative time range (e.g., 15m, 24h, 7d). Default: 24h",
)
@click.option("--p90-threshold", default=None, type=float, help="P90 init alert threshold in ms.")
@click.option("--cold-ratio-threshold", default=None, type=float, help="Cold ratio alert threshold (0-1).")
@click.option(
    "--export",
    "export_format",
    type=click.Choice(["csv"]),
    default=None,
    help="Export format (csv).",
)
@click.option("--output", "-o", default=None, help="Output file path for export.")
def refresh(
    function_name: str,
    role_arn: str,
    external_id: str,
    region: str | None,
    config_path: str | None,
    timeout: int | None,
    verbose: bool,
    range_str: str,
    p90_threshold: float | None,
    cold_ratio_threshold: float | None,
    export_format: str | None,
    output: str | None,
):
    """
    Query cold-start metrics for a Lambda function in another account.

    Examples:

        coldtrack refresh my-function --role-arn arn:aws:iam::123456789012:role/reader --external-id s3cr3t --region us-east-1

        coldtrack refresh my-function ... --range 7d --export csv -o snapshot.csv
    """
    configure_logging(verbose)

    if export_format and not output:
        raise click.BadParameter("--output is required when using --export")

    try:
        settings = load_settings(
            config_path,
            query_timeout_ms=timeout,
            p90_threshold_ms=p90_threshold,
            cold_ratio_threshold=cold_ratio_threshold,
        )
        refresher, alert_store = build_refresher(function_name, role_arn, external_id, region, settings)

        with console.status(f"[bold green]Querying CloudWatch Logs for {function_name}..."):
            result = refresher.refresh(function_name, AuthContext(user_id=CLI_USER), range_str)
    except ColdtrackError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise SystemExit(1)

    console.print()
    console.print(f"[bold]Function: {function_name}[/bold]")
    console.print(f"Time range: {format_epoch(result.start)} to {format_epoch(result.end)} UTC")
    console.print(f"Query id: {result.query_id}")
    console.print()

    if result.pending:
        console.print(
            "[yellow]Query did not finish in time. Collect it later with:[/yellow]\n"
            f"  coldtrack collect {function_name} {result.query_id} --start {result.start} --end {result.end} --region {result.region} ..."
        )
        return

    print_snapshot(result.snapshot)
    console.print()
    print_alerts(alert_store.list(function_name))

    if export_format == "csv" and output:
        export_snapshots_to_csv([result.snapshot], output)
        console.print(f"\n[green]Exported to {output}[/green]")


@main.command()
@click.argument("function_name")
@click.argument("query_id")
@aws_options
@click.option("--start", "start", required=True, type=int, help="Window start (epoch seconds) printed by refresh.")
@click.option("--end", "end", required=True, type=int, help="Window end (epoch seconds) printed by refresh.")
def collect(
    function_name: str,
    query_id: str,
    role_arn: str,
    external_id: str,
    region: str | None,
    config_path: str | None,
    timeout: int | None,
    verbose: bool,
    start: int,
    end: int,
):
    """
    Collect results of a query that timed out during refresh.

    Pass the --start and --end values printed by refresh so the snapshot
    covers the window the query actually ran over.
    """
    configure_logging(verbose)

    try:
        settings = load_settings(config_path, query_timeout_ms=timeout)
        refresher, alert_store = build_refresher(function_name, role_arn, external_id, region, settings)
        with console.status(f"[bold green]Waiting for query {query_id}..."):
            result = refresher.collect(function_name, query_id, start, end)
    except ColdtrackError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise SystemExit(1)

    if result.pending:
        console.print("[yellow]Query is still running.[/yellow]")
        return

    console.print(f"Time range: {format_epoch(result.start)} to {format_epoch(result.end)} UTC")
    print_snapshot(result.snapshot)
    console.print()
    print_alerts(alert_store.list(function_name))


if __name__ == "__main__":
    main()
