"""
One-shot batch job commands.
"""

from __future__ import annotations

import typer
from rich.table import Table

from publio.cli.context import check_format, console, get_config, open_database, print_json
from publio.core.jobs import build_alert_delivery, close_expired_tenders, send_search_alerts

app = typer.Typer(
    help="Run batch jobs once",
    no_args_is_help=True,
)


def _print_details(details: list[str], verbose: bool) -> None:
    if verbose:
        for line in details:
            console.print(f"  [dim]-[/dim] {line}")


@app.command("close-expired")
def close_expired(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-V", help="Show per-tender details"),
    format: str = typer.Option("table", "--format", "-f", help="Output format (table, json)"),
) -> None:
    """Remind issuers about passed deadlines and close stale tenders."""
    fmt = check_format(format)
    config = get_config(ctx)

    db = open_database(ctx)
    try:
        report = close_expired_tenders(db, config.lifecycle)
    finally:
        db.dispose()

    if fmt == "json":
        print_json(report.to_dict())
        return

    table = Table(title="Expiry sweep", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Examined", str(report.examined))
    table.add_row("Reminders sent", str(report.reminders_sent))
    table.add_row("Awaiting manual close", str(report.awaiting_manual_close))
    table.add_row("Closed", str(report.closed))
    table.add_row("Errors", f"[red]{report.errors}[/red]" if report.errors else "0")
    console.print(table)
    _print_details(report.details, verbose)

    if report.errors:
        raise typer.Exit(1)


@app.command("send-alerts")
def send_alerts(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-V", help="Show per-search details"),
    format: str = typer.Option("table", "--format", "-f", help="Output format (table, json)"),
) -> None:
    """Send saved-search alerts for newly published tenders."""
    fmt = check_format(format)
    config = get_config(ctx)
    delivery = build_alert_delivery(
        config.alerts.webhook_url,
        timeout=config.alerts.timeout_seconds,
        max_attempts=config.alerts.max_retries,
    )

    db = open_database(ctx)
    try:
        report = send_search_alerts(db, config.alerts, delivery=delivery)
    finally:
        db.dispose()

    if fmt == "json":
        print_json(report.to_dict())
        return

    table = Table(title="Alert sweep", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Searches processed", str(report.processed))
    table.add_row("Alerts sent", str(report.alerts))
    table.add_row("Skipped (throttled)", str(report.skipped))
    table.add_row("Errors", f"[red]{report.errors}[/red]" if report.errors else "0")
    console.print(table)
    _print_details(report.details, verbose)

    if report.errors:
        raise typer.Exit(1)
