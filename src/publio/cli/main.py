"""
Publio CLI - Main entry point.

Operator surface for the procurement marketplace: tenders, offers,
saved searches, batch jobs and the scheduler.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.panel import Panel
from rich.table import Table
from rich.traceback import install as install_rich_traceback

from publio import __app_name__, __version__
from publio.cli.context import CliState, console, err_console, get_config, get_state, open_database
from publio.core.logging import setup_logging

# Load environment variables from .env (if present)
load_dotenv()

install_rich_traceback(show_locals=False, width=120)

app = typer.Typer(
    name=__app_name__,
    help="Procurement marketplace: tenders, offers and alerts",
    rich_markup_mode="rich",
    no_args_is_help=True,
    pretty_exceptions_show_locals=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold cyan]{__app_name__}[/bold cyan] version [green]{__version__}[/green]")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        envvar="PUBLIO_CONFIG",
        help="Path to app.yaml (default: configs/app.yaml)",
    ),
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """Publio - Procurement marketplace core."""
    ctx.obj = CliState(config_path=config)

    app_config = get_state(ctx).config
    setup_logging(
        level=app_config.logging.level,
        log_file=app_config.logging.file,
        json_format=app_config.logging.json_format,
        rich_console=app_config.logging.rich_console,
    )


# =============================================================================
# Import and register subcommand modules
# =============================================================================

from publio.cli.commands import db, jobs, offers, orgs, schedule, searches, tenders  # noqa: E402

app.add_typer(orgs.app, name="orgs", help="Manage users and organizations")
app.add_typer(tenders.app, name="tenders", help="Create and manage tenders")
app.add_typer(offers.app, name="offers", help="Submit and review offers")
app.add_typer(searches.app, name="searches", help="Saved searches")
app.add_typer(jobs.app, name="jobs", help="Run batch jobs once")
app.add_typer(schedule.app, name="schedule", help="Run the job scheduler")
app.add_typer(db.app, name="db", help="Database operations")


# =============================================================================
# Init Command
# =============================================================================


@app.command()
def init(
    ctx: typer.Context,
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite existing configuration",
    ),
) -> None:
    """Initialize Publio directories, configuration and database schema."""
    state = get_state(ctx)
    app_config_path = state.config_path or Path("configs/app.yaml")
    if not app_config_path.exists() or force:
        _create_default_app_config(app_config_path)

    app_config = get_config(ctx)
    app_config.ensure_directories()

    db = open_database(ctx)
    try:
        db.create_all()
    finally:
        db.dispose()

    console.print()
    console.print(Panel.fit(
        "[bold green]OK - Publio initialized successfully![/bold green]\n\n"
        f"Configuration: [cyan]{app_config_path}[/cyan]\n"
        f"Database: [cyan]{db!r}[/cyan]\n\n"
        "Next steps:\n"
        "  1. Add an organization: [yellow]publio orgs create <name>[/yellow]\n"
        "  2. Draft a tender: [yellow]publio tenders create --as <user> --org <id>[/yellow]\n"
        "  3. Run the scheduler: [yellow]publio schedule start[/yellow]",
        title="[bold]Initialization Complete[/bold]",
        border_style="green",
    ))


def _create_default_app_config(path: Path) -> None:
    """Create default app.yaml configuration."""
    default_config = """\
# Publio Configuration

data_dir: data

database:
  url: ${DATABASE_URL:-sqlite:///data/publio.db}
  echo: false
  busy_timeout_seconds: 15

logging:
  level: INFO
  file: logs/publio.log
  json_format: true
  rich_console: true

lifecycle:
  grace_period_days: 3
  auto_close_after_days: 7
  reveal_requires_deadline_passed: false

alerts:
  min_interval_hours: 12
  lookback_hours: 24
  webhook_url: null
  app_url: http://localhost:3000

scheduler:
  enabled: true
  datastore_url: sqlite+aiosqlite:///data/schedules.db
  expiry_cron: "0 2 * * *"
  alerts_cron: "0 * * * *"
  timezone: UTC
  jitter_minutes: 0
  lock_ttl_minutes: 30
"""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(default_config, encoding="utf-8")


# =============================================================================
# Status Command
# =============================================================================


@app.command()
def status(ctx: typer.Context) -> None:
    """Show tender counts by status."""
    from sqlalchemy.exc import OperationalError

    from publio.persistence.repo import OrganizationRepository, TenderRepository

    db = open_database(ctx)
    try:
        with db.session() as session:
            organizations = OrganizationRepository(session).get_all()
            counts = TenderRepository(session).count_by_status()
    except OperationalError:
        err_console.print("[red]Publio not initialized. Run:[/red] publio init")
        raise typer.Exit(1)
    finally:
        db.dispose()

    console.print()
    console.print("[bold]Publio Status[/bold]")
    console.print(f"Organizations: {len(organizations)}")
    console.print()

    if not counts:
        console.print("[dim]No tenders yet.[/dim]")
        return

    table = Table(title="Tenders", show_header=True, header_style="bold magenta")
    table.add_column("Status", style="cyan")
    table.add_column("Count", justify="right")
    for tender_status, count in sorted(counts.items()):
        table.add_row(tender_status, str(count))
    console.print(table)


@app.command()
def validate(
    path: Path = typer.Argument(Path("configs/app.yaml"), help="Configuration file to check"),
) -> None:
    """Validate a configuration file without loading it."""
    from publio.core.config.loader import validate_app_config_file

    errors = validate_app_config_file(path)
    if errors:
        err_console.print(f"[red]Invalid configuration:[/red] {path}")
        for error in errors:
            err_console.print(f"  [dim]-[/dim] {error}")
        raise typer.Exit(1)

    console.print(f"[green]OK[/green] {path} is valid")


# =============================================================================
# Entry Point
# =============================================================================


def run() -> None:
    """Run the CLI application."""
    app()


if __name__ == "__main__":
    run()
