"""
Database management commands.
"""

from __future__ import annotations

import typer
from alembic import command
from alembic.config import Config

from publio.cli.context import console, err_console, get_config, open_database

app = typer.Typer(
    help="Database operations",
    no_args_is_help=True,
)


def _alembic_config(ctx: typer.Context) -> Config:
    alembic_cfg = Config("alembic.ini")
    alembic_cfg.set_main_option("sqlalchemy.url", get_config(ctx).database.url)
    return alembic_cfg


@app.command("init")
def init_database(
    ctx: typer.Context,
    drop_existing: bool = typer.Option(
        False,
        "--drop",
        help="Drop existing tables before creating",
    ),
) -> None:
    """Create all tables. Use --drop to reset the database."""
    db = open_database(ctx)
    try:
        if drop_existing:
            if not typer.confirm("This will DELETE ALL DATA. Continue?", default=False):
                raise typer.Abort()

            console.print("[yellow]Dropping existing tables...[/yellow]")
            db.drop_all()

        console.print("Creating database schema...")
        db.create_all()
    finally:
        db.dispose()

    console.print("[green]OK[/green] Database initialized")


@app.command("migrate")
def run_migrations(
    ctx: typer.Context,
    revision: str = typer.Option(
        "head",
        "--revision",
        "-r",
        help="Target revision (default: head)",
    ),
) -> None:
    """Run database migrations."""
    alembic_cfg = _alembic_config(ctx)

    console.print(f"Running migrations to: {revision}")

    try:
        command.upgrade(alembic_cfg, revision)
    except Exception as e:
        err_console.print(f"[red]Migration failed:[/red] {e}")
        raise typer.Exit(1)
    console.print("[green]OK[/green] Migrations complete")


@app.command("downgrade")
def downgrade_database(
    ctx: typer.Context,
    revision: str = typer.Argument(..., help="Target revision"),
) -> None:
    """Downgrade database to a specific revision."""
    if not typer.confirm(f"Downgrade to revision '{revision}'? This may lose data."):
        raise typer.Abort()

    alembic_cfg = _alembic_config(ctx)

    console.print(f"Downgrading to: {revision}")

    try:
        command.downgrade(alembic_cfg, revision)
    except Exception as e:
        err_console.print(f"[red]Downgrade failed:[/red] {e}")
        raise typer.Exit(1)
    console.print("[green]OK[/green] Downgrade complete")


@app.command("revision")
def create_revision(
    ctx: typer.Context,
    message: str = typer.Argument(..., help="Revision message"),
    autogenerate: bool = typer.Option(
        True,
        "--autogenerate/--empty",
        help="Autogenerate from model changes",
    ),
) -> None:
    """Create a new migration revision."""
    alembic_cfg = _alembic_config(ctx)

    console.print(f"Creating revision: {message}")

    try:
        command.revision(alembic_cfg, message=message, autogenerate=autogenerate)
    except Exception as e:
        err_console.print(f"[red]Failed to create revision:[/red] {e}")
        raise typer.Exit(1)
    console.print("[green]OK[/green] Revision created")


@app.command("current")
def show_current(ctx: typer.Context) -> None:
    """Show current database revision."""
    console.print("[bold]Current database revision:[/bold]")
    command.current(_alembic_config(ctx), verbose=True)


@app.command("history")
def show_history(
    ctx: typer.Context,
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help="Show full revision details",
    ),
) -> None:
    """Show migration history."""
    command.history(_alembic_config(ctx), verbose=verbose)
