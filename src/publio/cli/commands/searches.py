"""
Saved search commands.
"""

from __future__ import annotations

from typing import Optional

import typer
from rich.table import Table

from publio.cli.context import (
    check_format,
    console,
    err_console,
    format_when,
    get_config,
    open_database,
    print_json,
)
from publio.core.config.models import MarketType, OrganizationType, TenderMode, TenderStatus
from publio.core.errors import ValidationError
from publio.core.lifecycle import TenderLifecycle
from publio.core.search import matches_saved_search_criteria, parse_criteria
from publio.persistence.repo import SavedSearchRepository, TenderRepository, UserRepository

app = typer.Typer(
    help="Saved searches",
    no_args_is_help=True,
)


@app.command("add")
def add_search(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Search name"),
    user_id: int = typer.Option(..., "--as", help="Owning user id"),
    search: Optional[str] = typer.Option(None, "--search", "-q", help="Text in title or description"),
    canton: Optional[str] = typer.Option(None, "--canton"),
    city: Optional[str] = typer.Option(None, "--city"),
    market_type: Optional[MarketType] = typer.Option(None, "--market-type", case_sensitive=False),
    budget_min: Optional[float] = typer.Option(None, "--budget-min"),
    budget_max: Optional[float] = typer.Option(None, "--budget-max"),
    mode: Optional[TenderMode] = typer.Option(None, "--mode", case_sensitive=False),
    organization_type: Optional[OrganizationType] = typer.Option(None, "--org-type", case_sensitive=False),
    alerts: bool = typer.Option(True, "--alerts/--no-alerts", help="Send alerts for new matches"),
) -> None:
    """Save a search. Omitted filters match everything."""
    try:
        criteria = parse_criteria(
            {
                "search": search,
                "canton": canton,
                "city": city,
                "market_type": market_type,
                "budget_min": budget_min,
                "budget_max": budget_max,
                "mode": mode,
                "organization_type": organization_type,
            }
        )
    except ValidationError as e:
        err_console.print(f"[red]{e.kind}:[/red] {e.message}")
        raise typer.Exit(1)

    db = open_database(ctx)
    try:
        with db.session() as session:
            if UserRepository(session).get_by_id(user_id) is None:
                err_console.print(f"[red]User not found:[/red] {user_id}")
                raise typer.Exit(1)
            saved = SavedSearchRepository(session).create(
                user_id,
                name,
                criteria.to_storage(),
                alerts_enabled=alerts,
            )
            search_id = saved.id
    finally:
        db.dispose()

    console.print(f"[green]OK[/green] Saved search #{search_id}: {name}")


@app.command("list")
def list_searches(
    ctx: typer.Context,
    user_id: int = typer.Option(..., "--as", help="Owning user id"),
    format: str = typer.Option("table", "--format", "-f", help="Output format (table, json)"),
) -> None:
    """List a user's saved searches."""
    fmt = check_format(format)

    db = open_database(ctx)
    try:
        with db.session() as session:
            data = [
                {
                    "id": s.id,
                    "name": s.name,
                    "criteria": s.criteria or {},
                    "alerts_enabled": s.alerts_enabled,
                    "last_alert_sent_at": s.last_alert_sent_at.isoformat() if s.last_alert_sent_at else None,
                }
                for s in SavedSearchRepository(session).list_for_user(user_id)
            ]
    finally:
        db.dispose()

    if fmt == "json":
        print_json(data)
        return

    if not data:
        console.print("[dim]No saved searches.[/dim]")
        return

    table = Table(title="Saved searches", show_header=True, header_style="bold magenta")
    table.add_column("ID", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Criteria")
    table.add_column("Alerts", justify="center")
    table.add_column("Last alert", justify="right")
    for row in data:
        criteria = ", ".join(f"{k}={v}" for k, v in row["criteria"].items()) or "[dim]everything[/dim]"
        table.add_row(
            str(row["id"]),
            row["name"],
            criteria,
            "[green]on[/green]" if row["alerts_enabled"] else "[dim]off[/dim]",
            format_when(row["last_alert_sent_at"]),
        )
    console.print(table)


@app.command("check")
def check_search(
    ctx: typer.Context,
    search_id: int = typer.Argument(..., help="Saved search id"),
    limit: int = typer.Option(100, "--limit", "-n", help="Published tenders to scan"),
    format: str = typer.Option("table", "--format", "-f", help="Output format (table, json)"),
) -> None:
    """Show published tenders matching a saved search."""
    fmt = check_format(format)

    db = open_database(ctx)
    try:
        with db.session() as session:
            saved = SavedSearchRepository(session).get_by_id(search_id)
            if saved is None:
                err_console.print(f"[red]Saved search not found:[/red] {search_id}")
                raise typer.Exit(1)

            lifecycle = TenderLifecycle(session, config=get_config(ctx).lifecycle)
            tenders = TenderRepository(session).list_tenders(status=TenderStatus.PUBLISHED.value, limit=limit)
            data = [
                {
                    "id": t.id,
                    "title": t.title,
                    "issuer": lifecycle.display_issuer(t),
                    "budget": t.budget,
                    "currency": t.currency,
                    "deadline": t.deadline.isoformat() if t.deadline else None,
                }
                for t in tenders
                if matches_saved_search_criteria(t, saved.criteria)
            ]
            search_name = saved.name
    finally:
        db.dispose()

    if fmt == "json":
        print_json(data)
        return

    if not data:
        console.print(f"[dim]No published tenders match \"{search_name}\".[/dim]")
        return

    table = Table(title=f"Matches for \"{search_name}\"", show_header=True, header_style="bold magenta")
    table.add_column("ID", justify="right")
    table.add_column("Title", style="cyan", max_width=50)
    table.add_column("Issuer", max_width=30)
    table.add_column("Budget", justify="right")
    table.add_column("Deadline", justify="right")
    for row in data:
        budget = f"{row['currency']} {row['budget']:,.0f}" if row["budget"] is not None else "-"
        table.add_row(str(row["id"]), row["title"], row["issuer"], budget, format_when(row["deadline"]))
    console.print(table)
