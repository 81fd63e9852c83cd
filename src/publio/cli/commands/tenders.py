"""
Tender commands: drafting, publishing, closing, reveal and the equity log.
"""

from __future__ import annotations

from typing import Any, Optional

import typer
from rich.panel import Panel
from rich.table import Table

from publio.cli.context import (
    check_format,
    console,
    emit,
    format_when,
    get_config,
    make_service,
    open_database,
    parse_when,
    print_json,
)
from publio.core.config.models import MarketType, TenderMode, TenderProcedure, TenderStatus, TenderVisibility
from publio.core.lifecycle import TenderLifecycle
from publio.persistence.repo import TenderRepository

app = typer.Typer(
    help="Create and manage tenders",
    no_args_is_help=True,
)

ACTOR_OPTION = typer.Option(..., "--as", help="Acting user id")
FORMAT_OPTION = typer.Option("table", "--format", "-f", help="Output format (table, json)")

STATUS_STYLES = {
    TenderStatus.DRAFT.value: "yellow",
    TenderStatus.PUBLISHED.value: "green",
    TenderStatus.CLOSED.value: "dim",
}


def _parse_criterion(text: str, position: int) -> dict[str, Any]:
    """'Price:60' -> {'name': 'Price', 'weight': 60.0}."""
    name, sep, weight = text.rpartition(":")
    if not sep:
        return {"name": text, "position": position}
    try:
        return {"name": name, "weight": float(weight), "position": position}
    except ValueError:
        raise typer.BadParameter(f"Invalid criterion weight in {text!r}", param_hint="--criterion")


def _render_tender(data: dict[str, Any]) -> None:
    style = STATUS_STYLES.get(data["status"], "white")
    lines = [
        f"[bold]Issuer:[/bold] {data['issuer']}",
        f"[bold]Status:[/bold] [{style}]{data['status']}[/{style}]"
        + (f" ({data['closed_reason']})" if data["closed_reason"] else ""),
        f"[bold]Mode:[/bold] {data['mode']}  [bold]Visibility:[/bold] {data['visibility']}",
        f"[bold]Market:[/bold] {data['market_type']}  [bold]Procedure:[/bold] {data['procedure']}",
    ]
    if data["budget"] is not None:
        lines.append(f"[bold]Budget:[/bold] {data['currency']} {data['budget']:,.2f}")
    if data["canton"] or data["city"]:
        lines.append(f"[bold]Location:[/bold] {', '.join(v for v in (data['city'], data['canton']) if v)}")
    lines.append(f"[bold]Deadline:[/bold] {format_when(data['deadline'])}")
    if data["identity_revealed"]:
        lines.append(f"[bold]Identity revealed:[/bold] {format_when(data['revealed_at'])}")
    if data["summary"]:
        lines.append("")
        lines.append(data["summary"])
    for lot in data["lots"]:
        lines.append(f"  Lot {lot['number']}: {lot['title']}")
    for criterion in data["criteria"]:
        lines.append(f"  Criterion: {criterion['name']} ({criterion['weight']:g}%)")

    console.print(Panel("\n".join(lines), title=f"#{data['id']} {data['title']}", border_style=style))


@app.command("list")
def list_tenders(
    ctx: typer.Context,
    status: Optional[TenderStatus] = typer.Option(
        None,
        "--status",
        "-s",
        help="Filter by status",
        case_sensitive=False,
    ),
    organization_id: Optional[int] = typer.Option(None, "--org", help="Filter by issuing organization"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum results to show"),
    format: str = FORMAT_OPTION,
) -> None:
    """List tenders, newest first."""
    fmt = check_format(format)

    db = open_database(ctx)
    try:
        with db.session() as session:
            lifecycle = TenderLifecycle(session, config=get_config(ctx).lifecycle)
            tenders = TenderRepository(session).list_tenders(
                status=status.value if status else None,
                organization_id=organization_id,
                limit=limit,
            )
            data = [
                {
                    "id": t.id,
                    "title": t.title,
                    "issuer": lifecycle.display_issuer(t),
                    "status": t.status,
                    "mode": t.mode,
                    "budget": t.budget,
                    "currency": t.currency,
                    "deadline": t.deadline.isoformat() if t.deadline else None,
                }
                for t in tenders
            ]
    finally:
        db.dispose()

    if fmt == "json":
        print_json(data)
        return

    if not data:
        console.print("[dim]No tenders found.[/dim]")
        return

    table = Table(title=f"Tenders ({len(data)})", show_header=True, header_style="bold magenta")
    table.add_column("ID", justify="right")
    table.add_column("Title", style="cyan", max_width=50)
    table.add_column("Issuer", max_width=30)
    table.add_column("Status", justify="center")
    table.add_column("Budget", justify="right")
    table.add_column("Deadline", justify="right")

    for row in data:
        style = STATUS_STYLES.get(row["status"], "white")
        budget = f"{row['currency']} {row['budget']:,.0f}" if row["budget"] is not None else "-"
        table.add_row(
            str(row["id"]),
            row["title"],
            row["issuer"],
            f"[{style}]{row['status']}[/{style}]",
            budget,
            format_when(row["deadline"]),
        )

    console.print(table)


@app.command("show")
def show_tender(
    ctx: typer.Context,
    tender_id: int = typer.Argument(..., help="Tender id"),
    format: str = FORMAT_OPTION,
) -> None:
    """Show one tender."""
    fmt = check_format(format)
    db = open_database(ctx)
    try:
        result = make_service(ctx, db).get_tender(tender_id)
    finally:
        db.dispose()
    emit(result, fmt, _render_tender)


@app.command("create")
def create_tender(
    ctx: typer.Context,
    user_id: int = ACTOR_OPTION,
    organization_id: int = typer.Option(..., "--org", help="Issuing organization id"),
    title: str = typer.Option(..., "--title", "-t", help="Tender title"),
    description: str = typer.Option(..., "--description", "-d", help="Full description"),
    summary: Optional[str] = typer.Option(None, "--summary", help="Short summary"),
    market_type: Optional[MarketType] = typer.Option(None, "--market-type", case_sensitive=False),
    mode: Optional[TenderMode] = typer.Option(None, "--mode", case_sensitive=False),
    visibility: Optional[TenderVisibility] = typer.Option(None, "--visibility", case_sensitive=False),
    procedure: Optional[TenderProcedure] = typer.Option(None, "--procedure", case_sensitive=False),
    budget: Optional[float] = typer.Option(None, "--budget", help="Estimated budget"),
    currency: Optional[str] = typer.Option(None, "--currency", help="ISO currency code (default CHF)"),
    canton: Optional[str] = typer.Option(None, "--canton", help="Canton code"),
    city: Optional[str] = typer.Option(None, "--city", help="City"),
    deadline: Optional[str] = typer.Option(
        None,
        "--deadline",
        help="Submission deadline, e.g. '2025-03-01 12:00' or 'in 30 days'",
    ),
    lots: Optional[list[str]] = typer.Option(None, "--lot", help="Lot title (repeatable)"),
    criteria: Optional[list[str]] = typer.Option(None, "--criterion", help="Criterion as NAME[:WEIGHT] (repeatable)"),
    format: str = FORMAT_OPTION,
) -> None:
    """Create a DRAFT tender.

    Examples:
        publio tenders create --as 1 --org 1 -t "School roof" -d "Replace roof" --lot "Roofing" --criterion Price:60
    """
    fmt = check_format(format)

    draft: dict[str, Any] = {
        "organization_id": organization_id,
        "title": title,
        "description": description,
        "summary": summary,
        "market_type": market_type,
        "mode": mode,
        "visibility": visibility,
        "procedure": procedure,
        "budget": budget,
        "currency": currency,
        "canton": canton,
        "city": city,
        "deadline": parse_when(deadline),
        "lots": [{"number": i, "title": lot} for i, lot in enumerate(lots or [], start=1)],
        "criteria": [_parse_criterion(text, i) for i, text in enumerate(criteria or [])],
    }
    draft = {key: value for key, value in draft.items() if value is not None}

    db = open_database(ctx)
    try:
        result = make_service(ctx, db).create_tender(user_id, draft)
    finally:
        db.dispose()
    emit(result, fmt, lambda data: console.print(f"[green]OK[/green] Created draft tender #{data['id']}"))


@app.command("edit")
def edit_tender(
    ctx: typer.Context,
    tender_id: int = typer.Argument(..., help="Tender id"),
    user_id: int = ACTOR_OPTION,
    title: Optional[str] = typer.Option(None, "--title", "-t"),
    description: Optional[str] = typer.Option(None, "--description", "-d"),
    summary: Optional[str] = typer.Option(None, "--summary"),
    market_type: Optional[MarketType] = typer.Option(None, "--market-type", case_sensitive=False),
    mode: Optional[TenderMode] = typer.Option(None, "--mode", case_sensitive=False),
    budget: Optional[float] = typer.Option(None, "--budget"),
    canton: Optional[str] = typer.Option(None, "--canton"),
    city: Optional[str] = typer.Option(None, "--city"),
    deadline: Optional[str] = typer.Option(None, "--deadline"),
    format: str = FORMAT_OPTION,
) -> None:
    """Edit a DRAFT tender. Only the given fields change."""
    fmt = check_format(format)

    patch = {
        "title": title,
        "description": description,
        "summary": summary,
        "market_type": market_type,
        "mode": mode,
        "budget": budget,
        "canton": canton,
        "city": city,
        "deadline": parse_when(deadline),
    }
    patch = {key: value for key, value in patch.items() if value is not None}

    db = open_database(ctx)
    try:
        result = make_service(ctx, db).edit_tender(user_id, tender_id, patch)
    finally:
        db.dispose()
    emit(result, fmt, lambda data: console.print(f"[green]OK[/green] Updated tender #{data['id']}"))


@app.command("publish")
def publish_tender(
    ctx: typer.Context,
    tender_id: int = typer.Argument(..., help="Tender id"),
    user_id: int = ACTOR_OPTION,
    format: str = FORMAT_OPTION,
) -> None:
    """Publish a DRAFT tender."""
    fmt = check_format(format)
    db = open_database(ctx)
    try:
        result = make_service(ctx, db).publish_tender(user_id, tender_id)
    finally:
        db.dispose()
    emit(result, fmt, lambda data: console.print(f"[green]OK[/green] Published tender #{data['id']}"))


@app.command("close")
def close_tender(
    ctx: typer.Context,
    tender_id: int = typer.Argument(..., help="Tender id"),
    user_id: int = ACTOR_OPTION,
    format: str = FORMAT_OPTION,
) -> None:
    """Close a PUBLISHED tender."""
    fmt = check_format(format)
    db = open_database(ctx)
    try:
        result = make_service(ctx, db).close_tender(user_id, tender_id)
    finally:
        db.dispose()
    emit(result, fmt, lambda data: console.print(f"[green]OK[/green] Closed tender #{data['id']}"))


@app.command("delete")
def delete_tender(
    ctx: typer.Context,
    tender_id: int = typer.Argument(..., help="Tender id"),
    user_id: int = ACTOR_OPTION,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    format: str = FORMAT_OPTION,
) -> None:
    """Delete a DRAFT tender together with its lots and criteria."""
    fmt = check_format(format)
    if not yes and not typer.confirm(f"Delete draft tender {tender_id}?"):
        raise typer.Abort()

    db = open_database(ctx)
    try:
        result = make_service(ctx, db).delete_draft_tender(user_id, tender_id)
    finally:
        db.dispose()
    emit(result, fmt, lambda data: console.print(f"[green]OK[/green] Deleted draft tender #{data['id']}"))


@app.command("reveal")
def reveal_identity(
    ctx: typer.Context,
    tender_id: int = typer.Argument(..., help="Tender id"),
    user_id: int = ACTOR_OPTION,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    format: str = FORMAT_OPTION,
) -> None:
    """Reveal the issuer of an anonymous tender. This cannot be undone."""
    fmt = check_format(format)
    if not yes and not typer.confirm(f"Reveal the issuer of tender {tender_id}? This cannot be undone."):
        raise typer.Abort()

    db = open_database(ctx)
    try:
        result = make_service(ctx, db).reveal_identity(user_id, tender_id)
    finally:
        db.dispose()
    emit(
        result,
        fmt,
        lambda data: console.print(f"[green]OK[/green] Tender #{data['id']} is now shown as {data['issuer']}"),
    )


@app.command("log")
def show_equity_log(
    ctx: typer.Context,
    tender_id: int = typer.Argument(..., help="Tender id"),
    user_id: Optional[int] = typer.Option(None, "--as", help="Acting user id (must belong to the issuer)"),
    format: str = FORMAT_OPTION,
) -> None:
    """Show the equity log of a tender, newest first."""
    fmt = check_format(format)
    db = open_database(ctx)
    try:
        result = make_service(ctx, db).get_equity_logs(tender_id, user_id=user_id)
    finally:
        db.dispose()

    def render(entries: list[dict[str, Any]]) -> None:
        if not entries:
            console.print("[dim]No log entries.[/dim]")
            return

        table = Table(title=f"Equity log of tender #{tender_id}", show_header=True, header_style="bold magenta")
        table.add_column("When", justify="right")
        table.add_column("Action", style="cyan")
        table.add_column("By")
        table.add_column("Description")
        for entry in entries:
            table.add_row(
                format_when(entry["created_at"]),
                entry["action"],
                entry["user"]["name"] or entry["user"]["email"] or "-",
                entry["description"],
            )
        console.print(table)

    emit(result, fmt, render)

