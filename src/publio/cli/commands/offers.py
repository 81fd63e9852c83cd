"""
Offer commands: submission, review and withdrawal.
"""

from __future__ import annotations

from typing import Any, Optional

import typer
from rich.table import Table

from publio.cli.context import check_format, console, emit, format_when, make_service, open_database

app = typer.Typer(
    help="Submit and review offers",
    no_args_is_help=True,
)

ACTOR_OPTION = typer.Option(..., "--as", help="Acting user id")
FORMAT_OPTION = typer.Option("table", "--format", "-f", help="Output format (table, json)")

STATUS_STYLES = {
    "SUBMITTED": "cyan",
    "VIEWED": "blue",
    "SHORTLISTED": "green",
    "WITHDRAWN": "dim",
}


def _confirm(verb: str):
    def render(data: dict[str, Any]) -> None:
        console.print(f"[green]OK[/green] Offer #{data['id']} {verb} ({data['status']})")

    return render


@app.command("list")
def list_offers(
    ctx: typer.Context,
    tender_id: int = typer.Argument(..., help="Tender id"),
    user_id: int = ACTOR_OPTION,
    organization_id: int = typer.Option(..., "--org", help="Issuing organization id of the viewer"),
    format: str = FORMAT_OPTION,
) -> None:
    """List offers received on a tender, newest first."""
    fmt = check_format(format)
    db = open_database(ctx)
    try:
        result = make_service(ctx, db).list_offers(user_id, tender_id, organization_id)
    finally:
        db.dispose()

    def render(offers: list[dict[str, Any]]) -> None:
        if not offers:
            console.print("[dim]No offers yet.[/dim]")
            return

        table = Table(title=f"Offers on tender #{tender_id}", show_header=True, header_style="bold magenta")
        table.add_column("ID", justify="right")
        table.add_column("Submitter", style="cyan")
        table.add_column("Status", justify="center")
        table.add_column("Price", justify="right")
        table.add_column("Submitted", justify="right")
        table.add_column("Viewed", justify="right")
        for offer in offers:
            style = STATUS_STYLES.get(offer["status"], "white")
            price = f"{offer['currency']} {offer['price']:,.2f}" if offer["price"] is not None else "-"
            table.add_row(
                str(offer["id"]),
                offer["submitter"],
                f"[{style}]{offer['status']}[/{style}]",
                price,
                format_when(offer["submitted_at"]),
                format_when(offer["viewed_at"]),
            )
        console.print(table)

    emit(result, fmt, render)


@app.command("submit")
def submit_offer(
    ctx: typer.Context,
    tender_id: int = typer.Argument(..., help="Tender id"),
    user_id: int = ACTOR_OPTION,
    organization_id: int = typer.Option(..., "--org", help="Submitting organization id"),
    price: Optional[float] = typer.Option(None, "--price", help="Offer price"),
    currency: Optional[str] = typer.Option(None, "--currency", help="ISO currency code (default CHF)"),
    description: Optional[str] = typer.Option(None, "--description", "-d", help="Offer description"),
    format: str = FORMAT_OPTION,
) -> None:
    """Submit an offer on a PUBLISHED tender."""
    fmt = check_format(format)
    payload = {"price": price, "currency": currency, "description": description}
    payload = {key: value for key, value in payload.items() if value is not None}

    db = open_database(ctx)
    try:
        result = make_service(ctx, db).submit_offer(user_id, tender_id, organization_id, payload)
    finally:
        db.dispose()
    emit(result, fmt, _confirm("submitted"))


@app.command("view")
def view_offer(
    ctx: typer.Context,
    offer_id: int = typer.Argument(..., help="Offer id"),
    user_id: int = ACTOR_OPTION,
    organization_id: int = typer.Option(..., "--org", help="Issuing organization id of the viewer"),
    format: str = FORMAT_OPTION,
) -> None:
    """Open an offer as the issuer. The first view is recorded."""
    fmt = check_format(format)
    db = open_database(ctx)
    try:
        result = make_service(ctx, db).mark_offer_viewed(user_id, offer_id, organization_id)
    finally:
        db.dispose()

    def render(offer: dict[str, Any]) -> None:
        console.print(f"[bold]Offer #{offer['id']}[/bold] from {offer['submitter']}")
        console.print(f"Status: {offer['status']}")
        if offer["price"] is not None:
            console.print(f"Price: {offer['currency']} {offer['price']:,.2f}")
        console.print(f"Submitted: {format_when(offer['submitted_at'])}")
        console.print(f"First viewed: {format_when(offer['viewed_at'])}")
        if offer["description"]:
            console.print()
            console.print(offer["description"])

    emit(result, fmt, render)


@app.command("shortlist")
def shortlist_offer(
    ctx: typer.Context,
    offer_id: int = typer.Argument(..., help="Offer id"),
    user_id: int = ACTOR_OPTION,
    format: str = FORMAT_OPTION,
) -> None:
    """Add an offer to the shortlist."""
    fmt = check_format(format)
    db = open_database(ctx)
    try:
        result = make_service(ctx, db).shortlist_offer(user_id, offer_id)
    finally:
        db.dispose()
    emit(result, fmt, _confirm("shortlisted"))


@app.command("unshortlist")
def unshortlist_offer(
    ctx: typer.Context,
    offer_id: int = typer.Argument(..., help="Offer id"),
    user_id: int = ACTOR_OPTION,
    format: str = FORMAT_OPTION,
) -> None:
    """Remove an offer from the shortlist."""
    fmt = check_format(format)
    db = open_database(ctx)
    try:
        result = make_service(ctx, db).unshortlist_offer(user_id, offer_id)
    finally:
        db.dispose()
    emit(result, fmt, _confirm("removed from shortlist"))


@app.command("withdraw")
def withdraw_offer(
    ctx: typer.Context,
    offer_id: int = typer.Argument(..., help="Offer id"),
    user_id: int = ACTOR_OPTION,
    format: str = FORMAT_OPTION,
) -> None:
    """Withdraw an offer before the deadline. It cannot be resubmitted."""
    fmt = check_format(format)
    db = open_database(ctx)
    try:
        result = make_service(ctx, db).withdraw_offer(user_id, offer_id)
    finally:
        db.dispose()
    emit(result, fmt, _confirm("withdrawn"))


@app.command("unread")
def unread_offers(
    ctx: typer.Context,
    user_id: int = ACTOR_OPTION,
    organization_id: int = typer.Option(..., "--org", help="Issuing organization id"),
    format: str = FORMAT_OPTION,
) -> None:
    """Tenders of an organization with offers not opened yet."""
    fmt = check_format(format)
    db = open_database(ctx)
    try:
        result = make_service(ctx, db).tenders_with_unread_offers(user_id, organization_id)
    finally:
        db.dispose()

    def render(rows: list[dict[str, Any]]) -> None:
        unread = sum(row["unread_offers"] for row in rows)
        if not unread:
            console.print("[dim]No unread offers.[/dim]")
            return

        table = Table(title=f"{unread} unread offer(s)", show_header=True, header_style="bold magenta")
        table.add_column("Tender", justify="right")
        table.add_column("Title", style="cyan")
        table.add_column("Status", justify="center")
        table.add_column("Unread", justify="right")
        table.add_column("Offers", justify="right")
        table.add_column("Deadline", justify="right")
        for row in rows:
            table.add_row(
                str(row["tender_id"]),
                row["title"],
                row["status"],
                str(row["unread_offers"]),
                str(row["total_offers"]),
                format_when(row["deadline"]),
            )
        console.print(table)

    emit(result, fmt, render)
