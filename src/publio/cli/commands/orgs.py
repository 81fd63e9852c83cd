"""
User and organization management commands.
"""

from __future__ import annotations

from typing import Optional

import typer
from rich.table import Table
from sqlalchemy.exc import IntegrityError

from publio.cli.context import check_format, console, err_console, open_database, print_json
from publio.core.config.models import OrganizationRole, OrganizationType
from publio.persistence.repo import OrganizationRepository, UserRepository

app = typer.Typer(
    help="Manage users and organizations",
    no_args_is_help=True,
)


@app.command("add-user")
def add_user(
    ctx: typer.Context,
    email: str = typer.Argument(..., help="Email address"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Display name"),
) -> None:
    """Register a user."""
    db = open_database(ctx)
    try:
        with db.session() as session:
            users = UserRepository(session)
            if users.get_by_email(email) is not None:
                err_console.print(f"[red]User already exists:[/red] {email}")
                raise typer.Exit(1)
            user = users.create(email, name=name)
            user_id = user.id
    finally:
        db.dispose()

    console.print(f"[green]OK[/green] Created user #{user_id}: {email}")


@app.command("create")
def create_organization(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Organization name"),
    org_type: OrganizationType = typer.Option(
        OrganizationType.ENTREPRISE,
        "--type",
        "-t",
        help="Organization type",
        case_sensitive=False,
    ),
    canton: Optional[str] = typer.Option(None, "--canton", help="Canton code (e.g. VD)"),
    city: Optional[str] = typer.Option(None, "--city", help="City"),
    owner: Optional[int] = typer.Option(None, "--owner", help="User id to add as OWNER"),
) -> None:
    """Create an organization, optionally with its first owner."""
    db = open_database(ctx)
    try:
        with db.session() as session:
            orgs = OrganizationRepository(session)
            if owner is not None and UserRepository(session).get_by_id(owner) is None:
                err_console.print(f"[red]User not found:[/red] {owner}")
                raise typer.Exit(1)

            organization = orgs.create(name, org_type=org_type.value, canton=canton, city=city)
            if owner is not None:
                orgs.add_member(organization.id, owner, OrganizationRole.OWNER.value)
            organization_id = organization.id
    finally:
        db.dispose()

    console.print(f"[green]OK[/green] Created organization #{organization_id}: {name}")


@app.command("add-member")
def add_member(
    ctx: typer.Context,
    organization_id: int = typer.Argument(..., help="Organization id"),
    user_id: int = typer.Argument(..., help="User id"),
    role: OrganizationRole = typer.Option(
        OrganizationRole.EDITOR,
        "--role",
        "-r",
        help="Role in the organization",
        case_sensitive=False,
    ),
) -> None:
    """Add a user to an organization."""
    db = open_database(ctx)
    try:
        with db.session() as session:
            orgs = OrganizationRepository(session)
            if orgs.get_by_id(organization_id) is None:
                err_console.print(f"[red]Organization not found:[/red] {organization_id}")
                raise typer.Exit(1)
            if UserRepository(session).get_by_id(user_id) is None:
                err_console.print(f"[red]User not found:[/red] {user_id}")
                raise typer.Exit(1)
            orgs.add_member(organization_id, user_id, role.value)
    except IntegrityError:
        err_console.print(f"[red]User {user_id} is already a member of organization {organization_id}[/red]")
        raise typer.Exit(1)
    finally:
        db.dispose()

    console.print(f"[green]OK[/green] User #{user_id} is {role.value} of organization #{organization_id}")


@app.command("list")
def list_organizations(
    ctx: typer.Context,
    format: str = typer.Option("table", "--format", "-f", help="Output format (table, json)"),
) -> None:
    """List organizations."""
    fmt = check_format(format)

    db = open_database(ctx)
    try:
        with db.session() as session:
            data = [
                {
                    "id": org.id,
                    "name": org.name,
                    "type": org.type,
                    "canton": org.canton,
                    "city": org.city,
                }
                for org in OrganizationRepository(session).get_all()
            ]
    finally:
        db.dispose()

    if fmt == "json":
        print_json(data)
        return

    if not data:
        console.print("[dim]No organizations yet.[/dim]")
        return

    table = Table(title="Organizations", show_header=True, header_style="bold magenta")
    table.add_column("ID", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Type")
    table.add_column("Canton")
    table.add_column("City")
    for row in data:
        table.add_row(str(row["id"]), row["name"], row["type"], row["canton"] or "-", row["city"] or "-")
    console.print(table)
