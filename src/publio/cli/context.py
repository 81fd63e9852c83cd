"""
Shared plumbing for CLI commands: configuration, database and output.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

import dateparser
import typer
from rich.console import Console

from publio.core.config.loader import ConfigError, load_app_config
from publio.core.config.models import AppConfig
from publio.core.logging import json_dumps
from publio.core.service import MarketplaceService, OperationResult
from publio.persistence.db import Database

console = Console()
err_console = Console(stderr=True)

OUTPUT_FORMATS = ("table", "json")


@dataclass
class CliState:
    """Per-invocation state stored on the Typer context."""

    config_path: Path | None = None
    _config: AppConfig | None = field(default=None, repr=False)

    @property
    def config(self) -> AppConfig:
        if self._config is None:
            try:
                self._config = load_app_config(self.config_path)
            except ConfigError as e:
                err_console.print(f"[red]Error:[/red] {e}")
                if e.details:
                    err_console.print(f"[dim]{e.details}[/dim]")
                raise typer.Exit(1)
        return self._config


def get_state(ctx: typer.Context) -> CliState:
    if not isinstance(ctx.obj, CliState):
        ctx.obj = CliState()
    return ctx.obj


def get_config(ctx: typer.Context) -> AppConfig:
    return get_state(ctx).config


def open_database(ctx: typer.Context) -> Database:
    return Database.from_config(get_config(ctx).database)


def make_service(ctx: typer.Context, db: Database) -> MarketplaceService:
    return MarketplaceService(db, config=get_config(ctx).lifecycle)


def check_format(fmt: str) -> str:
    fmt = fmt.lower()
    if fmt not in OUTPUT_FORMATS:
        err_console.print(f"[red]Unknown format:[/red] {fmt}")
        err_console.print(f"[dim]Supported: {', '.join(OUTPUT_FORMATS)}[/dim]")
        raise typer.Exit(1)
    return fmt


def print_json(data: Any) -> None:
    typer.echo(json_dumps(data))


def emit(result: OperationResult, fmt: str, render: Callable[[Any], None]) -> None:
    """Print an operation result, exiting with status 1 on failure."""
    if not result.ok:
        if fmt == "json":
            print_json(result.to_dict())
        else:
            error = result.error or {}
            err_console.print(f"[red]{error.get('kind')}:[/red] {error.get('message')}")
        raise typer.Exit(1)

    if fmt == "json":
        print_json(result.data)
    else:
        render(result.data)


def parse_when(text: str | None, relative_base: datetime | None = None) -> datetime | None:
    """Parse a date such as '2025-03-01 12:00' or 'in 10 days' into naive UTC."""
    if text is None or not text.strip():
        return None

    settings: dict[str, Any] = {
        "RETURN_AS_TIMEZONE_AWARE": True,
        "TO_TIMEZONE": "UTC",
        "PREFER_DATES_FROM": "future",
    }
    if relative_base is not None:
        settings["RELATIVE_BASE"] = relative_base

    parsed = dateparser.parse(text, settings=settings)
    if parsed is None:
        raise typer.BadParameter(f"Cannot parse date: {text!r}")
    return parsed.astimezone(timezone.utc).replace(tzinfo=None)


def format_when(value: str | datetime | None) -> str:
    if value is None:
        return "[dim]-[/dim]"
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    return value.strftime("%Y-%m-%d %H:%M")
