"""
Scheduler commands.
"""

from __future__ import annotations

import asyncio

import typer
from rich.table import Table

from publio.cli.context import console, err_console, get_config, get_state, print_json
from publio.core.scheduler import JOBS, SchedulerService, make_holder_id, run_locked

app = typer.Typer(
    help="Run the job scheduler",
    no_args_is_help=True,
)


@app.command("list")
def list_schedules(ctx: typer.Context) -> None:
    """Show the configured job schedules."""
    config = get_config(ctx)
    service = SchedulerService(config, get_state(ctx).config_path)

    table = Table(title="Scheduled Jobs", show_header=True, header_style="bold magenta")
    table.add_column("Job", style="cyan")
    table.add_column("Cron")
    table.add_column("Timezone")
    table.add_column("Jitter", justify="right")
    for job_name, cron in service.schedules().items():
        table.add_row(job_name, cron, config.scheduler.timezone, f"{config.scheduler.jitter_minutes} min")
    console.print(table)

    if not config.scheduler.enabled:
        console.print("[yellow]Scheduler is disabled in the configuration.[/yellow]")


@app.command("run-now")
def run_now(
    ctx: typer.Context,
    job_name: str = typer.Argument(..., help=f"Job name ({', '.join(JOBS)})"),
) -> None:
    """Run a scheduled job immediately, under its run lock."""
    if job_name not in JOBS:
        err_console.print(f"[red]Unknown job:[/red] {job_name}")
        err_console.print(f"[dim]Available: {', '.join(JOBS)}[/dim]")
        raise typer.Exit(1)

    console.print(f"[bold]Running job:[/bold] {job_name}")
    report = run_locked(job_name, make_holder_id(), get_config(ctx), JOBS[job_name])

    if report is None:
        console.print("[yellow]Job is already running elsewhere; skipped.[/yellow]")
        return

    console.print("[green]OK[/green] Job finished")
    print_json(report.to_dict())


@app.command("start")
def start_scheduler(ctx: typer.Context) -> None:
    """Start the scheduler service.

    Runs as a foreground process. Use Ctrl+C to stop.
    """
    config = get_config(ctx)
    if not config.scheduler.enabled:
        err_console.print("[red]Scheduler is disabled in the configuration.[/red]")
        raise typer.Exit(1)

    console.print("[bold]Starting scheduler service...[/bold]")
    console.print("[dim]Press Ctrl+C to stop[/dim]")
    console.print()

    service = SchedulerService(config, get_state(ctx).config_path)
    try:
        asyncio.run(service.start())
    except KeyboardInterrupt:
        console.print("[dim]Scheduler stopped.[/dim]")
