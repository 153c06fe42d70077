"""Automation engine CLI - main entry point."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from pydantic import ValidationError

from automation_engine import __version__
from automation_engine.config import configure_logging, get_settings

from .helpers import console, get_engine, load_document, run_inline, status_style

app = typer.Typer(
    name="automation",
    help="Event-driven automation rules with signed webhook delivery.",
    add_completion=True,
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"[bold cyan]automation[/bold cyan] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
):
    """Automation engine - rules that react to events, schedules and webhooks.

    [bold]Quick Start:[/bold]

        automation rules add rule.yaml    Register a rule
        automation dispatch event.json    Publish an event and run matches
        automation runs list              Show recent runs
        automation serve                  Start the webhook API and workers
    """
    settings = get_settings()
    configure_logging(
        level=settings.log_level,
        format=settings.log_format,
        sanitize_logs=settings.sanitize_logs,
    )


@app.command()
def dispatch(
    path: Path = typer.Argument(..., help="Event document (JSON or YAML)"),
    execute: bool = typer.Option(
        True, "--execute/--no-execute", help="Execute matched runs inline"
    ),
):
    """Publish an event and dispatch it against enabled rules."""
    from automation_engine.models import Event

    try:
        event = Event.model_validate(load_document(path))
    except ValidationError as e:
        console.print(f"[red]Invalid event:[/red] {e}")
        raise typer.Exit(1)

    engine = get_engine()
    runs = engine.publish(event)
    if not runs:
        console.print("[yellow]No rules matched[/yellow]")
        return

    for run in runs:
        if execute:
            run = run_inline(engine, run)
        style = status_style(run.status.value)
        console.print(f"Run {run.id} (rule {run.rule_id}): [{style}]{run.status.value}[/{style}]")


@app.command()
def tick():
    """Fire schedule rules due in the current minute and execute them."""
    engine = get_engine()
    runs = engine.tick_schedules()
    for run in runs:
        run = run_inline(engine, run)
        console.print(f"Run {run.id} (rule {run.rule_id}): {run.status.value}")
    console.print(f"{len(runs)} scheduled run(s)")


@app.command("deliver-due")
def deliver_due():
    """Retry webhook deliveries whose backoff has elapsed."""
    deliveries = get_engine().deliver_due()
    for d in deliveries:
        style = status_style(d.status.value)
        console.print(
            f"Delivery {d.id[:12]} -> {d.url}: [{style}]{d.status.value}[/{style}] "
            f"(attempt {d.attempt_count})"
        )
    console.print(f"{len(deliveries)} delivery attempt(s)")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", "-p", help="Port"),
):
    """Serve the webhook API with background workers."""
    import uvicorn

    from automation_engine.api import create_app

    uvicorn.run(create_app(start_workers=True), host=host, port=port)


from .commands.rules import rules_app  # noqa: E402
from .commands.runs import runs_app  # noqa: E402

app.add_typer(rules_app, name="rules")
app.add_typer(runs_app, name="runs")
