"""Run commands: list and show."""

from __future__ import annotations

import json

import typer
from rich.table import Table

from automation_engine.errors import RunNotFoundError
from automation_engine.models import RunStatus

from ..helpers import console, get_engine, status_style

runs_app = typer.Typer(help="Inspect automation runs")


@runs_app.command("list")
def runs_list(
    rule: str = typer.Option(None, "--rule", "-r", help="Filter by rule ID"),
    tenant: str = typer.Option(None, "--tenant", "-t", help="Filter by tenant"),
    status: str = typer.Option(None, "--status", "-s", help="Filter by status"),
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum runs to show"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """List recent runs."""
    try:
        run_status = RunStatus(status) if status else None
    except ValueError:
        console.print(f"[red]Invalid status:[/red] {status}")
        raise typer.Exit(1)

    runs = get_engine().list_runs(rule_id=rule, tenant_id=tenant, status=run_status, limit=limit)

    if json_output:
        print(json.dumps([r.model_dump(mode="json") for r in runs], indent=2))
        return

    if not runs:
        console.print("[yellow]No automation runs[/yellow]")
        return

    table = Table(title="Automation Runs")
    table.add_column("ID", style="cyan")
    table.add_column("Rule")
    table.add_column("Source")
    table.add_column("Status")
    table.add_column("Actions", justify="right")
    table.add_column("Created")
    table.add_column("Error")

    for r in runs:
        style = status_style(r.status.value)
        table.add_row(
            r.id[:12],
            r.rule_id[:12],
            r.trigger_source.value,
            f"[{style}]{r.status.value}[/{style}]",
            str(len(r.actions_executed)),
            str(r.created_at)[:19],
            (r.error_message or "")[:60],
        )

    console.print(table)


@runs_app.command("show")
def runs_show(run_id: str = typer.Argument(..., help="Run ID")):
    """Show a run with its action log and deliveries."""
    engine = get_engine()
    try:
        run = engine.get_run(run_id)
    except RunNotFoundError:
        console.print(f"[red]Run not found:[/red] {run_id}")
        raise typer.Exit(1)

    data = run.model_dump(mode="json")
    data["deliveries"] = [d.model_dump(mode="json") for d in engine.deliveries.for_run(run_id)]
    data["agent_tasks"] = [t.model_dump(mode="json") for t in engine.tasks.for_run(run_id)]
    print(json.dumps(data, indent=2))
