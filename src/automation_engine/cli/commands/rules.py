"""Rule commands: add, list, enable/disable, test and trigger."""

from __future__ import annotations

import json
from pathlib import Path

import typer
from rich.table import Table

from automation_engine.errors import AutomationError

from ..helpers import console, get_engine, load_document, parse_inputs, run_inline, status_style

rules_app = typer.Typer(help="Manage automation rules")


@rules_app.command("add")
def rules_add(
    path: Path = typer.Argument(..., help="Rule definition (JSON or YAML)"),
):
    """Create or update a rule from a definition file."""
    definition = load_document(path)
    if not isinstance(definition, dict):
        console.print("[red]Rule definition must be a mapping[/red]")
        raise typer.Exit(1)

    try:
        rule = get_engine().add_rule(definition)
    except AutomationError as e:
        console.print(f"[red]Invalid rule:[/red] {e.message}")
        raise typer.Exit(1)

    console.print(f"[green]Saved rule[/green] {rule.id} ({rule.name})")
    if rule.webhook_path:
        console.print(f"  Webhook path: /hooks/{rule.webhook_path}")


@rules_app.command("list")
def rules_list(
    tenant: str = typer.Option(None, "--tenant", "-t", help="Filter by tenant"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """List rules."""
    rules = get_engine().rules.list_rules(tenant_id=tenant)

    if json_output:
        print(json.dumps([r.model_dump(mode="json") for r in rules], indent=2))
        return

    if not rules:
        console.print("[yellow]No automation rules[/yellow]")
        return

    table = Table(title="Automation Rules")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Trigger")
    table.add_column("Enabled")
    table.add_column("Runs", justify="right")
    table.add_column("Last Run")

    for r in rules:
        trigger = r.trigger_type.value
        if r.event_type:
            trigger = f"{trigger}:{r.event_type}"
        elif r.cron:
            trigger = f"{trigger}:{r.cron}"
        table.add_row(
            r.id[:12],
            r.name,
            trigger,
            "[green]yes[/green]" if r.enabled else "[yellow]no[/yellow]",
            str(r.execution_count),
            str(r.last_executed_at)[:19] if r.last_executed_at else "-",
        )

    console.print(table)


def _set_enabled(rule_id: str, enabled: bool) -> None:
    if not get_engine().rules.set_enabled(rule_id, enabled):
        console.print(f"[red]Rule not found:[/red] {rule_id}")
        raise typer.Exit(1)
    console.print(f"Rule {rule_id} {'enabled' if enabled else 'disabled'}")


@rules_app.command("enable")
def rules_enable(rule_id: str = typer.Argument(..., help="Rule ID")):
    """Enable a rule."""
    _set_enabled(rule_id, True)


@rules_app.command("disable")
def rules_disable(rule_id: str = typer.Argument(..., help="Rule ID")):
    """Disable a rule."""
    _set_enabled(rule_id, False)


@rules_app.command("test")
def rules_test(
    rule_id: str = typer.Argument(..., help="Rule ID"),
    inputs: str = typer.Option(None, "--inputs", "-i", help="JSON object of inputs"),
):
    """Run a rule once inline, including its webhook deliveries."""
    try:
        result = get_engine().test_rule(rule_id, parse_inputs(inputs))
    except AutomationError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1)

    style = status_style(result["status"])
    console.print(f"Run {result['run_id']}: [{style}]{result['status']}[/{style}]")
    if result["error_message"]:
        console.print(f"  {result['error_message']}")
    for entry in result["actions_executed"]:
        line = f"  [{entry['index']}] {entry['type']}: {entry['result']}"
        if entry.get("error"):
            line += f" ({entry['error']})"
        console.print(line)
    for d in result["deliveries"]:
        console.print(f"  delivery {d['id'][:12]} -> {d['url']}: {d['status']}")


@rules_app.command("trigger")
def rules_trigger(
    rule_id: str = typer.Argument(..., help="Rule ID"),
    inputs: str = typer.Option(None, "--inputs", "-i", help="JSON object of inputs"),
):
    """Trigger a rule manually and execute the run inline."""
    engine = get_engine()
    try:
        run = engine.trigger_manual(rule_id, parse_inputs(inputs))
    except AutomationError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1)

    run = run_inline(engine, run)
    style = status_style(run.status.value)
    console.print(f"Run {run.id}: [{style}]{run.status.value}[/{style}]")
