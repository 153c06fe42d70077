"""Shared helpers for CLI modules."""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any

import typer
import yaml
from rich.console import Console

if TYPE_CHECKING:
    from automation_engine.engine import AutomationEngine
    from automation_engine.models import Run

console = Console()

_engine: AutomationEngine | None = None


def get_engine() -> AutomationEngine:
    """Engine without a worker pool: commands drive runs inline."""
    global _engine
    if _engine is None:
        from automation_engine.engine import AutomationEngine

        _engine = AutomationEngine()
    return _engine


def load_document(path: Path) -> Any:
    """Load a JSON or YAML file."""
    try:
        text = path.read_text()
    except OSError as e:
        console.print(f"[red]Cannot read {path}:[/red] {e}")
        raise typer.Exit(1)

    try:
        if path.suffix in (".yaml", ".yml"):
            return yaml.safe_load(text)
        return json.loads(text)
    except (ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid document {path}:[/red] {e}")
        raise typer.Exit(1)


def parse_inputs(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        inputs = json.loads(raw)
    except ValueError as e:
        console.print(f"[red]--inputs must be JSON:[/red] {e}")
        raise typer.Exit(1)
    if not isinstance(inputs, dict):
        console.print("[red]--inputs must be a JSON object[/red]")
        raise typer.Exit(1)
    return inputs


def status_style(status: str) -> str:
    return {
        "completed": "green",
        "success": "green",
        "running": "cyan",
        "pending": "yellow",
        "retrying": "yellow",
        "skipped": "dim",
        "failed": "red",
    }.get(status, "white")


def run_inline(engine: AutomationEngine, run: Run) -> Run:
    """Execute a run and attempt its deliveries once."""
    engine.execute(run.id)
    for delivery in engine.deliveries.pending_for_run(run.id):
        engine.deliver(delivery.id)
    return engine.get_run(run.id)
