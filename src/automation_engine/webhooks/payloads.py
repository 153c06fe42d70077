"""Outbound webhook body envelopes."""

from __future__ import annotations

from typing import Any

from automation_engine.models import Event, Rule, Run
from automation_engine.utils import to_iso


def build_event_payload(event: Event) -> dict[str, Any]:
    """Standard envelope describing an event and its subject."""
    data: dict[str, Any] = {}
    if event.subject is not None:
        data[event.subject.kind] = event.subject.payload()

    actor = None
    if event.actor is not None:
        actor = {"id": event.actor.id, "handle": event.actor.handle, "name": event.actor.name}

    return {
        "id": event.id,
        "type": event.event_type,
        "created_at": to_iso(event.created_at),
        "tenant": {"id": event.tenant.id, "subdomain": event.tenant.subdomain},
        "studio": event.studio.reference() if event.studio else None,
        "actor": actor,
        "data": data,
    }


def build_run_payload(run: Run, rule: Rule) -> dict[str, Any]:
    """Envelope for runs started without an event (schedule, webhook, manual)."""
    return {
        "id": run.id,
        "type": f"automation.{run.trigger_source.value}",
        "created_at": to_iso(run.created_at),
        "tenant": {"id": run.tenant_id},
        "studio": {"id": run.studio_id} if run.studio_id else None,
        "actor": None,
        "rule": {"id": rule.id, "name": rule.name},
        "data": run.trigger_data,
    }
