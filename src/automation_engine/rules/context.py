"""Evaluation context built from events and trigger data.

Conditions and templates both read values out of the same nested mapping,
addressed by dotted paths such as ``subject.title`` or ``payload.data.id``.
"""

from __future__ import annotations

from typing import Any

from automation_engine.models import Event
from automation_engine.utils import to_iso


def resolve_field_path(path: str, context: dict[str, Any]) -> Any:
    """Walk ``context`` along a dotted path.

    Returns None as soon as a segment is missing or the current value is not
    a mapping.
    """
    current: Any = context
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
        if current is None:
            return None
    return current


def context_from_event(event: Event) -> dict[str, Any]:
    """Build the template/condition context for an event."""
    subject = event.subject
    subject_context = None
    if subject is not None:
        subject_context = {
            "id": subject.id,
            "type": subject.kind,
            "path": subject.path(),
            "title": subject.title(),
            "text": subject.body(),
        }

    return {
        "event": {
            "type": event.event_type,
            "actor": event.actor.reference() if event.actor else None,
            "metadata": dict(event.metadata),
            "created_at": to_iso(event.created_at),
        },
        "subject": subject_context,
        "studio": event.studio.reference() if event.studio else None,
    }


def context_from_trigger_data(trigger_data: dict[str, Any]) -> dict[str, Any]:
    """Build a context for runs without an event (webhook, schedule, manual)."""
    context: dict[str, Any] = {}

    payload = trigger_data.get("payload")
    if isinstance(payload, dict):
        context["payload"] = payload
    elif isinstance(payload, str):
        context["payload"] = {"raw": payload}

    inputs = trigger_data.get("inputs")
    if isinstance(inputs, dict):
        context["inputs"] = inputs

    context["webhook"] = {
        "path": trigger_data.get("webhook_path"),
        "received_at": trigger_data.get("received_at"),
        "source_ip": trigger_data.get("source_ip"),
    }
    return context
