"""Default dispatcher for ``internal_action`` actions.

Built-in actions create a note, decision or commitment in the run's studio
by appending the corresponding ``*.created`` event. Appended events are
published back to the engine, so rules can react to records other rules
created (subject to chain protection).
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from automation_engine.models import Commitment, Decision, Event, Note, Studio, Tenant

if TYPE_CHECKING:
    from automation_engine.stores import EventLedger

logger = logging.getLogger(__name__)

InternalActionHandler = Callable[[dict[str, Any], dict[str, Any]], dict[str, Any]]

SUPPORTED_ACTIONS = ("create_note", "create_decision", "create_commitment")

# Accepted params per built-in action; the first is required
_PARAMS = {
    "create_note": ("text", "title"),
    "create_decision": ("question", "description", "deadline", "options"),
    "create_commitment": ("title", "description", "critical_mass", "deadline", "limit"),
}


class InternalActionRegistry:
    """Maps action names to handlers."""

    def __init__(
        self,
        ledger: EventLedger | None = None,
        publish: Callable[[Event], Any] | None = None,
    ):
        self.ledger = ledger
        self.publish = publish
        self._handlers: dict[str, InternalActionHandler] = {}

        if ledger is not None:
            self.register("create_note", self._create_note)
            self.register("create_decision", self._create_decision)
            self.register("create_commitment", self._create_commitment)

    def register(self, name: str, handler: InternalActionHandler) -> None:
        self._handlers[name] = handler

    @property
    def supported(self) -> list[str]:
        return sorted(self._handlers)

    def execute(self, action_name: str, params: dict[str, Any], scope: dict[str, Any]) -> dict:
        handler = self._handlers.get(action_name)
        if handler is None:
            return {
                "status": "failed",
                "error": (
                    f"Unsupported action: {action_name}. "
                    f"Supported actions: {', '.join(self.supported)}"
                ),
            }
        try:
            return handler(params, scope)
        except Exception as e:
            logger.error(f"Internal action {action_name} failed: {e}")
            return {"status": "failed", "error": str(e)}

    def _create_note(self, params: dict[str, Any], scope: dict[str, Any]) -> dict:
        values = _pick(params, "create_note")
        if "text" not in values:
            return _missing("text")
        text = str(values["text"])
        if values.get("title"):
            text = f"{values['title']}\n\n{text}"
        note = Note(id=str(uuid.uuid4()), text=text, studio_handle=scope.get("studio_handle"))
        return self._emit("note.created", note, scope, values)

    def _create_decision(self, params: dict[str, Any], scope: dict[str, Any]) -> dict:
        values = _pick(params, "create_decision")
        if "question" not in values:
            return _missing("question")
        decision = Decision(
            id=str(uuid.uuid4()),
            question=str(values["question"]),
            description=str(values.get("description", "")),
            studio_handle=scope.get("studio_handle"),
        )
        return self._emit("decision.created", decision, scope, values)

    def _create_commitment(self, params: dict[str, Any], scope: dict[str, Any]) -> dict:
        values = _pick(params, "create_commitment")
        if "title" not in values:
            return _missing("title")
        commitment = Commitment(
            id=str(uuid.uuid4()),
            title=str(values["title"]),
            description=str(values.get("description", "")),
            studio_handle=scope.get("studio_handle"),
        )
        return self._emit("commitment.created", commitment, scope, values)

    def _emit(self, event_type: str, subject, scope: dict[str, Any], values: dict) -> dict:
        event = Event(
            tenant=Tenant(id=scope["tenant_id"], subdomain=scope.get("tenant_subdomain") or ""),
            studio=Studio(
                id=scope["studio_id"],
                handle=scope.get("studio_handle") or "",
                name=scope.get("studio_name") or "",
            ),
            event_type=event_type,
            subject=subject,
            metadata={
                "automation_rule_id": scope.get("rule_id"),
                "automation_rule_run_id": scope.get("run_id"),
                "params": values,
            },
        )
        self.ledger.append(event)
        if self.publish is not None:
            self.publish(event)

        return {
            "status": "success",
            "resource_id": subject.id,
            "resource_path": subject.path(),
            "event_id": event.id,
        }


def _pick(params: dict[str, Any], action_name: str) -> dict[str, Any]:
    return {
        key: params[key] for key in _PARAMS[action_name] if params.get(key) not in (None, "")
    }


def _missing(param: str) -> dict:
    return {"status": "failed", "error": f"Missing required param: {param}"}
