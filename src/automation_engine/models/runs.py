"""Run models: one execution attempt of a rule."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from automation_engine.utils import utc_now


class RunStatus(str, Enum):
    """Status of an automation run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.SKIPPED)


class TriggerSource(str, Enum):
    """What caused a run."""

    EVENT = "event"
    SCHEDULE = "schedule"
    WEBHOOK = "webhook"
    MANUAL = "manual"
    TEST = "test"


class ActionResult(str, Enum):
    """Synchronous outcome of one action."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    # Async sub-resource spawned; its own state decides the outcome
    DISPATCHED = "dispatched"


class SubResourceKind(str, Enum):
    WEBHOOK_DELIVERY = "webhook_delivery"
    AGENT_TASK = "agent_task"


class ActionEntry(BaseModel):
    """One entry in a run's append-only action log."""

    index: int
    type: str
    result: ActionResult
    error: str | None = None
    output: dict[str, Any] = Field(default_factory=dict)
    sub_resource_id: str | None = None
    sub_resource_kind: SubResourceKind | None = None

    @property
    def is_soft_failure(self) -> bool:
        return self.result == ActionResult.FAILED


class Run(BaseModel):
    """One execution attempt of a rule."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    rule_id: str
    tenant_id: str
    studio_id: str | None = None
    triggered_by_event_id: str | None = None
    trigger_source: TriggerSource
    trigger_data: dict[str, Any] = Field(default_factory=dict)
    chain_metadata: dict[str, Any] = Field(default_factory=dict)
    status: RunStatus = RunStatus.PENDING
    actions_executed: list[ActionEntry] = Field(default_factory=list)
    error_message: str | None = None
    started_at: datetime | None = None
    actions_dispatched_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def soft_failures(self) -> list[ActionEntry]:
        return [entry for entry in self.actions_executed if entry.is_soft_failure]
