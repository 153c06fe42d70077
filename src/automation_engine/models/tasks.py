"""Agent task records spawned by runs."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from automation_engine.utils import utc_now


class AgentTaskStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            AgentTaskStatus.COMPLETED,
            AgentTaskStatus.FAILED,
            AgentTaskStatus.CANCELLED,
        )


class AgentTask(BaseModel):
    """Engine-side ledger entry for a spawned agent task."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str | None = None
    rule_id: str | None = None
    tenant_id: str
    agent_id: str
    task: str
    max_steps: int
    initiated_by_id: str | None = None
    status: AgentTaskStatus = AgentTaskStatus.QUEUED
    error: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None
