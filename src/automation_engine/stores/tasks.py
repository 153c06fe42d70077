"""Agent task persistence."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from automation_engine.models import AgentTask, AgentTaskStatus
from automation_engine.utils import parse_datetime, to_iso

if TYPE_CHECKING:
    from automation_engine.state import DatabaseBackend

logger = logging.getLogger(__name__)

_OPEN_STATUSES = (AgentTaskStatus.QUEUED.value, AgentTaskStatus.RUNNING.value)


class AgentTaskStore:
    SCHEMA = """
        CREATE TABLE IF NOT EXISTS automation_agent_tasks (
            id TEXT PRIMARY KEY,
            run_id TEXT,
            rule_id TEXT,
            tenant_id TEXT NOT NULL,
            agent_id TEXT NOT NULL,
            task TEXT NOT NULL,
            max_steps INTEGER NOT NULL,
            initiated_by_id TEXT,
            status TEXT NOT NULL DEFAULT 'queued',
            error TEXT,
            created_at TEXT NOT NULL,
            completed_at TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_automation_agent_tasks_run
        ON automation_agent_tasks(run_id);
    """

    def __init__(self, backend: DatabaseBackend):
        self.backend = backend
        self.backend.executescript(self.SCHEMA)

    def create(self, task: AgentTask) -> AgentTask:
        with self.backend.transaction():
            self.backend.execute(
                """
                INSERT INTO automation_agent_tasks
                (id, run_id, rule_id, tenant_id, agent_id, task, max_steps,
                 initiated_by_id, status, error, created_at, completed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task.id,
                    task.run_id,
                    task.rule_id,
                    task.tenant_id,
                    task.agent_id,
                    task.task,
                    task.max_steps,
                    task.initiated_by_id,
                    task.status.value,
                    task.error,
                    to_iso(task.created_at),
                    to_iso(task.completed_at),
                ),
            )
        return task

    def get(self, task_id: str) -> AgentTask | None:
        row = self.backend.fetchone(
            "SELECT * FROM automation_agent_tasks WHERE id = ?",
            (task_id,),
        )
        return self._row_to_task(row) if row else None

    def for_run(self, run_id: str) -> list[AgentTask]:
        rows = self.backend.fetchall(
            "SELECT * FROM automation_agent_tasks WHERE run_id = ? ORDER BY created_at",
            (run_id,),
        )
        return [self._row_to_task(row) for row in rows]

    def update_status(
        self,
        task_id: str,
        status: AgentTaskStatus,
        error: str | None = None,
        completed_at: datetime | None = None,
    ) -> bool:
        """Move an open task to ``status``. Terminal tasks are left untouched.

        Returns True if the task was updated.
        """
        with self.backend.transaction():
            cursor = self.backend.execute(
                """
                UPDATE automation_agent_tasks
                SET status = ?, error = ?, completed_at = ?
                WHERE id = ? AND status IN (?, ?)
                """,
                (status.value, error, to_iso(completed_at), task_id, *_OPEN_STATUSES),
            )
        return cursor.rowcount > 0

    def _row_to_task(self, row: dict) -> AgentTask:
        return AgentTask(
            id=row["id"],
            run_id=row["run_id"],
            rule_id=row["rule_id"],
            tenant_id=row["tenant_id"],
            agent_id=row["agent_id"],
            task=row["task"],
            max_steps=row["max_steps"],
            initiated_by_id=row["initiated_by_id"],
            status=AgentTaskStatus(row["status"]),
            error=row["error"],
            created_at=parse_datetime(row["created_at"]),
            completed_at=parse_datetime(row["completed_at"]),
        )
