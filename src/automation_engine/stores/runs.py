"""Run persistence with row-locked mutation."""

from __future__ import annotations

import json
import logging
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime
from typing import TYPE_CHECKING

from automation_engine.errors import RunNotFoundError
from automation_engine.models import ActionEntry, Run, RunStatus, TriggerSource
from automation_engine.utils import parse_datetime, to_iso

if TYPE_CHECKING:
    from automation_engine.state import DatabaseBackend

logger = logging.getLogger(__name__)


class RunStore:
    """Stores runs and serializes every mutation of a single run.

    All writes go through :meth:`locked`, which holds the run's row lock
    (``BEGIN IMMEDIATE`` on SQLite, ``SELECT ... FOR UPDATE`` on PostgreSQL)
    from read to write so concurrent completion callbacks cannot overwrite
    each other.
    """

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS automation_runs (
            id TEXT PRIMARY KEY,
            rule_id TEXT NOT NULL,
            tenant_id TEXT NOT NULL,
            studio_id TEXT,
            triggered_by_event_id TEXT,
            trigger_source TEXT NOT NULL,
            trigger_data TEXT NOT NULL,
            chain_metadata TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            actions_executed TEXT NOT NULL,
            error_message TEXT,
            started_at TEXT,
            actions_dispatched_at TEXT,
            completed_at TEXT,
            created_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_automation_runs_rule
        ON automation_runs(rule_id, created_at);

        CREATE INDEX IF NOT EXISTS idx_automation_runs_status
        ON automation_runs(tenant_id, status);
    """

    def __init__(self, backend: DatabaseBackend):
        self.backend = backend
        self.backend.executescript(self.SCHEMA)

    def create(self, run: Run) -> Run:
        with self.backend.transaction():
            self.backend.execute(
                """
                INSERT INTO automation_runs
                (id, rule_id, tenant_id, studio_id, triggered_by_event_id,
                 trigger_source, trigger_data, chain_metadata, status,
                 actions_executed, error_message, started_at,
                 actions_dispatched_at, completed_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    run.id,
                    run.rule_id,
                    run.tenant_id,
                    run.studio_id,
                    run.triggered_by_event_id,
                    run.trigger_source.value,
                    json.dumps(run.trigger_data, default=str),
                    json.dumps(run.chain_metadata),
                    run.status.value,
                    self._dump_actions(run.actions_executed),
                    run.error_message,
                    to_iso(run.started_at),
                    to_iso(run.actions_dispatched_at),
                    to_iso(run.completed_at),
                    to_iso(run.created_at),
                ),
            )
        logger.info(f"Created run {run.id} for rule {run.rule_id} ({run.trigger_source.value})")
        return run

    def get(self, run_id: str) -> Run | None:
        row = self.backend.fetchone(
            "SELECT * FROM automation_runs WHERE id = ?",
            (run_id,),
        )
        return self._row_to_run(row) if row else None

    @contextmanager
    def locked(self, run_id: str) -> Generator[Run, None, None]:
        """Yield the run under its row lock and persist it on clean exit.

        Raises:
            RunNotFoundError: If the run does not exist.
        """
        with self.backend.transaction(write_lock=True):
            row = self.backend.fetchone(
                "SELECT * FROM automation_runs WHERE id = ?" + self.backend.lock_clause,
                (run_id,),
            )
            if not row:
                raise RunNotFoundError(run_id)
            run = self._row_to_run(row)
            yield run
            self._update(run)

    def append_action(self, run_id: str, entry: ActionEntry) -> Run:
        with self.locked(run_id) as run:
            run.actions_executed.append(entry)
        return run

    def count_recent(self, rule_id: str, since: datetime | None = None) -> int:
        """Count a rule's runs, optionally only those created after ``since``."""
        if since is None:
            row = self.backend.fetchone(
                "SELECT COUNT(*) as count FROM automation_runs WHERE rule_id = ?",
                (rule_id,),
            )
        else:
            row = self.backend.fetchone(
                """
                SELECT COUNT(*) as count FROM automation_runs
                WHERE rule_id = ? AND created_at > ?
                """,
                (rule_id, to_iso(since)),
            )
        return row["count"] if row else 0

    def list_runs(
        self,
        rule_id: str | None = None,
        tenant_id: str | None = None,
        status: RunStatus | None = None,
        limit: int = 50,
    ) -> list[Run]:
        """Query runs by rule, tenant and status, newest first."""
        conditions = []
        params: list = []

        if rule_id:
            conditions.append("rule_id = ?")
            params.append(rule_id)

        if tenant_id:
            conditions.append("tenant_id = ?")
            params.append(tenant_id)

        if status:
            conditions.append("status = ?")
            params.append(status.value)

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        rows = self.backend.fetchall(
            f"""
            SELECT * FROM automation_runs
            WHERE {where_clause}
            ORDER BY created_at DESC
            LIMIT ?
            """,
            tuple(params + [limit]),
        )
        return [self._row_to_run(row) for row in rows]

    def _update(self, run: Run) -> None:
        self.backend.execute(
            """
            UPDATE automation_runs
            SET status = ?, actions_executed = ?, error_message = ?,
                started_at = ?, actions_dispatched_at = ?, completed_at = ?
            WHERE id = ?
            """,
            (
                run.status.value,
                self._dump_actions(run.actions_executed),
                run.error_message,
                to_iso(run.started_at),
                to_iso(run.actions_dispatched_at),
                to_iso(run.completed_at),
                run.id,
            ),
        )

    def _dump_actions(self, entries: list[ActionEntry]) -> str:
        return json.dumps([entry.model_dump(mode="json") for entry in entries])

    def _row_to_run(self, row: dict) -> Run:
        return Run(
            id=row["id"],
            rule_id=row["rule_id"],
            tenant_id=row["tenant_id"],
            studio_id=row["studio_id"],
            triggered_by_event_id=row["triggered_by_event_id"],
            trigger_source=TriggerSource(row["trigger_source"]),
            trigger_data=json.loads(row["trigger_data"]),
            chain_metadata=json.loads(row["chain_metadata"]),
            status=RunStatus(row["status"]),
            actions_executed=[ActionEntry(**e) for e in json.loads(row["actions_executed"])],
            error_message=row["error_message"],
            started_at=parse_datetime(row["started_at"]),
            actions_dispatched_at=parse_datetime(row["actions_dispatched_at"]),
            completed_at=parse_datetime(row["completed_at"]),
            created_at=parse_datetime(row["created_at"]),
        )
