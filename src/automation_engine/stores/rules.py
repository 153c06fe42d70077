"""Rule persistence."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import TYPE_CHECKING

from automation_engine.models import Condition, Rule, TriggerType
from automation_engine.models.rules import rule_body_adapter
from automation_engine.utils import parse_datetime, to_iso

if TYPE_CHECKING:
    from automation_engine.state import DatabaseBackend

logger = logging.getLogger(__name__)


class RuleStore:
    """Reads rules for matching and applies the engine's counter updates.

    Rule definitions belong to their owners; the engine only bumps
    ``execution_count`` and ``last_executed_at``.
    """

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS automation_rules (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            tenant_id TEXT NOT NULL,
            studio_id TEXT,
            target_agent_id TEXT,
            created_by_id TEXT,
            trigger_type TEXT NOT NULL,
            event_type TEXT,
            trigger_config TEXT NOT NULL,
            conditions TEXT NOT NULL,
            body TEXT NOT NULL,
            enabled INTEGER NOT NULL DEFAULT 1,
            execution_count INTEGER NOT NULL DEFAULT 0,
            last_executed_at TEXT,
            webhook_path TEXT UNIQUE,
            webhook_secret TEXT,
            created_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_automation_rules_match
        ON automation_rules(tenant_id, trigger_type, event_type);
    """

    def __init__(self, backend: DatabaseBackend):
        self.backend = backend
        self.backend.executescript(self.SCHEMA)

    def save(self, rule: Rule) -> Rule:
        """Insert a rule or replace its definition."""
        with self.backend.transaction():
            self.backend.execute(
                """
                INSERT INTO automation_rules
                (id, name, tenant_id, studio_id, target_agent_id, created_by_id,
                 trigger_type, event_type, trigger_config, conditions, body,
                 enabled, execution_count, last_executed_at, webhook_path,
                 webhook_secret, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                    name = excluded.name,
                    studio_id = excluded.studio_id,
                    target_agent_id = excluded.target_agent_id,
                    trigger_type = excluded.trigger_type,
                    event_type = excluded.event_type,
                    trigger_config = excluded.trigger_config,
                    conditions = excluded.conditions,
                    body = excluded.body,
                    enabled = excluded.enabled,
                    webhook_path = excluded.webhook_path,
                    webhook_secret = excluded.webhook_secret
                """,
                (
                    rule.id,
                    rule.name,
                    rule.tenant_id,
                    rule.studio_id,
                    rule.target_agent_id,
                    rule.created_by_id,
                    rule.trigger_type.value,
                    rule.event_type,
                    json.dumps(rule.trigger_config),
                    json.dumps([c.model_dump() for c in rule.conditions]),
                    json.dumps(rule.body.model_dump(mode="json")),
                    int(rule.enabled),
                    rule.execution_count,
                    to_iso(rule.last_executed_at),
                    rule.webhook_path,
                    rule.webhook_secret,
                    to_iso(rule.created_at),
                ),
            )
        logger.debug(f"Saved rule {rule.id} ({rule.name})")
        return rule

    def get(self, rule_id: str) -> Rule | None:
        row = self.backend.fetchone(
            "SELECT * FROM automation_rules WHERE id = ?",
            (rule_id,),
        )
        return self._row_to_rule(row) if row else None

    def get_by_webhook_path(self, webhook_path: str) -> Rule | None:
        row = self.backend.fetchone(
            "SELECT * FROM automation_rules WHERE webhook_path = ? AND trigger_type = ?",
            (webhook_path, TriggerType.WEBHOOK.value),
        )
        return self._row_to_rule(row) if row else None

    def list_rules(
        self,
        tenant_id: str | None = None,
        trigger_type: TriggerType | None = None,
        enabled: bool | None = None,
    ) -> list[Rule]:
        conditions = []
        params: list = []

        if tenant_id:
            conditions.append("tenant_id = ?")
            params.append(tenant_id)

        if trigger_type:
            conditions.append("trigger_type = ?")
            params.append(trigger_type.value)

        if enabled is not None:
            conditions.append("enabled = ?")
            params.append(int(enabled))

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        rows = self.backend.fetchall(
            f"SELECT * FROM automation_rules WHERE {where_clause} ORDER BY created_at",
            tuple(params),
        )
        return [self._row_to_rule(row) for row in rows]

    def enabled_event_rules(
        self, tenant_id: str, event_type: str, studio_id: str | None
    ) -> list[Rule]:
        """Enabled event rules for this event type whose scope covers the studio.

        A rule without a studio is tenant-wide and matches every studio.
        """
        rows = self.backend.fetchall(
            """
            SELECT * FROM automation_rules
            WHERE enabled = 1
              AND trigger_type = ?
              AND tenant_id = ?
              AND event_type = ?
              AND (studio_id IS NULL OR studio_id = ?)
            ORDER BY created_at
            """,
            (TriggerType.EVENT.value, tenant_id, event_type, studio_id),
        )
        return [self._row_to_rule(row) for row in rows]

    def enabled_schedule_rules(self) -> list[Rule]:
        return self.list_rules(trigger_type=TriggerType.SCHEDULE, enabled=True)

    def set_enabled(self, rule_id: str, enabled: bool) -> bool:
        with self.backend.transaction():
            cursor = self.backend.execute(
                "UPDATE automation_rules SET enabled = ? WHERE id = ?",
                (int(enabled), rule_id),
            )
        return cursor.rowcount > 0

    def increment_execution_count(self, rule_id: str, executed_at: datetime) -> None:
        """Atomically bump the execution counter and last execution time."""
        with self.backend.transaction():
            self.backend.execute(
                """
                UPDATE automation_rules
                SET execution_count = execution_count + 1, last_executed_at = ?
                WHERE id = ?
                """,
                (to_iso(executed_at), rule_id),
            )

    def claim_schedule_slot(self, rule_id: str, slot_start: datetime, now: datetime) -> bool:
        """Stamp ``last_executed_at`` unless the rule already ran in this slot.

        Returns True if this caller won the slot.
        """
        with self.backend.transaction():
            cursor = self.backend.execute(
                """
                UPDATE automation_rules
                SET last_executed_at = ?
                WHERE id = ? AND (last_executed_at IS NULL OR last_executed_at < ?)
                """,
                (to_iso(now), rule_id, to_iso(slot_start)),
            )
        return cursor.rowcount > 0

    def _row_to_rule(self, row: dict) -> Rule:
        return Rule(
            id=row["id"],
            name=row["name"],
            tenant_id=row["tenant_id"],
            studio_id=row["studio_id"],
            target_agent_id=row["target_agent_id"],
            created_by_id=row["created_by_id"],
            trigger_type=TriggerType(row["trigger_type"]),
            trigger_config=json.loads(row["trigger_config"]),
            conditions=[Condition(**c) for c in json.loads(row["conditions"])],
            body=rule_body_adapter.validate_python(json.loads(row["body"])),
            enabled=bool(row["enabled"]),
            execution_count=row["execution_count"],
            last_executed_at=parse_datetime(row["last_executed_at"]),
            webhook_path=row["webhook_path"],
            webhook_secret=row["webhook_secret"],
            created_at=parse_datetime(row["created_at"]),
        )
