"""Append-only event ledger."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from automation_engine.models import Event
from automation_engine.utils import to_iso

if TYPE_CHECKING:
    from automation_engine.state import DatabaseBackend

logger = logging.getLogger(__name__)


class EventLedger:
    """Stores domain events. Events are never updated once appended."""

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS automation_events (
            id TEXT PRIMARY KEY,
            tenant_id TEXT NOT NULL,
            studio_id TEXT,
            event_type TEXT NOT NULL,
            payload TEXT NOT NULL,
            created_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_automation_events_scope
        ON automation_events(tenant_id, event_type);
    """

    def __init__(self, backend: DatabaseBackend):
        self.backend = backend
        self.backend.executescript(self.SCHEMA)

    def append(self, event: Event) -> Event:
        with self.backend.transaction():
            self.backend.execute(
                """
                INSERT INTO automation_events
                (id, tenant_id, studio_id, event_type, payload, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    event.id,
                    event.tenant_id,
                    event.studio_id,
                    event.event_type,
                    event.model_dump_json(by_alias=True),
                    to_iso(event.created_at),
                ),
            )
        logger.debug(f"Appended event {event.id} ({event.event_type})")
        return event

    def get(self, event_id: str) -> Event | None:
        row = self.backend.fetchone(
            "SELECT payload FROM automation_events WHERE id = ?",
            (event_id,),
        )
        if not row:
            return None
        return Event.model_validate_json(row["payload"])

    def list_events(
        self,
        tenant_id: str,
        event_type: str | None = None,
        studio_id: str | None = None,
        limit: int = 50,
    ) -> list[Event]:
        """List a tenant's events, newest first."""
        conditions = ["tenant_id = ?"]
        params: list = [tenant_id]

        if event_type:
            conditions.append("event_type = ?")
            params.append(event_type)

        if studio_id:
            conditions.append("studio_id = ?")
            params.append(studio_id)

        rows = self.backend.fetchall(
            f"""
            SELECT payload FROM automation_events
            WHERE {" AND ".join(conditions)}
            ORDER BY created_at DESC
            LIMIT ?
            """,
            tuple(params + [limit]),
        )
        return [Event.model_validate_json(row["payload"]) for row in rows]
