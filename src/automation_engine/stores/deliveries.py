"""Webhook delivery persistence."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import TYPE_CHECKING

from automation_engine.models import DeliveryStatus, WebhookDelivery
from automation_engine.utils import parse_datetime, to_iso

if TYPE_CHECKING:
    from automation_engine.state import DatabaseBackend

logger = logging.getLogger(__name__)


class DeliveryStore:
    SCHEMA = """
        CREATE TABLE IF NOT EXISTS automation_webhook_deliveries (
            id TEXT PRIMARY KEY,
            run_id TEXT NOT NULL,
            rule_id TEXT NOT NULL,
            url TEXT NOT NULL,
            method TEXT NOT NULL DEFAULT 'POST',
            request_body TEXT NOT NULL,
            headers TEXT,
            secret TEXT,
            event_type TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            attempt_count INTEGER NOT NULL DEFAULT 0,
            next_retry_at TEXT,
            response_code INTEGER,
            response_body TEXT,
            error_message TEXT,
            delivered_at TEXT,
            created_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_automation_deliveries_run
        ON automation_webhook_deliveries(run_id);

        CREATE INDEX IF NOT EXISTS idx_automation_deliveries_retry
        ON automation_webhook_deliveries(status, next_retry_at);
    """

    def __init__(self, backend: DatabaseBackend):
        self.backend = backend
        self.backend.executescript(self.SCHEMA)

    def create(self, delivery: WebhookDelivery) -> WebhookDelivery:
        with self.backend.transaction():
            self.backend.execute(
                """
                INSERT INTO automation_webhook_deliveries
                (id, run_id, rule_id, url, method, request_body, headers, secret,
                 event_type, status, attempt_count, next_retry_at, response_code,
                 response_body, error_message, delivered_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    delivery.id,
                    delivery.run_id,
                    delivery.rule_id,
                    delivery.url,
                    delivery.method,
                    delivery.request_body,
                    json.dumps(delivery.headers),
                    delivery.secret,
                    delivery.event_type,
                    delivery.status.value,
                    delivery.attempt_count,
                    to_iso(delivery.next_retry_at),
                    delivery.response_code,
                    delivery.response_body,
                    delivery.error_message,
                    to_iso(delivery.delivered_at),
                    to_iso(delivery.created_at),
                ),
            )
        return delivery

    def get(self, delivery_id: str) -> WebhookDelivery | None:
        row = self.backend.fetchone(
            "SELECT * FROM automation_webhook_deliveries WHERE id = ?",
            (delivery_id,),
        )
        return self._row_to_delivery(row) if row else None

    def for_run(self, run_id: str) -> list[WebhookDelivery]:
        rows = self.backend.fetchall(
            "SELECT * FROM automation_webhook_deliveries WHERE run_id = ? ORDER BY created_at",
            (run_id,),
        )
        return [self._row_to_delivery(row) for row in rows]

    def save_attempt(self, delivery: WebhookDelivery, expected_attempt_count: int) -> bool:
        """Persist an attempt's outcome if no other attempt was recorded meanwhile.

        Returns False when ``attempt_count`` moved on since it was read.
        """
        with self.backend.transaction():
            cursor = self.backend.execute(
                """
                UPDATE automation_webhook_deliveries
                SET status = ?, attempt_count = ?, next_retry_at = ?,
                    response_code = ?, response_body = ?, error_message = ?,
                    delivered_at = ?
                WHERE id = ? AND attempt_count = ?
                """,
                (
                    delivery.status.value,
                    delivery.attempt_count,
                    to_iso(delivery.next_retry_at),
                    delivery.response_code,
                    delivery.response_body,
                    delivery.error_message,
                    to_iso(delivery.delivered_at),
                    delivery.id,
                    expected_attempt_count,
                ),
            )
        return cursor.rowcount > 0

    def due_for_retry(self, now: datetime, limit: int = 100) -> list[WebhookDelivery]:
        rows = self.backend.fetchall(
            """
            SELECT * FROM automation_webhook_deliveries
            WHERE status = ? AND next_retry_at <= ?
            ORDER BY next_retry_at
            LIMIT ?
            """,
            (DeliveryStatus.RETRYING.value, to_iso(now), limit),
        )
        return [self._row_to_delivery(row) for row in rows]

    def pending_for_run(self, run_id: str) -> list[WebhookDelivery]:
        return [d for d in self.for_run(run_id) if not d.status.is_terminal]

    def _row_to_delivery(self, row: dict) -> WebhookDelivery:
        return WebhookDelivery(
            id=row["id"],
            run_id=row["run_id"],
            rule_id=row["rule_id"],
            url=row["url"],
            method=row["method"],
            request_body=row["request_body"],
            headers=json.loads(row["headers"]) if row["headers"] else {},
            secret=row["secret"],
            event_type=row["event_type"],
            status=DeliveryStatus(row["status"]),
            attempt_count=row["attempt_count"],
            next_retry_at=parse_datetime(row["next_retry_at"]),
            response_code=row["response_code"],
            response_body=row["response_body"],
            error_message=row["error_message"],
            delivered_at=parse_datetime(row["delivered_at"]),
            created_at=parse_datetime(row["created_at"]),
        )
