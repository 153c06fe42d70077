"""Signed outbound webhook delivery with retry/backoff.

Each call to :meth:`DeliveryService.deliver` performs at most one HTTP
attempt. Failed attempts are rescheduled along ``RETRY_DELAYS`` and picked
up again by :meth:`DeliveryService.deliver_due`.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

import requests

from automation_engine.http import get_sync_client
from automation_engine.models import DeliveryStatus, Rule, Run, WebhookDelivery
from automation_engine.utils import truncate, utc_now

from .signing import (
    DELIVERY_HEADER,
    EVENT_HEADER,
    PROTECTED_HEADERS,
    RUN_HEADER,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    signature_header,
)

if TYPE_CHECKING:
    from automation_engine.stores import DeliveryStore, RuleStore

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 5
RETRY_DELAYS = [
    timedelta(minutes=1),
    timedelta(minutes=5),
    timedelta(minutes=30),
    timedelta(hours=2),
    timedelta(hours=24),
]
ALLOWED_METHODS = ("POST", "PUT", "PATCH")
RESPONSE_BODY_LIMIT = 1000

# Called with the owning run id after every delivery state change
StateListener = Callable[[str], Any]


def retry_delay(attempt_count: int) -> timedelta:
    """Delay before the next attempt after ``attempt_count`` failed attempts."""
    index = min(max(attempt_count, 1), len(RETRY_DELAYS)) - 1
    return RETRY_DELAYS[index]


class DeliveryService:
    """Creates webhook deliveries and performs their HTTP attempts."""

    def __init__(
        self,
        deliveries: DeliveryStore,
        rules: RuleStore,
        timeout: float = 30.0,
        on_state_change: StateListener | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize delivery service.

        Args:
            deliveries: Delivery persistence
            rules: Rule store, used to skip deliveries of disabled rules
            timeout: Per-request timeout in seconds
            on_state_change: Listener notified with the run id on every state change
            clock: Source of the current time
        """
        self.deliveries = deliveries
        self.rules = rules
        self.timeout = timeout
        self.on_state_change = on_state_change
        self.clock = clock

    def create(
        self,
        run: Run,
        rule: Rule,
        url: str,
        body: str,
        secret: str,
        event_type: str,
        method: str = "POST",
        headers: dict[str, str] | None = None,
    ) -> WebhookDelivery:
        """Record a pending delivery owned by ``run``."""
        method = (method or "POST").upper()
        if method not in ALLOWED_METHODS:
            method = "POST"

        custom_headers = {
            str(k): str(v)
            for k, v in (headers or {}).items()
            if str(k).lower() not in PROTECTED_HEADERS
        }

        delivery = WebhookDelivery(
            run_id=run.id,
            rule_id=rule.id,
            url=url,
            method=method,
            request_body=body,
            headers=custom_headers,
            secret=secret,
            event_type=event_type,
            created_at=self.clock(),
        )
        self.deliveries.create(delivery)
        logger.info(f"Created delivery {delivery.id} for run {run.id} -> {url}")
        return delivery

    def build_headers(self, delivery: WebhookDelivery, timestamp: str) -> dict[str, str]:
        headers = dict(delivery.headers)
        headers.update(
            {
                "Content-Type": "application/json",
                EVENT_HEADER: delivery.event_type,
                TIMESTAMP_HEADER: timestamp,
                SIGNATURE_HEADER: signature_header(
                    delivery.request_body, timestamp, delivery.secret or ""
                ),
                DELIVERY_HEADER: delivery.id,
                RUN_HEADER: delivery.run_id,
            }
        )
        return headers

    def deliver(self, delivery_id: str, allow_disabled: bool = False) -> WebhookDelivery | None:
        """Perform one delivery attempt and record its outcome.

        Terminal deliveries are left untouched, and so are deliveries whose
        rule is disabled unless ``allow_disabled`` is set (rule tests).
        """
        delivery = self.deliveries.get(delivery_id)
        if delivery is None:
            logger.warning(f"Delivery {delivery_id} not found")
            return None

        if delivery.status.is_terminal:
            return delivery

        rule = self.rules.get(delivery.rule_id)
        if rule is None or (not rule.enabled and not allow_disabled):
            logger.info(f"Skipping delivery {delivery.id}: rule {delivery.rule_id} is disabled")
            return delivery

        expected_attempts = delivery.attempt_count
        now = self.clock()

        if not delivery.secret:
            # Nothing to sign with; retrying cannot help
            delivery.attempt_count = expected_attempts + 1
            delivery.status = DeliveryStatus.FAILED
            delivery.next_retry_at = None
            delivery.error_message = "No signing secret configured"
            return self._record(delivery, expected_attempts)

        timestamp = str(int(now.timestamp()))
        headers = self.build_headers(delivery, timestamp)
        client = get_sync_client()

        error: str | None = None
        start = time.monotonic()
        try:
            response = client.request(
                delivery.method,
                delivery.url,
                data=delivery.request_body.encode("utf-8"),
                headers=headers,
                timeout=self.timeout,
            )
            delivery.response_code = response.status_code
            delivery.response_body = truncate(response.text, RESPONSE_BODY_LIMIT)
            if not 200 <= response.status_code < 300:
                error = f"HTTP {response.status_code}: {response.reason}"

        except requests.exceptions.Timeout as e:
            error = f"Timeout: {e}"

        except requests.exceptions.ConnectionError as e:
            error = f"Connection error: {e}"

        except requests.exceptions.RequestException as e:
            error = str(e) or e.__class__.__name__

        duration_ms = int((time.monotonic() - start) * 1000)
        delivery.attempt_count = expected_attempts + 1

        if error is None:
            delivery.status = DeliveryStatus.SUCCESS
            delivery.delivered_at = self.clock()
            delivery.next_retry_at = None
            delivery.error_message = None
            logger.info(
                f"Webhook delivered: {delivery.url} ({delivery.response_code})",
                extra={
                    "delivery_id": delivery.id,
                    "run_id": delivery.run_id,
                    "status_code": delivery.response_code,
                    "duration_ms": duration_ms,
                },
            )
        elif delivery.attempt_count >= MAX_ATTEMPTS:
            delivery.status = DeliveryStatus.FAILED
            delivery.next_retry_at = None
            delivery.error_message = f"Max retries exceeded: {error}"
            logger.error(
                f"Webhook delivery failed after {delivery.attempt_count} attempts: {error}",
                extra={"delivery_id": delivery.id, "run_id": delivery.run_id},
            )
        else:
            delivery.status = DeliveryStatus.RETRYING
            delivery.next_retry_at = now + retry_delay(delivery.attempt_count)
            delivery.error_message = error
            logger.warning(
                f"Webhook delivery attempt {delivery.attempt_count} failed: {error}",
                extra={"delivery_id": delivery.id, "run_id": delivery.run_id},
            )

        return self._record(delivery, expected_attempts)

    def deliver_due(self, now: datetime | None = None, limit: int = 100) -> list[WebhookDelivery]:
        """Attempt every retrying delivery whose ``next_retry_at`` has passed."""
        now = now or self.clock()
        attempted = []
        for due in self.deliveries.due_for_retry(now, limit=limit):
            result = self.deliver(due.id)
            if result is not None:
                attempted.append(result)
        if attempted:
            logger.info(f"Retried {len(attempted)} due deliveries")
        return attempted

    def _record(self, delivery: WebhookDelivery, expected_attempts: int) -> WebhookDelivery:
        if not self.deliveries.save_attempt(delivery, expected_attempts):
            logger.info(f"Delivery {delivery.id} attempt already recorded elsewhere")
            return self.deliveries.get(delivery.id) or delivery

        self._notify(delivery.run_id)
        return delivery

    def _notify(self, run_id: str) -> None:
        if self.on_state_change is None:
            return
        try:
            self.on_state_change(run_id)
        except Exception as e:
            logger.error(f"Failed to notify run {run_id} of delivery change: {e}")


def encode_body(payload: Any) -> str:
    """Serialize a request body as JSON."""
    return json.dumps(payload, default=str)
