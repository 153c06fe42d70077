"""Non-event triggers: manual, inbound webhook, test and schedule."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from automation_engine.errors import RuleDisabledError, RuleNotFoundError, WebhookVerificationError
from automation_engine.models import Rule, Run, TriggerSource
from automation_engine.utils import to_iso, utc_now
from automation_engine.webhooks import verify_signature

from .chain import AutomationChain

if TYPE_CHECKING:
    from automation_engine.stores import DeliveryStore, RuleStore, RunStore
    from automation_engine.webhooks import DeliveryService

    from .executor import Executor
    from .scheduler import ScheduleRunner

logger = logging.getLogger(__name__)

DEFAULT_TIMESTAMP_TOLERANCE_SECONDS = 300


class TriggerService:
    """Creates runs for rules triggered outside the event stream."""

    def __init__(
        self,
        rules: RuleStore,
        runs: RunStore,
        deliveries: DeliveryStore,
        executor: Executor,
        delivery_service: DeliveryService,
        schedule_runner: ScheduleRunner,
        chain: AutomationChain | None = None,
        timestamp_tolerance_seconds: int = DEFAULT_TIMESTAMP_TOLERANCE_SECONDS,
        enqueue_run: Callable[[str], Any] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.rules = rules
        self.runs = runs
        self.deliveries = deliveries
        self.executor = executor
        self.delivery_service = delivery_service
        self.schedule_runner = schedule_runner
        self.chain = chain or AutomationChain()
        self.timestamp_tolerance_seconds = timestamp_tolerance_seconds
        self.enqueue_run = enqueue_run
        self.clock = clock

    def trigger_manual(
        self,
        rule_id: str,
        inputs: dict[str, Any] | None = None,
        triggered_by_id: str | None = None,
    ) -> Run:
        """Queue a manual run of an enabled rule.

        Raises:
            RuleNotFoundError: If the rule does not exist.
            RuleDisabledError: If the rule is disabled.
        """
        rule = self._enabled_rule(rule_id)
        now = self.clock()
        run = self._create_run(
            rule,
            TriggerSource.MANUAL,
            {
                "inputs": inputs or {},
                "triggered_by_id": triggered_by_id,
                "triggered_at": to_iso(now),
            },
        )
        self._enqueue(run)
        return run

    def receive_webhook(
        self,
        webhook_path: str,
        body: bytes | str,
        timestamp: str | None,
        signature: str | None,
        source_ip: str | None = None,
        now: datetime | None = None,
    ) -> Run:
        """Authenticate an inbound webhook and queue a run for its rule.

        Raises:
            RuleNotFoundError: If no webhook rule uses this path.
            RuleDisabledError: If the rule is disabled.
            WebhookVerificationError: If the timestamp or signature is invalid.
        """
        rule = self.rules.get_by_webhook_path(webhook_path)
        if rule is None:
            raise RuleNotFoundError(webhook_path)
        if not rule.enabled:
            raise RuleDisabledError(rule.id)

        now = now or self.clock()
        self._check_timestamp(timestamp, now)
        if not verify_signature(body, timestamp, signature, rule.webhook_secret):
            logger.warning(f"Invalid webhook signature for rule {rule.id}")
            raise WebhookVerificationError("Invalid signature", reason="invalid_signature")

        text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
        try:
            payload: Any = json.loads(text) if text else {}
        except ValueError:
            payload = text

        run = self._create_run(
            rule,
            TriggerSource.WEBHOOK,
            {
                "payload": payload,
                "webhook_path": webhook_path,
                "received_at": to_iso(now),
                "source_ip": source_ip,
            },
        )
        self._enqueue(run)
        return run

    def test_rule(self, rule_id: str, inputs: dict[str, Any] | None = None) -> dict[str, Any]:
        """Execute a rule inline and attempt its webhooks once.

        Disabled rules can be tested. Returns a summary of the run.

        Raises:
            RuleNotFoundError: If the rule does not exist.
        """
        rule = self.rules.get(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)

        run = self._create_run(rule, TriggerSource.TEST, {"inputs": inputs or {}, "test": True})
        self.executor.execute(run.id)
        for delivery in self.deliveries.pending_for_run(run.id):
            self.delivery_service.deliver(delivery.id, allow_disabled=True)

        run = self.runs.get(run.id)
        return {
            "run_id": run.id,
            "status": run.status.value,
            "error_message": run.error_message,
            "actions_executed": [entry.model_dump(mode="json") for entry in run.actions_executed],
            "deliveries": [
                {
                    "id": d.id,
                    "url": d.url,
                    "status": d.status.value,
                    "response_code": d.response_code,
                    "error_message": d.error_message,
                }
                for d in self.deliveries.for_run(run.id)
            ],
        }

    def tick_schedules(self, now: datetime | None = None) -> list[Run]:
        return self.schedule_runner.tick(now)

    def _check_timestamp(self, timestamp: str | None, now: datetime) -> None:
        if not timestamp:
            raise WebhookVerificationError("Missing timestamp", reason="missing_timestamp")
        try:
            sent_at = int(timestamp)
        except ValueError:
            raise WebhookVerificationError("Invalid timestamp", reason="invalid_timestamp")
        if abs(now.timestamp() - sent_at) > self.timestamp_tolerance_seconds:
            raise WebhookVerificationError(
                "Timestamp outside tolerance", reason="timestamp_out_of_range"
            )

    def _enabled_rule(self, rule_id: str) -> Rule:
        rule = self.rules.get(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        if not rule.enabled:
            raise RuleDisabledError(rule_id)
        return rule

    def _create_run(self, rule: Rule, source: TriggerSource, trigger_data: dict[str, Any]) -> Run:
        chain_metadata = self.chain.record(self.chain.begin(), rule)
        run = Run(
            rule_id=rule.id,
            tenant_id=rule.tenant_id,
            studio_id=rule.studio_id,
            trigger_source=source,
            trigger_data=trigger_data,
            chain_metadata=chain_metadata,
            created_at=self.clock(),
        )
        return self.runs.create(run)

    def _enqueue(self, run: Run) -> None:
        if self.enqueue_run is not None:
            self.enqueue_run(run.id)
