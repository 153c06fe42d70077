"""Drives the synchronous phase of one run.

Actions run strictly in declared order. Each one is fully resolved and its
log entry appended before the next starts. Synchronous actions record their
result immediately. Async actions (webhooks, agent tasks) spawn a
sub-resource and leave the run ``running`` until the lifecycle tracker
sees every sub-resource finish.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from automation_engine.collaborators import InternalActionDispatcher
from automation_engine.errors import RunNotFoundError
from automation_engine.models import (
    ActionEntry,
    ActionResult,
    AgentBody,
    Event,
    InternalAction,
    MalformedBody,
    Rule,
    Run,
    RunStatus,
    SubResourceKind,
    TriggerAgentAction,
    TriggerSource,
    WebhookAction,
    parse_action,
)
from automation_engine.utils import utc_now
from automation_engine.webhooks import build_event_payload, build_run_payload, encode_body

from .chain import AutomationChain
from .templates import context_from_event, context_from_trigger_data, render, render_value

if TYPE_CHECKING:
    from automation_engine.stores import EventLedger, RuleStore, RunStore, UserDirectory
    from automation_engine.webhooks import DeliveryService

    from .agent_tasks import AgentTaskService
    from .lifecycle import LifecycleTracker

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 20


class Executor:
    """Executes pending runs."""

    def __init__(
        self,
        rules: RuleStore,
        runs: RunStore,
        events: EventLedger,
        users: UserDirectory,
        delivery_service: DeliveryService,
        agent_tasks: AgentTaskService,
        internal_actions: InternalActionDispatcher,
        tracker: LifecycleTracker,
        chain: AutomationChain | None = None,
        default_max_steps: int = DEFAULT_MAX_STEPS,
        default_webhook_secret: str | None = None,
        enqueue_delivery: Callable[[str], Any] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.rules = rules
        self.runs = runs
        self.events = events
        self.users = users
        self.delivery_service = delivery_service
        self.agent_tasks = agent_tasks
        self.internal_actions = internal_actions
        self.tracker = tracker
        self.chain = chain or AutomationChain()
        self.default_max_steps = default_max_steps
        self.default_webhook_secret = default_webhook_secret
        self.enqueue_delivery = enqueue_delivery
        self.clock = clock

    def execute(self, run_id: str) -> Run:
        """Run the synchronous phase of a pending run.

        Runs that are no longer pending are returned unchanged.

        Raises:
            RunNotFoundError: If the run does not exist.
        """
        run = self.runs.get(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        if run.status != RunStatus.PENDING:
            logger.debug(f"Run {run_id} already {run.status.value}, not executing")
            return run

        rule = self.rules.get(run.rule_id)
        if rule is None:
            return self._finish(run_id, RunStatus.FAILED, "Automation rule not found")
        if not rule.enabled and run.trigger_source != TriggerSource.TEST:
            return self._finish(run_id, RunStatus.SKIPPED, "Rule is disabled")

        run = self._start(run_id)
        if run is None:
            return self.runs.get(run_id)
        self.rules.increment_execution_count(rule.id, run.started_at)

        event = self.events.get(run.triggered_by_event_id) if run.triggered_by_event_id else None
        context = context_from_event(event) if event else context_from_trigger_data(run.trigger_data)
        pending_deliveries: list[str] = []

        with self.chain.restored(run.chain_metadata):
            try:
                if isinstance(rule.body, AgentBody):
                    error = self._execute_agent_rule(rule, run, event, context)
                elif isinstance(rule.body, MalformedBody):
                    error = rule.body.error
                else:
                    error = None
                    self._execute_general_rule(rule, run, event, context, pending_deliveries)
            except Exception as e:
                logger.exception(f"Executor failed for run {run_id}: {e}")
                error = str(e) or e.__class__.__name__

        if error is not None:
            logger.warning(f"Run {run_id} failed: {error}", extra={"run_id": run_id})
            return self._finish(run_id, RunStatus.FAILED, error)

        with self.runs.locked(run_id) as locked_run:
            locked_run.actions_dispatched_at = self.clock()
        self.tracker.update_status_from_actions(run_id)

        if self.enqueue_delivery is not None:
            for delivery_id in pending_deliveries:
                self.enqueue_delivery(delivery_id)

        return self.runs.get(run_id)

    # Phases

    def _start(self, run_id: str) -> Run | None:
        with self.runs.locked(run_id) as run:
            if run.status != RunStatus.PENDING:
                return None
            run.status = RunStatus.RUNNING
            run.started_at = self.clock()
        logger.info(f"Run {run_id} started", extra={"run_id": run_id, "rule_id": run.rule_id})
        return run

    def _finish(self, run_id: str, status: RunStatus, error: str | None) -> Run:
        with self.runs.locked(run_id) as run:
            if not run.is_terminal:
                run.status = status
                run.error_message = error
                run.completed_at = self.clock()
        return run

    def _execute_agent_rule(
        self, rule: Rule, run: Run, event: Event | None, context: dict[str, Any]
    ) -> str | None:
        """Spawn the rule's agent task. Returns an error for structural failures."""
        agent = self.users.get_agent(rule.target_agent_id) if rule.target_agent_id else None
        if agent is None or agent.tenant_id != rule.tenant_id:
            return "AI agent not found"

        prompt = self._task_prompt(rule.body.task, event, context)
        if not prompt.strip():
            return "Task prompt is empty"

        task = self.agent_tasks.spawn(
            agent,
            prompt,
            rule.max_steps or self.default_max_steps,
            self._initiated_by(rule, event),
            rule,
            run,
        )
        self.runs.append_action(
            run.id,
            ActionEntry(
                index=0,
                type="trigger_agent",
                result=ActionResult.DISPATCHED,
                output={"agent_id": agent.id},
                sub_resource_id=task.id,
                sub_resource_kind=SubResourceKind.AGENT_TASK,
            ),
        )
        return None

    def _execute_general_rule(
        self,
        rule: Rule,
        run: Run,
        event: Event | None,
        context: dict[str, Any],
        pending_deliveries: list[str],
    ) -> None:
        for index, raw in enumerate(rule.body.actions):
            entry = self._execute_action(index, raw, rule, run, event, context, pending_deliveries)
            self.runs.append_action(run.id, entry)

    def _execute_action(
        self,
        index: int,
        raw: Any,
        rule: Rule,
        run: Run,
        event: Event | None,
        context: dict[str, Any],
        pending_deliveries: list[str],
    ) -> ActionEntry:
        action = parse_action(raw)
        if action is None:
            action_type = raw.get("type") if isinstance(raw, dict) else None
            return ActionEntry(
                index=index,
                type=str(action_type or "unknown"),
                result=ActionResult.FAILED,
                error=f"Unknown action type: {action_type}",
            )

        try:
            if isinstance(action, InternalAction):
                return self._internal_action(index, action, rule, run, event, context)
            if isinstance(action, WebhookAction):
                return self._webhook_action(
                    index, action, rule, run, event, context, pending_deliveries
                )
            return self._trigger_agent_action(index, action, rule, run, event, context)
        except Exception as e:
            logger.error(f"Action {index} ({action.type}) failed for run {run.id}: {e}")
            return ActionEntry(
                index=index,
                type=action.type,
                result=ActionResult.FAILED,
                error=str(e) or e.__class__.__name__,
            )

    # Action handlers

    def _internal_action(
        self,
        index: int,
        action: InternalAction,
        rule: Rule,
        run: Run,
        event: Event | None,
        context: dict[str, Any],
    ) -> ActionEntry:
        scope = self._scope(rule, run, event)
        if not scope.get("studio_id"):
            return ActionEntry(
                index=index,
                type=action.type,
                result=ActionResult.FAILED,
                error="Internal actions require a studio context",
                output={"action": action.action},
            )

        params = render_value(action.params, context)
        result = self.internal_actions.execute(action.action, params, scope) or {}
        status = result.get("status")
        if status == "success":
            outcome = ActionResult.SUCCESS
        elif status == "skipped":
            outcome = ActionResult.SKIPPED
        else:
            outcome = ActionResult.FAILED

        return ActionEntry(
            index=index,
            type=action.type,
            result=outcome,
            error=result.get("error") if outcome == ActionResult.FAILED else None,
            output={"action": action.action, **result},
        )

    def _webhook_action(
        self,
        index: int,
        action: WebhookAction,
        rule: Rule,
        run: Run,
        event: Event | None,
        context: dict[str, Any],
        pending_deliveries: list[str],
    ) -> ActionEntry:
        url = render(action.url or "", context).strip()
        if not url:
            return ActionEntry(
                index=index,
                type=action.type,
                result=ActionResult.FAILED,
                error="URL is required for webhook action",
            )

        secret = action.secret or rule.webhook_secret or self.default_webhook_secret
        if not secret:
            return ActionEntry(
                index=index,
                type=action.type,
                result=ActionResult.FAILED,
                error="No signing secret configured for webhook action",
            )

        if action.body is None:
            payload = build_event_payload(event) if event else build_run_payload(run, rule)
        else:
            payload = render_value(action.body, context)

        headers = {str(k): render(str(v), context) for k, v in action.headers.items()}
        event_type = event.event_type if event else f"automation.{rule.trigger_type.value}"

        delivery = self.delivery_service.create(
            run,
            rule,
            url=url,
            body=encode_body(payload),
            secret=secret,
            event_type=event_type,
            method=action.method,
            headers=headers,
        )
        pending_deliveries.append(delivery.id)

        return ActionEntry(
            index=index,
            type=action.type,
            result=ActionResult.DISPATCHED,
            output={"url": url, "method": delivery.method},
            sub_resource_id=delivery.id,
            sub_resource_kind=SubResourceKind.WEBHOOK_DELIVERY,
        )

    def _trigger_agent_action(
        self,
        index: int,
        action: TriggerAgentAction,
        rule: Rule,
        run: Run,
        event: Event | None,
        context: dict[str, Any],
    ) -> ActionEntry:
        agent = self.users.get_agent(action.agent_id) if action.agent_id else None
        if agent is None or agent.tenant_id != rule.tenant_id:
            return ActionEntry(
                index=index,
                type=action.type,
                result=ActionResult.FAILED,
                error="Agent not found or not an AI agent",
                output={"agent_id": action.agent_id},
            )

        prompt = self._task_prompt(action.task, event, context)
        if not prompt.strip():
            return ActionEntry(
                index=index,
                type=action.type,
                result=ActionResult.FAILED,
                error="Task prompt is empty",
                output={"agent_id": agent.id},
            )

        task = self.agent_tasks.spawn(
            agent,
            prompt,
            action.max_steps or self.default_max_steps,
            self._initiated_by(rule, event),
            rule,
            run,
        )
        return ActionEntry(
            index=index,
            type=action.type,
            result=ActionResult.DISPATCHED,
            output={"agent_id": agent.id},
            sub_resource_id=task.id,
            sub_resource_kind=SubResourceKind.AGENT_TASK,
        )

    # Helpers

    def _task_prompt(self, template: str, event: Event | None, context: dict[str, Any]) -> str:
        if not template:
            return ""
        if event is None:
            # Schedule, webhook and manual runs use the task verbatim
            return template
        return render(template, context)

    def _initiated_by(self, rule: Rule, event: Event | None) -> str | None:
        if event is not None and event.actor is not None:
            return event.actor.id
        return rule.created_by_id

    def _scope(self, rule: Rule, run: Run, event: Event | None) -> dict[str, Any]:
        scope: dict[str, Any] = {
            "tenant_id": rule.tenant_id,
            "studio_id": run.studio_id or rule.studio_id,
            "rule_id": rule.id,
            "run_id": run.id,
        }
        if event is not None:
            scope["tenant_subdomain"] = event.tenant.subdomain
            if event.studio is not None:
                scope["studio_id"] = event.studio.id
                scope["studio_handle"] = event.studio.handle
                scope["studio_name"] = event.studio.name
        return scope
