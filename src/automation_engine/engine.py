"""AutomationEngine: wires stores, services and workers together."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from automation_engine.collaborators import (
    AgentTaskLauncher,
    InternalActionDispatcher,
    MentionResolver,
)
from automation_engine.config import Settings, get_settings
from automation_engine.errors import RunNotFoundError
from automation_engine.http import HTTPClientConfig, close_sync_client, configure_http_client
from automation_engine.models import (
    AgentTask,
    AgentTaskStatus,
    Event,
    Rule,
    Run,
    RunStatus,
    User,
    WebhookDelivery,
)
from automation_engine.rules import (
    AgentTaskService,
    AutomationChain,
    Dispatcher,
    Executor,
    InternalActionRegistry,
    LifecycleTracker,
    ScheduleRunner,
    TriggerService,
)
from automation_engine.state import DatabaseBackend, get_database
from automation_engine.stores import (
    AgentTaskStore,
    DeliveryStore,
    EventLedger,
    RuleStore,
    RunStore,
    UserDirectory,
)
from automation_engine.utils import utc_now
from automation_engine.webhooks import DeliveryService
from automation_engine.workers import WorkerPool

logger = logging.getLogger(__name__)


class AutomationEngine:
    """Facade over the automation rule engine.

    Without a worker pool, enqueued runs stay ``pending`` and deliveries
    stay ``pending`` until :meth:`execute` / :meth:`deliver` are called,
    which is how the CLI and tests drive the engine.
    """

    def __init__(
        self,
        backend: DatabaseBackend | None = None,
        settings: Settings | None = None,
        launcher: AgentTaskLauncher | None = None,
        internal_actions: InternalActionDispatcher | None = None,
        resolver: MentionResolver | None = None,
        workers: WorkerPool | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings or get_settings()
        self.backend = backend or get_database()
        self.workers = workers
        self.clock = clock

        self.events = EventLedger(self.backend)
        self.rules = RuleStore(self.backend)
        self.runs = RunStore(self.backend)
        self.deliveries = DeliveryStore(self.backend)
        self.tasks = AgentTaskStore(self.backend)
        self.users = UserDirectory(self.backend)

        self.chain = AutomationChain(
            max_depth=self.settings.max_chain_depth,
            max_rules=self.settings.max_rules_per_chain,
        )
        self.tracker = LifecycleTracker(self.runs, self.deliveries, self.tasks, clock=clock)
        self.delivery_service = DeliveryService(
            self.deliveries,
            self.rules,
            timeout=self.settings.delivery_timeout_seconds,
            on_state_change=self.tracker.update_status_from_actions,
            clock=clock,
        )
        self.agent_tasks = AgentTaskService(
            self.tasks,
            launcher=launcher,
            on_complete=self.tracker.update_status_from_actions,
            clock=clock,
        )
        self.internal_actions = internal_actions or InternalActionRegistry(
            ledger=self.events, publish=self._dispatch_published
        )
        self.executor = Executor(
            self.rules,
            self.runs,
            self.events,
            self.users,
            self.delivery_service,
            self.agent_tasks,
            self.internal_actions,
            self.tracker,
            chain=self.chain,
            default_max_steps=self.settings.default_agent_max_steps,
            default_webhook_secret=self.settings.webhook_signing_secret,
            enqueue_delivery=self._enqueue_delivery,
            clock=clock,
        )
        self.dispatcher = Dispatcher(
            self.rules,
            self.runs,
            self.users,
            resolver=resolver,
            chain=self.chain,
            agent_rule_max_runs=self.settings.dispatch_agent_rule_max_runs,
            general_rule_max_runs=self.settings.dispatch_general_rule_max_runs,
            rate_window_seconds=self.settings.dispatch_rate_window_seconds,
            enqueue_run=self._enqueue_run,
            clock=clock,
        )
        self.schedule_runner = ScheduleRunner(
            self.rules,
            self.runs,
            chain=self.chain,
            enqueue_run=self._enqueue_run,
            clock=clock,
        )
        self.triggers = TriggerService(
            self.rules,
            self.runs,
            self.deliveries,
            self.executor,
            self.delivery_service,
            self.schedule_runner,
            chain=self.chain,
            timestamp_tolerance_seconds=self.settings.webhook_timestamp_tolerance_seconds,
            enqueue_run=self._enqueue_run,
            clock=clock,
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **kwargs: Any) -> AutomationEngine:
        """Build an engine with a worker pool sized from settings.

        Also configures the shared delivery HTTP client, so call this before
        anything issues a request.
        """
        settings = settings or get_settings()
        configure_http_client(
            HTTPClientConfig(
                pool_connections=settings.worker_max_workers,
                pool_maxsize=settings.delivery_pool_maxsize,
            )
        )
        workers = WorkerPool(
            max_workers=settings.worker_max_workers,
            poll_interval_seconds=settings.delivery_poll_interval_seconds,
        )
        return cls(settings=settings, workers=workers, **kwargs)

    # Lifecycle

    def start(self) -> None:
        if self.workers is None:
            raise RuntimeError("Engine has no worker pool")
        self.workers.start(self.tick_schedules, self.deliver_due)

    def shutdown(self, wait: bool = True) -> None:
        if self.workers is not None:
            self.workers.shutdown(wait=wait)
        close_sync_client()

    # Rules and users

    def add_rule(self, definition: Rule | dict[str, Any]) -> Rule:
        rule = definition if isinstance(definition, Rule) else Rule.from_definition(definition)
        return self.rules.save(rule)

    def add_user(self, user: User) -> User:
        return self.users.add_user(user)

    # Events

    def publish(self, event: Event) -> list[Run]:
        """Append an event to the ledger and dispatch it."""
        self.events.append(event)
        return self.dispatcher.dispatch(event)

    def dispatch(self, event: Event) -> list[Run]:
        return self.dispatcher.dispatch(event)

    # Runs

    def execute(self, run_id: str) -> Run:
        return self.executor.execute(run_id)

    def execute_pending(self, limit: int = 100) -> list[Run]:
        """Execute pending runs inline, oldest first."""
        pending = self.runs.list_runs(status=RunStatus.PENDING, limit=limit)
        return [self.executor.execute(run.id) for run in reversed(pending)]

    def get_run(self, run_id: str) -> Run:
        run = self.runs.get(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    def list_runs(
        self,
        rule_id: str | None = None,
        tenant_id: str | None = None,
        status: RunStatus | None = None,
        limit: int = 50,
    ) -> list[Run]:
        return self.runs.list_runs(rule_id=rule_id, tenant_id=tenant_id, status=status, limit=limit)

    def update_status_from_actions(self, run_id: str) -> Run | None:
        return self.tracker.update_status_from_actions(run_id)

    # Sub-resources

    def deliver(self, delivery_id: str) -> WebhookDelivery | None:
        return self.delivery_service.deliver(delivery_id)

    def deliver_due(self, now: datetime | None = None) -> list[WebhookDelivery]:
        return self.delivery_service.deliver_due(now)

    def complete_agent_task(
        self, task_id: str, status: AgentTaskStatus | str, error: str | None = None
    ) -> AgentTask | None:
        return self.agent_tasks.complete(task_id, status, error)

    # Triggers

    def trigger_manual(self, rule_id: str, inputs: dict[str, Any] | None = None, **kwargs) -> Run:
        return self.triggers.trigger_manual(rule_id, inputs, **kwargs)

    def receive_webhook(self, webhook_path: str, body, timestamp, signature, **kwargs) -> Run:
        return self.triggers.receive_webhook(webhook_path, body, timestamp, signature, **kwargs)

    def test_rule(self, rule_id: str, inputs: dict[str, Any] | None = None) -> dict[str, Any]:
        return self.triggers.test_rule(rule_id, inputs)

    def tick_schedules(self, now: datetime | None = None) -> list[Run]:
        return self.triggers.tick_schedules(now)

    # Enqueue hooks

    def _enqueue_run(self, run_id: str) -> None:
        if self.workers is None:
            logger.debug(f"No worker pool; run {run_id} left pending")
            return
        self.workers.submit(self.executor.execute, run_id)

    def _enqueue_delivery(self, delivery_id: str) -> None:
        if self.workers is None:
            return
        self.workers.submit(self.delivery_service.deliver, delivery_id)

    def _dispatch_published(self, event: Event) -> list[Run]:
        return self.dispatcher.dispatch(event)
