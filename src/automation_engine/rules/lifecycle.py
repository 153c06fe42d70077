"""Aggregate run status from the run's async sub-resources.

The tracker never keeps counters. Every call re-reads all deliveries and
agent tasks owned by the run under the run's row lock, so completions may
arrive in any order, more than once, or before the run's synchronous phase
has finished.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING

from automation_engine.errors import RunNotFoundError
from automation_engine.models import AgentTaskStatus, DeliveryStatus, Run, RunStatus
from automation_engine.utils import utc_now

if TYPE_CHECKING:
    from automation_engine.stores import AgentTaskStore, DeliveryStore, RunStore

logger = logging.getLogger(__name__)

PARTIAL_FAILURE_PREFIX = "Some actions failed: "


class LifecycleTracker:
    """Recomputes a run's status from everything it owns."""

    def __init__(
        self,
        runs: RunStore,
        deliveries: DeliveryStore,
        tasks: AgentTaskStore,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.runs = runs
        self.deliveries = deliveries
        self.tasks = tasks
        self.clock = clock

    def update_status_from_actions(self, run_id: str) -> Run | None:
        """Recompute and persist the run's status. Never raises."""
        try:
            with self.runs.locked(run_id) as run:
                previous = run.status
                if not run.is_terminal:
                    self._recompute(run)
            if run.status != previous:
                logger.info(
                    f"Run {run.id} {previous.value} -> {run.status.value}",
                    extra={"run_id": run.id, "rule_id": run.rule_id},
                )
            return run
        except RunNotFoundError:
            logger.warning(f"Lifecycle update for unknown run {run_id}")
            return None
        except Exception as e:
            logger.error(f"Lifecycle update failed for run {run_id}: {e}")
            return None

    def _recompute(self, run: Run) -> None:
        if run.actions_dispatched_at is None:
            # Synchronous phase still appending actions
            return

        outcomes: list[tuple[bool, bool, str | None]] = []
        for delivery in self.deliveries.for_run(run.id):
            outcomes.append(
                (
                    delivery.status.is_terminal,
                    delivery.status == DeliveryStatus.SUCCESS,
                    delivery.error_message or "Webhook delivery failed",
                )
            )
        for task in self.tasks.for_run(run.id):
            outcomes.append(
                (
                    task.status.is_terminal,
                    task.status == AgentTaskStatus.COMPLETED,
                    task.error or f"Agent task {task.status.value}",
                )
            )

        if any(not terminal for terminal, _, _ in outcomes):
            run.status = RunStatus.RUNNING
            return

        hard_failures = [error for _, succeeded, error in outcomes if not succeeded]
        soft_failures = run.soft_failures

        if hard_failures:
            run.status = RunStatus.FAILED
            if len(run.actions_executed) > 1:
                run.error_message = PARTIAL_FAILURE_PREFIX + hard_failures[0]
            else:
                run.error_message = hard_failures[0]
        else:
            run.status = RunStatus.COMPLETED
            if soft_failures:
                run.error_message = PARTIAL_FAILURE_PREFIX + (
                    soft_failures[0].error or "unknown error"
                )
            else:
                run.error_message = None

        if run.completed_at is None:
            run.completed_at = self.clock()
