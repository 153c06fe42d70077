"""Engine-side ledger of spawned agent tasks and their completion entrypoint."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from automation_engine.collaborators import AgentTaskLauncher, NullAgentTaskLauncher
from automation_engine.models import AgentTask, AgentTaskStatus, Rule, Run, User
from automation_engine.utils import utc_now

if TYPE_CHECKING:
    from automation_engine.stores import AgentTaskStore

logger = logging.getLogger(__name__)


class AgentTaskService:
    """Spawns agent tasks for runs and records how they finish.

    The host's agent loop reports back through :meth:`complete`, which
    re-evaluates the owning run.
    """

    def __init__(
        self,
        tasks: AgentTaskStore,
        launcher: AgentTaskLauncher | None = None,
        on_complete: Callable[[str], Any] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.tasks = tasks
        self.launcher = launcher or NullAgentTaskLauncher()
        self.on_complete = on_complete
        self.clock = clock

    def spawn(
        self,
        agent: User,
        task: str,
        max_steps: int,
        initiated_by_id: str | None,
        rule: Rule,
        run: Run | None = None,
    ) -> AgentTask:
        """Queue a task for ``agent`` and hand it to the launcher.

        Launching is fire-and-forget; a launcher error fails the task
        rather than the caller.
        """
        record = AgentTask(
            run_id=run.id if run else None,
            rule_id=rule.id,
            tenant_id=rule.tenant_id,
            agent_id=agent.id,
            task=task,
            max_steps=max_steps,
            initiated_by_id=initiated_by_id,
            created_at=self.clock(),
        )
        self.tasks.create(record)
        logger.info(
            f"Queued agent task {record.id} for agent {agent.handle}",
            extra={"task_id": record.id, "rule_id": rule.id, "run_id": record.run_id},
        )

        try:
            self.launcher.launch(record)
        except Exception as e:
            logger.error(f"Failed to launch agent task {record.id}: {e}")
            self.complete(record.id, AgentTaskStatus.FAILED, f"Launch failed: {e}")
            return self.tasks.get(record.id) or record

        return record

    def mark_running(self, task_id: str) -> bool:
        return self.tasks.update_status(task_id, AgentTaskStatus.RUNNING)

    def complete(
        self,
        task_id: str,
        status: AgentTaskStatus | str,
        error: str | None = None,
    ) -> AgentTask | None:
        """Record a task's terminal state and re-evaluate its run.

        Raises:
            ValueError: If ``status`` is not a terminal task status.
        """
        status = AgentTaskStatus(status)
        if not status.is_terminal:
            raise ValueError(f"Task completion requires a terminal status, got {status.value}")

        updated = self.tasks.update_status(task_id, status, error=error, completed_at=self.clock())
        task = self.tasks.get(task_id)
        if task is None:
            logger.warning(f"Completion for unknown agent task {task_id}")
            return None

        if not updated:
            logger.debug(f"Agent task {task_id} already {task.status.value}")
            return task

        logger.info(
            f"Agent task {task_id} {status.value}",
            extra={"task_id": task_id, "run_id": task.run_id},
        )
        if task.run_id and self.on_complete is not None:
            self.on_complete(task.run_id)
        return task
