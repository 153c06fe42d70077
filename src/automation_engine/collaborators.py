"""Interfaces the engine consumes from the host application."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from automation_engine.models import AgentTask, User


@runtime_checkable
class MentionResolver(Protocol):
    """Resolves an ``@handle`` to a user within a tenant."""

    def resolve(self, handle: str, tenant_id: str) -> User | None: ...


@runtime_checkable
class AgentTaskLauncher(Protocol):
    """Starts the host's agent loop for a queued task.

    Launching is fire-and-forget. The host reports the outcome through
    ``AgentTaskService.complete``.
    """

    def launch(self, task: AgentTask) -> None: ...


@runtime_checkable
class InternalActionDispatcher(Protocol):
    """Performs a same-process side effect and returns its result synchronously.

    The result mapping carries ``status`` (``success``, ``skipped`` or
    ``failed``) and optionally ``error`` plus action-specific output.
    """

    def execute(self, action_name: str, params: dict[str, Any], scope: dict[str, Any]) -> dict: ...


class NullAgentTaskLauncher:
    """Launcher that only records the task; completion arrives externally."""

    def launch(self, task: AgentTask) -> None:
        return None
