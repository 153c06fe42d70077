"""Rule matching, execution and run lifecycle."""

from .agent_tasks import AgentTaskService
from .chain import AutomationChain, ChainState
from .dispatcher import Dispatcher
from .executor import Executor
from .internal_actions import SUPPORTED_ACTIONS, InternalActionRegistry
from .lifecycle import LifecycleTracker
from .scheduler import ScheduleRunner
from .triggers import TriggerService

__all__ = [
    "SUPPORTED_ACTIONS",
    "AgentTaskService",
    "AutomationChain",
    "ChainState",
    "Dispatcher",
    "Executor",
    "InternalActionRegistry",
    "LifecycleTracker",
    "ScheduleRunner",
    "TriggerService",
]
