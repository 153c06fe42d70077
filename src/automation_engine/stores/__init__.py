"""SQL-backed stores for events, rules, runs and sub-resources."""

from .deliveries import DeliveryStore
from .events import EventLedger
from .rules import RuleStore
from .runs import RunStore
from .tasks import AgentTaskStore
from .users import UserDirectory

__all__ = [
    "AgentTaskStore",
    "DeliveryStore",
    "EventLedger",
    "RuleStore",
    "RunStore",
    "UserDirectory",
]
