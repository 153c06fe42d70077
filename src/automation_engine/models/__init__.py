"""Engine data models."""

from .deliveries import DeliveryStatus, WebhookDelivery
from .events import Commitment, Decision, Event, Note, Studio, Subject, Tenant, User
from .rules import (
    ACTIONS_NOT_A_LIST,
    AgentBody,
    Condition,
    GeneralBody,
    InternalAction,
    MalformedBody,
    Rule,
    TriggerAgentAction,
    TriggerType,
    WebhookAction,
    parse_action,
)
from .runs import ActionEntry, ActionResult, Run, RunStatus, SubResourceKind, TriggerSource
from .tasks import AgentTask, AgentTaskStatus

__all__ = [
    "ACTIONS_NOT_A_LIST",
    "ActionEntry",
    "ActionResult",
    "AgentBody",
    "AgentTask",
    "AgentTaskStatus",
    "Commitment",
    "Condition",
    "Decision",
    "DeliveryStatus",
    "Event",
    "GeneralBody",
    "InternalAction",
    "MalformedBody",
    "Note",
    "Rule",
    "Run",
    "RunStatus",
    "Studio",
    "Subject",
    "SubResourceKind",
    "Tenant",
    "TriggerAgentAction",
    "TriggerSource",
    "TriggerType",
    "User",
    "WebhookAction",
    "WebhookDelivery",
    "parse_action",
]
