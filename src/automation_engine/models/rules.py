"""Automation rule models.

A rule's body is a tagged variant fixed when the definition is validated:
agent-targeted rules carry a single task template, general rules carry an
ordered action list, and a general rule whose actions are not a list carries
the validation error so the executor can fail its runs without guessing.
"""

from __future__ import annotations

import secrets
import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from automation_engine.errors import RuleValidationError
from automation_engine.utils import utc_now

ACTIONS_NOT_A_LIST = "Actions must be an array"


class TriggerType(str, Enum):
    """What starts a rule."""

    EVENT = "event"
    SCHEDULE = "schedule"
    WEBHOOK = "webhook"
    MANUAL = "manual"


class Condition(BaseModel):
    """One predicate over the event context."""

    model_config = ConfigDict(extra="ignore")

    field: str | None = None
    operator: str | None = None
    value: Any = None


# Rule bodies


class AgentBody(BaseModel):
    kind: Literal["agent"] = "agent"
    task: str


class GeneralBody(BaseModel):
    kind: Literal["general"] = "general"
    actions: list[Any] = Field(default_factory=list)


class MalformedBody(BaseModel):
    kind: Literal["malformed"] = "malformed"
    error: str = ACTIONS_NOT_A_LIST


RuleBody = Annotated[AgentBody | GeneralBody | MalformedBody, Field(discriminator="kind")]
rule_body_adapter: TypeAdapter = TypeAdapter(RuleBody)


# Actions


class InternalAction(BaseModel):
    """Same-process side effect handled by the internal-action dispatcher."""

    type: Literal["internal_action"]
    action: str
    params: dict[str, Any] = Field(default_factory=dict)


class WebhookAction(BaseModel):
    """Signed outbound HTTP call."""

    type: Literal["webhook"]
    url: str | None = None
    method: str = "POST"
    body: Any = None
    headers: dict[str, str] = Field(default_factory=dict)
    secret: str | None = None


class TriggerAgentAction(BaseModel):
    """Spawn a task for another agent."""

    type: Literal["trigger_agent"]
    agent_id: str | None = None
    task: str = ""
    max_steps: int | None = None


Action = Annotated[
    InternalAction | WebhookAction | TriggerAgentAction, Field(discriminator="type")
]
action_adapter: TypeAdapter = TypeAdapter(Action)


def parse_action(raw: Any) -> InternalAction | WebhookAction | TriggerAgentAction | None:
    """Parse one raw action mapping, returning None if it is unknown or malformed."""
    if not isinstance(raw, dict):
        return None
    try:
        return action_adapter.validate_python(raw)
    except ValidationError:
        return None


class Rule(BaseModel):
    """A stored automation definition."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    tenant_id: str
    studio_id: str | None = None
    target_agent_id: str | None = None
    created_by_id: str | None = None
    trigger_type: TriggerType
    trigger_config: dict[str, Any] = Field(default_factory=dict)
    conditions: list[Condition] = Field(default_factory=list)
    body: RuleBody
    enabled: bool = True
    execution_count: int = 0
    last_executed_at: datetime | None = None
    webhook_path: str | None = None
    webhook_secret: str | None = None
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def is_agent_rule(self) -> bool:
        return isinstance(self.body, AgentBody)

    @property
    def event_type(self) -> str | None:
        return self.trigger_config.get("event_type")

    @property
    def mention_filter(self) -> str | None:
        return self.trigger_config.get("mention_filter") or None

    @property
    def max_steps(self) -> int | None:
        value = self.trigger_config.get("max_steps")
        try:
            return int(value) if value is not None else None
        except (TypeError, ValueError):
            return None

    @property
    def cron(self) -> str | None:
        return self.trigger_config.get("cron")

    @property
    def timezone(self) -> str:
        return self.trigger_config.get("timezone") or "UTC"

    @classmethod
    def from_definition(cls, definition: dict[str, Any]) -> Rule:
        """Validate a raw rule definition and build a Rule.

        Accepts either ``trigger: {type, ...config}`` or separate
        ``trigger_type`` / ``trigger_config`` keys.

        Raises:
            RuleValidationError: If the definition cannot describe a rule.
        """
        if not isinstance(definition, dict):
            raise RuleValidationError("Rule definition must be a mapping")

        trigger = definition.get("trigger")
        if isinstance(trigger, dict):
            trigger_config = {k: v for k, v in trigger.items() if k != "type"}
            raw_type = trigger.get("type")
        else:
            trigger_config = dict(definition.get("trigger_config") or {})
            raw_type = definition.get("trigger_type")

        try:
            trigger_type = TriggerType(raw_type)
        except ValueError:
            raise RuleValidationError(f"Invalid trigger type: {raw_type}", field="trigger_type")

        if trigger_type == TriggerType.EVENT and not trigger_config.get("event_type"):
            raise RuleValidationError(
                "Event triggers require an event_type", field="trigger.event_type"
            )
        if trigger_type == TriggerType.SCHEDULE:
            if not trigger_config.get("cron"):
                raise RuleValidationError("Schedule triggers require a cron", field="trigger.cron")
            trigger_config.setdefault("timezone", "UTC")

        target_agent_id = definition.get("target_agent_id")
        if target_agent_id:
            task = definition.get("task")
            if not isinstance(task, str):
                raise RuleValidationError("Agent rules require a task string", field="task")
            if "actions" in definition:
                raise RuleValidationError("Agent rules take a task, not actions", field="actions")
            if definition.get("conditions"):
                raise RuleValidationError(
                    "Conditions apply to general rules only", field="conditions"
                )
            body: AgentBody | GeneralBody | MalformedBody = AgentBody(task=task)
        else:
            if "task" in definition:
                raise RuleValidationError("General rules take actions, not a task", field="task")
            actions = definition.get("actions")
            if isinstance(actions, list):
                body = GeneralBody(actions=actions)
            else:
                body = MalformedBody()

        conditions = definition.get("conditions") or []
        if not isinstance(conditions, list) or not all(isinstance(c, dict) for c in conditions):
            raise RuleValidationError("Conditions must be a list of mappings", field="conditions")

        webhook_path = definition.get("webhook_path")
        webhook_secret = definition.get("webhook_secret")
        if trigger_type == TriggerType.WEBHOOK:
            webhook_path = webhook_path or secrets.token_urlsafe(12)
            webhook_secret = webhook_secret or secrets.token_hex(32)
        elif isinstance(body, GeneralBody) and any(
            isinstance(a, dict) and a.get("type") == "webhook" for a in body.actions
        ):
            # Signs outbound deliveries whose action carries no secret
            webhook_secret = webhook_secret or secrets.token_hex(32)

        fields = {
            "name": definition.get("name"),
            "tenant_id": definition.get("tenant_id"),
            "studio_id": definition.get("studio_id"),
            "target_agent_id": target_agent_id,
            "created_by_id": definition.get("created_by_id"),
            "trigger_type": trigger_type,
            "trigger_config": trigger_config,
            "conditions": conditions,
            "body": body,
            "enabled": definition.get("enabled", True),
            "webhook_path": webhook_path,
            "webhook_secret": webhook_secret,
        }
        if definition.get("id"):
            fields["id"] = definition["id"]

        try:
            return cls(**fields)
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first["loc"])
            raise RuleValidationError(f"Invalid rule: {first['msg']}", field=location)
