"""Tests for rule definitions and event subjects."""

import sys

import pytest

sys.path.insert(0, "src")

from automation_engine.errors import RuleValidationError
from automation_engine.models import (
    ACTIONS_NOT_A_LIST,
    AgentBody,
    Commitment,
    Decision,
    Event,
    GeneralBody,
    InternalAction,
    MalformedBody,
    Note,
    Rule,
    TriggerAgentAction,
    TriggerType,
    WebhookAction,
    parse_action,
)

from conftest import TENANT, webhook_rule

NOTE_ID = "0f1e2d3c-4b5a-6978-8796-a5b4c3d2e1f0"


class TestRuleDefinition:
    def test_general_rule(self):
        rule = Rule.from_definition(webhook_rule())
        assert rule.trigger_type == TriggerType.EVENT
        assert rule.event_type == "note.created"
        assert isinstance(rule.body, GeneralBody)
        assert not rule.is_agent_rule
        assert rule.enabled

    def test_flat_trigger_keys(self):
        rule = Rule.from_definition(
            {
                "name": "Flat",
                "tenant_id": TENANT.id,
                "trigger_type": "event",
                "trigger_config": {"event_type": "decision.created"},
                "actions": [],
            }
        )
        assert rule.event_type == "decision.created"

    def test_agent_rule(self):
        rule = Rule.from_definition(
            {
                "name": "Agent",
                "tenant_id": TENANT.id,
                "target_agent_id": "u-bot1",
                "trigger": {"type": "event", "event_type": "note.created", "max_steps": "7"},
                "task": "Summarize {{subject.title}}",
            }
        )
        assert isinstance(rule.body, AgentBody)
        assert rule.is_agent_rule
        assert rule.max_steps == 7

    def test_non_list_actions_become_malformed(self):
        rule = Rule.from_definition(webhook_rule(actions={"type": "webhook"}))
        assert isinstance(rule.body, MalformedBody)
        assert rule.body.error == ACTIONS_NOT_A_LIST

    def test_non_mapping_action_entries_are_kept(self):
        rule = Rule.from_definition(webhook_rule(actions=["x", 3, {"type": "webhook"}]))
        assert isinstance(rule.body, GeneralBody)
        assert rule.body.actions[:2] == ["x", 3]

    @pytest.mark.parametrize(
        "overrides,field",
        [
            ({"trigger": {"type": "bogus"}}, "trigger_type"),
            ({"trigger": {"type": "event"}}, "trigger.event_type"),
            ({"trigger": {"type": "schedule"}}, "trigger.cron"),
            ({"task": "do it"}, "task"),
            ({"conditions": "x"}, "conditions"),
            ({"name": None}, "name"),
        ],
    )
    def test_invalid_definitions(self, overrides, field):
        with pytest.raises(RuleValidationError) as exc_info:
            Rule.from_definition(webhook_rule(**overrides))
        assert exc_info.value.details["field"] == field

    def test_agent_rule_rejects_actions_and_conditions(self):
        base = {
            "name": "Agent",
            "tenant_id": TENANT.id,
            "target_agent_id": "u-bot1",
            "trigger": {"type": "manual"},
            "task": "go",
        }
        with pytest.raises(RuleValidationError):
            Rule.from_definition({**base, "actions": []})
        with pytest.raises(RuleValidationError):
            Rule.from_definition({**base, "conditions": [{"field": "a"}]})
        with pytest.raises(RuleValidationError):
            Rule.from_definition({**base, "task": None})

    def test_not_a_mapping(self):
        with pytest.raises(RuleValidationError):
            Rule.from_definition(["not", "a", "rule"])

    def test_schedule_defaults_to_utc(self):
        rule = Rule.from_definition(
            webhook_rule(trigger={"type": "schedule", "cron": "0 9 * * *"})
        )
        assert rule.cron == "0 9 * * *"
        assert rule.timezone == "UTC"

    def test_webhook_trigger_gets_path_and_secret(self):
        rule = Rule.from_definition(webhook_rule(trigger={"type": "webhook"}))
        assert rule.webhook_path
        assert len(rule.webhook_secret) == 64

        other = Rule.from_definition(webhook_rule(trigger={"type": "webhook"}))
        assert other.webhook_path != rule.webhook_path

    def test_explicit_path_and_secret_kept(self):
        rule = Rule.from_definition(
            webhook_rule(trigger={"type": "webhook"}, webhook_path="orders", webhook_secret="s3cret")
        )
        assert rule.webhook_path == "orders"
        assert rule.webhook_secret == "s3cret"

    def test_webhook_actions_get_a_secret(self):
        rule = Rule.from_definition(webhook_rule())
        assert rule.webhook_path is None
        assert rule.webhook_secret

    def test_rule_without_webhooks_has_no_secret(self):
        rule = Rule.from_definition(webhook_rule(actions=[]))
        assert rule.webhook_secret is None


class TestParseAction:
    def test_known_types(self):
        assert isinstance(parse_action({"type": "webhook", "url": "https://x"}), WebhookAction)
        assert isinstance(parse_action({"type": "internal_action", "action": "x"}), InternalAction)
        assert isinstance(parse_action({"type": "trigger_agent", "agent_id": "a"}), TriggerAgentAction)

    def test_webhook_defaults(self):
        action = parse_action({"type": "webhook"})
        assert action.method == "POST"
        assert action.url is None
        assert action.headers == {}

    @pytest.mark.parametrize("raw", [{"type": "email"}, {"url": "x"}, "webhook", None])
    def test_unknown_or_malformed(self, raw):
        assert parse_action(raw) is None


class TestSubjects:
    def test_note(self):
        note = Note(id=NOTE_ID, studio_handle="design", text="First line\nsecond line")
        assert note.path() == "/studios/design/n/0f1e2d3c"
        assert note.title() == "First line"
        assert note.body() == "First line\nsecond line"

    def test_note_title_truncated(self):
        note = Note(id=NOTE_ID, text="x" * 200)
        assert len(note.title()) == 80
        assert note.title().endswith("...")

    def test_note_payload_truncates_text(self):
        note = Note(id=NOTE_ID, text="y" * 1000)
        payload = note.payload()
        assert len(payload["text"]) == 500
        assert payload["path"] == "/n/0f1e2d3c"

    def test_decision(self):
        decision = Decision(id=NOTE_ID, studio_handle="design", question="Ship it?", description="Q3")
        assert decision.path() == "/studios/design/d/0f1e2d3c"
        assert decision.title() == "Ship it?"
        assert decision.payload()["description"] == "Q3"

    def test_commitment_title_alias(self):
        commitment = Commitment(id=NOTE_ID, title="Write docs", description="by Friday")
        assert commitment.title() == "Write docs"
        assert commitment.path() == "/c/0f1e2d3c"

    def test_event_validates_tagged_subject(self, make_event):
        event = make_event()
        data = event.model_dump(mode="json")
        restored = Event.model_validate(data)
        assert isinstance(restored.subject, Note)
        assert restored.tenant_id == TENANT.id
        assert restored.studio_id == "studio-1"
