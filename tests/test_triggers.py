"""Tests for manual, inbound webhook, test and schedule triggers."""

import sys
from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest

sys.path.insert(0, "src")

from automation_engine.errors import RuleDisabledError, RuleNotFoundError, WebhookVerificationError
from automation_engine.models import DeliveryStatus, RunStatus, TriggerSource
from automation_engine.rules.scheduler import fires_at
from automation_engine.utils import utc_now
from automation_engine.webhooks import signature_header

from conftest import TENANT
from test_delivery import CLIENT_PATH, _mock_client


def _rule(trigger, actions=None, **overrides):
    definition = {
        "name": f"{trigger['type']} rule",
        "tenant_id": TENANT.id,
        "trigger": trigger,
        "actions": actions if actions is not None else [],
    }
    definition.update(overrides)
    return definition


def _signed(rule, body=b'{"id": 7}', now=None):
    timestamp = str(int((now or utc_now()).timestamp()))
    return body, timestamp, signature_header(body, timestamp, rule.webhook_secret)


class TestManualTrigger:
    def test_creates_manual_run(self, engine):
        rule = engine.add_rule(_rule({"type": "manual"}))
        run = engine.trigger_manual(rule.id, {"env": "prod"}, triggered_by_id="u-alice")

        assert run.trigger_source == TriggerSource.MANUAL
        assert run.status == RunStatus.PENDING
        assert run.trigger_data["inputs"] == {"env": "prod"}
        assert run.trigger_data["triggered_by_id"] == "u-alice"
        assert run.chain_metadata["depth"] == 1

    def test_unknown_rule(self, engine):
        with pytest.raises(RuleNotFoundError):
            engine.trigger_manual("missing")

    def test_disabled_rule(self, engine):
        rule = engine.add_rule(_rule({"type": "manual"}, enabled=False))
        with pytest.raises(RuleDisabledError):
            engine.trigger_manual(rule.id)


class TestInboundWebhook:
    @pytest.fixture
    def rule(self, engine):
        return engine.add_rule(_rule({"type": "webhook"}))

    def test_rule_gets_path_and_secret(self, rule):
        assert rule.webhook_path
        assert len(rule.webhook_secret) == 64

    def test_valid_request_creates_run(self, engine, rule):
        body, timestamp, signature = _signed(rule)
        run = engine.receive_webhook(rule.webhook_path, body, timestamp, signature, source_ip="10.1.1.1")

        assert run.trigger_source == TriggerSource.WEBHOOK
        assert run.trigger_data["payload"] == {"id": 7}
        assert run.trigger_data["source_ip"] == "10.1.1.1"

    def test_non_json_body_kept_raw(self, engine, rule):
        body, timestamp, signature = _signed(rule, body=b"plain text")
        run = engine.receive_webhook(rule.webhook_path, body, timestamp, signature)
        assert run.trigger_data["payload"] == "plain text"

    def test_payload_reaches_templates(self, engine):
        rule = engine.add_rule(
            _rule(
                {"type": "webhook"},
                actions=[{"type": "webhook", "url": "https://x/items/{{payload.id}}"}],
            )
        )
        body, timestamp, signature = _signed(rule)
        run = engine.receive_webhook(rule.webhook_path, body, timestamp, signature)
        engine.execute(run.id)
        [delivery] = engine.deliveries.for_run(run.id)
        assert delivery.url == "https://x/items/7"

    def test_invalid_signature(self, engine, rule):
        body, timestamp, _ = _signed(rule)
        with pytest.raises(WebhookVerificationError) as exc_info:
            engine.receive_webhook(rule.webhook_path, body, timestamp, "sha256=" + "0" * 64)
        assert exc_info.value.reason == "invalid_signature"

    def test_missing_timestamp(self, engine, rule):
        body, _, signature = _signed(rule)
        with pytest.raises(WebhookVerificationError) as exc_info:
            engine.receive_webhook(rule.webhook_path, body, None, signature)
        assert exc_info.value.reason == "missing_timestamp"

    def test_non_numeric_timestamp(self, engine, rule):
        body, _, signature = _signed(rule)
        with pytest.raises(WebhookVerificationError) as exc_info:
            engine.receive_webhook(rule.webhook_path, body, "yesterday", signature)
        assert exc_info.value.reason == "invalid_timestamp"

    def test_stale_timestamp(self, engine, rule):
        stale = utc_now() - timedelta(seconds=301)
        body, timestamp, signature = _signed(rule, now=stale)
        with pytest.raises(WebhookVerificationError) as exc_info:
            engine.receive_webhook(rule.webhook_path, body, timestamp, signature)
        assert exc_info.value.reason == "timestamp_out_of_range"

    def test_unknown_path(self, engine):
        with pytest.raises(RuleNotFoundError):
            engine.receive_webhook("nope", b"{}", "0", "sha256=x")

    def test_disabled_rule(self, engine, rule):
        engine.rules.set_enabled(rule.id, False)
        body, timestamp, signature = _signed(rule)
        with pytest.raises(RuleDisabledError):
            engine.receive_webhook(rule.webhook_path, body, timestamp, signature)


class TestTestRule:
    def test_runs_inline_and_delivers(self, engine):
        rule = engine.add_rule(
            _rule({"type": "manual"}, actions=[{"type": "webhook", "url": "https://x/hook"}], enabled=False)
        )
        with patch(CLIENT_PATH, return_value=_mock_client(200)):
            result = engine.test_rule(rule.id, {"dry": True})

        assert result["status"] == "completed"
        assert result["error_message"] is None
        assert result["actions_executed"][0]["result"] == "dispatched"
        assert result["deliveries"][0]["status"] == DeliveryStatus.SUCCESS.value
        assert engine.get_run(result["run_id"]).trigger_source == TriggerSource.TEST

    def test_failed_delivery_reported(self, engine):
        rule = engine.add_rule(_rule({"type": "manual"}, actions=[{"type": "webhook", "url": "https://x/hook"}]))
        with patch(CLIENT_PATH, return_value=_mock_client(502, reason="Bad Gateway")):
            result = engine.test_rule(rule.id)

        assert result["status"] == "running"
        assert result["deliveries"][0]["status"] == "retrying"
        assert result["deliveries"][0]["response_code"] == 502

    def test_unknown_rule(self, engine):
        with pytest.raises(RuleNotFoundError):
            engine.test_rule("missing")


class TestSchedules:
    def test_fires_on_matching_minute(self, engine):
        rule = engine.add_rule(_rule({"type": "schedule", "cron": "*/5 * * * *"}))
        runs = engine.tick_schedules(datetime(2026, 10, 18, 10, 5, 30, tzinfo=UTC))

        [run] = runs
        assert run.rule_id == rule.id
        assert run.trigger_source == TriggerSource.SCHEDULE
        assert run.trigger_data["scheduled_at"] == "2026-10-18T10:05:00+00:00"

    def test_at_most_once_per_minute(self, engine):
        engine.add_rule(_rule({"type": "schedule", "cron": "* * * * *"}))
        now = datetime(2026, 10, 18, 10, 5, 1, tzinfo=UTC)
        assert len(engine.tick_schedules(now)) == 1
        assert engine.tick_schedules(now + timedelta(seconds=30)) == []
        assert len(engine.tick_schedules(now + timedelta(minutes=1))) == 1

    def test_skips_other_minutes(self, engine):
        engine.add_rule(_rule({"type": "schedule", "cron": "*/5 * * * *"}))
        assert engine.tick_schedules(datetime(2026, 10, 18, 10, 6, tzinfo=UTC)) == []

    def test_timezone(self, engine):
        rule = engine.add_rule(
            _rule({"type": "schedule", "cron": "0 9 * * *", "timezone": "America/New_York"})
        )
        # 09:00 EDT
        assert fires_at(rule, datetime(2026, 10, 18, 13, 0, tzinfo=UTC))
        assert not fires_at(rule, datetime(2026, 10, 18, 9, 0, tzinfo=UTC))

    def test_default_timezone_is_utc(self, engine):
        rule = engine.add_rule(_rule({"type": "schedule", "cron": "0 9 * * *"}))
        assert rule.timezone == "UTC"
        assert fires_at(rule, datetime(2026, 10, 18, 9, 0, 45, tzinfo=UTC))

    def test_invalid_cron_is_skipped(self, engine):
        engine.add_rule(_rule({"type": "schedule", "cron": "not a cron"}, name="broken"))
        good = engine.add_rule(_rule({"type": "schedule", "cron": "* * * * *"}, name="good"))
        runs = engine.tick_schedules(datetime(2026, 10, 18, 10, 5, tzinfo=UTC))
        assert [r.rule_id for r in runs] == [good.id]

    def test_disabled_schedule_ignored(self, engine):
        engine.add_rule(_rule({"type": "schedule", "cron": "* * * * *"}, enabled=False))
        assert engine.tick_schedules(datetime(2026, 10, 18, 10, 5, tzinfo=UTC)) == []

    def test_next_fire_time(self, engine):
        rule = engine.add_rule(_rule({"type": "schedule", "cron": "*/5 * * * *"}))
        after = datetime(2026, 10, 18, 10, 5, tzinfo=UTC)
        assert engine.schedule_runner.next_fire_time(rule, after) == datetime(
            2026, 10, 18, 10, 10, tzinfo=UTC
        )
