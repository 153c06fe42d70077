"""Tests for signed webhook delivery, retries and run completion."""

import sys
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
import requests

sys.path.insert(0, "src")

from automation_engine.models import DeliveryStatus, RunStatus
from automation_engine.utils import utc_now
from automation_engine.webhooks import MAX_ATTEMPTS, RETRY_DELAYS, retry_delay, verify_signature

from conftest import webhook_rule

CLIENT_PATH = "automation_engine.webhooks.delivery.get_sync_client"


def _mock_client(status_code=200, reason="OK", text='{"ok":true}'):
    """Return a mock HTTP client that answers every request with ``status_code``."""
    mock_resp = MagicMock()
    mock_resp.status_code = status_code
    mock_resp.reason = reason
    mock_resp.text = text
    mock = MagicMock()
    mock.request.return_value = mock_resp
    return mock


def _mock_client_raising(exc):
    mock = MagicMock()
    mock.request.side_effect = exc
    return mock


@pytest.fixture
def dispatched(engine, people, make_event):
    """A run executed up to its pending webhook delivery."""
    rule = engine.add_rule(webhook_rule())
    [run] = engine.publish(make_event(actor=people["alice"]))
    run = engine.execute(run.id)
    [delivery] = engine.deliveries.for_run(run.id)
    return rule, run, delivery


class TestRetryDelays:
    def test_schedule(self):
        assert RETRY_DELAYS == [
            timedelta(minutes=1),
            timedelta(minutes=5),
            timedelta(minutes=30),
            timedelta(hours=2),
            timedelta(hours=24),
        ]

    def test_retry_delay_indexes_by_attempt(self):
        assert retry_delay(1) == timedelta(minutes=1)
        assert retry_delay(4) == timedelta(hours=2)
        assert retry_delay(99) == timedelta(hours=24)


class TestDeliveryLifecycle:
    def test_run_running_until_delivery_succeeds(self, engine, dispatched):
        _, run, delivery = dispatched
        assert run.status == RunStatus.RUNNING
        assert delivery.status == DeliveryStatus.PENDING

        with patch(CLIENT_PATH, return_value=_mock_client(200)):
            result = engine.deliver(delivery.id)

        assert result.status == DeliveryStatus.SUCCESS
        assert result.attempt_count == 1
        assert result.delivered_at is not None
        run = engine.get_run(run.id)
        assert run.status == RunStatus.COMPLETED
        assert run.completed_at is not None
        assert run.error_message is None

    def test_five_failures_fail_the_run(self, engine, dispatched):
        _, run, delivery = dispatched
        client = _mock_client(500, reason="Internal Server Error")

        with patch(CLIENT_PATH, return_value=client):
            for _ in range(MAX_ATTEMPTS):
                engine.deliver(delivery.id)

        delivery = engine.deliveries.get(delivery.id)
        assert delivery.attempt_count == 5
        assert delivery.status == DeliveryStatus.FAILED
        assert delivery.next_retry_at is None

        run = engine.get_run(run.id)
        assert run.status == RunStatus.FAILED
        assert "Max retries exceeded" in run.error_message
        assert "HTTP 500" in run.error_message

    def test_failed_attempt_schedules_retry(self, engine, dispatched):
        _, run, delivery = dispatched
        before = utc_now()

        with patch(CLIENT_PATH, return_value=_mock_client(503, reason="Service Unavailable")):
            result = engine.deliver(delivery.id)

        assert result.status == DeliveryStatus.RETRYING
        assert result.error_message == "HTTP 503: Service Unavailable"
        assert result.next_retry_at >= before + timedelta(minutes=1)
        assert engine.get_run(run.id).status == RunStatus.RUNNING

    def test_deliver_due_waits_for_backoff(self, engine, dispatched):
        _, run, delivery = dispatched
        with patch(CLIENT_PATH, return_value=_mock_client(500, reason="Error")):
            engine.deliver(delivery.id)

        client = _mock_client(200)
        with patch(CLIENT_PATH, return_value=client):
            assert engine.deliver_due() == []
            attempted = engine.deliver_due(now=utc_now() + timedelta(minutes=2))

        assert [d.id for d in attempted] == [delivery.id]
        assert attempted[0].status == DeliveryStatus.SUCCESS
        assert engine.get_run(run.id).status == RunStatus.COMPLETED

    def test_transport_errors_are_retried(self, engine, dispatched):
        _, _, delivery = dispatched
        client = _mock_client_raising(requests.exceptions.Timeout("read timed out"))
        with patch(CLIENT_PATH, return_value=client):
            result = engine.deliver(delivery.id)
        assert result.status == DeliveryStatus.RETRYING
        assert result.error_message.startswith("Timeout:")

        client = _mock_client_raising(requests.exceptions.ConnectionError("refused"))
        with patch(CLIENT_PATH, return_value=client):
            result = engine.deliver(delivery.id)
        assert result.attempt_count == 2
        assert result.error_message.startswith("Connection error:")

    def test_terminal_delivery_is_not_resent(self, engine, dispatched):
        _, _, delivery = dispatched
        client = _mock_client(200)
        with patch(CLIENT_PATH, return_value=client):
            engine.deliver(delivery.id)
            engine.deliver(delivery.id)
        assert client.request.call_count == 1

    def test_disabled_rule_is_noop(self, engine, dispatched):
        rule, run, delivery = dispatched
        engine.rules.set_enabled(rule.id, False)

        client = _mock_client(200)
        with patch(CLIENT_PATH, return_value=client):
            result = engine.deliver(delivery.id)

        client.request.assert_not_called()
        assert result.status == DeliveryStatus.PENDING
        assert result.attempt_count == 0
        assert engine.get_run(run.id).status == RunStatus.RUNNING

    def test_unknown_delivery(self, engine):
        assert engine.deliver("missing") is None


class TestSignedRequest:
    def test_request_is_signed(self, engine, dispatched):
        rule, run, delivery = dispatched
        client = _mock_client(200)
        with patch(CLIENT_PATH, return_value=client):
            engine.deliver(delivery.id)

        args, kwargs = client.request.call_args
        assert args == ("POST", "https://x/hook")
        headers = kwargs["headers"]
        assert headers["Content-Type"] == "application/json"
        assert headers["X-Automation-Event"] == "note.created"
        assert headers["X-Automation-Delivery"] == delivery.id
        assert headers["X-Automation-Run"] == run.id
        assert verify_signature(
            kwargs["data"],
            headers["X-Automation-Timestamp"],
            headers["X-Automation-Signature"],
            rule.webhook_secret,
        )

    def test_default_body_is_event_envelope(self, engine, dispatched):
        import json

        _, _, delivery = dispatched
        body = json.loads(delivery.request_body)
        assert body["type"] == "note.created"
        assert body["tenant"] == {"id": "tenant-1", "subdomain": "acme"}
        assert body["actor"]["handle"] == "alice"
        assert body["data"]["note"]["path"] == "/studios/design/n/0f1e2d3c"

    def test_custom_headers_cannot_override_protected(self, engine, people, make_event):
        engine.add_rule(
            webhook_rule(
                actions=[
                    {
                        "type": "webhook",
                        "url": "https://x/hook",
                        "method": "delete",
                        "headers": {
                            "X-Automation-Signature": "forged",
                            "X-Title": "{{subject.title}}",
                        },
                    }
                ]
            )
        )
        [run] = engine.publish(make_event(text="Quarterly review"))
        engine.execute(run.id)
        [delivery] = engine.deliveries.for_run(run.id)

        assert delivery.method == "POST"
        assert delivery.headers == {"X-Title": "Quarterly review"}

    def test_missing_secret_fails_without_request(self, engine, dispatched):
        rule, run, _ = dispatched
        delivery = engine.delivery_service.create(
            run, rule, url="https://x/other", body="{}", secret="", event_type="note.created"
        )
        client = _mock_client(200)
        with patch(CLIENT_PATH, return_value=client):
            result = engine.deliver(delivery.id)

        client.request.assert_not_called()
        assert result.status == DeliveryStatus.FAILED
        assert result.error_message == "No signing secret configured"


class TestAttemptRecording:
    def test_stale_attempt_is_rejected(self, engine, dispatched):
        _, _, delivery = dispatched
        delivery.attempt_count = 1
        delivery.status = DeliveryStatus.SUCCESS
        assert engine.deliveries.save_attempt(delivery, expected_attempt_count=0) is True
        assert engine.deliveries.save_attempt(delivery, expected_attempt_count=0) is False
