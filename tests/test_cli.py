"""Tests for the automation CLI."""

import json
import sys
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

sys.path.insert(0, "src")

from automation_engine.cli import app
from automation_engine.models import RunStatus

from conftest import TENANT, webhook_rule
from test_delivery import CLIENT_PATH, _mock_client

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_engine(engine):
    with (
        patch("automation_engine.cli.helpers._engine", engine),
        patch("automation_engine.cli.main.configure_logging"),
    ):
        yield engine


def _write(tmp_path, name, data):
    path = tmp_path / name
    path.write_text(json.dumps(data))
    return path


class TestRulesCommands:
    def test_add_from_json(self, tmp_path, cli_engine):
        result = runner.invoke(app, ["rules", "add", str(_write(tmp_path, "rule.json", webhook_rule()))])
        assert result.exit_code == 0
        assert "Saved rule" in result.output
        assert len(cli_engine.rules.list_rules()) == 1

    def test_add_from_yaml(self, tmp_path, cli_engine):
        path = tmp_path / "rule.yaml"
        path.write_text(
            "name: Inbound\n"
            "tenant_id: tenant-1\n"
            "trigger:\n"
            "  type: webhook\n"
            "actions: []\n"
        )
        result = runner.invoke(app, ["rules", "add", str(path)])
        assert result.exit_code == 0
        assert "/hooks/" in result.output

    def test_add_invalid_rule(self, tmp_path):
        path = _write(tmp_path, "rule.json", webhook_rule(trigger={"type": "bogus"}))
        result = runner.invoke(app, ["rules", "add", str(path)])
        assert result.exit_code == 1
        assert "Invalid rule" in result.output

    def test_add_missing_file(self, tmp_path):
        result = runner.invoke(app, ["rules", "add", str(tmp_path / "nope.json")])
        assert result.exit_code == 1

    def test_list_json(self, cli_engine):
        cli_engine.add_rule(webhook_rule())
        result = runner.invoke(app, ["rules", "list", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.output)[0]["name"] == "Notify on notes"

    def test_list_empty(self):
        result = runner.invoke(app, ["rules", "list"])
        assert result.exit_code == 0
        assert "No automation rules" in result.output

    def test_disable_and_enable(self, cli_engine):
        rule = cli_engine.add_rule(webhook_rule())
        assert runner.invoke(app, ["rules", "disable", rule.id]).exit_code == 0
        assert not cli_engine.rules.get(rule.id).enabled
        assert runner.invoke(app, ["rules", "enable", rule.id]).exit_code == 0
        assert cli_engine.rules.get(rule.id).enabled

    def test_disable_unknown(self):
        result = runner.invoke(app, ["rules", "disable", "missing"])
        assert result.exit_code == 1

    def test_trigger_runs_inline(self, cli_engine):
        rule = cli_engine.add_rule(webhook_rule(trigger={"type": "manual"}))
        with patch(CLIENT_PATH, return_value=_mock_client(200)):
            result = runner.invoke(app, ["rules", "trigger", rule.id, "--inputs", '{"env": "prod"}'])

        assert result.exit_code == 0
        [run] = cli_engine.list_runs(rule_id=rule.id)
        assert run.status == RunStatus.COMPLETED
        assert run.trigger_data["inputs"] == {"env": "prod"}

    def test_trigger_rejects_non_object_inputs(self, cli_engine):
        rule = cli_engine.add_rule(webhook_rule(trigger={"type": "manual"}))
        result = runner.invoke(app, ["rules", "trigger", rule.id, "--inputs", "[1, 2]"])
        assert result.exit_code == 1

    def test_test_command(self, cli_engine):
        rule = cli_engine.add_rule(webhook_rule(trigger={"type": "manual"}))
        with patch(CLIENT_PATH, return_value=_mock_client(200)):
            result = runner.invoke(app, ["rules", "test", rule.id])
        assert result.exit_code == 0
        assert "completed" in result.output


class TestDispatchCommand:
    def test_dispatch_executes_matches(self, tmp_path, cli_engine, make_event):
        cli_engine.add_rule(webhook_rule())
        path = _write(tmp_path, "event.json", make_event().model_dump(mode="json"))

        with patch(CLIENT_PATH, return_value=_mock_client(200)):
            result = runner.invoke(app, ["dispatch", str(path)])

        assert result.exit_code == 0
        [run] = cli_engine.list_runs()
        assert run.status == RunStatus.COMPLETED
        assert len(cli_engine.events.list_events(TENANT.id)) == 1

    def test_dispatch_without_execute(self, tmp_path, cli_engine, make_event):
        cli_engine.add_rule(webhook_rule())
        path = _write(tmp_path, "event.json", make_event().model_dump(mode="json"))
        result = runner.invoke(app, ["dispatch", str(path), "--no-execute"])

        assert result.exit_code == 0
        [run] = cli_engine.list_runs()
        assert run.status == RunStatus.PENDING

    def test_no_match(self, tmp_path, make_event):
        path = _write(tmp_path, "event.json", make_event().model_dump(mode="json"))
        result = runner.invoke(app, ["dispatch", str(path)])
        assert result.exit_code == 0
        assert "No rules matched" in result.output

    def test_invalid_event(self, tmp_path):
        result = runner.invoke(app, ["dispatch", str(_write(tmp_path, "event.json", {"event_type": 1}))])
        assert result.exit_code == 1


class TestRunsCommands:
    def test_list_and_show(self, cli_engine):
        rule = cli_engine.add_rule(webhook_rule(trigger={"type": "manual"}))
        run = cli_engine.trigger_manual(rule.id)

        result = runner.invoke(app, ["runs", "list", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.output)[0]["id"] == run.id

        result = runner.invoke(app, ["runs", "show", run.id])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["status"] == "pending"
        assert data["deliveries"] == []

    def test_invalid_status(self):
        result = runner.invoke(app, ["runs", "list", "--status", "exploded"])
        assert result.exit_code == 1

    def test_show_unknown(self):
        result = runner.invoke(app, ["runs", "show", "missing"])
        assert result.exit_code == 1


class TestVersion:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "version" in result.output
