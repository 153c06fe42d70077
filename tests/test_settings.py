"""Tests for settings loading."""

import sys

import pytest
from pydantic import ValidationError

sys.path.insert(0, "src")

from automation_engine.config import Settings


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for var in ("AUTOMATION_MAX_CHAIN_DEPTH", "AUTOMATION_WEBHOOK_SIGNING_SECRET", "AUTOMATION_LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.database_url == "sqlite:///automation-state.db"
        assert settings.max_chain_depth == 3
        assert settings.max_rules_per_chain == 10
        assert settings.dispatch_agent_rule_max_runs == 3
        assert settings.dispatch_general_rule_max_runs == 10
        assert settings.webhook_timestamp_tolerance_seconds == 300
        assert settings.webhook_signing_secret is None

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("AUTOMATION_MAX_CHAIN_DEPTH", "5")
        monkeypatch.setenv("AUTOMATION_WEBHOOK_SIGNING_SECRET", "fallback")
        settings = Settings()
        assert settings.max_chain_depth == 5
        assert settings.webhook_signing_secret == "fallback"

    def test_init_overrides_env(self, monkeypatch):
        monkeypatch.setenv("AUTOMATION_MAX_CHAIN_DEPTH", "5")
        assert Settings(max_chain_depth=2).max_chain_depth == 2

    def test_yaml_file(self, tmp_path):
        (tmp_path / "automation.yaml").write_text("log_level: DEBUG\nmax_rules_per_chain: 4\n")
        settings = Settings()
        assert settings.log_level == "DEBUG"
        assert settings.max_rules_per_chain == 4

    def test_unresolved_placeholder_uses_default(self, tmp_path):
        (tmp_path / "automation.yaml").write_text("webhook_signing_secret: ${SIGNING_SECRET}\n")
        assert Settings().webhook_signing_secret is None

    def test_rejects_zero_depth(self):
        with pytest.raises(ValidationError):
            Settings(max_chain_depth=0)
