"""Pytest configuration and fixtures."""

import os
import sys
import tempfile
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from automation_engine.config import Settings
from automation_engine.engine import AutomationEngine
from automation_engine.models import Event, Note, Studio, Tenant, User
from automation_engine.state.backends import SQLiteBackend

TENANT = Tenant(id="tenant-1", subdomain="acme")
OTHER_TENANT = Tenant(id="tenant-2", subdomain="globex")
STUDIO = Studio(id="studio-1", handle="design", name="Design")


@pytest.fixture
def backend():
    """Create a temporary SQLite backend."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = os.path.join(tmpdir, "test.db")
        b = SQLiteBackend(db_path=db_path)
        yield b
        b.close()


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite:///unused.db",
        webhook_signing_secret=None,
        dispatch_rate_window_seconds=60,
    )


@pytest.fixture
def engine(backend, settings):
    """Engine without workers; runs stay pending until executed."""
    return AutomationEngine(backend=backend, settings=settings)


@pytest.fixture
def people(engine):
    """A human and two agents in TENANT, plus an agent in another tenant."""
    return {
        "alice": engine.add_user(User(id="u-alice", handle="alice", name="Alice", tenant_id=TENANT.id)),
        "bot1": engine.add_user(
            User(id="u-bot1", handle="bot1", name="Bot One", is_agent=True, tenant_id=TENANT.id)
        ),
        "bot2": engine.add_user(
            User(id="u-bot2", handle="bot2", name="Bot Two", is_agent=True, tenant_id=TENANT.id)
        ),
        "outsider": engine.add_user(
            User(
                id="u-outsider",
                handle="outsider",
                name="Outsider",
                is_agent=True,
                tenant_id=OTHER_TENANT.id,
            )
        ),
    }


@pytest.fixture
def make_event():
    """Factory for note events in TENANT/STUDIO."""

    def _make(
        text: str = "hello world",
        event_type: str = "note.created",
        actor: User | None = None,
        tenant: Tenant = TENANT,
        studio: Studio | None = STUDIO,
        metadata: dict | None = None,
    ) -> Event:
        return Event(
            tenant=tenant,
            studio=studio,
            event_type=event_type,
            actor=actor,
            subject=Note(id="0f1e2d3c-4b5a-6978-8796-a5b4c3d2e1f0", studio_handle="design", text=text),
            metadata=metadata or {},
        )

    return _make


def webhook_rule(url: str = "https://x/hook", **overrides) -> dict:
    """Definition of a general event rule with one webhook action."""
    definition = {
        "name": "Notify on notes",
        "tenant_id": TENANT.id,
        "trigger": {"type": "event", "event_type": "note.created"},
        "actions": [{"type": "webhook", "url": url}],
    }
    definition.update(overrides)
    return definition
