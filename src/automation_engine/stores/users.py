"""User directory and @handle resolution."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from automation_engine.models import User
from automation_engine.utils import is_valid_handle

if TYPE_CHECKING:
    from automation_engine.state import DatabaseBackend

logger = logging.getLogger(__name__)


class UserDirectory:
    """Tenant-scoped users and agents.

    Also serves as the default mention resolver.
    """

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS automation_users (
            id TEXT PRIMARY KEY,
            tenant_id TEXT NOT NULL,
            handle TEXT NOT NULL,
            name TEXT NOT NULL DEFAULT '',
            is_agent INTEGER NOT NULL DEFAULT 0,
            UNIQUE (tenant_id, handle)
        );
    """

    def __init__(self, backend: DatabaseBackend):
        self.backend = backend
        self.backend.executescript(self.SCHEMA)

    def add_user(self, user: User) -> User:
        """Register a user or agent within its tenant.

        Raises:
            ValueError: If the user has no tenant or an invalid handle.
        """
        if not user.tenant_id:
            raise ValueError(f"User {user.id} has no tenant")
        handle = user.handle.lower()
        if not is_valid_handle(handle):
            raise ValueError(f"Invalid handle: {user.handle!r}")

        with self.backend.transaction():
            self.backend.execute(
                """
                INSERT INTO automation_users (id, tenant_id, handle, name, is_agent)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user.id, user.tenant_id, handle, user.name, int(user.is_agent)),
            )
        return user.model_copy(update={"handle": handle})

    def get(self, user_id: str) -> User | None:
        row = self.backend.fetchone(
            "SELECT * FROM automation_users WHERE id = ?",
            (user_id,),
        )
        return self._row_to_user(row) if row else None

    def get_agent(self, agent_id: str) -> User | None:
        """Return the user only if it exists and is an agent."""
        user = self.get(agent_id)
        if user is None or not user.is_agent:
            return None
        return user

    def resolve(self, handle: str, tenant_id: str) -> User | None:
        row = self.backend.fetchone(
            "SELECT * FROM automation_users WHERE tenant_id = ? AND handle = ?",
            (tenant_id, handle.lower()),
        )
        return self._row_to_user(row) if row else None

    def _row_to_user(self, row: dict) -> User:
        return User(
            id=row["id"],
            tenant_id=row["tenant_id"],
            handle=row["handle"],
            name=row["name"],
            is_agent=bool(row["is_agent"]),
        )
