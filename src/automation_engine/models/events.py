"""Domain event models consumed by the engine.

Subjects are polymorphic: each kind exposes ``title()``, ``body()`` and
``path()`` so renderers and filters never branch on the kind string.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Annotated, Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field

from automation_engine.utils import truncate, utc_now

PAYLOAD_TEXT_LIMIT = 500


class Tenant(BaseModel):
    """Top-level scope owning rules, users and events."""

    id: str
    subdomain: str = ""


class Studio(BaseModel):
    """Sub-scope (workspace) within a tenant."""

    id: str
    handle: str = ""
    name: str = ""

    @property
    def path(self) -> str:
        return f"/studios/{self.handle}"

    def reference(self) -> dict[str, Any]:
        return {"id": self.id, "handle": self.handle, "name": self.name}


class User(BaseModel):
    """A human user or an AI agent."""

    id: str
    handle: str
    name: str = ""
    is_agent: bool = False
    tenant_id: str | None = None

    def reference(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "handle": self.handle}


class _SubjectBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    studio_handle: str | None = None
    created_by_id: str | None = None

    # Path segment identifying the kind in URLs
    _segment: ClassVar[str] = ""

    @property
    def short_id(self) -> str:
        return self.id.replace("-", "")[:8]

    def path(self) -> str:
        prefix = f"/studios/{self.studio_handle}" if self.studio_handle else ""
        return f"{prefix}/{self._segment}/{self.short_id}"

    def title(self) -> str | None:
        raise NotImplementedError

    def body(self) -> str | None:
        raise NotImplementedError

    def payload(self) -> dict[str, Any]:
        """Subject data for the outbound webhook envelope."""
        raise NotImplementedError


class Note(_SubjectBase):
    """Free-text note (comments are notes too)."""

    kind: Literal["note"] = "note"
    text: str = ""

    _segment: ClassVar[str] = "n"

    def title(self) -> str | None:
        first_line = self.text.strip().split("\n", 1)[0]
        return truncate(first_line, 80) or None

    def body(self) -> str | None:
        return self.text

    def payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": truncate(self.text, PAYLOAD_TEXT_LIMIT),
            "path": self.path(),
        }


class Decision(_SubjectBase):
    kind: Literal["decision"] = "decision"
    question: str = ""
    description: str = ""

    _segment: ClassVar[str] = "d"

    def title(self) -> str | None:
        return self.question

    def body(self) -> str | None:
        return self.description

    def payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "description": truncate(self.description, PAYLOAD_TEXT_LIMIT),
            "path": self.path(),
        }


class Commitment(_SubjectBase):
    kind: Literal["commitment"] = "commitment"
    title_text: str = Field("", alias="title")
    description: str = ""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    _segment: ClassVar[str] = "c"

    def title(self) -> str | None:
        return self.title_text

    def body(self) -> str | None:
        return self.description

    def payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "description": truncate(self.description, PAYLOAD_TEXT_LIMIT),
            "path": self.path(),
        }


Subject = Annotated[Note | Decision | Commitment, Field(discriminator="kind")]


class Event(BaseModel):
    """Immutable record of a domain occurrence."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    tenant: Tenant
    studio: Studio | None = None
    event_type: str
    actor: User | None = None
    subject: Subject | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def tenant_id(self) -> str:
        return self.tenant.id

    @property
    def studio_id(self) -> str | None:
        return self.studio.id if self.studio else None
