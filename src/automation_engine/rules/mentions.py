"""Mention filtering for agent rules."""

from __future__ import annotations

import logging
import re

from automation_engine.collaborators import MentionResolver
from automation_engine.models import Event, User

logger = logging.getLogger(__name__)

_HANDLE_RE = re.compile(r"@([A-Za-z0-9_-]+)")

SELF = "self"
ANY_AGENT = "any_agent"


def extract_handles(text: str | None) -> list[str]:
    """Return the distinct ``@handle`` tokens in ``text``, in order of appearance."""
    if not text:
        return []
    seen: dict[str, None] = {}
    for handle in _HANDLE_RE.findall(text):
        seen.setdefault(handle.lower(), None)
    return list(seen)


def mentionable_text(event: Event) -> str | None:
    """Join the subject's title and body, or None when there is nothing to scan."""
    subject = event.subject
    if subject is None:
        return None
    parts = [part for part in (subject.title(), subject.body()) if part]
    return " ".join(parts) or None


def mentioned_users(event: Event, resolver: MentionResolver) -> list[User]:
    users = []
    for handle in extract_handles(mentionable_text(event)):
        user = resolver.resolve(handle, event.tenant_id)
        if user is not None:
            users.append(user)
    return users


def matches(
    event: Event,
    target_agent: User | None,
    mention_filter: str | None,
    resolver: MentionResolver,
) -> bool:
    """Check whether an event satisfies a rule's mention filter.

    ``self`` requires the target agent to be mentioned, ``any_agent``
    requires any agent to be mentioned. A blank filter always matches and an
    unknown filter never does.
    """
    if not mention_filter:
        return True

    if mention_filter == SELF:
        if target_agent is None:
            return False
        return any(user.id == target_agent.id for user in mentioned_users(event, resolver))

    if mention_filter == ANY_AGENT:
        return any(user.is_agent for user in mentioned_users(event, resolver))

    logger.debug(f"Unknown mention filter: {mention_filter}")
    return False
