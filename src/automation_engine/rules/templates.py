"""``{{ dot.path }}`` template rendering for task prompts and action payloads.

Output is HTML-escaped and never re-expanded, so values taken from events
cannot inject further tokens or markup.
"""

from __future__ import annotations

import html
import json
import re
from typing import Any

from .context import context_from_event, context_from_trigger_data, resolve_field_path

_TOKEN_RE = re.compile(r"\{\{([^}]+)\}\}")

__all__ = [
    "context_from_event",
    "context_from_trigger_data",
    "render",
    "render_value",
]


def render(template: str, context: dict[str, Any]) -> str:
    """Replace every ``{{path}}`` token with the escaped value at that path."""
    if not template:
        return ""

    def _replace(match: re.Match) -> str:
        value = resolve_field_path(match.group(1).strip(), context)
        return _sanitize(value)

    return _TOKEN_RE.sub(_replace, template)


def render_value(value: Any, context: dict[str, Any]) -> Any:
    """Render every string leaf of a nested payload."""
    if isinstance(value, str):
        return render(value, context)
    if isinstance(value, dict):
        return {key: render_value(item, context) for key, item in value.items()}
    if isinstance(value, list):
        return [render_value(item, context) for item in value]
    return value


def _sanitize(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        text = "true" if value else "false"
    elif isinstance(value, (dict, list)):
        text = json.dumps(value)
    else:
        text = str(value)
    return html.escape(text)
