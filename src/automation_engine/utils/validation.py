"""Input sanitization helpers shared across the engine."""

import re

# Applied in order; each pair is (pattern, replacement)
_SENSITIVE_PATTERNS = [
    (r"sha256=[a-f0-9]{64}", "sha256=[REDACTED_SIGNATURE]"),
    (r"(authorization[\"']?\s*[:=]\s*[\"']?)(bearer\s+)?[^\"'\s,}]+", r"\1[REDACTED]"),
    (r"secret[\"']?\s*[:=]\s*[\"']?[^\"'\s,}]+", "secret=[REDACTED]"),
    (r"password[\"']?\s*[:=]\s*[\"']?[^\"'\s,}]+", "password=[REDACTED]"),
    (r"token[\"']?\s*[:=]\s*[\"']?[^\"'\s,}]+", "token=[REDACTED]"),
]

_HANDLE_RE = re.compile(r"^[a-z0-9][a-z0-9_-]{0,63}$")


def sanitize_log_message(message: str, sensitive_patterns: list[str] | None = None) -> str:
    """Sanitize a log message to remove sensitive data.

    Args:
        message: Message to sanitize
        sensitive_patterns: Additional patterns to redact

    Returns:
        Sanitized message with sensitive data redacted
    """
    result = message

    for pattern, replacement in _SENSITIVE_PATTERNS:
        result = re.sub(pattern, replacement, result, flags=re.IGNORECASE)

    if sensitive_patterns:
        for pattern in sensitive_patterns:
            result = re.sub(pattern, "[REDACTED]", result, flags=re.IGNORECASE)

    return result


def truncate(value: str | None, limit: int) -> str | None:
    """Truncate *value* to *limit* characters, appending an ellipsis when cut."""
    if value is None or len(value) <= limit:
        return value
    return value[: max(limit - 3, 0)] + "..."


def is_valid_handle(handle: str) -> bool:
    """Return True if *handle* is a lowercase user or studio handle."""
    return bool(_HANDLE_RE.match(handle or ""))
