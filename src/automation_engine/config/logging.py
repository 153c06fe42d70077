"""Logging setup: text or JSON records on stdout, with run context and redaction."""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from automation_engine.utils.validation import sanitize_log_message

# Attributes callers attach via ``extra=``; both formatters surface them
CONTEXT_FIELDS = (
    "rule_id",
    "run_id",
    "delivery_id",
    "task_id",
    "event_id",
    "tenant_id",
    "status_code",
    "duration_ms",
)

NOISY_LOGGERS = ("urllib3", "apscheduler", "uvicorn.access")


def record_context(record: logging.LogRecord) -> dict[str, Any]:
    return {name: getattr(record, name) for name in CONTEXT_FIELDS if hasattr(record, name)}


class SanitizingFilter(logging.Filter):
    """Redacts secrets, tokens and webhook signatures before records are emitted."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.msg:
            record.msg = sanitize_log_message(str(record.msg))
        if isinstance(record.args, tuple) and record.args:
            record.args = tuple(
                sanitize_log_message(arg) if isinstance(arg, str) else arg for arg in record.args
            )
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **record_context(record),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines; run context is appended as ``[key=value ...]``."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = record_context(record)
        if not context:
            return line
        suffix = " ".join(f"{key}={value}" for key, value in context.items())
        head, sep, rest = line.partition("\n")
        return f"{head} [{suffix}]{sep}{rest}"


def configure_logging(
    level: str = "INFO", format: str = "text", sanitize_logs: bool = True
) -> None:
    """Replace the root handlers with a single stdout handler.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: 'text' or 'json'
        sanitize_logs: Redact secrets and signatures from messages
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter() if format.lower() == "json" else TextFormatter())
    if sanitize_logs:
        handler.addFilter(SanitizingFilter())

    root = logging.getLogger()
    root.setLevel(numeric_level)
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
