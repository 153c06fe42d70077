"""Automation engine - event-driven rules with signed webhook delivery."""

__version__ = "0.4.0"

from .config import Settings, get_settings
from .engine import AutomationEngine
from .errors import (
    AutomationError,
    RuleDisabledError,
    RuleNotFoundError,
    RuleValidationError,
    RunNotFoundError,
    WebhookVerificationError,
)
from .models import Event, Rule, Run, RunStatus
from .workers import WorkerPool

__all__ = [
    "AutomationEngine",
    "AutomationError",
    "Event",
    "Rule",
    "RuleDisabledError",
    "RuleNotFoundError",
    "RuleValidationError",
    "Run",
    "RunNotFoundError",
    "RunStatus",
    "Settings",
    "WorkerPool",
    "WebhookVerificationError",
    "get_settings",
]
