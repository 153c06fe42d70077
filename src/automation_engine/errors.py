"""Automation Engine Error Hierarchy.

Structured exception types for rule dispatch, execution and delivery.
"""

from __future__ import annotations


class AutomationError(Exception):
    """Base error for all automation engine exceptions."""

    code = "AUTOMATION_ERROR"

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


# Rule Errors
class RuleError(AutomationError):
    """Base error for rule definition problems."""

    code = "RULE_ERROR"


class RuleValidationError(RuleError):
    """A rule definition failed validation."""

    code = "RULE_VALIDATION"

    def __init__(self, message: str, field: str = None):
        super().__init__(message, {"field": field})
        self.field = field


class RuleNotFoundError(RuleError):
    """A referenced rule does not exist."""

    code = "RULE_NOT_FOUND"

    def __init__(self, rule_id: str):
        super().__init__(f"Automation rule {rule_id} not found", {"rule_id": rule_id})
        self.rule_id = rule_id


class RuleDisabledError(RuleError):
    """The rule exists but is disabled."""

    code = "RULE_DISABLED"

    def __init__(self, rule_id: str):
        super().__init__(f"Automation rule {rule_id} is disabled", {"rule_id": rule_id})
        self.rule_id = rule_id


# Run Errors
class RunError(AutomationError):
    """Base error for run lifecycle failures."""

    code = "RUN_ERROR"


class RunNotFoundError(RunError):
    """A referenced run does not exist."""

    code = "RUN_NOT_FOUND"

    def __init__(self, run_id: str):
        super().__init__(f"Automation run {run_id} not found", {"run_id": run_id})
        self.run_id = run_id


# Webhook Errors
class WebhookVerificationError(AutomationError):
    """An inbound webhook failed authentication."""

    code = "WEBHOOK_VERIFICATION"

    def __init__(self, message: str, reason: str):
        super().__init__(message, {"reason": reason})
        self.reason = reason
