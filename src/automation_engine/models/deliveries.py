"""Outbound webhook delivery models."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from automation_engine.utils import utc_now


class DeliveryStatus(str, Enum):
    """Status of a webhook delivery."""

    PENDING = "pending"
    RETRYING = "retrying"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryStatus.SUCCESS, DeliveryStatus.FAILED)


class WebhookDelivery(BaseModel):
    """A webhook delivery owned by a run."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    rule_id: str
    url: str
    method: str = "POST"
    request_body: str
    headers: dict[str, str] = Field(default_factory=dict)
    secret: str | None = None
    event_type: str = "automation.webhook"
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempt_count: int = 0
    next_retry_at: datetime | None = None
    response_code: int | None = None
    response_body: str | None = None
    error_message: str | None = None
    delivered_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)
