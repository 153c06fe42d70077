"""Inbound webhook trigger endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Header, Request

from automation_engine import api_state as state
from automation_engine.api_errors import responses, service_unavailable

router = APIRouter()


@router.post("/hooks/{webhook_path}", status_code=202, responses=responses(401, 404, 409, 429))
@state.limiter.limit("30/minute")
async def receive_webhook(
    webhook_path: str,
    request: Request,
    x_automation_timestamp: str | None = Header(None, alias="X-Automation-Timestamp"),
    x_automation_signature: str | None = Header(None, alias="X-Automation-Signature"),
):
    """Trigger a webhook rule. Rate limited to 30/minute per IP.

    Authentication is an HMAC-SHA256 of ``"{timestamp}.{body}"`` in
    X-Automation-Signature, with the unix timestamp in X-Automation-Timestamp.
    """
    if state.engine is None:
        raise service_unavailable()

    body = await request.body()
    client_ip = request.client.host if request.client else None

    run = state.engine.receive_webhook(
        webhook_path,
        body,
        x_automation_timestamp,
        x_automation_signature,
        source_ip=client_ip,
    )
    return {"status": "accepted", "run_id": run.id}
