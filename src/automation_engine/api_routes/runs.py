"""Run query endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Query

from automation_engine import api_state as state
from automation_engine.api_errors import bad_request, responses, service_unavailable
from automation_engine.models import RunStatus

router = APIRouter()


def _engine():
    if state.engine is None:
        raise service_unavailable()
    return state.engine


@router.get("/runs", responses=responses(400))
def list_runs(
    rule_id: str | None = None,
    tenant_id: str | None = None,
    status: str | None = None,
    limit: int = Query(50, ge=1, le=500),
):
    """List runs, newest first."""
    run_status = None
    if status:
        try:
            run_status = RunStatus(status)
        except ValueError:
            raise bad_request(f"Invalid status: {status}", {"status": status})

    runs = _engine().list_runs(rule_id=rule_id, tenant_id=tenant_id, status=run_status, limit=limit)
    return [run.model_dump(mode="json") for run in runs]


@router.get("/runs/{run_id}", responses=responses(404))
def get_run(run_id: str):
    """Get a run with its action log and sub-resources."""
    engine = _engine()
    run = engine.get_run(run_id)
    data = run.model_dump(mode="json")
    data["deliveries"] = [d.model_dump(mode="json") for d in engine.deliveries.for_run(run_id)]
    data["agent_tasks"] = [t.model_dump(mode="json") for t in engine.tasks.for_run(run_id)]
    return data
