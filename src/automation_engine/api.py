"""FastAPI application for inbound webhooks and run queries."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from automation_engine import __version__
from automation_engine import api_state as state
from automation_engine.api_errors import (
    APIException,
    ErrorDetail,
    ErrorResponse,
    api_exception_handler,
    automation_exception_handler,
)
from automation_engine.api_routes import hooks, runs
from automation_engine.config import configure_logging, get_settings
from automation_engine.engine import AutomationEngine
from automation_engine.errors import AutomationError

logger = logging.getLogger(__name__)


def create_app(engine: AutomationEngine | None = None, start_workers: bool = False) -> FastAPI:
    """Build the API around *engine* (or one built from settings)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings = get_settings()
        configure_logging(
            level=settings.log_level,
            format=settings.log_format,
            sanitize_logs=settings.sanitize_logs,
        )
        if state.engine is None:
            state.engine = AutomationEngine.from_settings(settings)
        if start_workers:
            state.engine.start()
        logger.info("Automation API ready")
        yield
        logger.info("Shutting down automation API...")
        if start_workers:
            state.engine.shutdown()

    state.engine = engine
    app = FastAPI(title="Automation Engine", version=__version__, lifespan=lifespan)
    app.state.limiter = state.limiter

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        content = ErrorResponse(
            error=ErrorDetail(
                error_code="RATE_LIMITED",
                message="Rate limit exceeded",
                details={"limit": str(exc.detail)},
            )
        )
        return JSONResponse(status_code=429, content=content.model_dump())

    app.add_exception_handler(AutomationError, automation_exception_handler)
    app.add_exception_handler(APIException, api_exception_handler)

    app.include_router(hooks.router)
    app.include_router(runs.router)

    @app.get("/health")
    def health():
        return {"status": "ok", "version": __version__}

    return app
