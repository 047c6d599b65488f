# src/lottery_orchestrator/http/app.py

"""
HTTP surface (FastAPI).

- POST /api/task          enqueue (optionally wait for the inline run)
- GET  /api/task?taskId=  status, plus debug / force / reset operator flags
- GET  /api/cron          enqueue winner selection for every ended lottery

The scheduler is started and stopped with the app lifespan.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..core.errors import (
    DuplicateTaskError,
    InvalidStateError,
    NotFoundError,
    OrchestratorError,
    StoreError,
    ValidationError,
)
from ..core.state import AppState

logger = logging.getLogger(__name__)


class EnqueueBody(BaseModel):
    # Field checks live in TaskApi.
    action: Any = None
    params: Any = None
    wait: bool = False


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message, **extra})


def create_app(state: AppState) -> FastAPI:
    api = state.api

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(state.settings, "scheduler_enabled", True):
            state.scheduler.start()
        try:
            yield
        finally:
            await state.aclose()
            logger.info("HTTP app stopped.")

    app = FastAPI(title="Lottery winner-selection orchestrator", lifespan=lifespan)
    app.state.orchestrator = state

    # ---- error mapping ----

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return _error(400, "Invalid request", details=jsonable_encoder(exc.errors()))

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError):
        return _error(400, str(exc))

    @app.exception_handler(DuplicateTaskError)
    async def duplicate_handler(request: Request, exc: DuplicateTaskError):
        return _error(409, str(exc), taskId=exc.existing_task_id)

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return _error(404, str(exc))

    @app.exception_handler(InvalidStateError)
    async def invalid_state_handler(request: Request, exc: InvalidStateError):
        return _error(409, str(exc))

    @app.exception_handler(StoreError)
    async def store_handler(request: Request, exc: StoreError):
        logger.error("Store error on %s: %s", request.url.path, exc)
        return _error(500, "Failed to create or read task", details=str(exc))

    @app.exception_handler(OrchestratorError)
    async def orchestrator_handler(request: Request, exc: OrchestratorError):
        logger.error("Unhandled orchestrator error on %s: %s", request.url.path, exc)
        return _error(500, str(exc))

    @app.exception_handler(Exception)
    async def general_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception on %s", request.url.path, exc_info=exc)
        return _error(500, "Internal server error")

    # ---- routes ----

    @app.post("/api/task", status_code=201)
    async def create_task(body: EnqueueBody) -> dict[str, Any]:
        task = await api.enqueue(body.action, body.params, wait=body.wait)
        return {"success": True, "taskId": task.id, "task": task.to_dict()}

    @app.get("/api/task", response_model=None)
    async def get_task(
        taskId: str | None = None,
        debug: bool = False,
        force: bool = False,
        reset: bool = False,
    ) -> dict[str, Any] | JSONResponse:
        if not taskId:
            return _error(400, "Task ID is required")

        if debug:
            return await api.debug(taskId)
        if reset:
            task = await api.reset(taskId)
            return {"message": "Task reset to pending", "task": task.to_dict()}
        if force:
            task = await api.force_process(taskId)
            return {"message": f"Task processed: {task.status.value}", "task": task.to_dict()}

        task = await api.status(taskId)
        return {"success": True, "task": task.to_dict()}

    @app.get("/api/cron")
    async def cron() -> dict[str, Any]:
        summary = await api.sweep_ended_lotteries()
        total = summary["total"]
        message = "No ended lotteries need a winner" if total == 0 else f"Queued {len(summary['enqueued'])} of {total} lotteries"
        return {"message": message, **summary}

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "scheduler": state.scheduler.snapshot()}

    return app
