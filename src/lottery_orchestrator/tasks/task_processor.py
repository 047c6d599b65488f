# src/lottery_orchestrator/tasks/task_processor.py

from __future__ import annotations

import asyncio
import logging
import traceback
from typing import Any

from ..core.errors import StoreError, ValidationError
from ..core.ports import TaskRepo
from ..ledger.pipeline import WinnerSelectionPipeline
from .task_models import LogLevel, Task, TaskAction, TaskStatus

logger = logging.getLogger(__name__)


class TaskProcessor:
    """
    Run one claimed task to a terminal state.

    Only ever called with a task the caller already moved to in-progress.
    Exactly one terminal write (complete xor fail) is attempted per call, and nothing
    escapes: pipeline errors become `failed`, store errors are logged and the task is
    left in its last durable state.
    """

    def __init__(self, store: TaskRepo, pipeline: WinnerSelectionPipeline) -> None:
        self._store = store
        self._pipeline = pipeline

    async def _log(self, task_id: str, message: str, level: LogLevel, data: dict[str, Any] | None = None) -> None:
        await asyncio.to_thread(self._store.append_log, task_id, message, level, data)

    async def process(self, task: Task) -> None:
        if task.status != TaskStatus.IN_PROGRESS:
            logger.warning("process() called for task %s in status %s; skipping", task.id, task.status.value)
            return

        logger.info("Processing task id=%s action=%s params=%s", task.id, task.action, task.params)

        async def progress(message: str, level: LogLevel, data: dict[str, Any] | None) -> None:
            await self._log(task.id, message, level, data)

        try:
            await self._log(task.id, f"Processing started for action {task.action}", LogLevel.INFO)
            result = await self._dispatch(task, progress)
        except Exception as exc:
            await self._record_failure(task, exc)
            return

        try:
            await self._log(task.id, "Task completed", LogLevel.SUCCESS, {"result": result})
            await asyncio.to_thread(self._store.complete, task.id, result)
        except StoreError:
            logger.exception("Could not record completion for task %s", task.id)
            return
        logger.info("Task %s -> completed", task.id)

    async def _dispatch(self, task: Task, progress) -> dict[str, Any]:
        if task.action == TaskAction.SELECT_WINNER:
            return await self._pipeline.run(task.params, progress)
        raise ValidationError(f"Unsupported task action: {task.action}")

    async def _record_failure(self, task: Task, exc: Exception) -> None:
        message = str(exc) or type(exc).__name__
        stack = "".join(traceback.format_exception(exc))
        logger.error("Task %s failed: %s", task.id, message)

        try:
            await self._log(task.id, f"Task failed: {message}", LogLevel.ERROR, {"errorType": type(exc).__name__})
        except StoreError:
            # The terminal write is still attempted below.
            logger.exception("Could not append failure log for task %s", task.id)

        try:
            await asyncio.to_thread(self._store.fail, task.id, message, stack)
        except StoreError:
            logger.exception("Could not record failure for task %s", task.id)
            return
        logger.info("Task %s -> failed", task.id)
