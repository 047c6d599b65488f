# src/lottery_orchestrator/tasks/task_api.py

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from ..core.errors import DuplicateTaskError, InvalidStateError, NotFoundError, ValidationError
from ..core.ports import LedgerClient, TaskRepo
from .task_models import LogLevel, Task, TaskAction, TaskStatus, make_dedup_key
from .task_processor import TaskProcessor
from .task_scheduler import QueueScheduler

logger = logging.getLogger(__name__)


class TaskApi:
    """
    Caller-facing operations: enqueue, status, debug, force-process, reset, and the
    ended-lottery sweep used by the cron trigger.

    Read paths never mutate tasks. Every mutation goes through an atomic store operation.
    """

    def __init__(
        self,
        store: TaskRepo,
        processor: TaskProcessor,
        *,
        scheduler: QueueScheduler | None = None,
        ledger: LedgerClient | None = None,
        operator_address: str | None = None,
    ) -> None:
        self._store = store
        self._processor = processor
        self._scheduler = scheduler
        self._ledger = ledger
        self._operator_address = (operator_address or "").strip() or None

    # ---- validation ----

    @staticmethod
    def _validate(action: Any, params: Any) -> tuple[TaskAction, dict[str, Any]]:
        if not isinstance(action, str) or not action.strip() or not isinstance(params, dict):
            raise ValidationError("Missing 'action' or 'params' in request body")
        try:
            act = TaskAction(action.strip())
        except ValueError:
            raise ValidationError(f"Unsupported task action: {action}") from None

        lottery_id = params.get("lotteryId")
        if not isinstance(lottery_id, str) or not lottery_id.strip():
            raise ValidationError("Lottery ID is required")

        wallet = params.get("wallet")
        if wallet is not None and not isinstance(wallet, str):
            raise ValidationError("'wallet' must be a string")

        clean = dict(params)
        clean["lotteryId"] = lottery_id.strip()
        if wallet is not None:
            clean["wallet"] = wallet.strip()
        return act, clean

    # ---- operations ----

    async def enqueue(self, action: Any, params: Any, *, wait: bool = False) -> Task:
        """
        Create a pending task.

        wait=True is the low-latency variant: the new task is claimed right here (same
        atomic claim the scheduler uses) and processed before returning. If the scheduler
        got to it first, the current state is returned instead.
        """
        act, clean = self._validate(action, params)
        dedup_key = make_dedup_key(act.value, clean)

        task = await asyncio.to_thread(
            self._store.insert,
            action=act.value,
            params=clean,
            dedup_key=dedup_key,
        )
        logger.info("Enqueued task id=%s action=%s lottery=%s", task.id, act.value, clean["lotteryId"])

        if not wait:
            return task

        claimed = await asyncio.to_thread(self._store.claim, task.id)
        if claimed is not None:
            await self._processor.process(claimed)
        return await self.status(task.id)

    async def status(self, task_id: str) -> Task:
        task = await asyncio.to_thread(self._store.get, task_id)
        if task is None:
            raise NotFoundError(f"Task not found: {task_id}")
        return task

    async def debug(self, task_id: str) -> dict[str, Any]:
        """Read-only diagnostic snapshot for operators."""
        task = await self.status(task_id)
        pending = await asyncio.to_thread(self._store.count_tasks, TaskStatus.PENDING)

        processing_seconds = None
        if task.status == TaskStatus.IN_PROGRESS and task.processing_started_at is not None:
            processing_seconds = round(time.time() - task.processing_started_at, 3)

        last_error = next((e for e in reversed(task.logs) if e.level == LogLevel.ERROR), None)
        return {
            "taskId": task.id,
            "status": task.status.value,
            "task": task.to_dict(),
            "logs": [entry.to_dict() for entry in task.logs],
            "logCount": len(task.logs),
            "lastError": last_error.to_dict() if last_error else None,
            "processingSeconds": processing_seconds,
            "pendingTasks": pending,
            "scheduler": self._scheduler.snapshot() if self._scheduler is not None else None,
        }

    async def force_process(self, task_id: str) -> Task:
        """
        Operator retry: process the task now, regardless of scheduler cadence.

        failed tasks are reset first; pending tasks are claimed directly.
        """
        task = await self.status(task_id)
        if task.status == TaskStatus.FAILED:
            await self._reset_failed(task_id)
        elif task.status != TaskStatus.PENDING:
            raise InvalidStateError(
                f"Task {task_id} is {task.status.value}; only pending or failed tasks can be force-processed"
            )

        claimed = await asyncio.to_thread(self._store.claim, task_id)
        if claimed is None:
            raise InvalidStateError(f"Task {task_id} was claimed by another worker")

        await asyncio.to_thread(self._store.append_log, task_id, "Processing forced by operator", LogLevel.INFO)
        logger.info("Force-processing task %s", task_id)
        await self._processor.process(claimed)
        return await self.status(task_id)

    async def reset(self, task_id: str) -> Task:
        task = await self.status(task_id)
        if task.status != TaskStatus.FAILED:
            raise InvalidStateError(f"Task {task_id} is {task.status.value}; only failed tasks can be reset")
        await self._reset_failed(task_id)
        return await self.status(task_id)

    async def _reset_failed(self, task_id: str) -> None:
        if not await asyncio.to_thread(self._store.reset, task_id):
            raise InvalidStateError(f"Task {task_id} is no longer failed")
        await asyncio.to_thread(self._store.append_log, task_id, "Task reset to pending", LogLevel.INFO)

    async def sweep_ended_lotteries(self) -> dict[str, Any]:
        """
        Enqueue winner selection for every lottery that needs one: ended, has
        participants, not resolved, and (when an operator is configured) administered by it.
        """
        if self._ledger is None:
            raise InvalidStateError("No ledger configured for the sweep")

        lotteries = await self._ledger.list_lotteries()
        now_ts = time.time()
        candidates = [
            lot
            for lot in lotteries
            if lot.has_ended(now_ts)
            and lot.participants
            and not lot.is_resolved
            and (self._operator_address is None or lot.admin == self._operator_address)
        ]
        logger.info("Sweep: %d lotteries, %d need a winner", len(lotteries), len(candidates))

        enqueued: list[dict[str, Any]] = []
        skipped: list[dict[str, Any]] = []
        for lot in candidates:
            try:
                task = await self.enqueue(TaskAction.SELECT_WINNER.value, {"lotteryId": lot.lottery_id})
            except DuplicateTaskError as exc:
                skipped.append({"lotteryId": lot.lottery_id, "reason": "in-flight", "taskId": exc.existing_task_id})
                continue
            enqueued.append({"lotteryId": lot.lottery_id, "taskId": task.id})

        return {"enqueued": enqueued, "skipped": skipped, "total": len(candidates)}
