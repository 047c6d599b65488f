# src/lottery_orchestrator/tasks/task_scheduler.py

from __future__ import annotations

"""
Queue scheduler.

A small polling loop that, every interval:
- claims the oldest pending task (atomically, in the store),
- hands it to the task processor,
- waits, then goes again.

One logical worker per process: the busy flag guarantees this worker never runs two
tasks at once, however often tick() is called. Cross-process safety comes from the
store's atomic claim, not from this flag.
"""

import asyncio
import logging
import time
from typing import Any

from ..core.errors import StoreError
from ..core.ports import TaskRepo
from .task_processor import TaskProcessor

logger = logging.getLogger(__name__)


class QueueScheduler:
    def __init__(
        self,
        store: TaskRepo,
        processor: TaskProcessor,
        *,
        interval_seconds: float = 5.0,
    ) -> None:
        self._store = store
        self._processor = processor
        self.interval_seconds = max(0.01, float(interval_seconds))

        self._busy = False
        self._loop_task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None

        self.ticks = 0
        self.processed = 0
        self.last_tick_at: float | None = None
        self.last_task_id: str | None = None

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def busy(self) -> bool:
        return self._busy

    async def tick(self) -> bool:
        """
        One scheduling step. Returns True if a task was claimed and processed.

        Never raises for store trouble; the next tick simply tries again.
        """
        if self._busy:
            logger.debug("Scheduler busy; skipping tick")
            return False

        self._busy = True
        try:
            self.ticks += 1
            self.last_tick_at = time.time()

            try:
                task = await asyncio.to_thread(self._store.claim_next_pending)
            except StoreError:
                logger.exception("claim_next_pending failed")
                return False

            if task is None:
                logger.debug("No pending tasks.")
                return False

            self.last_task_id = task.id
            await self._processor.process(task)
            self.processed += 1
            return True
        finally:
            self._busy = False

    def start(self) -> None:
        """Start the loop on the running event loop. No-op if already running."""
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._loop_task = asyncio.create_task(self._run_loop(self._stop_event), name="queue-scheduler")
        logger.info("Queue scheduler started (interval=%.2fs)", self.interval_seconds)

    async def stop(self) -> None:
        """
        Stop the loop. A task that is mid-pipeline finishes first; there is no
        mid-pipeline cancellation.
        """
        loop_task, stop_event = self._loop_task, self._stop_event
        if loop_task is None or stop_event is None:
            return
        stop_event.set()
        try:
            await loop_task
        finally:
            self._loop_task = None
            self._stop_event = None
            self._busy = False
            logger.info("Queue scheduler stopped (ticks=%d processed=%d)", self.ticks, self.processed)

    async def _run_loop(self, stop: asyncio.Event) -> None:
        while not stop.is_set():
            try:
                await self.tick()
            except Exception:
                logger.exception("Scheduler tick crashed")

            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval_seconds)
            except TimeoutError:
                pass

    def snapshot(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "busy": self._busy,
            "intervalSeconds": self.interval_seconds,
            "ticks": self.ticks,
            "processed": self.processed,
            "lastTickAt": self.last_tick_at,
            "lastTaskId": self.last_task_id,
        }
