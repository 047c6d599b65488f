# src/lottery_orchestrator/core/state.py

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from ..tasks.task_api import TaskApi
from ..tasks.task_processor import TaskProcessor
from ..tasks.task_scheduler import QueueScheduler
from ..tasks.task_store import TaskStore
from .ports import LedgerClient, RandomnessOracle


@dataclass
class AppState:
    # Store Settings on the state for easy access in other modules later.
    settings: object

    task_store: TaskStore
    ledger: LedgerClient
    oracle: RandomnessOracle
    processor: TaskProcessor
    scheduler: QueueScheduler
    api: TaskApi

    # Async cleanups (e.g. closing HTTP clients), run on shutdown in reverse order.
    closers: list[Callable[[], Awaitable[None]]] = field(default_factory=list)

    async def aclose(self) -> None:
        await self.scheduler.stop()
        for closer in reversed(self.closers):
            await closer()
        self.closers.clear()
        self.task_store.close()
