# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from lottery_orchestrator.core.state import AppState
from lottery_orchestrator.ledger.confirm import ConfirmationPoller
from lottery_orchestrator.ledger.memory import InMemoryLedger
from lottery_orchestrator.ledger.pipeline import WinnerSelectionPipeline
from lottery_orchestrator.tasks.task_api import TaskApi
from lottery_orchestrator.tasks.task_processor import TaskProcessor
from lottery_orchestrator.tasks.task_scheduler import QueueScheduler
from lottery_orchestrator.tasks.task_store import TaskStore

from .fakes import FakeSleep


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the HTTP app.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "tasks.sqlite3",
        operator_address="operator",
        scheduler_enabled=False,
        scheduler_interval_seconds=0.01,
        confirm_max_attempts=3,
        confirm_interval_seconds=5.0,
    )


@pytest.fixture()
def store(settings: SimpleNamespace) -> TaskStore:
    return TaskStore(settings.tasks_db_path)


@pytest.fixture()
def ledger() -> InMemoryLedger:
    return InMemoryLedger(operator="operator")


@pytest.fixture()
def sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture()
def poller(ledger: InMemoryLedger, settings: SimpleNamespace, sleep: FakeSleep) -> ConfirmationPoller:
    # No real waiting in tests: the fake sleep only records requested delays.
    return ConfirmationPoller(
        ledger,
        max_attempts=settings.confirm_max_attempts,
        interval_seconds=settings.confirm_interval_seconds,
        sleep=sleep,
    )


@pytest.fixture()
def pipeline(ledger: InMemoryLedger, poller: ConfirmationPoller) -> WinnerSelectionPipeline:
    return WinnerSelectionPipeline(ledger, ledger, poller)


@pytest.fixture()
def processor(store: TaskStore, pipeline: WinnerSelectionPipeline) -> TaskProcessor:
    return TaskProcessor(store, pipeline)


@pytest.fixture()
def scheduler(store: TaskStore, processor: TaskProcessor, settings: SimpleNamespace) -> QueueScheduler:
    return QueueScheduler(store, processor, interval_seconds=settings.scheduler_interval_seconds)


@pytest.fixture()
def api(
    store: TaskStore,
    processor: TaskProcessor,
    scheduler: QueueScheduler,
    ledger: InMemoryLedger,
    settings: SimpleNamespace,
) -> TaskApi:
    return TaskApi(
        store,
        processor,
        scheduler=scheduler,
        ledger=ledger,
        operator_address=settings.operator_address,
    )


@pytest.fixture()
def state(
    settings: SimpleNamespace,
    store: TaskStore,
    ledger: InMemoryLedger,
    processor: TaskProcessor,
    scheduler: QueueScheduler,
    api: TaskApi,
) -> AppState:
    """
    AppState wired with the in-memory ledger.

    NOTE: We keep a real SQLite TaskStore here because its atomicity is part of
    what we want to test.
    """
    return AppState(
        settings=settings,
        task_store=store,
        ledger=ledger,
        oracle=ledger,
        processor=processor,
        scheduler=scheduler,
        api=api,
    )
