# tests/test_task_store.py

from __future__ import annotations

import sqlite3
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from lottery_orchestrator.core.errors import DuplicateTaskError, NotFoundError
from lottery_orchestrator.tasks.task_models import LogLevel, TaskStatus, make_dedup_key
from lottery_orchestrator.tasks.task_store import TaskStore


def _add(store: TaskStore, lottery_id: str, wallet: str | None = None):
    params = {"lotteryId": lottery_id}
    if wallet is not None:
        params["wallet"] = wallet
    return store.insert(action="selectWinner", params=params, dedup_key=make_dedup_key("selectWinner", params))


def test_insert_creates_pending_task(store: TaskStore) -> None:
    task = _add(store, "L1")

    loaded = store.get(task.id)
    assert loaded is not None
    assert loaded.status == TaskStatus.PENDING
    assert loaded.params == {"lotteryId": "L1"}
    assert loaded.dedup_key == "selectWinner:anonymous:L1"
    assert loaded.logs == []
    assert loaded.processing_started_at is None
    assert store.count_tasks(TaskStatus.PENDING) == 1


def test_get_unknown_task_returns_none(store: TaskStore) -> None:
    assert store.get("nope") is None


def test_duplicate_active_task_is_rejected(store: TaskStore) -> None:
    first = _add(store, "L1", wallet="w1")

    with pytest.raises(DuplicateTaskError) as ei:
        _add(store, "L1", wallet="w1")

    assert ei.value.existing_task_id == first.id
    assert store.count_tasks() == 1

    # Another requester for the same lottery is a different logical request.
    _add(store, "L1", wallet="w2")
    assert store.count_tasks() == 2


def test_dedup_key_is_released_once_task_is_terminal(store: TaskStore) -> None:
    first = _add(store, "L1")
    assert store.claim(first.id) is not None
    assert store.fail(first.id, "boom")

    second = _add(store, "L1")
    assert second.id != first.id


def test_claim_next_pending_takes_oldest_first(store: TaskStore) -> None:
    a = _add(store, "A")
    b = _add(store, "B")

    first = store.claim_next_pending()
    second = store.claim_next_pending()

    assert first is not None and first.id == a.id
    assert second is not None and second.id == b.id
    assert first.status == TaskStatus.IN_PROGRESS
    assert first.processing_started_at is not None
    assert store.claim_next_pending() is None


def test_claim_specific_task_only_when_pending(store: TaskStore) -> None:
    task = _add(store, "L1")

    assert store.claim(task.id) is not None
    assert store.claim(task.id) is None
    assert store.claim("missing") is None


def test_concurrent_claims_never_hand_out_a_task_twice(store: TaskStore) -> None:
    ids = {_add(store, f"L{i}").id for i in range(6)}
    claimed: list[str] = []
    lock = threading.Lock()
    start = threading.Barrier(10)

    def worker() -> None:
        # Each thread uses its own store instance over the same file, like separate processes.
        local = TaskStore(store.db_path)
        start.wait()
        while True:
            task = local.claim_next_pending()
            if task is None:
                return
            with lock:
                claimed.append(task.id)

    with ThreadPoolExecutor(max_workers=10) as pool:
        futures = [pool.submit(worker) for _ in range(10)]
        for f in futures:
            f.result()

    assert sorted(claimed) == sorted(ids)
    assert len(claimed) == len(set(claimed))
    assert store.count_tasks(TaskStatus.IN_PROGRESS) == 6


def test_complete_and_fail_only_apply_to_in_progress_tasks(store: TaskStore) -> None:
    task = _add(store, "L1")

    # pending: nothing happens
    assert store.complete(task.id, {"winner": "x"}) is False
    assert store.fail(task.id, "nope") is False
    assert store.get(task.id).status == TaskStatus.PENDING

    store.claim(task.id)
    assert store.complete(task.id, {"winner": "x"}) is True

    # terminal: a second terminal write is ignored
    assert store.fail(task.id, "late") is False
    loaded = store.get(task.id)
    assert loaded.status == TaskStatus.COMPLETED
    assert loaded.result == {"winner": "x"}
    assert loaded.completed_at is not None
    assert loaded.error is None


def test_reset_clears_failure_details(store: TaskStore) -> None:
    task = _add(store, "L1")
    store.claim(task.id)
    store.append_log(task.id, "boom", LogLevel.ERROR)
    store.fail(task.id, "boom", "Traceback ...")

    assert store.reset(task.id) is True

    loaded = store.get(task.id)
    assert loaded.status == TaskStatus.PENDING
    assert loaded.error is None
    assert loaded.error_stack is None
    assert loaded.failed_at is None
    assert loaded.processing_started_at is None
    # History survives the reset.
    assert [e.message for e in loaded.logs] == ["boom"]


def test_reset_is_noop_unless_failed(store: TaskStore) -> None:
    task = _add(store, "L1")
    assert store.reset(task.id) is False
    assert store.reset("missing") is False


def test_reset_conflicts_with_newer_active_task(store: TaskStore) -> None:
    old = _add(store, "L1")
    store.claim(old.id)
    store.fail(old.id, "boom")
    newer = _add(store, "L1")

    with pytest.raises(DuplicateTaskError) as ei:
        store.reset(old.id)

    assert ei.value.existing_task_id == newer.id
    assert store.get(old.id).status == TaskStatus.FAILED


def test_append_log_keeps_order_and_data(store: TaskStore) -> None:
    task = _add(store, "L1")
    store.append_log(task.id, "one", LogLevel.INFO)
    store.append_log(task.id, "two", LogLevel.SUCCESS, {"signature": "abc"})
    store.append_log(task.id, "three", LogLevel.ERROR)

    logs = store.get(task.id).logs
    assert [e.message for e in logs] == ["one", "two", "three"]
    assert [e.level for e in logs] == [LogLevel.INFO, LogLevel.SUCCESS, LogLevel.ERROR]
    assert logs[1].data == {"signature": "abc"}


def test_append_log_to_unknown_task_raises(store: TaskStore) -> None:
    with pytest.raises(NotFoundError):
        store.append_log("missing", "hello")


def test_list_pending_is_oldest_first(store: TaskStore) -> None:
    a = _add(store, "A")
    b = _add(store, "B")
    c = _add(store, "C")
    store.claim(b.id)

    assert [t.id for t in store.list_pending()] == [a.id, c.id]
    assert [t.id for t in store.list_pending(limit=1)] == [a.id]


def test_schema_migration_adds_missing_columns(tmp_path: Path) -> None:
    db_path = tmp_path / "old.sqlite3"
    conn = sqlite3.connect(db_path)
    conn.execute(
        """
        CREATE TABLE tasks (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            id TEXT NOT NULL UNIQUE,
            action TEXT NOT NULL,
            params TEXT NOT NULL DEFAULT '{}',
            status TEXT NOT NULL DEFAULT 'pending',
            dedup_key TEXT NOT NULL,
            created_at REAL NOT NULL,
            updated_at REAL NOT NULL
        )
        """
    )
    conn.execute(
        "INSERT INTO tasks(id, action, params, status, dedup_key, created_at, updated_at) "
        "VALUES ('old1', 'selectWinner', '{\"lotteryId\": \"L0\"}', 'pending', 'selectWinner:anonymous:L0', 1, 1)"
    )
    conn.commit()
    conn.close()

    store = TaskStore(db_path)

    claimed = store.claim_next_pending()
    assert claimed is not None and claimed.id == "old1"
    assert store.fail("old1", "boom", "stack")
    loaded = store.get("old1")
    assert loaded.error_stack == "stack"
    assert loaded.failed_at is not None
