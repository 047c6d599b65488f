# src/lottery_orchestrator/tasks/task_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
import uuid
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from ..core.errors import DuplicateTaskError, NotFoundError, StoreError
from .task_models import LogLevel, Task, TaskLogEntry, TaskStatus

logger = logging.getLogger(__name__)


class TaskStore:
    """
    SQLite task store.

    The schema is simple and migration-safe:
    - create tables if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Coordination lives in single SQL statements, never in read-then-write pairs:
    - claiming is one conditional UPDATE ... RETURNING
    - dedup is a partial UNIQUE index over active rows
    - terminal transitions only match rows that are still in-progress

    Thread-safety:
    - each method opens its own SQLite connection
    - writes run inside BEGIN IMMEDIATE so concurrent writers queue on the busy timeout
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except StoreError:
            total = -1
        logger.info("TaskStore ready db=%s total=%s", self._db_path, total)

    @property
    def db_path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        # isolation_level=None: transactions are opened explicitly in _connect().
        conn = sqlite3.connect(str(self._db_path), timeout=30.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")

    @contextlib.contextmanager
    def _connect(self, *, write: bool = False) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._get_conn()
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot open task store {self._db_path}: {exc}") from exc

        try:
            if write:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            if write:
                conn.execute("COMMIT")
        except sqlite3.Error as exc:
            if write:
                with contextlib.suppress(sqlite3.Error):
                    conn.execute("ROLLBACK")
            raise StoreError(f"Task store operation failed: {exc}") from exc
        except BaseException:
            if write:
                with contextlib.suppress(sqlite3.Error):
                    conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self._connect(write=True) as conn:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    action TEXT NOT NULL,
                    params TEXT NOT NULL DEFAULT '{}',
                    status TEXT NOT NULL DEFAULT 'pending',
                    dedup_key TEXT NOT NULL,
                    result TEXT,
                    error TEXT,
                    error_stack TEXT,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL,
                    processing_started_at REAL,
                    completed_at REAL,
                    failed_at REAL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS task_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id TEXT NOT NULL,
                    timestamp REAL NOT NULL,
                    level TEXT NOT NULL,
                    message TEXT NOT NULL,
                    data TEXT
                )
                """
            )

            # Migrations (safe): add missing columns.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            add_col("result", "TEXT")
            add_col("error", "TEXT")
            add_col("error_stack", "TEXT")
            add_col("processing_started_at", "REAL")
            add_col("completed_at", "REAL")
            add_col("failed_at", "REAL")

            # At most one active task per logical request.
            cur.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS uq_tasks_active_dedup "
                "ON tasks(dedup_key) WHERE status IN ('pending','in-progress')"
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_status_created ON tasks(status, created_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_task_logs_task ON task_logs(task_id, id)")

    @staticmethod
    def _json_to_str(value: dict[str, Any] | None) -> str | None:
        if value is None:
            return None
        return json.dumps(value, ensure_ascii=False, default=str)

    @staticmethod
    def _str_to_json(s: str | None) -> dict[str, Any] | None:
        if not s:
            return None
        try:
            val = json.loads(s)
        except ValueError:
            logger.warning("Stored JSON is not decodable; ignoring value.")
            return None
        return val if isinstance(val, dict) else {"value": val}

    def _row_to_task(self, row: sqlite3.Row, logs: list[TaskLogEntry] | None = None) -> Task:
        return Task(
            id=str(row["id"]),
            action=str(row["action"]),
            params=self._str_to_json(row["params"]) or {},
            status=TaskStatus.from_db(row["status"]),
            dedup_key=str(row["dedup_key"]),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
            processing_started_at=row["processing_started_at"],
            completed_at=row["completed_at"],
            failed_at=row["failed_at"],
            result=self._str_to_json(row["result"]),
            error=row["error"],
            error_stack=row["error_stack"],
            logs=list(logs or []),
        )

    def _row_to_log(self, row: sqlite3.Row) -> TaskLogEntry:
        return TaskLogEntry(
            timestamp=float(row["timestamp"]),
            message=str(row["message"]),
            level=LogLevel(row["level"]),
            data=self._str_to_json(row["data"]),
        )

    def _load_logs(self, conn: sqlite3.Connection, task_id: str) -> list[TaskLogEntry]:
        cur = conn.execute(
            "SELECT * FROM task_logs WHERE task_id = ? ORDER BY id ASC",
            (task_id,),
        )
        return [self._row_to_log(r) for r in cur.fetchall()]

    # ---- public API ----

    def count_tasks(self, status: TaskStatus | None = None) -> int:
        with self._connect() as conn:
            if status is None:
                cur = conn.execute("SELECT COUNT(*) FROM tasks")
            else:
                cur = conn.execute("SELECT COUNT(*) FROM tasks WHERE status = ?", (status.value,))
            (n,) = cur.fetchone()
            return int(n)

    def insert(self, *, action: str, params: dict[str, Any], dedup_key: str) -> Task:
        """
        Persist a new pending task.

        Raises DuplicateTaskError if an active task already holds the dedup key.
        The check and the insert are the same statement (partial UNIQUE index).
        """
        if not action or not action.strip():
            raise ValueError("action is required")
        if not dedup_key:
            raise ValueError("dedup_key is required")

        now = time.time()
        task_id = uuid.uuid4().hex

        try:
            with self._connect(write=True) as conn:
                try:
                    conn.execute(
                        """
                        INSERT INTO tasks(
                            id, action, params, status, dedup_key,
                            created_at, updated_at
                        )
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            task_id,
                            action.strip(),
                            self._json_to_str(params) or "{}",
                            TaskStatus.PENDING.value,
                            dedup_key,
                            now,
                            now,
                        ),
                    )
                except sqlite3.IntegrityError:
                    raise DuplicateTaskError(dedup_key) from None
        except DuplicateTaskError as exc:
            existing = self.find_active(dedup_key)
            exc.existing_task_id = existing.id if existing else None
            logger.info("Rejected duplicate task dedup_key=%s existing=%s", dedup_key, exc.existing_task_id)
            raise

        logger.debug("Task added id=%s action=%s dedup_key=%s", task_id, action, dedup_key)
        return Task(
            id=task_id,
            action=action.strip(),
            params=dict(params),
            status=TaskStatus.PENDING,
            dedup_key=dedup_key,
            created_at=now,
            updated_at=now,
        )

    def get(self, task_id: str) -> Task | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
            if row is None:
                return None
            return self._row_to_task(row, self._load_logs(conn, task_id))

    def find_active(self, dedup_key: str) -> Task | None:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT *
                FROM tasks
                WHERE dedup_key = ?
                  AND status IN ('pending','in-progress')
                ORDER BY created_at ASC, seq ASC
                    LIMIT 1
                """,
                (dedup_key,),
            ).fetchone()
            return self._row_to_task(row) if row else None

    def list_pending(self, limit: int = 32) -> list[Task]:
        """Pending tasks, oldest first (the order claim_next_pending prefers)."""
        with self._connect() as conn:
            cur = conn.execute(
                """
                SELECT *
                FROM tasks
                WHERE status = 'pending'
                ORDER BY created_at ASC, seq ASC
                    LIMIT ?
                """,
                (int(limit),),
            )
            return [self._row_to_task(r) for r in cur.fetchall()]

    def claim_next_pending(self) -> Task | None:
        """
        Atomically pick the oldest pending task and move it to in-progress.

        Two concurrent callers can never receive the same task: selection and
        transition are one UPDATE statement guarded by status = 'pending'.
        """
        now = time.time()
        with self._connect(write=True) as conn:
            # Drain RETURNING rows before COMMIT.
            rows = conn.execute(
                """
                UPDATE tasks
                SET status = 'in-progress',
                    processing_started_at = ?,
                    updated_at = ?
                WHERE seq = (
                    SELECT seq FROM tasks
                    WHERE status = 'pending'
                    ORDER BY created_at ASC, seq ASC
                        LIMIT 1
                )
                  AND status = 'pending'
                RETURNING *
                """,
                (now, now),
            ).fetchall()
            row = rows[0] if rows else None
        if row is None:
            return None
        task = self._row_to_task(row)
        logger.info("Claimed task id=%s action=%s", task.id, task.action)
        return task

    def claim(self, task_id: str) -> Task | None:
        """Same compare-and-set as claim_next_pending, for one specific task."""
        now = time.time()
        with self._connect(write=True) as conn:
            # Drain RETURNING rows before COMMIT.
            rows = conn.execute(
                """
                UPDATE tasks
                SET status = 'in-progress',
                    processing_started_at = ?,
                    updated_at = ?
                WHERE id = ?
                  AND status = 'pending'
                RETURNING *
                """,
                (now, now, task_id),
            ).fetchall()
            row = rows[0] if rows else None
            if row is None:
                return None
            task = self._row_to_task(row, self._load_logs(conn, task_id))
        logger.info("Claimed task id=%s (direct)", task_id)
        return task

    def append_log(
        self,
        task_id: str,
        message: str,
        level: LogLevel = LogLevel.INFO,
        data: dict[str, Any] | None = None,
    ) -> TaskLogEntry:
        entry = TaskLogEntry(timestamp=time.time(), message=message, level=LogLevel(level), data=data)
        with self._connect(write=True) as conn:
            cur = conn.execute(
                "UPDATE tasks SET updated_at = ? WHERE id = ?",
                (entry.timestamp, task_id),
            )
            if cur.rowcount != 1:
                raise NotFoundError(f"Task not found: {task_id}")
            conn.execute(
                """
                INSERT INTO task_logs(task_id, timestamp, level, message, data)
                VALUES (?, ?, ?, ?, ?)
                """,
                (task_id, entry.timestamp, entry.level.value, message, self._json_to_str(data)),
            )
        return entry

    def complete(self, task_id: str, result: dict[str, Any]) -> bool:
        now = time.time()
        with self._connect(write=True) as conn:
            cur = conn.execute(
                """
                UPDATE tasks
                SET status = 'completed',
                    result = ?,
                    completed_at = ?,
                    updated_at = ?
                WHERE id = ?
                  AND status = 'in-progress'
                """,
                (self._json_to_str(result), now, now, task_id),
            )
            done = cur.rowcount == 1
        if not done:
            logger.warning("complete() ignored: task %s is not in-progress", task_id)
        return done

    def fail(self, task_id: str, error: str, error_stack: str | None = None) -> bool:
        now = time.time()
        with self._connect(write=True) as conn:
            cur = conn.execute(
                """
                UPDATE tasks
                SET status = 'failed',
                    error = ?,
                    error_stack = ?,
                    failed_at = ?,
                    updated_at = ?
                WHERE id = ?
                  AND status = 'in-progress'
                """,
                (error, error_stack, now, now, task_id),
            )
            done = cur.rowcount == 1
        if not done:
            logger.warning("fail() ignored: task %s is not in-progress", task_id)
        return done

    def reset(self, task_id: str) -> bool:
        """
        Operator action: failed -> pending, clearing failure detail.

        Raises DuplicateTaskError if another task for the same dedup key became
        active in the meantime.
        """
        now = time.time()
        try:
            with self._connect(write=True) as conn:
                try:
                    cur = conn.execute(
                        """
                        UPDATE tasks
                        SET status = 'pending',
                            error = NULL,
                            error_stack = NULL,
                            processing_started_at = NULL,
                            failed_at = NULL,
                            updated_at = ?
                        WHERE id = ?
                          AND status = 'failed'
                        """,
                        (now, task_id),
                    )
                except sqlite3.IntegrityError:
                    row = conn.execute("SELECT dedup_key FROM tasks WHERE id = ?", (task_id,)).fetchone()
                    raise DuplicateTaskError(row["dedup_key"] if row else "") from None
                done = cur.rowcount == 1
        except DuplicateTaskError as exc:
            existing = self.find_active(exc.dedup_key)
            exc.existing_task_id = existing.id if existing else None
            raise

        if done:
            logger.info("Task %s reset to pending", task_id)
        return done
