# src/lottery_orchestrator/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    Transitions are monotonic: pending -> in-progress -> completed | failed.
    failed -> pending happens only through an operator reset.
    """

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.PENDING
        try:
            return cls(raw)
        except ValueError:
            # Older rows written with an underscore.
            return cls(raw.replace("_", "-"))

    @property
    def is_active(self) -> bool:
        return self in (TaskStatus.PENDING, TaskStatus.IN_PROGRESS)

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class LogLevel(StrEnum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


class TaskAction(StrEnum):
    SELECT_WINNER = "selectWinner"


ANONYMOUS_REQUESTER = "anonymous"


def make_dedup_key(action: str, params: dict[str, Any]) -> str:
    """
    Identity of one logical request: action + requester + target lottery.

    Requests without a wallet share the "anonymous" requester, so anonymous callers
    (e.g. the cron sweep) collapse into a single in-flight task per lottery.
    """
    requester = str(params.get("wallet") or "").strip() or ANONYMOUS_REQUESTER
    lottery_id = str(params.get("lotteryId") or "").strip()
    return f"{action}:{requester}:{lottery_id}"


def _iso(ts: float | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=UTC).isoformat()


@dataclass(slots=True, frozen=True)
class TaskLogEntry:
    timestamp: float
    message: str
    level: LogLevel
    data: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "timestamp": _iso(self.timestamp),
            "message": self.message,
            "level": self.level.value,
        }
        if self.data is not None:
            out["data"] = self.data
        return out


@dataclass(slots=True)
class Task:
    id: str
    action: str
    params: dict[str, Any]
    status: TaskStatus
    dedup_key: str

    created_at: float
    updated_at: float
    processing_started_at: float | None = None
    completed_at: float | None = None
    failed_at: float | None = None

    result: dict[str, Any] | None = None
    error: str | None = None
    error_stack: str | None = None

    logs: list[TaskLogEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly view used by the HTTP layer and debug snapshots."""
        return {
            "taskId": self.id,
            "action": self.action,
            "params": self.params,
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
            "errorStack": self.error_stack,
            "dedupKey": self.dedup_key,
            "logs": [entry.to_dict() for entry in self.logs],
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
            "processingStartedAt": _iso(self.processing_started_at),
            "completedAt": _iso(self.completed_at),
            "failedAt": _iso(self.failed_at),
        }
