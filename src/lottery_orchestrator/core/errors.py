# src/lottery_orchestrator/core/errors.py

from __future__ import annotations

"""
Error taxonomy.

Enqueue-time errors (ValidationError, DuplicateTaskError) go straight back to the caller.
Pipeline errors are caught by the task processor and recorded on the task as `failed`.
"""


class OrchestratorError(Exception):
    """Base class for every error raised by this package."""


class ValidationError(OrchestratorError):
    """Bad enqueue input. Not retryable."""


class DuplicateTaskError(OrchestratorError):
    """An active (pending / in-progress) task already exists for the dedup key."""

    def __init__(self, dedup_key: str, existing_task_id: str | None = None) -> None:
        self.dedup_key = dedup_key
        self.existing_task_id = existing_task_id
        super().__init__(f"Task already in flight for {dedup_key} (task_id={existing_task_id})")


class NotFoundError(OrchestratorError):
    pass


class InvalidStateError(OrchestratorError):
    """A precondition on task or lottery state does not hold. Not retried automatically."""


class ConfirmationTimeoutError(OrchestratorError, TimeoutError):
    """The confirmation budget was exhausted. Retryable via force-process / reset."""

    def __init__(self, signature: str, attempts: int) -> None:
        self.signature = signature
        self.attempts = attempts
        super().__init__(f"Transaction not confirmed after {attempts} attempts: {signature}")


class TransactionFailedError(OrchestratorError):
    """The ledger reported the submitted transaction as failed."""

    def __init__(self, signature: str, err: object) -> None:
        self.signature = signature
        self.err = err
        super().__init__(f"Transaction failed: {signature} ({err})")


class LedgerRpcError(OrchestratorError):
    """Transport or JSON-RPC level failure talking to the ledger / oracle gateway."""


class StoreError(OrchestratorError):
    """Task store unavailable. Re-read state before retrying; the write may have landed."""
