# src/lottery_orchestrator/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the orchestrator.

The pipeline and the task layer depend on Protocols instead of concrete implementations.
This keeps the ledger gateway / oracle / storage swappable and makes testing easier.
"""

from typing import Any, Protocol

from ..ledger.ledger_models import (
    Instruction,
    Keypair,
    LotteryState,
    RandomnessAccount,
    SignatureStatus,
)


class LedgerClient(Protocol):
    """The external lottery program, reached through an RPC gateway."""

    async def fetch_lottery_state(self, lottery_id: str) -> LotteryState | None: ...

    async def list_lotteries(self) -> list[LotteryState]: ...

    async def select_winner_instruction(
            self,
            lottery_id: str,
            randomness_account: str,
    ) -> Instruction: ...

    async def send_transaction(
            self,
            instructions: list[Instruction],
            *,
            extra_signers: list[Keypair] | None = None,
    ) -> str: ...

    async def get_signature_status(self, signature: str) -> SignatureStatus | None: ...


class RandomnessOracle(Protocol):
    """
    Commit-reveal randomness service.

    create -> commit -> reveal; the reveal instruction must land in the same
    transaction that consumes the value.
    """

    async def default_queue(self) -> str: ...

    async def create_commitment(
            self,
            keypair: Keypair,
            queue: str,
    ) -> tuple[RandomnessAccount, Instruction]: ...

    async def commit_instruction(self, account: RandomnessAccount, queue: str) -> Instruction: ...

    async def reveal_instruction(self, account: RandomnessAccount) -> Instruction: ...


class TaskRepo(Protocol):
    # Enqueue / read API
    def insert(self, *, action: str, params: dict[str, Any], dedup_key: str) -> Any: ...
    def get(self, task_id: str) -> Any | None: ...
    def find_active(self, dedup_key: str) -> Any | None: ...
    def list_pending(self, limit: int = 32) -> list[Any]: ...
    def count_tasks(self, status: Any | None = None) -> int: ...

    # Worker API
    def claim_next_pending(self) -> Any | None: ...
    def claim(self, task_id: str) -> Any | None: ...
    def append_log(
            self,
            task_id: str,
            message: str,
            level: Any = None,  # LogLevel (kept as Any to avoid import coupling)
            data: dict[str, Any] | None = None,
    ) -> Any: ...
    def complete(self, task_id: str, result: dict[str, Any]) -> bool: ...
    def fail(self, task_id: str, error: str, error_stack: str | None = None) -> bool: ...

    # Operator API
    def reset(self, task_id: str) -> bool: ...
