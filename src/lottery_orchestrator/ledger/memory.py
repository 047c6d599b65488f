# src/lottery_orchestrator/ledger/memory.py

from __future__ import annotations

import copy
import logging
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass

from ..core.errors import LedgerRpcError
from .ledger_models import (
    Instruction,
    Keypair,
    LotteryState,
    LotteryStatus,
    RandomnessAccount,
    SignatureStatus,
)

logger = logging.getLogger(__name__)

LOTTERY_PROGRAM = "lottery"
ORACLE_PROGRAM = "randomness"


@dataclass(slots=True)
class _RandomnessRecord:
    pubkey: str
    queue: str
    committed: bool = False
    value: bytes | None = None


class InMemoryLedger:
    """
    Offline ledger + randomness oracle.

    Used when no RPC gateway is configured, and by the test-suite. It implements both
    the LedgerClient and RandomnessOracle ports and executes submitted instructions
    with all-or-nothing semantics, like a real transaction.

    Knobs:
    - confirm_after: status polls needed before a signature reports "confirmed"
    - never_confirm: signatures stay "processed" forever
    - inject_failure(method): the next call(s) to a port method raise LedgerRpcError
    """

    def __init__(
        self,
        *,
        operator: str = "operator",
        queue: str = "default-queue",
        confirm_after: int = 1,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.operator = operator
        self.queue = queue
        self.confirm_after = max(1, int(confirm_after))
        self.never_confirm = False
        self._clock = clock

        self.lotteries: dict[str, LotteryState] = {}
        self.randomness: dict[str, _RandomnessRecord] = {}
        self.transactions: list[tuple[str, list[Instruction]]] = []

        self._sig_errors: dict[str, str | None] = {}
        self._sig_polls: dict[str, int] = {}
        self._failures: dict[str, list[Exception]] = {}
        self.calls: list[str] = []

    # ---- test / demo setup ----

    def add_lottery(
        self,
        lottery_id: str,
        *,
        participants: list[str] | None = None,
        end_time: float | None = None,
        entry_fee: int = 1_000_000,
        creator: str = "creator",
        admin: str | None = None,
        status: LotteryStatus = LotteryStatus.ACTIVE,
        winner: str | None = None,
    ) -> LotteryState:
        parts = list(participants or [])
        if end_time is None:
            end_time = self._clock() - 60
        lottery = LotteryState(
            lottery_id=lottery_id,
            admin=admin or self.operator,
            creator=creator,
            entry_fee=entry_fee,
            total_tickets=len(parts),
            participants=parts,
            end_time=int(end_time),
            status=status,
            winner=winner,
        )
        self.lotteries[lottery_id] = lottery
        return lottery

    def inject_failure(self, method: str, exc: Exception | None = None, *, times: int = 1) -> None:
        err = exc or LedgerRpcError(f"injected failure in {method}")
        self._failures.setdefault(method, []).extend([err] * max(1, times))

    def _enter(self, method: str) -> None:
        self.calls.append(method)
        pending = self._failures.get(method)
        if pending:
            raise pending.pop(0)

    # ---- LedgerClient ----

    async def fetch_lottery_state(self, lottery_id: str) -> LotteryState | None:
        self._enter("fetch_lottery_state")
        lottery = self.lotteries.get(lottery_id)
        return copy.deepcopy(lottery) if lottery else None

    async def list_lotteries(self) -> list[LotteryState]:
        self._enter("list_lotteries")
        return [copy.deepcopy(lot) for lot in self.lotteries.values()]

    async def select_winner_instruction(self, lottery_id: str, randomness_account: str) -> Instruction:
        self._enter("select_winner_instruction")
        return Instruction(
            program=LOTTERY_PROGRAM,
            name="select_winner",
            accounts={"lottery": lottery_id, "randomnessAccountData": randomness_account},
            args=[lottery_id],
        )

    async def send_transaction(
        self,
        instructions: list[Instruction],
        *,
        extra_signers: list[Keypair] | None = None,
    ) -> str:
        self._enter("send_transaction")
        signature = secrets.token_hex(32)
        self.transactions.append((signature, list(instructions)))

        signers = {kp.public_key for kp in extra_signers or []}
        lotteries = copy.deepcopy(self.lotteries)
        randomness = copy.deepcopy(self.randomness)
        try:
            for ix in instructions:
                self._apply(ix, signers, lotteries, randomness)
        except ValueError as exc:
            # Submission itself succeeds (no preflight); the failure shows up in the status.
            logger.info("In-memory transaction %s failed: %s", signature, exc)
            self._sig_errors[signature] = str(exc)
        else:
            self.lotteries = lotteries
            self.randomness = randomness
            self._sig_errors[signature] = None
        self._sig_polls[signature] = 0
        return signature

    async def get_signature_status(self, signature: str) -> SignatureStatus | None:
        self._enter("get_signature_status")
        if signature not in self._sig_polls:
            return None
        self._sig_polls[signature] += 1
        err = self._sig_errors.get(signature)
        if err is not None:
            return SignatureStatus(confirmation_status="processed", err=err)
        if self.never_confirm or self._sig_polls[signature] < self.confirm_after:
            return SignatureStatus(confirmation_status="processed")
        return SignatureStatus(confirmation_status="confirmed")

    # ---- RandomnessOracle ----

    async def default_queue(self) -> str:
        self._enter("default_queue")
        return self.queue

    async def create_commitment(self, keypair: Keypair, queue: str) -> tuple[RandomnessAccount, Instruction]:
        self._enter("create_commitment")
        account = RandomnessAccount(pubkey=keypair.public_key, queue=queue)
        ix = Instruction(
            program=ORACLE_PROGRAM,
            name="randomness_init",
            accounts={"randomness": keypair.public_key, "queue": queue},
        )
        return account, ix

    async def commit_instruction(self, account: RandomnessAccount, queue: str) -> Instruction:
        self._enter("commit_instruction")
        return Instruction(
            program=ORACLE_PROGRAM,
            name="randomness_commit",
            accounts={"randomness": account.pubkey, "queue": queue},
        )

    async def reveal_instruction(self, account: RandomnessAccount) -> Instruction:
        self._enter("reveal_instruction")
        return Instruction(
            program=ORACLE_PROGRAM,
            name="randomness_reveal",
            accounts={"randomness": account.pubkey},
        )

    # ---- execution ----

    def _apply(
        self,
        ix: Instruction,
        signers: set[str],
        lotteries: dict[str, LotteryState],
        randomness: dict[str, _RandomnessRecord],
    ) -> None:
        key = (ix.program, ix.name)
        if key == (ORACLE_PROGRAM, "randomness_init"):
            pubkey = ix.accounts["randomness"]
            if pubkey not in signers:
                raise ValueError("missing signature for randomness account")
            if pubkey in randomness:
                raise ValueError("randomness account already exists")
            randomness[pubkey] = _RandomnessRecord(pubkey=pubkey, queue=ix.accounts.get("queue", ""))
        elif key == (ORACLE_PROGRAM, "randomness_commit"):
            rec = randomness.get(ix.accounts["randomness"])
            if rec is None:
                raise ValueError("randomness account not found")
            rec.committed = True
        elif key == (ORACLE_PROGRAM, "randomness_reveal"):
            rec = randomness.get(ix.accounts["randomness"])
            if rec is None or not rec.committed:
                raise ValueError("randomness not committed")
            rec.value = secrets.token_bytes(32)
        elif key == (LOTTERY_PROGRAM, "select_winner"):
            self._apply_select_winner(ix, lotteries, randomness)
        else:
            raise ValueError(f"unknown instruction {ix.program}.{ix.name}")

    def _apply_select_winner(
        self,
        ix: Instruction,
        lotteries: dict[str, LotteryState],
        randomness: dict[str, _RandomnessRecord],
    ) -> None:
        lottery = lotteries.get(ix.accounts["lottery"])
        if lottery is None:
            raise ValueError("Invalid lottery ID")
        if lottery.effective_status(self._clock()) != LotteryStatus.ENDED_WAITING_FOR_WINNER:
            raise ValueError("Invalid lottery state for this operation")
        if lottery.winner is not None:
            raise ValueError("A winner has already been selected.")
        if lottery.total_tickets <= 0 or not lottery.participants:
            raise ValueError("No participants in the lottery.")

        rec = randomness.get(ix.accounts["randomnessAccountData"])
        if rec is None:
            raise ValueError("Randomness data is unavailable.")
        if rec.value is None:
            raise ValueError("Randomness not resolved.")

        index = rec.value[0] % lottery.total_tickets
        if index >= len(lottery.participants):
            raise ValueError("Invalid winner index.")

        lottery.randomness_account = rec.pubkey
        lottery.total_prize = lottery.entry_fee * lottery.total_tickets
        lottery.winner = lottery.participants[index]
        lottery.status = LotteryStatus.WINNER_SELECTED
