# src/lottery_orchestrator/ledger/pipeline.py

from __future__ import annotations

"""
Winner-selection pipeline.

A forward-only saga over the external ledger and randomness oracle:

    fetch -> validate -> create_randomness -> commit -> reveal_and_select

Every step logs `info` before it runs and `success` / `error` after. A failure stops the run;
nothing is rolled back (a created or committed randomness account is left on the ledger,
where it can be inspected).
"""

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from ..core.errors import InvalidStateError, LedgerRpcError, NotFoundError, ValidationError
from ..core.ports import LedgerClient, RandomnessOracle
from ..tasks.task_models import LogLevel
from .confirm import ConfirmationPoller
from .ledger_models import Keypair, LotteryState, RandomnessAccount

logger = logging.getLogger(__name__)

ProgressLog = Callable[[str, LogLevel, dict[str, Any] | None], Awaitable[None]]


class PipelineStep(StrEnum):
    FETCH = "fetch"
    VALIDATE = "validate"
    CREATE_RANDOMNESS = "create_randomness"
    COMMIT = "commit"
    REVEAL_AND_SELECT = "reveal_and_select"


STEP_DESCRIPTIONS: dict[PipelineStep, str] = {
    PipelineStep.FETCH: "Fetching lottery state",
    PipelineStep.VALIDATE: "Validating lottery",
    PipelineStep.CREATE_RANDOMNESS: "Creating randomness account",
    PipelineStep.COMMIT: "Committing randomness",
    PipelineStep.REVEAL_AND_SELECT: "Revealing randomness and selecting winner",
}


@dataclass(slots=True)
class _Run:
    """Saga state carried from one step to the next."""

    lottery_id: str
    lottery: LotteryState | None = None
    queue: str | None = None
    account: RandomnessAccount | None = None
    randomness_sig: str | None = None
    commit_sig: str | None = None
    reveal_sig: str | None = None
    winner: str | None = None

    def result(self) -> dict[str, Any]:
        return {
            "lotteryId": self.lottery_id,
            "randomnessAccount": self.account.pubkey if self.account else None,
            "randomnessSig": self.randomness_sig,
            "commitSig": self.commit_sig,
            "revealSig": self.reveal_sig,
            "transaction": self.reveal_sig,
            "winner": self.winner,
        }


class WinnerSelectionPipeline:
    def __init__(
        self,
        ledger: LedgerClient,
        oracle: RandomnessOracle,
        poller: ConfirmationPoller,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ledger = ledger
        self._oracle = oracle
        self._poller = poller
        self._clock = clock

    async def run(self, params: dict[str, Any], log: ProgressLog) -> dict[str, Any]:
        lottery_id = str(params.get("lotteryId") or "").strip()
        if not lottery_id:
            raise ValidationError("Lottery ID is required")

        run = _Run(lottery_id=lottery_id)
        steps: list[tuple[PipelineStep, Callable[[_Run], Awaitable[dict[str, Any]]]]] = [
            (PipelineStep.FETCH, self._fetch),
            (PipelineStep.VALIDATE, self._validate),
            (PipelineStep.CREATE_RANDOMNESS, self._create_randomness),
            (PipelineStep.COMMIT, self._commit),
            (PipelineStep.REVEAL_AND_SELECT, self._reveal_and_select),
        ]
        for step, handler in steps:
            await self._run_step(step, handler, run, log)

        logger.info("Winner selected for lottery %s: %s", lottery_id, run.winner)
        return run.result()

    async def _run_step(
        self,
        step: PipelineStep,
        handler: Callable[[_Run], Awaitable[dict[str, Any]]],
        run: _Run,
        log: ProgressLog,
    ) -> None:
        await log(f"[{step.value}] {STEP_DESCRIPTIONS[step]}", LogLevel.INFO, {"step": step.value})
        try:
            data = await handler(run)
        except Exception as exc:
            logger.warning("Pipeline step %s failed for lottery %s: %s", step.value, run.lottery_id, exc)
            await log(
                f"[{step.value}] failed: {exc}",
                LogLevel.ERROR,
                {"step": step.value, "errorType": type(exc).__name__},
            )
            raise
        await log(f"[{step.value}] done", LogLevel.SUCCESS, {"step": step.value, **data})

    # ---- steps ----

    async def _fetch(self, run: _Run) -> dict[str, Any]:
        run.lottery = await self._require_lottery(run.lottery_id)
        return {
            "participants": len(run.lottery.participants),
            "status": run.lottery.effective_status(self._clock()).label,
        }

    async def _validate(self, run: _Run) -> dict[str, Any]:
        lottery = run.lottery
        if lottery is None:
            raise InvalidStateError("Lottery state was not loaded")
        self._check_selectable(lottery)
        if not lottery.has_ended(self._clock()):
            raise InvalidStateError("The lottery has not ended yet")
        return {"participants": len(lottery.participants), "endTime": lottery.end_time}

    async def _create_randomness(self, run: _Run) -> dict[str, Any]:
        keypair = Keypair.generate()
        run.queue = await self._oracle.default_queue()
        account, create_ix = await self._oracle.create_commitment(keypair, run.queue)
        run.account = account
        run.randomness_sig = await self._ledger.send_transaction([create_ix], extra_signers=[keypair])
        await self._poller.confirm(run.randomness_sig)
        return {"randomnessAccount": account.pubkey, "queue": run.queue, "signature": run.randomness_sig}

    async def _commit(self, run: _Run) -> dict[str, Any]:
        account, queue = self._require_account(run)
        commit_ix = await self._oracle.commit_instruction(account, queue)
        run.commit_sig = await self._ledger.send_transaction([commit_ix])
        await self._poller.confirm(run.commit_sig)
        return {"signature": run.commit_sig}

    async def _reveal_and_select(self, run: _Run) -> dict[str, Any]:
        account, _ = self._require_account(run)

        # Time has passed since validation; make sure nobody resolved the lottery meanwhile.
        self._check_selectable(await self._require_lottery(run.lottery_id))

        # Reveal and select must share one transaction.
        reveal_ix = await self._oracle.reveal_instruction(account)
        select_ix = await self._ledger.select_winner_instruction(run.lottery_id, account.pubkey)
        run.reveal_sig = await self._ledger.send_transaction([reveal_ix, select_ix])
        await self._poller.confirm(run.reveal_sig)

        run.winner = await self._read_winner(run.lottery_id)
        return {"signature": run.reveal_sig, "winner": run.winner}

    # ---- helpers ----

    async def _require_lottery(self, lottery_id: str) -> LotteryState:
        lottery = await self._ledger.fetch_lottery_state(lottery_id)
        if lottery is None:
            raise NotFoundError(f"Lottery not found: {lottery_id}")
        return lottery

    @staticmethod
    def _check_selectable(lottery: LotteryState) -> None:
        if not lottery.participants or lottery.total_tickets <= 0:
            raise InvalidStateError("No participants found in the lottery")
        if lottery.is_resolved:
            raise InvalidStateError("A winner has already been selected")

    @staticmethod
    def _require_account(run: _Run) -> tuple[RandomnessAccount, str]:
        if run.account is None or run.queue is None:
            raise InvalidStateError("Randomness account was not created")
        return run.account, run.queue

    async def _read_winner(self, lottery_id: str) -> str | None:
        try:
            lottery = await self._ledger.fetch_lottery_state(lottery_id)
        except LedgerRpcError:
            logger.warning("Could not read back winner for lottery %s", lottery_id, exc_info=True)
            return None
        return lottery.winner if lottery else None
