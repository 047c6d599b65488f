# tests/test_pipeline.py

from __future__ import annotations

import time

import pytest

from lottery_orchestrator.core.errors import (
    ConfirmationTimeoutError,
    InvalidStateError,
    LedgerRpcError,
    NotFoundError,
    ValidationError,
)
from lottery_orchestrator.ledger.ledger_models import LotteryStatus
from lottery_orchestrator.ledger.memory import InMemoryLedger
from lottery_orchestrator.ledger.pipeline import PipelineStep, WinnerSelectionPipeline
from lottery_orchestrator.tasks.task_models import LogLevel

from .fakes import RecordingLog

ALL_STEPS = [s.value for s in PipelineStep]


@pytest.mark.asyncio
async def test_selects_a_winner_end_to_end(ledger: InMemoryLedger, pipeline: WinnerSelectionPipeline) -> None:
    ledger.add_lottery("L1", participants=["alice", "bob"])
    log = RecordingLog()

    result = await pipeline.run({"lotteryId": "L1"}, log)

    assert result["lotteryId"] == "L1"
    assert result["winner"] in ("alice", "bob")
    sigs = [result["randomnessSig"], result["commitSig"], result["revealSig"]]
    assert all(sigs) and len(set(sigs)) == 3
    assert result["transaction"] == result["revealSig"]
    assert result["randomnessAccount"]

    lottery = ledger.lotteries["L1"]
    assert lottery.winner == result["winner"]
    assert lottery.status == LotteryStatus.WINNER_SELECTED
    assert lottery.randomness_account == result["randomnessAccount"]

    assert log.steps(LogLevel.INFO) == ALL_STEPS
    assert log.steps(LogLevel.SUCCESS) == ALL_STEPS
    assert log.steps(LogLevel.ERROR) == []


@pytest.mark.asyncio
async def test_reveal_and_select_share_one_transaction(
    ledger: InMemoryLedger, pipeline: WinnerSelectionPipeline
) -> None:
    ledger.add_lottery("L1", participants=["alice", "bob"])

    result = await pipeline.run({"lotteryId": "L1"}, RecordingLog())

    assert len(ledger.transactions) == 3
    sig, instructions = ledger.transactions[-1]
    assert sig == result["revealSig"]
    assert [ix.name for ix in instructions] == ["randomness_reveal", "select_winner"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("failing_step", "expected_sends"),
    [
        (PipelineStep.FETCH, 0),
        (PipelineStep.VALIDATE, 0),
        (PipelineStep.CREATE_RANDOMNESS, 0),
        (PipelineStep.COMMIT, 1),
        (PipelineStep.REVEAL_AND_SELECT, 2),
    ],
)
async def test_failure_at_step_stops_the_run(
    ledger: InMemoryLedger,
    pipeline: WinnerSelectionPipeline,
    failing_step: PipelineStep,
    expected_sends: int,
) -> None:
    if failing_step == PipelineStep.VALIDATE:
        ledger.add_lottery("L1", participants=[])
    else:
        ledger.add_lottery("L1", participants=["alice", "bob"])
        method = {
            PipelineStep.FETCH: "fetch_lottery_state",
            PipelineStep.CREATE_RANDOMNESS: "create_commitment",
            PipelineStep.COMMIT: "commit_instruction",
            PipelineStep.REVEAL_AND_SELECT: "reveal_instruction",
        }[failing_step]
        ledger.inject_failure(method)
    log = RecordingLog()

    with pytest.raises((LedgerRpcError, InvalidStateError)):
        await pipeline.run({"lotteryId": "L1"}, log)

    k = ALL_STEPS.index(failing_step.value)
    assert log.steps(LogLevel.INFO) == ALL_STEPS[: k + 1]
    assert log.steps(LogLevel.SUCCESS) == ALL_STEPS[:k]
    assert log.steps(LogLevel.ERROR) == [failing_step.value]
    assert log.lines[-1].message.startswith(f"[{failing_step.value}] failed:")

    # Nothing after the failing step reached the ledger, and the lottery is untouched.
    assert ledger.calls.count("send_transaction") == expected_sends
    assert ledger.lotteries["L1"].winner is None


@pytest.mark.asyncio
async def test_zero_participants_is_rejected(ledger: InMemoryLedger, pipeline: WinnerSelectionPipeline) -> None:
    ledger.add_lottery("L1", participants=[])

    with pytest.raises(InvalidStateError, match="No participants found in the lottery"):
        await pipeline.run({"lotteryId": "L1"}, RecordingLog())


@pytest.mark.asyncio
async def test_lottery_that_has_not_ended_is_rejected(
    ledger: InMemoryLedger, pipeline: WinnerSelectionPipeline
) -> None:
    ledger.add_lottery("L1", participants=["alice"], end_time=time.time() + 3600)

    with pytest.raises(InvalidStateError, match="not ended"):
        await pipeline.run({"lotteryId": "L1"}, RecordingLog())
    assert ledger.transactions == []


@pytest.mark.asyncio
async def test_resolved_lottery_is_rejected(ledger: InMemoryLedger, pipeline: WinnerSelectionPipeline) -> None:
    ledger.add_lottery("L1", participants=["alice"], winner="alice", status=LotteryStatus.WINNER_SELECTED)

    with pytest.raises(InvalidStateError, match="already been selected"):
        await pipeline.run({"lotteryId": "L1"}, RecordingLog())


@pytest.mark.asyncio
async def test_unknown_lottery(pipeline: WinnerSelectionPipeline) -> None:
    log = RecordingLog()

    with pytest.raises(NotFoundError):
        await pipeline.run({"lotteryId": "ghost"}, log)
    assert log.steps(LogLevel.ERROR) == ["fetch"]


@pytest.mark.asyncio
async def test_missing_lottery_id_fails_before_any_step(pipeline: WinnerSelectionPipeline) -> None:
    log = RecordingLog()

    with pytest.raises(ValidationError, match="Lottery ID is required"):
        await pipeline.run({}, log)
    assert log.lines == []


@pytest.mark.asyncio
async def test_unconfirmed_randomness_account_times_out(
    ledger: InMemoryLedger, pipeline: WinnerSelectionPipeline
) -> None:
    ledger.add_lottery("L1", participants=["alice", "bob"])
    ledger.never_confirm = True
    log = RecordingLog()

    with pytest.raises(ConfirmationTimeoutError):
        await pipeline.run({"lotteryId": "L1"}, log)

    assert log.steps(LogLevel.ERROR) == ["create_randomness"]
    assert ledger.calls.count("get_signature_status") == 3
