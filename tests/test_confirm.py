# tests/test_confirm.py

from __future__ import annotations

import pytest

from lottery_orchestrator.core.errors import ConfirmationTimeoutError, TransactionFailedError
from lottery_orchestrator.ledger.confirm import ConfirmationPoller
from lottery_orchestrator.ledger.ledger_models import Instruction, SignatureStatus
from lottery_orchestrator.ledger.memory import InMemoryLedger

from .fakes import FakeSleep


def _status_polls(ledger: InMemoryLedger) -> int:
    return ledger.calls.count("get_signature_status")


@pytest.mark.asyncio
async def test_confirms_after_a_few_polls() -> None:
    ledger = InMemoryLedger(confirm_after=3)
    sleep = FakeSleep()
    poller = ConfirmationPoller(ledger, max_attempts=10, interval_seconds=5.0, sleep=sleep)
    sig = await ledger.send_transaction([])

    status = await poller.confirm(sig)

    assert status.is_confirmed
    assert _status_polls(ledger) == 3
    assert sleep.delays == [5.0, 5.0]


@pytest.mark.asyncio
async def test_times_out_after_bounded_attempts() -> None:
    ledger = InMemoryLedger()
    ledger.never_confirm = True
    sleep = FakeSleep()
    poller = ConfirmationPoller(ledger, sleep=sleep)
    sig = await ledger.send_transaction([])

    with pytest.raises(ConfirmationTimeoutError) as ei:
        await poller.confirm(sig)

    assert ei.value.attempts == 10
    assert ei.value.signature == sig
    assert isinstance(ei.value, TimeoutError)
    assert _status_polls(ledger) == 10
    # No sleep after the final attempt.
    assert sleep.delays == [5.0] * 9


@pytest.mark.asyncio
async def test_transient_rpc_errors_consume_attempts() -> None:
    ledger = InMemoryLedger()
    ledger.inject_failure("get_signature_status", times=2)
    poller = ConfirmationPoller(ledger, max_attempts=3, interval_seconds=0, sleep=FakeSleep())
    sig = await ledger.send_transaction([])

    status = await poller.confirm(sig)

    assert status.confirmation_status == "confirmed"
    assert _status_polls(ledger) == 3


@pytest.mark.asyncio
async def test_rpc_errors_on_every_attempt_end_in_timeout() -> None:
    ledger = InMemoryLedger()
    ledger.inject_failure("get_signature_status", times=3)
    poller = ConfirmationPoller(ledger, max_attempts=3, interval_seconds=0, sleep=FakeSleep())
    sig = await ledger.send_transaction([])

    with pytest.raises(ConfirmationTimeoutError):
        await poller.confirm(sig)


@pytest.mark.asyncio
async def test_failed_transaction_stops_polling() -> None:
    ledger = InMemoryLedger()
    poller = ConfirmationPoller(ledger, max_attempts=5, interval_seconds=0, sleep=FakeSleep())
    sig = await ledger.send_transaction([Instruction(program="nowhere", name="noop")])

    with pytest.raises(TransactionFailedError) as ei:
        await poller.confirm(sig)

    assert "unknown instruction" in str(ei.value.err)
    assert _status_polls(ledger) == 1


@pytest.mark.asyncio
async def test_per_call_overrides() -> None:
    ledger = InMemoryLedger()
    ledger.never_confirm = True
    sleep = FakeSleep()
    poller = ConfirmationPoller(ledger, sleep=sleep)
    sig = await ledger.send_transaction([])

    with pytest.raises(ConfirmationTimeoutError) as ei:
        await poller.confirm(sig, max_attempts=2, interval_seconds=0.5)

    assert ei.value.attempts == 2
    assert sleep.delays == [0.5]


def test_finalized_counts_as_confirmed() -> None:
    assert SignatureStatus("finalized").is_confirmed
    assert SignatureStatus("confirmed").is_confirmed
    assert not SignatureStatus("processed").is_confirmed
    assert not SignatureStatus(None).is_confirmed
