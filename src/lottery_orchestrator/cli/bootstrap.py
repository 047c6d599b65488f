# src/lottery_orchestrator/cli/bootstrap.py

"""
Composition root.

- loads settings once,
- ensures local (gitignored) directories exist,
- picks the ledger backend (JSON-RPC gateway, or the in-memory ledger when offline),
- wires store / poller / pipeline / processor / scheduler / API into AppState.
"""

from __future__ import annotations

import logging

from ..config import Settings, get_settings
from ..core.ports import LedgerClient, RandomnessOracle
from ..core.state import AppState
from ..ledger.confirm import ConfirmationPoller
from ..ledger.memory import InMemoryLedger
from ..ledger.pipeline import WinnerSelectionPipeline
from ..ledger.rpc_client import JsonRpcTransport, RpcLedgerClient, RpcRandomnessOracle
from ..tasks.task_api import TaskApi
from ..tasks.task_processor import TaskProcessor
from ..tasks.task_scheduler import QueueScheduler
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings: Settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(
    *,
    settings: Settings | None = None,
    ledger: LedgerClient | None = None,
    oracle: RandomnessOracle | None = None,
) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings (and the ledger / oracle) injectable makes the app easy to test and
    avoids hidden global config reads. If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    closers = []
    if ledger is None or oracle is None:
        if settings.offline:
            logger.warning("No RPC url configured: using the in-memory ledger (offline mode).")
            memory = InMemoryLedger(operator=settings.operator_address or "operator")
            ledger = ledger or memory
            oracle = oracle or memory
        else:
            ledger_rpc = JsonRpcTransport(settings.rpc_url, timeout_seconds=settings.rpc_timeout_seconds)
            closers.append(ledger_rpc.aclose)
            oracle_rpc = ledger_rpc
            if settings.oracle_url and settings.oracle_url != settings.rpc_url:
                oracle_rpc = JsonRpcTransport(settings.oracle_url, timeout_seconds=settings.rpc_timeout_seconds)
                closers.append(oracle_rpc.aclose)
            ledger = ledger or RpcLedgerClient(
                ledger_rpc,
                program_id=settings.program_id,
                commitment=settings.commitment,
            )
            oracle = oracle or RpcRandomnessOracle(oracle_rpc, program_id=settings.oracle_program_id)
            logger.info("Ledger gateway: %s (program=%s)", settings.rpc_url, settings.program_id)

    store = TaskStore(settings.tasks_db_path)
    poller = ConfirmationPoller(
        ledger,
        max_attempts=settings.confirm_max_attempts,
        interval_seconds=settings.confirm_interval_seconds,
    )
    pipeline = WinnerSelectionPipeline(ledger, oracle, poller)
    processor = TaskProcessor(store, pipeline)
    scheduler = QueueScheduler(store, processor, interval_seconds=settings.scheduler_interval_seconds)
    api = TaskApi(
        store,
        processor,
        scheduler=scheduler,
        ledger=ledger,
        operator_address=settings.operator_address,
    )

    return AppState(
        settings=settings,
        task_store=store,
        ledger=ledger,
        oracle=oracle,
        processor=processor,
        scheduler=scheduler,
        api=api,
        closers=closers,
    )
