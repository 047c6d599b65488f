# src/lottery_orchestrator/ledger/confirm.py

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from ..core.errors import ConfirmationTimeoutError, LedgerRpcError, TransactionFailedError
from ..core.ports import LedgerClient
from .ledger_models import SignatureStatus

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 10
DEFAULT_INTERVAL_SECONDS = 5.0


class ConfirmationPoller:
    """
    Poll a submitted transaction until the ledger reports it confirmed.

    Bounded: max_attempts status queries, interval_seconds apart (10 x 5s by default).
    The poller never resubmits; whether a transaction may be sent again is the caller's call.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._ledger = ledger
        self.max_attempts = max(1, int(max_attempts))
        self.interval_seconds = max(0.0, float(interval_seconds))
        self._sleep = sleep

    async def confirm(
        self,
        signature: str,
        *,
        max_attempts: int | None = None,
        interval_seconds: float | None = None,
    ) -> SignatureStatus:
        attempts = self.max_attempts if max_attempts is None else max(1, int(max_attempts))
        interval = self.interval_seconds if interval_seconds is None else max(0.0, float(interval_seconds))

        for attempt in range(1, attempts + 1):
            try:
                status = await self._ledger.get_signature_status(signature)
            except LedgerRpcError:
                # Transient gateway trouble still consumes an attempt.
                logger.warning(
                    "Signature status query failed sig=%s attempt=%d/%d",
                    signature,
                    attempt,
                    attempts,
                    exc_info=True,
                )
                status = None

            if status is not None:
                if status.err is not None:
                    raise TransactionFailedError(signature, status.err)
                if status.is_confirmed:
                    logger.info("Transaction confirmed: %s (attempt %d)", signature, attempt)
                    return status

            if attempt < attempts:
                logger.debug(
                    "Waiting for confirmation sig=%s (attempt %d/%d)...",
                    signature,
                    attempt,
                    attempts,
                )
                await self._sleep(interval)

        raise ConfirmationTimeoutError(signature, attempts)
