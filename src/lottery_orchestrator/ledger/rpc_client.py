# src/lottery_orchestrator/ledger/rpc_client.py

from __future__ import annotations

"""
JSON-RPC clients for the ledger gateway and the randomness oracle.

The gateway owns key management, account derivation and fees. We only describe
instructions and ask it to sign and submit them.
"""

import itertools
import logging
from typing import Any

import httpx

from ..core.errors import LedgerRpcError
from .ledger_models import (
    Instruction,
    Keypair,
    LotteryState,
    RandomnessAccount,
    SignatureStatus,
)

logger = logging.getLogger(__name__)


class JsonRpcTransport:
    """Thin JSON-RPC 2.0 client over httpx.AsyncClient."""

    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float = 20.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not url:
            raise ValueError("RPC url is required")
        self._url = url
        self._ids = itertools.count(1)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds, connect=min(5.0, timeout_seconds)),
            headers={"Content-Type": "application/json"},
        )

    @property
    def url(self) -> str:
        return self._url

    async def call(self, method: str, params: Any = None) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params or []}
        try:
            resp = await self._client.post(self._url, json=payload)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise LedgerRpcError(f"{method} failed: {exc}") from exc

        try:
            body = resp.json()
        except ValueError as exc:
            raise LedgerRpcError(f"{method} returned a non-JSON response") from exc

        if not isinstance(body, dict):
            raise LedgerRpcError(f"{method} returned an unexpected payload")
        err = body.get("error")
        if err:
            msg = err.get("message") if isinstance(err, dict) else str(err)
            raise LedgerRpcError(f"{method} error: {msg}")
        return body.get("result")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class RpcLedgerClient:
    def __init__(
        self,
        transport: JsonRpcTransport,
        *,
        program_id: str,
        commitment: str = "processed",
    ) -> None:
        self._rpc = transport
        self.program_id = program_id
        self.commitment = commitment

    async def fetch_lottery_state(self, lottery_id: str) -> LotteryState | None:
        raw = await self._rpc.call(
            "getLotteryState",
            {"programId": self.program_id, "lotteryId": lottery_id, "commitment": self.commitment},
        )
        if raw is None:
            return None
        if not isinstance(raw, dict):
            raise LedgerRpcError("getLotteryState returned an unexpected payload")
        return LotteryState.from_json(raw)

    async def list_lotteries(self) -> list[LotteryState]:
        raw = await self._rpc.call("getProgramLotteries", {"programId": self.program_id})
        out: list[LotteryState] = []
        for item in raw or []:
            # Gateways may return {"publicKey": ..., "account": {...}} pairs.
            account = item.get("account", item) if isinstance(item, dict) else None
            if not isinstance(account, dict):
                continue
            try:
                out.append(LotteryState.from_json(account))
            except (TypeError, ValueError):
                logger.warning("Skipping undecodable lottery account: %r", item)
        return out

    async def select_winner_instruction(self, lottery_id: str, randomness_account: str) -> Instruction:
        return Instruction(
            program=self.program_id,
            name="selectWinner",
            accounts={"lottery": lottery_id, "randomnessAccountData": randomness_account},
            args=[lottery_id],
        )

    async def send_transaction(
        self,
        instructions: list[Instruction],
        *,
        extra_signers: list[Keypair] | None = None,
    ) -> str:
        sig = await self._rpc.call(
            "sendTransaction",
            {
                "instructions": [ix.to_json() for ix in instructions],
                "signers": [
                    {"publicKey": kp.public_key, "secretKey": kp.secret} for kp in extra_signers or []
                ],
                # No gateway-side resends.
                "options": {"skipPreflight": True, "maxRetries": 0, "commitment": self.commitment},
            },
        )
        if not isinstance(sig, str) or not sig:
            raise LedgerRpcError("sendTransaction returned no signature")
        logger.info("Submitted transaction %s (%d instructions)", sig, len(instructions))
        return sig

    async def get_signature_status(self, signature: str) -> SignatureStatus | None:
        raw = await self._rpc.call(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": True}],
        )
        values = (raw or {}).get("value") if isinstance(raw, dict) else None
        if not values or values[0] is None:
            return None
        entry = values[0]
        return SignatureStatus(
            confirmation_status=entry.get("confirmationStatus"),
            err=entry.get("err"),
        )


class RpcRandomnessOracle:
    def __init__(self, transport: JsonRpcTransport, *, program_id: str) -> None:
        self._rpc = transport
        self.program_id = program_id
        self._queue: str | None = None

    async def default_queue(self) -> str:
        if self._queue is None:
            queue = await self._rpc.call("randomness_getDefaultQueue", {"programId": self.program_id})
            if not isinstance(queue, str) or not queue:
                raise LedgerRpcError("Queue setup failed")
            self._queue = queue
            logger.info("Randomness queue account: %s", queue)
        return self._queue

    async def create_commitment(self, keypair: Keypair, queue: str) -> tuple[RandomnessAccount, Instruction]:
        account = RandomnessAccount(pubkey=keypair.public_key, queue=queue)
        ix = Instruction(
            program=self.program_id,
            name="randomnessInit",
            accounts={"randomness": keypair.public_key, "queue": queue},
        )
        return account, ix

    async def commit_instruction(self, account: RandomnessAccount, queue: str) -> Instruction:
        return Instruction(
            program=self.program_id,
            name="randomnessCommit",
            accounts={"randomness": account.pubkey, "queue": queue},
        )

    async def reveal_instruction(self, account: RandomnessAccount) -> Instruction:
        # The reveal carries the oracle's signed value.
        raw = await self._rpc.call(
            "randomness_revealIx",
            {"programId": self.program_id, "randomness": account.pubkey},
        )
        if not isinstance(raw, dict):
            raise LedgerRpcError("randomness_revealIx returned an unexpected payload")
        return Instruction(
            program=str(raw.get("program") or self.program_id),
            name=str(raw.get("name") or "randomnessReveal"),
            accounts={str(k): str(v) for k, v in (raw.get("accounts") or {}).items()},
            args=list(raw.get("args") or []),
        )
