# src/lottery_orchestrator/ledger/ledger_models.py

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class LotteryStatus(IntEnum):
    """Lottery lifecycle as stored by the ledger program."""

    ACTIVE = 0
    ENDED_WAITING_FOR_WINNER = 1
    WINNER_SELECTED = 2
    COMPLETED = 3

    @classmethod
    def from_raw(cls, raw: Any) -> LotteryStatus:
        """
        Accept both numeric and named encodings.

        Gateways return either `1` or an enum object such as {"endedWaitingForWinner": {}}.
        """
        if isinstance(raw, LotteryStatus):
            return raw
        if isinstance(raw, int):
            return cls(raw)
        if isinstance(raw, dict) and raw:
            raw = next(iter(raw))
        if isinstance(raw, str):
            key = raw.strip().replace("-", "_")
            if key.isdigit():
                return cls(int(key))
            normalized = "".join(ch for ch in key if ch != "_").lower()
            for member in cls:
                if member.name.replace("_", "").lower() == normalized:
                    return member
        raise ValueError(f"Unknown lottery status: {raw!r}")

    @property
    def label(self) -> str:
        return {
            LotteryStatus.ACTIVE: "Active",
            LotteryStatus.ENDED_WAITING_FOR_WINNER: "Ended - Waiting for Winner",
            LotteryStatus.WINNER_SELECTED: "Winner Selected",
            LotteryStatus.COMPLETED: "Completed",
        }[self]


@dataclass(slots=True)
class LotteryState:
    lottery_id: str
    admin: str
    creator: str
    entry_fee: int
    total_tickets: int
    participants: list[str]
    end_time: int
    status: LotteryStatus = LotteryStatus.ACTIVE
    winner: str | None = None
    randomness_account: str | None = None
    total_prize: int = 0

    def effective_status(self, now_ts: float | None = None) -> LotteryStatus:
        """
        An Active lottery whose end_time has passed is reported as waiting for a winner,
        the same way the ledger program computes it on read.
        """
        if now_ts is None:
            now_ts = time.time()
        if self.status == LotteryStatus.ACTIVE and now_ts > self.end_time:
            return LotteryStatus.ENDED_WAITING_FOR_WINNER
        return self.status

    def has_ended(self, now_ts: float | None = None) -> bool:
        return self.effective_status(now_ts) != LotteryStatus.ACTIVE

    @property
    def is_resolved(self) -> bool:
        return self.winner is not None or self.status >= LotteryStatus.WINNER_SELECTED

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> LotteryState:
        winner = data.get("winner")
        rnd = data.get("randomnessAccount", data.get("randomness_account"))
        return cls(
            lottery_id=str(data.get("lotteryId", data.get("lottery_id", ""))),
            admin=str(data.get("admin") or ""),
            creator=str(data.get("creator") or ""),
            entry_fee=int(data.get("entryFee", data.get("entry_fee", 0)) or 0),
            total_tickets=int(data.get("totalTickets", data.get("total_tickets", 0)) or 0),
            participants=[str(p) for p in (data.get("participants") or [])],
            end_time=int(data.get("endTime", data.get("end_time", 0)) or 0),
            status=LotteryStatus.from_raw(data.get("status", 0)),
            winner=str(winner) if winner else None,
            randomness_account=str(rnd) if rnd else None,
            total_prize=int(data.get("totalPrize", data.get("total_prize", 0)) or 0),
        )


@dataclass(slots=True, frozen=True)
class Keypair:
    """
    Opaque signing identity.

    Only ephemeral keys for randomness accounts are generated here; deriving a real
    public key from the secret is the gateway's job.
    """

    public_key: str
    secret: str = field(repr=False)

    @classmethod
    def generate(cls) -> Keypair:
        return cls(public_key=secrets.token_hex(32), secret=secrets.token_hex(32))


@dataclass(slots=True, frozen=True)
class Instruction:
    """One program instruction, serialized as-is to the gateway."""

    program: str
    name: str
    accounts: dict[str, str] = field(default_factory=dict)
    args: list[Any] = field(default_factory=list)

    def to_json(self) -> dict[str, Any]:
        return {
            "program": self.program,
            "name": self.name,
            "accounts": dict(self.accounts),
            "args": list(self.args),
        }


@dataclass(slots=True, frozen=True)
class RandomnessAccount:
    pubkey: str
    queue: str


@dataclass(slots=True, frozen=True)
class SignatureStatus:
    """`confirmation_status` is one of processed / confirmed / finalized, or None when unknown."""

    confirmation_status: str | None
    err: Any = None

    @property
    def is_confirmed(self) -> bool:
        return self.confirmation_status in ("confirmed", "finalized")
