# src/lottery_orchestrator/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time.
- An empty RPC url means offline mode (in-memory ledger), so the service boots anywhere.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "LOTTO"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    tasks_db_path: Path

    # ---- Ledger / oracle gateway ----
    rpc_url: str
    oracle_url: str
    rpc_timeout_seconds: float
    program_id: str
    oracle_program_id: str
    commitment: str
    operator_address: str | None

    # ---- Worker ----
    scheduler_enabled: bool
    scheduler_interval_seconds: float
    confirm_max_attempts: int
    confirm_interval_seconds: float

    # ---- HTTP ----
    http_host: str
    http_port: int

    @property
    def offline(self) -> bool:
        return not self.rpc_url

    @staticmethod
    def from_env() -> Settings:
        app_name = _env(_k("APP_NAME"), "lottery-orchestrator")
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/lottery"))
        tasks_db_path = _env_path(_k("TASKS_DB_PATH"), data_dir / "tasks.sqlite3")

        rpc_url = (_first_env(_k("RPC_URL"), "RPC_URL", default="") or "").strip()
        oracle_url = (_first_env(_k("ORACLE_URL"), default=rpc_url) or "").strip()
        operator_address = (_first_env(_k("OPERATOR_ADDRESS"), default="") or "").strip() or None

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            tasks_db_path=tasks_db_path,
            rpc_url=rpc_url,
            oracle_url=oracle_url,
            rpc_timeout_seconds=_env_float(_k("RPC_TIMEOUT_SECONDS"), 20.0),
            program_id=_first_env(_k("PROGRAM_ID"), "NEXT_PUBLIC_PROGRAM_ID", default="lottery") or "lottery",
            oracle_program_id=_env(_k("ORACLE_PROGRAM_ID"), "randomness"),
            commitment=_env(_k("COMMITMENT"), "processed"),
            operator_address=operator_address,
            scheduler_enabled=_env_bool(_k("SCHEDULER_ENABLED"), True),
            scheduler_interval_seconds=_env_float(_k("SCHEDULER_INTERVAL_SECONDS"), 5.0),
            confirm_max_attempts=_env_int(_k("CONFIRM_MAX_ATTEMPTS"), 10),
            confirm_interval_seconds=_env_float(_k("CONFIRM_INTERVAL_SECONDS"), 5.0),
            http_host=_env(_k("HTTP_HOST"), "127.0.0.1"),
            http_port=_env_int(_k("HTTP_PORT"), 8000),
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    """Load .env (if present) and build Settings once per process."""
    global _SETTINGS
    if _SETTINGS is None:
        load_dotenv(override=False)
        _SETTINGS = Settings.from_env()
    return _SETTINGS
