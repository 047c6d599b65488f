# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Do NOT commit operator keys or private RPC urls. Use .env (local, gitignored).

This file exists to make the repo self-documenting even without opening .env.example.
"""

ENV_VARS = {
    # App / logging
    "LOTTO_APP_NAME": "App display name (default: lottery-orchestrator).",
    "LOTTO_LOG_LEVEL": "Console logging level (default: INFO).",
    # Paths (gitignored)
    "LOTTO_DATA_DIR": "Local data directory for logs and the task DB (default: .local/lottery).",
    "LOTTO_TASKS_DB_PATH": "TaskStore SQLite path (default: <data_dir>/tasks.sqlite3).",
    # Ledger / oracle gateway
    "LOTTO_RPC_URL": "JSON-RPC gateway url (empty => offline mode with the in-memory ledger).",
    "LOTTO_ORACLE_URL": "Randomness oracle gateway url (default: LOTTO_RPC_URL).",
    "LOTTO_RPC_TIMEOUT_SECONDS": "Per-request HTTP timeout (default: 20).",
    "LOTTO_PROGRAM_ID": "Lottery program id (fallback: NEXT_PUBLIC_PROGRAM_ID, default: lottery).",
    "LOTTO_ORACLE_PROGRAM_ID": "Randomness program id (default: randomness).",
    "LOTTO_COMMITMENT": "Commitment level sent with transactions (default: processed).",
    "LOTTO_OPERATOR_ADDRESS": "Operator address; the cron sweep only picks lotteries it administers.",
    # Worker
    "LOTTO_SCHEDULER_ENABLED": "Run the queue scheduler inside the HTTP process (true/false).",
    "LOTTO_SCHEDULER_INTERVAL_SECONDS": "Scheduler tick interval (default: 5).",
    "LOTTO_CONFIRM_MAX_ATTEMPTS": "Confirmation polls per transaction (default: 10).",
    "LOTTO_CONFIRM_INTERVAL_SECONDS": "Delay between confirmation polls (default: 5).",
    # HTTP
    "LOTTO_HTTP_HOST": "Bind host (default: 127.0.0.1).",
    "LOTTO_HTTP_PORT": "Bind port (default: 8000).",
}
