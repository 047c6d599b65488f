# src/lottery_orchestrator/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then serves the HTTP app with uvicorn.
The queue scheduler runs inside the app lifespan.
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import replace

import uvicorn

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..http.app import create_app
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="lottery-orchestrator")
    parser.add_argument("--host", default=None, help="Bind host (default: LOTTO_HTTP_HOST)")
    parser.add_argument("--port", type=int, default=None, help="Bind port (default: LOTTO_HTTP_PORT)")
    parser.add_argument(
        "--no-scheduler",
        action="store_true",
        help="Serve the API only; tasks are processed via wait=true or force.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    settings = get_settings()

    # choose console log level from settings.log_level
    level_name = str(settings.log_level).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s...", settings.app_name)

    if args.no_scheduler:
        logger.info("Scheduler disabled from the command line.")
        settings = replace(settings, scheduler_enabled=False)

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings)

    app = create_app(state)
    host = args.host or settings.http_host
    port = args.port or settings.http_port
    logger.info("Serving on http://%s:%s (offline=%s)", host, port, settings.offline)

    uvicorn.run(app, host=host, port=port, log_level=level_name.lower(), log_config=None)
    logger.info("Bye.")


if __name__ == "__main__":
    main()
