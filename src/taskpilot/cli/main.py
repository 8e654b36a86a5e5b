# src/taskpilot/cli/main.py

"""
CLI entrypoint: `taskpilot`.

Configures logging from settings, opens the task store, runs the console REPL.
"""

from __future__ import annotations

import contextlib
import logging

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..logging_setup import setup_logging_from_settings

logger = logging.getLogger(__name__)


def main() -> None:
    settings = get_settings()
    setup_logging_from_settings(settings)

    state = create_initial_state(settings=settings)
    logger.info(
        "Starting %s db=%s employees=%d tasks=%d",
        settings.app_name,
        settings.db_path,
        len(state.store.list_employees()),
        state.store.count_tasks(),
    )

    with contextlib.closing(state.store):
        if settings.console_enabled:
            run_console_loop(state)
        else:
            logger.info("Console disabled; set TASKPILOT_CONSOLE_ENABLED=1 to use the REPL.")
    logger.info("Bye.")


if __name__ == "__main__":
    main()
