# src/taskpilot/connectors/console_connector.py

from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.ports import NotificationPayload
from ..core.state import AppState

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _rewrite_prev_line(line: str) -> None:
    """
    Replace the last terminal line with `line`.
    Best-effort: if not a TTY, just print a new line.
    """
    try:
        if sys.stdout.isatty():
            sys.stdout.write("\033[1A\033[2K\r")
            sys.stdout.write(line + "\n")
            sys.stdout.flush()
        else:
            print(line)
    except OSError:
        print(line)


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}")


class ConsolePublisher:
    """
    NotificationPublisher for the local console: every channel prints to the terminal.

    There is one terminal for all users, so the channel is shown alongside the text.
    """

    def __init__(self, emit: Callable[[str], None] | None = None) -> None:
        self._emit = emit or _print_ts

    async def publish(self, channel: str, payload: NotificationPayload) -> None:
        parts = [f"[NOTIFY {channel}] {payload.get('kind')}: {payload.get('title')}"]
        if payload.get("newStatus"):
            parts.append(f"status={payload['newStatus']}")
        if payload.get("newProgress") is not None:
            parts.append(f"progress={payload['newProgress']}%")
        if payload.get("actorName"):
            parts.append(f"by {payload['actorName']}")
        self._emit(" ".join(parts))


def run_console_loop(state: AppState) -> None:
    logger.info("Console connector started (db=%s).", getattr(state.settings, "db_path", "?"))
    _print_ts("[CONSOLE] Use /login <user_id> [role] first, /help for commands, /exit to quit.\n")

    def emit(text: str) -> None:
        print(f"[{_ts_local()}] {text}", flush=True)

    while True:
        who = state.session_user or "guest"
        try:
            user_input = input(f">>> {who}: ").strip()
            _rewrite_prev_line(f"[{_ts_local()}] >>> {who}: {user_input}")
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            print()
            break

        if not user_input:
            continue

        if user_input.lower() in ("/exit", "/quit"):
            logger.info("Console exit command received.")
            break

        try:
            with state.lock:
                cmd_response = command_registry.handle(state, user_input, emit=emit)
        except Exception:
            logger.exception("Command handler crashed.")
            cmd_response = "Internal error while handling a command."

        if cmd_response is None:
            cmd_response = "Commands start with '/'. Use /help to list them."
        print(f"[{_ts_local()}] {cmd_response}")

    logger.info("Console connector finished.")
