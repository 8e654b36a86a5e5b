# src/taskpilot/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the store, dispatcher, router and publisher into AppState.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..connectors.console_connector import ConsolePublisher
from ..core.ports import NotificationPublisher
from ..core.state import AppState
from ..notifications.router import NotificationRouter
from ..tasks.dispatcher import ActionDispatcher
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None, publisher: NotificationPublisher | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    store = TaskStore(settings.db_path)
    state = AppState(
        settings=settings,
        store=store,
        dispatcher=ActionDispatcher.from_settings(store, settings),
        router=NotificationRouter(),
        publisher=publisher if publisher is not None else ConsolePublisher(),
    )
    logger.debug("AppState ready db=%s elevated_roles=%s", settings.db_path, settings.elevated_roles)
    return state
