# src/taskpilot/core/state.py

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any

from ..notifications.router import NotificationRouter
from ..tasks.dispatcher import ActionDispatcher
from ..tasks.task_store import TaskStore
from .ports import NotificationPublisher


@dataclass
class AppState:
    # Store Settings on the state for easy access in other modules later.
    settings: Any

    store: TaskStore
    dispatcher: ActionDispatcher
    router: NotificationRouter
    publisher: NotificationPublisher

    # Console session identity (set by /login).
    session_user: str | None = None
    session_role: str = "employee"

    lock: threading.RLock = field(default_factory=threading.RLock)
