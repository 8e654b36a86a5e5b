# src/taskpilot/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

# Per-query chatter that only belongs in the log file.
_FILE_ONLY_BELOW_WARNING = (
    "taskpilot.tasks.task_store",
    "taskpilot.chat.tools",
)

# Third-party loggers that are capped at WARNING everywhere.
_QUIET_LIBRARIES = ("openai", "httpcore", "asyncio")


class _ConsoleNoiseFilter(logging.Filter):
    """
    Keep the REPL readable while a user is typing commands:
    - task actions, lifecycle transitions and notifications are shown
    - store/tool-bridge debug output stays in the file unless WARNING+
    - everything else only at ERROR+
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name

        if name.startswith(_FILE_ONLY_BELOW_WARNING):
            return record.levelno >= logging.WARNING
        if name.startswith("taskpilot."):
            return True
        return record.levelno >= logging.ERROR


def level_from_name(name: str | None, default: int = logging.INFO) -> int:
    value = logging.getLevelName(str(name or "").strip().upper())
    return value if isinstance(value, int) else default


def setup_logging(
    *,
    log_dir: str | Path = ".local/taskpilot",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Console handler (filtered) + file handler (everything) on the root logger.

    Call once, before the store is opened. Returns the log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "taskpilot.log"

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(console_level)
    ch.setFormatter(fmt)
    ch.addFilter(_ConsoleNoiseFilter())
    root.addHandler(ch)

    fh = logging.FileHandler(str(log_file), encoding="utf-8")
    fh.setLevel(file_level)
    fh.setFormatter(fmt)
    root.addHandler(fh)

    for name in _QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.captureWarnings(True)
    return log_file


def setup_logging_from_settings(settings: Any) -> Path:
    """TASKPILOT_LOG_LEVEL drives the console; the file under TASKPILOT_DATA_DIR always gets DEBUG."""
    return setup_logging(
        log_dir=settings.data_dir,
        console_level=level_from_name(getattr(settings, "log_level", None)),
    )
