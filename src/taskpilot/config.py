# src/taskpilot/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time.
- Tests build their own settings objects instead of reading the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "TASKPILOT"

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


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


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    return [p.strip() for p in raw.replace(",", " ").split() if p.strip()]


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
    console_enabled: bool

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    db_path: Path

    # ---- Authorization ----
    elevated_roles: list[str]

    # ---- Candidate scoring ----
    max_workload: int
    default_top_k: int
    weight_skill: float
    weight_workload: float
    weight_performance: float
    weight_availability: float

    # ---- Dispatcher caller cache ----
    caller_cache_size: int
    caller_cache_ttl_seconds: float

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "taskpilot") or "taskpilot"
        log_level = _env(_k("LOG_LEVEL"), "INFO")
        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/taskpilot"))
        db_path = _env_path(_k("DB_PATH"), data_dir / "taskpilot.sqlite3")

        elevated_roles = [r.lower() for r in _env_list(_k("ELEVATED_ROLES"), ["admin"])]

        max_workload = max(1, _env_int(_k("MAX_WORKLOAD"), 10))
        default_top_k = max(1, _env_int(_k("TOP_K"), 3))

        return Settings(
            app_name=app_name,
            log_level=log_level,
            console_enabled=console_enabled,
            data_dir=data_dir,
            db_path=db_path,
            elevated_roles=elevated_roles,
            max_workload=max_workload,
            default_top_k=default_top_k,
            weight_skill=_env_float(_k("WEIGHT_SKILL"), 0.40),
            weight_workload=_env_float(_k("WEIGHT_WORKLOAD"), 0.30),
            weight_performance=_env_float(_k("WEIGHT_PERFORMANCE"), 0.20),
            weight_availability=_env_float(_k("WEIGHT_AVAILABILITY"), 0.10),
            caller_cache_size=max(1, _env_int(_k("CALLER_CACHE_SIZE"), 256)),
            caller_cache_ttl_seconds=_env_float(_k("CALLER_CACHE_TTL_SECONDS"), 300.0),
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
