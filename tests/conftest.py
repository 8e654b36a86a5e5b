# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from taskpilot.core.state import AppState
from taskpilot.notifications.router import NotificationRouter
from taskpilot.tasks.dispatcher import ActionDispatcher
from taskpilot.tasks.task_models import Employee
from taskpilot.tasks.task_store import TaskStore

from .fakes import FakePublisher

ADMIN = "admin-1"


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and core modules.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="taskpilot-test",
        data_dir=tmp_path,
        db_path=tmp_path / "tasks.sqlite3",
        elevated_roles=["admin"],
        max_workload=10,
        default_top_k=3,
        weight_skill=0.40,
        weight_workload=0.30,
        weight_performance=0.20,
        weight_availability=0.10,
        caller_cache_size=16,
        caller_cache_ttl_seconds=60.0,
    )


@pytest.fixture()
def employees() -> list[Employee]:
    return [
        Employee(
            id="alice",
            name="Alice",
            skills=frozenset({"React", "PostgreSQL", "AWS"}),
            current_workload=2,
            performance_score=0.9,
            hourly_rate=50.0,
        ),
        Employee(
            id="bob",
            name="Bob",
            skills=frozenset({"React"}),
            current_workload=0,
            performance_score=0.5,
            hourly_rate=30.0,
        ),
        Employee(
            id="carol",
            name="Carol",
            skills=frozenset({"Python"}),
            current_workload=1,
            performance_score=0.7,
            availability=False,
            hourly_rate=40.0,
        ),
        Employee(id=ADMIN, name="Ada Admin", skills=frozenset(), performance_score=1.0),
    ]


@pytest.fixture()
def store(settings: SimpleNamespace, employees: list[Employee]) -> TaskStore:
    """
    Real SQLite store seeded with a few employees.

    We keep real SQLite here because conditional updates and rollback are part of
    what we want to test.
    """
    s = TaskStore(settings.db_path)
    for emp in employees:
        s.upsert_employee(emp)
    return s


@pytest.fixture()
def dispatcher(store: TaskStore, settings: SimpleNamespace) -> ActionDispatcher:
    return ActionDispatcher.from_settings(store, settings)


@pytest.fixture()
def publisher() -> FakePublisher:
    return FakePublisher()


@pytest.fixture()
def state(
    settings: SimpleNamespace,
    store: TaskStore,
    dispatcher: ActionDispatcher,
    publisher: FakePublisher,
) -> AppState:
    return AppState(
        settings=settings,
        store=store,
        dispatcher=dispatcher,
        router=NotificationRouter(),
        publisher=publisher,
    )
