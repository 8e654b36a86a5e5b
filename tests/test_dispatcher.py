# tests/test_dispatcher.py

from __future__ import annotations

import threading
import time

import pytest

from taskpilot.tasks.dispatcher import Action, ActionDispatcher, ActionResult
from taskpilot.tasks.events import EventKind
from taskpilot.tasks.task_models import InvitationStatus, Priority, Task, TaskStatus, TaskUpdate
from taskpilot.tasks.task_store import TaskStore

from .conftest import ADMIN
from .fakes import ExplodingRepo


def _create(dispatcher: ActionDispatcher, **payload) -> ActionResult:
    body = {"title": "Build dashboard", "description": "Sales KPIs", "requiredSkills": ["React", "PostgreSQL"]}
    body.update(payload)
    return dispatcher.dispatch(Action.CREATE_TASK, ADMIN, "admin", body)


def _invite_and_accept(dispatcher: ActionDispatcher, assignee: str = "alice") -> str:
    res = _create(dispatcher, assignedTo=assignee)
    assert res.ok, res.message
    task_id = res.data["task"]["id"]
    acc = dispatcher.dispatch("acceptTask", assignee, "employee", {"taskId": task_id})
    assert acc.ok, acc.message
    return task_id


# ---- createTask ----

def test_create_with_assignee_invites(dispatcher: ActionDispatcher, store: TaskStore) -> None:
    res = _create(dispatcher, assignedTo="alice", priority="high", estimatedHours=6)

    assert res.ok
    assert res.data["task"]["status"] == "invited"
    assert res.data["task"]["assignedTo"] == "alice"
    assert res.data["task"]["priority"] == "high"
    assert res.data["invitation"]["status"] == "pending"
    assert "suggestions" not in res.data
    assert [e.kind for e in res.events] == [EventKind.TASK_INVITED]

    inv = store.get_latest_invitation(res.data["task"]["id"])
    assert inv is not None and inv.to_employee == "alice"


def test_create_without_assignee_suggests_available_candidates(dispatcher: ActionDispatcher) -> None:
    res = _create(dispatcher)

    assert res.ok
    assert res.data["task"]["status"] == "unassigned"
    assert res.data["invitation"] is None
    assert [e.kind for e in res.events] == [EventKind.TASK_CREATED]

    ids = [s["employeeId"] for s in res.data["suggestions"]]
    assert ids[:2] == ["alice", "bob"]
    assert "carol" not in ids  # unavailable
    assert len(ids) <= 3
    assert res.data["suggestions"][0]["score"] == pytest.approx(92.0)


def test_create_requires_elevated_role(dispatcher: ActionDispatcher, store: TaskStore) -> None:
    res = dispatcher.dispatch(Action.CREATE_TASK, "bob", "employee", {"title": "t", "description": "d"})
    assert not res.ok
    assert res.error_kind == "AuthorizationError"
    assert store.count_tasks() == 0


@pytest.mark.parametrize(
    ("payload", "kind"),
    [
        ({"title": ""}, "ValidationError"),
        ({"description": None}, "ValidationError"),
        ({"priority": "urgent"}, "ValidationError"),
        ({"deadline": "2001-01-01"}, "ValidationError"),
        ({"deadline": "next week"}, "ValidationError"),
        ({"requiredSkills": "React"}, "ValidationError"),
        ({"estimatedHours": -3}, "ValidationError"),
        ({"estimatedHours": float("inf")}, "ValidationError"),
        ({"estimatedHours": 10**400}, "ValidationError"),
        ({"complexityMultiplier": float("nan")}, "ValidationError"),
        ({"deadline": float("inf")}, "ValidationError"),
        ({"deadline": float("nan")}, "ValidationError"),
        ({"assignedTo": "nobody"}, "NotFoundError"),
    ],
)
def test_create_rejects_bad_payloads(dispatcher: ActionDispatcher, store: TaskStore, payload, kind) -> None:
    res = _create(dispatcher, **payload)
    assert not res.ok
    assert res.error_kind == kind
    assert res.events == []
    assert store.count_tasks() == 0


def test_create_accepts_future_iso_deadline(dispatcher: ActionDispatcher) -> None:
    res = _create(dispatcher, deadline="2999-06-30T12:00:00+00:00")
    assert res.ok
    assert res.data["task"]["deadline"] > time.time()
    assert res.data["task"]["isOverdue"] is False


# ---- accept / reject ----

def test_reject_returns_task_to_pool(dispatcher: ActionDispatcher, store: TaskStore) -> None:
    task_id = _create(dispatcher, assignedTo="alice").data["task"]["id"]

    res = dispatcher.dispatch(Action.REJECT_TASK, "alice", "employee", {"taskId": task_id, "reason": "too busy"})

    assert res.ok
    task = store.get_task(task_id)
    inv = store.get_latest_invitation(task_id)
    assert task.status == TaskStatus.UNASSIGNED
    assert task.assigned_to is None
    assert inv.status == InvitationStatus.REJECTED
    assert inv.rejection_reason == "too busy"
    assert [e.kind for e in res.events] == [EventKind.INVITATION_REJECTED]
    assert res.events[0].assignee_id == "alice"


def test_only_invited_employee_can_respond(dispatcher: ActionDispatcher, store: TaskStore) -> None:
    task_id = _create(dispatcher, assignedTo="alice").data["task"]["id"]

    res = dispatcher.dispatch(Action.ACCEPT_TASK, "bob", "employee", {"taskId": task_id})

    assert res.error_kind == "AuthorizationError"
    assert store.get_task(task_id).status == TaskStatus.INVITED


def test_second_accept_conflicts(dispatcher: ActionDispatcher, store: TaskStore) -> None:
    task_id = _invite_and_accept(dispatcher)

    again = dispatcher.dispatch(Action.ACCEPT_TASK, "alice", "employee", {"taskId": task_id})

    assert again.error_kind == "ConflictError"
    assert store.get_employee("alice").current_workload == 3


def test_accept_unknown_task_is_not_found(dispatcher: ActionDispatcher) -> None:
    res = dispatcher.dispatch(Action.ACCEPT_TASK, "alice", "employee", {"taskId": "nope"})
    assert res.error_kind == "NotFoundError"


def test_accept_without_invitation_conflicts(dispatcher: ActionDispatcher) -> None:
    task_id = _create(dispatcher).data["task"]["id"]
    res = dispatcher.dispatch(Action.ACCEPT_TASK, "alice", "employee", {"taskId": task_id})
    assert res.error_kind == "ConflictError"


def test_concurrent_accepts_apply_once(settings, store: TaskStore) -> None:
    task_id = _create(ActionDispatcher.from_settings(store, settings), assignedTo="alice").data["task"]["id"]
    start = threading.Barrier(2)
    results: list[ActionResult] = []
    lock = threading.Lock()

    def worker() -> None:
        d = ActionDispatcher.from_settings(store, settings)
        start.wait()
        res = d.dispatch(Action.ACCEPT_TASK, "alice", "employee", {"taskId": task_id})
        with lock:
            results.append(res)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert sorted(r.ok for r in results) == [False, True]
    assert [r.error_kind for r in results if not r.ok] == ["ConflictError"]
    assert store.get_task(task_id).status == TaskStatus.ONGOING
    assert store.get_employee("alice").current_workload == 3


# ---- progress ----

def test_progress_to_100_completes_with_payment(dispatcher: ActionDispatcher, store: TaskStore) -> None:
    task_id = _invite_and_accept(dispatcher)
    mid = dispatcher.dispatch(Action.UPDATE_TASK_PROGRESS, "alice", "employee", {"taskId": task_id, "progress": 60})
    assert mid.ok
    assert [e.kind for e in mid.events] == [EventKind.PROGRESS_UPDATED]
    assert "suggestedPayment" not in mid.data

    res = dispatcher.dispatch(
        Action.UPDATE_TASK_PROGRESS,
        "alice",
        "employee",
        {"taskId": task_id, "progress": 100, "hoursLogged": 2, "note": "shipped"},
    )

    assert res.ok
    task = store.get_task(task_id)
    assert task.status == TaskStatus.COMPLETED
    assert task.progress == 100
    latest = store.list_task_updates(task_id, limit=1)[0]
    assert latest.hours_logged == 2
    assert latest.note == "shipped"
    assert [e.kind for e in res.events] == [EventKind.TASK_COMPLETED]
    assert res.data["suggestedPayment"]["amount"] == pytest.approx(100.0)
    assert store.get_employee("alice").tasks_completed == 1
    assert store.get_employee("alice").current_workload == 2


@pytest.mark.parametrize(
    "payload",
    [
        {"progress": 101},
        {"progress": -1},
        {"progress": 12.5},
        {"progress": "50"},
        {},
        {"progress": 10, "hoursLogged": -2},
        {"progress": 100, "hoursLogged": float("inf")},
        {"progress": 100, "hoursLogged": float("nan")},
    ],
)
def test_progress_validation(dispatcher: ActionDispatcher, store: TaskStore, payload) -> None:
    task_id = _invite_and_accept(dispatcher)
    res = dispatcher.dispatch(Action.UPDATE_TASK_PROGRESS, "alice", "employee", {"taskId": task_id, **payload})
    assert res.error_kind == "ValidationError"
    assert store.list_task_updates(task_id) == []


def test_progress_by_non_assignee_is_rejected(dispatcher: ActionDispatcher) -> None:
    task_id = _invite_and_accept(dispatcher)
    res = dispatcher.dispatch(Action.UPDATE_TASK_PROGRESS, "bob", "employee", {"taskId": task_id, "progress": 10})
    assert res.error_kind == "AuthorizationError"


def test_progress_before_accept_conflicts(dispatcher: ActionDispatcher) -> None:
    task_id = _create(dispatcher, assignedTo="alice").data["task"]["id"]
    res = dispatcher.dispatch(Action.UPDATE_TASK_PROGRESS, "alice", "employee", {"taskId": task_id, "progress": 10})
    assert res.error_kind == "ConflictError"


# ---- queries ----

def test_list_my_tasks_filters_and_flags_overdue(dispatcher: ActionDispatcher, store: TaskStore) -> None:
    now = time.time()
    store.create_task(
        Task(
            id="late",
            title="Late one",
            description="",
            created_by=ADMIN,
            status=TaskStatus.ONGOING,
            created_at=now - 100,
            updated_at=now - 100,
            priority=Priority.HIGH,
            assigned_to="bob",
            deadline=now - 10,
        )
    )
    _create(dispatcher, assignedTo="bob", priority="low")

    all_res = dispatcher.dispatch(Action.LIST_MY_TASKS, "bob", "employee", {})
    assert all_res.ok
    assert all_res.data["count"] == 2

    overdue = dispatcher.dispatch(Action.LIST_MY_TASKS, "bob", "employee", {"overdue": True})
    assert [t["id"] for t in overdue.data["tasks"]] == ["late"]
    assert overdue.data["tasks"][0]["isOverdue"] is True

    low = dispatcher.dispatch(Action.LIST_MY_TASKS, "bob", "employee", {"priority": "low"})
    assert [t["priority"] for t in low.data["tasks"]] == ["low"]

    invited = dispatcher.dispatch(Action.LIST_MY_TASKS, "bob", "employee", {"status": "invited", "limit": 1})
    assert invited.data["count"] == 1

    bad = dispatcher.dispatch(Action.LIST_MY_TASKS, "bob", "employee", {"limit": 0})
    assert bad.error_kind == "ValidationError"

    for flag in ("false", 1, "yes"):
        res = dispatcher.dispatch(Action.LIST_MY_TASKS, "bob", "employee", {"overdue": flag})
        assert res.error_kind == "ValidationError"
    not_overdue = dispatcher.dispatch(Action.LIST_MY_TASKS, "bob", "employee", {"overdue": False})
    assert not_overdue.data["count"] == 2


def test_get_task_status_details_and_access(dispatcher: ActionDispatcher) -> None:
    task_id = _invite_and_accept(dispatcher)
    for p, h in ((20, 1.5), (40, 2.0)):
        dispatcher.dispatch(
            Action.UPDATE_TASK_PROGRESS, "alice", "employee", {"taskId": task_id, "progress": p, "hoursLogged": h}
        )

    res = dispatcher.dispatch(Action.GET_TASK_STATUS, ADMIN, "admin", {"taskId": task_id})
    assert res.ok
    assert res.data["task"]["progress"] == 40
    assert res.data["invitation"]["status"] == "accepted"
    assert [u["progress"] for u in res.data["recentUpdates"]] == [40, 20]
    assert res.data["hoursLogged"] == pytest.approx(3.5)
    assert res.events == []

    assert dispatcher.dispatch(Action.GET_TASK_STATUS, "alice", "employee", {"taskId": task_id}).ok
    outsider = dispatcher.dispatch(Action.GET_TASK_STATUS, "bob", "employee", {"taskId": task_id})
    assert outsider.error_kind == "AuthorizationError"
    missing = dispatcher.dispatch(Action.GET_TASK_STATUS, ADMIN, "admin", {"taskId": "nope"})
    assert missing.error_kind == "NotFoundError"


# ---- contract ----

def test_unknown_action_and_missing_caller(dispatcher: ActionDispatcher) -> None:
    res = dispatcher.dispatch("deleteEverything", ADMIN, "admin", {})
    assert res.to_dict() == {"ok": False, "errorKind": "ValidationError", "message": res.message}

    anon = dispatcher.dispatch(Action.LIST_MY_TASKS, "", "employee", {})
    assert anon.error_kind == "AuthorizationError"


def test_unexpected_errors_become_internal_error(store: TaskStore, settings) -> None:
    d = ActionDispatcher.from_settings(ExplodingRepo(store), settings)
    res = d.dispatch(Action.ACCEPT_TASK, "alice", "employee", {"taskId": "x"})
    assert not res.ok
    assert res.error_kind == "InternalError"


def test_success_contract_serializes_events(dispatcher: ActionDispatcher) -> None:
    out = _create(dispatcher, assignedTo="alice").to_dict()
    assert out["ok"] is True
    assert out["events"][0]["kind"] == "TaskInvited"
    assert out["events"][0]["involvedParties"] == {"creator": ADMIN, "assignee": "alice"}


def test_caller_context_is_cached_per_role(store: TaskStore, settings) -> None:
    calls = {"n": 0}
    original = store.get_employee

    class CountingRepo:
        def __getattr__(self, name):
            return getattr(store, name)

        def get_employee(self, employee_id):
            if employee_id == "bob":
                calls["n"] += 1
            return original(employee_id)

    d = ActionDispatcher.from_settings(CountingRepo(), settings)
    for _ in range(3):
        d.dispatch(Action.LIST_MY_TASKS, "bob", "employee", {})
    assert calls["n"] == 1

    d.dispatch(Action.LIST_MY_TASKS, "bob", "manager", {})
    assert calls["n"] == 2


# ---- re-invite ----

def test_rejected_task_is_reinvited_and_accepted_by_someone_else(dispatcher: ActionDispatcher, store: TaskStore) -> None:
    task_id = _create(dispatcher, assignedTo="alice").data["task"]["id"]
    assert dispatcher.dispatch(Action.REJECT_TASK, "alice", "employee", {"taskId": task_id}).ok

    res = dispatcher.invite(ADMIN, "admin", task_id, "bob")

    assert res.ok, res.message
    assert res.data["task"]["status"] == "invited"
    assert res.data["invitation"]["toEmployee"] == "bob"
    assert [e.kind for e in res.events] == [EventKind.TASK_INVITED]
    assert res.events[0].assignee_id == "bob"

    late = dispatcher.dispatch(Action.ACCEPT_TASK, "alice", "employee", {"taskId": task_id})
    assert late.error_kind == "AuthorizationError"

    acc = dispatcher.dispatch(Action.ACCEPT_TASK, "bob", "employee", {"taskId": task_id})
    assert acc.ok
    task = store.get_task(task_id)
    assert task.status == TaskStatus.ONGOING
    assert task.assigned_to == "bob"
    assert store.get_employee("bob").current_workload == 1
    assert store.get_employee("alice").current_workload == 2


@pytest.mark.parametrize(
    ("caller", "role", "target", "kind"),
    [
        ("bob", "employee", "bob", "AuthorizationError"),
        (ADMIN, "admin", "nobody", "NotFoundError"),
        ("", "admin", "bob", "AuthorizationError"),
    ],
)
def test_invite_failures(dispatcher: ActionDispatcher, store: TaskStore, caller, role, target, kind) -> None:
    task_id = _create(dispatcher).data["task"]["id"]

    res = dispatcher.invite(caller, role, task_id, target)

    assert res.error_kind == kind
    assert res.events == []
    assert store.get_task(task_id).status == TaskStatus.UNASSIGNED
    assert store.get_latest_invitation(task_id) is None


def test_invite_on_invited_task_conflicts(dispatcher: ActionDispatcher) -> None:
    task_id = _create(dispatcher, assignedTo="alice").data["task"]["id"]
    res = dispatcher.invite(ADMIN, "admin", task_id, "bob")
    assert res.to_dict() == {"ok": False, "errorKind": "ConflictError", "message": res.message}


def test_invite_missing_task_is_not_found(dispatcher: ActionDispatcher) -> None:
    assert dispatcher.invite(ADMIN, "admin", "nope", "bob").error_kind == "NotFoundError"


# ---- hours ----

def test_hours_total_and_payment_use_every_update(dispatcher: ActionDispatcher, store: TaskStore) -> None:
    task_id = _invite_and_accept(dispatcher, assignee="bob")
    for _ in range(520):
        store.append_task_update(
            TaskUpdate(task_id=task_id, author_id="bob", progress=50, created_at=time.time(), hours_logged=0.25)
        )

    status = dispatcher.dispatch(Action.GET_TASK_STATUS, "bob", "employee", {"taskId": task_id})
    assert status.data["hoursLogged"] == pytest.approx(130.0)
    assert len(status.data["recentUpdates"]) == 5

    done = dispatcher.dispatch(
        Action.UPDATE_TASK_PROGRESS, "bob", "employee", {"taskId": task_id, "progress": 100, "hoursLogged": 2}
    )
    # bob: 30/h, multiplier 1.0
    assert done.data["suggestedPayment"]["amount"] == pytest.approx(30.0 * 132.0)
