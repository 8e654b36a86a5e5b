# tests/test_commands.py

from __future__ import annotations

from taskpilot.cli.commands import CommandRegistry, registry
from taskpilot.core.state import AppState
from taskpilot.notifications.router import NotificationRouter
from taskpilot.tasks.dispatcher import ActionDispatcher
from taskpilot.tasks.task_models import TaskStatus

from .conftest import ADMIN
from .fakes import FakePublisher


def test_command_registry_routes_and_aliases(state: AppState) -> None:
    reg = CommandRegistry()
    seen: list[list[str]] = []

    def h(state, args, emit):
        seen.append(args)
        if emit is not None:
            emit("note")
        return "done"

    reg.register("go", h, "go somewhere", aliases=["g"])

    notes: list[str] = []
    assert reg.handle(state, "/go a b", emit=notes.append) == "done"
    assert reg.handle(state, "/G c") == "done"
    assert seen == [["a", "b"], ["c"]]
    assert notes == ["note"]
    assert "/go - go somewhere" in reg.build_help()


def test_command_registry_unknown_and_non_command(state: AppState) -> None:
    reg = CommandRegistry()
    assert reg.handle(state, "hello") is None
    assert "Unknown command" in (reg.handle(state, "/nope") or "")
    assert "Empty command" in (reg.handle(state, "/") or "")


def test_actions_require_login(state: AppState) -> None:
    assert "Not logged in" in (registry.handle(state, "/mine") or "")


def test_console_task_flow_notifies_other_party(state: AppState, publisher: FakePublisher) -> None:
    registry.handle(state, f"/login {ADMIN} admin")
    reply = registry.handle(state, "/create Fix login | Users cannot sign in | React | high | bob") or ""
    assert reply.startswith("Created ")
    assert publisher.channels == ["assignee:bob"]

    task_id = reply.split()[1]

    registry.handle(state, "/login bob")
    assert "Accepted." in (registry.handle(state, f"/accept {task_id}") or "")
    assert publisher.channels[-1] == f"owner:{ADMIN}"

    done = registry.handle(state, f"/progress {task_id} 100 3 all fixed") or ""
    assert "Suggested payment: 90.00" in done
    assert state.store.get_task(task_id).status == TaskStatus.COMPLETED
    assert [p.payload["kind"] for p in publisher.sent] == ["TaskInvited", "InvitationAccepted", "TaskCompleted"]

    status = registry.handle(state, f"/status {task_id}") or ""
    assert "hours logged: 3" in status
    assert "all fixed" in status


def test_console_reports_structured_errors(state: AppState) -> None:
    registry.handle(state, "/login bob")
    assert (registry.handle(state, "/create T | D") or "").startswith("[AuthorizationError]")
    assert (registry.handle(state, "/accept missing") or "").startswith("[NotFoundError]")


def test_delivery_failure_does_not_undo_the_action(state: AppState, publisher: FakePublisher) -> None:
    publisher.fail_on_call = 1
    notes: list[str] = []
    registry.handle(state, f"/login {ADMIN} admin")

    reply = registry.handle(state, "/create Fix login | Users cannot sign in | | | bob", emit=notes.append) or ""

    assert reply.startswith("Created ")
    assert state.store.count_tasks() == 1
    assert notes and "delivery failed" in notes[0]


def test_suggest_and_employee_commands(state: AppState) -> None:
    out = registry.handle(state, "/suggest React,PostgreSQL") or ""
    assert out.splitlines()[1].strip().startswith("alice")

    assert "saved" in (registry.handle(state, "/employee add dave Dave Go,Rust 45 0.8") or "")
    assert "dave Dave" in (registry.handle(state, "/employee list") or "")


def test_console_reinvite_after_rejection(state: AppState, publisher: FakePublisher) -> None:
    registry.handle(state, f"/login {ADMIN} admin")
    task_id = (registry.handle(state, "/create Fix login | Users cannot sign in | React | | alice") or "").split()[1]

    registry.handle(state, "/login alice")
    assert "Rejected." in (registry.handle(state, f"/reject {task_id} on leave") or "")

    registry.handle(state, f"/login {ADMIN} admin")
    pooled = registry.handle(state, "/created unassigned") or ""
    assert task_id in pooled

    reply = registry.handle(state, f"/invite {task_id} bob") or ""
    assert reply.startswith("Invited bob.")
    assert publisher.channels[-1] == "assignee:bob"
    assert task_id not in (registry.handle(state, "/created unassigned") or "")
    assert f"{task_id} [invited]" in (registry.handle(state, "/created") or "")

    registry.handle(state, "/login bob")
    assert "Accepted." in (registry.handle(state, f"/accept {task_id}") or "")
    assert state.store.get_task(task_id).assigned_to == "bob"


def test_console_invite_errors(state: AppState) -> None:
    assert "Usage" in (registry.handle(state, "/invite only-one") or "")
    assert "Not logged in" in (registry.handle(state, "/invite t bob") or "")

    registry.handle(state, "/login bob")
    assert (registry.handle(state, "/invite missing alice") or "").startswith("[NotFoundError]")
    assert "Unknown status" in (registry.handle(state, "/created someday") or "")


def test_suggest_uses_configured_weights(settings, store) -> None:
    settings.weight_skill = 0.0
    settings.weight_workload = 1.0
    settings.weight_performance = 0.0
    settings.weight_availability = 0.0
    state = AppState(
        settings=settings,
        store=store,
        dispatcher=ActionDispatcher.from_settings(store, settings),
        router=NotificationRouter(),
        publisher=FakePublisher(),
    )

    out = registry.handle(state, "/suggest React,PostgreSQL") or ""

    ranked = [line.split()[0] for line in out.splitlines()[1:]]
    # workload-only ranking: idle employees ahead of alice (2 tasks)
    assert ranked.index("bob") < ranked.index("alice")
