# tests/test_notification_router.py

from __future__ import annotations

from dataclasses import replace

import pytest

from taskpilot.core.errors import UpstreamError
from taskpilot.notifications.feed import ChangeFeedHandler, event_from_change
from taskpilot.notifications.router import NotificationRouter, render_message
from taskpilot.tasks.events import DomainEvent, EventKind
from taskpilot.tasks.task_models import Task, TaskStatus

from .fakes import FakePublisher


def _event(kind: EventKind, actor: str, *, creator: str = "admin", assignee: str | None = "emp", **kw) -> DomainEvent:
    return DomainEvent(
        kind=kind,
        actor_id=actor,
        task_id="t1",
        title="Write docs",
        creator_id=creator,
        assignee_id=assignee,
        occurred_at=1.0,
        **kw,
    )


@pytest.mark.parametrize(
    ("kind", "actor", "expected"),
    [
        (EventKind.TASK_INVITED, "admin", [("emp", "assignee:emp")]),
        (EventKind.INVITATION_ACCEPTED, "emp", [("admin", "owner:admin")]),
        (EventKind.INVITATION_REJECTED, "emp", [("admin", "owner:admin")]),
        (EventKind.PROGRESS_UPDATED, "emp", [("admin", "owner:admin")]),
        (EventKind.TASK_COMPLETED, "emp", [("admin", "owner:admin")]),
        (EventKind.TASK_CREATED, "admin", []),
    ],
)
def test_route_channels_per_kind(kind: EventKind, actor: str, expected) -> None:
    notes = NotificationRouter().route(_event(kind, actor))
    assert [(n.recipient_id, n.channel) for n in notes] == expected


def test_actor_never_notified_about_own_action() -> None:
    # Creator assigned the task to themselves and reports progress.
    ev = _event(EventKind.PROGRESS_UPDATED, "admin", creator="admin", assignee="admin", new_progress=50)
    assert NotificationRouter().route(ev) == []


def test_payload_omits_absent_optional_fields() -> None:
    bare = NotificationRouter().route(_event(EventKind.INVITATION_ACCEPTED, "emp"))[0]
    assert bare.payload == {"kind": "InvitationAccepted", "taskId": "t1", "title": "Write docs"}

    full = NotificationRouter().route(
        _event(
            EventKind.PROGRESS_UPDATED,
            "emp",
            new_status=TaskStatus.ONGOING,
            new_progress=40,
            actor_name="Emma",
        )
    )[0]
    assert full.payload["newStatus"] == "ongoing"
    assert full.payload["newProgress"] == 40
    assert full.payload["actorName"] == "Emma"


def test_render_message_is_pure() -> None:
    ev = _event(EventKind.TASK_COMPLETED, "emp", actor_name="Emma")
    assert render_message(ev) == render_message(ev)
    assert "Emma" in render_message(ev)
    assert "Write docs" in render_message(ev)


@pytest.mark.asyncio
async def test_deliver_publishes_in_emission_order() -> None:
    pub = FakePublisher()
    events = [
        _event(EventKind.TASK_INVITED, "admin"),
        _event(EventKind.INVITATION_ACCEPTED, "emp"),
        _event(EventKind.TASK_COMPLETED, "emp"),
    ]

    sent = await NotificationRouter().deliver(events, pub)

    assert sent == 3
    assert pub.channels == ["assignee:emp", "owner:admin", "owner:admin"]
    assert [p.payload["kind"] for p in pub.sent] == ["TaskInvited", "InvitationAccepted", "TaskCompleted"]


@pytest.mark.asyncio
async def test_deliver_stops_on_publisher_failure() -> None:
    pub = FakePublisher(fail_on_call=2)
    events = [_event(EventKind.TASK_INVITED, "admin"), _event(EventKind.INVITATION_ACCEPTED, "emp")]

    with pytest.raises(UpstreamError):
        await NotificationRouter().deliver(events, pub)

    assert pub.channels == ["assignee:emp"]


# ---- change feed ----

def _task(status: TaskStatus, *, progress: int = 0, assigned_to: str | None = "emp") -> Task:
    return Task(
        id="t1",
        title="Write docs",
        description="",
        created_by="admin",
        status=status,
        created_at=1.0,
        updated_at=2.0,
        progress=progress,
        assigned_to=assigned_to,
    )


@pytest.mark.parametrize(
    ("before", "after", "kind"),
    [
        (None, _task(TaskStatus.INVITED), EventKind.TASK_INVITED),
        (_task(TaskStatus.INVITED), _task(TaskStatus.ONGOING), EventKind.INVITATION_ACCEPTED),
        (_task(TaskStatus.INVITED), _task(TaskStatus.UNASSIGNED, assigned_to=None), EventKind.INVITATION_REJECTED),
        (_task(TaskStatus.ONGOING, progress=10), _task(TaskStatus.ONGOING, progress=30), EventKind.PROGRESS_UPDATED),
        (_task(TaskStatus.ONGOING, progress=90), _task(TaskStatus.COMPLETED, progress=100), EventKind.TASK_COMPLETED),
    ],
)
def test_event_from_change(before, after, kind) -> None:
    ev = event_from_change(before, after, "emp")
    assert ev is not None
    assert ev.kind == kind
    assert ev.assignee_id == "emp"


def test_irrelevant_changes_produce_no_event() -> None:
    ongoing = _task(TaskStatus.ONGOING, progress=10)
    assert event_from_change(None, _task(TaskStatus.UNASSIGNED, assigned_to=None), "admin") is None
    assert event_from_change(ongoing, replace(ongoing, title="Renamed"), "admin") is None


@pytest.mark.asyncio
async def test_change_feed_handler_delivers_one_change() -> None:
    pub = FakePublisher()
    handler = ChangeFeedHandler(NotificationRouter(), pub)

    sent = await handler.handle(_task(TaskStatus.INVITED), _task(TaskStatus.ONGOING), "emp", actor_name="Emma")
    assert sent == 1
    assert pub.sent[0].channel == "owner:admin"
    assert pub.sent[0].payload["actorName"] == "Emma"

    assert await handler.handle(None, _task(TaskStatus.UNASSIGNED, assigned_to=None), "admin") == 0
