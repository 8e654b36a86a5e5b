# src/taskpilot/tasks/lifecycle.py

from __future__ import annotations

"""
Task / invitation state machine.

    unassigned --create(assignee)|invite--> invited --accept--> ongoing --progress=100--> completed
         ^                                   |
         +-----------reject------------------+   (invitation: rejected)

`plan_*` functions are pure: they check guards against the records they are given
and return a Transition (or raise). `commit()` applies a Transition through the
repository as conditional writes inside one atomic unit, so a transition planned
from stale records fails with ConflictError instead of overwriting newer state.

Nothing else in the package writes task or invitation status.
"""

import logging
import uuid
from dataclasses import dataclass, field, replace
from typing import Any

from ..core.errors import AuthorizationError, ConflictError, ValidationError
from ..core.ports import TaskRepo
from .events import DomainEvent, EventKind
from .task_models import (
    Employee,
    Invitation,
    InvitationStatus,
    Priority,
    Task,
    TaskStatus,
    TaskUpdate,
)

logger = logging.getLogger(__name__)


def new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True, slots=True)
class TaskDraft:
    """Validated input for task creation."""

    title: str
    description: str
    required_skills: frozenset[str] = frozenset()
    priority: Priority = Priority.MEDIUM
    deadline: float | None = None
    estimated_hours: float | None = None
    complexity_multiplier: float = 1.0


@dataclass(frozen=True, slots=True)
class Transition:
    """
    Conditional writes for one lifecycle step.

    - task: `task_patch` is applied only if the task status is still `expected_task_status`
    - invitation (optional): same, against `expected_invitation_status`
    - employee stats deltas and an optional TaskUpdate append ride along in the same unit
    - `new_invitation` is inserted after the task write lands
    - `task` is the post-transition view returned to callers
    """

    task: Task
    expected_task_status: TaskStatus
    task_patch: dict[str, Any]
    event: DomainEvent
    invitation: Invitation | None = None
    expected_invitation_status: InvitationStatus | None = None
    invitation_patch: dict[str, Any] = field(default_factory=dict)
    workload_deltas: dict[str, int] = field(default_factory=dict)
    completed_deltas: dict[str, int] = field(default_factory=dict)
    task_update: TaskUpdate | None = None
    new_invitation: Invitation | None = None


@dataclass(frozen=True, slots=True)
class Creation:
    task: Task
    event: DomainEvent
    invitation: Invitation | None = None


def _apply_patch(record: Any, patch: dict[str, Any]) -> Any:
    return replace(record, **patch)


# ---- create ----

def plan_create(
        draft: TaskDraft,
        *,
        actor_id: str,
        actor_is_elevated: bool,
        assignee: Employee | None,
        now_ts: float,
        actor_name: str | None = None,
) -> Creation:
    if not actor_is_elevated:
        raise AuthorizationError("Only administrators can create tasks.")
    if not draft.title.strip():
        raise ValidationError("title is required")

    task_id = new_id()
    status = TaskStatus.INVITED if assignee is not None else TaskStatus.UNASSIGNED

    task = Task(
        id=task_id,
        title=draft.title.strip(),
        description=draft.description.strip(),
        created_by=actor_id,
        status=status,
        created_at=now_ts,
        updated_at=now_ts,
        required_skills=draft.required_skills,
        priority=draft.priority,
        progress=0,
        assigned_to=assignee.id if assignee is not None else None,
        deadline=draft.deadline,
        estimated_hours=draft.estimated_hours,
        complexity_multiplier=draft.complexity_multiplier,
    )

    invitation = None
    if assignee is not None:
        invitation = Invitation(
            id=new_id(),
            task_id=task_id,
            to_employee=assignee.id,
            from_user=actor_id,
            status=InvitationStatus.PENDING,
            created_at=now_ts,
        )

    event = DomainEvent(
        kind=EventKind.TASK_INVITED if invitation is not None else EventKind.TASK_CREATED,
        actor_id=actor_id,
        task_id=task_id,
        title=task.title,
        creator_id=actor_id,
        assignee_id=task.assigned_to,
        occurred_at=now_ts,
        new_status=status,
        new_progress=0,
        actor_name=actor_name,
    )
    return Creation(task=task, invitation=invitation, event=event)


def plan_invite(
        task: Task,
        assignee: Employee,
        *,
        actor_id: str,
        actor_is_elevated: bool,
        now_ts: float,
        actor_name: str | None = None,
) -> Transition:
    """Invite an employee to a task that is back in the pool (rejected, or created without assignee)."""
    if not actor_is_elevated:
        raise AuthorizationError("Only administrators can invite employees to tasks.")
    if task.status != TaskStatus.UNASSIGNED:
        raise ConflictError(f"Task is {task.status.value}, not unassigned.")

    task_patch: dict[str, Any] = {
        "status": TaskStatus.INVITED,
        "assigned_to": assignee.id,
        "updated_at": now_ts,
    }
    invitation = Invitation(
        id=new_id(),
        task_id=task.id,
        to_employee=assignee.id,
        from_user=actor_id,
        status=InvitationStatus.PENDING,
        created_at=now_ts,
    )

    return Transition(
        task=_apply_patch(task, task_patch),
        expected_task_status=TaskStatus.UNASSIGNED,
        task_patch=task_patch,
        new_invitation=invitation,
        event=DomainEvent(
            kind=EventKind.TASK_INVITED,
            actor_id=actor_id,
            task_id=task.id,
            title=task.title,
            creator_id=task.created_by,
            assignee_id=assignee.id,
            occurred_at=now_ts,
            new_status=TaskStatus.INVITED,
            new_progress=task.progress,
            actor_name=actor_name,
        ),
    )


# ---- invitation response ----

def _check_invitation_response(task: Task, invitation: Invitation | None, actor_id: str) -> Invitation:
    if invitation is None or invitation.task_id != task.id:
        raise ConflictError(f"Task {task.id} has no open invitation.")
    if invitation.to_employee != actor_id:
        raise AuthorizationError("Only the invited employee can respond to this invitation.")
    if invitation.status != InvitationStatus.PENDING:
        raise ConflictError(f"Invitation was already {invitation.status.value}.")
    if task.status != TaskStatus.INVITED:
        raise ConflictError(f"Task is {task.status.value}, not invited.")
    return invitation


def plan_accept(
        task: Task,
        invitation: Invitation | None,
        *,
        actor_id: str,
        now_ts: float,
        actor_name: str | None = None,
) -> Transition:
    inv = _check_invitation_response(task, invitation, actor_id)

    task_patch: dict[str, Any] = {
        "status": TaskStatus.ONGOING,
        "started_at": now_ts,
        "updated_at": now_ts,
    }
    inv_patch: dict[str, Any] = {"status": InvitationStatus.ACCEPTED, "responded_at": now_ts}
    new_task = _apply_patch(task, task_patch)

    return Transition(
        task=new_task,
        expected_task_status=TaskStatus.INVITED,
        task_patch=task_patch,
        invitation=_apply_patch(inv, inv_patch),
        expected_invitation_status=InvitationStatus.PENDING,
        invitation_patch=inv_patch,
        workload_deltas={inv.to_employee: 1},
        event=DomainEvent(
            kind=EventKind.INVITATION_ACCEPTED,
            actor_id=actor_id,
            task_id=task.id,
            title=task.title,
            creator_id=task.created_by,
            assignee_id=inv.to_employee,
            occurred_at=now_ts,
            new_status=TaskStatus.ONGOING,
            new_progress=new_task.progress,
            actor_name=actor_name,
        ),
    )


def plan_reject(
        task: Task,
        invitation: Invitation | None,
        *,
        actor_id: str,
        reason: str | None,
        now_ts: float,
        actor_name: str | None = None,
) -> Transition:
    inv = _check_invitation_response(task, invitation, actor_id)

    # Only status/assignee change; priority, deadline etc. stay as they were.
    task_patch: dict[str, Any] = {
        "status": TaskStatus.UNASSIGNED,
        "assigned_to": None,
        "updated_at": now_ts,
    }
    inv_patch: dict[str, Any] = {
        "status": InvitationStatus.REJECTED,
        "rejection_reason": (reason or "").strip() or None,
        "responded_at": now_ts,
    }

    return Transition(
        task=_apply_patch(task, task_patch),
        expected_task_status=TaskStatus.INVITED,
        task_patch=task_patch,
        invitation=_apply_patch(inv, inv_patch),
        expected_invitation_status=InvitationStatus.PENDING,
        invitation_patch=inv_patch,
        event=DomainEvent(
            kind=EventKind.INVITATION_REJECTED,
            actor_id=actor_id,
            task_id=task.id,
            title=task.title,
            creator_id=task.created_by,
            assignee_id=inv.to_employee,
            occurred_at=now_ts,
            new_status=TaskStatus.UNASSIGNED,
            actor_name=actor_name,
        ),
    )


# ---- progress ----

def plan_progress(
        task: Task,
        *,
        actor_id: str,
        progress: int,
        now_ts: float,
        hours_logged: float | None = None,
        note: str | None = None,
        actor_name: str | None = None,
) -> Transition:
    if task.assigned_to != actor_id:
        raise AuthorizationError("Only the assignee can report progress on this task.")
    if task.status != TaskStatus.ONGOING:
        raise ConflictError(f"Task is {task.status.value}, not ongoing.")
    if hours_logged is not None and hours_logged < 0:
        raise ValidationError("hoursLogged must be >= 0")

    value = max(0, min(100, int(progress)))
    completed = value == 100

    task_patch: dict[str, Any] = {"progress": value, "updated_at": now_ts}
    if completed:
        task_patch["status"] = TaskStatus.COMPLETED
        task_patch["completed_at"] = now_ts
    new_task = _apply_patch(task, task_patch)

    update = TaskUpdate(
        task_id=task.id,
        author_id=actor_id,
        progress=value,
        created_at=now_ts,
        note=(note or "").strip() or None,
        hours_logged=hours_logged,
    )

    return Transition(
        task=new_task,
        expected_task_status=TaskStatus.ONGOING,
        task_patch=task_patch,
        workload_deltas={actor_id: -1} if completed else {},
        completed_deltas={actor_id: 1} if completed else {},
        task_update=update,
        event=DomainEvent(
            kind=EventKind.TASK_COMPLETED if completed else EventKind.PROGRESS_UPDATED,
            actor_id=actor_id,
            task_id=task.id,
            title=task.title,
            creator_id=task.created_by,
            assignee_id=actor_id,
            occurred_at=now_ts,
            new_status=new_task.status,
            new_progress=value,
            actor_name=actor_name,
        ),
    )


# ---- apply ----

def commit_creation(repo: TaskRepo, creation: Creation) -> None:
    with repo.atomic():
        repo.create_task(creation.task)
        if creation.invitation is not None:
            repo.create_invitation(creation.invitation)
    logger.info(
        "Task created id=%s status=%s assignee=%s",
        creation.task.id,
        creation.task.status.value,
        creation.task.assigned_to,
    )


def _employee_ids(*deltas: dict[str, int]) -> list[str]:
    seen: list[str] = []
    for d in deltas:
        for emp_id in d:
            if emp_id not in seen:
                seen.append(emp_id)
    return seen


def commit(repo: TaskRepo, transition: Transition) -> Transition:
    """
    Apply one transition atomically.

    Raises ConflictError (and leaves storage untouched) if the task or invitation
    status changed since the transition was planned.
    """
    task = transition.task
    with repo.atomic():
        if not repo.conditional_update_task(
            task.id,
            expected=transition.expected_task_status,
            patch=transition.task_patch,
        ):
            raise ConflictError(
                f"Task {task.id} is no longer {transition.expected_task_status.value}; re-fetch its status."
            )

        inv = transition.invitation
        if inv is not None and transition.expected_invitation_status is not None:
            if not repo.conditional_update_invitation(
                inv.id,
                expected=transition.expected_invitation_status,
                patch=transition.invitation_patch,
            ):
                raise ConflictError(f"Invitation {inv.id} was already answered.")

        if transition.new_invitation is not None:
            repo.create_invitation(transition.new_invitation)

        for emp_id in _employee_ids(transition.workload_deltas, transition.completed_deltas):
            repo.adjust_employee_stats(
                emp_id,
                workload_delta=transition.workload_deltas.get(emp_id, 0),
                completed_delta=transition.completed_deltas.get(emp_id, 0),
            )

        if transition.task_update is not None:
            repo.append_task_update(transition.task_update)

    logger.info(
        "Task %s: %s -> %s (%s by %s)",
        task.id,
        transition.expected_task_status.value,
        task.status.value,
        transition.event.kind.value,
        transition.event.actor_id,
    )
    return transition
