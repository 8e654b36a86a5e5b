# src/taskpilot/tasks/events.py

"""
Domain events emitted by successful lifecycle transitions.

Events are small immutable descriptions of a state change. They carry the
involved parties and just enough task fields to render a notification, so the
router never has to re-fetch the task.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from .task_models import TaskStatus


class EventKind(StrEnum):
    TASK_CREATED = "TaskCreated"
    TASK_INVITED = "TaskInvited"
    INVITATION_ACCEPTED = "InvitationAccepted"
    INVITATION_REJECTED = "InvitationRejected"
    PROGRESS_UPDATED = "ProgressUpdated"
    TASK_COMPLETED = "TaskCompleted"


@dataclass(frozen=True, slots=True)
class DomainEvent:
    kind: EventKind
    actor_id: str
    task_id: str
    title: str
    creator_id: str
    # Current assignee, or the previous one for InvitationRejected.
    assignee_id: str | None
    occurred_at: float
    new_status: TaskStatus | None = None
    new_progress: int | None = None
    actor_name: str | None = None

    @property
    def involved_parties(self) -> tuple[str, ...]:
        parties = [self.creator_id]
        if self.assignee_id and self.assignee_id != self.creator_id:
            parties.append(self.assignee_id)
        return tuple(parties)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "actorId": self.actor_id,
            "taskId": self.task_id,
            "title": self.title,
            "involvedParties": {"creator": self.creator_id, "assignee": self.assignee_id},
            "newStatus": self.new_status.value if self.new_status is not None else None,
            "newProgress": self.new_progress,
            "actorName": self.actor_name,
            "occurredAt": self.occurred_at,
        }
