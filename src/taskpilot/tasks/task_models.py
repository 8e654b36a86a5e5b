# src/taskpilot/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    Notes:
    - "rejected" belongs to the invitation; a task whose invitation was rejected goes
      back to "unassigned". The value is kept so stored rows from older data still load.
    - "accepted" is accepted on read for the same reason; accepting an invitation moves
      the task straight to "ongoing".
    """

    UNASSIGNED = "unassigned"
    INVITED = "invited"
    ACCEPTED = "accepted"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    REJECTED = "rejected"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.UNASSIGNED
        try:
            return cls(raw)
        except ValueError:
            # Legacy rows used "pending" for unassigned work.
            return cls.UNASSIGNED


# Statuses in which a task must have an assignee.
ASSIGNED_STATUSES = frozenset(
    {TaskStatus.INVITED, TaskStatus.ACCEPTED, TaskStatus.ONGOING, TaskStatus.COMPLETED}
)


class InvitationStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"

    @classmethod
    def from_db(cls, raw: str | None) -> InvitationStatus:
        if not raw:
            return cls.PENDING
        return cls(raw)


class Priority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def normalize_skill(skill: str) -> str:
    """Canonical comparison key for a skill name (trimmed, case-folded)."""
    return " ".join(str(skill).split()).casefold()


@dataclass(frozen=True, slots=True)
class Employee:
    id: str
    name: str
    skills: frozenset[str] = field(default_factory=frozenset)
    department: str = ""
    designation: str = ""
    current_workload: int = 0
    performance_score: float = 0.0
    availability: bool = True
    hourly_rate: float = 0.0
    tasks_completed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "skills": sorted(self.skills),
            "department": self.department,
            "designation": self.designation,
            "currentWorkload": self.current_workload,
            "performanceScore": self.performance_score,
            "availability": self.availability,
            "hourlyRate": self.hourly_rate,
            "tasksCompleted": self.tasks_completed,
        }


@dataclass(frozen=True, slots=True)
class Task:
    id: str
    title: str
    description: str
    created_by: str
    status: TaskStatus
    created_at: float
    updated_at: float

    required_skills: frozenset[str] = field(default_factory=frozenset)
    priority: Priority = Priority.MEDIUM
    progress: int = 0
    assigned_to: str | None = None
    deadline: float | None = None
    estimated_hours: float | None = None
    complexity_multiplier: float = 1.0

    started_at: float | None = None
    completed_at: float | None = None

    def is_overdue(self, now_ts: float) -> bool:
        return (
            self.deadline is not None
            and self.deadline < now_ts
            and self.status != TaskStatus.COMPLETED
        )

    def to_dict(self, *, now_ts: float | None = None) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "requiredSkills": sorted(self.required_skills),
            "priority": self.priority.value,
            "status": self.status.value,
            "progress": self.progress,
            "assignedTo": self.assigned_to,
            "createdBy": self.created_by,
            "deadline": self.deadline,
            "estimatedHours": self.estimated_hours,
            "complexityMultiplier": self.complexity_multiplier,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
        }
        if now_ts is not None:
            out["isOverdue"] = self.is_overdue(now_ts)
        return out


@dataclass(frozen=True, slots=True)
class Invitation:
    id: str
    task_id: str
    to_employee: str
    from_user: str
    status: InvitationStatus
    created_at: float
    rejection_reason: str | None = None
    responded_at: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "taskId": self.task_id,
            "toEmployee": self.to_employee,
            "fromUser": self.from_user,
            "status": self.status.value,
            "rejectionReason": self.rejection_reason,
            "createdAt": self.created_at,
            "respondedAt": self.responded_at,
        }


@dataclass(frozen=True, slots=True)
class TaskUpdate:
    """Append-only progress entry. `id` is 0 until the store assigns one."""

    task_id: str
    author_id: str
    progress: int
    created_at: float
    note: str | None = None
    hours_logged: float | None = None
    id: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "taskId": self.task_id,
            "authorId": self.author_id,
            "note": self.note,
            "progress": self.progress,
            "hoursLogged": self.hours_logged,
            "createdAt": self.created_at,
        }
