# src/taskpilot/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The engine depends on Protocols instead of concrete implementations.
This keeps storage and delivery swappable and makes testing easier.
"""

from collections.abc import Mapping
from contextlib import AbstractContextManager
from typing import Any, Awaitable, Protocol

from ..tasks.task_models import (
    Employee,
    Invitation,
    InvitationStatus,
    Task,
    TaskStatus,
    TaskUpdate,
)

NotificationPayload = dict[str, Any]
# {"kind", "taskId", "title", optional "newStatus" / "newProgress" / "actorName"}.


class NotificationPublisher(Protocol):
    """
    Delivery-side port: publish one payload to one channel.

    Channel names follow "{role}:{userId}". Recipient filtering already happened
    in the router, so the publisher just delivers.
    """

    def publish(self, channel: str, payload: NotificationPayload) -> Awaitable[None]: ...


class TaskRepo(Protocol):
    """
    Persistence collaborator.

    Conditional updates are compare-and-swap on the record status: they return
    False (and change nothing) when the stored status is not `expected`.
    Calls made inside `atomic()` commit or roll back together.
    """

    def atomic(self) -> AbstractContextManager[None]: ...

    # Employees (read-mostly; profile edits happen elsewhere)
    def get_employee(self, employee_id: str) -> Employee | None: ...
    def list_employees(self, *, available_only: bool = False) -> list[Employee]: ...
    def adjust_employee_stats(
            self,
            employee_id: str,
            *,
            workload_delta: int = 0,
            completed_delta: int = 0,
    ) -> None: ...

    # Tasks
    def get_task(self, task_id: str) -> Task | None: ...
    def create_task(self, task: Task) -> None: ...
    def conditional_update_task(
            self,
            task_id: str,
            *,
            expected: TaskStatus,
            patch: Mapping[str, Any],
    ) -> bool: ...
    def list_tasks_by_assignee(self, user_id: str) -> list[Task]: ...
    def list_tasks_by_creator(self, user_id: str, *, status: TaskStatus | None = None) -> list[Task]: ...

    # Invitations
    def create_invitation(self, invitation: Invitation) -> None: ...
    def get_latest_invitation(self, task_id: str) -> Invitation | None: ...
    def conditional_update_invitation(
            self,
            invitation_id: str,
            *,
            expected: InvitationStatus,
            patch: Mapping[str, Any],
    ) -> bool: ...

    # Progress log (append-only)
    def append_task_update(self, update: TaskUpdate) -> int: ...
    def list_task_updates(self, task_id: str, limit: int = 50) -> list[TaskUpdate]: ...
    def sum_hours_logged(self, task_id: str) -> float: ...
