# src/taskpilot/notifications/feed.py

"""
Change-feed adapter.

Some deployments observe task rows through a database change feed instead of the
dispatcher result. This module turns one before/after pair into a DomainEvent
and pushes it through the router.
"""

from __future__ import annotations

import logging
import time

from ..core.ports import NotificationPublisher
from ..tasks.events import DomainEvent, EventKind
from ..tasks.task_models import Task, TaskStatus
from .router import NotificationRouter

logger = logging.getLogger(__name__)


def event_from_change(
        before: Task | None,
        after: Task,
        actor_id: str,
        *,
        actor_name: str | None = None,
        now_ts: float | None = None,
) -> DomainEvent | None:
    """Derive the lifecycle event implied by a task row change, or None."""
    ts = after.updated_at if now_ts is None else now_ts

    def _event(kind: EventKind, assignee_id: str | None) -> DomainEvent:
        return DomainEvent(
            kind=kind,
            actor_id=actor_id,
            task_id=after.id,
            title=after.title,
            creator_id=after.created_by,
            assignee_id=assignee_id,
            occurred_at=ts,
            new_status=after.status,
            new_progress=after.progress,
            actor_name=actor_name,
        )

    if before is None:
        if after.status == TaskStatus.INVITED and after.assigned_to:
            return _event(EventKind.TASK_INVITED, after.assigned_to)
        return None

    if before.status == after.status:
        if after.status == TaskStatus.ONGOING and before.progress != after.progress:
            return _event(EventKind.PROGRESS_UPDATED, after.assigned_to)
        return None

    match (before.status, after.status):
        case (TaskStatus.INVITED, TaskStatus.ONGOING):
            return _event(EventKind.INVITATION_ACCEPTED, after.assigned_to)
        case (TaskStatus.INVITED, TaskStatus.UNASSIGNED):
            return _event(EventKind.INVITATION_REJECTED, before.assigned_to)
        case (TaskStatus.ONGOING, TaskStatus.COMPLETED):
            return _event(EventKind.TASK_COMPLETED, after.assigned_to)
    return None


class ChangeFeedHandler:
    """One-shot: route and deliver a single observed change."""

    def __init__(self, router: NotificationRouter, publisher: NotificationPublisher) -> None:
        self._router = router
        self._publisher = publisher

    async def handle(
            self,
            before: Task | None,
            after: Task,
            actor_id: str,
            *,
            actor_name: str | None = None,
    ) -> int:
        event = event_from_change(before, after, actor_id, actor_name=actor_name, now_ts=time.time())
        if event is None:
            logger.debug("Change on task %s has no notification.", after.id)
            return 0
        return await self._router.deliver([event], self._publisher)
