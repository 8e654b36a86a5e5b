# src/taskpilot/notifications/router.py

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum

from ..core.errors import UpstreamError
from ..core.ports import NotificationPayload, NotificationPublisher
from ..tasks.events import DomainEvent, EventKind

logger = logging.getLogger(__name__)


class Audience(StrEnum):
    ASSIGNEE = "assignee"
    OWNER = "owner"


# Which side of the task hears about each event kind.
_AUDIENCE: dict[EventKind, Audience] = {
    EventKind.TASK_CREATED: Audience.OWNER,
    EventKind.TASK_INVITED: Audience.ASSIGNEE,
    EventKind.INVITATION_ACCEPTED: Audience.OWNER,
    EventKind.INVITATION_REJECTED: Audience.OWNER,
    EventKind.PROGRESS_UPDATED: Audience.OWNER,
    EventKind.TASK_COMPLETED: Audience.OWNER,
}


def channel_for(audience: Audience, user_id: str) -> str:
    return f"{audience.value}:{user_id}"


@dataclass(frozen=True, slots=True)
class Notification:
    recipient_id: str
    channel: str
    message: str
    payload: NotificationPayload


def render_message(event: DomainEvent) -> str:
    who = event.actor_name or "Someone"
    title = event.title
    match event.kind:
        case EventKind.TASK_CREATED:
            return f"Task '{title}' was created and is waiting for an assignee."
        case EventKind.TASK_INVITED:
            return f"{who} invited you to work on '{title}'."
        case EventKind.INVITATION_ACCEPTED:
            return f"{who} accepted '{title}'. Work has started."
        case EventKind.INVITATION_REJECTED:
            return f"{who} declined '{title}'. The task is unassigned again."
        case EventKind.PROGRESS_UPDATED:
            return f"'{title}' is now {event.new_progress or 0}% complete."
        case EventKind.TASK_COMPLETED:
            return f"{who} completed '{title}'."
    return f"'{title}' changed."


def build_payload(event: DomainEvent) -> NotificationPayload:
    payload: NotificationPayload = {
        "kind": event.kind.value,
        "taskId": event.task_id,
        "title": event.title,
    }
    if event.new_status is not None:
        payload["newStatus"] = event.new_status.value
    if event.new_progress is not None:
        payload["newProgress"] = event.new_progress
    if event.actor_name:
        payload["actorName"] = event.actor_name
    return payload


class NotificationRouter:
    """
    Maps a DomainEvent to per-recipient notifications.

    Rules:
    - the actor never hears about their own action
    - only the creator and the (current or previous) assignee are eligible
    - the event kind decides whether the owner or the assignee side is told
    """

    def route(self, event: DomainEvent) -> list[Notification]:
        audience = _AUDIENCE.get(event.kind)
        if audience is None:
            return []

        if audience is Audience.ASSIGNEE:
            candidates = [event.assignee_id]
        else:
            candidates = [event.creator_id]

        out: list[Notification] = []
        seen: set[tuple[str, str]] = set()
        message = render_message(event)
        payload = build_payload(event)

        for user_id in candidates:
            if not user_id or user_id == event.actor_id:
                continue
            if user_id not in event.involved_parties:
                continue
            channel = channel_for(audience, user_id)
            if (user_id, channel) in seen:
                continue
            seen.add((user_id, channel))
            out.append(
                Notification(
                    recipient_id=user_id,
                    channel=channel,
                    message=message,
                    payload=dict(payload),
                )
            )
        return out

    def route_all(self, events: Iterable[DomainEvent]) -> list[Notification]:
        out: list[Notification] = []
        for event in events:
            out.extend(self.route(event))
        return out

    async def deliver(self, events: Iterable[DomainEvent], publisher: NotificationPublisher) -> int:
        """
        Publish notifications for `events` in emission order.

        Returns the number of notifications published. The first publisher failure
        stops delivery and is raised as UpstreamError; nothing is retried.
        """
        sent = 0
        for note in self.route_all(events):
            try:
                await publisher.publish(note.channel, note.payload)
            except Exception as e:
                logger.warning(
                    "Notification publish failed channel=%s kind=%s: %s",
                    note.channel,
                    note.payload.get("kind"),
                    e,
                )
                raise UpstreamError(f"Failed to publish to {note.channel}.") from e
            sent += 1
            logger.debug("Notification sent channel=%s kind=%s", note.channel, note.payload.get("kind"))
        return sent
