# src/taskpilot/tasks/dispatcher.py

from __future__ import annotations

"""
Action dispatcher.

The single entry point shared by the UI and the conversational front-end:

    dispatch(action, caller_id, caller_role, payload) -> ActionResult

- resolves the caller (cached per (role, user))
- validates the payload
- routes to the scorer and/or the lifecycle state machine
- never raises: every failure becomes {"ok": false, "errorKind", "message"}

Mutating actions either commit and return exactly one DomainEvent, or fail with
nothing written.
"""

import logging
import math
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, assert_never

from ..core.cache import TTLCache
from ..core.errors import AuthorizationError, NotFoundError, TaskPilotError, ValidationError
from ..core.ports import TaskRepo
from . import lifecycle
from .costing import suggest_payment
from .events import DomainEvent, EventKind
from .scoring import DEFAULT_TOP_K, DEFAULT_WEIGHTS, MAX_WORKLOAD, ScoreWeights, rank_candidates
from .task_models import Priority, Task, TaskStatus

logger = logging.getLogger(__name__)

LIST_DEFAULT_LIMIT = 20
LIST_MAX_LIMIT = 100
STATUS_RECENT_UPDATES = 5


class Action(StrEnum):
    CREATE_TASK = "createTask"
    LIST_MY_TASKS = "listMyTasks"
    GET_TASK_STATUS = "getTaskStatus"
    ACCEPT_TASK = "acceptTask"
    REJECT_TASK = "rejectTask"
    UPDATE_TASK_PROGRESS = "updateTaskProgress"


MUTATING_ACTIONS = frozenset(
    {Action.CREATE_TASK, Action.ACCEPT_TASK, Action.REJECT_TASK, Action.UPDATE_TASK_PROGRESS}
)


@dataclass(frozen=True, slots=True)
class CallerContext:
    user_id: str
    role: str
    is_elevated: bool
    display_name: str | None
    allowed_actions: frozenset[Action]


@dataclass(slots=True)
class ActionResult:
    ok: bool
    data: dict[str, Any] = field(default_factory=dict)
    events: list[DomainEvent] = field(default_factory=list)
    error_kind: str | None = None
    message: str | None = None

    @classmethod
    def success(cls, data: dict[str, Any], events: Iterable[DomainEvent] = ()) -> ActionResult:
        return cls(ok=True, data=data, events=list(events))

    @classmethod
    def failure(cls, error_kind: str, message: str) -> ActionResult:
        return cls(ok=False, error_kind=error_kind, message=message)

    def to_dict(self) -> dict[str, Any]:
        if self.ok:
            return {
                "ok": True,
                "data": self.data,
                "events": [e.to_dict() for e in self.events],
            }
        return {"ok": False, "errorKind": self.error_kind, "message": self.message}


# ---- payload helpers ----

def _require_str(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{key} is required")
    return value.strip()


def _optional_str(payload: Mapping[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    return value.strip() or None


def _finite(value: int | float, key: str) -> float:
    # Rejects NaN, infinity and ints too large for a float.
    try:
        number = float(value)
    except OverflowError:
        raise ValidationError(f"{key} is out of range") from None
    if not math.isfinite(number):
        raise ValidationError(f"{key} must be a finite number")
    return number


def _optional_number(payload: Mapping[str, Any], key: str, *, positive: bool = False) -> float | None:
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{key} must be a number")
    number = _finite(value, key)
    if number < 0 or (positive and number == 0):
        raise ValidationError(f"{key} must be {'> 0' if positive else '>= 0'}")
    return number


def _parse_skills(payload: Mapping[str, Any]) -> frozenset[str]:
    raw = payload.get("requiredSkills")
    if raw is None:
        return frozenset()
    if isinstance(raw, str) or not isinstance(raw, (list, tuple, set, frozenset)):
        raise ValidationError("requiredSkills must be a list of strings")
    skills: dict[str, str] = {}
    for item in raw:
        if not isinstance(item, str):
            raise ValidationError("requiredSkills must be a list of strings")
        label = " ".join(item.split())
        if label:
            skills.setdefault(label.casefold(), label)
    return frozenset(skills.values())


def _parse_priority(payload: Mapping[str, Any], key: str = "priority", default: Priority | None = None) -> Priority | None:
    raw = payload.get(key)
    if raw is None:
        return default
    try:
        return Priority(str(raw).strip().lower())
    except ValueError:
        raise ValidationError(f"{key} must be one of: low, medium, high") from None


def _parse_deadline(payload: Mapping[str, Any], now_ts: float) -> float | None:
    """
    Accept an ISO date / datetime string or epoch seconds.

    Dates without a timezone are taken as UTC. The deadline must be in the future.
    """
    raw = payload.get("deadline")
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        raise ValidationError("deadline must be an ISO date or a timestamp")
    if isinstance(raw, (int, float)):
        ts = _finite(raw, "deadline")
    elif isinstance(raw, str):
        try:
            dt = datetime.fromisoformat(raw.strip())
        except ValueError:
            raise ValidationError("deadline must be an ISO date or a timestamp") from None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        ts = dt.timestamp()
    else:
        raise ValidationError("deadline must be an ISO date or a timestamp")
    if ts <= now_ts:
        raise ValidationError("deadline must be in the future")
    return ts


def _parse_progress(payload: Mapping[str, Any]) -> int:
    value = payload.get("progress")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError("progress is required and must be an integer 0-100")
    if isinstance(value, float) and not value.is_integer():
        raise ValidationError("progress must be a whole number")
    if not 0 <= value <= 100:
        raise ValidationError("progress must be between 0 and 100")
    return int(value)


def _parse_limit(payload: Mapping[str, Any]) -> int:
    value = payload.get("limit", LIST_DEFAULT_LIMIT)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("limit must be an integer")
    if not 1 <= value <= LIST_MAX_LIMIT:
        raise ValidationError(f"limit must be between 1 and {LIST_MAX_LIMIT}")
    return value


class ActionDispatcher:
    """
    Routes the six task actions to scoring and lifecycle logic.

    Construct one per repository; the caller cache lives on the instance.
    """

    def __init__(
        self,
        repo: TaskRepo,
        *,
        elevated_roles: Iterable[str] = ("admin",),
        max_workload: int = MAX_WORKLOAD,
        top_k: int = DEFAULT_TOP_K,
        weights: ScoreWeights = DEFAULT_WEIGHTS,
        cache_size: int = 256,
        cache_ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._repo = repo
        self._elevated_roles = frozenset(r.strip().lower() for r in elevated_roles if r.strip())
        self._max_workload = int(max_workload)
        self._top_k = int(top_k)
        self._weights = weights
        self._clock = clock
        self._callers: TTLCache[tuple[str, str], CallerContext] = TTLCache(
            max_size=cache_size, ttl_seconds=cache_ttl_seconds
        )

    @classmethod
    def from_settings(cls, repo: TaskRepo, settings: Any) -> ActionDispatcher:
        return cls(
            repo,
            elevated_roles=getattr(settings, "elevated_roles", ["admin"]),
            max_workload=int(getattr(settings, "max_workload", MAX_WORKLOAD)),
            top_k=int(getattr(settings, "default_top_k", DEFAULT_TOP_K)),
            weights=ScoreWeights(
                skill=float(getattr(settings, "weight_skill", DEFAULT_WEIGHTS.skill)),
                workload=float(getattr(settings, "weight_workload", DEFAULT_WEIGHTS.workload)),
                performance=float(getattr(settings, "weight_performance", DEFAULT_WEIGHTS.performance)),
                availability=float(getattr(settings, "weight_availability", DEFAULT_WEIGHTS.availability)),
            ),
            cache_size=int(getattr(settings, "caller_cache_size", 256)),
            cache_ttl_seconds=float(getattr(settings, "caller_cache_ttl_seconds", 300.0)),
        )

    @property
    def elevated_roles(self) -> frozenset[str]:
        return self._elevated_roles

    @property
    def weights(self) -> ScoreWeights:
        return self._weights

    @property
    def top_k(self) -> int:
        return self._top_k

    @property
    def max_workload(self) -> int:
        return self._max_workload

    # ---- entry point ----

    def dispatch(
        self,
        action: str | Action,
        caller_id: str | None,
        caller_role: str | None,
        payload: Mapping[str, Any] | None = None,
    ) -> ActionResult:
        try:
            act = self._parse_action(action)
            caller = self._resolve_caller(caller_id, caller_role)
            if act not in caller.allowed_actions:
                raise AuthorizationError(f"Role '{caller.role}' may not perform {act.value}.")
            if payload is None:
                payload = {}
            if not isinstance(payload, Mapping):
                raise ValidationError("payload must be an object")
            result = self._route(act, caller, payload)
        except Exception as e:
            return self._fail(action, caller_id, e)

        if act in MUTATING_ACTIONS:
            logger.info(
                "Action %s ok caller=%s events=%s",
                act.value,
                caller.user_id,
                [e.kind.value for e in result.events],
            )
        else:
            logger.debug("Action %s ok caller=%s", act.value, caller.user_id)
        return result

    def invite(self, caller_id: str | None, caller_role: str | None, task_id: str, assignee_id: str) -> ActionResult:
        """
        Invite an employee to an unassigned task (after a rejection, or a task
        created without assignee). Admin-side operation, not one of the six actions;
        same result contract as `dispatch`.
        """
        try:
            caller = self._resolve_caller(caller_id, caller_role)
            result = self._invite(caller, {"taskId": task_id, "assignedTo": assignee_id})
        except Exception as e:
            return self._fail("invite", caller_id, e)
        logger.info("Invite ok caller=%s task=%s assignee=%s", caller.user_id, task_id, assignee_id)
        return result

    @staticmethod
    def _fail(action: Any, caller_id: str | None, exc: Exception) -> ActionResult:
        if isinstance(exc, TaskPilotError):
            logger.info("Action %s failed caller=%s kind=%s: %s", action, caller_id, exc.kind, exc.message)
            return ActionResult.failure(exc.kind, exc.message)
        logger.error("Action %s crashed caller=%s", action, caller_id, exc_info=exc)
        return ActionResult.failure("InternalError", "Unexpected error while handling the action.")

    def _route(self, action: Action, caller: CallerContext, payload: Mapping[str, Any]) -> ActionResult:
        match action:
            case Action.CREATE_TASK:
                return self._create_task(caller, payload)
            case Action.LIST_MY_TASKS:
                return self._list_my_tasks(caller, payload)
            case Action.GET_TASK_STATUS:
                return self._get_task_status(caller, payload)
            case Action.ACCEPT_TASK:
                return self._accept_task(caller, payload)
            case Action.REJECT_TASK:
                return self._reject_task(caller, payload)
            case Action.UPDATE_TASK_PROGRESS:
                return self._update_task_progress(caller, payload)
            case _:
                assert_never(action)

    @staticmethod
    def _parse_action(action: str | Action) -> Action:
        try:
            return Action(action)
        except ValueError:
            names = ", ".join(a.value for a in Action)
            raise ValidationError(f"Unknown action {action!r}. Expected one of: {names}") from None

    # ---- caller resolution ----

    def _resolve_caller(self, caller_id: str | None, caller_role: str | None) -> CallerContext:
        user_id = (caller_id or "").strip()
        if not user_id:
            raise AuthorizationError("User authentication required.")
        role = (caller_role or "").strip().lower() or "employee"
        return self._callers.get_or_create((role, user_id), lambda: self._build_caller(user_id, role))

    def _build_caller(self, user_id: str, role: str) -> CallerContext:
        employee = self._repo.get_employee(user_id)
        elevated = role in self._elevated_roles
        allowed = frozenset(Action) if elevated else frozenset(Action) - {Action.CREATE_TASK}
        return CallerContext(
            user_id=user_id,
            role=role,
            is_elevated=elevated,
            display_name=employee.name if employee is not None and employee.name else None,
            allowed_actions=allowed,
        )

    def forget_caller(self, caller_id: str, caller_role: str) -> None:
        """Drop a cached caller (e.g. after a role change)."""
        self._callers.invalidate(((caller_role or "").strip().lower() or "employee", caller_id))

    # ---- shared lookups ----

    def _load_task(self, payload: Mapping[str, Any]) -> Task:
        task_id = _require_str(payload, "taskId")
        task = self._repo.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found.")
        return task

    # ---- actions ----

    def _create_task(self, caller: CallerContext, payload: Mapping[str, Any]) -> ActionResult:
        now = self._clock()
        draft = lifecycle.TaskDraft(
            title=_require_str(payload, "title"),
            description=_require_str(payload, "description"),
            required_skills=_parse_skills(payload),
            priority=_parse_priority(payload, default=Priority.MEDIUM) or Priority.MEDIUM,
            deadline=_parse_deadline(payload, now),
            estimated_hours=_optional_number(payload, "estimatedHours", positive=True),
            complexity_multiplier=_optional_number(payload, "complexityMultiplier", positive=True) or 1.0,
        )

        assignee = None
        assignee_id = _optional_str(payload, "assignedTo")
        if assignee_id is not None:
            assignee = self._repo.get_employee(assignee_id)
            if assignee is None:
                raise NotFoundError(f"Unknown assignee {assignee_id}.")

        # Suggestions are read before the write so a read failure cannot follow a commit.
        suggestions = None
        if assignee is None:
            pool = self._repo.list_employees(available_only=True)
            suggestions = rank_candidates(
                draft.required_skills,
                pool,
                top_k=self._top_k,
                max_workload=self._max_workload,
                weights=self._weights,
            )

        creation = lifecycle.plan_create(
            draft,
            actor_id=caller.user_id,
            actor_is_elevated=caller.is_elevated,
            assignee=assignee,
            now_ts=now,
            actor_name=caller.display_name,
        )
        lifecycle.commit_creation(self._repo, creation)

        data: dict[str, Any] = {
            "task": creation.task.to_dict(now_ts=now),
            "invitation": creation.invitation.to_dict() if creation.invitation else None,
        }
        if suggestions is not None:
            data["suggestions"] = [s.to_dict() for s in suggestions]
        return ActionResult.success(data, [creation.event])

    def _invite(self, caller: CallerContext, payload: Mapping[str, Any]) -> ActionResult:
        task = self._load_task(payload)
        assignee_id = _require_str(payload, "assignedTo")
        assignee = self._repo.get_employee(assignee_id)
        if assignee is None:
            raise NotFoundError(f"Unknown assignee {assignee_id}.")

        transition = lifecycle.plan_invite(
            task,
            assignee,
            actor_id=caller.user_id,
            actor_is_elevated=caller.is_elevated,
            now_ts=self._clock(),
            actor_name=caller.display_name,
        )
        lifecycle.commit(self._repo, transition)
        return ActionResult.success(
            {
                "task": transition.task.to_dict(),
                "invitation": transition.new_invitation.to_dict() if transition.new_invitation else None,
            },
            [transition.event],
        )

    def _list_my_tasks(self, caller: CallerContext, payload: Mapping[str, Any]) -> ActionResult:
        now = self._clock()
        status_raw = _optional_str(payload, "status")
        status = None
        if status_raw is not None:
            try:
                status = TaskStatus(status_raw.lower())
            except ValueError:
                raise ValidationError(f"Unknown status {status_raw!r}") from None
        priority = _parse_priority(payload)
        overdue_only = payload.get("overdue")
        if overdue_only is None:
            overdue_only = False
        elif not isinstance(overdue_only, bool):
            raise ValidationError("overdue must be true or false")
        limit = _parse_limit(payload)

        tasks = self._repo.list_tasks_by_assignee(caller.user_id)
        out: list[dict[str, Any]] = []
        for task in tasks:
            if status is not None and task.status != status:
                continue
            if priority is not None and task.priority != priority:
                continue
            if overdue_only and not task.is_overdue(now):
                continue
            out.append(task.to_dict(now_ts=now))
            if len(out) >= limit:
                break

        return ActionResult.success({"tasks": out, "count": len(out)})

    def _get_task_status(self, caller: CallerContext, payload: Mapping[str, Any]) -> ActionResult:
        now = self._clock()
        task = self._load_task(payload)
        if not (
            caller.is_elevated
            or caller.user_id == task.created_by
            or caller.user_id == task.assigned_to
        ):
            raise AuthorizationError("You are not involved in this task.")

        invitation = self._repo.get_latest_invitation(task.id)
        updates = self._repo.list_task_updates(task.id, limit=STATUS_RECENT_UPDATES)
        hours = self._repo.sum_hours_logged(task.id)

        return ActionResult.success(
            {
                "task": task.to_dict(now_ts=now),
                "invitation": invitation.to_dict() if invitation else None,
                "recentUpdates": [u.to_dict() for u in updates],
                "hoursLogged": hours,
            }
        )

    def _accept_task(self, caller: CallerContext, payload: Mapping[str, Any]) -> ActionResult:
        task = self._load_task(payload)
        invitation = self._repo.get_latest_invitation(task.id)
        transition = lifecycle.plan_accept(
            task,
            invitation,
            actor_id=caller.user_id,
            now_ts=self._clock(),
            actor_name=caller.display_name,
        )
        lifecycle.commit(self._repo, transition)
        return ActionResult.success(
            {
                "task": transition.task.to_dict(),
                "invitation": transition.invitation.to_dict() if transition.invitation else None,
            },
            [transition.event],
        )

    def _reject_task(self, caller: CallerContext, payload: Mapping[str, Any]) -> ActionResult:
        task = self._load_task(payload)
        reason = _optional_str(payload, "reason")
        invitation = self._repo.get_latest_invitation(task.id)
        transition = lifecycle.plan_reject(
            task,
            invitation,
            actor_id=caller.user_id,
            reason=reason,
            now_ts=self._clock(),
            actor_name=caller.display_name,
        )
        lifecycle.commit(self._repo, transition)
        return ActionResult.success(
            {
                "task": transition.task.to_dict(),
                "invitation": transition.invitation.to_dict() if transition.invitation else None,
            },
            [transition.event],
        )

    def _update_task_progress(self, caller: CallerContext, payload: Mapping[str, Any]) -> ActionResult:
        task = self._load_task(payload)
        progress = _parse_progress(payload)
        hours = _optional_number(payload, "hoursLogged")
        note = _optional_str(payload, "note")

        transition = lifecycle.plan_progress(
            task,
            actor_id=caller.user_id,
            progress=progress,
            hours_logged=hours,
            note=note,
            now_ts=self._clock(),
            actor_name=caller.display_name,
        )

        payment = None
        if transition.event.kind == EventKind.TASK_COMPLETED:
            employee = self._repo.get_employee(caller.user_id)
            if employee is not None:
                total_hours = self._repo.sum_hours_logged(task.id) + (hours or 0.0)
                payment = suggest_payment(task, employee, total_hours)

        lifecycle.commit(self._repo, transition)

        data: dict[str, Any] = {"task": transition.task.to_dict()}
        if transition.task_update is not None:
            data["update"] = transition.task_update.to_dict()
        if payment is not None:
            data["suggestedPayment"] = payment.to_dict()
        return ActionResult.success(data, [transition.event])
