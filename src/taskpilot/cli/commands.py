# src/taskpilot/cli/commands.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any

from ..core.errors import UpstreamError
from ..core.state import AppState
from ..tasks.dispatcher import Action, ActionResult
from ..tasks.scoring import rank_candidates
from ..tasks.task_models import Employee, TaskStatus

CommandEmitter = Callable[[str], None]
CommandHandler = Callable[[AppState, list[str], CommandEmitter | None], str]

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /create, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        return handler(state, args, emit)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _fmt_ts(ts: float | None) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts).astimezone().strftime("%Y-%m-%d %H:%M")


def _fmt_error(result: ActionResult) -> str:
    return f"[{result.error_kind}] {result.message}"


def _fmt_task_line(t: dict[str, Any]) -> str:
    overdue = " OVERDUE" if t.get("isOverdue") else ""
    return (
        f"{t['id']} [{t['status']}] {t['title']} "
        f"(priority={t['priority']}, progress={t['progress']}%, due={_fmt_ts(t.get('deadline'))}){overdue}"
    )


def _run(
    state: AppState,
    action: Action,
    payload: dict[str, Any],
    emit: CommandEmitter | None,
) -> ActionResult | str:
    """Dispatch as the session user and deliver any events. Returns an error string if not logged in."""
    if not state.session_user:
        return "Not logged in. Use /login <user_id> [role]."

    result = state.dispatcher.dispatch(action, state.session_user, state.session_role, payload)
    _deliver(state, result, action.value, emit)
    return result


def _deliver(state: AppState, result: ActionResult, label: str, emit: CommandEmitter | None) -> None:
    if not (result.ok and result.events):
        return
    try:
        asyncio.run(state.router.deliver(result.events, state.publisher))
    except UpstreamError as e:
        # The mutation is already committed; only the notification is lost.
        logger.warning("Notification delivery failed after %s: %s", label, e.message)
        if emit:
            with contextlib.suppress(Exception):
                emit(f"[NOTIFY] delivery failed: {e.message}")


def cmd_help(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    return registry.build_help()


def cmd_login(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /login <user_id>          -> act as an employee
    /login <user_id> <role>   -> act with a role (e.g. admin)
    """
    if not args:
        return "Usage: /login <user_id> [role]"
    state.session_user = args[0]
    state.session_role = (args[1] if len(args) > 1 else "employee").lower()
    logger.debug("Console session user=%s role=%s", state.session_user, state.session_role)
    return cmd_whoami(state, [], emit)


def cmd_whoami(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not state.session_user:
        return "Not logged in. Use /login <user_id> [role]."
    emp = state.store.get_employee(state.session_user)
    name = f" ({emp.name})" if emp is not None else ""
    return f"Logged in as {state.session_user}{name}, role={state.session_role}"


def cmd_employee(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /employee list
    /employee add <id> <name> <skill,skill,...> [hourly_rate] [performance 0..1]
    """
    if not args or args[0].lower() == "list":
        emps = state.store.list_employees()
        if not emps:
            return "No employees yet. Use /employee add."
        lines = ["Employees:"]
        for e in emps:
            avail = "available" if e.availability else "unavailable"
            lines.append(
                f"  {e.id} {e.name} skills={','.join(sorted(e.skills)) or '-'} "
                f"workload={e.current_workload} perf={e.performance_score:.2f} {avail}"
            )
        return "\n".join(lines)

    if args[0].lower() == "add":
        if len(args) < 4:
            return "Usage: /employee add <id> <name> <skill,skill,...> [hourly_rate] [performance]"
        try:
            rate = float(args[4]) if len(args) > 4 else 0.0
            perf = float(args[5]) if len(args) > 5 else 0.5
        except ValueError:
            return "hourly_rate and performance must be numbers."
        existing = state.store.get_employee(args[1])
        emp = Employee(
            id=args[1],
            name=args[2],
            skills=frozenset(s.strip() for s in args[3].split(",") if s.strip()),
            hourly_rate=rate,
            performance_score=perf,
            current_workload=existing.current_workload if existing else 0,
            tasks_completed=existing.tasks_completed if existing else 0,
        )
        state.store.upsert_employee(emp)
        return f"Employee {emp.id} saved."

    return "Usage: /employee list | /employee add <id> <name> <skills> [rate] [performance]"


def cmd_create(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /create <title> | <description> | [skills,comma,separated] | [priority] | [assignee_id]
    """
    fields = [f.strip() for f in " ".join(args).split("|")]
    if len(fields) < 2 or not fields[0] or not fields[1]:
        return "Usage: /create <title> | <description> | [skills] | [priority] | [assignee_id]"

    payload: dict[str, Any] = {"title": fields[0], "description": fields[1]}
    if len(fields) > 2 and fields[2]:
        payload["requiredSkills"] = [s for s in fields[2].split(",") if s.strip()]
    if len(fields) > 3 and fields[3]:
        payload["priority"] = fields[3]
    if len(fields) > 4 and fields[4]:
        payload["assignedTo"] = fields[4]

    result = _run(state, Action.CREATE_TASK, payload, emit)
    if isinstance(result, str):
        return result
    if not result.ok:
        return _fmt_error(result)

    task = result.data["task"]
    lines = [f"Created {_fmt_task_line(task)}"]
    suggestions = result.data.get("suggestions")
    if suggestions is not None:
        if not suggestions:
            lines.append("No available employees to suggest.")
        else:
            lines.append("Suggested assignees:")
            for s in suggestions:
                lines.append(f"  {s['employeeId']} {s['name']} score={s['score']} ({s['recommendation']})")
    return "\n".join(lines)


def cmd_invite(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /invite <task_id> <employee_id> -> offer an unassigned task (e.g. after a rejection) to someone
    """
    if len(args) < 2:
        return "Usage: /invite <task_id> <employee_id>"
    if not state.session_user:
        return "Not logged in. Use /login <user_id> [role]."

    result = state.dispatcher.invite(state.session_user, state.session_role, args[0], args[1])
    _deliver(state, result, "invite", emit)
    if not result.ok:
        return _fmt_error(result)
    return f"Invited {args[1]}. {_fmt_task_line(result.data['task'])}"


def cmd_created(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /created            -> tasks I created
    /created <status>   -> filter by status (e.g. unassigned)
    """
    if not state.session_user:
        return "Not logged in. Use /login <user_id> [role]."
    status = None
    if args:
        try:
            status = TaskStatus(args[0].lower())
        except ValueError:
            return f"Unknown status: {args[0]}"

    tasks = state.store.list_tasks_by_creator(state.session_user, status=status)
    if not tasks:
        return "No tasks."
    now = time.time()
    lines = ["Tasks you created:"]
    for t in tasks:
        assignee = f" -> {t.assigned_to}" if t.assigned_to else ""
        lines.append(f"  {_fmt_task_line(t.to_dict(now_ts=now))}{assignee}")
    return "\n".join(lines)


def cmd_mine(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /mine            -> all my tasks
    /mine <status>   -> filter by status
    /mine overdue    -> only overdue tasks
    """
    payload: dict[str, Any] = {}
    if args:
        if args[0].lower() == "overdue":
            payload["overdue"] = True
        else:
            payload["status"] = args[0]

    result = _run(state, Action.LIST_MY_TASKS, payload, emit)
    if isinstance(result, str):
        return result
    if not result.ok:
        return _fmt_error(result)

    tasks = result.data["tasks"]
    if not tasks:
        return "No tasks."
    return "\n".join(["Your tasks:"] + [f"  {_fmt_task_line(t)}" for t in tasks])


def cmd_status(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not args:
        return "Usage: /status <task_id>"
    result = _run(state, Action.GET_TASK_STATUS, {"taskId": args[0]}, emit)
    if isinstance(result, str):
        return result
    if not result.ok:
        return _fmt_error(result)

    data = result.data
    lines = [_fmt_task_line(data["task"])]
    inv = data.get("invitation")
    if inv:
        reason = f" reason={inv['rejectionReason']}" if inv.get("rejectionReason") else ""
        lines.append(f"  invitation: {inv['toEmployee']} {inv['status']}{reason}")
    lines.append(f"  hours logged: {data['hoursLogged']:g}")
    for u in data["recentUpdates"]:
        note = f" - {u['note']}" if u.get("note") else ""
        lines.append(f"  [{_fmt_ts(u['createdAt'])}] {u['progress']}%{note}")
    return "\n".join(lines)


def cmd_accept(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not args:
        return "Usage: /accept <task_id>"
    result = _run(state, Action.ACCEPT_TASK, {"taskId": args[0]}, emit)
    if isinstance(result, str):
        return result
    if not result.ok:
        return _fmt_error(result)
    return f"Accepted. {_fmt_task_line(result.data['task'])}"


def cmd_reject(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not args:
        return "Usage: /reject <task_id> [reason]"
    payload: dict[str, Any] = {"taskId": args[0]}
    if len(args) > 1:
        payload["reason"] = " ".join(args[1:])
    result = _run(state, Action.REJECT_TASK, payload, emit)
    if isinstance(result, str):
        return result
    if not result.ok:
        return _fmt_error(result)
    return f"Rejected. {_fmt_task_line(result.data['task'])}"


def cmd_progress(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /progress <task_id> <percent> [hours] [note...]
    """
    if len(args) < 2:
        return "Usage: /progress <task_id> <percent> [hours] [note]"
    try:
        progress = int(args[1])
    except ValueError:
        return "Progress must be an integer 0-100."

    payload: dict[str, Any] = {"taskId": args[0], "progress": progress}
    rest = args[2:]
    if rest:
        try:
            payload["hoursLogged"] = float(rest[0])
            rest = rest[1:]
        except ValueError:
            pass
    if rest:
        payload["note"] = " ".join(rest)

    result = _run(state, Action.UPDATE_TASK_PROGRESS, payload, emit)
    if isinstance(result, str):
        return result
    if not result.ok:
        return _fmt_error(result)

    reply = f"Updated. {_fmt_task_line(result.data['task'])}"
    payment = result.data.get("suggestedPayment")
    if payment:
        reply += f"\nSuggested payment: {payment['amount']:.2f} ({payment['calculation']})"
    return reply


def cmd_suggest(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /suggest <skill,skill,...> -> rank available employees without creating a task
    """
    skills = frozenset(s.strip() for s in " ".join(args).split(",") if s.strip())
    dispatcher = state.dispatcher
    ranked = rank_candidates(
        skills,
        state.store.list_employees(available_only=True),
        top_k=dispatcher.top_k,
        max_workload=dispatcher.max_workload,
        weights=dispatcher.weights,
    )
    if not ranked:
        return "No available employees."
    lines = ["Best matches:"]
    for s in ranked:
        missing = f" missing={','.join(s.missing_skills)}" if s.missing_skills else ""
        lines.append(f"  {s.employee_id} {s.name} score={s.composite:.1f} ({s.recommendation}){missing}")
    return "\n".join(lines)


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("login", cmd_login, help_text="Act as a user: /login <user_id> [role].")
registry.register("whoami", cmd_whoami, help_text="Show the current session user.")
registry.register(
    "employee", cmd_employee, help_text="Employees: /employee list | /employee add <id> <name> <skills>."
)
registry.register(
    "create", cmd_create, help_text="Create a task: /create title | description | skills | priority | assignee."
)
registry.register("invite", cmd_invite, help_text="Invite to an unassigned task: /invite <task_id> <employee_id>.")
registry.register("mine", cmd_mine, help_text="List my tasks: /mine [status|overdue].")
registry.register("created", cmd_created, help_text="List tasks I created: /created [status].")
registry.register("status", cmd_status, help_text="Show task status: /status <task_id>.")
registry.register("accept", cmd_accept, help_text="Accept an invitation: /accept <task_id>.")
registry.register("reject", cmd_reject, help_text="Decline an invitation: /reject <task_id> [reason].")
registry.register(
    "progress", cmd_progress, help_text="Report progress: /progress <task_id> <percent> [hours] [note]."
)
registry.register("suggest", cmd_suggest, help_text="Rank employees for skills: /suggest skill,skill.")
