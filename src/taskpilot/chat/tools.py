# src/taskpilot/chat/tools.py

from __future__ import annotations

"""
Conversational tool bridge.

Exposes the dispatcher actions as OpenAI function tools so a chat model can call
them, and turns the model's tool calls back into dispatcher calls.

The bridge does not talk to any model itself: the chat front-end passes
`tool_definitions(...)` as `tools=` and feeds each returned tool call through
`execute_tool_call(...)`.
"""

import json
import logging
from collections.abc import Iterable
from typing import Any

from openai.types.chat import ChatCompletionToolMessageParam, ChatCompletionToolParam

from ..core.errors import ValidationError
from ..tasks.dispatcher import Action, ActionDispatcher, ActionResult

logger = logging.getLogger(__name__)

TOOL_ACTIONS: dict[str, Action] = {
    "create_task": Action.CREATE_TASK,
    "list_my_tasks": Action.LIST_MY_TASKS,
    "get_task_status": Action.GET_TASK_STATUS,
    "accept_task": Action.ACCEPT_TASK,
    "reject_task": Action.REJECT_TASK,
    "update_task_progress": Action.UPDATE_TASK_PROGRESS,
}

_TASK_ID = {"type": "string", "description": "Task id."}

_SPECS: dict[str, tuple[str, dict[str, Any]]] = {
    "create_task": (
        "Create a task. Without assignedTo the reply includes suggested employees.",
        {
            "type": "object",
            "properties": {
                "title": {"type": "string"},
                "description": {"type": "string"},
                "requiredSkills": {"type": "array", "items": {"type": "string"}},
                "priority": {"type": "string", "enum": ["low", "medium", "high"]},
                "deadline": {"type": "string", "description": "ISO date or datetime in the future."},
                "assignedTo": {"type": "string", "description": "Employee id to invite."},
                "estimatedHours": {"type": "number"},
                "complexityMultiplier": {"type": "number"},
            },
            "required": ["title", "description"],
        },
    ),
    "list_my_tasks": (
        "List tasks assigned to the current user.",
        {
            "type": "object",
            "properties": {
                "status": {
                    "type": "string",
                    "enum": ["unassigned", "invited", "accepted", "ongoing", "completed", "rejected"],
                },
                "priority": {"type": "string", "enum": ["low", "medium", "high"]},
                "overdue": {"type": "boolean"},
                "limit": {"type": "integer", "minimum": 1, "maximum": 100},
            },
        },
    ),
    "get_task_status": (
        "Show a task with its latest invitation, recent updates and logged hours.",
        {"type": "object", "properties": {"taskId": _TASK_ID}, "required": ["taskId"]},
    ),
    "accept_task": (
        "Accept the pending invitation for a task.",
        {"type": "object", "properties": {"taskId": _TASK_ID}, "required": ["taskId"]},
    ),
    "reject_task": (
        "Decline the pending invitation for a task.",
        {
            "type": "object",
            "properties": {"taskId": _TASK_ID, "reason": {"type": "string"}},
            "required": ["taskId"],
        },
    ),
    "update_task_progress": (
        "Report progress on an ongoing task. 100 completes it.",
        {
            "type": "object",
            "properties": {
                "taskId": _TASK_ID,
                "progress": {"type": "integer", "minimum": 0, "maximum": 100},
                "hoursLogged": {"type": "number", "minimum": 0},
                "note": {"type": "string"},
            },
            "required": ["taskId", "progress"],
        },
    ),
}


def tool_definitions(role: str | None, elevated_roles: Iterable[str] = ("admin",)) -> list[ChatCompletionToolParam]:
    elevated = (role or "").strip().lower() in {r.strip().lower() for r in elevated_roles}
    tools: list[ChatCompletionToolParam] = []
    for name, (description, parameters) in _SPECS.items():
        if TOOL_ACTIONS[name] is Action.CREATE_TASK and not elevated:
            continue
        tools.append(
            {
                "type": "function",
                "function": {"name": name, "description": description, "parameters": parameters},
            }
        )
    return tools


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _parse_arguments(raw: Any) -> dict[str, Any]:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw
    try:
        args = json.loads(raw)
    except (TypeError, ValueError):
        raise ValidationError("Tool arguments are not valid JSON.") from None
    if not isinstance(args, dict):
        raise ValidationError("Tool arguments must be a JSON object.")
    return args


def execute_tool_call(
        dispatcher: ActionDispatcher,
        caller_id: str | None,
        caller_role: str | None,
        tool_call: Any,
) -> ChatCompletionToolMessageParam:
    """
    Run one model tool call through the dispatcher.

    `tool_call` is a ChatCompletionMessageToolCall (or an equivalent dict).
    The tool message content is the JSON response contract.
    """
    call_id = str(_field(tool_call, "id") or "")
    function = _field(tool_call, "function")
    name = str(_field(function, "name") or "")

    action = TOOL_ACTIONS.get(name)
    if action is None:
        result = ActionResult.failure(ValidationError.kind, f"Unknown tool {name!r}.")
    else:
        try:
            payload = _parse_arguments(_field(function, "arguments"))
        except ValidationError as e:
            result = ActionResult.failure(e.kind, e.message)
        else:
            result = dispatcher.dispatch(action, caller_id, caller_role, payload)

    logger.debug("Tool call %s (%s) ok=%s", name, call_id, result.ok)
    try:
        content = json.dumps(result.to_dict(), ensure_ascii=False, default=str, allow_nan=False)
    except ValueError:
        # NaN / Infinity have no JSON form.
        logger.error("Tool call %s (%s) produced a non-finite number", name, call_id)
        content = json.dumps(
            ActionResult.failure("InternalError", "Result contained a non-finite number.").to_dict()
        )
    return {
        "role": "tool",
        "tool_call_id": call_id,
        "content": content,
    }
