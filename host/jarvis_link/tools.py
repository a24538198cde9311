# jarvis_link/tools.py
"""
Tool declarations offered to the remote model and the dispatcher that turns
tool calls into logged system actions.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .desktop import SETTINGS_CATEGORIES, SystemActionExecutor
from .state import ActionType, SessionState, SessionStatus, SystemAction
from .utils import CancelToken

logger = logging.getLogger(__name__)

TOOL_DECLARATIONS: List[Dict[str, Any]] = [
    {
        "name": "open_application",
        "description": "Opens a specific application.",
        "parameters": {
            "type": "object",
            "properties": {"app_name": {"type": "string"}},
            "required": ["app_name"],
        },
    },
    {
        "name": "open_system_settings",
        "description": "Opens the System Settings application.",
        "parameters": {
            "type": "object",
            "properties": {
                "category": {
                    "type": "string",
                    "description": "The specific settings category to open (e.g., Network, Display, Updates)",
                    "enum": list(SETTINGS_CATEGORIES),
                }
            },
            "required": ["category"],
        },
    },
    {
        "name": "type_message",
        "description": "Types text into the active window.",
        "parameters": {
            "type": "object",
            "properties": {"message": {"type": "string"}},
            "required": ["message"],
        },
    },
    {
        "name": "manage_timer",
        "description": "Starts a countdown timer.",
        "parameters": {
            "type": "object",
            "properties": {
                "duration_seconds": {"type": "number", "description": "Duration in seconds"},
                "label": {"type": "string", "description": "Description of the timer"},
            },
            "required": ["duration_seconds", "label"],
        },
    },
    {
        "name": "manage_tasks",
        "description": "Adds or lists items in the to-do list.",
        "parameters": {
            "type": "object",
            "properties": {
                "action": {"type": "string", "enum": ["add", "list"], "description": "Action to perform"},
                "task": {"type": "string", "description": "Task content"},
            },
            "required": ["action"],
        },
    },
]

# Side effects forwarded to the desktop executor; the rest are purely local
FORWARDED_ACTIONS = {
    ActionType.OPEN_APP,
    ActionType.OPEN_SETTINGS,
    ActionType.TYPE_MESSAGE,
    ActionType.READ_DOC,
}


@dataclass
class ToolCall:
    id: str
    name: str
    args: Dict[str, Any] = field(default_factory=dict)


class ToolArgumentError(ValueError):
    """A tool call is missing a required argument or carries an invalid one"""


def _require(args: Dict[str, Any], key: str) -> Any:
    value = args.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ToolArgumentError(f"missing required argument '{key}'")
    return value


class ToolDispatcher:
    """Translates tool calls and protocol steps into local side effects and result strings"""

    def __init__(
        self,
        state: SessionState,
        executor: SystemActionExecutor,
        token: CancelToken,
        executing_beat: float = 1.0,
    ):
        self.state = state
        self.executor = executor
        self.token = token
        self.executing_beat = executing_beat
        self._beat_handle: Optional[asyncio.TimerHandle] = None

    # ------------------------------------------------------------------ #
    # tool calls from the remote model
    # ------------------------------------------------------------------ #
    def dispatch(self, call: ToolCall, token: Optional[CancelToken] = None) -> str:
        """Execute a tool call and return the result string sent back to the model"""
        args = call.args or {}
        logger.info(f"🔧 Tool call {call.name}({args}) id={call.id}")
        if not isinstance(args, dict):
            logger.warning(f"❌ Tool {call.name} rejected: arguments are not an object")
            return "Error: arguments must be an object"

        try:
            if call.name == "open_application":
                self.apply(ActionType.OPEN_APP, str(_require(args, "app_name")), token)
            elif call.name == "open_system_settings":
                category = str(_require(args, "category"))
                if category not in SETTINGS_CATEGORIES:
                    raise ToolArgumentError(f"unknown settings category '{category}'")
                self.apply(ActionType.OPEN_SETTINGS, category, token)
            elif call.name == "type_message":
                self.apply(ActionType.TYPE_MESSAGE, str(_require(args, "message")), token)
            elif call.name == "manage_timer":
                try:
                    seconds = int(float(_require(args, "duration_seconds")))
                except (TypeError, ValueError, OverflowError):
                    raise ToolArgumentError("duration_seconds must be a finite number")
                label = str(args.get("label") or "Timer")
                action = self.apply(ActionType.START_TIMER, f"{seconds}|{label}", token)
                if action is not None and action.status == "failed":
                    return "Error: duration_seconds must be positive"
            elif call.name == "manage_tasks":
                action = str(_require(args, "action")).lower()
                if action == "add":
                    self.apply(ActionType.ADD_TODO, str(_require(args, "task")), token)
                elif action == "list":
                    summary = self.summarize_todos()
                    self.apply(ActionType.SHOW_TODO, summary, token)
                    return summary
                else:
                    raise ToolArgumentError(f"unknown task action '{action}'")
            else:
                logger.warning(f"Unknown tool requested: {call.name}")
                return f"Unknown tool: {call.name}"
        except ToolArgumentError as e:
            logger.warning(f"❌ Tool {call.name} rejected: {e}")
            return f"Error: {e}"

        return "ok"

    def summarize_todos(self) -> str:
        return "Here are your tasks: " + ", ".join(t.text for t in self.state.todos)

    # ------------------------------------------------------------------ #
    # system actions (shared by tool calls and protocol steps)
    # ------------------------------------------------------------------ #
    def apply(
        self,
        action_type: ActionType,
        content: str,
        token: Optional[CancelToken] = None,
        forward: bool = True,
    ) -> Optional[SystemAction]:
        """Log a system action, apply its local effect and start the executing beat.

        Returns None without touching state when the token has been cancelled.
        With forward=False the action is only logged, never handed to the executor.
        """
        token = token or self.token
        if token.cancelled:
            logger.debug(f"Suppressed {action_type.value} after cancellation")
            return None

        status = "completed"
        if action_type == ActionType.START_TIMER:
            status = self._start_timer(content)
        elif action_type == ActionType.ADD_TODO:
            self.state.add_todo(content)

        action = self.state.add_action(action_type, content, status=status)

        if forward and action_type in FORWARDED_ACTIONS:
            self._forward(action_type, content)

        self.state.set_status(SessionStatus.EXECUTING)
        self._schedule_beat_end(token)
        return action

    def _start_timer(self, content: str) -> str:
        seconds_text, _, label = content.partition("|")
        try:
            self.state.add_timer(int(float(seconds_text)), label or "Timer")
        except ValueError as e:
            logger.warning(f"Invalid timer request '{content}': {e}")
            return "failed"
        return "completed"

    def _forward(self, action_type: ActionType, content: str):
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, self.executor.perform, action_type, content)

        def _log_outcome(fut: "asyncio.Future"):
            if fut.cancelled():
                return
            exc = fut.exception()
            if exc:
                logger.error(f"{action_type.value} side effect failed: {exc}")
            else:
                logger.debug(f"{action_type.value} side effect: {fut.result()}")

        future.add_done_callback(_log_outcome)

    def _schedule_beat_end(self, token: CancelToken):
        if self._beat_handle is not None:
            self._beat_handle.cancel()
        loop = asyncio.get_running_loop()
        self._beat_handle = loop.call_later(self.executing_beat, self._end_beat, token)

    def _end_beat(self, token: CancelToken):
        self._beat_handle = None
        if self.token.cancelled or token.cancelled:
            return
        if self.state.status == SessionStatus.EXECUTING:
            self.state.set_status(SessionStatus.IDLE)

    def cancel_pending(self):
        if self._beat_handle is not None:
            self._beat_handle.cancel()
            self._beat_handle = None
