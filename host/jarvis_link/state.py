# jarvis_link/state.py
"""
Session state shared by the orchestrator components, plus the tone-driven
system instruction handed to the remote model at session-open time.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Tuple

from .utils import new_id

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are JARVIS, a highly advanced AI personal assistant.
You are an expert in software troubleshooting (Windows, Linux, macOS), programming (Python, JavaScript, C++, Rust), and productivity optimization.
Your knowledge base is vast. Provide technical guidance with precision.
You have access to tools for opening applications, typing messages, managing timers, tracking to-do items, and opening system settings.

PERSONALITY_PROTOCOL: {personality}

Capabilities & Protocols:
1. Technical Support: Guide users through debugging, registry edits, or terminal commands.
2. System Interaction: Use 'open_application', 'type_message', or 'open_system_settings' when requested.
3. Utility: Manage 'timers' and 'to-do lists' to keep the user efficient.
4. Always confirm execution of system protocols."""


class Tone(Enum):
    """Response personality selected before a session opens"""
    FORMAL = "FORMAL"
    WITTY = "WITTY"
    EMPATHETIC = "EMPATHETIC"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Tone":
        """Parse a stored tone, falling back to FORMAL on anything unknown"""
        if value:
            try:
                return cls(value.strip().upper())
            except ValueError:
                logger.warning(f"Unknown tone '{value}', using FORMAL")
        return cls.FORMAL


TONE_PERSONALITIES = {
    Tone.FORMAL: (
        "Your tone is strictly formal, professional, and highly efficient. "
        "You are the ultimate gentleman's gentleman. Use 'Sir' or 'Madam' frequently "
        "and maintain a respectful, polished demeanor at all times."
    ),
    Tone.WITTY: (
        "Your tone is witty, slightly sarcastic, and charismatic. You're brilliant "
        "but you don't mind a sharp-tongued remark if the user asks something obvious. "
        "Use humor where appropriate."
    ),
    Tone.EMPATHETIC: (
        "Your tone is deeply empathetic, supportive, and warm. You prioritize the user's "
        "well-being and emotional state, offering encouragement and patient guidance. "
        "You are a caregiver as much as an assistant."
    ),
}


def build_system_instruction(tone: Tone) -> str:
    return SYSTEM_PROMPT.format(personality=TONE_PERSONALITIES[tone])


class SessionStatus(Enum):
    """Process-wide assistant status"""
    IDLE = "idle"                # No live session; wake word monitor is armed
    LISTENING = "listening"      # Session open, streaming microphone audio
    THINKING = "thinking"        # Between recognized input and model output
    SPEAKING = "speaking"        # Synthesized speech pending playback
    EXECUTING = "executing"      # Visible beat after a system action


class ActionType(Enum):
    """System actions the dispatcher can log and forward"""
    OPEN_APP = "OPEN_APP"
    OPEN_SETTINGS = "OPEN_SETTINGS"
    TYPE_MESSAGE = "TYPE_MESSAGE"
    READ_DOC = "READ_DOC"
    START_TIMER = "START_TIMER"
    ADD_TODO = "ADD_TODO"
    SHOW_TODO = "SHOW_TODO"


@dataclass(frozen=True)
class ChatMessage:
    role: str  # "user" | "assistant"
    text: str
    timestamp: float


@dataclass
class SystemAction:
    id: str
    type: ActionType
    content: str
    timestamp: float
    status: str = "completed"  # pending | completed | failed


@dataclass
class TodoItem:
    id: str
    text: str
    completed: bool = False


@dataclass
class ActiveTimer:
    id: str
    duration: int
    remaining: int
    label: str


@dataclass(frozen=True)
class ProtocolAction:
    type: ActionType
    payload: str


@dataclass(frozen=True)
class CustomProtocol:
    id: str
    name: str
    trigger_phrase: str
    actions: Tuple[ProtocolAction, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Notice:
    message: str
    expires_at: float


@dataclass(frozen=True)
class StateView:
    """Read-only snapshot handed to presentation"""
    status: SessionStatus
    mic_active: bool
    messages: Tuple[ChatMessage, ...]
    actions: Tuple[SystemAction, ...]
    todos: Tuple[TodoItem, ...]
    timers: Tuple[ActiveTimer, ...]
    notice: Optional[str]


StatusListener = Callable[[SessionStatus, SessionStatus], None]


class SessionState:
    """Owned session state, passed by reference to the components allowed to mutate it"""

    def __init__(self):
        self.status = SessionStatus.IDLE
        self.mic_active = False
        self.messages: List[ChatMessage] = []
        self.actions: List[SystemAction] = []
        self.todos: List[TodoItem] = []
        self.timers: List[ActiveTimer] = []
        self._notice: Optional[Notice] = None
        self._listeners: List[StatusListener] = []

    # ------------------------------------------------------------------ #
    # status
    # ------------------------------------------------------------------ #
    def set_status(self, new_status: SessionStatus):
        """Status setter with logging and listener notification"""
        old_status = self.status
        if old_status == new_status:
            return
        self.status = new_status
        logger.info(f"Status transition: {old_status.value} -> {new_status.value}")
        for listener in list(self._listeners):
            try:
                listener(old_status, new_status)
            except Exception as e:
                logger.error(f"Status listener failed: {e}")

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register a status listener; returns a function that removes it"""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_mic_active(self, active: bool):
        if self.mic_active != active:
            self.mic_active = active
            logger.debug(f"Mic active: {active}")

    # ------------------------------------------------------------------ #
    # append-only logs
    # ------------------------------------------------------------------ #
    def add_message(self, role: str, text: str) -> ChatMessage:
        message = ChatMessage(role=role, text=text, timestamp=time.time())
        self.messages.append(message)
        logger.info(f"[{role}] {text}")
        return message

    def add_action(self, action_type: ActionType, content: str, status: str = "completed") -> SystemAction:
        action = SystemAction(
            id=new_id(),
            type=action_type,
            content=content,
            timestamp=time.time(),
            status=status,
        )
        self.actions.append(action)
        logger.info(f"System action {action_type.value}: {content} ({status})")
        return action

    def add_todo(self, text: str) -> TodoItem:
        todo = TodoItem(id=new_id(), text=text)
        self.todos.append(todo)
        return todo

    # ------------------------------------------------------------------ #
    # timers
    # ------------------------------------------------------------------ #
    def add_timer(self, duration: int, label: str) -> ActiveTimer:
        if duration <= 0:
            raise ValueError(f"Timer duration must be positive, got {duration}")
        timer = ActiveTimer(id=new_id(), duration=duration, remaining=duration, label=label)
        self.timers.append(timer)
        return timer

    def tick_timers(self) -> List[ActiveTimer]:
        """Advance every timer by one second; returns the timers that just finished"""
        finished = []
        for timer in self.timers:
            timer.remaining = max(0, timer.remaining - 1)
            if timer.remaining == 0:
                finished.append(timer)
        if finished:
            self.timers = [t for t in self.timers if t.remaining > 0]
            for timer in finished:
                logger.info(f"Timer '{timer.label}' finished")
        return finished

    # ------------------------------------------------------------------ #
    # user notices
    # ------------------------------------------------------------------ #
    def post_notice(self, message: str, ttl: float = 5.0):
        self._notice = Notice(message=message, expires_at=time.monotonic() + ttl)
        logger.warning(f"Notice: {message}")

    @property
    def current_notice(self) -> Optional[str]:
        if self._notice and time.monotonic() < self._notice.expires_at:
            return self._notice.message
        return None

    def snapshot(self) -> StateView:
        return StateView(
            status=self.status,
            mic_active=self.mic_active,
            messages=tuple(self.messages),
            actions=tuple(self.actions),
            todos=tuple(TodoItem(t.id, t.text, t.completed) for t in self.todos),
            timers=tuple(ActiveTimer(t.id, t.duration, t.remaining, t.label) for t in self.timers),
            notice=self.current_notice,
        )
