# jarvis_link/wake_word.py
"""
Wake-word monitor: keeps a local recognizer running while the assistant is
idle and requests a live session when the activation phrase is heard.
"""

import asyncio
import logging
import re
from enum import Enum
from typing import Callable, List, Optional, Pattern

from .errors import (
    RecognitionNetworkError,
    RecognitionTransientError,
    classify_recognition_error,
)
from .recognition import RecognitionEngine
from .state import SessionState, SessionStatus

logger = logging.getLogger(__name__)


def build_activation_pattern(phrase: str) -> Pattern:
    """Case-insensitive whole-word match for the phrase, its 'hey'/'yo' forms, and 'jarvis'"""
    p = re.escape(phrase.strip().lower())
    return re.compile(rf"\b({p}|hey {p}|yo {p}|jarvis|hey jarvis)\b", re.IGNORECASE)


class MonitorState(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    RETRYING = "retrying"


class WakeWordMonitor:
    def __init__(
        self,
        state: SessionState,
        engine: RecognitionEngine,
        on_activate: Callable[[], None],
        activation_phrase: str = "Jarvis",
        restart_delay: float = 0.1,
        network_retry_delay: float = 2.0,
    ):
        self.state = state
        self.engine = engine
        self.on_activate = on_activate
        self.restart_delay = restart_delay
        self.network_retry_delay = network_retry_delay
        self.activation_phrase = activation_phrase
        self.pattern = build_activation_pattern(activation_phrase)
        self.fsm = MonitorState.STOPPED
        self.runnable = False
        self._retry_handle: Optional[asyncio.TimerHandle] = None

        engine.bind(
            on_started=self._on_started,
            on_result=self._on_result,
            on_error=self._on_error,
            on_ended=self._on_ended,
        )

    def set_activation_phrase(self, phrase: str):
        self.activation_phrase = phrase
        self.pattern = build_activation_pattern(phrase)
        logger.info(f"Activation phrase set to '{phrase}'")

    @property
    def retry_pending(self) -> bool:
        return self._retry_handle is not None

    # ------------------------------------------------------------------ #
    # lifecycle
    # ------------------------------------------------------------------ #
    def activate(self):
        """Called once initialization is complete"""
        self.runnable = True
        self._start()

    def _start(self):
        if not self.runnable or self.fsm in (MonitorState.STARTING, MonitorState.RUNNING):
            return
        self.fsm = MonitorState.STARTING
        try:
            self.engine.start()
        except Exception as e:
            logger.debug(f"Recognition start failed: {e}")
            self.fsm = MonitorState.STOPPED

    def _schedule_retry(self, delay: float):
        if self._retry_handle is not None:
            self._retry_handle.cancel()
        self.fsm = MonitorState.RETRYING
        loop = asyncio.get_running_loop()
        self._retry_handle = loop.call_later(delay, self._retry)

    def _retry(self):
        self._retry_handle = None
        if self.fsm == MonitorState.RETRYING:
            self.fsm = MonitorState.STOPPED
        self._start()

    def teardown(self):
        self.runnable = False
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None
        try:
            self.engine.stop()
        except Exception as e:
            logger.debug(f"Ignoring error while stopping recognition: {e}")
        self.fsm = MonitorState.STOPPED
        self.state.set_mic_active(False)

    # ------------------------------------------------------------------ #
    # engine events
    # ------------------------------------------------------------------ #
    def _on_started(self):
        self.fsm = MonitorState.RUNNING
        self.state.set_mic_active(True)
        logger.info("👂 Listening for wake word")

    def _on_result(self, transcripts: List[str], is_final: bool):
        if self.state.status != SessionStatus.IDLE:
            return
        for transcript in transcripts:
            if self.pattern.search(transcript):
                logger.info(f"🎯 Wake word detected in: '{transcript}'")
                self.on_activate()
                break

    def _on_error(self, code: str):
        if self.fsm == MonitorState.STARTING:
            self.fsm = MonitorState.STOPPED
        error_cls = classify_recognition_error(code)
        if error_cls is RecognitionTransientError:
            return

        logger.warning(f"Recognition error: {code}")
        self.state.set_mic_active(False)
        if error_cls is RecognitionNetworkError and self.runnable:
            self._schedule_retry(self.network_retry_delay)

    def _on_ended(self):
        self.state.set_mic_active(False)
        if self.retry_pending:
            # a network retry is already scheduled
            return
        self.fsm = MonitorState.STOPPED
        if self.runnable:
            self._schedule_retry(self.restart_delay)
