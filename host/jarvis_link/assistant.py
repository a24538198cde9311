# jarvis_link/assistant.py
"""
Top-level wiring: one process-wide state, session manager, wake-word monitor
and timer ticker on a single event loop.
"""

import asyncio
import logging
from typing import Callable, List, Optional, Sequence, Set, Union

from .config import Config
from .desktop import DesktopActionExecutor, SystemActionExecutor
from .model_providers import LiveProvider, ModelProviderFactory
from .playback import PlaybackDevice
from .protocols import ProtocolEngine
from .recognition import RecognitionEngine, VoskRecognitionEngine
from .session import LiveSessionManager
from .state import CustomProtocol, ProtocolAction, SessionState, Tone
from .store import (
    ConfigStore,
    JsonConfigStore,
    load_activation_phrase,
    load_protocols,
    load_tone,
    save_activation_phrase,
    save_protocols,
    save_tone,
)
from .tools import ToolDispatcher
from .utils import CancelToken, new_id
from .wake_word import WakeWordMonitor

logger = logging.getLogger(__name__)


class JarvisAssistant:
    def __init__(
        self,
        config: Config,
        store: Optional[ConfigStore] = None,
        executor: Optional[SystemActionExecutor] = None,
        engine: Optional[RecognitionEngine] = None,
        provider_factory: Optional[Callable[[], LiveProvider]] = None,
        microphone_factory=None,
        playback_factory: Optional[Callable[[int], PlaybackDevice]] = None,
    ):
        self.config = config
        self.store = store or JsonConfigStore(config.config_store_path)
        store = self.store

        self.state = SessionState()
        self.token = CancelToken(name="process")

        self.tone = load_tone(store)
        self.activation_phrase = load_activation_phrase(store)
        self.protocols: List[CustomProtocol] = load_protocols(store)
        logger.info(
            f"Loaded settings: tone={self.tone.value}, phrase='{self.activation_phrase}', "
            f"{len(self.protocols)} protocols"
        )

        self.dispatcher = ToolDispatcher(
            self.state,
            executor or DesktopActionExecutor(),
            self.token,
            executing_beat=config.executing_beat,
        )
        self.protocol_engine = ProtocolEngine(
            self.dispatcher, self.protocols, step_interval=config.protocol_step_interval
        )
        self.session = LiveSessionManager(
            config,
            self.state,
            provider_factory or (lambda: ModelProviderFactory.create_live_provider(config)),
            self.dispatcher,
            self.protocol_engine,
            lambda: self.tone,
            self.token,
            microphone_factory=microphone_factory,
            playback_factory=playback_factory,
        )

        self.wake_monitor: Optional[WakeWordMonitor] = None
        if config.wake_word_enabled:
            self.wake_monitor = WakeWordMonitor(
                self.state,
                engine or VoskRecognitionEngine(
                    config.vosk_model_path,
                    sample_rate=config.input_sample_rate,
                    max_session_seconds=config.recognition_max_session,
                ),
                self.session.request_start,
                activation_phrase=self.activation_phrase,
                restart_delay=config.wake_restart_delay,
                network_retry_delay=config.wake_network_retry_delay,
            )

        self._shutdown_event: Optional[asyncio.Event] = None
        self._tasks: Set[asyncio.Task] = set()
        self._shut_down = False

    # ------------------------------------------------------------------ #
    # run loop
    # ------------------------------------------------------------------ #
    async def run(self):
        """Run until request_shutdown() is called"""
        self._shutdown_event = asyncio.Event()
        self.start_background_tasks()
        logger.info("🤖 JARVIS online")
        try:
            await self._shutdown_event.wait()
        finally:
            await self.shutdown()

    def start_background_tasks(self):
        self._spawn(self._tick_timers(), "timer-ticker")
        if self.wake_monitor is not None:
            self._spawn(self._activate_wake_word(), "wake-activation")

    def request_shutdown(self):
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    async def _tick_timers(self):
        """Tick once per interval; the schedule is anchored so delays do not accumulate"""
        loop = asyncio.get_running_loop()
        interval = self.config.timer_tick_interval
        next_tick = loop.time() + interval
        while self.token.active:
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            if self.token.cancelled:
                return
            self.state.tick_timers()
            next_tick += interval

    async def _activate_wake_word(self):
        await asyncio.sleep(self.config.startup_delay)
        if self.token.active and self.wake_monitor is not None:
            self.wake_monitor.activate()

    async def shutdown(self):
        if self._shut_down:
            return
        self._shut_down = True
        logger.info("Shutting down...")
        self.token.cancel()
        await self.session.stop()
        if self.wake_monitor is not None:
            self.wake_monitor.teardown()
        self.protocol_engine.cancel_all()
        self.dispatcher.cancel_pending()

        current = asyncio.current_task()
        tasks = [t for t in self._tasks if t is not current]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Shutdown complete")

    def _spawn(self, coro, name: str):
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ------------------------------------------------------------------ #
    # settings (write-through to the store)
    # ------------------------------------------------------------------ #
    def save_protocol(
        self,
        name: str,
        trigger_phrase: str,
        actions: Sequence[ProtocolAction],
        protocol_id: Optional[str] = None,
    ) -> CustomProtocol:
        """Create a protocol, or replace the one with protocol_id"""
        if not name or not name.strip():
            raise ValueError("Protocol name is required")
        if not trigger_phrase or not trigger_phrase.strip():
            raise ValueError("Trigger phrase is required")
        if not actions:
            raise ValueError("A protocol needs at least one action")

        protocol = CustomProtocol(
            id=protocol_id or new_id(),
            name=name.strip(),
            trigger_phrase=trigger_phrase.strip().lower(),
            actions=tuple(actions),
        )
        for index, existing in enumerate(self.protocols):
            if existing.id == protocol.id:
                self.protocols[index] = protocol
                break
        else:
            self.protocols.append(protocol)
        self._persist_protocols()
        logger.info(f"Saved protocol '{protocol.name}' (trigger: '{protocol.trigger_phrase}')")
        return protocol

    def delete_protocol(self, protocol_id: str) -> bool:
        remaining = [p for p in self.protocols if p.id != protocol_id]
        if len(remaining) == len(self.protocols):
            return False
        self.protocols = remaining
        self._persist_protocols()
        return True

    def _persist_protocols(self):
        save_protocols(self.store, self.protocols)
        self.protocol_engine.set_protocols(self.protocols)

    def set_tone(self, tone: Union[Tone, str]):
        """Takes effect when the next session opens"""
        if not isinstance(tone, Tone):
            tone = Tone.parse(tone)
        self.tone = tone
        save_tone(self.store, tone)
        logger.info(f"Tone set to {tone.value}")

    def set_activation_phrase(self, phrase: str):
        if not phrase or not phrase.strip():
            raise ValueError("Activation phrase cannot be empty")
        phrase = phrase.strip()
        self.activation_phrase = phrase
        save_activation_phrase(self.store, phrase)
        if self.wake_monitor is not None:
            self.wake_monitor.set_activation_phrase(phrase)
