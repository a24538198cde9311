# jarvis_link/session.py
"""
Live session lifecycle: microphone out, model events in, one session at a time.
"""

import asyncio
import logging
from typing import Callable, Optional, Set

from .audio import MicrophoneStream, create_pcm_blob, decode_pcm_chunk
from .config import Config
from .errors import ConfigurationError, DeviceError, LinkError
from .model_providers.base import LiveConnection, LiveEvent, LiveEventType, LiveProvider
from .playback import AudioPlaybackScheduler, PlaybackDevice, SoundDeviceOutput
from .protocols import ProtocolEngine
from .state import SessionState, SessionStatus, Tone, build_system_instruction
from .tools import TOOL_DECLARATIONS, ToolDispatcher
from .utils import CancelToken

logger = logging.getLogger(__name__)

LINK_ERROR_NOTICE = "Link compromised. Recalibrating..."
TERMINAL_EVENTS = (LiveEventType.ERROR, LiveEventType.CLOSED)


class LiveSessionManager:
    """Owns the single live session handle and everything attached to it"""

    def __init__(
        self,
        config: Config,
        state: SessionState,
        provider_factory: Callable[[], LiveProvider],
        dispatcher: ToolDispatcher,
        protocols: ProtocolEngine,
        tone_getter: Callable[[], Tone],
        process_token: CancelToken,
        microphone_factory: Optional[Callable[[], MicrophoneStream]] = None,
        playback_factory: Optional[Callable[[int], PlaybackDevice]] = None,
    ):
        self.config = config
        self.state = state
        self.provider_factory = provider_factory
        self.dispatcher = dispatcher
        self.protocols = protocols
        self.tone_getter = tone_getter
        self.process_token = process_token
        self.microphone_factory = microphone_factory or (
            lambda: MicrophoneStream(config.input_sample_rate, config.input_frame_size)
        )
        self.playback_factory = playback_factory or SoundDeviceOutput

        self.connection: Optional[LiveConnection] = None
        self.provider: Optional[LiveProvider] = None
        self.microphone: Optional[MicrophoneStream] = None
        self.device: Optional[PlaybackDevice] = None
        self.scheduler: Optional[AudioPlaybackScheduler] = None
        self._session_token: Optional[CancelToken] = None
        self._inbound: Optional[asyncio.Queue] = None
        self._starting = False
        self._tasks: Set[asyncio.Task] = set()

    @property
    def is_active(self) -> bool:
        return self.connection is not None or self._starting

    # ------------------------------------------------------------------ #
    # start / stop
    # ------------------------------------------------------------------ #
    def request_start(self) -> bool:
        """Synchronously claim the session slot and schedule the open.

        Returns False (and does nothing) while a session is held or opening.
        """
        token = self._claim()
        if token is None:
            return False
        self._track(asyncio.create_task(self._open_session(token), name="session-open"))
        return True

    async def start(self) -> bool:
        """Open a session and wait until it is established; False if it could not be opened"""
        token = self._claim()
        if token is None:
            return False
        return await self._open_session(token)

    def _claim(self) -> Optional[CancelToken]:
        if self.is_active or self.process_token.cancelled:
            return None
        self._starting = True
        self._session_token = self.process_token.child("session")
        self.state.set_status(SessionStatus.LISTENING)
        return self._session_token

    async def stop(self):
        """User-initiated termination"""
        if not self.is_active:
            return
        logger.info("Terminating link")
        await self._release()

    def toggle(self):
        if self.is_active:
            self._track(asyncio.create_task(self.stop(), name="session-stop"))
        else:
            self.request_start()

    async def _open_session(self, token: CancelToken) -> bool:
        if token.cancelled:
            return False
        try:
            provider = self.provider_factory()
            self.provider = provider

            self.microphone = self.microphone_factory()
            self.microphone.open()

            self.device = self.playback_factory(provider.output_sample_rate)
            self.device.open()
            self.scheduler = AudioPlaybackScheduler(
                self.device, token, on_drained=lambda: self._on_drained(token)
            )

            instructions = build_system_instruction(self.tone_getter())
            connection = await provider.connect(instructions, TOOL_DECLARATIONS, self.config.voice_name)
        except ConfigurationError as e:
            logger.error(f"❌ Cannot start session: {e}")
            await self._abort_start(token, str(e))
            return False
        except DeviceError as e:
            logger.error(f"❌ Audio device error: {e}")
            await self._abort_start(token, str(e))
            return False
        except LinkError as e:
            logger.error(f"❌ {e}")
            await self._abort_start(token, LINK_ERROR_NOTICE)
            return False
        except Exception as e:
            logger.error(f"❌ Failed to open live session: {e}")
            await self._abort_start(token, LINK_ERROR_NOTICE)
            return False

        if token.cancelled:
            # stopped while the connection was opening
            await self._close_quietly(connection)
            return False

        self.connection = connection
        self._starting = False
        self._inbound = asyncio.Queue()
        self._track(asyncio.create_task(self._pump_outbound(connection, self.microphone, token), name="session-out"))
        self._track(asyncio.create_task(self._read_events(connection, self._inbound), name="session-in"))
        self._track(asyncio.create_task(self._process_inbound(self._inbound, token), name="session-events"))
        logger.info("🔗 Link established")
        return True

    async def _abort_start(self, token: CancelToken, notice: str):
        if self._session_token is token:
            await self._release(notice=notice)
        else:
            token.cancel()

    # ------------------------------------------------------------------ #
    # outbound
    # ------------------------------------------------------------------ #
    async def _pump_outbound(self, connection: LiveConnection, microphone: MicrophoneStream, token: CancelToken):
        sample_rate = self.config.input_sample_rate
        try:
            async for frame in microphone.frames():
                if token.cancelled:
                    break
                await connection.send_audio(create_pcm_blob(frame, sample_rate))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if token.active and self._inbound is not None:
                logger.error(f"Failed to send audio: {e}")
                self._inbound.put_nowait(LiveEvent(LiveEventType.ERROR, text=str(e)))

    # ------------------------------------------------------------------ #
    # inbound
    # ------------------------------------------------------------------ #
    async def _read_events(self, connection: LiveConnection, queue: asyncio.Queue):
        try:
            async for event in connection.events():
                queue.put_nowait(event)
                if event.type in TERMINAL_EVENTS:
                    return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            queue.put_nowait(LiveEvent(LiveEventType.ERROR, text=str(e)))
            return
        queue.put_nowait(LiveEvent(LiveEventType.CLOSED))

    async def _process_inbound(self, queue: asyncio.Queue, token: CancelToken):
        while True:
            event = await queue.get()
            if token.cancelled:
                return
            try:
                await self.handle_event(event, token)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"❌ Failed to handle {event.type.value} event: {e}", exc_info=True)
                await self._release(notice=LINK_ERROR_NOTICE)
                return
            if event.type in TERMINAL_EVENTS:
                return

    async def handle_event(self, event: LiveEvent, token: CancelToken):
        """Apply one inbound event to local state"""
        if event.type == LiveEventType.AUDIO_CHUNK:
            if self.scheduler is not None and event.audio:
                self.scheduler.enqueue(decode_pcm_chunk(event.audio), self.provider.output_sample_rate)
                self.state.set_status(SessionStatus.SPEAKING)

        elif event.type == LiveEventType.INPUT_TRANSCRIPT:
            self.state.add_message("user", event.text)
            self.protocols.handle_transcript(event.text, token)

        elif event.type == LiveEventType.OUTPUT_TRANSCRIPT:
            self.state.add_message("assistant", event.text)

        elif event.type == LiveEventType.TOOL_CALL:
            for call in event.tool_calls:
                result = self.dispatcher.dispatch(call, token)
                connection = self.connection
                if connection is None or token.cancelled:
                    return
                try:
                    await connection.send_tool_result(call.id, call.name, result)
                except Exception as e:
                    logger.error(f"Failed to send result for {call.name}: {e}")

        elif event.type == LiveEventType.INTERRUPTED:
            logger.info("✋ Model output interrupted")
            if self.scheduler is not None:
                self.scheduler.interrupt()
            self.state.set_status(SessionStatus.IDLE)

        elif event.type == LiveEventType.ERROR:
            logger.error(f"Link error: {event.text}")
            await self._release(notice=LINK_ERROR_NOTICE)

        elif event.type == LiveEventType.CLOSED:
            logger.info("Link closed")
            await self._release()

    def _on_drained(self, token: CancelToken):
        if token.active and self.state.status == SessionStatus.SPEAKING:
            self.state.set_status(SessionStatus.IDLE)

    # ------------------------------------------------------------------ #
    # release
    # ------------------------------------------------------------------ #
    async def _release(self, notice: Optional[str] = None):
        """Tear down everything the session holds; safe to call more than once"""
        token = self._session_token
        if token is None:
            return
        self._session_token = None
        token.cancel()

        connection, self.connection = self.connection, None
        self._starting = False
        self._inbound = None

        if self.microphone is not None:
            self.microphone.close()
            self.microphone = None
        if self.scheduler is not None:
            self.scheduler.interrupt()
            self.scheduler = None
        if self.device is not None:
            self.device.close()
            self.device = None

        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()

        if connection is not None:
            await self._close_quietly(connection)

        self.state.set_status(SessionStatus.IDLE)
        if notice:
            self.state.post_notice(notice, self.config.notice_seconds)
        logger.info("Link released")

    async def _close_quietly(self, connection: LiveConnection):
        try:
            await connection.close()
        except Exception as e:
            logger.debug(f"Ignoring error while closing link: {e}")

    def _track(self, task: asyncio.Task):
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
