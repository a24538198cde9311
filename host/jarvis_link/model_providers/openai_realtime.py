# jarvis_link/model_providers/openai_realtime.py
"""
OpenAI Realtime implementation of the live provider
"""

import asyncio
import base64
import json
import logging
from typing import AsyncIterator, List, Optional

from ..audio import PcmBlob, decode_pcm_chunk, float_to_pcm16, resample
from ..errors import LinkError
from ..tools import ToolCall
from .base import LiveConnection, LiveEvent, LiveEventType, LiveProvider

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-realtime"
DEFAULT_VOICE = "ash"
REALTIME_SAMPLE_RATE = 24000

AUDIO_DELTA_EVENTS = ("response.output_audio.delta", "response.audio.delta")
OUTPUT_TRANSCRIPT_EVENTS = ("response.output_audio_transcript.done", "response.audio_transcript.done")

# Server error events that leave the session usable
RECOVERABLE_ERROR_CODES = ("conversation_already_has_active_response", "input_audio_buffer_commit_empty")
RECOVERABLE_ERROR_MESSAGES = ("Conversation already has an active response", "buffer is empty")


class OpenAIRealtimeConnection(LiveConnection):
    """Wraps an AsyncRealtimeConnection; microphone frames are resampled to 24 kHz"""

    def __init__(self, connection, input_sample_rate: int = 16000):
        self.connection = connection
        self.input_sample_rate = input_sample_rate
        self._closed = False
        self._response_active = False
        self._response_pending = False

    async def send_audio(self, blob: PcmBlob) -> None:
        samples = decode_pcm_chunk(blob.pcm)
        samples = resample(samples, self.input_sample_rate, REALTIME_SAMPLE_RATE)
        await self.connection.input_audio_buffer.append(
            audio=base64.b64encode(float_to_pcm16(samples)).decode("ascii")
        )

    async def send_tool_result(self, call_id: str, name: str, result: str) -> None:
        await self.connection.conversation.item.create(
            item={"type": "function_call_output", "call_id": call_id, "output": result}
        )
        if self._response_active:
            # the model is still answering; ask again once it is done
            self._response_pending = True
        else:
            await self._request_response()

    async def _request_response(self):
        self._response_pending = False
        await self.connection.response.create()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.connection.close()
        except Exception as e:
            logger.debug(f"Error closing realtime connection: {e}")

    async def events(self) -> AsyncIterator[LiveEvent]:
        try:
            # Iteration ends quietly when the server closes normally
            async for event in self.connection:
                translated = self._translate(event)
                if translated is not None:
                    yield translated
                if self._response_pending and not self._response_active:
                    await self._request_response()
        except Exception as e:
            if not self._closed:
                logger.error(f"Realtime session error: {e}")
                yield LiveEvent(LiveEventType.ERROR, text=str(e))
                return
        yield LiveEvent(LiveEventType.CLOSED)

    def _translate(self, event) -> Optional[LiveEvent]:
        event_type = getattr(event, "type", "")

        if event_type == "response.created":
            self._response_active = True
            return None

        if event_type == "response.done":
            self._response_active = False
            return None

        if event_type in AUDIO_DELTA_EVENTS:
            return LiveEvent(LiveEventType.AUDIO_CHUNK, audio=base64.b64decode(event.delta))

        if event_type == "conversation.item.input_audio_transcription.completed":
            text = (event.transcript or "").strip()
            return LiveEvent(LiveEventType.INPUT_TRANSCRIPT, text=text) if text else None

        if event_type in OUTPUT_TRANSCRIPT_EVENTS:
            text = (event.transcript or "").strip()
            return LiveEvent(LiveEventType.OUTPUT_TRANSCRIPT, text=text) if text else None

        if event_type == "response.function_call_arguments.done":
            try:
                args = json.loads(event.arguments or "{}")
            except json.JSONDecodeError:
                logger.warning(f"Malformed arguments for {event.name}: {event.arguments!r}")
                args = {}
            call = ToolCall(id=event.call_id, name=event.name, args=args)
            return LiveEvent(LiveEventType.TOOL_CALL, tool_calls=[call])

        if event_type == "input_audio_buffer.speech_started":
            return LiveEvent(LiveEventType.INTERRUPTED)

        if event_type == "error":
            message = getattr(event.error, "message", None) or str(event.error)
            code = getattr(event.error, "code", None)
            if code in RECOVERABLE_ERROR_CODES or any(m in message for m in RECOVERABLE_ERROR_MESSAGES):
                logger.warning(f"Realtime API warning: {message}")
                if code == "conversation_already_has_active_response" or "active response" in message:
                    # the active response will still finish with response.done
                    self._response_pending = True
                return None
            logger.error(f"Realtime API error: {message}")
            return LiveEvent(LiveEventType.ERROR, text=message)

        return None


class OpenAIRealtimeProvider(LiveProvider):
    """OpenAI Realtime: 24 kHz PCM both ways, server-side VAD"""

    input_sample_rate = 16000
    output_sample_rate = REALTIME_SAMPLE_RATE

    def __init__(self, api_key: str, model: Optional[str] = None):
        self.api_key = api_key
        self.model = model or DEFAULT_MODEL
        self._client = None

    def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client

    def build_session(self, instructions: str, tools: List[dict], voice: Optional[str]) -> dict:
        audio_format = {"type": "audio/pcm", "rate": REALTIME_SAMPLE_RATE}
        return {
            "type": "realtime",
            "instructions": instructions,
            "output_modalities": ["audio"],
            "audio": {
                "input": {
                    "format": audio_format,
                    "transcription": {"model": "whisper-1"},
                    "turn_detection": {"type": "server_vad"},
                },
                "output": {"format": audio_format, "voice": voice or DEFAULT_VOICE},
            },
            "tools": [{"type": "function", **decl} for decl in tools],
        }

    async def connect(self, instructions, tools, voice=None) -> LiveConnection:
        manager = self._get_client().realtime.connect(model=self.model)
        try:
            connection = await manager.enter()
        except Exception as e:
            raise LinkError(f"OpenAI Realtime connection failed: {e}") from e
        try:
            await connection.session.update(session=self.build_session(instructions, tools, voice))
        except asyncio.CancelledError:
            await connection.close()
            raise
        except Exception as e:
            await connection.close()
            raise LinkError(f"OpenAI Realtime session update failed: {e}") from e
        logger.info(f"✅ Connected to OpenAI Realtime ({self.model})")
        return OpenAIRealtimeConnection(connection, self.input_sample_rate)
