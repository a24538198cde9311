# jarvis_link/model_providers/gemini_live.py
"""
Gemini Live implementation of the live provider
"""

import asyncio
import logging
from contextlib import AsyncExitStack
from typing import Any, AsyncIterator, Dict, List, Optional

from ..audio import PcmBlob
from ..errors import LinkError
from ..tools import ToolCall
from .base import LiveConnection, LiveEvent, LiveEventType, LiveProvider

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash-native-audio-preview-12-2025"
DEFAULT_VOICE = "Charon"


def to_gemini_schema(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a JSON-schema dict to Gemini's schema dialect (upper-case type names)"""
    converted: Dict[str, Any] = {}
    for key, value in schema.items():
        if key == "type" and isinstance(value, str):
            converted[key] = value.upper()
        elif key == "properties" and isinstance(value, dict):
            converted[key] = {name: to_gemini_schema(prop) for name, prop in value.items()}
        elif key == "items" and isinstance(value, dict):
            converted[key] = to_gemini_schema(value)
        else:
            converted[key] = value
    return converted


class GeminiLiveConnection(LiveConnection):
    """Wraps a google-genai AsyncSession.

    Gemini streams transcription in fragments; they are buffered and emitted
    as one finalized transcript per turn.
    """

    def __init__(self, session, exit_stack: AsyncExitStack):
        self.session = session
        self._exit_stack = exit_stack
        self._closed = False
        self._input_parts: List[str] = []
        self._output_parts: List[str] = []

    async def send_audio(self, blob: PcmBlob) -> None:
        from google.genai import types

        await self.session.send_realtime_input(
            audio=types.Blob(data=blob.pcm, mime_type=blob.mime_type),
        )

    async def send_tool_result(self, call_id: str, name: str, result: str) -> None:
        from google.genai import types

        await self.session.send_tool_response(
            function_responses=[
                types.FunctionResponse(id=call_id, name=name, response={"result": result})
            ]
        )

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._exit_stack.aclose()
        except Exception as e:
            logger.debug(f"Error closing Gemini session: {e}")

    async def events(self) -> AsyncIterator[LiveEvent]:
        from websockets.exceptions import ConnectionClosedOK

        try:
            while not self._closed:
                received = 0
                # receive() yields the messages of one model turn, then returns
                async for message in self.session.receive():
                    received += 1
                    for event in self._translate(message):
                        yield event
                if received == 0:
                    break
        except ConnectionClosedOK:
            logger.info("Gemini session closed by server")
        except Exception as e:
            if not self._closed:
                logger.error(f"Gemini session error: {e}")
                yield LiveEvent(LiveEventType.ERROR, text=str(e))
                return
        yield LiveEvent(LiveEventType.CLOSED)

    # ------------------------------------------------------------------ #
    def _flush_input(self) -> List[LiveEvent]:
        text = "".join(self._input_parts).strip()
        self._input_parts = []
        return [LiveEvent(LiveEventType.INPUT_TRANSCRIPT, text=text)] if text else []

    def _flush_output(self) -> List[LiveEvent]:
        text = "".join(self._output_parts).strip()
        self._output_parts = []
        return [LiveEvent(LiveEventType.OUTPUT_TRANSCRIPT, text=text)] if text else []

    def _translate(self, message) -> List[LiveEvent]:
        events: List[LiveEvent] = []

        server_content = getattr(message, "server_content", None)
        if server_content:
            transcription = getattr(server_content, "input_transcription", None)
            if transcription and getattr(transcription, "text", None):
                self._input_parts.append(transcription.text)

            model_turn = getattr(server_content, "model_turn", None)
            if model_turn and model_turn.parts:
                for part in model_turn.parts:
                    inline_data = getattr(part, "inline_data", None)
                    if inline_data and inline_data.data:
                        events.extend(self._flush_input())
                        events.append(LiveEvent(LiveEventType.AUDIO_CHUNK, audio=inline_data.data))

            transcription = getattr(server_content, "output_transcription", None)
            if transcription and getattr(transcription, "text", None):
                events.extend(self._flush_input())
                self._output_parts.append(transcription.text)

            if getattr(server_content, "interrupted", False):
                events.extend(self._flush_input())
                events.extend(self._flush_output())
                events.append(LiveEvent(LiveEventType.INTERRUPTED))

            if getattr(server_content, "turn_complete", False):
                events.extend(self._flush_input())
                events.extend(self._flush_output())

        tool_call = getattr(message, "tool_call", None)
        if tool_call and tool_call.function_calls:
            events.extend(self._flush_input())
            calls = [
                ToolCall(id=fc.id or "", name=fc.name or "", args=dict(fc.args or {}))
                for fc in tool_call.function_calls
            ]
            events.append(LiveEvent(LiveEventType.TOOL_CALL, tool_calls=calls))

        if getattr(message, "go_away", None):
            logger.warning(f"Gemini session ending soon: {message.go_away}")

        return events


class GeminiLiveProvider(LiveProvider):
    """Gemini Live: 16 kHz PCM in, 24 kHz PCM out"""

    input_sample_rate = 16000
    output_sample_rate = 24000

    def __init__(self, api_key: str, model: Optional[str] = None):
        self.api_key = api_key
        self.model = model or DEFAULT_MODEL
        self._client = None

    def _get_client(self):
        if self._client is None:
            from google import genai

            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def build_config(self, instructions: str, tools: List[Dict[str, Any]], voice: Optional[str]):
        from google.genai import types

        declarations = [
            types.FunctionDeclaration(
                name=decl["name"],
                description=decl.get("description", ""),
                parameters=to_gemini_schema(decl["parameters"]),
            )
            for decl in tools
        ]
        return types.LiveConnectConfig(
            response_modalities=["AUDIO"],
            system_instruction=types.Content(parts=[types.Part(text=instructions)]),
            speech_config=types.SpeechConfig(
                voice_config=types.VoiceConfig(
                    prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=voice or DEFAULT_VOICE)
                )
            ),
            tools=[types.Tool(function_declarations=declarations)],
            input_audio_transcription=types.AudioTranscriptionConfig(),
            output_audio_transcription=types.AudioTranscriptionConfig(),
        )

    async def connect(self, instructions, tools, voice=None) -> LiveConnection:
        config = self.build_config(instructions, tools, voice)
        exit_stack = AsyncExitStack()
        try:
            session = await exit_stack.enter_async_context(
                self._get_client().aio.live.connect(model=self.model, config=config)
            )
        except asyncio.CancelledError:
            await exit_stack.aclose()
            raise
        except Exception as e:
            await exit_stack.aclose()
            raise LinkError(f"Gemini Live connection failed: {e}") from e
        logger.info(f"✅ Connected to Gemini Live ({self.model})")
        return GeminiLiveConnection(session, exit_stack)
