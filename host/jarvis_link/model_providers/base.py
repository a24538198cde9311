# jarvis_link/model_providers/base.py
"""
Base interfaces for live (bidirectional audio) model providers
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional

from ..audio import PcmBlob
from ..tools import ToolCall


class LiveEventType(Enum):
    AUDIO_CHUNK = "audio_chunk"
    INPUT_TRANSCRIPT = "input_transcript"
    OUTPUT_TRANSCRIPT = "output_transcript"
    TOOL_CALL = "tool_call"
    INTERRUPTED = "interrupted"
    ERROR = "error"
    CLOSED = "closed"


@dataclass
class LiveEvent:
    """One inbound event; audio is raw 16-bit PCM at the provider's output rate"""
    type: LiveEventType
    audio: Optional[bytes] = None
    text: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)


class LiveConnection(ABC):
    """Handle for one open streaming session"""

    @abstractmethod
    async def send_audio(self, blob: PcmBlob) -> None:
        """Send one encoded microphone frame"""
        pass

    @abstractmethod
    async def send_tool_result(self, call_id: str, name: str, result: str) -> None:
        """Return a tool call result keyed by the call's id and name"""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @abstractmethod
    def events(self) -> AsyncIterator[LiveEvent]:
        """Inbound events in arrival order; always ends with ERROR or CLOSED"""
        pass


class LiveProvider(ABC):
    """Opens streaming sessions against a remote conversational model"""

    input_sample_rate: int = 16000
    output_sample_rate: int = 24000

    @abstractmethod
    async def connect(
        self,
        instructions: str,
        tools: List[Dict[str, Any]],
        voice: Optional[str] = None,
    ) -> LiveConnection:
        """Open a session with the given system instruction and tool declarations"""
        pass
