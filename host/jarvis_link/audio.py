# jarvis_link/audio.py
"""
Microphone capture and the PCM wire codec
"""

import asyncio
import base64
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import numpy as np

from .errors import DeviceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PcmBlob:
    """One outbound audio frame: base64 16-bit little-endian PCM plus its MIME type"""
    data: str
    mime_type: str

    @property
    def pcm(self) -> bytes:
        return base64.b64decode(self.data)


def float_to_pcm16(samples: np.ndarray) -> bytes:
    """Convert float samples in [-1, 1] to 16-bit little-endian PCM"""
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    return (clipped * 32767.0).astype("<i2").tobytes()


def create_pcm_blob(samples: np.ndarray, sample_rate: int) -> PcmBlob:
    return PcmBlob(
        data=base64.b64encode(float_to_pcm16(samples)).decode("ascii"),
        mime_type=f"audio/pcm;rate={sample_rate}",
    )


def decode_pcm_chunk(data: bytes, channels: int = 1) -> np.ndarray:
    """Decode 16-bit little-endian PCM into float32 samples (frames x channels when channels > 1)"""
    if len(data) % 2:
        logger.warning("Dropping trailing byte from odd-length PCM chunk")
        data = data[:-1]
    samples = np.frombuffer(data, dtype="<i2").astype(np.float32) / 32768.0
    if channels > 1:
        frames = len(samples) // channels
        samples = samples[: frames * channels].reshape(frames, channels)
    return samples


def resample(samples: np.ndarray, source_rate: int, target_rate: int) -> np.ndarray:
    """Linear-interpolation resampler for mono frames"""
    if source_rate == target_rate or len(samples) == 0:
        return samples
    duration = len(samples) / source_rate
    target_len = int(round(duration * target_rate))
    source_x = np.arange(len(samples)) / source_rate
    target_x = np.arange(target_len) / target_rate
    return np.interp(target_x, source_x, samples).astype(np.float32)


class MicrophoneStream:
    """Captures fixed-size mono frames and hands them to the event loop.

    Holds at most one frame: if the consumer falls behind, the older frame
    is replaced by the newer one.
    """

    def __init__(self, sample_rate: int = 16000, frame_size: int = 4096):
        self.sample_rate = sample_rate
        self.frame_size = frame_size
        self.stream = None
        self._queue: "asyncio.Queue[Optional[np.ndarray]]" = asyncio.Queue(maxsize=1)
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._closed = False
        self.dropped_frames = 0

    def open(self):
        """Start capturing; raises DeviceError when the microphone is unavailable"""
        import sounddevice as sd

        self._loop = asyncio.get_running_loop()
        try:
            self.stream = sd.InputStream(
                samplerate=self.sample_rate,
                blocksize=self.frame_size,
                dtype="float32",
                channels=1,
                callback=self._audio_callback,
            )
            self.stream.start()
        except Exception as e:
            self.stream = None
            raise DeviceError(f"Microphone unavailable: {e}") from e
        logger.info(f"Microphone capture started at {self.sample_rate} Hz")

    def _audio_callback(self, indata, frames, time_info, status):
        """PortAudio thread callback"""
        if status:
            logger.warning(f"Audio callback status: {status}")
        if self._closed or self._loop is None:
            return
        self._loop.call_soon_threadsafe(self._push, indata[:, 0].copy())

    def _push(self, frame: Optional[np.ndarray]):
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped_frames += 1
        self._queue.put_nowait(frame)

    async def frames(self) -> AsyncIterator[np.ndarray]:
        """Yield captured frames in capture order until the stream is closed"""
        while True:
            frame = await self._queue.get()
            if frame is None:
                return
            yield frame

    def close(self):
        if self._closed:
            return
        self._closed = True
        if self.stream is not None:
            try:
                self.stream.stop()
                self.stream.close()
            except Exception as e:
                logger.debug(f"Error closing microphone stream: {e}")
            self.stream = None
        # Wake any consumer blocked in frames()
        self._push(None)
        logger.info("Microphone capture stopped")
