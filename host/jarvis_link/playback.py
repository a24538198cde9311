# jarvis_link/playback.py
"""
Gapless playback of independently-arriving speech chunks.

The scheduler keeps one monotonic clock: each chunk starts at the later of
"now" on the device and the end of the previous chunk, so chunks play in
arrival order with no gaps and no overlap.
"""

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Set

import numpy as np

from .errors import DeviceError
from .utils import CancelToken

logger = logging.getLogger(__name__)


class PlaybackHandle:
    """One scheduled chunk on a playback device"""

    def __init__(self, device: "PlaybackDevice", start_at: float, duration: float,
                 on_ended: Callable[["PlaybackHandle"], None]):
        self.device = device
        self.start_at = start_at
        self.duration = duration
        self.on_ended = on_ended
        self.stopped = False
        self.finished = False

    @property
    def end_at(self) -> float:
        return self.start_at + self.duration

    def stop(self):
        """Stop playback immediately; on_ended is not fired for a stopped chunk"""
        if self.stopped or self.finished:
            return
        self.stopped = True
        self.device.cancel(self)

    def finish(self):
        """Called on the event loop once the device has rendered the whole chunk"""
        if self.stopped or self.finished:
            return
        self.finished = True
        self.on_ended(self)


class PlaybackDevice(ABC):
    """Output device with a continuously advancing clock in seconds"""

    @property
    @abstractmethod
    def current_time(self) -> float:
        pass

    @abstractmethod
    def schedule(self, samples: np.ndarray, start_at: float,
                 on_ended: Callable[[PlaybackHandle], None]) -> PlaybackHandle:
        pass

    @abstractmethod
    def cancel(self, handle: PlaybackHandle) -> None:
        pass

    def open(self) -> None:
        pass

    def close(self) -> None:
        pass


class _ScheduledChunk:
    __slots__ = ("handle", "samples", "start_frame")

    def __init__(self, handle: PlaybackHandle, samples: np.ndarray, start_frame: int):
        self.handle = handle
        self.samples = samples
        self.start_frame = start_frame

    @property
    def end_frame(self) -> int:
        return self.start_frame + len(self.samples)


class SoundDeviceOutput(PlaybackDevice):
    """sounddevice output stream that mixes scheduled chunks at their sample offsets"""

    def __init__(self, sample_rate: int = 24000):
        self.sample_rate = sample_rate
        self.stream = None
        self._frames_rendered = 0
        self._chunks: List[_ScheduledChunk] = []
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def current_time(self) -> float:
        return self._frames_rendered / self.sample_rate

    def open(self):
        import sounddevice as sd

        self._loop = asyncio.get_running_loop()
        try:
            self.stream = sd.OutputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                callback=self._audio_callback,
            )
            self.stream.start()
        except Exception as e:
            self.stream = None
            raise DeviceError(f"Audio output unavailable: {e}") from e
        logger.info(f"Playback device opened at {self.sample_rate} Hz")

    def schedule(self, samples, start_at, on_ended):
        samples = np.asarray(samples, dtype=np.float32).reshape(-1)
        handle = PlaybackHandle(self, start_at, len(samples) / self.sample_rate, on_ended)
        chunk = _ScheduledChunk(handle, samples, int(round(start_at * self.sample_rate)))
        with self._lock:
            self._chunks.append(chunk)
        return handle

    def cancel(self, handle):
        with self._lock:
            self._chunks = [c for c in self._chunks if c.handle is not handle]

    def _audio_callback(self, outdata, frames, time_info, status):
        """PortAudio thread callback"""
        if status:
            logger.debug(f"Playback callback status: {status}")
        outdata.fill(0)
        block_start = self._frames_rendered
        block_end = block_start + frames
        finished = []
        with self._lock:
            remaining = []
            for chunk in self._chunks:
                lo = max(chunk.start_frame, block_start)
                hi = min(chunk.end_frame, block_end)
                if lo < hi:
                    outdata[lo - block_start:hi - block_start, 0] += \
                        chunk.samples[lo - chunk.start_frame:hi - chunk.start_frame]
                if chunk.end_frame <= block_end:
                    finished.append(chunk.handle)
                else:
                    remaining.append(chunk)
            self._chunks = remaining
        self._frames_rendered = block_end
        if finished and self._loop is not None:
            for handle in finished:
                self._loop.call_soon_threadsafe(handle.finish)

    def close(self):
        with self._lock:
            self._chunks = []
        if self.stream is not None:
            try:
                self.stream.stop()
                self.stream.close()
            except Exception as e:
                logger.debug(f"Error closing playback stream: {e}")
            self.stream = None
            logger.info("Playback device closed")


class AudioPlaybackScheduler:
    def __init__(
        self,
        device: PlaybackDevice,
        token: CancelToken,
        on_drained: Optional[Callable[[], None]] = None,
    ):
        self.device = device
        self.token = token
        self.on_drained = on_drained
        self.clock = 0.0
        self.in_flight: Set[PlaybackHandle] = set()

    @property
    def is_playing(self) -> bool:
        return bool(self.in_flight)

    def enqueue(self, samples: np.ndarray, sample_rate: int) -> Optional[PlaybackHandle]:
        """Schedule a decoded chunk right after the previous one (or now, if that has passed)"""
        if self.token.cancelled:
            return None
        duration = len(samples) / sample_rate
        start_at = max(self.clock, self.device.current_time)
        handle = self.device.schedule(samples, start_at, self._on_chunk_ended)
        self.clock = start_at + duration
        self.in_flight.add(handle)
        logger.debug(f"Scheduled {duration:.3f}s chunk at {start_at:.3f}s ({len(self.in_flight)} in flight)")
        return handle

    def _on_chunk_ended(self, handle: PlaybackHandle):
        if self.token.cancelled:
            return
        self.in_flight.discard(handle)
        if not self.in_flight and self.on_drained:
            self.on_drained()

    def interrupt(self):
        """Stop everything in flight and reset the clock"""
        count = len(self.in_flight)
        for handle in list(self.in_flight):
            handle.stop()
        self.in_flight.clear()
        self.clock = 0.0
        if count:
            logger.info(f"Playback interrupted, stopped {count} chunks")
