# jarvis_link/recognition.py
"""
Local continuous speech recognition used for wake-word detection.

Engines report through four listener callbacks, always on the event loop:
started, result(transcripts, is_final), error(code) and ended.
"""

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from .errors import RecognitionOtherError

logger = logging.getLogger(__name__)

ResultCallback = Callable[[List[str], bool], None]


def _noop(*args):
    pass


class RecognitionEngine(ABC):
    """Continuous recognizer with a bounded run; emits ended when a run finishes"""

    def __init__(self):
        self.on_started: Callable[[], None] = _noop
        self.on_result: ResultCallback = _noop
        self.on_error: Callable[[str], None] = _noop
        self.on_ended: Callable[[], None] = _noop

    def bind(self, on_started, on_result, on_error, on_ended):
        self.on_started = on_started
        self.on_result = on_result
        self.on_error = on_error
        self.on_ended = on_ended

    @abstractmethod
    def start(self) -> None:
        """Begin a run; raises if the engine is already running or cannot start"""
        pass

    @abstractmethod
    def stop(self) -> None:
        pass


class VoskRecognitionEngine(RecognitionEngine):
    """vosk KaldiRecognizer fed from a sounddevice raw input stream"""

    _model_cache = {}

    def __init__(
        self,
        model_path: str,
        sample_rate: int = 16000,
        max_session_seconds: float = 60.0,
        block_size: int = 8000,
    ):
        super().__init__()
        self.model_path = model_path
        self.sample_rate = sample_rate
        self.max_session_seconds = max_session_seconds
        self.block_size = block_size
        self.stream = None
        self.recognizer = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._end_handle: Optional[asyncio.TimerHandle] = None
        self._run_id = 0
        self._running = False
        self._started_reported = False
        self._last_partial = ""

    @property
    def running(self) -> bool:
        return self._running

    def _load_model(self):
        if not self.model_path or not os.path.exists(self.model_path):
            raise RecognitionOtherError("not-allowed", f"Vosk model not found at '{self.model_path}'")
        model = self._model_cache.get(self.model_path)
        if model is None:
            import vosk

            vosk.SetLogLevel(-1)
            logger.info(f"Loading Vosk model from {self.model_path}")
            model = vosk.Model(self.model_path)
            self._model_cache[self.model_path] = model
        return model

    def start(self):
        if self._running:
            raise RuntimeError("Recognition already started")

        import sounddevice as sd
        import vosk

        model = self._load_model()
        self._loop = asyncio.get_running_loop()
        self._run_id += 1
        run_id = self._run_id
        self.recognizer = vosk.KaldiRecognizer(model, self.sample_rate)
        self._last_partial = ""
        self._started_reported = False

        try:
            self.stream = sd.RawInputStream(
                samplerate=self.sample_rate,
                blocksize=self.block_size,
                dtype="int16",
                channels=1,
                callback=lambda indata, frames, t, status: self._audio_callback(run_id, indata, status),
            )
            self.stream.start()
        except Exception as e:
            self.stream = None
            raise RecognitionOtherError("audio-capture", f"Microphone unavailable for recognition: {e}") from e

        self._running = True
        self._loop.call_soon(self._report_started, run_id)
        self._end_handle = self._loop.call_later(self.max_session_seconds, self._finish_run, run_id)
        logger.debug(f"Recognition run {run_id} started")

    def _report_started(self, run_id: int):
        if run_id != self._run_id or not self._running:
            return
        self._started_reported = True
        self.on_started()

    def _audio_callback(self, run_id: int, indata, status):
        """PortAudio thread callback"""
        if status:
            logger.debug(f"Recognition input status: {status}")
        recognizer = self.recognizer
        if recognizer is None or self._loop is None:
            return
        if recognizer.AcceptWaveform(bytes(indata)):
            text = json.loads(recognizer.Result()).get("text", "").strip()
            if text:
                self._loop.call_soon_threadsafe(self._deliver_result, run_id, [text], True)
            else:
                self._loop.call_soon_threadsafe(self._deliver_error, run_id, "no-speech")
            self._last_partial = ""
        else:
            partial = json.loads(recognizer.PartialResult()).get("partial", "").strip()
            if partial and partial != self._last_partial:
                self._last_partial = partial
                self._loop.call_soon_threadsafe(self._deliver_result, run_id, [partial], False)

    def _deliver_result(self, run_id: int, transcripts: List[str], is_final: bool):
        if run_id == self._run_id and self._running:
            self.on_result(transcripts, is_final)

    def _deliver_error(self, run_id: int, code: str):
        if run_id == self._run_id and self._running:
            self.on_error(code)

    def _close_stream(self):
        if self._end_handle is not None:
            self._end_handle.cancel()
            self._end_handle = None
        if self.stream is not None:
            try:
                self.stream.stop()
                self.stream.close()
            except Exception as e:
                logger.debug(f"Error closing recognition stream: {e}")
            self.stream = None
        self.recognizer = None

    def _finish_run(self, run_id: int):
        if run_id != self._run_id or not self._running:
            return
        logger.debug(f"Recognition run {run_id} reached its time limit")
        self._running = False
        self._close_stream()
        self.on_ended()

    def stop(self):
        if not self._running:
            return
        self._running = False
        aborted = not self._started_reported
        self._close_stream()
        if aborted:
            self.on_error("aborted")
        self.on_ended()
