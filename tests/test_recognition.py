import asyncio
import sys
import tempfile
import unittest
from unittest.mock import MagicMock, Mock, call, patch

from fakes import settle

from jarvis_link.errors import RecognitionOtherError
from jarvis_link.recognition import VoskRecognitionEngine


class TestVoskRecognitionEngine(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.model_dir = tempfile.TemporaryDirectory()
        self.vosk = MagicMock()
        self.recognizer = self.vosk.KaldiRecognizer.return_value
        self.sd = MagicMock()
        self.modules = patch.dict(sys.modules, {"vosk": self.vosk, "sounddevice": self.sd})
        self.modules.start()

        self.engine = VoskRecognitionEngine(self.model_dir.name, max_session_seconds=5.0)
        self.listener = Mock()
        self.engine.bind(
            self.listener.started,
            self.listener.result,
            self.listener.error,
            self.listener.ended,
        )

    async def asyncTearDown(self):
        self.engine.stop()
        self.modules.stop()
        self.model_dir.cleanup()

    def feed(self, data=b"\x00\x00" * 8):
        callback = self.sd.RawInputStream.call_args.kwargs["callback"]
        callback(data, len(data) // 2, None, None)

    async def test_start_opens_16k_stream(self):
        self.engine.start()
        await settle()

        kwargs = self.sd.RawInputStream.call_args.kwargs
        self.assertEqual(kwargs["samplerate"], 16000)
        self.assertEqual(kwargs["dtype"], "int16")
        self.listener.started.assert_called_once_with()
        self.assertTrue(self.engine.running)

    async def test_partial_then_final_results(self):
        self.engine.start()
        await settle()

        self.recognizer.AcceptWaveform.return_value = False
        self.recognizer.PartialResult.return_value = '{"partial": "hey jarvis"}'
        self.feed()
        self.feed()  # unchanged partial is not repeated
        self.recognizer.AcceptWaveform.return_value = True
        self.recognizer.Result.return_value = '{"text": "hey jarvis what time is it"}'
        self.feed()
        await settle()

        self.assertEqual(
            self.listener.result.call_args_list,
            [
                call(["hey jarvis"], False),
                call(["hey jarvis what time is it"], True),
            ],
        )

    async def test_empty_final_is_no_speech(self):
        self.engine.start()
        await settle()
        self.recognizer.AcceptWaveform.return_value = True
        self.recognizer.Result.return_value = '{"text": ""}'
        self.feed()
        await settle()
        self.listener.error.assert_called_once_with("no-speech")

    async def test_run_is_bounded(self):
        self.engine.max_session_seconds = 0.02
        self.engine.start()
        await asyncio.sleep(0.05)

        self.listener.ended.assert_called_once_with()
        self.assertFalse(self.engine.running)
        self.sd.RawInputStream.return_value.close.assert_called_once()

    async def test_stop_before_started_reports_aborted(self):
        self.engine.start()
        self.engine.stop()
        await settle()

        self.listener.error.assert_called_once_with("aborted")
        self.listener.ended.assert_called_once_with()
        self.listener.started.assert_not_called()

    async def test_double_start_rejected(self):
        self.engine.start()
        with self.assertRaises(RuntimeError):
            self.engine.start()

    async def test_missing_model(self):
        engine = VoskRecognitionEngine("/nonexistent/vosk-model")
        with self.assertRaises(RecognitionOtherError) as ctx:
            engine.start()
        self.assertEqual(ctx.exception.code, "not-allowed")

    async def test_device_failure(self):
        self.sd.RawInputStream.side_effect = OSError("no input device")
        with self.assertRaises(RecognitionOtherError) as ctx:
            self.engine.start()
        self.assertEqual(ctx.exception.code, "audio-capture")
        self.assertFalse(self.engine.running)


if __name__ == "__main__":
    unittest.main()
