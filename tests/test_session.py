import asyncio
import unittest
from unittest.mock import Mock, patch

import numpy as np

from fakes import (
    FakeEngine,
    FakeMicrophone,
    FakePlaybackDevice,
    FakeProvider,
    make_config,
    settle,
)

from jarvis_link.desktop import SystemActionExecutor
from jarvis_link.errors import ConfigurationError, DeviceError, LinkError
from jarvis_link.model_providers.base import LiveEventType
from jarvis_link.protocols import ProtocolEngine
from jarvis_link.session import LINK_ERROR_NOTICE, LiveSessionManager
from jarvis_link.state import (
    TONE_PERSONALITIES,
    ActionType,
    CustomProtocol,
    ProtocolAction,
    SessionState,
    SessionStatus,
    Tone,
)
from jarvis_link.tools import TOOL_DECLARATIONS, ToolCall, ToolDispatcher
from jarvis_link.utils import CancelToken
from jarvis_link.wake_word import WakeWordMonitor


class SessionTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.config = make_config()
        self.state = SessionState()
        self.token = CancelToken(name="process")
        self.executor = Mock(spec=SystemActionExecutor)
        self.executor.perform.return_value = "ok"
        self.dispatcher = ToolDispatcher(self.state, self.executor, self.token, executing_beat=0.02)
        self.protocols = ProtocolEngine(self.dispatcher, [], step_interval=0.01)
        self.provider = FakeProvider()
        self.provider_factory = Mock(return_value=self.provider)
        self.mic_error = None
        self.microphones = []
        self.devices = []
        self.manager = LiveSessionManager(
            self.config,
            self.state,
            self.provider_factory,
            self.dispatcher,
            self.protocols,
            lambda: Tone.WITTY,
            self.token,
            microphone_factory=self._make_microphone,
            playback_factory=self._make_device,
        )

    async def asyncTearDown(self):
        await self.manager.stop()
        self.protocols.cancel_all()
        self.dispatcher.cancel_pending()

    def _make_microphone(self):
        mic = FakeMicrophone(self.mic_error)
        self.microphones.append(mic)
        return mic

    def _make_device(self, sample_rate):
        device = FakePlaybackDevice(sample_rate)
        self.devices.append(device)
        return device

    async def open_session(self):
        self.assertTrue(self.manager.request_start())
        await settle()
        return self.provider.connection


class TestSessionStart(SessionTestCase):
    async def test_start_opens_one_session(self):
        self.assertTrue(self.manager.request_start())
        self.assertEqual(self.state.status, SessionStatus.LISTENING)
        self.assertFalse(self.manager.request_start())
        await settle()
        self.assertFalse(self.manager.request_start())

        self.assertEqual(len(self.provider.connect_calls), 1)
        instructions, tools, voice = self.provider.connect_calls[0]
        self.assertIn(TONE_PERSONALITIES[Tone.WITTY], instructions)
        self.assertIs(tools, TOOL_DECLARATIONS)
        self.assertIsNotNone(self.manager.connection)
        self.assertTrue(self.microphones[0].opened)
        self.assertTrue(self.devices[0].opened)
        self.assertEqual(self.devices[0].sample_rate, 24000)

    async def test_awaitable_start(self):
        self.assertTrue(await self.manager.start())
        self.assertFalse(await self.manager.start())
        self.assertEqual(len(self.provider.connect_calls), 1)

    async def test_missing_credentials(self):
        self.provider_factory.side_effect = ConfigurationError("GEMINI_API_KEY is not set")
        self.manager.request_start()
        await settle()

        self.assertEqual(self.state.status, SessionStatus.IDLE)
        self.assertIsNone(self.manager.connection)
        self.assertFalse(self.manager.is_active)
        self.assertIn("GEMINI_API_KEY", self.state.current_notice)

    async def test_microphone_refused(self):
        self.mic_error = DeviceError("Microphone unavailable: denied")
        self.manager.request_start()
        await settle()

        self.assertEqual(self.state.status, SessionStatus.IDLE)
        self.assertEqual(self.provider.connect_calls, [])
        self.assertIn("Microphone", self.state.current_notice)

    async def test_connect_failure(self):
        self.provider.connect_error = OSError("connection refused")
        self.manager.request_start()
        await settle()

        self.assertEqual(self.state.status, SessionStatus.IDLE)
        self.assertEqual(self.state.current_notice, LINK_ERROR_NOTICE)
        self.assertTrue(self.microphones[0].closed)
        self.assertTrue(self.devices[0].closed)
        # a fresh attempt is allowed afterwards
        self.provider.connect_error = None
        self.assertTrue(self.manager.request_start())

    async def test_link_error_shows_link_notice(self):
        self.provider.connect_error = LinkError("Gemini Live connection failed: 1011")
        self.assertFalse(await self.manager.start())
        self.assertEqual(self.state.current_notice, LINK_ERROR_NOTICE)
        self.assertIsNone(self.manager.connection)

    async def test_no_start_after_process_shutdown(self):
        self.token.cancel()
        self.assertFalse(self.manager.request_start())


class TestSessionTraffic(SessionTestCase):
    async def test_microphone_frames_are_sent(self):
        await self.open_session()
        self.microphones[0].push(np.zeros(4096, dtype=np.float32))
        await settle()

        blob = self.provider.connection.sent_audio[0]
        self.assertEqual(blob.mime_type, "audio/pcm;rate=16000")
        self.assertEqual(len(blob.pcm), 4096 * 2)

    async def test_audio_chunk_speaks_then_idles(self):
        connection = await self.open_session()
        connection.push(LiveEventType.AUDIO_CHUNK, audio=b"\x00\x00" * 2400)
        await settle()

        self.assertEqual(self.state.status, SessionStatus.SPEAKING)
        handle = self.devices[0].scheduled[0]
        self.assertAlmostEqual(handle.duration, 0.1)

        handle.finish()
        self.assertEqual(self.state.status, SessionStatus.IDLE)
        # still connected; only the status changed
        self.assertIsNotNone(self.manager.connection)

    async def test_transcripts_logged_in_order(self):
        connection = await self.open_session()
        connection.push(LiveEventType.INPUT_TRANSCRIPT, text="what's on today")
        connection.push(LiveEventType.OUTPUT_TRANSCRIPT, text="Nothing, sir.")
        await settle()

        self.assertEqual(
            [(m.role, m.text) for m in self.state.messages],
            [("user", "what's on today"), ("assistant", "Nothing, sir.")],
        )

    async def test_input_transcript_runs_protocol(self):
        self.protocols.set_protocols([
            CustomProtocol("p1", "Focus", "focus mode", (ProtocolAction(ActionType.ADD_TODO, "Deep work"),)),
        ])
        connection = await self.open_session()
        connection.push(LiveEventType.INPUT_TRANSCRIPT, text="Engage focus mode")
        await settle()
        self.assertEqual(self.state.actions[0].content, "Initiating Focus...")

        await self.protocols_done()
        self.assertEqual([t.text for t in self.state.todos], ["Deep work"])

    async def test_protocol_narration_is_only_logged(self):
        self.protocols.set_protocols([
            CustomProtocol("p1", "Status", "status report", (ProtocolAction(ActionType.TYPE_MESSAGE, "All systems nominal"),)),
        ])
        connection = await self.open_session()
        connection.push(LiveEventType.INPUT_TRANSCRIPT, text="status report please")
        await self.protocols_done()

        self.assertEqual(
            [a.content for a in self.state.actions],
            ["Initiating Status...", "All systems nominal"],
        )
        self.executor.perform.assert_called_once_with(ActionType.TYPE_MESSAGE, "All systems nominal")

    async def protocols_done(self):
        await asyncio.sleep(0.05)

    async def test_tool_call_result_sent_back(self):
        connection = await self.open_session()
        connection.push(
            LiveEventType.TOOL_CALL,
            tool_calls=[ToolCall("call-1", "manage_tasks", {"action": "add", "task": "Buy milk"})],
        )
        await settle()

        self.assertEqual(connection.tool_results, [("call-1", "manage_tasks", "ok")])
        self.assertEqual([t.text for t in self.state.todos], ["Buy milk"])
        self.assertEqual(self.state.status, SessionStatus.EXECUTING)

    async def test_bad_timer_call_reports_error_and_session_still_closes(self):
        connection = await self.open_session()
        connection.push(
            LiveEventType.TOOL_CALL,
            tool_calls=[ToolCall("call-2", "manage_timer", {"duration_seconds": "inf", "label": "Forever"})],
        )
        connection.push(LiveEventType.CLOSED)
        await settle()

        self.assertEqual(len(connection.tool_results), 1)
        self.assertTrue(connection.tool_results[0][2].startswith("Error:"))
        self.assertEqual(self.state.timers, [])
        self.assertIsNone(self.manager.connection)
        self.assertFalse(self.manager.is_active)
        self.assertTrue(self.manager.request_start())

    async def test_failing_event_handler_releases_session(self):
        connection = await self.open_session()
        with patch.object(self.dispatcher, "dispatch", side_effect=RuntimeError("boom")):
            connection.push(LiveEventType.TOOL_CALL, tool_calls=[ToolCall("call-3", "manage_tasks", {"action": "list"})])
            await settle()

        self.assertTrue(connection.closed)
        self.assertFalse(self.manager.is_active)
        self.assertEqual(self.state.current_notice, LINK_ERROR_NOTICE)
        self.assertTrue(self.manager.request_start())

    async def test_released_sessions_leave_no_child_tokens(self):
        for _ in range(3):
            await self.open_session()
            await self.manager.stop()
        self.assertEqual(self.token._children, [])
        self.assertTrue(self.token.active)

    async def test_interrupted_stops_playback(self):
        connection = await self.open_session()
        connection.push(LiveEventType.AUDIO_CHUNK, audio=b"\x00\x00" * 2400)
        connection.push(LiveEventType.AUDIO_CHUNK, audio=b"\x00\x00" * 2400)
        await settle()
        scheduler = self.manager.scheduler
        self.assertEqual(len(scheduler.in_flight), 2)

        connection.push(LiveEventType.INTERRUPTED)
        await settle()
        self.assertEqual(scheduler.in_flight, set())
        self.assertEqual(scheduler.clock, 0.0)
        self.assertEqual(self.state.status, SessionStatus.IDLE)

    async def test_error_releases_session(self):
        connection = await self.open_session()
        connection.push(LiveEventType.ERROR, text="socket reset")
        await settle()

        self.assertTrue(connection.closed)
        self.assertIsNone(self.manager.connection)
        self.assertTrue(self.microphones[0].closed)
        self.assertTrue(self.devices[0].closed)
        self.assertEqual(self.state.status, SessionStatus.IDLE)
        self.assertEqual(self.state.current_notice, LINK_ERROR_NOTICE)

    async def test_close_releases_without_notice(self):
        connection = await self.open_session()
        connection.push(LiveEventType.CLOSED)
        await settle()

        self.assertIsNone(self.manager.connection)
        self.assertIsNone(self.state.current_notice)
        self.assertTrue(self.manager.request_start())

    async def test_stop_is_idempotent(self):
        connection = await self.open_session()
        await self.manager.stop()
        await self.manager.stop()

        self.assertTrue(connection.closed)
        self.assertEqual(self.state.status, SessionStatus.IDLE)
        self.assertFalse(self.manager.is_active)

    async def test_toggle(self):
        self.manager.toggle()
        await settle()
        self.assertIsNotNone(self.manager.connection)

        self.manager.toggle()
        await settle()
        self.assertIsNone(self.manager.connection)

    async def test_events_after_release_are_ignored(self):
        connection = await self.open_session()
        await self.manager.stop()
        connection.push(LiveEventType.INPUT_TRANSCRIPT, text="too late")
        await settle()
        self.assertEqual(self.state.messages, [])


class TestWakeWordToSession(SessionTestCase):
    async def test_hey_jarvis_starts_exactly_once(self):
        engine = FakeEngine()
        monitor = WakeWordMonitor(self.state, engine, self.manager.request_start)
        monitor.activate()
        engine.emit_started()

        engine.emit_result(["hey jarvis"])
        engine.emit_result(["hey jarvis what time"])
        await settle()
        engine.emit_result(["hey jarvis what time is it"], is_final=True)
        await settle()

        self.assertEqual(len(self.provider.connect_calls), 1)
        monitor.teardown()


if __name__ == "__main__":
    unittest.main()
