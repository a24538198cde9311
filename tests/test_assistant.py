import asyncio
import json
import unittest

from fakes import (
    FakeEngine,
    FakeMicrophone,
    FakePlaybackDevice,
    FakeProvider,
    MemoryConfigStore,
    make_config,
    settle,
)

from jarvis_link.assistant import JarvisAssistant
from jarvis_link.desktop import LoggingActionExecutor
from jarvis_link.state import ActionType, ProtocolAction, SessionStatus, Tone
from jarvis_link.store import PROTOCOLS_KEY, TONE_KEY, WAKE_WORD_KEY


class AssistantTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = MemoryConfigStore({
            TONE_KEY: "WITTY",
            WAKE_WORD_KEY: "Friday",
            PROTOCOLS_KEY: json.dumps([{
                "id": "p1",
                "name": "Morning Routine",
                "triggerPhrase": "Start My Day",
                "actions": [{"type": "ADD_TODO", "payload": "Check calendar"}],
            }]),
        })
        self.engine = FakeEngine()
        self.provider = FakeProvider()
        self.assistant = JarvisAssistant(
            make_config(timer_tick_interval=0.01, startup_delay=0.01, executing_beat=0.02),
            store=self.store,
            executor=LoggingActionExecutor(),
            engine=self.engine,
            provider_factory=lambda: self.provider,
            microphone_factory=FakeMicrophone,
            playback_factory=FakePlaybackDevice,
        )

    async def asyncTearDown(self):
        await self.assistant.shutdown()


class TestAssistantSettings(AssistantTestCase):
    async def test_loads_stored_settings(self):
        self.assertEqual(self.assistant.tone, Tone.WITTY)
        self.assertEqual(self.assistant.activation_phrase, "Friday")
        self.assertEqual(self.assistant.protocols[0].trigger_phrase, "start my day")
        self.assertIs(self.assistant.protocol_engine.match("ok start my day"), self.assistant.protocols[0])

    async def test_save_protocol_writes_through(self):
        protocol = self.assistant.save_protocol(
            "Focus", "  Focus Mode ", [ProtocolAction(ActionType.TYPE_MESSAGE, "Heads down")]
        )
        self.assertEqual(protocol.trigger_phrase, "focus mode")
        stored = json.loads(self.store.data[PROTOCOLS_KEY])
        self.assertEqual([p["name"] for p in stored], ["Morning Routine", "Focus"])
        self.assertIs(self.assistant.protocol_engine.match("enter focus mode"), protocol)

    async def test_save_protocol_replaces_by_id(self):
        self.assistant.save_protocol(
            "Morning Routine", "good morning", [ProtocolAction(ActionType.OPEN_APP, "Mail")], protocol_id="p1"
        )
        self.assertEqual(len(self.assistant.protocols), 1)
        self.assertEqual(self.assistant.protocols[0].trigger_phrase, "good morning")

    async def test_save_protocol_validation(self):
        action = [ProtocolAction(ActionType.ADD_TODO, "x")]
        with self.assertRaises(ValueError):
            self.assistant.save_protocol("", "trigger", action)
        with self.assertRaises(ValueError):
            self.assistant.save_protocol("Name", "  ", action)
        with self.assertRaises(ValueError):
            self.assistant.save_protocol("Name", "trigger", [])
        self.assertEqual(len(self.assistant.protocols), 1)

    async def test_delete_protocol(self):
        self.assertTrue(self.assistant.delete_protocol("p1"))
        self.assertFalse(self.assistant.delete_protocol("p1"))
        self.assertEqual(json.loads(self.store.data[PROTOCOLS_KEY]), [])
        self.assertIsNone(self.assistant.protocol_engine.match("start my day"))

    async def test_tone_applies_to_next_session(self):
        self.assistant.set_tone("empathetic")
        self.assertEqual(self.store.data[TONE_KEY], "EMPATHETIC")

        await self.assistant.session.start()
        instructions = self.provider.connect_calls[0][0]
        self.assertIn("empathetic", instructions)

    async def test_activation_phrase_updates_monitor(self):
        self.assistant.set_activation_phrase("Computer")
        self.assertEqual(self.store.data[WAKE_WORD_KEY], "Computer")
        self.assertIsNotNone(self.assistant.wake_monitor.pattern.search("hey computer"))
        with self.assertRaises(ValueError):
            self.assistant.set_activation_phrase(" ")


class TestAssistantRuntime(AssistantTestCase):
    async def test_timers_tick_in_background(self):
        self.assistant.state.add_timer(2, "Eggs")
        self.assistant.start_background_tasks()
        await asyncio.sleep(0.05)
        self.assertEqual(self.assistant.state.timers, [])

    async def test_wake_monitor_activated_after_startup_delay(self):
        self.assistant.start_background_tasks()
        self.assertEqual(self.engine.starts, 0)
        await asyncio.sleep(0.03)
        self.assertEqual(self.engine.starts, 1)

    async def test_wake_word_opens_session(self):
        self.assistant.start_background_tasks()
        await asyncio.sleep(0.03)
        self.engine.emit_started()
        self.engine.emit_result(["yo friday"], is_final=True)
        await settle()

        self.assertEqual(len(self.provider.connect_calls), 1)
        self.assertEqual(self.assistant.state.status, SessionStatus.LISTENING)

    async def test_run_until_shutdown_requested(self):
        runner = asyncio.create_task(self.assistant.run())
        await asyncio.sleep(0.03)
        await self.assistant.session.start()

        self.assistant.request_shutdown()
        await asyncio.wait_for(runner, 1.0)

        self.assertTrue(self.assistant.token.cancelled)
        self.assertIsNone(self.assistant.session.connection)
        self.assertTrue(self.provider.connection.closed)
        self.assertFalse(self.assistant.wake_monitor.runnable)
        self.assertFalse(self.assistant.session.request_start())

    async def test_shutdown_is_idempotent(self):
        await self.assistant.shutdown()
        await self.assistant.shutdown()
        self.assertEqual(self.engine.stops, 1)


if __name__ == "__main__":
    unittest.main()
