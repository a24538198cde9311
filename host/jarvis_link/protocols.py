# jarvis_link/protocols.py
"""
Matches finalized user transcripts against configured trigger phrases and
replays the matched protocol's actions with fixed pacing.
"""

import asyncio
import logging
from typing import List, Optional, Sequence, Set

from .state import ActionType, CustomProtocol, ProtocolAction
from .tools import ToolDispatcher
from .utils import CancelToken

log = logging.getLogger(__name__)


class ProtocolEngine:
    def __init__(
        self,
        dispatcher: ToolDispatcher,
        protocols: Sequence[CustomProtocol] = (),
        step_interval: float = 0.8,
    ):
        self.dispatcher = dispatcher
        self.protocols: List[CustomProtocol] = list(protocols)
        self.step_interval = step_interval
        self._tasks: Set[asyncio.Task] = set()

    def set_protocols(self, protocols: Sequence[CustomProtocol]):
        """Replace the cached protocol list (configured order is preserved)"""
        self.protocols = list(protocols)

    def match(self, text: str) -> Optional[CustomProtocol]:
        """First protocol, in configured order, whose trigger phrase occurs in the text"""
        lowered = text.lower()
        for protocol in self.protocols:
            if protocol.trigger_phrase and protocol.trigger_phrase in lowered:
                return protocol
        return None

    def handle_transcript(self, text: str, token: CancelToken) -> Optional[CustomProtocol]:
        """Run at most one protocol for a finalized user transcript"""
        protocol = self.match(text)
        if protocol is None:
            return None
        log.info(f"Protocol '{protocol.name}' triggered by: {text}")
        self.run(protocol, token)
        return protocol

    def run(self, protocol: CustomProtocol, token: CancelToken):
        """Narrate immediately, then fire step i at step_interval * i seconds"""
        self.dispatcher.apply(ActionType.TYPE_MESSAGE, f"Initiating {protocol.name}...", token, forward=False)
        for index, action in enumerate(protocol.actions, start=1):
            task = asyncio.create_task(
                self._run_step(protocol, action, self.step_interval * index, token),
                name=f"protocol-{protocol.id}-{index}",
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run_step(self, protocol: CustomProtocol, action: ProtocolAction, delay: float, token: CancelToken):
        # Every step sleeps its absolute offset from the match
        await asyncio.sleep(delay)
        if token.cancelled:
            log.debug(f"Protocol '{protocol.name}' step {action.type.value} suppressed")
            return
        self.dispatcher.apply(action.type, action.payload, token)

    @property
    def pending_steps(self) -> int:
        return len(self._tasks)

    def cancel_all(self):
        for task in list(self._tasks):
            task.cancel()
