# jarvis_link/utils.py
"""
Utility functions for the voice assistant
"""

import asyncio
import logging
import uuid
from typing import List, Optional

logger = logging.getLogger(__name__)


def new_id() -> str:
    """Collision-safe identifier for log entries, todos and timers"""
    return uuid.uuid4().hex


class CancelToken:
    """Cancellation flag checked by every delayed callback before it mutates state.

    Tokens form a tree: cancelling a parent cancels every child, so the
    process-wide token suppresses stale session callbacks as well.
    """

    def __init__(self, parent: Optional["CancelToken"] = None, name: str = "token"):
        self.name = name
        self._cancelled = False
        self._parent: Optional["CancelToken"] = None
        self._children: List["CancelToken"] = []
        if parent is not None:
            if parent.cancelled:
                self._cancelled = True
            else:
                self._parent = parent
                parent._children.append(self)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def active(self) -> bool:
        return not self._cancelled

    def child(self, name: str = "child") -> "CancelToken":
        return CancelToken(parent=self, name=name)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        logger.debug(f"Cancelled {self.name}")
        children, self._children = self._children, []
        for child in children:
            child.cancel()
        parent, self._parent = self._parent, None
        if parent is not None and self in parent._children:
            parent._children.remove(self)


def signal_handler(signum, frame, assistant, loop: asyncio.AbstractEventLoop):
    """Handle Ctrl-C / SIGTERM gracefully."""
    logger.info(f"Received signal {signum}; shutting down…")
    loop.call_soon_threadsafe(assistant.request_shutdown)
