"""
JARVIS link: wake-word activated voice sessions with a live conversational model
"""

from .assistant import JarvisAssistant
from .config import Config, setup_logging
from .session import LiveSessionManager
from .state import ActionType, SessionState, SessionStatus, Tone

__version__ = "1.0.0"

__all__ = [
    'ActionType',
    'Config',
    'JarvisAssistant',
    'LiveSessionManager',
    'SessionState',
    'SessionStatus',
    'Tone',
    'setup_logging',
]
