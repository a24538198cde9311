"""
Live model provider implementations
"""

from .base import (
    LiveConnection,
    LiveEvent,
    LiveEventType,
    LiveProvider,
)

from .factory import ModelProviderFactory

__all__ = [
    'LiveConnection',
    'LiveEvent',
    'LiveEventType',
    'LiveProvider',
    'ModelProviderFactory'
]
