"""
ABX core - media graph, source registry, controller and termination watcher.
"""

from core.errors import (
    AbxError,
    ConfigurationError,
    EmptyRegistry,
    EngineError,
    IndexOutOfRange,
    LinkFailure,
    NotReady,
    ResourceExhausted,
)
from core.events import PlaybackState
from core.selector import AudioSelector

__all__ = [
    'AudioSelector', 'PlaybackState',
    'AbxError', 'ConfigurationError', 'ResourceExhausted', 'LinkFailure',
    'IndexOutOfRange', 'EmptyRegistry', 'NotReady', 'EngineError',
]
