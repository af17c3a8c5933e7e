"""Typed notifications carried on the media graph bus."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class PlaybackState(Enum):
    STOPPED = 0
    PAUSED = 1
    PLAYING = 2


@dataclass(frozen=True)
class EndOfStream:
    """Every linked input has run out of data."""
    source: Optional[int] = None


@dataclass(frozen=True)
class Error:
    """Engine-side failure: decode error, link failure, stream error."""
    error: BaseException
    source: Optional[int] = None
    debug: str = ""


@dataclass(frozen=True)
class LinkReady:
    """A decoder discovered a stream and exposed a pad that can be linked.

    ``source_id`` is the decoder's stage handle.
    """
    source_id: int
    pad: Any = field(compare=False)


@dataclass(frozen=True)
class StateChanged:
    old: PlaybackState
    new: PlaybackState


# Posted by MediaGraph.flush to wake a blocked bus reader
@dataclass(frozen=True)
class Flushing:
    pass
