import math

from core.errors import EngineError, NotReady
from core.events import PlaybackState
from core.media import MediaGraph
from core.registry import SourceRegistry
from utils.logger import get_logger

logger = get_logger(__name__)


class PipelineController:
    """
    Drives the media graph through Stopped/Paused/Playing and computes progress.

    The graph serializes its own state changes, so ``stop()`` from the
    termination watcher and commands from the caller may interleave; the
    last request wins.
    """

    def __init__(self, graph: MediaGraph, registry: SourceRegistry):
        self.graph = graph
        self.registry = registry

    @property
    def state(self) -> PlaybackState:
        return self.graph.state

    def play(self):
        """
        Go to PLAYING. If no source has been selected yet, source 0 becomes
        the audible one; an earlier selection is kept.

        Raises:
            EngineError: the engine rejected the transition
        """
        self._set_state(PlaybackState.PLAYING)
        self.registry.ensure_selected()
        logger.info("▶️  Playing")

    def pause(self):
        self._set_state(PlaybackState.PAUSED)
        logger.info("⏸️  Paused")

    def stop(self):
        """Go to STOPPED. Calling it on a stopped graph does nothing."""
        if self.graph.state is PlaybackState.STOPPED:
            return
        self._set_state(PlaybackState.STOPPED)
        logger.info("⏹️  Stopped")

    def toggle(self):
        state = self.graph.state
        if state is PlaybackState.PLAYING:
            self.pause()
        elif state is PlaybackState.PAUSED:
            self.play()

    def progress(self) -> float:
        """
        Playback position as a percentage of the longest source.

        Raises:
            NotReady: position or duration unknown, or duration is zero
        """
        duration = self.graph.query_duration()
        position = self.graph.query_position()
        if duration is None or position is None:
            raise NotReady("position/duration not known yet")
        if not math.isfinite(duration) or duration <= 0 or not math.isfinite(position):
            raise NotReady("duration not known yet", {"duration": duration})
        return max(0.0, min(100.0, position / duration * 100.0))

    def _set_state(self, target: PlaybackState):
        try:
            self.graph.set_state(target)
        except EngineError:
            logger.error(f"❌ Failed to set pipeline to {target.name} (now {self.graph.state.name})")
            raise
