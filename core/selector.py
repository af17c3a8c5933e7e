"""
AudioSelector - the public API of the ABX engine.

Example:
    selector = (AudioSelector()
                .add_source("a.flac")
                .add_source("b.flac")
                .start_watching()
                .play())
    selector.next_source()
    print(selector.progress())
    selector.wait()
"""

import threading
from pathlib import Path
from typing import Callable, List, Optional

from core.config_manager import ConfigManager
from core.controller import PipelineController
from core.errors import EngineError, NotReady
from core.events import PlaybackState
from core.media import AudioOutput, MediaGraph, Mixer
from core.registry import SourceRegistry
from core.source import SourceBuilder
from core.watcher import TerminationWatcher
from utils.error_handler import safe_call, safe_operation
from utils.logger import get_logger

logger = get_logger(__name__)


class ProgressPoller:
    """Calls ``callback(percent)`` every ``interval`` seconds while progress is known."""

    def __init__(self, controller: PipelineController, callback: Callable[[float], None], interval: float = 0.1):
        self.controller = controller
        self.callback = callback
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> 'ProgressPoller':
        self._thread = threading.Thread(target=self._run, name="abx-progress", daemon=True)
        self._thread.start()
        return self

    def stop(self):
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)

    def _run(self):
        while not self._stop.wait(self.interval):
            try:
                percent = self.controller.progress()
            except NotReady:
                continue
            safe_call(self.callback, percent, operation_name="progress callback")


class AudioSelector:
    def __init__(self, config: Optional[ConfigManager] = None, stream_factory: Optional[Callable] = None,
                 name: str = "abx"):
        """
        Build the shared graph: mixer -> audio output, with no sources yet.

        Args:
            config: settings to read engine parameters from (defaults to the singleton)
            stream_factory: replaces ``sounddevice.OutputStream`` creation
                (headless runs, tests)
            name: graph name used in log messages
        """
        self.config = config or ConfigManager.get_instance()
        cfg = self.config

        self.graph = MediaGraph(name, preroll_timeout=float(cfg.get("audio.preroll_timeout", 5.0)))
        self.mixer = Mixer(
            blocksize=int(cfg.get("audio.blocksize", 1024)),
            max_inputs=int(cfg.get("audio.max_inputs", 16)),
            buffer_blocks=int(cfg.get("audio.buffer_blocks", 32)),
        )
        self.output = AudioOutput(
            device=cfg.get("audio.device_id"),
            latency=cfg.get("audio.latency", "high"),
            fallback_samplerate=int(cfg.get("audio.fallback_sample_rate", 44100)),
            stream_factory=stream_factory,
        )
        mixer_handle = self.graph.add(self.mixer)
        output_handle = self.graph.add(self.output)
        self.graph.link(mixer_handle, output_handle)

        self.registry = SourceRegistry()
        self.builder = SourceBuilder(self.graph, mixer_handle)
        self.controller = PipelineController(self.graph, self.registry)
        self.watcher: Optional[TerminationWatcher] = None
        self._poller: Optional[ProgressPoller] = None

    # -- construction -----------------------------------------------------

    def add_source(self, path) -> 'AudioSelector':
        """Add a file as a new (muted) source. Chainable."""
        source = self.builder.build(path)
        self.registry.add(source)
        try:
            self.graph.sync_state(source.decoder)
        except EngineError:
            self.registry.remove(source)
            self.builder.discard(source)
            raise
        if self.graph.state is not PlaybackState.STOPPED:
            self.registry.ensure_selected()
        return self

    def start_watching(self) -> 'AudioSelector':
        """
        Start reading the bus. Once a watch session has ended (end of stream or
        error) this starts a new one.
        """
        if self.watcher is not None:
            if not self.watcher.finished:
                raise EngineError("already watching the pipeline bus")
            self.watcher.begin_session()
            return self
        self.watcher = TerminationWatcher(
            self.controller,
            self.registry,
            poll_interval=float(self.config.get("playback.poll_interval", 0.1)),
        ).start()
        return self

    # -- playback ---------------------------------------------------------

    def play(self) -> 'AudioSelector':
        """Play, watching the bus first: decoded streams are only linked by the watcher."""
        if self.watcher is None:
            self.start_watching()
        else:
            self.watcher.begin_session()
        self.controller.play()
        return self

    def pause(self):
        self.controller.pause()

    def toggle(self):
        self.controller.toggle()

    def stop(self):
        self.controller.stop()

    def progress(self) -> float:
        return self.controller.progress()

    def start_progress_poller(self, callback: Callable[[float], None],
                              interval: Optional[float] = None) -> ProgressPoller:
        if self._poller is not None:
            self._poller.stop()
        if interval is None:
            interval = float(self.config.get("playback.poll_interval", 0.1))
        self._poller = ProgressPoller(self.controller, callback, interval).start()
        return self._poller

    # -- selection --------------------------------------------------------

    def select_source(self, index: int):
        self.registry.select(index)

    def next_source(self) -> int:
        return self.registry.next()

    @property
    def selected(self) -> int:
        """Lock-free read of the selected index (may lag a concurrent select)."""
        return self.registry.selected

    @property
    def sources(self) -> List[Path]:
        return [s.path for s in self.registry.sources()]

    @property
    def state(self) -> PlaybackState:
        return self.controller.state

    # -- termination ------------------------------------------------------

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the watcher sees end-of-stream or an error."""
        if self.watcher is None:
            raise EngineError("wait() needs start_watching() first")
        return self.watcher.wait(timeout)

    @property
    def error(self) -> Optional[BaseException]:
        return self.watcher.error if self.watcher is not None else None

    def close(self):
        if self._poller is not None:
            self._poller.stop()
            self._poller = None
        with safe_operation("stopping pipeline", silent=True):
            self.controller.stop()
        if self.watcher is not None:
            self.watcher.cancel()
        logger.debug("AudioSelector closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
