"""
TerminationWatcher - the single consumer of the media graph bus.

Runs on its own thread until cancelled and reacts to:
- LinkReady: links the discovered stream through the registry. A failure is
  posted back to the bus as an Error.
- EndOfStream: stops the pipeline and ends the current watch session cleanly.
- Error: records the error, stops the pipeline and ends the session with failure.
Everything else is logged at debug level and ignored.

Linking keeps working after a session has ended, so the pipeline can be
played again; ``begin_session`` re-arms the EndOfStream/Error reactions.
"""

import threading
from typing import Optional

from core.controller import PipelineController
from core.errors import AbxError, EngineError
from core.events import EndOfStream, Error, Flushing, LinkReady
from core.registry import SourceRegistry
from utils.error_handler import log_exception
from utils.logger import get_logger

logger = get_logger(__name__)


class TerminationWatcher:
    def __init__(self, controller: PipelineController, registry: SourceRegistry, poll_interval: float = 0.1):
        self.controller = controller
        self.registry = registry
        self.graph = controller.graph
        self.poll_interval = poll_interval
        self.error: Optional[BaseException] = None
        self._finished = threading.Event()
        self._cancel = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    @property
    def succeeded(self) -> bool:
        return self._finished.is_set() and self.error is None

    def start(self) -> 'TerminationWatcher':
        if self._thread is not None:
            raise EngineError("termination watcher already started")
        self._thread = threading.Thread(target=self._run, name="abx-watcher", daemon=True)
        self._thread.start()
        return self

    def begin_session(self):
        """Start a new watch session after the previous one ended."""
        if not self._finished.is_set():
            return
        self.error = None
        self._finished.clear()
        logger.debug("👀 New watch session")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the watch session ends. Returns True if it has ended."""
        return self._finished.wait(timeout)

    def cancel(self):
        """End the watch loop without touching the pipeline."""
        self._cancel.set()
        self.graph.flush()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)

    def _run(self):
        logger.debug("👀 Termination watcher started")
        try:
            while not self._cancel.is_set():
                event = self.graph.pop(timeout=self.poll_interval)
                if event is None or isinstance(event, Flushing):
                    continue
                self.handle(event)
        finally:
            logger.debug("👀 Termination watcher finished")

    def handle(self, event) -> bool:
        """React to one bus event. Returns True if it ended the watch session."""
        if isinstance(event, LinkReady):
            self._on_link_ready(event)
            return False

        if isinstance(event, (EndOfStream, Error)) and self._finished.is_set():
            logger.debug(f"Bus: {event} after the session ended, ignored")
            return False

        if isinstance(event, EndOfStream):
            logger.info("🏁 End of stream")
            self._terminate()
            return True

        if isinstance(event, Error):
            self.error = event.error
            log_exception(event.error, f"Pipeline error from stage {event.source}", include_traceback=False)
            self._terminate()
            return True

        logger.debug(f"Bus: {event}")
        return False

    def _on_link_ready(self, event: LinkReady):
        try:
            self.registry.link(self.graph, event.source_id, event.pad)
        except AbxError as e:
            logger.error(f"❌ Failed to link stream of decoder {event.source_id}: {e}")
            self.graph.post(Error(e, source=event.source_id))

    def _terminate(self):
        try:
            self.controller.stop()
        except EngineError as e:
            if self.error is None:
                self.error = e
            log_exception(e, "Stopping pipeline after termination")
        finally:
            self._finished.set()
