"""
SourceRegistry - ordered sources plus the selected index.

The registry owns the mute gate invariant: once a selection exists, exactly
one source is unmuted, the one at ``selected``. The list, the index and every
mute call are covered by a single lock. ``selected`` can also be read
without the lock for cheap polling; that read may be stale, never torn.
"""

import threading
from typing import List

from core.errors import EmptyRegistry, IndexOutOfRange, LinkFailure
from core.media import DecodedPad, MediaGraph
from core.source import Source
from utils.logger import get_logger

logger = get_logger(__name__)


class SourceRegistry:
    def __init__(self):
        self._lock = threading.Lock()
        self._sources: List[Source] = []
        self._selected = 0
        # False until the first successful select on a non-empty registry
        self._established = False

    def __len__(self) -> int:
        return len(self._sources)

    @property
    def selected(self) -> int:
        """Lock-free snapshot of the selection index, for pollers only."""
        return self._selected

    def sources(self) -> List[Source]:
        with self._lock:
            return list(self._sources)

    def add(self, source: Source) -> int:
        """Append ``source`` and return its index. The selection is unchanged."""
        with self._lock:
            self._sources.append(source)
            return len(self._sources) - 1

    def remove(self, source: Source):
        """
        Drop ``source`` from the registry, keeping one source audible.

        If the removed source was the selected one, its neighbour (same index,
        or the new last one) becomes selected.
        """
        with self._lock:
            try:
                index = self._sources.index(source)
            except ValueError:
                return
            del self._sources[index]
            if not self._sources:
                self._selected = 0
                self._established = False
            elif index < self._selected:
                self._selected -= 1
            elif index == self._selected:
                if self._established:
                    self._established = False
                    self._select_locked(min(index, len(self._sources) - 1))
                else:
                    self._selected = min(index, len(self._sources) - 1)

    def select(self, index: int):
        """
        Make ``index`` the only audible source.

        Raises:
            IndexOutOfRange: index outside [0, len); nothing is changed
            EngineError: a mute control failed. If the previous source was
                muted but the new one could not be unmuted, no source is
                audible and ``selected`` still names the previous one.
        """
        with self._lock:
            self._select_locked(index)

    def next(self) -> int:
        """Select the source after the current one, wrapping around. Returns the new index."""
        with self._lock:
            count = len(self._sources)
            if count == 0:
                raise EmptyRegistry("cannot select next source: no sources")
            index = (self._selected + 1) % count
            self._select_locked(index)
            return index

    def _select_locked(self, index: int):
        count = len(self._sources)
        if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index < count:
            raise IndexOutOfRange(
                f"source index {index} out of range",
                {"index": index, "len": count},
            )

        if self._established:
            self._sources[self._selected].mute()
        self._sources[index].unmute()
        self._selected = index
        self._established = True
        logger.debug(f"🎧 Selected source {index}: {self._sources[index].path.name}")

    def ensure_selected(self) -> bool:
        """Select source 0 if sources exist but none is audible yet. Returns True if it did."""
        with self._lock:
            if self._established or not self._sources:
                return False
            self._select_locked(0)
            return True

    def unmuted_indices(self) -> List[int]:
        with self._lock:
            return [i for i, s in enumerate(self._sources) if not s.muted]

    def link(self, graph: MediaGraph, source_id: int, pad: DecodedPad) -> bool:
        """
        Link a pad discovered by the decoder ``source_id`` to that source's mixer input.

        Only the first audio pad of a source is linked; other pads are dropped.
        Returns True if the pad was linked.

        Raises:
            LinkFailure: the source is unknown or the mixer refused the pad
        """
        with self._lock:
            source = next((s for s in self._sources if s.source_id == source_id), None)
            if source is None:
                pad.drop()
                raise LinkFailure(f"no source registered for decoder {source_id}")
            if not pad.is_audio or pad.dropped or source.is_linked:
                logger.debug(f"Ignoring {pad} for {source.path.name}")
                pad.drop()
                return False
            try:
                graph.link_pads(pad, source.mixer_input)
            except LinkFailure:
                if pad.dropped:
                    # Decoder was reset while the event was queued
                    return False
                pad.drop()
                raise
        logger.info(f"🔗 Linked {source.path.name} ({pad.samplerate} Hz, {pad.channels} ch)")
        return True
