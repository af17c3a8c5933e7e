"""
ABX Selector - Media Engine Module
Copyright (C) 2026 Diego Fernando

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
GNU General Public License for more details.

You should have received a copy of the GNU General Public License
along with this program. If not, see <https://www.gnu.org/licenses/>.
"""

"""
MediaGraph
A small stream-processing graph built on soundfile + numpy + sounddevice.

Stages:
- FileReader: opens the file given by ``location``
- Decoder: discovers the stream on a worker thread, posts ``LinkReady`` with
  a DecodedPad, then decodes fixed-size float32 blocks into the linked input
- Mixer: request/release inputs, per-input mute, sums one block per input
- AudioOutput: sounddevice.OutputStream whose callback pulls from the mixer

The graph owns every stage in a handle table. Everything else refers to
stages by handle. State changes (STOPPED/PAUSED/PLAYING) are serialized by
the graph's own lock; notifications are delivered on a single bus queue.

Notes:
- The mixer never waits inside the audio callback. If any live input has no
  block buffered it outputs silence without consuming, so inputs stay aligned.
- All linked inputs must share one sample rate (no live resampling).
"""
import queue
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional

import numpy as np
import soundfile as sf

from core.errors import ConfigurationError, EngineError, LinkFailure, ResourceExhausted
from core.events import EndOfStream, Error, Flushing, LinkReady, PlaybackState, StateChanged
from utils.error_handler import safe_operation
from utils.logger import get_logger

logger = get_logger(__name__)

AUDIO_CAPS = "audio/x-raw"

# Marker queued after the last decoded block
_END = None


class Stage:
    """Base class for graph stages. Hooks are called by MediaGraph.set_state."""

    kind = "stage"
    # Lower ranks are brought up first and torn down last
    rank = 0

    def __init__(self, name: Optional[str] = None):
        self.name = name
        self.handle: Optional[int] = None
        self.graph: Optional['MediaGraph'] = None
        self.upstream: Optional['Stage'] = None

    def accept_upstream(self, upstream: 'Stage'):
        raise ConfigurationError(
            f"{self.kind} cannot be linked after {upstream.kind}",
            {"upstream": upstream.handle, "downstream": self.handle},
        )

    def preroll(self):
        pass

    def await_preroll(self, timeout: float):
        pass

    def start(self):
        pass

    def pause(self):
        pass

    def reset(self):
        pass

    def __repr__(self) -> str:
        return f"<{type(self).__name__} handle={self.handle} name={self.name!r}>"


class FileReader(Stage):
    kind = "filesrc"
    rank = 0

    def __init__(self, location=None, name: Optional[str] = None):
        super().__init__(name)
        self.location: Optional[Path] = None
        if location is not None:
            self.set_location(location)

    def set_location(self, location):
        if self.graph is not None and self.graph.state is not PlaybackState.STOPPED:
            raise ConfigurationError("cannot change location while the graph is running")
        try:
            path = Path(location)
        except TypeError as e:
            raise ConfigurationError(f"invalid location {location!r}") from e
        if not path.is_file():
            raise ConfigurationError(f"failed to set location to {str(path)!r}: not a file")
        self.location = path

    def open(self):
        if self.location is None:
            raise ConfigurationError("filesrc has no location")
        return open(self.location, 'rb')


class DecodedPad:
    """Output connection point exposed by a Decoder once the stream is known."""

    def __init__(self, owner: int, caps: str, samplerate: int, channels: int, frames: int, index: int = 0):
        self.owner = owner
        self.caps = caps
        self.samplerate = samplerate
        self.channels = channels
        self.frames = frames
        self.index = index
        self.peer: Optional['MixerInput'] = None
        self._settled = threading.Event()
        self._dropped = False

    @property
    def is_audio(self) -> bool:
        return self.caps.startswith("audio/")

    @property
    def is_linked(self) -> bool:
        return self.peer is not None

    def _set_peer(self, peer: 'MixerInput'):
        self.peer = peer
        self._settled.set()

    @property
    def dropped(self) -> bool:
        return self._dropped

    def drop(self):
        """Tell the decoder nobody will link this pad."""
        self._dropped = True
        self._settled.set()

    def wait_linked(self, stop: threading.Event, poll: float = 0.05) -> bool:
        while not stop.is_set():
            if self._settled.wait(poll):
                return self.peer is not None and not self._dropped
        return False

    def __repr__(self) -> str:
        return (f"<DecodedPad owner={self.owner} caps={self.caps} "
                f"rate={self.samplerate} ch={self.channels} frames={self.frames}>")


class Decoder(Stage):
    kind = "decodebin"
    rank = 1

    def __init__(self, name: Optional[str] = None):
        super().__init__(name)
        self.pads: List[DecodedPad] = []
        self.discovered = threading.Event()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def accept_upstream(self, upstream: Stage):
        if not isinstance(upstream, FileReader):
            super().accept_upstream(upstream)
        self.upstream = upstream

    def preroll(self):
        if self.upstream is None:
            raise ConfigurationError("decodebin has no upstream reader", {"handle": self.handle})
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop = threading.Event()
        self.discovered.clear()
        self.pads = []
        self._thread = threading.Thread(
            target=self._run, args=(self._stop,), name=f"decoder-{self.handle}", daemon=True
        )
        self._thread.start()

    def await_preroll(self, timeout: float):
        if self._thread is not None and not self.discovered.wait(timeout):
            logger.warning(f"⚠️  Decoder {self.handle} did not finish discovery within {timeout:.1f}s")

    def reset(self):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            if self._thread.is_alive():
                logger.warning(f"⚠️  Decoder thread {self.handle} did not exit in time")
        # Pads already posted on the bus must not be linked any more
        for pad in self.pads:
            pad.drop()
        self._thread = None
        self.pads = []

    def _run(self, stop: threading.Event):
        location = getattr(self.upstream, 'location', None)
        try:
            with self.upstream.open() as raw, sf.SoundFile(raw) as snd:
                pad = DecodedPad(
                    owner=self.handle,
                    caps=AUDIO_CAPS,
                    samplerate=int(snd.samplerate),
                    channels=int(snd.channels),
                    frames=int(snd.frames),
                )
                self.pads.append(pad)
                logger.debug(f"🔎 Discovered {pad} in {location}")
                self.discovered.set()
                self.graph.post(LinkReady(self.handle, pad))

                if not pad.wait_linked(stop):
                    return
                self._pump(snd, pad, stop)
        except Exception as e:
            if stop.is_set():
                return
            logger.error(f"❌ Failed to decode {location}: {e}")
            self.graph.post(Error(
                EngineError(f"failed to decode {location}", {"reason": str(e)}),
                source=self.handle,
                debug=type(e).__name__,
            ))
        finally:
            self.discovered.set()

    def _pump(self, snd: sf.SoundFile, pad: DecodedPad, stop: threading.Event):
        target = pad.peer
        for block in snd.blocks(blocksize=target.blocksize, dtype='float32',
                                always_2d=True, fill_value=0.0):
            if not target.push(block, stop):
                return
        target.push(_END, stop)


class MixerInput:
    """One requested sink on the mixer. ``muted`` is the mute gate."""

    def __init__(self, mixer: 'Mixer', index: int, buffer_blocks: int):
        self.mixer = mixer
        self.index = index
        self.pad: Optional[DecodedPad] = None
        self.ended = False
        self.released = False
        self._muted = False
        self._queue: queue.Queue = queue.Queue(maxsize=buffer_blocks)

    @property
    def blocksize(self) -> int:
        return self.mixer.blocksize

    @property
    def muted(self) -> bool:
        return self._muted

    def set_muted(self, muted: bool):
        if self.released:
            raise EngineError(f"mixer input sink_{self.index} has been released")
        self._muted = bool(muted)

    @property
    def is_linked(self) -> bool:
        return self.pad is not None

    @property
    def duration(self) -> Optional[float]:
        if self.pad is None or not self.pad.samplerate or self.pad.frames <= 0:
            return None
        return self.pad.frames / float(self.pad.samplerate)

    def push(self, block, stop: threading.Event, poll: float = 0.05) -> bool:
        while not stop.is_set():
            try:
                self._queue.put(block, timeout=poll)
                return True
            except queue.Full:
                continue
        return False

    def _clear(self):
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break
        self.ended = False
        if self.pad is not None:
            self.pad.peer = None
        self.pad = None

    def __repr__(self) -> str:
        return f"<MixerInput sink_{self.index} muted={self._muted} linked={self.is_linked}>"


class Mixer(Stage):
    kind = "audiomixer"
    rank = 2

    def __init__(self, blocksize: int = 1024, channels: int = 2, max_inputs: int = 16,
                 buffer_blocks: int = 32, name: Optional[str] = None):
        super().__init__(name)
        if blocksize <= 0:
            raise ConfigurationError(f"invalid blocksize {blocksize}")
        self.blocksize = int(blocksize)
        self.channels = int(channels)
        self.max_inputs = int(max_inputs)
        self.buffer_blocks = int(buffer_blocks)
        self.samplerate: Optional[int] = None
        # Set when the output opened at a fallback rate before any stream was linked
        self.provisional_rate = False
        self.frames_mixed = 0
        self._lock = threading.Lock()
        self._inputs: Dict[int, MixerInput] = {}
        # Snapshot read by the audio callback; replaced, never mutated
        self._ports = ()
        self._next_index = 0
        self._eos_posted = False
        self._out_buffer = np.zeros((self.blocksize, self.channels), dtype='float32')

    def request_pad(self) -> MixerInput:
        with self._lock:
            if len(self._inputs) >= self.max_inputs:
                raise ResourceExhausted(
                    f"audiomixer has no free inputs (max {self.max_inputs})",
                    {"max_inputs": self.max_inputs},
                )
            port = MixerInput(self, self._next_index, self.buffer_blocks)
            self._inputs[port.index] = port
            self._next_index += 1
            self._ports = tuple(self._inputs.values())
        logger.debug(f"🎚️  Requested mixer input sink_{port.index}")
        return port

    def release_pad(self, port: MixerInput):
        with self._lock:
            if self._inputs.pop(port.index, None) is None:
                return
            port.released = True
            port._clear()
            self._ports = tuple(self._inputs.values())
        logger.debug(f"🎚️  Released mixer input sink_{port.index}")

    @property
    def inputs(self) -> List[MixerInput]:
        return list(self._ports)

    def accept(self, pad: DecodedPad, port: MixerInput) -> bool:
        """
        Link a decoded pad to one of our inputs.

        Returns True if the link changed the mixer sample rate (the output
        was running at a fallback rate and has to be reopened).
        """
        with self._lock:
            if port.released or self._inputs.get(port.index) is not port:
                raise LinkFailure(f"sink_{port.index} is not an input of this mixer")
            if port.is_linked:
                raise LinkFailure(f"sink_{port.index} is already linked")
            if pad.is_linked:
                raise LinkFailure(f"{pad} is already linked")
            if pad.dropped:
                raise LinkFailure(f"{pad} belongs to a stopped decoder")
            if not pad.is_audio:
                raise LinkFailure(f"cannot link caps {pad.caps!r} to audiomixer")
            rate_changed = False
            if self.samplerate is None or self.provisional_rate:
                rate_changed = self.samplerate is not None and self.samplerate != pad.samplerate
                self.samplerate = pad.samplerate
                self.provisional_rate = False
            elif pad.samplerate != self.samplerate:
                raise LinkFailure(
                    f"sample rate mismatch: mixer runs at {self.samplerate} Hz, stream is {pad.samplerate} Hz",
                    {"sink": port.index},
                )
            port.pad = pad
            pad._set_peer(port)
        return rate_changed

    def mix(self, frames: int) -> np.ndarray:
        """Mix one block. Called from the audio callback: no locks, no logging."""
        if frames > self._out_buffer.shape[0]:
            self._out_buffer = np.zeros((frames, self.channels), dtype='float32')
        out = self._out_buffer[:frames]
        out.fill(0.0)

        live = [p for p in self._ports if not p.ended]
        if not self._ports:
            return out
        if not live:
            self._post_eos()
            return out
        # Wait for discovery and keep inputs aligned on underrun
        for p in live:
            if p.pad is None or p._queue.empty():
                return out

        consumed = False
        for p in live:
            try:
                block = p._queue.get_nowait()
            except queue.Empty:
                # Emptied by a concurrent reset
                continue
            if block is _END:
                p.ended = True
                continue
            consumed = True
            if p._muted:
                continue
            n = min(frames, block.shape[0])
            if block.shape[1] == 1:
                out[:n] += block[:n]
            else:
                c = min(block.shape[1], self.channels)
                out[:n, :c] += block[:n, :c]

        if consumed:
            self.frames_mixed += frames
        if all(p.ended for p in self._ports):
            self._post_eos()

        np.clip(out, -1.0, 1.0, out=out)
        return out

    def _post_eos(self):
        if not self._eos_posted:
            self._eos_posted = True
            if self.graph is not None:
                self.graph.post(EndOfStream(source=self.handle))

    def negotiate_samplerate(self, discovered: Optional[int], fallback: int) -> int:
        """Pick the output rate: the one already set, a discovered stream rate, or ``fallback``."""
        with self._lock:
            if self.samplerate is None:
                if discovered:
                    self.samplerate = discovered
                else:
                    self.samplerate = fallback
                    self.provisional_rate = True
            return self.samplerate

    def query_position(self) -> Optional[float]:
        if not self.samplerate:
            return None
        return self.frames_mixed / float(self.samplerate)

    def query_duration(self) -> Optional[float]:
        durations = [d for d in (p.duration for p in self._ports) if d is not None]
        return max(durations) if durations else None

    def reset(self):
        with self._lock:
            for p in self._inputs.values():
                p._clear()
            self.samplerate = None
            self.provisional_rate = False
            self.frames_mixed = 0
            self._eos_posted = False


def _default_stream_factory(samplerate, blocksize, channels, callback, device=None, latency='high'):
    import sounddevice as sd

    return sd.OutputStream(
        samplerate=samplerate,
        blocksize=blocksize,
        channels=channels,
        dtype='float32',
        callback=callback,
        device=device,
        latency=latency,
        prime_output_buffers_using_stream_callback=True,
    )


class AudioOutput(Stage):
    kind = "autoaudiosink"
    rank = 3

    def __init__(self, device=None, latency='high', fallback_samplerate: int = 44100,
                 stream_factory: Optional[Callable] = None, name: Optional[str] = None):
        super().__init__(name)
        self.device = device
        self.latency = latency
        self.fallback_samplerate = int(fallback_samplerate)
        self.stream_factory = stream_factory or _default_stream_factory
        self._stream = None

    def accept_upstream(self, upstream: Stage):
        if not isinstance(upstream, Mixer):
            super().accept_upstream(upstream)
        self.upstream = upstream

    @property
    def mixer(self) -> Optional[Mixer]:
        return self.upstream

    @property
    def stream(self):
        return self._stream

    def _callback(self, outdata, frames, time_info, status):
        try:
            outdata[:] = self.mixer.mix(frames)
        except Exception as e:
            outdata.fill(0)
            self.graph.post(Error(EngineError(f"audio callback failed: {e}"), source=self.handle))

    def _negotiate_samplerate(self) -> int:
        discovered = self.graph.discovered_samplerate() if self.graph is not None else None
        return self.mixer.negotiate_samplerate(discovered, self.fallback_samplerate)

    def _open(self):
        samplerate = self._negotiate_samplerate()
        self._stream = self.stream_factory(
            samplerate=samplerate,
            blocksize=self.mixer.blocksize,
            channels=self.mixer.channels,
            callback=self._callback,
            device=self.device,
            latency=self.latency,
        )
        logger.info(f"🔊 Audio stream initialized: {samplerate}Hz, blocksize={self.mixer.blocksize}, latency={self.latency}")

    def start(self):
        if self.mixer is None:
            raise ConfigurationError("audio output has no upstream mixer")
        if self._stream is None:
            self._open()
        self._stream.start()

    def reopen(self):
        """Reopen an open stream at the mixer's current rate, keeping it running if it was."""
        if self._stream is None:
            return
        running = self.graph is not None and self.graph.state is PlaybackState.PLAYING
        self.reset()
        self._open()
        if running:
            self._stream.start()

    def pause(self):
        if self._stream is not None:
            self._stream.stop()

    def reset(self):
        stream, self._stream = self._stream, None
        if stream is None:
            return
        with safe_operation("stopping output stream", silent=True):
            stream.stop()
        with safe_operation("closing output stream", silent=True):
            stream.close()


_ORDER = [PlaybackState.STOPPED, PlaybackState.PAUSED, PlaybackState.PLAYING]


class MediaGraph:
    def __init__(self, name: str = "abx", preroll_timeout: float = 5.0):
        self.name = name
        self.preroll_timeout = preroll_timeout
        self._stages: Dict[int, Stage] = {}
        self._next_handle = 0
        self._state = PlaybackState.STOPPED
        # Serializes state transitions and stage table changes
        self._lock = threading.RLock()
        self._bus: queue.Queue = queue.Queue()

    # -- stage table ------------------------------------------------------

    def add(self, stage: Stage) -> int:
        with self._lock:
            if stage.graph is not None:
                raise ConfigurationError(f"{stage!r} already belongs to a graph")
            handle = self._next_handle
            self._next_handle += 1
            stage.handle = handle
            stage.graph = self
            self._stages[handle] = stage
        return handle

    def get(self, handle: int) -> Stage:
        try:
            return self._stages[handle]
        except KeyError:
            raise EngineError(f"unknown stage handle {handle}") from None

    def remove(self, handle: int):
        with self._lock:
            stage = self._stages.pop(handle, None)
            if stage is None:
                return
            if self._state is not PlaybackState.STOPPED:
                stage.reset()
            stage.graph = None
            stage.handle = None

    def stages(self, kind: Optional[type] = None) -> List[Stage]:
        stages = list(self._stages.values())
        if kind is not None:
            stages = [s for s in stages if isinstance(s, kind)]
        return stages

    def link(self, upstream: int, downstream: int):
        up, down = self.get(upstream), self.get(downstream)
        down.accept_upstream(up)

    def link_pads(self, pad: DecodedPad, port: MixerInput):
        rate_changed = port.mixer.accept(pad, port)
        logger.debug(f"🔗 Linked {pad} -> sink_{port.index}")
        if not rate_changed:
            return
        with self._lock:
            for output in self.stages(AudioOutput):
                if output.mixer is not port.mixer:
                    continue
                logger.info(f"🔁 Reopening output at {port.mixer.samplerate} Hz")
                try:
                    output.reopen()
                except Exception as e:
                    raise EngineError(f"failed to reopen {output!r}", {"reason": str(e)}) from e

    def sync_state(self, handle: int):
        """Bring a stage added to a running graph up to the graph's state."""
        with self._lock:
            stage = self.get(handle)
            try:
                if self._state is not PlaybackState.STOPPED:
                    stage.preroll()
                if self._state is PlaybackState.PLAYING:
                    stage.start()
            except Exception as e:
                raise EngineError(f"failed to sync {stage!r} with graph state", {"reason": str(e)}) from e

    def discovered_samplerate(self) -> Optional[int]:
        for decoder in self.stages(Decoder):
            for pad in list(decoder.pads):
                if pad.is_audio:
                    return pad.samplerate
        return None

    # -- bus --------------------------------------------------------------

    def post(self, event):
        self._bus.put(event)

    def pop(self, timeout: Optional[float] = None):
        """Next bus event, or None on timeout."""
        try:
            return self._bus.get(timeout=timeout)
        except queue.Empty:
            return None

    def flush(self):
        self.post(Flushing())

    # -- state ------------------------------------------------------------

    @property
    def state(self) -> PlaybackState:
        return self._state

    def set_state(self, target: PlaybackState):
        with self._lock:
            while self._state is not target:
                current = self._state
                step = 1 if _ORDER.index(target) > _ORDER.index(current) else -1
                nxt = _ORDER[_ORDER.index(current) + step]
                try:
                    self._transition(current, nxt)
                except Exception as e:
                    raise EngineError(
                        f"failed to set {self.name} to {nxt.name}",
                        {"state": current.name, "reason": str(e)},
                    ) from e
                self._state = nxt
                self.post(StateChanged(current, nxt))
                logger.debug(f"⏯️  {self.name}: {current.name} -> {nxt.name}")

    def _transition(self, current: PlaybackState, nxt: PlaybackState):
        up = sorted(self._stages.values(), key=lambda s: s.rank)
        down = list(reversed(up))

        if current is PlaybackState.STOPPED:
            for stage in up:
                stage.preroll()
            for stage in up:
                stage.await_preroll(self.preroll_timeout)
        elif nxt is PlaybackState.PLAYING:
            for stage in up:
                stage.start()
        elif nxt is PlaybackState.PAUSED:
            for stage in down:
                stage.pause()
        else:
            # Producers stop before the mixer drops its queued blocks
            for stage in down:
                if not isinstance(stage, Mixer):
                    stage.reset()
            for stage in down:
                if isinstance(stage, Mixer):
                    stage.reset()

    def query_position(self) -> Optional[float]:
        for stage in self.stages(Mixer):
            return stage.query_position()
        return None

    def query_duration(self) -> Optional[float]:
        for stage in self.stages(Mixer):
            return stage.query_duration()
        return None
