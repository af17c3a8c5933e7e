"""Shared fixtures: small WAV files, a fake output stream and an isolated config."""

import time

import numpy as np
import pytest
import soundfile as sf

from core.config_manager import ConfigManager


class FakeStream:
    """Stands in for sounddevice.OutputStream. Nothing calls the callback on its own."""

    instances = []

    def __init__(self, samplerate, blocksize, channels, callback, device=None, latency='high'):
        self.samplerate = samplerate
        self.blocksize = blocksize
        self.channels = channels
        self.callback = callback
        self.device = device
        self.latency = latency
        self.active = False
        self.closed = False
        FakeStream.instances.append(self)

    def start(self):
        self.active = True

    def stop(self):
        self.active = False

    def close(self):
        self.active = False
        self.closed = True

    def pull(self, frames=None):
        """Run the audio callback once and return what it wrote."""
        frames = frames or self.blocksize
        out = np.zeros((frames, self.channels), dtype='float32')
        self.callback(out, frames, None, None)
        return out


def write_tone(path, value=0.25, frames=256, samplerate=8000, channels=1):
    """Write a constant-valued PCM file (easy to recognise in the mix)."""
    data = np.full((frames, channels), value, dtype='float32')
    sf.write(str(path), data, samplerate, subtype='FLOAT')
    return path


def wait_until(predicate, timeout=3.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def make_wav(tmp_path):
    counter = {"n": 0}

    def _make(value=0.25, frames=256, samplerate=8000, channels=1, name=None):
        counter["n"] += 1
        path = tmp_path / (name or f"tone_{counter['n']}.wav")
        return write_tone(path, value, frames, samplerate, channels)

    return _make


@pytest.fixture
def fake_stream():
    FakeStream.instances = []
    yield FakeStream
    FakeStream.instances = []


@pytest.fixture
def config(tmp_path):
    """Fresh ConfigManager pointing at a throwaway file, small blocks for tests."""
    ConfigManager.reset_instance()
    cfg = ConfigManager.get_instance(str(tmp_path / "settings.json"))
    cfg.merge_settings({
        "audio": {"blocksize": 64, "buffer_blocks": 8, "preroll_timeout": 2.0},
        "playback": {"poll_interval": 0.02},
    })
    yield cfg
    ConfigManager.reset_instance()
