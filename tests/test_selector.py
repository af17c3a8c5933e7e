"""
End-to-end tests for AudioSelector on real (tiny) WAV files.

The output stream is a FakeStream, so each test drives the audio callback
itself with ``stream.pull()``.
"""

import time
from unittest.mock import Mock

import numpy as np
import pytest

from conftest import FakeStream, wait_until
from core.errors import ConfigurationError, EngineError, IndexOutOfRange, NotReady
from core.events import PlaybackState
from core.selector import AudioSelector

A_LEVEL = 0.25
B_LEVEL = 0.5


@pytest.fixture
def selector(config, fake_stream):
    sel = AudioSelector(config, stream_factory=fake_stream)
    yield sel
    sel.close()


@pytest.fixture
def ab(selector, make_wav):
    """Scenario 1 setup: A and B added, watching, playing."""
    selector.add_source(make_wav(value=A_LEVEL, frames=640, name="a.wav"))
    selector.add_source(make_wav(value=B_LEVEL, frames=640, name="b.wav"))
    selector.start_watching().play()
    assert wait_until(lambda: all(s.is_linked for s in selector.registry.sources()))
    return selector


def stream():
    return FakeStream.instances[-1]


def pull_audio(selector):
    """Pull blocks until the mixer actually consumed data; return the last one."""
    for _ in range(200):
        before = selector.mixer.frames_mixed
        out = stream().pull()
        if selector.mixer.frames_mixed > before:
            return out
        time.sleep(0.01)
    raise AssertionError("mixer never produced audio")


class TestScenarios:
    def test_play_unmutes_a_only(self, ab):
        assert ab.state is PlaybackState.PLAYING
        assert ab.registry.unmuted_indices() == [0]
        assert pull_audio(ab)[0, 0] == pytest.approx(A_LEVEL)

    def test_next_switches_to_b(self, ab):
        ab.next_source()
        assert ab.selected == 1
        assert ab.registry.unmuted_indices() == [1]
        assert pull_audio(ab)[0, 0] == pytest.approx(B_LEVEL)

    def test_next_wraps_back_to_a(self, ab):
        ab.next_source()
        ab.next_source()
        assert ab.selected == 0
        assert ab.registry.unmuted_indices() == [0]

    def test_select_out_of_range_keeps_state(self, ab):
        ab.next_source()
        ab.next_source()
        with pytest.raises(IndexOutOfRange):
            ab.select_source(5)
        assert ab.selected == 0
        assert ab.registry.unmuted_indices() == [0]
        assert ab.state is PlaybackState.PLAYING

    def test_end_of_stream_stops_once(self, ab):
        for _ in range(500):
            if ab.watcher.finished:
                break
            stream().pull()
            time.sleep(0.005)

        assert ab.wait(timeout=3.0)
        assert ab.watcher.succeeded
        assert ab.state is PlaybackState.STOPPED
        ab.stop()
        assert ab.state is PlaybackState.STOPPED

    def test_progress_before_play_not_ready(self, selector, make_wav):
        selector.add_source(make_wav())
        selector.add_source(make_wav())
        with pytest.raises(NotReady):
            selector.progress()


class TestProgress:
    def test_progress_advances_within_bounds(self, ab):
        pull_audio(ab)
        first = ab.progress()
        pull_audio(ab)
        second = ab.progress()
        assert 0.0 < first < second <= 100.0

    def test_poller_reports_percentages(self, ab):
        seen = []
        ab.start_progress_poller(seen.append, interval=0.01)
        pull_audio(ab)
        assert wait_until(lambda: len(seen) > 0)
        assert all(0.0 <= p <= 100.0 for p in seen)

    def test_poller_survives_callback_errors(self, ab):
        callback = Mock(side_effect=RuntimeError("ui gone"))
        poller = ab.start_progress_poller(callback, interval=0.01)
        pull_audio(ab)
        assert wait_until(lambda: callback.call_count >= 2)
        poller.stop()


class TestLifecycle:
    def test_toggle_pauses_and_resumes(self, ab):
        ab.toggle()
        assert ab.state is PlaybackState.PAUSED
        assert not stream().active
        ab.toggle()
        assert ab.state is PlaybackState.PLAYING
        assert stream().active

    def test_stop_twice(self, ab):
        ab.stop()
        ab.stop()
        assert ab.state is PlaybackState.STOPPED

    def test_replay_after_stop_relinks(self, ab):
        ab.next_source()
        ab.stop()
        ab.play()
        assert wait_until(lambda: all(s.is_linked for s in ab.registry.sources()))
        assert ab.registry.unmuted_indices() == [1]
        assert pull_audio(ab)[0, 0] == pytest.approx(B_LEVEL)

    def test_sources_lists_paths(self, ab):
        assert [p.name for p in ab.sources] == ["a.wav", "b.wav"]

    def test_context_manager_closes(self, config, fake_stream, make_wav):
        with AudioSelector(config, stream_factory=fake_stream) as sel:
            sel.add_source(make_wav()).start_watching().play()
        assert sel.state is PlaybackState.STOPPED
        assert not sel.watcher.running


class TestConstructionErrors:
    def test_missing_file(self, selector, tmp_path):
        with pytest.raises(ConfigurationError):
            selector.add_source(tmp_path / "missing.wav")
        assert len(selector.registry) == 0

    def test_watching_twice(self, selector):
        selector.start_watching()
        with pytest.raises(EngineError):
            selector.start_watching()

    def test_wait_requires_watcher(self, selector):
        with pytest.raises(EngineError):
            selector.wait(0)

    def test_bad_file_reported_through_watcher(self, selector, make_wav, tmp_path):
        bogus = tmp_path / "bogus.wav"
        bogus.write_bytes(b"RIFF but not really")
        selector.add_source(make_wav()).add_source(bogus).start_watching().play()

        assert selector.wait(timeout=3.0)
        assert isinstance(selector.error, EngineError)
        assert selector.state is PlaybackState.STOPPED

    def test_rate_mismatch_reported_through_watcher(self, selector, make_wav):
        selector.add_source(make_wav(samplerate=8000))
        selector.add_source(make_wav(samplerate=16000))
        selector.start_watching().play()

        assert selector.wait(timeout=3.0)
        assert selector.error is not None
        assert selector.state is PlaybackState.STOPPED


def test_add_source_while_playing(selector, make_wav):
    selector.add_source(make_wav(value=A_LEVEL)).start_watching().play()
    selector.add_source(make_wav(value=B_LEVEL))
    assert wait_until(lambda: all(s.is_linked for s in selector.registry.sources()))
    assert selector.registry.unmuted_indices() == [0]
    out = pull_audio(selector)
    assert np.allclose(out[:, 0], A_LEVEL)


def run_to_end(selector):
    for _ in range(500):
        if selector.watcher.finished:
            break
        stream().pull()
        time.sleep(0.005)
    assert selector.wait(timeout=3.0)


class TestReplay:
    def test_play_again_after_end_of_stream(self, ab):
        run_to_end(ab)
        assert ab.state is PlaybackState.STOPPED

        ab.play()

        assert not ab.watcher.finished
        assert wait_until(lambda: all(s.is_linked for s in ab.registry.sources()))
        assert pull_audio(ab)[0, 0] == pytest.approx(A_LEVEL)
        assert ab.progress() > 0.0

    def test_second_session_ends_on_its_own_end_of_stream(self, ab):
        run_to_end(ab)
        ab.play()
        assert wait_until(lambda: all(s.is_linked for s in ab.registry.sources()))
        run_to_end(ab)
        assert ab.watcher.succeeded
        assert ab.state is PlaybackState.STOPPED

    def test_start_watching_after_session_ended(self, ab):
        run_to_end(ab)
        assert ab.start_watching() is ab
        assert not ab.watcher.finished

    def test_play_without_start_watching_links_sources(self, selector, make_wav):
        selector.add_source(make_wav(value=A_LEVEL)).add_source(make_wav(value=B_LEVEL))
        selector.play()
        assert selector.watcher.running
        assert wait_until(lambda: all(s.is_linked for s in selector.registry.sources()))
        assert pull_audio(selector)[0, 0] == pytest.approx(A_LEVEL)


class TestLateSources:
    def test_sources_added_after_empty_play(self, selector, make_wav):
        selector.start_watching().play()
        assert stream().samplerate == 44100

        selector.add_source(make_wav(value=A_LEVEL, samplerate=8000))
        selector.add_source(make_wav(value=B_LEVEL, samplerate=8000))

        assert wait_until(lambda: all(s.is_linked for s in selector.registry.sources()))
        assert selector.error is None
        assert selector.state is PlaybackState.PLAYING
        assert selector.registry.unmuted_indices() == [0]
        assert wait_until(lambda: stream().samplerate == 8000)
        assert pull_audio(selector)[0, 0] == pytest.approx(A_LEVEL)

    def test_selection_before_play_is_kept(self, selector, make_wav):
        selector.add_source(make_wav(value=A_LEVEL)).add_source(make_wav(value=B_LEVEL))
        selector.select_source(1)
        selector.play()
        assert wait_until(lambda: all(s.is_linked for s in selector.registry.sources()))
        assert selector.registry.unmuted_indices() == [1]
        assert pull_audio(selector)[0, 0] == pytest.approx(B_LEVEL)
