"""
Tests for chunk orchestration and the end-to-end run.
"""

import asyncio
import os
import sys

import pytest

from src.tests.fakes import (
    FakeModels,
    FakeMusicSource,
    FakeNarrator,
    FakeSuggester,
    InFlight,
    RecordingSink,
    fake_genai_client,
    stereo_pcm,
)
from src.versereel.errors import EmptyInputError, MusicStreamError
from src.versereel.models import PipelineSettings, PipelineStage
from src.versereel.music import MusicAcquirer
from src.versereel.pipeline import StateTracker, VerseVideoPipeline
from src.versereel.prompts import FALLBACK_MOOD_PROMPT, GeminiMoodSuggester
from src.versereel.render import CaptionPainter

SETTINGS = PipelineSettings(
    narration_sample_rate=4000,
    music_sample_rate=8000,
    width=72,
    height=128,
    fps=5,
    font_size=12,
    line_height=16,
)
TEXT = "l1\nl2\nl3\nl4\n\nl5\nl6"


def _build(source, narrator=None, suggester=None):
    sinks = []

    def sink_factory(output_path, audio_wav):
        sink = RecordingSink()
        sinks.append((output_path, audio_wav, sink))
        return sink

    tracker = StateTracker()
    states = []
    tracker.subscribe(states.append)
    music = MusicAcquirer(source, sample_rate=SETTINGS.music_sample_rate, tail_secs=SETTINGS.music_tail_secs)
    pipeline = VerseVideoPipeline(
        narrator or FakeNarrator(1.0, SETTINGS.narration_sample_rate),
        suggester or FakeSuggester(),
        music,
        SETTINGS,
        tracker,
        sink_factory=sink_factory,
    )
    return pipeline, tracker, states, sinks


def test_full_run_produces_video_and_done_state():
    """Test narration -> music -> mix -> timeline -> render for two chunks."""
    source = FakeMusicSource(endless_chunk=stereo_pcm(2000))
    suggester = FakeSuggester("Oud, calm")
    pipeline, tracker, states, sinks = _build(source, suggester=suggester)

    out = asyncio.run(pipeline.run(TEXT, "out/video.webm"))

    assert out == "out/video.webm"
    assert tracker.state.stage is PipelineStage.DONE
    assert (tracker.state.current, tracker.state.total) == (2, 2)
    assert tracker.state.error is None
    assert suggester.texts == ["l1\nl2\nl3\nl4", "l5\nl6"]
    assert source.prompts == ["Oud, calm", "Oud, calm"]
    assert all(s.stopped == 1 for s in source.sessions)

    # each chunk: 1.0s narration + 1.5s tail -> 2.5s mix; 5.0s total at 5 fps
    (output_path, audio_wav, sink), = sinks
    assert output_path == "out/video.webm"
    assert audio_wav.endswith("master.wav")
    assert len(sink.frames) == 25
    assert sink.finished


def test_progress_and_stage_sequence():
    """Test state notifications in order."""
    pipeline, _, states, _ = _build(FakeMusicSource(endless_chunk=stereo_pcm(2000)))
    asyncio.run(pipeline.run(TEXT, "v.webm"))

    stages = [s.stage for s in states]
    assert stages[0] is PipelineStage.GENERATING_AUDIO
    assert PipelineStage.GENERATING_MUSIC in stages
    assert stages[-2:] == [PipelineStage.CREATING_VIDEO, PipelineStage.DONE]
    currents = [s.current for s in states]
    assert currents == sorted(currents)
    assert max(s.current for s in states) == 2
    assert all(s.total == 2 for s in states)


def test_chunks_never_overlap_external_calls():
    """Test that at most one chunk's narration/music request is in flight."""
    in_flight = InFlight()
    source = FakeMusicSource(endless_chunk=stereo_pcm(500), in_flight=in_flight)
    narrator = FakeNarrator(0.5, SETTINGS.narration_sample_rate, in_flight=in_flight)
    pipeline, _, _, _ = _build(source, narrator=narrator)

    asyncio.run(pipeline.run("\n".join(f"line {i}" for i in range(13)), "v.webm"))

    assert narrator.calls == [0, 1, 2, 3]
    assert in_flight.peak == 1
    assert in_flight.current == 0


def test_music_failure_aborts_and_returns_to_idle():
    """Test a stream error before the buffer fills."""
    source = FakeMusicSource([stereo_pcm(1000)], error=ConnectionError("session dropped"))
    pipeline, tracker, _, sinks = _build(source)

    with pytest.raises(MusicStreamError):
        asyncio.run(pipeline.run(TEXT, "v.webm"))

    assert tracker.state.stage is PipelineStage.IDLE
    assert tracker.state.error
    assert "chunk 1" in tracker.state.error
    assert sinks == []
    assert len(source.sessions) == 1
    assert source.sessions[0].stopped == 1


def test_suggestion_failure_does_not_abort():
    """Test the fallback prompt flowing into the music request."""
    source = FakeMusicSource(endless_chunk=stereo_pcm(2000))
    suggester = GeminiMoodSuggester(fake_genai_client(FakeModels(error=RuntimeError("503"))))
    pipeline, tracker, _, _ = _build(source, suggester=suggester)

    asyncio.run(pipeline.run("only line", "v.webm"))

    assert tracker.state.stage is PipelineStage.DONE
    assert source.prompts == [FALLBACK_MOOD_PROMPT]


def test_empty_input_rejected_without_state_change():
    """Test that blank input never starts the pipeline."""
    source = FakeMusicSource()
    pipeline, tracker, states, _ = _build(source)

    with pytest.raises(EmptyInputError):
        asyncio.run(pipeline.run("  \n\n ", "v.webm"))

    assert states == []
    assert tracker.state.stage is PipelineStage.IDLE
    assert source.prompts == []


def test_tracker_reset_clears_error():
    """Test user-initiated restart."""
    tracker = StateTracker()
    tracker.begin(3)
    tracker.fail("boom")
    assert tracker.state.error == "boom"

    tracker.reset()
    state = tracker.state
    assert (state.stage, state.current, state.total, state.error) == (PipelineStage.IDLE, 0, 0, None)


FAKE_FFMPEG = '#!/bin/sh\nfor a in "$@"; do last="$a"; done\nexec cat > "$last"\n'


def _install_fake_ffmpeg(tmp_path, monkeypatch):
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    exe = bin_dir / "ffmpeg"
    exe.write_text(FAKE_FFMPEG)
    exe.chmod(0o755)
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")


def _ffmpeg_pipeline():
    music = MusicAcquirer(
        FakeMusicSource(endless_chunk=stereo_pcm(2000)),
        sample_rate=SETTINGS.music_sample_rate,
        tail_secs=SETTINGS.music_tail_secs,
    )
    tracker = StateTracker()
    pipeline = VerseVideoPipeline(
        FakeNarrator(1.0, SETTINGS.narration_sample_rate), FakeSuggester(), music, SETTINGS, tracker
    )
    return pipeline, tracker


@pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell")
def test_encoded_video_is_moved_into_place(tmp_path, monkeypatch):
    """Test that a clean render publishes the finished file only."""
    _install_fake_ffmpeg(tmp_path, monkeypatch)
    pipeline, _ = _ffmpeg_pipeline()
    out = tmp_path / "videos" / "poem.webm"

    asyncio.run(pipeline.run(TEXT, str(out)))

    assert out.stat().st_size == 25 * 72 * 128 * 3
    assert [p.name for p in out.parent.iterdir()] == ["poem.webm"]


@pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell")
def test_failed_render_leaves_no_video(tmp_path, monkeypatch):
    """Test that a mid-render failure discards the partial file."""
    _install_fake_ffmpeg(tmp_path, monkeypatch)
    paint = CaptionPainter.paint
    calls = []

    def flaky_paint(self, t, chunk, duration):
        calls.append(t)
        if len(calls) == 4:
            raise ValueError("paint failed")
        return paint(self, t, chunk, duration)

    monkeypatch.setattr(CaptionPainter, "paint", flaky_paint)
    pipeline, tracker = _ffmpeg_pipeline()
    out = tmp_path / "videos" / "poem.webm"

    with pytest.raises(ValueError, match="paint failed"):
        asyncio.run(pipeline.run(TEXT, str(out)))

    assert tracker.state.stage is PipelineStage.IDLE
    assert tracker.state.error == "paint failed"
    assert not out.exists()
    assert list(out.parent.iterdir()) == []
