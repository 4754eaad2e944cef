"""
Orchestration: chunk generation, timeline assembly and rendering.
"""

import asyncio
import logging
import os
import tempfile
from collections.abc import Callable
from dataclasses import replace
from typing import Protocol

from .chunks import split_into_chunks
from .io_ffmpeg import FfmpegEncoder, export_wav
from .mixer import mix_chunk
from .models import (
    AudioBuffer,
    Chunk,
    MixedChunk,
    PipelineSettings,
    PipelineStage,
    PipelineState,
)
from .music import MusicAcquirer
from .render import FrameSink, SynchronizedRenderer
from .timeline import assemble_timeline

logger = logging.getLogger("versereel")

StateObserver = Callable[[PipelineState], None]
SinkFactory = Callable[[str, str], FrameSink]


class Narrator(Protocol):
    async def synthesize(self, chunk: Chunk) -> AudioBuffer: ...


class MoodSuggester(Protocol):
    async def suggest(self, text: str) -> str: ...


class StateTracker:
    """Owns the PipelineState value and notifies observers with snapshots."""

    def __init__(self) -> None:
        self._state = PipelineState()
        self._observers: list[StateObserver] = []

    @property
    def state(self) -> PipelineState:
        return replace(self._state)

    def subscribe(self, observer: StateObserver) -> None:
        self._observers.append(observer)

    def _publish(self, **changes) -> None:
        self._state = replace(self._state, **changes)
        snapshot = self.state
        for observer in self._observers:
            observer(snapshot)

    def begin(self, total: int) -> None:
        self._publish(stage=PipelineStage.GENERATING_AUDIO, current=0, total=total, error=None)

    def stage(self, stage: PipelineStage) -> None:
        self._publish(stage=stage)

    def advance(self, current: int) -> None:
        self._publish(current=current)

    def fail(self, message: str) -> None:
        self._publish(stage=PipelineStage.IDLE, error=message)

    def reset(self) -> None:
        self._publish(stage=PipelineStage.IDLE, current=0, total=0, error=None)


class ChunkPipeline:
    """Narration -> mood prompt -> music -> mix, one chunk at a time, in order."""

    def __init__(
        self,
        narrator: Narrator,
        suggester: MoodSuggester,
        music: MusicAcquirer,
        settings: PipelineSettings,
        tracker: StateTracker,
    ) -> None:
        self.narrator = narrator
        self.suggester = suggester
        self.music = music
        self.settings = settings
        self.tracker = tracker

    async def process(self, chunk: Chunk) -> MixedChunk:
        self.tracker.stage(PipelineStage.GENERATING_AUDIO)
        narration = await self.narrator.synthesize(chunk)

        self.tracker.stage(PipelineStage.GENERATING_MUSIC)
        prompt = await self.suggester.suggest(chunk.text)
        music = await self.music.acquire(narration.duration, prompt, chunk=chunk.index + 1)

        mixed = mix_chunk(narration, music, self.settings)
        logger.info(
            "Chunk %d mixed: narration %.2fs, mix %.2fs", chunk.index + 1, narration.duration, mixed.duration
        )
        return MixedChunk(lines=chunk.lines, buffer=mixed)

    async def generate(self, chunks: list[Chunk]) -> list[MixedChunk]:
        mixed: list[MixedChunk] = []
        for i, chunk in enumerate(chunks):
            mixed.append(await self.process(chunk))
            self.tracker.advance(i + 1)
        return mixed


class VerseVideoPipeline:
    """Top-level run: text in, video file out, state reset to idle on failure."""

    def __init__(
        self,
        narrator: Narrator,
        suggester: MoodSuggester,
        music: MusicAcquirer,
        settings: PipelineSettings | None = None,
        tracker: StateTracker | None = None,
        sink_factory: SinkFactory | None = None,
    ) -> None:
        self.settings = settings or PipelineSettings()
        self.tracker = tracker or StateTracker()
        self.chunks = ChunkPipeline(narrator, suggester, music, self.settings, self.tracker)
        self.sink_factory = sink_factory or self._ffmpeg_sink

    def _ffmpeg_sink(self, output_path: str, audio_wav: str) -> FrameSink:
        s = self.settings
        return FfmpegEncoder(output_path, audio_wav, s.width, s.height, s.fps)

    async def run(self, text: str, output_path: str) -> str:
        """
        Generate the video for ``text`` into ``output_path``. Blank input raises
        EmptyInputError before any state change. Any failure moves the state
        back to idle with its message and is re-raised.
        """
        chunks = split_into_chunks(text, self.settings.lines_per_chunk)
        self.tracker.begin(len(chunks))
        try:
            mixed = await self.chunks.generate(chunks)

            self.tracker.stage(PipelineStage.CREATING_VIDEO)
            master, timeline = assemble_timeline(mixed)
            del mixed

            with tempfile.TemporaryDirectory(prefix="versereel-") as tmp:
                audio_wav = os.path.join(tmp, "master.wav")
                export_wav(master, audio_wav)
                renderer = SynchronizedRenderer(self.settings)
                await renderer.render(master, timeline, self.sink_factory(output_path, audio_wav))
        except asyncio.CancelledError:
            self.tracker.reset()
            raise
        except Exception as e:
            logger.error(f"Generation failed: {e}")
            self.tracker.fail(str(e) or type(e).__name__)
            raise

        self.tracker.stage(PipelineStage.DONE)
        return output_path
