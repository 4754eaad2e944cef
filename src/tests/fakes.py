"""
In-process stand-ins for the external services and the video encoder.
"""

import asyncio
import contextlib
from types import SimpleNamespace

import numpy as np

from src.versereel.errors import EncodingError
from src.versereel.models import AudioBuffer, Chunk


def stereo_pcm(frames: int, left: float = 0.25, right: float = -0.25) -> bytes:
    """Interleaved 16-bit stereo PCM with constant channel values."""
    inter = np.empty(frames * 2, dtype="<i2")
    inter[0::2] = int(left * 32768)
    inter[1::2] = int(right * 32768)
    return inter.tobytes()


def mono_pcm(frames: int, value: float = 0.1) -> bytes:
    return np.full(frames, int(value * 32768), dtype="<i2").tobytes()


class InFlight:
    """Counts overlapping external calls."""

    def __init__(self) -> None:
        self.current = 0
        self.peak = 0

    def enter(self) -> None:
        self.current += 1
        self.peak = max(self.peak, self.current)

    def exit(self) -> None:
        self.current -= 1


class FakeSession:
    def __init__(self, task: asyncio.Task, on_stop=None) -> None:
        self.task = task
        self.stopped = 0
        self.on_stop = on_stop

    async def stop(self) -> None:
        self.stopped += 1
        if self.on_stop:
            self.on_stop()
        self.task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self.task


class FakeMusicSource:
    """Pushes the given PCM chunks into the handoff, then errors, closes, or keeps streaming."""

    def __init__(
        self,
        chunks: list[bytes] | None = None,
        *,
        error: Exception | None = None,
        close: bool = False,
        endless_chunk: bytes | None = None,
        in_flight: InFlight | None = None,
    ) -> None:
        self.chunks = chunks or []
        self.error = error
        self.close = close
        self.endless_chunk = endless_chunk
        self.in_flight = in_flight
        self.prompts: list[str] = []
        self.sessions: list[FakeSession] = []

    async def connect(self, prompt, handoff):
        self.prompts.append(prompt)
        if self.in_flight:
            self.in_flight.enter()
        task = asyncio.create_task(self._produce(handoff))
        session = FakeSession(task, self.in_flight.exit if self.in_flight else None)
        self.sessions.append(session)
        return session

    async def _produce(self, handoff) -> None:
        for chunk in self.chunks:
            await handoff.on_audio_chunk(chunk)
            await asyncio.sleep(0)
        if self.error is not None:
            await handoff.on_error(self.error)
        elif self.close:
            await handoff.on_close()
        elif self.endless_chunk is not None:
            while True:
                await handoff.on_audio_chunk(self.endless_chunk)
                await asyncio.sleep(0)
        else:
            await asyncio.Event().wait()


class FakeNarrator:
    """Returns a constant mono buffer of fixed duration per chunk."""

    def __init__(self, duration: float, sample_rate: int, in_flight: InFlight | None = None) -> None:
        self.duration = duration
        self.sample_rate = sample_rate
        self.in_flight = in_flight
        self.calls: list[int] = []

    async def synthesize(self, chunk: Chunk) -> AudioBuffer:
        if self.in_flight:
            self.in_flight.enter()
        try:
            await asyncio.sleep(0)
            self.calls.append(chunk.index)
            frames = int(self.duration * self.sample_rate)
            return AudioBuffer(np.full(frames, 0.1, dtype=np.float32), self.sample_rate)
        finally:
            if self.in_flight:
                self.in_flight.exit()


class FakeSuggester:
    def __init__(self, prompt: str = "Strings, calm, warm") -> None:
        self.prompt = prompt
        self.texts: list[str] = []

    async def suggest(self, text: str) -> str:
        self.texts.append(text)
        return self.prompt


class RecordingSink:
    """Frame sink that keeps frames in memory."""

    def __init__(self, block_after: int | None = None, fail_after: int | None = None) -> None:
        self.frames: list[bytes] = []
        self.started = False
        self.finished = False
        self.aborted = False
        self.block_after = block_after
        self.fail_after = fail_after

    async def start(self) -> None:
        self.started = True

    async def write(self, frame: bytes) -> None:
        if self.block_after is not None and len(self.frames) >= self.block_after:
            await asyncio.Event().wait()
        if self.fail_after is not None and len(self.frames) >= self.fail_after:
            raise EncodingError("encoder went away")
        self.frames.append(frame)

    async def finish(self) -> None:
        self.finished = True

    async def abort(self) -> None:
        self.aborted = True


class HangingMusicSource(FakeMusicSource):
    """Never completes the session handshake."""

    async def connect(self, prompt, handoff):
        self.prompts.append(prompt)
        await asyncio.Event().wait()


class FakeModels:
    """Stands in for client.aio.models."""

    def __init__(self, response=None, error: Exception | None = None, hang: bool = False) -> None:
        self.response = response
        self.error = error
        self.hang = hang
        self.calls: list[dict] = []

    async def generate_content(self, **kwargs):
        self.calls.append(kwargs)
        if self.hang:
            await asyncio.Event().wait()
        if self.error is not None:
            raise self.error
        return self.response


def fake_genai_client(models: FakeModels, music=None) -> SimpleNamespace:
    aio = SimpleNamespace(models=models, live=SimpleNamespace(music=music))
    return SimpleNamespace(aio=aio)


def audio_response(data) -> SimpleNamespace:
    part = SimpleNamespace(inline_data=SimpleNamespace(data=data, mime_type="audio/L16;rate=24000"))
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))])
