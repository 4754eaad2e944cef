"""
Music bed acquisition from a streaming (Lyria RealTime) session.

The session pushes interleaved 16-bit stereo PCM until told to stop. Pushes go
through a ChunkHandoff (one producer, one consumer) into a StereoAccumulator
preallocated for the target length; once it is full the session is stopped.
"""

import asyncio
import contextlib
import logging
import math
from typing import Any, Protocol

import numpy as np
from google.genai import types

from .audio import decode_payload, decode_pcm16
from .errors import MusicStreamError, ServiceTimeoutError
from .models import AudioBuffer

logger = logging.getLogger("versereel")

STEREO_FRAME_BYTES = 4
_END = object()


class StereoAccumulator:
    """Fixed-size stereo buffer filled from interleaved PCM16 byte chunks."""

    def __init__(self, target_frames: int, sample_rate: int) -> None:
        self.target_frames = target_frames
        self.sample_rate = sample_rate
        self.frames = 0
        self._samples = np.zeros((2, target_frames), dtype=np.float32)
        self._pending = b""

    @property
    def full(self) -> bool:
        return self.frames >= self.target_frames

    def push(self, data: bytes) -> int:
        """Append a chunk; returns the number of frames taken. Excess is dropped."""
        if self.full:
            return 0
        data = self._pending + data
        usable = len(data) - (len(data) % STEREO_FRAME_BYTES)
        self._pending = data[usable:]
        block = decode_pcm16(data[:usable], channels=2)
        take = min(block.shape[1], self.target_frames - self.frames)
        self._samples[:, self.frames : self.frames + take] = block[:, :take]
        self.frames += take
        return take

    def to_buffer(self) -> AudioBuffer:
        return AudioBuffer(self._samples[:, : self.frames], self.sample_rate)


class ChunkHandoff:
    """Bounded single-producer/single-consumer queue for pushed audio events."""

    def __init__(self, maxsize: int = 64) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize)
        self.closed = False

    async def on_audio_chunk(self, data: bytes) -> None:
        if not self.closed:
            await self._queue.put(data)

    async def on_error(self, err: BaseException) -> None:
        if not self.closed:
            await self._queue.put(err)

    async def on_close(self) -> None:
        if not self.closed:
            await self._queue.put(_END)

    async def next_chunk(self) -> bytes | None:
        """Next PCM chunk, None once the producer closed; re-raises producer errors."""
        item = await self._queue.get()
        if item is _END:
            return None
        if isinstance(item, BaseException):
            raise item
        return item

    def close(self) -> None:
        self.closed = True


class MusicSession(Protocol):
    async def stop(self) -> None: ...


class MusicSource(Protocol):
    async def connect(self, prompt: str, handoff: ChunkHandoff) -> MusicSession: ...


class LyriaSession:
    """An open live music session plus the task pumping its messages."""

    def __init__(self, session: Any, pump: asyncio.Task, stack: contextlib.AsyncExitStack) -> None:
        self.session = session
        self.pump = pump
        self.stack = stack

    async def stop(self) -> None:
        try:
            await self.session.stop()
        finally:
            self.pump.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self.pump
            await self.stack.aclose()


class LyriaMusicSource:
    """Opens Lyria RealTime sessions through a google-genai client (v1alpha API)."""

    def __init__(self, client: Any, model: str = "models/lyria-realtime-exp") -> None:
        self.client = client
        self.model = model

    async def connect(self, prompt: str, handoff: ChunkHandoff) -> LyriaSession:
        stack = contextlib.AsyncExitStack()
        session = await stack.enter_async_context(self.client.aio.live.music.connect(model=self.model))
        try:
            await session.set_weighted_prompts(
                prompts=[types.WeightedPrompt(text=prompt, weight=1.0)]
            )
            await session.play()
        except BaseException:
            await stack.aclose()
            raise
        pump = asyncio.create_task(self._pump(session, handoff))
        return LyriaSession(session, pump, stack)

    async def _pump(self, session: Any, handoff: ChunkHandoff) -> None:
        try:
            async for message in session.receive():
                content = getattr(message, "server_content", None)
                for chunk in getattr(content, "audio_chunks", None) or []:
                    if chunk.data:
                        await handoff.on_audio_chunk(decode_payload(chunk.data))
                filtered = getattr(message, "filtered_prompt", None)
                if filtered:
                    logger.warning("Music prompt was filtered: %s", filtered)
        except Exception as e:
            await handoff.on_error(e)
            return
        await handoff.on_close()


class MusicAcquirer:
    """Streams enough music to cover a narration plus a tail margin."""

    def __init__(
        self,
        source: MusicSource,
        sample_rate: int = 48000,
        tail_secs: float = 1.5,
        timeout: float = 120.0,
    ) -> None:
        self.source = source
        self.sample_rate = sample_rate
        self.tail_secs = tail_secs
        self.timeout = timeout

    def target_frames(self, duration: float) -> int:
        return math.ceil((duration + self.tail_secs) * self.sample_rate)

    async def acquire(self, duration: float, prompt: str, chunk: int | None = None) -> AudioBuffer:
        accumulator = StereoAccumulator(self.target_frames(duration), self.sample_rate)
        handoff = ChunkHandoff()
        logger.info(
            "Streaming %.2fs of music for chunk %s (%d frames)",
            duration + self.tail_secs,
            chunk if chunk is not None else "?",
            accumulator.target_frames,
        )
        try:
            session = await asyncio.wait_for(self.source.connect(prompt, handoff), self.timeout)
        except asyncio.TimeoutError:
            raise ServiceTimeoutError("music", self.timeout, chunk=chunk) from None
        except Exception as e:
            raise MusicStreamError(f"could not open session: {e}", chunk) from e

        try:
            while not accumulator.full:
                try:
                    data = await asyncio.wait_for(handoff.next_chunk(), self.timeout)
                except asyncio.TimeoutError:
                    raise ServiceTimeoutError("music", self.timeout, chunk=chunk) from None
                except Exception as e:
                    raise MusicStreamError(
                        f"{str(e) or type(e).__name__} "
                        f"(after {accumulator.frames} of {accumulator.target_frames} frames)",
                        chunk,
                    ) from e
                if data is None:
                    raise MusicStreamError(
                        f"stream ended after {accumulator.frames} of {accumulator.target_frames} frames",
                        chunk,
                    )
                accumulator.push(data)
        finally:
            handoff.close()
            await self._stop(session)

        return accumulator.to_buffer()

    async def _stop(self, session: MusicSession) -> None:
        try:
            await session.stop()
        except Exception as e:
            logger.warning("Music session did not stop cleanly: %s", e)
