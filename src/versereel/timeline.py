"""
Master timeline assembly from per-chunk mixes.
"""

import logging

import numpy as np

from .audio import resample, upmix
from .errors import AssemblyError
from .models import AudioBuffer, MixedChunk, TimedChunk

logger = logging.getLogger("versereel")


def _normalize(buffer: AudioBuffer, sample_rate: int, channels: int, index: int) -> AudioBuffer:
    if buffer.sample_rate != sample_rate:
        logger.warning(
            "Chunk %d mixed at %d Hz, resampling to %d Hz", index + 1, buffer.sample_rate, sample_rate
        )
        buffer = resample(buffer, sample_rate)
    try:
        return upmix(buffer, channels)
    except ValueError as e:
        raise AssemblyError(f"chunk {index + 1} has an incompatible channel layout: {e}") from e


def assemble_timeline(mixed: list[MixedChunk]) -> tuple[AudioBuffer, list[TimedChunk]]:
    """
    Concatenate chunk mixes in order into one master buffer and place each
    chunk's lines at its [start, end) span. Times derive from frame offsets,
    so every chunk starts exactly where the previous one ends.
    """
    if not mixed:
        raise AssemblyError("cannot assemble an empty chunk list")

    sample_rate = mixed[0].buffer.sample_rate
    channels = max(item.buffer.channels for item in mixed)
    buffers = [_normalize(item.buffer, sample_rate, channels, i) for i, item in enumerate(mixed)]

    total = sum(b.length for b in buffers)
    master = np.zeros((channels, total), dtype=np.float32)
    timed: list[TimedChunk] = []
    offset = 0
    for item, buf in zip(mixed, buffers):
        master[:, offset : offset + buf.length] = buf.samples
        timed.append(
            TimedChunk(
                lines=item.lines,
                start_time=offset / sample_rate,
                end_time=(offset + buf.length) / sample_rate,
            )
        )
        offset += buf.length

    out = AudioBuffer(master, sample_rate)
    logger.info(f"Timeline: {len(timed)} chunks, {out.duration:.2f}s total")
    return out, timed
