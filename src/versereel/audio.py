"""
PCM decoding and sample-rate utilities for float audio buffers.
"""

import base64
import logging

import numpy as np

from .models import AudioBuffer

logger = logging.getLogger("versereel")

PCM16_SCALE = 32768.0


def decode_payload(data: bytes | str) -> bytes:
    """Return raw bytes from an SDK payload (bytes, or base64 text on some transports)."""
    if isinstance(data, str):
        return base64.b64decode(data)
    return bytes(data)


def decode_pcm16(data: bytes, channels: int = 1) -> np.ndarray:
    """
    Decode 16-bit signed little-endian PCM into floats shaped (channels, frames).
    Interleaved input is deinterleaved; a trailing partial frame is ignored.
    """
    usable = len(data) - (len(data) % (2 * channels))
    ints = np.frombuffer(data[:usable], dtype="<i2")
    floats = ints.astype(np.float32) / PCM16_SCALE
    return floats.reshape(-1, channels).T


def resample(buffer: AudioBuffer, sample_rate: int) -> AudioBuffer:
    """Linear-interpolation resample to ``sample_rate``."""
    if buffer.sample_rate == sample_rate:
        return buffer
    frames = int(round(buffer.length * sample_rate / buffer.sample_rate))
    if buffer.length == 0 or frames == 0:
        return AudioBuffer.silent(0, sample_rate, buffer.channels)
    src_t = np.arange(buffer.length) / buffer.sample_rate
    dst_t = np.arange(frames) / sample_rate
    out = np.vstack([np.interp(dst_t, src_t, ch) for ch in buffer.samples])
    logger.debug("Resampled %d -> %d Hz (%d -> %d frames)", buffer.sample_rate, sample_rate, buffer.length, frames)
    return AudioBuffer(out, sample_rate)


def upmix(buffer: AudioBuffer, channels: int) -> AudioBuffer:
    """Copy a mono buffer onto ``channels`` channels; other layouts must already match."""
    if buffer.channels == channels:
        return buffer
    if buffer.channels != 1:
        raise ValueError(f"cannot map {buffer.channels} channels onto {channels}")
    return AudioBuffer(np.repeat(buffer.samples, channels, axis=0), buffer.sample_rate)
