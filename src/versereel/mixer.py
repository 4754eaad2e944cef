"""
Narration-over-music mixing with a ducked music bed.
"""

import logging
import math

import numpy as np

from .audio import resample, upmix
from .models import AudioBuffer, PipelineSettings

logger = logging.getLogger("versereel")


def music_gain_envelope(
    t: np.ndarray,
    narration_duration: float,
    music_gain: float = 0.35,
    duck_lead_secs: float = 1.0,
) -> np.ndarray:
    """
    Music gain at times ``t``: held at ``music_gain`` until
    ``narration_duration - duck_lead_secs``, then ramped linearly to 0 at
    ``narration_duration + duck_lead_secs`` and held there.
    """
    hold_until = max(0.0, narration_duration - duck_lead_secs)
    silent_from = narration_duration + duck_lead_secs
    return np.interp(t, [0.0, hold_until, silent_from], [music_gain, music_gain, 0.0])


def mix_chunk(
    narration: AudioBuffer,
    music: AudioBuffer,
    settings: PipelineSettings | None = None,
) -> AudioBuffer:
    """
    Render narration (boosted, on both channels) and the ducked music bed
    into one stereo buffer at the music rate, as long as the longer input.
    Samples are hard-clipped to [-1, 1].
    """
    settings = settings or PipelineSettings()
    rate = settings.music_sample_rate

    voice = upmix(resample(narration, rate), 2)
    bed = upmix(resample(music, rate), 2)

    duration = max(narration.duration, music.duration)
    frames = math.ceil(duration * rate - 1e-9)
    out = np.zeros((2, frames), dtype=np.float32)

    n = min(voice.length, frames)
    out[:, :n] += voice.samples[:, :n] * settings.narration_gain

    m = min(bed.length, frames)
    gain = music_gain_envelope(
        np.arange(m) / rate,
        narration.duration,
        settings.music_gain,
        settings.duck_lead_secs,
    )
    out[:, :m] += bed.samples[:, :m] * gain.astype(np.float32)

    clipped = int(np.count_nonzero(np.abs(out) > 1.0))
    if clipped:
        logger.debug("Mix clipped %d samples", clipped)
    np.clip(out, -1.0, 1.0, out=out)
    return AudioBuffer(out, rate)
