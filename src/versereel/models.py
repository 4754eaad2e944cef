"""
Data models for the verse video pipeline.
"""

from dataclasses import dataclass
from enum import Enum

import numpy as np


@dataclass(frozen=True)
class Chunk:
    """An ordered group of up to four verse lines."""

    index: int
    lines: tuple[str, ...]

    @property
    def text(self) -> str:
        return "\n".join(self.lines)


@dataclass
class AudioBuffer:
    """Normalized float samples shaped (channels, frames) at a fixed rate."""

    samples: np.ndarray
    sample_rate: int

    def __post_init__(self) -> None:
        samples = np.asarray(self.samples, dtype=np.float32)
        if samples.ndim == 1:
            samples = samples[np.newaxis, :]
        if samples.ndim != 2:
            raise ValueError(f"expected (channels, frames) samples, got shape {samples.shape}")
        self.samples = samples

    @property
    def channels(self) -> int:
        return int(self.samples.shape[0])

    @property
    def length(self) -> int:
        return int(self.samples.shape[1])

    @property
    def duration(self) -> float:
        return self.length / float(self.sample_rate)

    @classmethod
    def silent(cls, frames: int, sample_rate: int, channels: int = 2) -> "AudioBuffer":
        return cls(np.zeros((channels, frames), dtype=np.float32), sample_rate)


@dataclass
class MixedChunk:
    """A chunk's lines paired with its final narration + music mix."""

    lines: tuple[str, ...]
    buffer: AudioBuffer


@dataclass(frozen=True)
class TimedChunk:
    """A chunk's lines placed on the master timeline (seconds)."""

    lines: tuple[str, ...]
    start_time: float
    end_time: float

    def contains(self, t: float) -> bool:
        return self.start_time <= t < self.end_time


class PipelineStage(str, Enum):
    IDLE = "idle"
    GENERATING_AUDIO = "generating_audio"
    GENERATING_MUSIC = "generating_music"
    CREATING_VIDEO = "creating_video"
    DONE = "done"


@dataclass
class PipelineState:
    """Snapshot of the pipeline state machine shown to the presentation layer."""

    stage: PipelineStage = PipelineStage.IDLE
    current: int = 0
    total: int = 0
    error: str | None = None


@dataclass(frozen=True)
class PipelineSettings:
    """Tunables for one pipeline run. Defaults match the reference behaviour."""

    lines_per_chunk: int = 4

    # narration
    narration_model: str = "gemini-2.5-flash-preview-tts"
    voice_name: str = "Zephyr"
    narration_sample_rate: int = 24000
    narration_style: str = (
        "Recite these verses with eloquent, deeply expressive poetic delivery "
        "in a strong, resonant voice:"
    )

    # mood prompt + music
    suggest_model: str = "gemini-2.5-flash"
    music_model: str = "models/lyria-realtime-exp"
    music_sample_rate: int = 48000
    music_tail_secs: float = 1.5

    # mix
    narration_gain: float = 1.5
    music_gain: float = 0.35
    duck_lead_secs: float = 1.0

    # video
    width: int = 720
    height: int = 1280
    fps: int = 30
    particle_count: int = 40
    particle_seed: int = 7
    font_path: str | None = None
    font_size: int = 46
    line_height: int = 80

    service_timeout: float = 120.0
