"""
Caption rendering synchronized to the master audio clock.
"""

import asyncio
import bisect
import logging
import math
import random
import unicodedata
from enum import Enum
from typing import Protocol

import numpy as np
from PIL import Image, ImageDraw, ImageFilter, ImageFont, features

from .models import AudioBuffer, PipelineSettings, TimedChunk

logger = logging.getLogger("versereel")

GRADIENT_TOP = (0x0F, 0x17, 0x2A)
GRADIENT_BOTTOM = (0x1E, 0x29, 0x3B)
PARTICLE_FILL = (255, 255, 255, 38)
CAPTION_FILL = (0xF8, 0xFA, 0xFC, 255)
SHADOW_FILL = (0, 0, 0, 153)
SHADOW_BLUR = 6
SHADOW_OFFSET_Y = 4
PROGRESS_HEIGHT = 12
PROGRESS_TRACK = (255, 255, 255, 26)
PROGRESS_FILL = (0x3B, 0x82, 0xF6, 255)


class Clock(Protocol):
    def now(self) -> float: ...

    async def tick(self) -> None: ...


class FrameClock:
    """Audio-aligned clock for offline encoding: one tick is one frame of audio time."""

    def __init__(self, fps: int) -> None:
        self.fps = fps
        self.frame = 0

    def now(self) -> float:
        return self.frame / self.fps

    async def tick(self) -> None:
        self.frame += 1
        await asyncio.sleep(0)


class FrameSink(Protocol):
    async def start(self) -> None: ...

    async def write(self, frame: bytes) -> None: ...

    async def finish(self) -> None: ...

    async def abort(self) -> None: ...


def find_active_chunk(timeline: list[TimedChunk], t: float) -> TimedChunk | None:
    """Chunk whose [start, end) span contains ``t`` (binary search on start times)."""
    starts = [c.start_time for c in timeline]
    i = bisect.bisect_right(starts, t) - 1
    if i >= 0 and timeline[i].contains(t):
        return timeline[i]
    return None


def is_rtl(text: str) -> bool:
    return any(unicodedata.bidirectional(ch) in ("R", "AL") for ch in text)


def load_font(font_path: str | None, size: int) -> ImageFont.FreeTypeFont:
    """Caption font at ``size``; Pillow's bundled face when no path is given."""
    if not font_path:
        return ImageFont.load_default(size=size)
    try:
        return ImageFont.truetype(font_path, size)
    except OSError as e:
        raise RuntimeError(f"Cannot load caption font {font_path}: {e}") from e


class CaptionPainter:
    """Draws one frame: gradient, particle field, caption and progress bar."""

    def __init__(self, settings: PipelineSettings) -> None:
        self.width = settings.width
        self.height = settings.height
        self.settings = settings
        rng = random.Random(settings.particle_seed)
        self.radii = [rng.random() * 3 + 1 for _ in range(settings.particle_count)]
        self._background: Image.Image | None = None
        self._font: ImageFont.FreeTypeFont | None = None
        self._caption_key: tuple[str, ...] | None = None
        self._caption_layer: Image.Image | None = None

    @property
    def background(self) -> Image.Image:
        if self._background is None:
            ramp = np.linspace(0.0, 1.0, self.height)[:, None]
            top = np.array(GRADIENT_TOP, dtype=np.float64)
            bottom = np.array(GRADIENT_BOTTOM, dtype=np.float64)
            rows = np.round(top + (bottom - top) * ramp).astype(np.uint8)
            pixels = np.ascontiguousarray(np.broadcast_to(rows[:, None, :], (self.height, self.width, 3)))
            self._background = Image.fromarray(pixels, "RGB").convert("RGBA")
        return self._background

    @property
    def font(self) -> ImageFont.FreeTypeFont:
        if self._font is None:
            self._font = load_font(self.settings.font_path, self.settings.font_size)
        return self._font

    def particles(self, t: float) -> list[tuple[float, float, float]]:
        """(x, y, radius) per particle; depends only on ``t`` and the seed."""
        w, h = self.width, self.height
        out = []
        for i, r in enumerate(self.radii):
            x = math.sin(t * 0.2 + i * 15) * w / 2 + w / 2
            y = (h - (t * 40 + i * 80)) % h
            out.append((x, y, r))
        return out

    def caption_layer(self, lines: tuple[str, ...]) -> Image.Image:
        if lines == self._caption_key and self._caption_layer is not None:
            return self._caption_layer

        size = (self.width, self.height)
        line_height = self.settings.line_height
        start_y = self.height / 2 - ((len(lines) - 1) * line_height) / 2
        kwargs = {"direction": "rtl"} if is_rtl("".join(lines)) and features.check("raqm") else {}

        shadow = Image.new("RGBA", size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(shadow)
        for i, line in enumerate(lines):
            y = start_y + i * line_height + SHADOW_OFFSET_Y
            draw.text((self.width / 2, y), line, font=self.font, fill=SHADOW_FILL, anchor="mm", **kwargs)
        layer = shadow.filter(ImageFilter.GaussianBlur(SHADOW_BLUR))

        draw = ImageDraw.Draw(layer)
        for i, line in enumerate(lines):
            y = start_y + i * line_height
            draw.text(
                (self.width / 2, y),
                line,
                font=self.font,
                fill=CAPTION_FILL,
                anchor="mm",
                stroke_width=1,
                stroke_fill=CAPTION_FILL,
                **kwargs,
            )

        self._caption_key, self._caption_layer = lines, layer
        return layer

    def paint(self, t: float, chunk: TimedChunk | None, duration: float) -> Image.Image:
        frame = self.background.copy()

        dots = Image.new("RGBA", frame.size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(dots)
        for x, y, r in self.particles(t):
            draw.ellipse((x - r, y - r, x + r, y + r), fill=PARTICLE_FILL)
        frame.alpha_composite(dots)

        if chunk is not None:
            frame.alpha_composite(self.caption_layer(chunk.lines))

        bar = Image.new("RGBA", frame.size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(bar)
        top = self.height - PROGRESS_HEIGHT
        draw.rectangle((0, top, self.width, self.height), fill=PROGRESS_TRACK)
        filled = int(round(min(1.0, t / duration) * self.width)) if duration > 0 else 0
        if filled > 0:
            draw.rectangle((0, top, filled - 1, self.height), fill=PROGRESS_FILL)
        frame.alpha_composite(bar)

        return frame.convert("RGB")


class RenderState(str, Enum):
    ARMED = "armed"
    RENDERING = "rendering"
    STOPPED = "stopped"


class SynchronizedRenderer:
    """Runs the frame loop for one master track, then stops for good."""

    def __init__(self, settings: PipelineSettings, painter: CaptionPainter | None = None) -> None:
        self.settings = settings
        self.painter = painter or CaptionPainter(settings)
        self.state = RenderState.ARMED

    async def render(
        self,
        master: AudioBuffer,
        timeline: list[TimedChunk],
        sink: FrameSink,
        clock: Clock | None = None,
    ) -> int:
        """
        Paint frames until the clock passes the master duration, feeding each
        to ``sink``. The sink is finished on completion and on cancellation,
        so the captured frames are finalized; any other failure aborts it.
        Returns the number of frames written.
        """
        if self.state is not RenderState.ARMED:
            raise RuntimeError(f"renderer is {self.state.value}, not armed")
        clock = clock or FrameClock(self.settings.fps)
        duration = master.duration

        await sink.start()
        self.state = RenderState.RENDERING
        frames = 0
        finalize = True
        start = clock.now()
        try:
            while True:
                elapsed = clock.now() - start
                if elapsed >= duration:
                    break
                chunk = find_active_chunk(timeline, elapsed)
                frame = self.painter.paint(elapsed, chunk, duration)
                await sink.write(frame.tobytes())
                frames += 1
                await clock.tick()
        except asyncio.CancelledError:
            logger.warning("Render cancelled after %d frames, finalizing video", frames)
            raise
        except Exception:
            finalize = False
            raise
        finally:
            self.state = RenderState.STOPPED
            if finalize:
                await sink.finish()
            else:
                await sink.abort()

        logger.info(f"Rendered {frames} frames ({duration:.2f}s)")
        return frames
