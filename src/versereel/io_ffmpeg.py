"""
Audio export and video encoding utilities using ffmpeg/ffprobe.
"""

import asyncio
import contextlib
import logging
import os
import subprocess
from pathlib import Path

import numpy as np
from pydub import AudioSegment

from .errors import EncodingError
from .models import AudioBuffer

logger = logging.getLogger("versereel")

DEFAULT_OUTPUT = "poetry-video.webm"


def run(cmd: list[str], *, check: bool = True) -> str:
    """Run a command and return stdout."""
    logger.debug("Running: %s", " ".join(map(str, cmd)))
    try:
        proc = subprocess.run(
            cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True, check=False
        )
    except FileNotFoundError as e:
        raise EncodingError(f"{cmd[0]} not found on PATH") from e
    if proc.returncode != 0 and check:
        logger.error("Command failed with code %d: %s", proc.returncode, proc.stdout)
        raise EncodingError(f"{cmd[0]} failed with code {proc.returncode}")
    return proc.stdout


def ensure_dir(path: str) -> None:
    """Ensure directory exists."""
    if path:
        Path(path).mkdir(parents=True, exist_ok=True)


def to_audio_segment(buffer: AudioBuffer) -> AudioSegment:
    """Convert a float buffer to an interleaved 16-bit pydub segment."""
    ints = np.round(np.clip(buffer.samples, -1.0, 1.0) * 32767.0).astype("<i2")
    return AudioSegment(
        data=ints.T.tobytes(),
        sample_width=2,
        frame_rate=buffer.sample_rate,
        channels=buffer.channels,
    )


def export_wav(buffer: AudioBuffer, path: str) -> None:
    """Write the buffer as 16-bit PCM WAV."""
    ensure_dir(str(Path(path).parent))
    to_audio_segment(buffer).export(path, format="wav")
    logger.debug("Exported %.2fs of audio -> %s", buffer.duration, path)


def probe_duration(path: str) -> float:
    """Container duration in seconds (0.0 if ffprobe cannot tell)."""
    cmd = [
        "ffprobe",
        "-v",
        "error",
        "-show_entries",
        "format=duration",
        "-of",
        "default=noprint_wrappers=1:nokey=1",
        path,
    ]
    try:
        out = run(cmd, check=False)
    except EncodingError as e:
        logger.warning(f"Could not read duration of {path}: {e}")
        return 0.0
    try:
        return float(out.strip())
    except ValueError:
        return 0.0


def codec_args(output_path: str) -> list[str]:
    """WebM (VP8 + Opus) by default, MP4 (H.264 + AAC) for .mp4 outputs."""
    if Path(output_path).suffix.lower() in (".mp4", ".m4v", ".mov"):
        return [
            "-c:v", "libx264", "-preset", "veryfast", "-crf", "20", "-pix_fmt", "yuv420p",
            "-c:a", "aac", "-b:a", "192k", "-movflags", "+faststart",
        ]
    return [
        "-c:v", "libvpx", "-b:v", "2M", "-deadline", "realtime", "-cpu-used", "8",
        "-pix_fmt", "yuv420p", "-c:a", "libopus", "-b:a", "128k",
    ]


def build_encode_command(
    output_path: str, audio_wav: str, width: int, height: int, fps: int
) -> list[str]:
    """ffmpeg command reading raw RGB24 frames on stdin and muxing the WAV track."""
    return [
        "ffmpeg",
        "-y",
        "-loglevel",
        "error",
        "-f",
        "rawvideo",
        "-pix_fmt",
        "rgb24",
        "-s",
        f"{width}x{height}",
        "-r",
        str(fps),
        "-i",
        "-",
        "-i",
        audio_wav,
        "-map",
        "0:v:0",
        "-map",
        "1:a:0",
        *codec_args(output_path),
        "-shortest",
        output_path,
    ]


class FfmpegEncoder:
    """
    Frame sink that pipes rendered frames into an ffmpeg subprocess.

    ffmpeg writes to a hidden partial file beside ``output_path``; the file is
    moved into place only by a clean ``finish`` and deleted by ``abort``.
    """

    def __init__(self, output_path: str, audio_wav: str, width: int, height: int, fps: int) -> None:
        self.output_path = output_path
        target = Path(output_path)
        self.partial_path = str(target.with_name(f".{target.stem}.partial{target.suffix}"))
        self.cmd = build_encode_command(self.partial_path, audio_wav, width, height, fps)
        self.frames = 0
        self._proc: asyncio.subprocess.Process | None = None
        self._stderr: asyncio.Task | None = None

    async def start(self) -> None:
        ensure_dir(str(Path(self.output_path).parent))
        logger.debug("Running: %s", " ".join(self.cmd))
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *self.cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise EncodingError("ffmpeg not found on PATH") from e
        self._stderr = asyncio.create_task(self._proc.stderr.read())

    async def write(self, frame: bytes) -> None:
        if self._proc is None:
            raise EncodingError("encoder is not running")
        self._proc.stdin.write(frame)
        try:
            await self._proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise EncodingError("ffmpeg stopped accepting frames") from e
        self.frames += 1

    async def finish(self) -> None:
        """Close stdin so ffmpeg finalizes the container with the frames so far."""
        proc, self._proc = self._proc, None
        if proc is None:
            return
        if not proc.stdin.is_closing():
            proc.stdin.close()
        code = await proc.wait()
        stderr = (await self._stderr).decode("utf-8", errors="replace").strip()
        if code != 0:
            logger.error("ffmpeg failed with code %d: %s", code, stderr)
            self._discard()
            raise EncodingError(f"ffmpeg failed with code {code}: {stderr[-300:]}")
        os.replace(self.partial_path, self.output_path)
        logger.info(f"Encoded {self.frames} frames -> {self.output_path}")

    async def abort(self) -> None:
        """Stop ffmpeg and delete the partial file; nothing reaches ``output_path``."""
        proc, self._proc = self._proc, None
        if proc is not None:
            if proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
            await proc.wait()
            proc.stdin.close()
            self._stderr.cancel()
        self._discard()
        logger.warning("Discarded partial video after %d frames", self.frames)

    def _discard(self) -> None:
        Path(self.partial_path).unlink(missing_ok=True)
