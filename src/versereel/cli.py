"""
Command-line interface for the verse video pipeline.
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from google.genai import Client, types
from tqdm import tqdm

from .chunks import filtered_lines
from .errors import PipelineError
from .io_ffmpeg import DEFAULT_OUTPUT, probe_duration
from .models import PipelineSettings, PipelineStage, PipelineState
from .music import LyriaMusicSource, MusicAcquirer
from .pipeline import StateTracker, VerseVideoPipeline
from .prompts import GeminiMoodSuggester, OpenAIMoodSuggester
from .render import load_font
from .tts import GeminiNarrator

logger = logging.getLogger("versereel")

# Optional OpenAI SDK
try:
    from openai import AsyncOpenAI
except ImportError:
    AsyncOpenAI = None

STAGE_LABELS = {
    PipelineStage.IDLE: "Idle",
    PipelineStage.GENERATING_AUDIO: "Narrating",
    PipelineStage.GENERATING_MUSIC: "Scoring",
    PipelineStage.CREATING_VIDEO: "Rendering video",
    PipelineStage.DONE: "Done",
}


def setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    defaults = PipelineSettings()
    ap = argparse.ArgumentParser(description="Turn verse into a narrated, scored, captioned video")

    # IO
    ap.add_argument("input", nargs="?", default="-", help="Text file with one verse line per line (- for stdin)")
    ap.add_argument("--output", "-o", default=DEFAULT_OUTPUT, help="Output video (.webm or .mp4)")

    # Voice & models
    ap.add_argument("--voice", default=defaults.voice_name, help="Prebuilt Gemini TTS voice")
    ap.add_argument("--tts-model", default=defaults.narration_model)
    ap.add_argument(
        "--narration-style",
        default=defaults.narration_style,
        help="Instruction prefixed to each chunk for the TTS model (not shown in captions)",
    )
    ap.add_argument("--suggest-provider", choices=["gemini", "openai"], default="gemini")
    ap.add_argument("--suggest-model", default=None, help="Defaults to gemini-2.5-flash / gpt-4o-mini")
    ap.add_argument("--music-model", default=defaults.music_model)

    # Video
    ap.add_argument("--font", default=None, help="TrueType font for captions (needed for non-Latin scripts)")
    ap.add_argument("--fps", type=int, default=defaults.fps)

    # Services
    ap.add_argument(
        "--timeout",
        type=float,
        default=defaults.service_timeout,
        help="Max seconds to wait on any single service call",
    )

    # Logging
    ap.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    return ap.parse_args(argv)


def read_text(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    return Path(source).read_text(encoding="utf-8")


def make_progress_observer(bar: tqdm):
    """Mirror pipeline state onto a tqdm bar."""

    def _observe(state: PipelineState) -> None:
        if state.total and bar.total != state.total:
            bar.total = state.total
        bar.n = state.current
        bar.set_description(STAGE_LABELS[state.stage])
        bar.refresh()

    return _observe


def build_pipeline(args: argparse.Namespace, tracker: StateTracker) -> VerseVideoPipeline:
    gemini_key = os.getenv("GEMINI_API_KEY")
    if not gemini_key:
        raise RuntimeError("GEMINI_API_KEY is not set. Put it in .env or environment.")

    settings = PipelineSettings(
        narration_model=args.tts_model,
        voice_name=args.voice,
        narration_style=args.narration_style,
        music_model=args.music_model,
        font_path=args.font,
        fps=args.fps,
        service_timeout=args.timeout,
    )
    # fail before any paid service call if the caption font is unusable
    load_font(settings.font_path, settings.font_size)
    # live music is only served on v1alpha
    client = Client(api_key=gemini_key, http_options=types.HttpOptions(api_version="v1alpha"))

    if args.suggest_provider == "openai":
        if not AsyncOpenAI:
            raise RuntimeError("openai package not installed. Install with: pip install 'versereel[openai]'")
        openai_key = os.getenv("OPENAI_API_KEY")
        if not openai_key:
            raise RuntimeError("OPENAI_API_KEY is not set. Put it in .env or environment.")
        suggester = OpenAIMoodSuggester(
            AsyncOpenAI(api_key=openai_key), args.suggest_model or "gpt-4o-mini", args.timeout
        )
    else:
        suggester = GeminiMoodSuggester(client, args.suggest_model or settings.suggest_model, args.timeout)

    music = MusicAcquirer(
        LyriaMusicSource(client, settings.music_model),
        sample_rate=settings.music_sample_rate,
        tail_secs=settings.music_tail_secs,
        timeout=settings.service_timeout,
    )
    return VerseVideoPipeline(GeminiNarrator(client, settings), suggester, music, settings, tracker)


async def main_async(argv: list[str] | None = None) -> int:
    """Main async CLI entry point."""
    # Load environment variables from .env file
    project_root = Path(__file__).parent.parent.parent
    env_path = project_root / ".env"
    if env_path.exists():
        load_dotenv(env_path)
    else:
        load_dotenv()

    args = parse_args(argv)
    setup_logging(args.verbose)

    text = read_text(args.input)
    lines = filtered_lines(text)
    if not lines:
        logger.error("No verse lines found in input; nothing to generate.")
        return 2
    logger.info(f"Loaded {len(lines)} lines")

    tracker = StateTracker()
    try:
        pipeline = build_pipeline(args, tracker)
    except RuntimeError as e:
        logger.error(str(e))
        return 1

    with tqdm(total=0, unit="chunk") as bar:
        tracker.subscribe(make_progress_observer(bar))
        try:
            output = await pipeline.run(text, args.output)
        except PipelineError as e:
            logger.error(f"{e.stage} stage failed: {tracker.state.error}")
            return 1
        except Exception:
            logger.exception("Unexpected failure: %s", tracker.state.error)
            return 1

    logger.info(f"[ffprobe] {output} duration ≈ {probe_duration(output):.2f}s")
    logger.info(f"Done -> {output}")
    return 0


def main() -> None:
    """Main CLI entry point."""
    sys.exit(asyncio.run(main_async()))


if __name__ == "__main__":
    main()
