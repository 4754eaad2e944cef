"""
Narration synthesis with Gemini TTS.
"""

import asyncio
import logging
from typing import Any

from google.genai import types

from .audio import decode_payload, decode_pcm16
from .errors import NarrationError, ServiceTimeoutError
from .models import AudioBuffer, Chunk, PipelineSettings

logger = logging.getLogger("versereel")


def build_speech_config(voice_name: str) -> types.GenerateContentConfig:
    """Request audio output spoken by a prebuilt voice."""
    return types.GenerateContentConfig(
        response_modalities=["AUDIO"],
        speech_config=types.SpeechConfig(
            voice_config=types.VoiceConfig(
                prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=voice_name),
            ),
        ),
    )


def extract_audio_payload(response: Any) -> bytes | None:
    """Pull the inline audio bytes out of a generate_content response."""
    for candidate in getattr(response, "candidates", None) or []:
        content = getattr(candidate, "content", None)
        for part in getattr(content, "parts", None) or []:
            inline = getattr(part, "inline_data", None)
            if inline is not None and inline.data:
                return decode_payload(inline.data)
    return None


class GeminiNarrator:
    """Synthesizes one chunk into a mono float buffer at the narration rate."""

    def __init__(self, client: Any, settings: PipelineSettings) -> None:
        self.client = client
        self.settings = settings

    def request_text(self, chunk: Chunk) -> str:
        style = self.settings.narration_style.strip()
        return f"{style}\n{chunk.text}" if style else chunk.text

    async def synthesize(self, chunk: Chunk) -> AudioBuffer:
        number = chunk.index + 1
        logger.info("Narrating chunk %d (%d lines)", number, len(chunk.lines))
        try:
            response = await asyncio.wait_for(
                self.client.aio.models.generate_content(
                    model=self.settings.narration_model,
                    contents=self.request_text(chunk),
                    config=build_speech_config(self.settings.voice_name),
                ),
                timeout=self.settings.service_timeout,
            )
        except asyncio.TimeoutError:
            raise ServiceTimeoutError("narration", self.settings.service_timeout, chunk=number) from None
        except Exception as e:
            logger.error(f"Gemini TTS failed for chunk {number}: {e}")
            raise NarrationError(number, str(e)) from e

        payload = extract_audio_payload(response)
        if not payload:
            raise NarrationError(number)

        samples = decode_pcm16(payload, channels=1)
        buffer = AudioBuffer(samples, self.settings.narration_sample_rate)
        logger.debug("Chunk %d narration: %d frames (%.2fs)", number, buffer.length, buffer.duration)
        return buffer
