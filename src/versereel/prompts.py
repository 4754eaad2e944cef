"""
Mood prompt suggestion for the music bed, with a static fallback.
"""

import asyncio
import logging
from typing import Any

logger = logging.getLogger("versereel")

# Optional OpenAI SDK
try:
    from openai import AsyncOpenAI
except ImportError:
    AsyncOpenAI = None

FALLBACK_MOOD_PROMPT = "Emotional, cinematic, ambient, instrumental"

SUGGEST_INSTRUCTION = (
    "Based on the following poetry, suggest a short English prompt for an instrumental "
    'music generation model (like "Oud and Ney, sad, emotional, desert vibe" or '
    '"Epic orchestral, fast, battle"). Match the emotional register of the verse. '
    "Keep it under 10 words, comma separated. Poetry:\n"
)


def clean_suggestion(text: str | None) -> str:
    """First non-empty line of the reply, stripped of quotes; fallback when empty."""
    for line in (text or "").splitlines():
        line = line.strip().strip("\"'` ")
        if line:
            return line
    return FALLBACK_MOOD_PROMPT


class GeminiMoodSuggester:
    """Asks a Gemini text model for a music prompt. Never raises."""

    def __init__(self, client: Any, model: str = "gemini-2.5-flash", timeout: float = 120.0) -> None:
        self.client = client
        self.model = model
        self.timeout = timeout

    async def suggest(self, text: str) -> str:
        try:
            response = await asyncio.wait_for(
                self.client.aio.models.generate_content(
                    model=self.model, contents=SUGGEST_INSTRUCTION + text
                ),
                timeout=self.timeout,
            )
            prompt = clean_suggestion(response.text)
        except Exception as e:
            logger.warning("Mood suggestion failed, using fallback prompt: %s", e)
            return FALLBACK_MOOD_PROMPT
        logger.info(f"Music prompt: {prompt}")
        return prompt


class OpenAIMoodSuggester:
    """Same contract as GeminiMoodSuggester, backed by OpenAI chat completions."""

    def __init__(self, client: AsyncOpenAI, model: str = "gpt-4o-mini", timeout: float = 120.0) -> None:
        if client is None:
            raise RuntimeError("OpenAI client is not initialized (missing OPENAI_API_KEY)")
        self.client = client
        self.model = model
        self.timeout = timeout

    async def suggest(self, text: str) -> str:
        try:
            chat = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=[{"role": "user", "content": SUGGEST_INSTRUCTION + text}],
                    temperature=0.7,
                ),
                timeout=self.timeout,
            )
            prompt = clean_suggestion(chat.choices[0].message.content)
        except Exception as e:
            logger.warning("Mood suggestion failed, using fallback prompt: %s", e)
            return FALLBACK_MOOD_PROMPT
        logger.info(f"Music prompt: {prompt}")
        return prompt
