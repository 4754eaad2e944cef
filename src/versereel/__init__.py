"""
Verse Reel - narrated, scored and captioned vertical videos from verse.

A pipeline for:
- Splitting verse into four-line chunks
- Narrating each chunk with Gemini TTS
- Suggesting a mood prompt and streaming a music bed from Lyria
- Mixing narration over a ducked music bed
- Assembling a gap-free master timeline
- Rendering synchronized captions into a portrait video with ffmpeg
"""

__version__ = "0.1.0"
