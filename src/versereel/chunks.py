"""
Splitting verse into fixed-size line groups.
"""

from .errors import EmptyInputError
from .models import Chunk

LINES_PER_CHUNK = 4


def filtered_lines(text: str) -> list[str]:
    """Trimmed non-blank lines in input order, split on newlines only."""
    return [ln.strip() for ln in text.split("\n") if ln.strip()]


def split_into_chunks(text: str, lines_per_chunk: int = LINES_PER_CHUNK) -> list[Chunk]:
    """
    Group non-blank lines into chunks of ``lines_per_chunk``; the last chunk
    holds the remainder. Raises EmptyInputError for blank input.
    """
    if lines_per_chunk < 1:
        raise ValueError("lines_per_chunk must be positive")
    lines = filtered_lines(text)
    if not lines:
        raise EmptyInputError("input text has no non-blank lines")
    return [
        Chunk(index=ci, lines=tuple(lines[i : i + lines_per_chunk]))
        for ci, i in enumerate(range(0, len(lines), lines_per_chunk))
    ]
