"""
Error types raised by the pipeline stages.
"""


class PipelineError(RuntimeError):
    """Fatal stage failure carrying the stage name and 1-based chunk number."""

    def __init__(self, message: str, *, stage: str, chunk: int | None = None) -> None:
        super().__init__(message)
        self.stage = stage
        self.chunk = chunk


class NarrationError(PipelineError):
    def __init__(self, chunk: int, detail: str | None = None) -> None:
        message = f"narration synthesis failed for chunk {chunk}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, stage="narration", chunk=chunk)


class MusicStreamError(PipelineError):
    def __init__(self, detail: str, chunk: int | None = None) -> None:
        message = "music generation failed"
        if chunk is not None:
            message = f"{message} for chunk {chunk}"
        super().__init__(f"{message}: {detail}", stage="music", chunk=chunk)


class ServiceTimeoutError(PipelineError):
    def __init__(self, stage: str, timeout: float, chunk: int | None = None) -> None:
        where = f" for chunk {chunk}" if chunk is not None else ""
        super().__init__(
            f"{stage} service timed out after {timeout:.0f}s{where}", stage=stage, chunk=chunk
        )


class AssemblyError(PipelineError):
    def __init__(self, message: str) -> None:
        super().__init__(message, stage="assembly")


class EncodingError(PipelineError):
    def __init__(self, message: str) -> None:
        super().__init__(message, stage="encoding")


class EmptyInputError(ValueError):
    """Input text has no non-blank lines; the pipeline must not start."""
