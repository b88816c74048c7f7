from __future__ import annotations


class ReviewError(Exception):
    """Base class for review pipeline failures."""


class GenerationError(ReviewError):
    """The text-generation call failed."""


class GenerationTimeoutError(GenerationError):
    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(f"Generation call exceeded {timeout_seconds:g}s deadline")
        self.timeout_seconds = timeout_seconds


class GenerationParseError(GenerationError):
    """The generated text could not be repaired into the expected JSON shape."""

    def __init__(self, message: str, raw_text: str = "") -> None:
        snippet = raw_text.strip()[:200]
        super().__init__(f"{message}: {snippet!r}" if snippet else message)
        self.raw_text = raw_text


class MappingBatchError(ReviewError):
    """A rule-mapping batch failed; the whole mapping phase is aborted."""

    def __init__(self, batch_number: int, pass_name: str, cause: BaseException) -> None:
        super().__init__(f"{pass_name} mapping batch {batch_number} failed: {cause}")
        self.batch_number = batch_number
        self.pass_name = pass_name


__all__ = [
    "GenerationError",
    "GenerationParseError",
    "GenerationTimeoutError",
    "MappingBatchError",
    "ReviewError",
]
