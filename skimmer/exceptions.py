"""Exception hierarchy for the skimmer analysis pipeline."""

from __future__ import annotations


class SkimmerError(Exception):
    """Base exception for all skimmer errors."""


class InvalidMediaError(SkimmerError, ValueError):
    """Raised when media cannot be analyzed at all (no duration, unreachable source)."""


class FrameReadError(SkimmerError):
    """Raised when a frame cannot be decoded at the requested timestamp."""


class AudioReadError(SkimmerError):
    """Raised when an audio window cannot be read."""


class FaceDetectionError(SkimmerError):
    """Raised when the face-detection capability fails on an image."""


class RetryExhaustedError(SkimmerError):
    """Raised when every attempt of a retried operation failed."""

    def __init__(self, label: str, attempts: int, last_error: BaseException | None) -> None:
        self.label = label
        self.attempts = attempts
        self.last_error = last_error
        detail = f": {last_error}" if last_error is not None else ""
        super().__init__(f"{label} failed after {attempts} attempt(s){detail}")
