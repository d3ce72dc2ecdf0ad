from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    import numpy as np


class MotionLevel(str, Enum):
    NONE = "none"
    MINIMAL = "minimal"
    MODERATE = "moderate"
    HIGH = "high"
    EXTREME = "extreme"


class HighlightReason(str, Enum):
    HIGH_MOTION = "high_motion"
    AUDIO_PEAK = "audio_peak"
    SCENE_CHANGE = "scene_change"
    FACE_ACTIVITY = "face_activity"
    VISUAL_INTEREST = "visual_interest"
    COMBINED = "combined"


class ChapterType(str, Enum):
    INTRODUCTION = "introduction"
    MAIN_CONTENT = "main_content"
    KEY_MOMENT = "key_moment"
    TRANSITION = "transition"
    CONCLUSION = "conclusion"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class Scene:
    """A contiguous time range with roughly uniform visual content."""

    start_ms: int
    end_ms: int
    average_brightness: float = 0.5
    average_motion: float = 0.0
    change_intensity: float = 0.0

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms

    @property
    def midpoint_ms(self) -> int:
        return self.start_ms + self.duration_ms // 2


@dataclass(frozen=True, slots=True)
class MotionScore:
    timestamp_ms: int
    intensity: float
    level: MotionLevel = MotionLevel.NONE


@dataclass(frozen=True, slots=True)
class AudioScore:
    timestamp_ms: int
    volume: float
    is_loud: bool = False


@dataclass(frozen=True, slots=True)
class FaceSample:
    timestamp_ms: int
    has_face: bool
    face_count: int = 0


@dataclass(frozen=True, slots=True)
class HighlightSegment:
    """A scored, bounded-duration candidate for the highlight reel."""

    start_ms: int
    end_ms: int
    duration_ms: int
    score: float
    reason: HighlightReason
    key_features: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class VideoChapter:
    start_ms: int
    end_ms: int
    title: str
    chapter_type: ChapterType
    confidence: float

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms


@dataclass(frozen=True, slots=True)
class AnalysisResult:
    """Aggregate output of one analysis run."""

    scenes: tuple[Scene, ...] = ()
    highlights: tuple[HighlightSegment, ...] = ()
    chapters: tuple[VideoChapter, ...] = ()
    audio_scores: tuple[AudioScore, ...] = ()
    motion_scores: tuple[MotionScore, ...] = ()
    face_samples: tuple[FaceSample, ...] = ()

    @classmethod
    def empty(cls) -> AnalysisResult:
        return cls()


@dataclass(frozen=True, slots=True)
class AnalysisProgress:
    phase: str
    fraction: float


@dataclass(frozen=True, slots=True)
class VideoHighlights:
    """Summary of a finished analysis, as handed to playback consumers."""

    original_duration_ms: int
    highlight_duration_ms: int
    highlights: tuple[HighlightSegment, ...]
    chapters: tuple[VideoChapter, ...]
    analysis_time_ms: int
    confidence_score: float
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class AudioWindow:
    """A short buffer of signed 16-bit PCM samples starting at a sync point."""

    timestamp_ms: int
    duration_ms: int
    samples: np.ndarray


@dataclass(frozen=True, slots=True)
class FaceDetection:
    has_face: bool
    count: int = 0


@runtime_checkable
class FrameProvider(Protocol):
    def get_frame_at(self, timestamp_ms: int) -> np.ndarray | None:
        """Return a decoded BGR frame near ``timestamp_ms`` or ``None``."""
        ...


@runtime_checkable
class AudioProvider(Protocol):
    def read_window(self, timestamp_ms: int) -> AudioWindow | None:
        """Return the window at the sync point nearest ``timestamp_ms``; ``None`` at end of stream."""
        ...


@runtime_checkable
class FaceDetector(Protocol):
    @property
    def available(self) -> bool: ...

    def detect(self, image: np.ndarray, timeout_ms: int) -> FaceDetection: ...

    def release(self) -> None: ...


@runtime_checkable
class DurationSource(Protocol):
    def get_duration_ms(self) -> int: ...
