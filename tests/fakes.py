from __future__ import annotations

from typing import Callable

import numpy as np

from skimmer.models import AudioWindow, FaceDetection

FRAME_HEIGHT = 180
FRAME_WIDTH = 320


def solid_frame(value: int, height: int = FRAME_HEIGHT, width: int = FRAME_WIDTH) -> np.ndarray:
    return np.full((height, width, 3), value, dtype=np.uint8)


class FakeCv2:
    """Nearest-neighbour ``resize`` with the cv2 call signature."""

    INTER_NEAREST = 0
    INTER_AREA = 3

    def __init__(self) -> None:
        self.resize_calls = 0

    def resize(self, frame, dims, interpolation):
        self.resize_calls += 1
        width, height = dims
        rows = np.arange(height) * frame.shape[0] // height
        cols = np.arange(width) * frame.shape[1] // width
        return frame[rows][:, cols]


class FunctionFrameProvider:
    def __init__(self, frame_at: Callable[[int], np.ndarray | None]) -> None:
        self.frame_at = frame_at
        self.calls: list[int] = []

    def get_frame_at(self, timestamp_ms: int) -> np.ndarray | None:
        self.calls.append(timestamp_ms)
        return self.frame_at(timestamp_ms)


class FailingFrameProvider:
    def __init__(self) -> None:
        self.calls = 0

    def get_frame_at(self, timestamp_ms: int) -> np.ndarray | None:
        self.calls += 1
        raise OSError(f"decoder unavailable at {timestamp_ms}ms")


class ConstantAudioProvider:
    """Windows of constant amplitude until ``end_ms``; ``None`` afterwards."""

    def __init__(self, amplitude: int, *, end_ms: int | None = None, window_ms: int = 100) -> None:
        self.amplitude = amplitude
        self.end_ms = end_ms
        self.window_ms = window_ms
        self.calls: list[int] = []

    def read_window(self, timestamp_ms: int) -> AudioWindow | None:
        self.calls.append(timestamp_ms)
        if self.end_ms is not None and timestamp_ms >= self.end_ms:
            return None
        samples = np.full(1600, self.amplitude, dtype=np.int16)
        return AudioWindow(timestamp_ms=timestamp_ms, duration_ms=self.window_ms, samples=samples)


class StaticDurationSource:
    def __init__(self, duration_ms: int) -> None:
        self.duration_ms = duration_ms

    def get_duration_ms(self) -> int:
        return self.duration_ms


class FixedFaceDetector:
    available = True

    def __init__(self, count: int = 1) -> None:
        self.count = count
        self.released = False
        self.images: list[np.ndarray] = []

    def detect(self, image: np.ndarray, timeout_ms: int) -> FaceDetection:
        self.images.append(image)
        return FaceDetection(has_face=self.count > 0, count=self.count)

    def release(self) -> None:
        self.released = True


class TimingOutFaceDetector:
    available = True

    def __init__(self) -> None:
        self.calls = 0

    def detect(self, image: np.ndarray, timeout_ms: int) -> FaceDetection:
        self.calls += 1
        raise TimeoutError(f"face detection exceeded {timeout_ms}ms")

    def release(self) -> None:
        return None
