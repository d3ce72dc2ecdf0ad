from __future__ import annotations

import asyncio
import logging
import threading
from functools import partial
from typing import Any, Sequence

import numpy as np

from skimmer.config import AnalysisConfig
from skimmer.exceptions import FaceDetectionError, FrameReadError, RetryExhaustedError
from skimmer.features.histogram import resize_frame
from skimmer.models import FaceDetection, FaceDetector, FaceSample, FrameProvider, Scene
from skimmer.retry import Pacing, RetryPolicy

logger = logging.getLogger(__name__)

DETECTION_TIMEOUT_MS = 5_000
MAX_DETECTION_ATTEMPTS = 2
# Face retries back off at twice the shared retry pacing (200 ms by default).
BACKOFF_MULTIPLIER = 2.0
LOW_RES_MAX_WIDTH = 320
HAAR_CASCADE_FILE = "haarcascade_frontalface_default.xml"


class NullFaceDetector:
    """Stands in when no face-detection capability is installed."""

    available = False

    def detect(self, image: np.ndarray, timeout_ms: int) -> FaceDetection:
        return FaceDetection(has_face=False, count=0)

    def release(self) -> None:
        return None


class HaarFaceDetector:
    """OpenCV frontal-face Haar cascade.

    The cascade is loaded lazily on first use. ``timeout_ms`` is enforced by the
    caller; a single ``detectMultiScale`` call is not interruptible.
    """

    def __init__(
        self,
        cascade_path: str | None = None,
        *,
        scale_factor: float = 1.1,
        min_neighbors: int = 5,
        min_size: tuple[int, int] = (30, 30),
        cv2_module: Any | None = None,
    ) -> None:
        self.cascade_path = cascade_path
        self.scale_factor = scale_factor
        self.min_neighbors = min_neighbors
        self.min_size = min_size
        self._cv2 = cv2_module
        self._cascade: Any | None = None
        self._lock = threading.Lock()

    @property
    def available(self) -> bool:
        try:
            return self._load() is not None
        except FaceDetectionError:
            return False

    def detect(self, image: np.ndarray, timeout_ms: int) -> FaceDetection:
        cascade = self._load()
        cv2 = self._cv2_module()
        gray = image if image.ndim == 2 else cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        with self._lock:
            faces = cascade.detectMultiScale(
                gray,
                scaleFactor=self.scale_factor,
                minNeighbors=self.min_neighbors,
                minSize=self.min_size,
            )
        count = len(faces)
        return FaceDetection(has_face=count > 0, count=count)

    def release(self) -> None:
        with self._lock:
            self._cascade = None

    def _cv2_module(self) -> Any:
        if self._cv2 is None:
            import cv2

            self._cv2 = cv2
        return self._cv2

    def _load(self) -> Any:
        with self._lock:
            if self._cascade is not None:
                return self._cascade

            cv2 = self._cv2_module()
            path = self.cascade_path or (cv2.data.haarcascades + HAAR_CASCADE_FILE)
            cascade = cv2.CascadeClassifier(path)
            if cascade.empty():
                raise FaceDetectionError(f"Unable to load Haar cascade from {path}")
            self._cascade = cascade
            return cascade


def face_checkpoints(scenes: Sequence[Scene], duration_ms: int, config: AnalysisConfig) -> list[int]:
    """Timestamps to probe for faces: scene starts and midpoints, thinned in quick mode."""

    chosen = scenes[::2] if config.quick_mode else scenes
    points: set[int] = set()
    for scene in chosen:
        candidates = (scene.midpoint_ms,) if config.quick_mode else (scene.start_ms, scene.midpoint_ms)
        points.update(point for point in candidates if 0 <= point < duration_ms)
    return sorted(points)


def shrink_for_detection(image: np.ndarray, max_width: int = LOW_RES_MAX_WIDTH, cv2_module: Any | None = None) -> np.ndarray:
    height, width = image.shape[:2]
    if width <= max_width:
        return image
    scaled_height = max(1, round(height * max_width / width))
    return resize_frame(image, (max_width, scaled_height), cv2_module)


class FacePresenceSampler:
    def __init__(
        self,
        detector: FaceDetector | None = None,
        *,
        pacing: Pacing | None = None,
        timeout_ms: int = DETECTION_TIMEOUT_MS,
        max_attempts: int = MAX_DETECTION_ATTEMPTS,
        cv2_module: Any | None = None,
    ) -> None:
        self.detector: FaceDetector = detector if detector is not None else NullFaceDetector()
        self.pacing = pacing or Pacing()
        self.timeout_ms = timeout_ms
        self.max_attempts = max_attempts
        self._cv2 = cv2_module

    async def sample_faces(
        self,
        frame_provider: FrameProvider,
        scenes: Sequence[Scene],
        duration_ms: int,
        config: AnalysisConfig,
    ) -> list[FaceSample]:
        if not self.detector.available:
            logger.info("Face detection unavailable; skipping face sampling")
            return []

        checkpoints = face_checkpoints(scenes, duration_ms, config)
        policy = RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay_seconds=self.pacing.retry_backoff_seconds * BACKOFF_MULTIPLIER,
            timeout_seconds=self.timeout_ms / 1000.0,
        )
        samples: list[FaceSample] = []

        for timestamp_ms in checkpoints:
            await asyncio.sleep(0)
            try:
                detection = await policy.run(
                    partial(self._detect_at, frame_provider, timestamp_ms, config.low_resolution_mode),
                    label=f"face detection at {timestamp_ms}ms",
                )
            except RetryExhaustedError as exc:
                # Dropped rather than recorded as "no face"; a detector that never answers yields no samples.
                logger.warning("Dropping face checkpoint: %s", exc)
                continue
            samples.append(FaceSample(timestamp_ms=timestamp_ms, has_face=detection.has_face, face_count=detection.count))

        logger.info("Face sampling complete: %d/%d checkpoints", len(samples), len(checkpoints))
        return samples

    async def _detect_at(self, frame_provider: FrameProvider, timestamp_ms: int, low_resolution: bool) -> FaceDetection:
        frame = await asyncio.to_thread(frame_provider.get_frame_at, timestamp_ms)
        if frame is None:
            raise FrameReadError(f"no frame decoded at {timestamp_ms}ms")
        if low_resolution:
            frame = shrink_for_detection(frame, cv2_module=self._cv2)
        return await asyncio.to_thread(self.detector.detect, frame, self.timeout_ms)
