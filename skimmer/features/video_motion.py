from __future__ import annotations

import asyncio
import logging
from typing import Any

import numpy as np

from skimmer.config import AnalysisConfig
from skimmer.exceptions import FrameReadError, RetryExhaustedError
from skimmer.features.histogram import luminance, resize_frame
from skimmer.models import FrameProvider, MotionLevel, MotionScore
from skimmer.progress import ProgressReporter
from skimmer.retry import Pacing, RetryPolicy

logger = logging.getLogger(__name__)

GRID_SIZE = 32
LOW_RES_GRID_SIZE = 16
PIXEL_STRIDE = 6
QUICK_PIXEL_STRIDE = 8
SMOOTHING_FACTOR = 0.8
DECAY_FACTOR = 0.5
MAX_COMPUTE_RETRIES = 3
MAX_CONSECUTIVE_FAILURES = 5

DEFAULT_FRAME_INTERVAL_MS = 15_000
ADAPTIVE_INTERVALS_MS = (
    (60_000, 10_000),
    (180_000, 15_000),
    (600_000, 20_000),
)
LONG_VIDEO_INTERVAL_MS = 30_000

# (exclusive upper bound, level), first match wins.
_LEVEL_BOUNDS = (
    (0.1, MotionLevel.NONE),
    (0.3, MotionLevel.MINIMAL),
    (0.6, MotionLevel.MODERATE),
    (0.8, MotionLevel.HIGH),
)


def motion_frame_interval_ms(duration_ms: int, config: AnalysisConfig) -> int:
    if not config.adaptive_sampling:
        return DEFAULT_FRAME_INTERVAL_MS
    for upper_bound, interval in ADAPTIVE_INTERVALS_MS:
        if duration_ms < upper_bound:
            return interval
    return LONG_VIDEO_INTERVAL_MS


def motion_level(intensity: float) -> MotionLevel:
    for upper_bound, level in _LEVEL_BOUNDS:
        if intensity < upper_bound:
            return level
    return MotionLevel.EXTREME


def motion_grid(frame: np.ndarray, grid_size: int, cv2_module: Any | None = None) -> np.ndarray:
    """Downscale a frame to a ``grid_size`` square of grayscale values."""

    small = resize_frame(frame, (grid_size, grid_size), cv2_module)
    return luminance(small).astype(np.float32)


def grid_difference(previous: np.ndarray, current: np.ndarray, stride: int) -> float:
    """Mean absolute grayscale difference over every ``stride``-th cell, in [0, 1]."""

    prev_cells = previous.ravel()[:: max(stride, 1)]
    curr_cells = current.ravel()[:: max(stride, 1)]
    if prev_cells.size == 0 or prev_cells.size != curr_cells.size:
        return 0.0
    return float(np.clip(np.abs(curr_cells - prev_cells).mean() / 255.0, 0.0, 1.0))


class MotionScoringEngine:
    """Coarse frame-difference motion scoring with exponential smoothing.

    The engine keeps exactly one previous grid between samples, so a single
    instance must not serve two analyses at the same time.
    """

    def __init__(
        self,
        *,
        pacing: Pacing | None = None,
        frame_interval_ms: int | None = None,
        max_compute_retries: int = MAX_COMPUTE_RETRIES,
        max_consecutive_failures: int = MAX_CONSECUTIVE_FAILURES,
        cv2_module: Any | None = None,
    ) -> None:
        self.pacing = pacing or Pacing()
        self.frame_interval_ms = frame_interval_ms
        self.max_compute_retries = max_compute_retries
        self.max_consecutive_failures = max_consecutive_failures
        self._cv2 = cv2_module
        self._previous_grid: np.ndarray | None = None
        self._previous_score = 0.0

    @property
    def has_retained_grid(self) -> bool:
        return self._previous_grid is not None

    def clear_cache(self) -> None:
        self._previous_grid = None
        self._previous_score = 0.0

    def interval_for(self, duration_ms: int, config: AnalysisConfig) -> int:
        if self.frame_interval_ms is not None and self.frame_interval_ms > 0:
            return self.frame_interval_ms
        return motion_frame_interval_ms(duration_ms, config)

    async def score_motion(
        self,
        frame_provider: FrameProvider,
        duration_ms: int,
        config: AnalysisConfig,
        progress: ProgressReporter | None = None,
    ) -> list[MotionScore]:
        self.clear_cache()
        if duration_ms <= 0:
            return []

        interval_ms = self.interval_for(duration_ms, config)
        time_points = list(range(0, config.analysis_limit_ms(duration_ms), interval_ms))
        breaker = self.pacing.breaker(self.max_consecutive_failures)
        scores: list[MotionScore] = []
        frames_read = 0

        logger.info("Motion scoring: %d samples every %dms", len(time_points), interval_ms)

        for index, timestamp_ms in enumerate(time_points):
            await asyncio.sleep(0)
            if progress is not None:
                progress.report(index / len(time_points))

            await self.pacing.before_read(frames_read)
            try:
                frame = await asyncio.to_thread(frame_provider.get_frame_at, timestamp_ms)
                if frame is None:
                    raise FrameReadError(f"no frame decoded at {timestamp_ms}ms")
            except Exception as exc:
                logger.debug("Motion frame at %dms unavailable: %s", timestamp_ms, exc)
                if self._previous_grid is not None:
                    scores.append(self._decayed_score(timestamp_ms))
                if breaker.record_failure():
                    logger.warning(
                        "Motion scoring aborted after %d consecutive read failures at %dms",
                        breaker.failures,
                        timestamp_ms,
                    )
                    break
                await breaker.backoff()
                continue

            breaker.record_success()
            frames_read += 1
            scores.append(await self._score_frame(frame, timestamp_ms, config))

        if progress is not None:
            progress.report(1.0)
        logger.info("Motion scoring complete: %d samples", len(scores))
        return scores

    async def _score_frame(self, frame: np.ndarray, timestamp_ms: int, config: AnalysisConfig) -> MotionScore:
        coarse = config.quick_mode or config.low_resolution_mode
        grid_size = LOW_RES_GRID_SIZE if coarse else GRID_SIZE
        policy = RetryPolicy(
            max_attempts=self.max_compute_retries,
            base_delay_seconds=self.pacing.retry_backoff_seconds,
        )

        try:
            grid = await policy.call_blocking(
                motion_grid,
                frame,
                grid_size,
                self._cv2,
                label=f"motion grid at {timestamp_ms}ms",
            )
        except MemoryError:
            logger.error("Out of memory computing motion at %dms; dropping retained grid", timestamp_ms)
            score = self._decayed_score(timestamp_ms)
            self._previous_grid = None
            return score
        except RetryExhaustedError as exc:
            logger.warning("Motion computation failed at %dms: %s", timestamp_ms, exc)
            return self._decayed_score(timestamp_ms)

        previous = self._previous_grid
        self._previous_grid = grid
        if previous is None or previous.shape != grid.shape:
            self._previous_score = 0.0
            return MotionScore(timestamp_ms=timestamp_ms, intensity=0.0, level=MotionLevel.NONE)

        stride = QUICK_PIXEL_STRIDE if config.quick_mode else PIXEL_STRIDE
        raw = grid_difference(previous, grid, stride)
        smoothed = raw * (1.0 - SMOOTHING_FACTOR) + self._previous_score * SMOOTHING_FACTOR
        smoothed = min(max(smoothed, 0.0), 1.0)
        self._previous_score = smoothed
        return MotionScore(timestamp_ms=timestamp_ms, intensity=smoothed, level=motion_level(smoothed))

    def _decayed_score(self, timestamp_ms: int) -> MotionScore:
        estimate = self._previous_score * DECAY_FACTOR
        return MotionScore(timestamp_ms=timestamp_ms, intensity=estimate, level=motion_level(estimate))
