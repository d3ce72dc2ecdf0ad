from __future__ import annotations

import asyncio
import logging
from dataclasses import replace

import numpy as np

from skimmer.config import AnalysisConfig
from skimmer.features.histogram import (
    NEUTRAL_BRIGHTNESS,
    average_brightness,
    histogram_similarity,
    luminance_histogram,
)
from skimmer.models import FrameProvider, Scene
from skimmer.progress import ProgressReporter
from skimmer.retry import Pacing

logger = logging.getLogger(__name__)

BASE_SAMPLE_INTERVAL_MS = 2_000
QUICK_MODE_STEP_MS = 3_000
MIN_SCENE_DURATION_MS = 3_000
MAX_CONSECUTIVE_FAILURES = 5

# (upper duration bound, interval) pairs, first match wins.
ADAPTIVE_INTERVALS_MS = (
    (60_000, 2_000),
    (300_000, 3_000),
    (600_000, 4_000),
)
LONG_VIDEO_INTERVAL_MS = 5_000

# Quick mode only looks at the opening, the middle and the ending of the timeline.
QUICK_MODE_WINDOWS = ((0.0, 0.2), (0.4, 0.6), (0.8, 1.0))


def scene_sample_interval_ms(duration_ms: int, config: AnalysisConfig) -> int:
    if not config.adaptive_sampling:
        return BASE_SAMPLE_INTERVAL_MS
    for upper_bound, interval in ADAPTIVE_INTERVALS_MS:
        if duration_ms < upper_bound:
            return interval
    return LONG_VIDEO_INTERVAL_MS


def scene_time_points(duration_ms: int, config: AnalysisConfig) -> list[int]:
    """Timestamps the segmentation loop visits, in ascending order."""

    limit = config.analysis_limit_ms(duration_ms)
    if config.quick_mode:
        points: set[int] = set()
        for start_fraction, end_fraction in QUICK_MODE_WINDOWS:
            points.update(range(int(limit * start_fraction), int(limit * end_fraction), QUICK_MODE_STEP_MS))
        return sorted(points)
    return list(range(0, limit, scene_sample_interval_ms(duration_ms, config)))


def full_duration_scene(duration_ms: int) -> Scene:
    return Scene(start_ms=0, end_ms=duration_ms, average_brightness=NEUTRAL_BRIGHTNESS)


class SceneSegmentationEngine:
    """Splits a timeline into scenes at luminance-histogram discontinuities."""

    def __init__(
        self,
        *,
        pacing: Pacing | None = None,
        min_scene_duration_ms: int = MIN_SCENE_DURATION_MS,
        max_consecutive_failures: int = MAX_CONSECUTIVE_FAILURES,
    ) -> None:
        self.pacing = pacing or Pacing()
        self.min_scene_duration_ms = min_scene_duration_ms
        self.max_consecutive_failures = max_consecutive_failures

    async def segment_scenes(
        self,
        frame_provider: FrameProvider,
        duration_ms: int,
        config: AnalysisConfig,
        progress: ProgressReporter | None = None,
    ) -> list[Scene]:
        if duration_ms <= 0:
            return []

        time_points = scene_time_points(duration_ms, config)
        breaker = self.pacing.breaker(self.max_consecutive_failures)
        scenes: list[Scene] = []
        scene_start = 0
        previous_histogram: np.ndarray | None = None
        frames_read = 0

        logger.info(
            "Scene segmentation: %d sample points over %dms (quick=%s)",
            len(time_points),
            duration_ms,
            config.quick_mode,
        )

        for index, timestamp_ms in enumerate(time_points):
            await asyncio.sleep(0)
            if progress is not None:
                progress.report(index / len(time_points))

            await self.pacing.before_read(frames_read)
            try:
                frame = await asyncio.to_thread(frame_provider.get_frame_at, timestamp_ms)
                if frame is None:
                    raise LookupError(f"no frame decoded at {timestamp_ms}ms")
                histogram, brightness = await asyncio.to_thread(
                    _frame_signature, frame, config.low_resolution_mode
                )
            except Exception as exc:
                logger.debug("Scene sample at %dms failed: %s", timestamp_ms, exc)
                if breaker.record_failure():
                    logger.warning(
                        "Scene segmentation aborted after %d consecutive failures at %dms",
                        breaker.failures,
                        timestamp_ms,
                    )
                    break
                await breaker.backoff()
                continue

            breaker.record_success()
            frames_read += 1

            if previous_histogram is not None:
                similarity = histogram_similarity(previous_histogram, histogram)
                is_boundary = similarity < (1.0 - config.scene_change_threshold)
                if is_boundary and timestamp_ms - scene_start >= self.min_scene_duration_ms:
                    scenes.append(
                        Scene(
                            start_ms=scene_start,
                            end_ms=timestamp_ms,
                            average_brightness=brightness,
                            average_motion=0.0,
                            change_intensity=1.0 - similarity,
                        )
                    )
                    scene_start = timestamp_ms
            previous_histogram = histogram

        scenes = self._close_timeline(scenes, scene_start, duration_ms)
        if progress is not None:
            progress.report(1.0)
        logger.info("Scene segmentation complete: %d scenes", len(scenes))
        return scenes

    def _close_timeline(
        self,
        scenes: list[Scene],
        scene_start: int,
        duration_ms: int,
    ) -> list[Scene]:
        if not scenes:
            return [full_duration_scene(duration_ms)]

        if duration_ms - scene_start >= self.min_scene_duration_ms:
            scenes.append(
                Scene(
                    start_ms=scene_start,
                    end_ms=duration_ms,
                    average_brightness=NEUTRAL_BRIGHTNESS,
                )
            )
        else:
            # Remainder too short to stand alone: the last scene absorbs it.
            scenes[-1] = replace(scenes[-1], end_ms=duration_ms)
        return scenes


def _frame_signature(frame: np.ndarray, low_resolution: bool) -> tuple[np.ndarray, float]:
    return (
        luminance_histogram(frame, low_resolution=low_resolution),
        average_brightness(frame, low_resolution=low_resolution),
    )

