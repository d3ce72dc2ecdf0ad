from __future__ import annotations

import asyncio
import logging

import numpy as np

from skimmer.config import AnalysisConfig
from skimmer.exceptions import RetryExhaustedError
from skimmer.models import AudioProvider, AudioScore, AudioWindow
from skimmer.progress import ProgressReporter
from skimmer.retry import Pacing, RetryPolicy

logger = logging.getLogger(__name__)

PCM16_CEILING = 32768.0
BASE_SAMPLE_INTERVAL_MS = 10_000
ADAPTIVE_INTERVALS_MS = (
    (60_000, 10_000),
    (180_000, 15_000),
    (600_000, 20_000),
)
LONG_VIDEO_INTERVAL_MS = 30_000

WINDOWS_PER_SAMPLE = 3
QUICK_WINDOWS_PER_SAMPLE = 2
RMS_SAMPLE_LIMIT = 1000
QUICK_RMS_SAMPLE_LIMIT = 500
MAX_READ_ATTEMPTS = 3
MAX_CONSECUTIVE_FAILURES = 5
BATCH_PAUSE_SECONDS = 0.1


def audio_sample_interval_ms(duration_ms: int, config: AnalysisConfig) -> int:
    if not config.adaptive_sampling:
        return BASE_SAMPLE_INTERVAL_MS
    for upper_bound, interval in ADAPTIVE_INTERVALS_MS:
        if duration_ms < upper_bound:
            return interval
    return LONG_VIDEO_INTERVAL_MS


def pcm_rms(samples: np.ndarray, max_samples: int = RMS_SAMPLE_LIMIT) -> float:
    """Root mean square over the leading ``max_samples`` PCM values."""

    head = np.asarray(samples).ravel()[: max(max_samples, 0)]
    if head.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(head.astype(np.float64)))))


def volume_from_rms(rms: float) -> float:
    return min(max(rms / PCM16_CEILING, 0.0), 1.0)


class AudioScoringEngine:
    """Samples short PCM windows at a fixed cadence and turns their RMS into volume levels."""

    def __init__(
        self,
        *,
        pacing: Pacing | None = None,
        max_read_attempts: int = MAX_READ_ATTEMPTS,
        max_consecutive_failures: int = MAX_CONSECUTIVE_FAILURES,
    ) -> None:
        self.pacing = pacing or Pacing()
        self.max_read_attempts = max_read_attempts
        self.max_consecutive_failures = max_consecutive_failures

    async def score_audio(
        self,
        audio_provider: AudioProvider,
        duration_ms: int,
        config: AnalysisConfig,
        progress: ProgressReporter | None = None,
    ) -> list[AudioScore]:
        if duration_ms <= 0:
            return []

        interval_ms = audio_sample_interval_ms(duration_ms, config)
        time_points = list(range(0, config.analysis_limit_ms(duration_ms), interval_ms))
        policy = RetryPolicy(
            max_attempts=self.max_read_attempts,
            base_delay_seconds=self.pacing.retry_backoff_seconds,
        )
        breaker = self.pacing.breaker(self.max_consecutive_failures)
        batch_pause = min(self.pacing.batch_pause_seconds, BATCH_PAUSE_SECONDS)
        scores: list[AudioScore] = []

        logger.info("Audio scoring: %d samples every %dms", len(time_points), interval_ms)

        for index, timestamp_ms in enumerate(time_points):
            await asyncio.sleep(0)
            if progress is not None:
                progress.report(index / len(time_points))

            # Audio reads only observe the batch pause.
            await self.pacing.before_read(len(scores), batch_pause_seconds=batch_pause, read_delay_seconds=0.0)
            try:
                window = await policy.call_blocking(
                    audio_provider.read_window,
                    timestamp_ms,
                    label=f"audio window at {timestamp_ms}ms",
                )
            except RetryExhaustedError as exc:
                logger.warning("Audio read failed: %s", exc)
                if breaker.record_failure():
                    logger.error(
                        "Audio scoring aborted after %d consecutive failures; keeping %d samples",
                        breaker.failures,
                        len(scores),
                    )
                    break
                await breaker.backoff()
                continue

            if window is None:
                logger.debug("Audio stream ended before %dms", timestamp_ms)
                continue

            breaker.record_success()
            if scores and window.timestamp_ms <= scores[-1].timestamp_ms:
                # Coarse sync points can map two sample times onto the same window.
                continue

            volume = await self._measure_volume(audio_provider, window, config)
            if volume is None:
                continue
            scores.append(
                AudioScore(
                    timestamp_ms=window.timestamp_ms,
                    volume=volume,
                    is_loud=volume > config.loud_audio_threshold,
                )
            )

        if progress is not None:
            progress.report(1.0)
        logger.info("Audio scoring complete: %d samples", len(scores))
        return scores

    async def _measure_volume(
        self,
        audio_provider: AudioProvider,
        first_window: AudioWindow,
        config: AnalysisConfig,
    ) -> float | None:
        """Average RMS over a short run of consecutive windows; ``None`` when all are silent."""

        window_count = QUICK_WINDOWS_PER_SAMPLE if config.quick_mode else WINDOWS_PER_SAMPLE
        rms_limit = QUICK_RMS_SAMPLE_LIMIT if config.quick_mode else RMS_SAMPLE_LIMIT

        rms_values: list[float] = []
        window: AudioWindow | None = first_window
        for position in range(window_count):
            if window is None:
                break
            rms = pcm_rms(window.samples, rms_limit)
            if rms > 0:
                rms_values.append(rms)

            if position == window_count - 1:
                break
            next_timestamp = window.timestamp_ms + max(window.duration_ms, 1)
            try:
                window = await asyncio.to_thread(audio_provider.read_window, next_timestamp)
            except Exception as exc:
                logger.debug("Follow-up audio window at %dms unavailable: %s", next_timestamp, exc)
                break

        if not rms_values:
            return None
        return volume_from_rms(sum(rms_values) / len(rms_values))
