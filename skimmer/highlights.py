from __future__ import annotations

import time
from typing import Callable

from skimmer.config import AnalysisConfig
from skimmer.models import AnalysisResult, VideoHighlights
from skimmer.pipeline_coordinator import AnalysisCoordinator
from skimmer.progress import ProgressCallback


def summarize_highlights(
    result: AnalysisResult,
    *,
    analysis_time_ms: int,
    config: AnalysisConfig | None = None,
) -> VideoHighlights:
    """Condense an analysis result into the playback-facing highlight summary."""

    # Scenes always cover the whole timeline, so the last one ends at the media duration.
    original_duration_ms = result.scenes[-1].end_ms if result.scenes else 0
    scores = [segment.score for segment in result.highlights]

    metadata = {
        "scene_count": str(len(result.scenes)),
        "highlight_count": str(len(result.highlights)),
        "chapter_count": str(len(result.chapters)),
    }
    if config is not None:
        metadata["mode"] = "parallel" if config.parallel_processing else "sequential"
        metadata["quick_mode"] = str(config.quick_mode).lower()

    return VideoHighlights(
        original_duration_ms=original_duration_ms,
        highlight_duration_ms=sum(segment.duration_ms for segment in result.highlights),
        highlights=result.highlights,
        chapters=result.chapters,
        analysis_time_ms=analysis_time_ms,
        confidence_score=sum(scores) / len(scores) if scores else 0.0,
        metadata=metadata,
    )


async def generate_video_highlights(
    coordinator: AnalysisCoordinator,
    config: AnalysisConfig,
    on_progress: ProgressCallback | None = None,
    *,
    clock: Callable[[], float] = time.monotonic,
) -> VideoHighlights:
    started = clock()
    result = await coordinator.analyze(config, on_progress)
    elapsed_ms = int(round((clock() - started) * 1000))
    return summarize_highlights(result, analysis_time_ms=elapsed_ms, config=config)
