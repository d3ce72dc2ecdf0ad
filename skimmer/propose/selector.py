from __future__ import annotations

import logging
from typing import Sequence

from skimmer.config import AnalysisConfig
from skimmer.models import HighlightSegment

logger = logging.getLogger(__name__)


def select_highlights(segments: Sequence[HighlightSegment], config: AnalysisConfig) -> list[HighlightSegment]:
    """Pick the reel from scored candidates.

    Pipeline:
    1) keep segments meeting the score floor and the duration band
    2) rank by descending score; ``sorted`` is stable so ties keep source order
    3) accept greedily while under ``max_highlights`` and the duration budget
    4) return the accepted set in timeline order
    """

    eligible = [
        segment
        for segment in segments
        if segment.score >= config.min_highlight_score
        and config.min_segment_duration_ms <= segment.duration_ms <= config.max_segment_duration_ms
    ]
    ranked = sorted(eligible, key=lambda segment: -segment.score)

    selected: list[HighlightSegment] = []
    total_duration_ms = 0
    for segment in ranked:
        if len(selected) >= config.max_highlights or total_duration_ms >= config.target_duration_ms:
            break
        if total_duration_ms + segment.duration_ms > config.target_duration_ms:
            continue
        selected.append(segment)
        total_duration_ms += segment.duration_ms

    logger.info(
        "Selected %d of %d eligible highlights (%dms of %dms budget)",
        len(selected),
        len(eligible),
        total_duration_ms,
        config.target_duration_ms,
    )
    return sorted(selected, key=lambda segment: segment.start_ms)
