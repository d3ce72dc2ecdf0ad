from __future__ import annotations

import logging
from dataclasses import replace
from typing import Sequence

from skimmer.models import ChapterType, Scene, VideoChapter

logger = logging.getLogger(__name__)

DEFAULT_MIN_INTERVAL_MS = 60_000
MIN_VIDEO_DURATION_MS = 60_000
MIN_CHAPTER_DURATION_MS = 5_000
INTRO_FRACTION = 0.05
OUTRO_FRACTION = 0.95
CHAPTER_CHANGE_THRESHOLD = 0.5

INTRO_CONFIDENCE = 0.9
OUTRO_CONFIDENCE = 0.9
REMAINDER_CONFIDENCE = 0.7
FALLBACK_CONFIDENCE = 0.5


def full_video_chapter(duration_ms: int) -> VideoChapter:
    return VideoChapter(
        start_ms=0,
        end_ms=duration_ms,
        title="Full Video",
        chapter_type=ChapterType.MAIN_CONTENT,
        confidence=FALLBACK_CONFIDENCE,
    )


class ChapterSynthesizer:
    """Derives intro / numbered / conclusion chapters from strong scene changes."""

    def __init__(self, *, min_chapter_duration_ms: int = MIN_CHAPTER_DURATION_MS) -> None:
        self.min_chapter_duration_ms = min_chapter_duration_ms

    def generate_chapters(
        self,
        scenes: Sequence[Scene],
        duration_ms: int,
        min_interval_ms: int = DEFAULT_MIN_INTERVAL_MS,
    ) -> list[VideoChapter]:
        if duration_ms < MIN_VIDEO_DURATION_MS:
            return []
        if not scenes:
            return [full_video_chapter(duration_ms)]

        intro_end = int(duration_ms * INTRO_FRACTION)
        outro_start = int(duration_ms * OUTRO_FRACTION)
        chapters: list[VideoChapter] = []

        if duration_ms > MIN_VIDEO_DURATION_MS:
            chapters.append(
                VideoChapter(
                    start_ms=0,
                    end_ms=intro_end,
                    title="Introduction",
                    chapter_type=ChapterType.INTRODUCTION,
                    confidence=INTRO_CONFIDENCE,
                )
            )

        chapter_start = intro_end
        chapter_number = 1
        for scene in scenes:
            if not self._opens_chapter(scene, chapter_start, min_interval_ms, intro_end, outro_start):
                continue
            chapters.append(
                VideoChapter(
                    start_ms=chapter_start,
                    end_ms=scene.start_ms,
                    title=f"Chapter {chapter_number}",
                    chapter_type=ChapterType.MAIN_CONTENT,
                    confidence=scene.change_intensity,
                )
            )
            chapter_start = scene.start_ms
            chapter_number += 1

        if outro_start - chapter_start >= self.min_chapter_duration_ms:
            chapters.append(
                VideoChapter(
                    start_ms=chapter_start,
                    end_ms=outro_start,
                    title="Main Content" if chapter_number == 1 else f"Chapter {chapter_number}",
                    chapter_type=ChapterType.MAIN_CONTENT,
                    confidence=REMAINDER_CONFIDENCE,
                )
            )

        if duration_ms > MIN_VIDEO_DURATION_MS and duration_ms - outro_start >= self.min_chapter_duration_ms:
            chapters.append(
                VideoChapter(
                    start_ms=outro_start,
                    end_ms=duration_ms,
                    title="Conclusion",
                    chapter_type=ChapterType.CONCLUSION,
                    confidence=OUTRO_CONFIDENCE,
                )
            )

        normalized = self._normalize(chapters, duration_ms)
        if not normalized:
            return [full_video_chapter(duration_ms)]

        logger.info("Generated %d chapters for %dms", len(normalized), duration_ms)
        return normalized

    def _opens_chapter(
        self,
        scene: Scene,
        chapter_start: int,
        min_interval_ms: int,
        intro_end: int,
        outro_start: int,
    ) -> bool:
        return (
            scene.change_intensity > CHAPTER_CHANGE_THRESHOLD
            and scene.start_ms - chapter_start >= min_interval_ms
            and intro_end < scene.start_ms < outro_start
            and scene.start_ms - chapter_start >= self.min_chapter_duration_ms
        )

    def _normalize(self, chapters: list[VideoChapter], duration_ms: int) -> list[VideoChapter]:
        """Make chapters contiguous from 0 to ``duration_ms``, dropping ones that end up too short."""

        normalized: list[VideoChapter] = []
        previous_end = 0
        for chapter in sorted(chapters, key=lambda item: item.start_ms):
            end_ms = min(chapter.end_ms, duration_ms)
            if end_ms - previous_end < self.min_chapter_duration_ms:
                continue
            normalized.append(replace(chapter, start_ms=previous_end, end_ms=end_ms))
            previous_end = end_ms

        if normalized and normalized[-1].end_ms < duration_ms:
            normalized[-1] = replace(normalized[-1], end_ms=duration_ms)
        return normalized
