from __future__ import annotations

import pytest

from skimmer.models import ChapterType, Scene
from skimmer.propose.chapters import ChapterSynthesizer


def _spans(chapters) -> list[tuple[int, int]]:
    return [(chapter.start_ms, chapter.end_ms) for chapter in chapters]


def test_short_videos_get_no_chapters() -> None:
    assert ChapterSynthesizer().generate_chapters([Scene(0, 59_999)], 59_999) == []


def test_no_scenes_falls_back_to_full_video() -> None:
    chapters = ChapterSynthesizer().generate_chapters([], 120_000)

    assert len(chapters) == 1
    assert chapters[0].title == "Full Video"
    assert chapters[0].chapter_type is ChapterType.MAIN_CONTENT
    assert _spans(chapters) == [(0, 120_000)]


def test_single_scene_gets_intro_main_and_conclusion() -> None:
    chapters = ChapterSynthesizer().generate_chapters([Scene(0, 120_000)], 120_000)

    assert _spans(chapters) == [(0, 6_000), (6_000, 114_000), (114_000, 120_000)]
    assert [chapter.title for chapter in chapters] == ["Introduction", "Main Content", "Conclusion"]
    assert [chapter.chapter_type for chapter in chapters] == [
        ChapterType.INTRODUCTION,
        ChapterType.MAIN_CONTENT,
        ChapterType.CONCLUSION,
    ]
    assert [chapter.confidence for chapter in chapters] == [0.9, 0.7, 0.9]


def test_strong_scene_changes_open_numbered_chapters() -> None:
    scenes = [
        Scene(0, 100_000),
        Scene(100_000, 130_000, change_intensity=0.8),
        Scene(130_000, 200_000, change_intensity=0.9),
        Scene(200_000, 250_000, change_intensity=0.6),
        Scene(250_000, 300_000, change_intensity=0.4),
    ]

    chapters = ChapterSynthesizer().generate_chapters(scenes, 300_000)

    assert _spans(chapters) == [
        (0, 15_000),
        (15_000, 100_000),
        (100_000, 200_000),
        (200_000, 285_000),
        (285_000, 300_000),
    ]
    assert [chapter.title for chapter in chapters] == [
        "Introduction",
        "Chapter 1",
        "Chapter 2",
        "Chapter 3",
        "Conclusion",
    ]
    assert chapters[1].confidence == pytest.approx(0.8)
    assert chapters[2].confidence == pytest.approx(0.6)


def test_custom_interval_allows_denser_chapters() -> None:
    scenes = [Scene(0, 40_000), Scene(40_000, 80_000, change_intensity=0.9), Scene(80_000, 120_000, change_intensity=0.9)]

    chapters = ChapterSynthesizer().generate_chapters(scenes, 120_000, min_interval_ms=30_000)

    assert [chapter.title for chapter in chapters] == ["Introduction", "Chapter 1", "Chapter 2", "Chapter 3", "Conclusion"]


def test_exactly_one_minute_is_a_single_main_chapter() -> None:
    chapters = ChapterSynthesizer().generate_chapters([Scene(0, 60_000)], 60_000)

    assert _spans(chapters) == [(0, 60_000)]
    assert chapters[0].title == "Main Content"


@pytest.mark.parametrize("duration_ms", [60_001, 90_000, 600_000, 3_600_000])
def test_chapters_tile_the_timeline(duration_ms: int) -> None:
    scenes = [
        Scene(start, min(start + 45_000, duration_ms), change_intensity=0.75)
        for start in range(0, duration_ms, 45_000)
    ]

    chapters = ChapterSynthesizer().generate_chapters(scenes, duration_ms)

    assert chapters[0].start_ms == 0
    assert chapters[-1].end_ms == duration_ms
    for previous, current in zip(chapters, chapters[1:]):
        assert previous.end_ms == current.start_ms
    assert all(chapter.duration_ms >= 5_000 for chapter in chapters)
