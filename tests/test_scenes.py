from __future__ import annotations

import asyncio

import pytest

from skimmer.config import AnalysisConfig
from skimmer.features.scenes import SceneSegmentationEngine, scene_sample_interval_ms, scene_time_points
from skimmer.retry import Pacing
from tests.fakes import FailingFrameProvider, FunctionFrameProvider, solid_frame


def _cut_at(cut_ms: int) -> FunctionFrameProvider:
    dark = solid_frame(0)
    bright = solid_frame(255)
    return FunctionFrameProvider(lambda ts: dark if ts < cut_ms else bright)


def _assert_contiguous(scenes, duration_ms: int) -> None:
    assert scenes[0].start_ms == 0
    assert scenes[-1].end_ms == duration_ms
    for previous, current in zip(scenes, scenes[1:]):
        assert previous.end_ms == current.start_ms


def test_fixed_interval_without_adaptive_sampling() -> None:
    assert scene_sample_interval_ms(900_000, AnalysisConfig()) == 2_000


def test_adaptive_interval_grows_with_duration() -> None:
    config = AnalysisConfig(adaptive_sampling=True)

    assert scene_sample_interval_ms(30_000, config) == 2_000
    assert scene_sample_interval_ms(120_000, config) == 3_000
    assert scene_sample_interval_ms(400_000, config) == 4_000
    assert scene_sample_interval_ms(900_000, config) == 5_000


def test_quick_mode_samples_opening_middle_and_ending() -> None:
    points = scene_time_points(100_000, AnalysisConfig(quick_mode=True))

    assert points[:2] == [0, 3_000]
    assert 20_000 not in points
    assert 40_000 in points and 80_000 in points
    assert max(points) < 100_000
    assert len(points) == 21


def test_time_points_respect_analysis_cap() -> None:
    points = scene_time_points(120_000, AnalysisConfig(max_analysis_duration_ms=10_000))

    assert points == [0, 2_000, 4_000, 6_000, 8_000]


def test_uniform_video_is_one_full_scene(no_pacing: Pacing) -> None:
    provider = FunctionFrameProvider(lambda ts: solid_frame(90))

    scenes = asyncio.run(SceneSegmentationEngine(pacing=no_pacing).segment_scenes(provider, 120_000, AnalysisConfig()))

    assert len(scenes) == 1
    assert (scenes[0].start_ms, scenes[0].end_ms) == (0, 120_000)
    assert scenes[0].average_brightness == 0.5
    assert len(provider.calls) == 60


def test_hard_cut_splits_timeline(no_pacing: Pacing) -> None:
    scenes = asyncio.run(
        SceneSegmentationEngine(pacing=no_pacing).segment_scenes(_cut_at(10_000), 20_000, AnalysisConfig())
    )

    assert [(scene.start_ms, scene.end_ms) for scene in scenes] == [(0, 10_000), (10_000, 20_000)]
    assert scenes[0].change_intensity == pytest.approx(1.0)
    assert scenes[0].average_brightness == pytest.approx(1.0)
    assert scenes[1].average_brightness == 0.5
    _assert_contiguous(scenes, 20_000)


def test_cut_closer_than_minimum_scene_is_ignored(no_pacing: Pacing) -> None:
    scenes = asyncio.run(
        SceneSegmentationEngine(pacing=no_pacing).segment_scenes(_cut_at(2_000), 20_000, AnalysisConfig())
    )

    assert [(scene.start_ms, scene.end_ms) for scene in scenes] == [(0, 20_000)]


def test_short_trailing_remainder_is_absorbed(no_pacing: Pacing) -> None:
    scenes = asyncio.run(
        SceneSegmentationEngine(pacing=no_pacing).segment_scenes(_cut_at(10_000), 12_000, AnalysisConfig())
    )

    assert [(scene.start_ms, scene.end_ms) for scene in scenes] == [(0, 12_000)]
    assert scenes[0].change_intensity == pytest.approx(1.0)


def test_alternating_content_stays_contiguous(no_pacing: Pacing) -> None:
    provider = FunctionFrameProvider(lambda ts: solid_frame(0 if (ts // 8_000) % 2 == 0 else 200))

    scenes = asyncio.run(SceneSegmentationEngine(pacing=no_pacing).segment_scenes(provider, 61_000, AnalysisConfig()))

    assert len(scenes) > 2
    _assert_contiguous(scenes, 61_000)
    assert all(scene.duration_ms >= 3_000 for scene in scenes)


def test_persistent_read_failures_fall_back_to_full_scene(no_pacing: Pacing) -> None:
    provider = FailingFrameProvider()

    scenes = asyncio.run(SceneSegmentationEngine(pacing=no_pacing).segment_scenes(provider, 60_000, AnalysisConfig()))

    assert [(scene.start_ms, scene.end_ms) for scene in scenes] == [(0, 60_000)]
    assert provider.calls == 5


def test_missing_frames_are_skipped(no_pacing: Pacing) -> None:
    bright = solid_frame(255)
    dark = solid_frame(0)

    def _frame_at(ts: int):
        if ts == 8_000:
            return None
        return dark if ts < 8_000 else bright

    scenes = asyncio.run(
        SceneSegmentationEngine(pacing=no_pacing).segment_scenes(FunctionFrameProvider(_frame_at), 20_000, AnalysisConfig())
    )

    assert [(scene.start_ms, scene.end_ms) for scene in scenes] == [(0, 10_000), (10_000, 20_000)]


def test_non_positive_duration_yields_no_scenes(no_pacing: Pacing) -> None:
    provider = FunctionFrameProvider(lambda ts: solid_frame(0))

    assert asyncio.run(SceneSegmentationEngine(pacing=no_pacing).segment_scenes(provider, 0, AnalysisConfig())) == []
    assert provider.calls == []
