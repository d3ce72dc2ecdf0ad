from __future__ import annotations

import asyncio

import pytest

from skimmer.config import AnalysisConfig
from skimmer.exceptions import InvalidMediaError
from skimmer.features.scenes import SceneSegmentationEngine
from skimmer.features.video_motion import MotionScoringEngine
from skimmer.models import AnalysisProgress, AnalysisResult
from skimmer.pipeline_coordinator import AnalysisCoordinator, AnalysisState
from skimmer.retry import Pacing
from tests.fakes import (
    ConstantAudioProvider,
    FailingFrameProvider,
    FakeCv2,
    FixedFaceDetector,
    FunctionFrameProvider,
    StaticDurationSource,
    TimingOutFaceDetector,
    solid_frame,
)


class _BrokenDurationSource:
    def get_duration_ms(self) -> int:
        raise RuntimeError("container header unreadable")


class _ExplodingSceneEngine(SceneSegmentationEngine):
    async def segment_scenes(self, frame_provider, duration_ms, config, progress=None):
        raise RuntimeError("histogram backend crashed")


def _uniform_frames() -> FunctionFrameProvider:
    frame = solid_frame(90)
    return FunctionFrameProvider(lambda ts: frame)


def _coordinator(frame_provider, duration_ms: int = 120_000, audio_provider=None, face_detector=None, **engines):
    pacing = Pacing.disabled()
    engines.setdefault("motion_engine", MotionScoringEngine(pacing=pacing, cv2_module=FakeCv2()))
    return AnalysisCoordinator(
        frame_provider,
        audio_provider,
        StaticDurationSource(duration_ms),
        face_detector,
        pacing=pacing,
        **engines,
    )


def test_uniform_video_yields_one_scene_no_highlights_and_three_chapters() -> None:
    coordinator = _coordinator(_uniform_frames())

    result = asyncio.run(coordinator.analyze(AnalysisConfig(include_audio_analysis=False)))

    assert coordinator.state is AnalysisState.COMPLETE
    assert [(scene.start_ms, scene.end_ms) for scene in result.scenes] == [(0, 120_000)]
    assert result.highlights == ()
    assert [(chapter.start_ms, chapter.end_ms) for chapter in result.chapters] == [
        (0, 6_000),
        (6_000, 114_000),
        (114_000, 120_000),
    ]
    assert all(score.intensity == 0.0 for score in result.motion_scores)


def test_total_frame_failure_degrades_gracefully() -> None:
    coordinator = _coordinator(FailingFrameProvider(), duration_ms=60_000)

    result = asyncio.run(coordinator.analyze(AnalysisConfig(include_audio_analysis=False)))

    assert coordinator.state is AnalysisState.COMPLETE
    assert [(scene.start_ms, scene.end_ms) for scene in result.scenes] == [(0, 60_000)]
    assert result.motion_scores == ()
    assert result.highlights == ()


def test_stage_crash_falls_back_to_full_duration_scene() -> None:
    coordinator = _coordinator(_uniform_frames(), scene_engine=_ExplodingSceneEngine(pacing=Pacing.disabled()))

    result = asyncio.run(coordinator.analyze(AnalysisConfig(include_audio_analysis=False)))

    assert coordinator.state is AnalysisState.COMPLETE
    assert [(scene.start_ms, scene.end_ms) for scene in result.scenes] == [(0, 120_000)]


def test_audio_scores_flow_into_result() -> None:
    coordinator = _coordinator(_uniform_frames(), duration_ms=30_000, audio_provider=ConstantAudioProvider(20_000))

    result = asyncio.run(coordinator.analyze(AnalysisConfig(generate_chapters=False)))

    assert [score.timestamp_ms for score in result.audio_scores] == [0, 10_000, 20_000]
    assert result.chapters == ()


def test_loud_busy_scene_becomes_a_highlight() -> None:
    dark = solid_frame(0)
    bright = solid_frame(255)
    provider = FunctionFrameProvider(lambda ts: dark if ts < 10_000 else bright)
    coordinator = _coordinator(provider, duration_ms=20_000, audio_provider=ConstantAudioProvider(30_000))

    result = asyncio.run(coordinator.analyze(AnalysisConfig(generate_chapters=False)))

    assert [(scene.start_ms, scene.end_ms) for scene in result.scenes] == [(0, 10_000), (10_000, 20_000)]
    assert [(segment.start_ms, segment.end_ms) for segment in result.highlights] == [(0, 10_000)]
    assert "loud_audio" in result.highlights[0].key_features


def test_timing_out_face_detector_leaves_no_face_samples() -> None:
    coordinator = _coordinator(_uniform_frames(), face_detector=TimingOutFaceDetector())

    result = asyncio.run(
        coordinator.analyze(AnalysisConfig(include_audio_analysis=False, include_face_detection=True))
    )

    assert coordinator.state is AnalysisState.COMPLETE
    assert result.face_samples == ()
    assert len(result.scenes) == 1


def test_face_detection_samples_final_scenes() -> None:
    coordinator = _coordinator(_uniform_frames(), face_detector=FixedFaceDetector(count=1))

    result = asyncio.run(
        coordinator.analyze(AnalysisConfig(include_audio_analysis=False, include_face_detection=True))
    )

    assert [sample.timestamp_ms for sample in result.face_samples] == [0, 60_000]


@pytest.mark.parametrize("duration_ms", [0, -5])
def test_non_positive_duration_is_invalid_media(duration_ms: int) -> None:
    coordinator = _coordinator(_uniform_frames(), duration_ms=duration_ms)

    with pytest.raises(InvalidMediaError):
        asyncio.run(coordinator.analyze(AnalysisConfig()))

    assert coordinator.state is AnalysisState.FAILED


def test_unreadable_duration_is_invalid_media() -> None:
    coordinator = AnalysisCoordinator(_uniform_frames(), None, _BrokenDurationSource(), pacing=Pacing.disabled())

    with pytest.raises(InvalidMediaError, match="container header unreadable"):
        asyncio.run(coordinator.analyze(AnalysisConfig()))

    assert coordinator.state is AnalysisState.FAILED


@pytest.mark.parametrize("parallel", [True, False])
def test_progress_is_monotonic_and_completes(parallel: bool) -> None:
    received: list[AnalysisProgress] = []
    coordinator = _coordinator(_uniform_frames(), duration_ms=60_000, audio_provider=ConstantAudioProvider(10_000))

    asyncio.run(coordinator.analyze(AnalysisConfig(parallel_processing=parallel), received.append))

    fractions = [item.fraction for item in received]
    assert fractions == sorted(fractions)
    assert all(0.0 <= fraction <= 1.0 for fraction in fractions)
    assert received[-1] == AnalysisProgress(phase="Complete", fraction=1.0)


def test_parallel_and_sequential_runs_agree() -> None:
    audio = ConstantAudioProvider(12_000)
    parallel = asyncio.run(_coordinator(_uniform_frames(), audio_provider=audio).analyze(AnalysisConfig()))
    sequential = asyncio.run(
        _coordinator(_uniform_frames(), audio_provider=audio).analyze(AnalysisConfig(parallel_processing=False))
    )

    assert parallel == sequential


def test_repeated_analysis_is_idempotent() -> None:
    coordinator = _coordinator(_uniform_frames(), audio_provider=ConstantAudioProvider(12_000))
    config = AnalysisConfig()

    first = asyncio.run(coordinator.analyze(config))
    second = asyncio.run(coordinator.analyze(config))

    assert first == second
    assert isinstance(first, AnalysisResult)


def test_cancel_stops_running_analysis() -> None:
    coordinator = _coordinator(_uniform_frames())

    def _cancel_on_first_update(progress: AnalysisProgress) -> None:
        coordinator.cancel()

    async def _run() -> None:
        task = asyncio.create_task(
            coordinator.analyze(AnalysisConfig(parallel_processing=False), _cancel_on_first_update)
        )
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(_run())

    assert coordinator.state is AnalysisState.CANCELLED
    assert coordinator.cancel() is False


def test_release_drops_retained_state() -> None:
    detector = FixedFaceDetector()
    coordinator = _coordinator(_uniform_frames(), face_detector=detector)
    asyncio.run(coordinator.analyze(AnalysisConfig(include_audio_analysis=False)))

    assert coordinator.motion_engine.has_retained_grid
    coordinator.release()

    assert not coordinator.motion_engine.has_retained_grid
    assert detector.released


def test_concurrent_analyze_on_one_coordinator_is_rejected() -> None:
    coordinator = _coordinator(_uniform_frames())
    config = AnalysisConfig(include_audio_analysis=False)

    async def _run() -> list[object]:
        return await asyncio.gather(coordinator.analyze(config), coordinator.analyze(config), return_exceptions=True)

    outcomes = asyncio.run(_run())

    assert sum(isinstance(outcome, AnalysisResult) for outcome in outcomes) == 1
    assert sum(isinstance(outcome, RuntimeError) for outcome in outcomes) == 1
    assert coordinator.state is AnalysisState.COMPLETE
