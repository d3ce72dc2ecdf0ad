"""Runs the analysis stages and folds their signals into one ``AnalysisResult``.

Scene, motion and audio sampling are independent and may run concurrently.
Face sampling needs final scene boundaries, so it and everything after it
(scoring, selection, chapters) always runs sequentially.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from skimmer.config import AnalysisConfig
from skimmer.exceptions import InvalidMediaError
from skimmer.features.audio_loudness import AudioScoringEngine
from skimmer.features.faces import FacePresenceSampler, NullFaceDetector
from skimmer.features.scenes import SceneSegmentationEngine, full_duration_scene
from skimmer.features.video_motion import MotionScoringEngine
from skimmer.models import (
    AnalysisResult,
    AudioProvider,
    AudioScore,
    DurationSource,
    FaceDetector,
    FaceSample,
    FrameProvider,
    MotionScore,
    Scene,
    VideoChapter,
)
from skimmer.progress import (
    ProgressCallback,
    ProgressMerger,
    ProgressReporter,
    ScaledProgress,
    StageProgress,
    emit_progress,
)
from skimmer.propose.chapters import ChapterSynthesizer
from skimmer.propose.selector import select_highlights
from skimmer.retry import Pacing
from skimmer.scoring.heuristic_score import score_segments

logger = logging.getLogger(__name__)

T = TypeVar("T")

PHASE_ANALYZING = "Analyzing video"
PHASE_SCENES = "Detecting scenes"
PHASE_MOTION = "Analyzing motion"
PHASE_AUDIO = "Analyzing audio"
PHASE_FACES = "Detecting faces"
PHASE_SCORING = "Scoring highlights"
PHASE_CHAPTERS = "Generating chapters"
PHASE_COMPLETE = "Complete"

PARALLEL_STAGE_SHARE = 0.7
PARALLEL_FACES_PROGRESS = 0.75
SEQUENTIAL_FACES_PROGRESS = 0.7
SCORING_PROGRESS = 0.85
CHAPTERS_PROGRESS = 0.95

# (phase, offset, scale) for the three sampling stages in sequential mode.
SEQUENTIAL_BANDS = {
    "scenes": (PHASE_SCENES, 0.0, 0.25),
    "motion": (PHASE_MOTION, 0.25, 0.25),
    "audio": (PHASE_AUDIO, 0.5, 0.2),
}


class AnalysisState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"


class AnalysisCoordinator:
    """Orchestrates one analysis at a time over a fixed set of media collaborators."""

    def __init__(
        self,
        frame_provider: FrameProvider,
        audio_provider: AudioProvider | None,
        duration_source: DurationSource,
        face_detector: FaceDetector | None = None,
        *,
        pacing: Pacing | None = None,
        scene_engine: SceneSegmentationEngine | None = None,
        motion_engine: MotionScoringEngine | None = None,
        audio_engine: AudioScoringEngine | None = None,
        chapter_synthesizer: ChapterSynthesizer | None = None,
    ) -> None:
        self.frame_provider = frame_provider
        self.audio_provider = audio_provider
        self.duration_source = duration_source
        self.face_detector: FaceDetector = face_detector if face_detector is not None else NullFaceDetector()

        resolved_pacing = pacing or Pacing()
        self.scene_engine = scene_engine or SceneSegmentationEngine(pacing=resolved_pacing)
        self.motion_engine = motion_engine or MotionScoringEngine(pacing=resolved_pacing)
        self.audio_engine = audio_engine or AudioScoringEngine(pacing=resolved_pacing)
        self.face_sampler = FacePresenceSampler(self.face_detector, pacing=resolved_pacing)
        self.chapter_synthesizer = chapter_synthesizer or ChapterSynthesizer()

        self._state = AnalysisState.IDLE
        self._task: asyncio.Task[Any] | None = None

    @property
    def state(self) -> AnalysisState:
        return self._state

    def cancel(self) -> bool:
        """Request cancellation of the running analysis; False when nothing is running."""

        if self._task is None or self._task.done():
            return False
        return self._task.cancel()

    def release(self) -> None:
        self.motion_engine.clear_cache()
        self.face_detector.release()

    async def analyze(self, config: AnalysisConfig, on_progress: ProgressCallback | None = None) -> AnalysisResult:
        if self._state is AnalysisState.RUNNING:
            raise RuntimeError("An analysis is already running on this coordinator.")

        # Claimed before the first await so a concurrent call sees RUNNING.
        self._state = AnalysisState.RUNNING
        self._task = asyncio.current_task()

        try:
            duration_ms = await self._resolve_duration()
        except asyncio.CancelledError:
            self._state = AnalysisState.CANCELLED
            self._task = None
            raise
        except InvalidMediaError:
            self._state = AnalysisState.FAILED
            self._task = None
            raise

        logger.info(
            "Starting analysis of %dms (%s)",
            duration_ms,
            "parallel" if config.parallel_processing else "sequential",
        )

        try:
            result = await self._run(config, duration_ms, on_progress)
        except asyncio.CancelledError:
            logger.info("Analysis cancelled")
            self._state = AnalysisState.CANCELLED
            raise
        except Exception:
            logger.exception("Analysis failed; returning an empty result")
            self._state = AnalysisState.FAILED
            return AnalysisResult.empty()
        finally:
            self._task = None

        self._state = AnalysisState.COMPLETE
        logger.info(
            "Analysis complete: %d scenes, %d highlights, %d chapters",
            len(result.scenes),
            len(result.highlights),
            len(result.chapters),
        )
        return result

    async def _resolve_duration(self) -> int:
        try:
            duration_ms = await asyncio.to_thread(self.duration_source.get_duration_ms)
        except Exception as exc:
            raise InvalidMediaError(f"Unable to read media duration: {exc}") from exc
        if duration_ms is None or duration_ms <= 0:
            raise InvalidMediaError(f"Media duration must be positive (got {duration_ms}).")
        return int(duration_ms)

    async def _run(
        self,
        config: AnalysisConfig,
        duration_ms: int,
        on_progress: ProgressCallback | None,
    ) -> AnalysisResult:
        if config.parallel_processing:
            scenes, motion_scores, audio_scores = await self._sample_parallel(config, duration_ms, on_progress)
            faces_progress = PARALLEL_FACES_PROGRESS
        else:
            scenes, motion_scores, audio_scores = await self._sample_sequential(config, duration_ms, on_progress)
            faces_progress = SEQUENTIAL_FACES_PROGRESS

        emit_progress(on_progress, PHASE_FACES, faces_progress)
        face_samples = await self._guarded("face sampling", lambda: self._sample_faces(scenes, duration_ms, config), [])

        emit_progress(on_progress, PHASE_SCORING, SCORING_PROGRESS)
        candidates = score_segments(scenes, motion_scores, audio_scores, face_samples, config)
        highlights = select_highlights(candidates, config)

        emit_progress(on_progress, PHASE_CHAPTERS, CHAPTERS_PROGRESS)
        chapters: list[VideoChapter] = []
        if config.generate_chapters:
            chapters = self.chapter_synthesizer.generate_chapters(scenes, duration_ms, config.chapter_interval_ms)

        emit_progress(on_progress, PHASE_COMPLETE, 1.0)
        return AnalysisResult(
            scenes=tuple(scenes),
            highlights=tuple(highlights),
            chapters=tuple(chapters),
            audio_scores=tuple(audio_scores),
            motion_scores=tuple(motion_scores),
            face_samples=tuple(face_samples),
        )

    async def _sample_parallel(
        self,
        config: AnalysisConfig,
        duration_ms: int,
        on_progress: ProgressCallback | None,
    ) -> tuple[list[Scene], list[MotionScore], list[AudioScore]]:
        channels = {name: StageProgress(name) for name in ("scenes", "motion", "audio")}
        merger = ProgressMerger(PHASE_ANALYZING, channels.values(), on_progress, scale=PARALLEL_STAGE_SHARE)
        merger_task = asyncio.create_task(merger.run())

        try:
            scenes, motion_scores, audio_scores = await asyncio.gather(
                self._scenes_stage(config, duration_ms, channels["scenes"]),
                self._motion_stage(config, duration_ms, channels["motion"]),
                self._audio_stage(config, duration_ms, channels["audio"]),
            )
        except BaseException:
            merger_task.cancel()
            raise

        await merger_task
        return scenes, motion_scores, audio_scores

    async def _sample_sequential(
        self,
        config: AnalysisConfig,
        duration_ms: int,
        on_progress: ProgressCallback | None,
    ) -> tuple[list[Scene], list[MotionScore], list[AudioScore]]:
        def band(name: str) -> ScaledProgress:
            phase, offset, scale = SEQUENTIAL_BANDS[name]
            return ScaledProgress(phase, on_progress, offset=offset, scale=scale)

        scenes = await self._scenes_stage(config, duration_ms, band("scenes"))
        motion_scores = await self._motion_stage(config, duration_ms, band("motion"))
        audio_scores = await self._audio_stage(config, duration_ms, band("audio"))
        return scenes, motion_scores, audio_scores

    async def _scenes_stage(self, config: AnalysisConfig, duration_ms: int, progress: ProgressReporter) -> list[Scene]:
        fallback = [full_duration_scene(duration_ms)]
        if not config.enable_scene_detection:
            progress.close()
            return fallback
        return await self._guarded(
            "scene segmentation",
            lambda: self.scene_engine.segment_scenes(self.frame_provider, duration_ms, config, progress),
            fallback,
            progress,
        )

    async def _motion_stage(
        self,
        config: AnalysisConfig,
        duration_ms: int,
        progress: ProgressReporter,
    ) -> list[MotionScore]:
        if not config.enable_motion_analysis:
            progress.close()
            return []
        return await self._guarded(
            "motion scoring",
            lambda: self.motion_engine.score_motion(self.frame_provider, duration_ms, config, progress),
            [],
            progress,
        )

    async def _audio_stage(self, config: AnalysisConfig, duration_ms: int, progress: ProgressReporter) -> list[AudioScore]:
        audio_provider = self.audio_provider
        if not config.include_audio_analysis or audio_provider is None:
            progress.close()
            return []
        return await self._guarded(
            "audio scoring",
            lambda: self.audio_engine.score_audio(audio_provider, duration_ms, config, progress),
            [],
            progress,
        )

    async def _sample_faces(self, scenes: list[Scene], duration_ms: int, config: AnalysisConfig) -> list[FaceSample]:
        if not config.include_face_detection:
            return []
        return await self.face_sampler.sample_faces(self.frame_provider, scenes, duration_ms, config)

    async def _guarded(
        self,
        stage: str,
        run: Callable[[], Awaitable[T]],
        fallback: T,
        progress: ProgressReporter | None = None,
    ) -> T:
        """Await a stage; an escaping exception degrades to ``fallback`` instead of aborting."""

        try:
            return await run()
        except Exception:
            logger.error("%s failed; continuing without it", stage.capitalize(), exc_info=True)
            return fallback
        finally:
            if progress is not None:
                progress.close()
