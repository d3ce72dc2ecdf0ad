from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from skimmer.config import AnalysisConfig
from skimmer.models import AudioScore, FaceSample, HighlightReason, HighlightSegment, MotionScore, Scene

logger = logging.getLogger(__name__)

MOTION_BOOST = 1.2
AUDIO_BOOST = 1.15
FACE_BOOST = 1.1
SCENE_CHANGE_BOOST = 1.1
FACE_ACTIVITY_THRESHOLD = 0.7
HIGH_MOTION_TAG_THRESHOLD = 0.6
FACES_TAG_THRESHOLD = 0.6


@dataclass(frozen=True, slots=True)
class SceneSignals:
    """Per-scene averages of every signal feeding the highlight score."""

    motion: float
    audio: float
    visual: float
    face: float
    brightness: float


@dataclass(slots=True)
class HighlightScoreDetails:
    """Explainable output for one scored scene."""

    score: float
    weighted_sum: float
    reason: HighlightReason
    key_features: list[str]
    signals: SceneSignals


def collect_signals(
    scene: Scene,
    motion_scores: Sequence[MotionScore],
    audio_scores: Sequence[AudioScore],
    face_samples: Sequence[FaceSample],
) -> SceneSignals:
    """Average each sparse signal over samples inside ``[start_ms, end_ms]``."""

    motion = [s.intensity for s in motion_scores if scene.start_ms <= s.timestamp_ms <= scene.end_ms]
    audio = [s.volume for s in audio_scores if scene.start_ms <= s.timestamp_ms <= scene.end_ms]
    faces = [s.has_face for s in face_samples if scene.start_ms <= s.timestamp_ms <= scene.end_ms]

    return SceneSignals(
        motion=_mean(motion),
        audio=_mean(audio),
        visual=scene.change_intensity,
        face=(sum(1 for has_face in faces if has_face) / len(faces)) if faces else 0.0,
        brightness=scene.average_brightness,
    )


def score_scene(signals: SceneSignals, config: AnalysisConfig) -> HighlightScoreDetails:
    weighted_sum = (
        signals.motion * config.motion_weight
        + signals.audio * config.audio_weight
        + signals.visual * config.visual_weight
        + signals.face * config.face_weight
    )

    # Boosts compound multiplicatively before the final clamp.
    boosted = weighted_sum
    if signals.motion > config.high_motion_threshold:
        boosted *= MOTION_BOOST
    if signals.audio > config.loud_audio_threshold:
        boosted *= AUDIO_BOOST
    if signals.face > FACE_ACTIVITY_THRESHOLD:
        boosted *= FACE_BOOST
    if signals.visual > config.scene_change_threshold:
        boosted *= SCENE_CHANGE_BOOST

    return HighlightScoreDetails(
        score=_clamp(boosted),
        weighted_sum=weighted_sum,
        reason=primary_reason(signals, config),
        key_features=feature_tags(signals, config),
        signals=signals,
    )


def primary_reason(signals: SceneSignals, config: AnalysisConfig) -> HighlightReason:
    """First crossed threshold in the fixed order motion, audio, face, scene change."""

    if signals.motion > config.high_motion_threshold:
        return HighlightReason.HIGH_MOTION
    if signals.audio > config.loud_audio_threshold:
        return HighlightReason.AUDIO_PEAK
    if signals.face > FACE_ACTIVITY_THRESHOLD:
        return HighlightReason.FACE_ACTIVITY
    if signals.visual > config.scene_change_threshold:
        return HighlightReason.SCENE_CHANGE
    return HighlightReason.COMBINED


def feature_tags(signals: SceneSignals, config: AnalysisConfig) -> list[str]:
    tags: list[str] = []
    if signals.motion > HIGH_MOTION_TAG_THRESHOLD:
        tags.append("high_motion")
    if signals.audio > config.loud_audio_threshold:
        tags.append("loud_audio")
    if signals.face > FACES_TAG_THRESHOLD:
        tags.append("faces_detected")
    if signals.visual > config.scene_change_threshold:
        tags.append("scene_change")
    if signals.brightness > config.bright_scene_threshold:
        tags.append("bright_scene")
    return tags


def score_segments(
    scenes: Sequence[Scene],
    motion_scores: Sequence[MotionScore],
    audio_scores: Sequence[AudioScore],
    face_samples: Sequence[FaceSample],
    config: AnalysisConfig,
) -> list[HighlightSegment]:
    """Turn every sufficiently long scene into a scored highlight candidate."""

    if not scenes:
        logger.warning("No scenes to score")
        return []

    segments: list[HighlightSegment] = []
    for index, scene in enumerate(scenes):
        if scene.duration_ms < config.min_segment_duration_ms:
            continue
        try:
            details = score_scene(collect_signals(scene, motion_scores, audio_scores, face_samples), config)
        except Exception:
            logger.warning("Failed to score scene %d (%d-%dms)", index, scene.start_ms, scene.end_ms, exc_info=True)
            continue

        segments.append(
            HighlightSegment(
                start_ms=scene.start_ms,
                end_ms=scene.end_ms,
                duration_ms=scene.duration_ms,
                score=details.score,
                reason=details.reason,
                key_features=tuple(details.key_features),
            )
        )

    logger.info("Scored %d of %d scenes", len(segments), len(scenes))
    return segments


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _clamp(value: float, minimum: float = 0.0, maximum: float = 1.0) -> float:
    return max(minimum, min(maximum, value))
