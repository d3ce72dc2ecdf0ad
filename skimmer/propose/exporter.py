from __future__ import annotations

import csv
import json
import shlex
from pathlib import Path
from typing import Any, Sequence, assert_never

from skimmer.models import (
    AnalysisResult,
    AudioScore,
    ChapterType,
    FaceSample,
    HighlightReason,
    HighlightSegment,
    MotionLevel,
    MotionScore,
    Scene,
    VideoChapter,
)

_HIGHLIGHT_CSV_FIELDS = [
    "index",
    "start_seconds",
    "end_seconds",
    "duration_seconds",
    "score",
    "confidence",
    "reason",
    "reason_summary",
    "key_features",
]


def reason_label(reason: HighlightReason) -> str:
    """Human-readable wording for a highlight reason."""

    match reason:
        case HighlightReason.HIGH_MOTION:
            return "high motion"
        case HighlightReason.AUDIO_PEAK:
            return "audio peak"
        case HighlightReason.SCENE_CHANGE:
            return "scene change"
        case HighlightReason.FACE_ACTIVITY:
            return "face activity"
        case HighlightReason.VISUAL_INTEREST:
            return "visual interest"
        case HighlightReason.COMBINED:
            return "combined signals"
        case _:
            assert_never(reason)


def chapter_type_label(chapter_type: ChapterType) -> str:
    match chapter_type:
        case ChapterType.INTRODUCTION:
            return "intro"
        case ChapterType.MAIN_CONTENT:
            return "main"
        case ChapterType.KEY_MOMENT:
            return "key moment"
        case ChapterType.TRANSITION:
            return "transition"
        case ChapterType.CONCLUSION:
            return "outro"
        case ChapterType.UNKNOWN:
            return "unknown"
        case _:
            assert_never(chapter_type)


def export_highlights(highlights: Sequence[HighlightSegment], output_path: str | Path) -> Path:
    """Export highlights to JSON (default) or CSV, based on file extension."""

    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    if path.suffix.lower() == ".csv":
        _write_highlights_csv(highlights, path)
    else:
        payload = [_highlight_to_dict(segment) for segment in highlights]
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    return path


def export_chapters(chapters: Sequence[VideoChapter], output_path: str | Path) -> Path:
    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = [
        {**_chapter_to_dict(chapter), "label": chapter_type_label(chapter.chapter_type)}
        for chapter in chapters
    ]
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return path


def export_final_outputs(
    result: AnalysisResult,
    output_dir: str | Path,
    *,
    basename: str = "highlights",
    video_path: str | None = None,
    include_ffmpeg_commands: bool = True,
) -> dict[str, Path]:
    """Write the full result, highlight JSON/CSV, chapters and a review manifest."""

    resolved_output_dir = Path(output_dir)
    resolved_output_dir.mkdir(parents=True, exist_ok=True)

    analysis_path = resolved_output_dir / f"{basename}_analysis.json"
    json_path = resolved_output_dir / f"{basename}.json"
    csv_path = resolved_output_dir / f"{basename}.csv"
    chapters_path = resolved_output_dir / f"{basename}_chapters.json"
    review_path = resolved_output_dir / f"{basename}_review.json"

    analysis_path.write_text(json.dumps(result_to_payload(result), indent=2), encoding="utf-8")
    export_highlights(result.highlights, json_path)
    export_highlights(result.highlights, csv_path)
    export_chapters(result.chapters, chapters_path)

    review_manifest = generate_review_manifest(
        result.highlights,
        video_path=video_path,
        include_ffmpeg_commands=include_ffmpeg_commands,
    )
    review_path.write_text(json.dumps(review_manifest, indent=2, ensure_ascii=False), encoding="utf-8")

    return {
        "analysis": analysis_path,
        "json": json_path,
        "csv": csv_path,
        "chapters": chapters_path,
        "review": review_path,
    }


def generate_review_manifest(
    highlights: Sequence[HighlightSegment],
    *,
    video_path: str | None = None,
    include_ffmpeg_commands: bool = True,
) -> list[dict[str, Any]]:
    """Build a lightweight review manifest with confidence/reason summaries."""

    manifest: list[dict[str, Any]] = []
    for idx, segment in enumerate(highlights, start=1):
        entry: dict[str, Any] = {
            "index": idx,
            "start_seconds": _seconds(segment.start_ms),
            "end_seconds": _seconds(segment.end_ms),
            "duration_seconds": _seconds(segment.duration_ms),
            "score": round(segment.score, 4),
            "confidence": _confidence_label(segment.score),
            "reason": segment.reason.value,
            "reason_summary": _reason_summary(segment),
        }
        if include_ffmpeg_commands and video_path:
            entry["ffmpeg_command"] = build_ffmpeg_clip_command(video_path=video_path, segment=segment, index=idx)
        manifest.append(entry)

    return manifest


def build_ffmpeg_clip_command(
    *,
    video_path: str,
    segment: HighlightSegment,
    index: int,
    output_dir: str = "clips",
) -> str:
    """Generate a copy-paste ffmpeg command that cuts one highlight."""

    output_path = f"{output_dir.rstrip('/')}/highlight_{index:03d}.mp4"

    return (
        "ffmpeg "
        f"-ss {_seconds(max(segment.start_ms, 0)):.3f} "
        f"-i {shlex.quote(video_path)} "
        f"-t {_seconds(segment.duration_ms):.3f} "
        "-c:v libx264 -preset veryfast -crf 18 "
        "-c:a aac -b:a 160k "
        f"{shlex.quote(output_path)}"
    )


def result_to_payload(result: AnalysisResult) -> dict[str, Any]:
    return {
        "scenes": [
            {
                "start_ms": scene.start_ms,
                "end_ms": scene.end_ms,
                "average_brightness": scene.average_brightness,
                "average_motion": scene.average_motion,
                "change_intensity": scene.change_intensity,
            }
            for scene in result.scenes
        ],
        "highlights": [_highlight_to_dict(segment) for segment in result.highlights],
        "chapters": [_chapter_to_dict(chapter) for chapter in result.chapters],
        "audio_scores": [
            {"timestamp_ms": score.timestamp_ms, "volume": score.volume, "is_loud": score.is_loud}
            for score in result.audio_scores
        ],
        "motion_scores": [
            {"timestamp_ms": score.timestamp_ms, "intensity": score.intensity, "level": score.level.value}
            for score in result.motion_scores
        ],
        "face_samples": [
            {"timestamp_ms": sample.timestamp_ms, "has_face": sample.has_face, "face_count": sample.face_count}
            for sample in result.face_samples
        ],
    }


def result_from_payload(payload: dict[str, Any]) -> AnalysisResult:
    if not isinstance(payload, dict):
        raise ValueError("Analysis result must be a JSON object.")

    try:
        return AnalysisResult(
            scenes=tuple(
                Scene(
                    start_ms=int(row["start_ms"]),
                    end_ms=int(row["end_ms"]),
                    average_brightness=float(row.get("average_brightness", 0.5)),
                    average_motion=float(row.get("average_motion", 0.0)),
                    change_intensity=float(row.get("change_intensity", 0.0)),
                )
                for row in payload.get("scenes", [])
            ),
            highlights=tuple(
                HighlightSegment(
                    start_ms=int(row["start_ms"]),
                    end_ms=int(row["end_ms"]),
                    duration_ms=int(row["duration_ms"]),
                    score=float(row["score"]),
                    reason=HighlightReason(row["reason"]),
                    key_features=tuple(str(tag) for tag in row.get("key_features", [])),
                )
                for row in payload.get("highlights", [])
            ),
            chapters=tuple(
                VideoChapter(
                    start_ms=int(row["start_ms"]),
                    end_ms=int(row["end_ms"]),
                    title=str(row["title"]),
                    chapter_type=ChapterType(row["chapter_type"]),
                    confidence=float(row["confidence"]),
                )
                for row in payload.get("chapters", [])
            ),
            audio_scores=tuple(
                AudioScore(
                    timestamp_ms=int(row["timestamp_ms"]),
                    volume=float(row["volume"]),
                    is_loud=bool(row.get("is_loud", False)),
                )
                for row in payload.get("audio_scores", [])
            ),
            motion_scores=tuple(
                MotionScore(
                    timestamp_ms=int(row["timestamp_ms"]),
                    intensity=float(row["intensity"]),
                    level=MotionLevel(row.get("level", MotionLevel.NONE.value)),
                )
                for row in payload.get("motion_scores", [])
            ),
            face_samples=tuple(
                FaceSample(
                    timestamp_ms=int(row["timestamp_ms"]),
                    has_face=bool(row["has_face"]),
                    face_count=int(row.get("face_count", 0)),
                )
                for row in payload.get("face_samples", [])
            ),
        )
    except (KeyError, TypeError) as exc:
        raise ValueError(f"Malformed analysis result: {exc}") from exc


def load_analysis_result(path: str | Path) -> AnalysisResult:
    """Load an analysis result written by ``export_final_outputs``."""

    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    return result_from_payload(payload)


def _highlight_to_dict(segment: HighlightSegment) -> dict[str, Any]:
    return {
        "start_ms": segment.start_ms,
        "end_ms": segment.end_ms,
        "duration_ms": segment.duration_ms,
        "score": segment.score,
        "reason": segment.reason.value,
        "key_features": list(segment.key_features),
    }


def _chapter_to_dict(chapter: VideoChapter) -> dict[str, Any]:
    return {
        "start_ms": chapter.start_ms,
        "end_ms": chapter.end_ms,
        "title": chapter.title,
        "chapter_type": chapter.chapter_type.value,
        "confidence": chapter.confidence,
    }


def _write_highlights_csv(highlights: Sequence[HighlightSegment], path: Path) -> None:
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=_HIGHLIGHT_CSV_FIELDS)
        writer.writeheader()
        for idx, segment in enumerate(highlights, start=1):
            writer.writerow(
                {
                    "index": idx,
                    "start_seconds": f"{_seconds(segment.start_ms):.3f}",
                    "end_seconds": f"{_seconds(segment.end_ms):.3f}",
                    "duration_seconds": f"{_seconds(segment.duration_ms):.3f}",
                    "score": f"{segment.score:.4f}",
                    "confidence": _confidence_label(segment.score),
                    "reason": segment.reason.value,
                    "reason_summary": _reason_summary(segment),
                    "key_features": "|".join(segment.key_features),
                }
            )


def _seconds(value_ms: int) -> float:
    return round(value_ms / 1000.0, 3)


def _confidence_label(score: float) -> str:
    if score >= 0.8:
        return "high"
    if score >= 0.6:
        return "medium"
    return "low"


def _reason_summary(segment: HighlightSegment) -> str:
    if segment.key_features:
        return f"{reason_label(segment.reason)}: {', '.join(segment.key_features)}"
    return reason_label(segment.reason)
