from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

DEFAULT_CONFIG_PATH = Path("configs/default.yaml")
ENV_PREFIX = "SKIMMER_"
WEIGHT_TOLERANCE = 0.01

_UNIT_INTERVAL_FIELDS = (
    "min_highlight_score",
    "scene_change_threshold",
    "high_motion_threshold",
    "loud_audio_threshold",
    "bright_scene_threshold",
)


class AnalysisConfig(BaseModel):
    """Immutable thresholds, weights and switches for one analysis run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_highlights: int = 5
    target_duration_ms: int = 180_000
    min_segment_duration_ms: int = 3_000
    max_segment_duration_ms: int = 30_000
    min_highlight_score: float = 0.4

    include_audio_analysis: bool = True
    include_face_detection: bool = False
    enable_motion_analysis: bool = True
    enable_scene_detection: bool = True
    generate_chapters: bool = True
    chapter_interval_ms: int = 60_000

    motion_weight: float = 0.3
    audio_weight: float = 0.3
    visual_weight: float = 0.2
    face_weight: float = 0.2

    scene_change_threshold: float = 0.3
    high_motion_threshold: float = 0.6
    loud_audio_threshold: float = 0.5
    bright_scene_threshold: float = 0.7

    quick_mode: bool = False
    adaptive_sampling: bool = False
    parallel_processing: bool = True
    max_analysis_duration_ms: int | None = None
    low_resolution_mode: bool = False

    @model_validator(mode="after")
    def _check_invariants(self) -> AnalysisConfig:
        if self.max_highlights <= 0:
            raise ValueError("max_highlights must be positive")
        if self.target_duration_ms <= 0:
            raise ValueError("target_duration_ms must be positive")
        if self.min_segment_duration_ms > self.max_segment_duration_ms:
            raise ValueError("min_segment_duration_ms must be <= max_segment_duration_ms")
        if self.chapter_interval_ms <= 0:
            raise ValueError("chapter_interval_ms must be positive")
        if self.max_analysis_duration_ms is not None and self.max_analysis_duration_ms <= 0:
            raise ValueError("max_analysis_duration_ms must be positive when set")

        for name in _UNIT_INTERVAL_FIELDS:
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be between 0 and 1 (current: {value})")

        weights = (self.motion_weight, self.audio_weight, self.visual_weight, self.face_weight)
        if any(weight < 0 for weight in weights):
            raise ValueError("Scoring weights must be non-negative")
        total_weight = sum(weights)
        if abs(total_weight - 1.0) > WEIGHT_TOLERANCE:
            raise ValueError(f"Scoring weights must sum to 1.0 (current: {total_weight:.4f})")
        return self

    def analysis_limit_ms(self, duration_ms: int) -> int:
        """Portion of the timeline that sampling engines are allowed to visit."""

        if self.max_analysis_duration_ms is None:
            return duration_ms
        return min(self.max_analysis_duration_ms, duration_ms)

    def cache_key(self) -> str:
        """Canonical JSON used to key cached results."""

        return json.dumps(self.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))

    @classmethod
    def preset(cls, name: str, **overrides: Any) -> AnalysisConfig:
        normalized = name.lower().strip().replace("-", "_")
        if normalized not in PRESETS:
            msg = f"Unknown analysis preset '{name}'. Expected one of: {', '.join(sorted(PRESETS))}."
            raise ValueError(msg)
        return cls.model_validate({**PRESETS[normalized], **overrides})


PRESETS: dict[str, dict[str, Any]] = {
    "fast": {
        "max_highlights": 5,
        "min_highlight_score": 0.4,
        "include_face_detection": False,
        "include_audio_analysis": False,
        "generate_chapters": False,
        "motion_weight": 0.6,
        "audio_weight": 0.0,
        "visual_weight": 0.4,
        "face_weight": 0.0,
        "quick_mode": True,
        "adaptive_sampling": True,
        "low_resolution_mode": True,
    },
    "balanced": {
        "max_highlights": 10,
        "include_audio_analysis": True,
        "generate_chapters": False,
        "motion_weight": 0.4,
        "audio_weight": 0.4,
        "visual_weight": 0.2,
        "face_weight": 0.0,
        "adaptive_sampling": True,
    },
    "high_quality": {
        "max_highlights": 15,
        "min_highlight_score": 0.3,
        "include_face_detection": True,
        "include_audio_analysis": True,
        "generate_chapters": True,
        "adaptive_sampling": False,
    },
    "audio_focused": {
        "max_highlights": 10,
        "min_highlight_score": 0.35,
        "motion_weight": 0.2,
        "audio_weight": 0.6,
        "visual_weight": 0.2,
        "face_weight": 0.0,
        "loud_audio_threshold": 0.45,
        "adaptive_sampling": True,
    },
    "motion_focused": {
        "max_highlights": 12,
        "min_highlight_score": 0.35,
        "include_audio_analysis": False,
        "motion_weight": 0.6,
        "audio_weight": 0.0,
        "visual_weight": 0.3,
        "face_weight": 0.1,
        "high_motion_threshold": 0.5,
        "adaptive_sampling": True,
    },
    "people_focused": {
        "max_highlights": 10,
        "min_highlight_score": 0.35,
        "include_face_detection": True,
        "motion_weight": 0.2,
        "audio_weight": 0.2,
        "visual_weight": 0.1,
        "face_weight": 0.5,
        "adaptive_sampling": True,
    },
    "minimal": {
        "max_highlights": 3,
        "min_highlight_score": 0.3,
        "include_audio_analysis": False,
        "generate_chapters": False,
        "motion_weight": 0.6,
        "audio_weight": 0.0,
        "visual_weight": 0.4,
        "face_weight": 0.0,
        "quick_mode": True,
        "adaptive_sampling": True,
        "low_resolution_mode": True,
    },
    "scene_focused": {
        "max_highlights": 12,
        "min_highlight_score": 0.35,
        "motion_weight": 0.2,
        "audio_weight": 0.2,
        "visual_weight": 0.5,
        "face_weight": 0.1,
        "scene_change_threshold": 0.25,
        "adaptive_sampling": True,
    },
    "stable": {
        "max_highlights": 5,
        "generate_chapters": False,
        "motion_weight": 0.4,
        "audio_weight": 0.4,
        "visual_weight": 0.2,
        "face_weight": 0.0,
        "min_segment_duration_ms": 5_000,
        "max_segment_duration_ms": 30_000,
        "adaptive_sampling": True,
    },
    "short_video": {
        "max_highlights": 3,
        "min_highlight_score": 0.3,
        "target_duration_ms": 60_000,
        "min_segment_duration_ms": 3_000,
        "max_segment_duration_ms": 15_000,
        "generate_chapters": False,
        "motion_weight": 0.4,
        "audio_weight": 0.4,
        "visual_weight": 0.2,
        "face_weight": 0.0,
        "adaptive_sampling": True,
    },
    "long_video": {
        "max_highlights": 15,
        "min_highlight_score": 0.45,
        "target_duration_ms": 300_000,
        "min_segment_duration_ms": 10_000,
        "max_segment_duration_ms": 45_000,
        "generate_chapters": True,
        "chapter_interval_ms": 120_000,
        "motion_weight": 0.3,
        "audio_weight": 0.4,
        "visual_weight": 0.3,
        "face_weight": 0.0,
        "quick_mode": True,
        "adaptive_sampling": True,
        "max_analysis_duration_ms": 600_000,
    },
}


class PipelineSettings(BaseModel):
    output_dir: Path = Path("data/outputs")
    cache_dir: Path = Path("data/cache")
    audio_sample_rate: int = 16_000


class PacingSettings(BaseModel):
    """Deliberate throttling between decoder reads."""

    frame_read_delay_ms: int = 50
    batch_size: int = 5
    batch_pause_ms: int = 200
    failure_backoff_ms: int = 500
    retry_backoff_ms: int = 100


class LoggingSettings(BaseModel):
    level: str = "INFO"
    module_levels: dict[str, str] = Field(default_factory=dict)


class Settings(BaseModel):
    preset: str | None = None
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    analysis: dict[str, Any] = Field(default_factory=dict)
    pacing: PacingSettings = Field(default_factory=PacingSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    def analysis_config(self, preset: str | None = None) -> AnalysisConfig:
        """Resolve the analysis config: named preset first, explicit keys on top."""

        chosen = preset or self.preset
        if chosen:
            return AnalysisConfig.preset(chosen, **self.analysis)
        return AnalysisConfig.model_validate(self.analysis)


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load typed settings from YAML with environment-variable overrides."""

    resolved_path = Path(
        config_path
        or os.getenv(f"{ENV_PREFIX}CONFIG")
        or DEFAULT_CONFIG_PATH
    )
    raw_config: dict[str, Any] = {}
    if resolved_path.exists():
        raw_config = yaml.safe_load(resolved_path.read_text(encoding="utf-8")) or {}
    data = Settings.model_validate(raw_config).model_dump(mode="python")

    analysis_defaults = AnalysisConfig().model_dump(mode="python")
    data["analysis"] = {**analysis_defaults, **data["analysis"]}
    explicit_analysis_keys = set(raw_config.get("analysis") or {})

    for key, raw_value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue

        suffix = key[len(ENV_PREFIX) :]
        if suffix == "CONFIG":
            continue

        path = [part.lower() for part in suffix.split("__")]
        if _apply_override(data, path, raw_value) and path[0] == "analysis" and len(path) == 2:
            explicit_analysis_keys.add(path[1])

    # Only keys the user actually set travel on top of a preset.
    data["analysis"] = {key: value for key, value in data["analysis"].items() if key in explicit_analysis_keys}
    settings = Settings.model_validate(data)
    settings.analysis_config()
    return settings


def _apply_override(data: dict[str, Any], path: list[str], raw_value: str) -> bool:
    current: Any = data
    for segment in path[:-1]:
        if not isinstance(current, dict) or segment not in current:
            return False
        current = current[segment]

    if not isinstance(current, dict):
        return False

    final_key = path[-1]
    if final_key not in current:
        return False

    current[final_key] = _coerce_value(raw_value, current[final_key])
    return True


def _coerce_value(raw_value: str, existing_value: Any) -> Any:
    if isinstance(existing_value, bool):
        return raw_value.lower() in {"1", "true", "yes", "on"}
    if isinstance(existing_value, int) and not isinstance(existing_value, bool):
        return int(raw_value)
    if isinstance(existing_value, float):
        return float(raw_value)
    if isinstance(existing_value, list | dict):
        return json.loads(raw_value)
    if isinstance(existing_value, Path):
        return Path(raw_value)
    if existing_value is None:
        return _coerce_untyped(raw_value)
    return raw_value


def _coerce_untyped(raw_value: str) -> Any:
    try:
        return json.loads(raw_value)
    except json.JSONDecodeError:
        return raw_value
