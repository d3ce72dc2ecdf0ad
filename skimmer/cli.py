from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from time import perf_counter
from typing import Any, Callable, TypeVar

import typer

from skimmer.cache import ResultCache, media_fingerprint, media_identity
from skimmer.config import AnalysisConfig, Settings, load_settings
from skimmer.exceptions import SkimmerError
from skimmer.features.faces import HaarFaceDetector, NullFaceDetector
from skimmer.highlights import summarize_highlights
from skimmer.ingest.audio_windows import WavAudioProvider
from skimmer.ingest.extract_audio import extract_first_audio_track
from skimmer.ingest.frames import OpenCVFrameProvider
from skimmer.ingest.probe import FfprobeDurationSource, probe_media
from skimmer.logging_config import configure_logging
from skimmer.models import AnalysisProgress, AnalysisResult
from skimmer.pipeline_coordinator import AnalysisCoordinator
from skimmer.propose.exporter import export_final_outputs, load_analysis_result
from skimmer.retry import Pacing

app = typer.Typer(help="Video highlight and chapter analysis.")
config_app = typer.Typer(help="Configuration commands.")
ingest_app = typer.Typer(help="Ingest commands.")
propose_app = typer.Typer(help="Proposal output and review commands.")
cache_app = typer.Typer(help="Result cache commands.")

app.add_typer(config_app, name="config")
app.add_typer(ingest_app, name="ingest")
app.add_typer(propose_app, name="propose")
app.add_typer(cache_app, name="cache")

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONFIG_OPTION = typer.Option(
    Path("configs/default.yaml"),
    "--config",
    "-c",
    envvar="SKIMMER_CONFIG",
    help="Path to YAML configuration file.",
)


def _run_with_progress(step_index: int, total_steps: int, label: str, work: Callable[[], T]) -> T:
    typer.echo(f"[{step_index}/{total_steps}] {label}...", err=True)
    started_at = perf_counter()
    try:
        result = work()
    except Exception:
        elapsed = perf_counter() - started_at
        typer.echo(f"[{step_index}/{total_steps}] {label} failed after {elapsed:.1f}s", err=True)
        raise
    elapsed = perf_counter() - started_at
    typer.echo(f"[{step_index}/{total_steps}] {label} done in {elapsed:.1f}s", err=True)
    return result


class _ProgressPrinter:
    """Echoes ``[phase] NN%`` lines, skipping repeats of the same percentage."""

    def __init__(self) -> None:
        self._last: tuple[str, int] | None = None

    def __call__(self, progress: AnalysisProgress) -> None:
        current = (progress.phase, int(progress.fraction * 100))
        if current == self._last:
            return
        self._last = current
        typer.echo(f"[{current[0]}] {current[1]:3d}%", err=True)


def _bootstrap(config_path: Path) -> Settings:
    settings = load_settings(config_path)
    configure_logging(settings.logging)
    logger.debug("Loaded runtime settings from %s", config_path)
    return settings


def _fail(exc: Exception) -> typer.Exit:
    logger.error("Command failed: %s", exc)
    typer.echo(f"Error: {exc}", err=True)
    return typer.Exit(code=1)


@config_app.command("show")
def show_config(config_path: Path = CONFIG_OPTION) -> None:
    """Print resolved runtime configuration, including the effective analysis config."""

    settings = _bootstrap(config_path)
    payload = settings.model_dump(mode="json")
    payload["resolved_analysis"] = settings.analysis_config().model_dump(mode="json")
    typer.echo(json.dumps(payload, indent=2))


@ingest_app.command("probe")
def probe(video_path: str, config_path: Path = CONFIG_OPTION) -> None:
    """Run ffprobe on a video and print normalized metadata JSON."""

    settings = _bootstrap(config_path)
    try:
        result = probe_media(video_path, cache_dir=settings.pipeline.cache_dir)
    except (FileNotFoundError, RuntimeError) as exc:
        raise _fail(exc) from exc
    logger.info("Probe completed for %s", video_path)
    typer.echo(json.dumps(result, indent=2))


@ingest_app.command("extract-audio")
def extract_audio(video_path: str, config_path: Path = CONFIG_OPTION) -> None:
    """Extract the first audio track of a video to a mono WAV in the ingest cache."""

    settings = _bootstrap(config_path)
    try:
        result = extract_first_audio_track(
            video_path,
            cache_dir=settings.pipeline.cache_dir,
            target_sample_rate=settings.pipeline.audio_sample_rate,
        )
    except (FileNotFoundError, RuntimeError) as exc:
        raise _fail(exc) from exc
    logger.info("Audio extraction completed for %s", video_path)
    typer.echo(json.dumps(result, indent=2))


@app.command("analyze")
def analyze(
    video_path: str,
    config_path: Path = CONFIG_OPTION,
    preset: str | None = typer.Option(None, "--preset", "-p", help="Named analysis preset (fast, balanced, ...)."),
    sequential: bool = typer.Option(False, "--sequential", help="Run sampling stages one after another."),
    faces: bool | None = typer.Option(None, "--faces/--no-faces", help="Override face detection from config."),
    use_cache: bool = typer.Option(True, help="Reuse a cached result for the same video and config."),
    output_dir: Path | None = typer.Option(None, "--output-dir", "-o", help="Directory for exported outputs."),
    basename: str | None = typer.Option(None, help="Base filename for exported artifacts. Defaults to the video stem."),
) -> None:
    """Analyze a video and export highlights, chapters and a review manifest."""

    settings = _bootstrap(config_path)
    resolved_video_path = Path(video_path).expanduser().resolve()
    if not resolved_video_path.exists():
        raise _fail(FileNotFoundError(f"Video file not found: {resolved_video_path}"))

    total_steps = 4
    try:
        config = _resolve_analysis_config(settings, preset=preset, sequential=sequential, faces=faces)
        duration_source = FfprobeDurationSource(resolved_video_path)
        duration_ms = _run_with_progress(1, total_steps, "Probe media", duration_source.get_duration_ms)

        audio_provider: WavAudioProvider | None = None
        if config.include_audio_analysis:
            extraction = _run_with_progress(
                2,
                total_steps,
                "Extract audio",
                lambda: extract_first_audio_track(
                    resolved_video_path,
                    cache_dir=settings.pipeline.cache_dir,
                    target_sample_rate=settings.pipeline.audio_sample_rate,
                ),
            )
            if extraction["path"] is not None:
                audio_provider = WavAudioProvider(extraction["path"])
            else:
                typer.echo(f"[2/{total_steps}] No audio track; audio scoring skipped.", err=True)
        else:
            typer.echo(f"[2/{total_steps}] Audio analysis disabled.", err=True)

        with OpenCVFrameProvider(resolved_video_path) as frame_provider:
            coordinator = AnalysisCoordinator(
                frame_provider,
                audio_provider,
                duration_source,
                HaarFaceDetector() if config.include_face_detection else NullFaceDetector(),
                pacing=Pacing.from_settings(settings.pacing),
            )
            try:
                result, elapsed_ms, from_cache = _run_with_progress(
                    3,
                    total_steps,
                    "Analyze video",
                    lambda: asyncio.run(
                        _analyze(coordinator, config, settings, resolved_video_path, use_cache=use_cache)
                    ),
                )
            finally:
                coordinator.release()

        summary = summarize_highlights(result, analysis_time_ms=elapsed_ms, config=config)
        exported = _run_with_progress(
            4,
            total_steps,
            "Export outputs",
            lambda: export_final_outputs(
                result,
                output_dir or settings.pipeline.output_dir,
                basename=basename or resolved_video_path.stem,
                video_path=str(resolved_video_path),
            ),
        )
    except (RuntimeError, ValueError, SkimmerError) as exc:
        raise _fail(exc) from exc

    typer.echo(
        json.dumps(
            {
                "status": "ok",
                "video_path": str(resolved_video_path),
                "duration_ms": duration_ms,
                "state": "cached" if from_cache else coordinator.state.value,
                "scene_count": len(result.scenes),
                "highlight_count": len(summary.highlights),
                "highlight_duration_ms": summary.highlight_duration_ms,
                "chapter_count": len(summary.chapters),
                "confidence_score": round(summary.confidence_score, 4),
                "analysis_time_ms": summary.analysis_time_ms,
                "outputs": {key: str(path) for key, path in exported.items()},
            },
            indent=2,
        )
    )


async def _analyze(
    coordinator: AnalysisCoordinator,
    config: AnalysisConfig,
    settings: Settings,
    video_path: Path,
    *,
    use_cache: bool,
) -> tuple[AnalysisResult, int, bool]:
    """Run the coordinator, or reuse a cached result; the flag is True on a cache hit."""

    started_at = perf_counter()
    printer = _ProgressPrinter()
    computed = False

    async def _compute() -> AnalysisResult:
        nonlocal computed
        computed = True
        return await coordinator.analyze(config, printer)

    if use_cache:
        cache = ResultCache(settings.pipeline.cache_dir)
        result = await cache.get_or_compute(
            media_identity(video_path),
            config,
            _compute,
            fingerprint=media_fingerprint(video_path),
        )
    else:
        result = await _compute()

    return result, int(round((perf_counter() - started_at) * 1000)), not computed


def _resolve_analysis_config(
    settings: Settings,
    *,
    preset: str | None,
    sequential: bool,
    faces: bool | None,
) -> AnalysisConfig:
    config = settings.analysis_config(preset)
    overrides: dict[str, Any] = {}
    if sequential:
        overrides["parallel_processing"] = False
    if faces is not None:
        overrides["include_face_detection"] = faces
    if not overrides:
        return config
    return AnalysisConfig.model_validate({**config.model_dump(mode="python"), **overrides})


@propose_app.command("review")
def review_result(
    result_path: Path = typer.Argument(..., help="Path to a saved *_analysis.json result."),
    output_dir: Path = typer.Option(Path("data/outputs"), "--output-dir", "-o", help="Directory for JSON/CSV/review outputs."),
    basename: str = typer.Option("highlights", help="Base filename for exported artifacts."),
    video_path: str | None = typer.Option(None, help="Optional source video path for ffmpeg command generation."),
    include_ffmpeg_commands: bool = typer.Option(True, help="Include ffmpeg clip commands when video_path is provided."),
) -> None:
    """Re-export a saved analysis result with a fresh review manifest."""

    try:
        result = load_analysis_result(result_path)
    except (OSError, ValueError) as exc:
        raise _fail(exc) from exc

    exported = export_final_outputs(
        result,
        output_dir,
        basename=basename,
        video_path=video_path,
        include_ffmpeg_commands=include_ffmpeg_commands,
    )
    typer.echo(json.dumps({key: str(path) for key, path in exported.items()}, indent=2))


@cache_app.command("clear")
def clear_cache(video_path: str, config_path: Path = CONFIG_OPTION) -> None:
    """Drop every cached analysis result for a video."""

    settings = _bootstrap(config_path)
    removed = ResultCache(settings.pipeline.cache_dir).invalidate(media_identity(video_path))
    typer.echo(json.dumps({"video_path": media_identity(video_path), "removed": removed}, indent=2))


if __name__ == "__main__":
    app()
