from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Any

from skimmer.ingest.probe import probe_media


def extract_first_audio_track(
    video_path: str | Path,
    cache_dir: str | Path = "data/cache",
    target_sample_rate: int = 16_000,
) -> dict[str, Any]:
    """Decode the first audio stream to mono 16-bit PCM WAV, reusing an earlier extraction."""

    metadata = probe_media(video_path, cache_dir=cache_dir)
    stream_index = metadata["first_audio_stream_index"]
    if stream_index is None:
        return {
            "status": "no_audio",
            "video_path": metadata["video_path"],
            "path": None,
            "cached": False,
        }

    output_path = Path(metadata["cache_dir"]) / f"audio_{stream_index}_{target_sample_rate}hz.wav"
    was_cached = output_path.exists()
    if not was_cached:
        _run_ffmpeg_extract(
            source_path=Path(metadata["video_path"]),
            stream_index=stream_index,
            output_path=output_path,
            target_sample_rate=target_sample_rate,
        )

    return {
        "status": "ok",
        "video_path": metadata["video_path"],
        "stream_index": stream_index,
        "sample_rate": target_sample_rate,
        "path": str(output_path),
        "cached": was_cached,
    }


def _run_ffmpeg_extract(
    source_path: Path,
    stream_index: int,
    output_path: Path,
    target_sample_rate: int,
) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    command = [
        "ffmpeg",
        "-v",
        "error",
        "-y",
        "-i",
        str(source_path),
        "-map",
        f"0:{stream_index}",
        "-vn",
        "-ac",
        "1",
        "-ar",
        str(target_sample_rate),
        "-c:a",
        "pcm_s16le",
        str(output_path),
    ]
    try:
        subprocess.run(command, check=True, capture_output=True, text=True)
    except FileNotFoundError as exc:
        raise RuntimeError(
            "ffmpeg executable was not found. Install FFmpeg so ffmpeg is available on PATH."
        ) from exc
    except subprocess.CalledProcessError as exc:
        output_path.unlink(missing_ok=True)
        stderr = (exc.stderr or "").strip()
        details = f" ffmpeg stderr: {stderr}" if stderr else ""
        raise RuntimeError(f"ffmpeg failed to extract audio from {source_path}.{details}") from exc
