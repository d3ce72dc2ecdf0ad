from __future__ import annotations

import json
import subprocess
from pathlib import Path
from typing import Any

SHARED_LIBRARY_ERROR = "error while loading shared libraries"


def probe_media(video_path: str | Path, cache_dir: str | Path | None = None) -> dict[str, Any]:
    """Probe media metadata via ffprobe; persist it under ``cache_dir`` when given."""

    source_path = Path(video_path).expanduser().resolve()
    if not source_path.exists():
        raise FileNotFoundError(f"Video file not found: {source_path}")

    metadata = _normalize_probe_payload(source_path, _run_ffprobe(source_path))
    if cache_dir is None:
        return metadata

    ingest_dir = Path(cache_dir).expanduser().resolve() / "ingest" / source_path.stem
    ingest_dir.mkdir(parents=True, exist_ok=True)
    metadata_path = ingest_dir / "metadata.json"
    metadata_path.write_text(json.dumps(metadata, indent=2, sort_keys=True), encoding="utf-8")

    return {
        **metadata,
        "cache_dir": str(ingest_dir),
        "metadata_path": str(metadata_path),
    }


class FfprobeDurationSource:
    """Media duration from ffprobe, resolved once and then memoized."""

    def __init__(self, video_path: str | Path) -> None:
        self.video_path = Path(video_path)
        self._duration_ms: int | None = None

    def get_duration_ms(self) -> int:
        if self._duration_ms is None:
            metadata = probe_media(self.video_path)
            duration_ms = metadata["duration_ms"]
            if duration_ms is None:
                raise RuntimeError(f"ffprobe reported no duration for {self.video_path}.")
            self._duration_ms = duration_ms
        return self._duration_ms


def _run_ffprobe(video_path: Path) -> dict[str, Any]:
    command = [
        "ffprobe",
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        str(video_path),
    ]

    try:
        completed = subprocess.run(command, check=True, capture_output=True, text=True)
    except FileNotFoundError as exc:
        raise RuntimeError(
            "ffprobe executable was not found. Install FFmpeg so ffprobe is available on PATH."
        ) from exc
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        if SHARED_LIBRARY_ERROR in stderr:
            raise RuntimeError(
                "ffprobe is installed but failed to start because required shared libraries are missing. "
                f"Reinstall FFmpeg or fix its library path. ffprobe stderr: {stderr}"
            ) from exc
        details = f" ffprobe stderr: {stderr}" if stderr else ""
        raise RuntimeError(f"ffprobe failed while probing media file: {video_path}.{details}") from exc

    try:
        return json.loads(completed.stdout)
    except json.JSONDecodeError as exc:
        raise RuntimeError("ffprobe returned invalid JSON output.") from exc


def _normalize_probe_payload(video_path: Path, payload: dict[str, Any]) -> dict[str, Any]:
    format_entry = payload.get("format", {})
    streams = [_normalize_stream(stream) for stream in payload.get("streams", [])]
    audio_streams = [stream for stream in streams if stream["codec_type"] == "audio"]
    video_streams = [stream for stream in streams if stream["codec_type"] == "video"]

    duration_seconds = _to_float(format_entry.get("duration"))
    if duration_seconds is None:
        # Some containers only carry per-stream durations.
        stream_durations = [s["duration_seconds"] for s in streams if s["duration_seconds"] is not None]
        duration_seconds = max(stream_durations) if stream_durations else None

    return {
        "status": "ok",
        "video_path": str(video_path),
        "format_name": format_entry.get("format_name"),
        "duration_seconds": duration_seconds,
        "duration_ms": int(round(duration_seconds * 1000)) if duration_seconds is not None else None,
        "size_bytes": _to_int(format_entry.get("size")),
        "streams": streams,
        "first_audio_stream_index": audio_streams[0]["index"] if audio_streams else None,
        "audio_stream_count": len(audio_streams),
        "video_stream_count": len(video_streams),
    }


def _normalize_stream(stream: dict[str, Any]) -> dict[str, Any]:
    return {
        "index": stream.get("index"),
        "codec_type": stream.get("codec_type"),
        "codec_name": stream.get("codec_name"),
        "sample_rate": _to_int(stream.get("sample_rate")),
        "channels": _to_int(stream.get("channels")),
        "width": _to_int(stream.get("width")),
        "height": _to_int(stream.get("height")),
        "avg_frame_rate": stream.get("avg_frame_rate"),
        "duration_seconds": _to_float(stream.get("duration")),
    }


def _to_float(raw_value: Any) -> float | None:
    if raw_value in (None, "N/A", ""):
        return None
    return float(raw_value)


def _to_int(raw_value: Any) -> int | None:
    if raw_value in (None, "N/A", ""):
        return None
    return int(raw_value)
