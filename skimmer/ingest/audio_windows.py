from __future__ import annotations

import wave
from pathlib import Path

import numpy as np

from skimmer.exceptions import AudioReadError
from skimmer.models import AudioWindow

DEFAULT_WINDOW_MS = 100
# PCM has no real sync points; reads snap to this grid instead.
DEFAULT_SYNC_INTERVAL_MS = 20


class WavAudioProvider:
    """Serves fixed-length windows of a mono 16-bit PCM WAV file."""

    def __init__(
        self,
        path: str | Path,
        *,
        window_ms: int = DEFAULT_WINDOW_MS,
        sync_interval_ms: int = DEFAULT_SYNC_INTERVAL_MS,
    ) -> None:
        self.path = Path(path)
        self.window_ms = window_ms
        self.sync_interval_ms = max(sync_interval_ms, 1)
        self._samples: np.ndarray | None = None
        self._sample_rate = 0

    @property
    def sample_rate(self) -> int:
        self._load()
        return self._sample_rate

    def read_window(self, timestamp_ms: int) -> AudioWindow | None:
        samples = self._load()
        sync_ms = (max(timestamp_ms, 0) // self.sync_interval_ms) * self.sync_interval_ms
        start = sync_ms * self._sample_rate // 1000
        if start >= len(samples):
            return None

        count = max(self.window_ms * self._sample_rate // 1000, 1)
        return AudioWindow(timestamp_ms=sync_ms, duration_ms=self.window_ms, samples=samples[start : start + count])

    def _load(self) -> np.ndarray:
        if self._samples is not None:
            return self._samples

        try:
            with wave.open(str(self.path), "rb") as wav_file:
                channels = wav_file.getnchannels()
                sample_rate = int(wav_file.getframerate())
                sample_width = wav_file.getsampwidth()
                frames = wav_file.readframes(wav_file.getnframes())
        except (OSError, wave.Error) as exc:
            raise AudioReadError(f"Unable to read WAV file {self.path}: {exc}") from exc

        if sample_width != 2:
            raise AudioReadError("Only 16-bit PCM WAV input is supported for audio scoring.")

        samples = np.frombuffer(frames, dtype=np.int16)
        if channels > 1:
            samples = samples.reshape(-1, channels).mean(axis=1).astype(np.int16)

        self._samples = samples
        self._sample_rate = sample_rate
        return samples
