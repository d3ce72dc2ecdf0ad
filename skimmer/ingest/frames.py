from __future__ import annotations

import threading
from pathlib import Path
from typing import Any

import numpy as np

from skimmer.exceptions import FrameReadError


class OpenCVFrameProvider:
    """Seek-and-read frame access over one ``cv2.VideoCapture``.

    Seek and read happen under a lock so concurrent stages never interleave
    on the single decoder stream.
    """

    def __init__(self, video_path: str | Path, *, cv2_module: Any | None = None) -> None:
        self.video_path = Path(video_path).expanduser().resolve()
        self._cv2 = cv2_module
        self._capture: Any | None = None
        self._lock = threading.Lock()

    def get_frame_at(self, timestamp_ms: int) -> np.ndarray | None:
        with self._lock:
            capture = self._open()
            capture.set(self._cv2.CAP_PROP_POS_MSEC, float(max(timestamp_ms, 0)))
            ok, frame = capture.read()
        if not ok or frame is None:
            return None
        return frame

    def close(self) -> None:
        with self._lock:
            if self._capture is not None:
                self._capture.release()
                self._capture = None

    def __enter__(self) -> OpenCVFrameProvider:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _open(self) -> Any:
        if self._capture is not None:
            return self._capture

        if self._cv2 is None:
            import cv2

            self._cv2 = cv2

        if not self.video_path.exists():
            raise FrameReadError(f"Video file not found: {self.video_path}")
        capture = self._cv2.VideoCapture(str(self.video_path))
        if not capture.isOpened():
            raise FrameReadError(f"Unable to open video for frame access: {self.video_path}")
        self._capture = capture
        return capture
