from __future__ import annotations

from typing import Any

import numpy as np

HISTOGRAM_BINS = 256
ANALYSIS_SIZE = (320, 180)
LOW_RES_ANALYSIS_SIZE = (160, 90)
HISTOGRAM_PIXEL_BUDGET = 5000
LOW_RES_HISTOGRAM_PIXEL_BUDGET = 3000
BRIGHTNESS_PIXEL_BUDGET = 3000
LOW_RES_BRIGHTNESS_PIXEL_BUDGET = 2000
NEUTRAL_BRIGHTNESS = 0.5

_LUMA_WEIGHTS_BGR = np.array([0.114, 0.587, 0.299], dtype=np.float64)


def resize_frame(
    frame: np.ndarray,
    size: tuple[int, int],
    cv2_module: Any | None = None,
) -> np.ndarray:
    """Nearest-neighbour resize to ``(width, height)``; no-op when already that size."""

    target_w, target_h = size
    if frame.shape[1] == target_w and frame.shape[0] == target_h:
        return frame

    if cv2_module is None:
        import cv2 as cv2_module

    return cv2_module.resize(frame, (target_w, target_h), interpolation=cv2_module.INTER_NEAREST)


def luminance(frame: np.ndarray) -> np.ndarray:
    """Integer Rec.601 luma of a BGR (or already single-channel) frame."""

    if frame.ndim == 2:
        return frame.astype(np.int32)
    weighted = frame[..., :3].astype(np.float64) @ _LUMA_WEIGHTS_BGR
    return np.clip(weighted.astype(np.int32), 0, 255)


def luminance_histogram(
    frame: np.ndarray,
    *,
    low_resolution: bool = False,
    cv2_module: Any | None = None,
) -> np.ndarray:
    """Normalized 256-bin luminance histogram over a strided pixel subsample."""

    size = LOW_RES_ANALYSIS_SIZE if low_resolution else ANALYSIS_SIZE
    budget = LOW_RES_HISTOGRAM_PIXEL_BUDGET if low_resolution else HISTOGRAM_PIXEL_BUDGET

    luma = luminance(resize_frame(frame, size, cv2_module)).ravel()
    sampled = luma[:: _sample_step(luma.size, budget)]
    if sampled.size == 0:
        return np.zeros(HISTOGRAM_BINS, dtype=np.float64)

    bins = (sampled * HISTOGRAM_BINS) // 256
    counts = np.bincount(np.clip(bins, 0, HISTOGRAM_BINS - 1), minlength=HISTOGRAM_BINS)
    return counts.astype(np.float64) / float(sampled.size)


def average_brightness(
    frame: np.ndarray,
    *,
    low_resolution: bool = False,
    cv2_module: Any | None = None,
) -> float:
    """Mean channel intensity in [0, 1]."""

    size = LOW_RES_ANALYSIS_SIZE if low_resolution else ANALYSIS_SIZE
    budget = LOW_RES_BRIGHTNESS_PIXEL_BUDGET if low_resolution else BRIGHTNESS_PIXEL_BUDGET

    resized = resize_frame(frame, size, cv2_module)
    pixels = resized.reshape(-1, resized.shape[2])[:, :3] if resized.ndim == 3 else resized.reshape(-1, 1)
    sampled = pixels[:: _sample_step(pixels.shape[0], budget)]
    if sampled.size == 0:
        return NEUTRAL_BRIGHTNESS

    return float(np.clip(sampled.astype(np.float64).mean() / 255.0, 0.0, 1.0))


def histogram_similarity(first: np.ndarray, second: np.ndarray) -> float:
    """Histogram intersection: sum of per-bin minimums, 1.0 for identical distributions."""

    length = min(len(first), len(second))
    if length == 0:
        return 0.0
    return float(np.clip(np.minimum(first[:length], second[:length]).sum(), 0.0, 1.0))


def _sample_step(pixel_count: int, budget: int) -> int:
    return max(1, pixel_count // max(budget, 1))
