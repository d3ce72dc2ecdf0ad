from __future__ import annotations

import numpy as np
import pytest

from skimmer.features.histogram import (
    HISTOGRAM_BINS,
    average_brightness,
    histogram_similarity,
    luminance,
    luminance_histogram,
    resize_frame,
)
from tests.fakes import FakeCv2, solid_frame


def test_histogram_is_normalized() -> None:
    rng = np.random.default_rng(7)
    frame = rng.integers(0, 256, size=(180, 320, 3), dtype=np.uint8)

    histogram = luminance_histogram(frame)

    assert histogram.shape == (HISTOGRAM_BINS,)
    assert histogram.sum() == pytest.approx(1.0)


def test_identical_frames_are_fully_similar() -> None:
    frame = solid_frame(120)

    assert histogram_similarity(luminance_histogram(frame), luminance_histogram(frame)) == pytest.approx(1.0)


def test_disjoint_frames_have_zero_similarity() -> None:
    dark = luminance_histogram(solid_frame(0))
    bright = luminance_histogram(solid_frame(255))

    assert histogram_similarity(dark, bright) == 0.0


def test_similarity_of_empty_histograms_is_zero() -> None:
    assert histogram_similarity(np.array([]), np.array([])) == 0.0


def test_brightness_spans_unit_interval() -> None:
    assert average_brightness(solid_frame(0)) == 0.0
    assert average_brightness(solid_frame(255)) == pytest.approx(1.0)
    assert average_brightness(solid_frame(51)) == pytest.approx(0.2)


def test_luminance_weights_green_most() -> None:
    green = np.zeros((1, 1, 3), dtype=np.uint8)
    green[..., 1] = 255
    blue = np.zeros((1, 1, 3), dtype=np.uint8)
    blue[..., 0] = 255

    assert luminance(green)[0, 0] > luminance(blue)[0, 0]


def test_resize_skips_frames_already_at_target_size(fake_cv2: FakeCv2) -> None:
    frame = solid_frame(10)

    assert resize_frame(frame, (320, 180), fake_cv2) is frame
    assert fake_cv2.resize_calls == 0


def test_low_resolution_histogram_uses_injected_resizer(fake_cv2: FakeCv2) -> None:
    luminance_histogram(solid_frame(10), low_resolution=True, cv2_module=fake_cv2)

    assert fake_cv2.resize_calls == 1
