import pytest

from depth import (
    CLAMPED_DEPTH_CONFIDENCE,
    DEPTH_CONFIDENCE,
    MAX_DEPTH_MM,
    MIN_DEPTH_MM,
    estimate_depth,
    estimate_depth_mm,
    prism_surface_area,
    prism_volume,
)
from models import CalibrationProfile


def test_perspective_estimate(object_factory, calibrated):
    depth, clamped = estimate_depth_mm(object_factory(w=100, h=100), calibrated)
    # 1000 * 6.17 / (100 * 0.1)
    assert depth == pytest.approx(617.0)
    assert not clamped


def test_uses_longer_side(object_factory, calibrated):
    depth, _ = estimate_depth_mm(object_factory(w=50, h=200), calibrated)
    assert depth == pytest.approx(308.5)


def test_small_object_clamps_far(object_factory, calibrated):
    estimate = estimate_depth(object_factory(w=10, h=10), calibrated, 2.5, 2.5)
    assert estimate.depth == MAX_DEPTH_MM
    assert estimate.confidence == CLAMPED_DEPTH_CONFIDENCE


def test_short_focal_length_clamps_near(object_factory):
    cal = CalibrationProfile(pixels_per_mm=4.0, is_calibrated=True, focal_length_mm=10.0)
    depth, clamped = estimate_depth_mm(object_factory(w=100, h=100), cal)
    assert depth == MIN_DEPTH_MM
    assert clamped


def test_volume_and_surface_area(object_factory, calibrated):
    estimate = estimate_depth(object_factory(w=100, h=100), calibrated, 25.0, 25.0)

    assert estimate.confidence == DEPTH_CONFIDENCE
    assert estimate.volume == pytest.approx(25 * 25 * 617)
    assert estimate.surface_area == pytest.approx(2 * (625 + 25 * 617 + 25 * 617))


def test_pixel_mode_scales_depth(object_factory, uncalibrated):
    estimate = estimate_depth(object_factory(w=100, h=100), uncalibrated, 100.0, 100.0)
    assert estimate.depth == pytest.approx(617.0 * 4.0)
    assert estimate.volume == pytest.approx(100 * 100 * 617.0 * 4.0)


def test_prism_helpers():
    assert prism_volume(2, 3, 4) == 24
    assert prism_surface_area(2, 3, 4) == 52
