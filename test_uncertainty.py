import math

import pytest

import measure
from models import Uncertainty
from uncertainty import estimate_uncertainty, geometry_factor


def test_total_is_root_sum_of_squares():
    u = Uncertainty(measurement=0.05, calibration=0.02, algorithm=0.05, depth=0.05)
    assert u.total == pytest.approx(math.sqrt(0.0079))


def test_geometry_factor(square_object, elongated_object):
    assert geometry_factor(square_object) == pytest.approx(1.0)
    # aspect 10/200, size 2000/10000
    assert geometry_factor(elongated_object) == pytest.approx((0.05 + 0.2) / 2)


def test_calibrated_breakdown(square_object, calibrated):
    m = measure.convert(square_object, calibrated)

    u = estimate_uncertainty(m, square_object, calibrated, stability=1.0, depth_confidence=0.3)

    assert m.uncertainty is u
    assert u.measurement == pytest.approx(0.05)
    assert u.calibration == pytest.approx(0.02)
    assert u.algorithm == pytest.approx(0.05)
    assert u.depth == pytest.approx(0.15)
    assert m.confidence == pytest.approx(0.8 * (1 - math.sqrt(0.0279)))


def test_calibration_raises_confidence(square_object, calibrated, uncalibrated):
    with_cal = measure.convert(square_object, calibrated)
    without = measure.convert(square_object, uncalibrated)
    estimate_uncertainty(with_cal, square_object, calibrated, stability=0.9, depth_confidence=0.3)
    estimate_uncertainty(without, square_object, uncalibrated, stability=0.9, depth_confidence=0.3)

    assert without.uncertainty.calibration == pytest.approx(0.6)
    assert with_cal.confidence > without.confidence


def test_instability_grows_measurement_term(square_object, calibrated):
    m = measure.convert(square_object, calibrated)
    u = estimate_uncertainty(m, square_object, calibrated, stability=0.25, depth_confidence=0.3)
    assert u.measurement == pytest.approx(0.15)


def test_confident_depth_lowers_depth_term(square_object, calibrated):
    m = measure.convert(square_object, calibrated)
    u = estimate_uncertainty(m, square_object, calibrated, stability=1.0, depth_confidence=0.6)
    assert u.depth == pytest.approx(0.05)


def test_confidence_floor(square_object, calibrated):
    m = measure.convert(square_object, calibrated)
    estimate_uncertainty(m, square_object, calibrated, stability=0.0, depth_confidence=0.3)
    assert m.confidence == 0.1


@pytest.mark.parametrize("stability", [0.0, 0.3, 0.7, 1.0])
def test_confidence_always_in_range(object_factory, calibrated, stability):
    obj = object_factory(confidence=1.0)
    m = measure.convert(obj, calibrated)
    estimate_uncertainty(m, obj, calibrated, stability=stability, depth_confidence=0.9)
    assert 0.1 <= m.confidence <= 0.99
