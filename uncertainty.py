"""
uncertainty.py – Error budget and final confidence for a measurement.

Independent error sources are combined by root-sum-of-squares; the
final confidence is the raw confidence discounted by the total error,
the measurement stability and the object geometry.
"""

import logging

from models import CalibrationProfile, DetectedObject, Measurement, Uncertainty, clamp, safe_div

log = logging.getLogger("dimscan.uncertainty")

CALIBRATED_UNCERTAINTY = 0.02
UNCALIBRATED_UNCERTAINTY = 0.6
ALGORITHM_UNCERTAINTY = 0.05

LOW_DEPTH_CONFIDENCE = 0.5
LOW_CONFIDENCE_DEPTH_UNCERTAINTY = 0.15
DEPTH_UNCERTAINTY = 0.05

MIN_MEASUREMENT_UNCERTAINTY = 0.05
INSTABILITY_GAIN = 0.2

# Area (px²) at which the size part of the geometry factor saturates
GEOMETRY_AREA_REF = 10000.0

MIN_CONFIDENCE = 0.1
MAX_CONFIDENCE = 0.99


def geometry_factor(detected: DetectedObject) -> float:
    """Near-square and larger objects score higher, in [0, 1]."""
    w, h = detected.bbox.w, detected.bbox.h
    aspect = safe_div(min(w, h), max(w, h))
    size = min(1.0, detected.contour.area / GEOMETRY_AREA_REF)
    return (aspect + size) / 2


def estimate_uncertainty(
    measurement: Measurement,
    detected: DetectedObject,
    calibration: CalibrationProfile,
    stability: float,
    depth_confidence: float,
) -> Uncertainty:
    """
    Attach the uncertainty breakdown to `measurement` and overwrite its
    confidence with the final, clamped value.
    """
    uncertainty = Uncertainty(
        measurement=max(MIN_MEASUREMENT_UNCERTAINTY, (1.0 - stability) * INSTABILITY_GAIN),
        calibration=CALIBRATED_UNCERTAINTY if calibration.is_calibrated else UNCALIBRATED_UNCERTAINTY,
        algorithm=ALGORITHM_UNCERTAINTY,
        depth=(LOW_CONFIDENCE_DEPTH_UNCERTAINTY if depth_confidence < LOW_DEPTH_CONFIDENCE
               else DEPTH_UNCERTAINTY),
    )

    geometry = geometry_factor(detected)
    raw = measurement.confidence
    final = raw * (1.0 - uncertainty.total) * stability * geometry
    measurement.confidence = clamp(final, MIN_CONFIDENCE, MAX_CONFIDENCE)
    measurement.uncertainty = uncertainty

    log.debug("Uncertainty total=%.3f stability=%.2f geometry=%.2f confidence %.3f → %.3f",
              uncertainty.total, stability, geometry, raw, measurement.confidence)
    return uncertainty
