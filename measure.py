"""
measure.py – Single-object measurement from a raw RGBA frame.

Pipeline (per frame):
  1. Grayscale → Sobel edge map            (edges.py)
  2. Contour tracing                       (contours.py)
  3. Validation + predominant object       (scoring.py)
  4. Pixel → real-world conversion         (this module)
  5. Depth / volume heuristic              (depth.py)
  6. Temporal stabilization                (precision.py)
  7. Uncertainty + final confidence        (uncertainty.py)

At most one object is measured per frame. No object is a valid, empty
result; a malformed frame raises InvalidFrame.
"""

import logging
import math
import time
from typing import Callable, List, Optional, Tuple

import cv2
import numpy as np

from contours import TRACE_STRIDE, trace_contours
from depth import estimate_depth
from edges import EDGE_STRIDE, detect_edges, to_grayscale
from models import (
    EPS,
    CalibrationProfile,
    DetectedObject,
    Frame,
    Measurement,
    NoObjectFound,
    clamp,
    safe_div,
)
from precision import FilterStore, PrecisionFilter
from scoring import fallback_object, select_objects, validate_contours
from uncertainty import estimate_uncertainty

log = logging.getLogger("dimscan.measure")

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

# Confidence multiplier when no calibration is available (values stay in px)
UNCALIBRATED_CONFIDENCE_FACTOR = 0.5

# "perimeter_ratio": P² / (4πA), >= 1, grows with irregularity
# "isoperimetric":   4πA / P², same as circularity
COMPACTNESS_MODE = "perimeter_ratio"

Detector = Callable[[Frame], Optional[DetectedObject]]


# ---------------------------------------------------------------------------
# Main entry points
# ---------------------------------------------------------------------------

def process(
    frame: Frame,
    calibration: CalibrationProfile,
    store: FilterStore,
    timestamp: Optional[float] = None,
    detector: Optional[Detector] = None,
    fallback: bool = False,
) -> Tuple[Optional[DetectedObject], Optional[Measurement]]:
    """
    Detect and measure the predominant object in one frame.

    Args:
        frame: RGBA frame
        calibration: pixel → mm scale and optics
        store: caller-owned filter state, reused across frames
        timestamp: observation time in seconds (defaults to time.monotonic())
        detector: replaces stages 1-3, e.g. cv_detector.detect_object
        fallback: use a centered 80% box when nothing is found

    Returns:
        (DetectedObject, Measurement), or (None, None) if no object

    Raises:
        InvalidFrame if the buffer does not match width/height
    """
    started = time.perf_counter()
    detector = detector or detect_object

    detected = detector(frame)
    if detected is None:
        if not fallback:
            log.info("No object found in %dx%d frame", frame.width, frame.height)
            return None, None
        detected = fallback_object(frame.width, frame.height)
        log.info("No object found, using fallback box %r", detected.bbox)

    measurement = convert(detected, calibration)

    depth = estimate_depth(detected, calibration, measurement.width, measurement.height)
    measurement.depth = depth.depth
    measurement.volume = depth.volume
    measurement.surface_area = depth.surface_area
    measurement.depth_confidence = depth.confidence

    precision = PrecisionFilter(store)
    precision.apply(detected.object_id, measurement, timestamp)

    estimate_uncertainty(
        measurement,
        detected,
        calibration,
        stability=precision.stability(detected.object_id),
        depth_confidence=depth.confidence,
    )

    log.info("Measured %s: %.2f x %.2f %s (depth=%.1f, confidence=%.2f) in %.1f ms",
             detected.object_id, measurement.width, measurement.height, measurement.unit,
             measurement.depth, measurement.confidence, (time.perf_counter() - started) * 1000)
    return detected, measurement


def measure_object(
    frame: Frame,
    calibration: CalibrationProfile,
    store: FilterStore,
    timestamp: Optional[float] = None,
    detector: Optional[Detector] = None,
) -> Tuple[DetectedObject, Measurement]:
    """Like process(), but raises NoObjectFound instead of returning (None, None)."""
    detected, measurement = process(frame, calibration, store, timestamp=timestamp, detector=detector)
    if detected is None:
        raise NoObjectFound(
            "No object detected. Ensure the object contrasts with the background "
            "and fills a reasonable part of the frame."
        )
    return detected, measurement


# ---------------------------------------------------------------------------
# Native detector (stages 1-3)
# ---------------------------------------------------------------------------

def detect_objects(
    frame: Frame,
    edge_stride: int = EDGE_STRIDE,
    trace_stride: int = TRACE_STRIDE,
    max_objects: int = 1,
) -> List[DetectedObject]:
    gray = to_grayscale(frame)
    edges = detect_edges(gray, stride=edge_stride)
    contours = trace_contours(edges, stride=trace_stride)
    valid = validate_contours(contours, frame.width, frame.height)
    return select_objects(valid, frame.width, frame.height, max_objects=max_objects)


def detect_object(
    frame: Frame,
    edge_stride: int = EDGE_STRIDE,
    trace_stride: int = TRACE_STRIDE,
) -> Optional[DetectedObject]:
    objects = detect_objects(frame, edge_stride=edge_stride, trace_stride=trace_stride)
    return objects[0] if objects else None


# ---------------------------------------------------------------------------
# Pixel → real-world conversion
# ---------------------------------------------------------------------------

def convert(
    detected: DetectedObject,
    calibration: CalibrationProfile,
    compactness_mode: str = COMPACTNESS_MODE,
) -> Measurement:
    """
    2-D measurement of a detected object.

    Calibrated: width = width_px / pixels_per_mm, area = area_px / pixels_per_mm².
    Uncalibrated: values stay in px and confidence is halved.
    Depth fields are left at 0 for depth.estimate_depth() to fill in.
    """
    bbox = detected.bbox
    if calibration.is_calibrated:
        scale = calibration.pixels_per_mm
        confidence = detected.confidence
    else:
        scale = 1.0
        confidence = detected.confidence * UNCALIBRATED_CONFIDENCE_FACTOR

    width = bbox.w / scale
    height = bbox.h / scale
    area = detected.contour.area / (scale * scale)
    perimeter = 2 * (width + height)

    circularity, solidity, compactness = shape_descriptors(detected, compactness_mode)

    return Measurement(
        width=width,
        height=height,
        area=area,
        perimeter=perimeter,
        unit=calibration.unit,
        confidence=clamp(confidence, 0.0, 1.0),
        circularity=circularity,
        solidity=solidity,
        compactness=compactness,
        pixels_per_mm=calibration.pixels_per_mm,
    )


def _hull_geometry(points) -> Optional[Tuple[float, float]]:
    """(area, perimeter) of the convex hull in px, None when degenerate."""
    if len(points) < 3:
        return None
    pts = np.asarray(points, dtype=np.int32).reshape(-1, 1, 2)
    hull = cv2.convexHull(pts)
    area = float(cv2.contourArea(hull))
    perimeter = float(cv2.arcLength(hull, True))
    if area < EPS or perimeter < EPS:
        return None
    return area, perimeter


def shape_descriptors(detected: DetectedObject, compactness_mode: str = COMPACTNESS_MODE):
    """
    (circularity, solidity, compactness) from the contour's convex hull.

    Ratios are scale-free, so px values are used directly. Falls back to
    the bounding box when the hull is degenerate.
    """
    bbox = detected.bbox
    hull = _hull_geometry(detected.contour.points)
    if hull is None:
        area, perimeter = float(bbox.area), float(2 * (bbox.w + bbox.h))
    else:
        area, perimeter = hull

    circularity = clamp(safe_div(4 * math.pi * area, perimeter * perimeter), 0.0, 1.0)
    solidity = clamp(safe_div(area, bbox.area), 0.0, 1.0)

    if compactness_mode == "isoperimetric":
        compactness = circularity
    elif compactness_mode == "perimeter_ratio":
        compactness = safe_div(perimeter * perimeter, 4 * math.pi * area)
    else:
        raise ValueError(f"Unknown compactness mode: {compactness_mode!r}")

    return circularity, solidity, compactness
