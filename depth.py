"""
depth.py – Monocular depth / volume heuristic.

Rough perspective estimate from apparent size only; no stereo, no ToF.
Results carry a low confidence so a real depth source can replace this
module without touching the 2-D pipeline.
"""

import logging

from models import CalibrationProfile, DetectedObject, clamp, safe_div

log = logging.getLogger("dimscan.depth")

# Nominal scale used by the perspective formula (mm per pixel)
ASSUMED_MM_PER_PX = 0.1

MIN_DEPTH_MM = 10.0
MAX_DEPTH_MM = 1000.0

DEPTH_CONFIDENCE = 0.3
CLAMPED_DEPTH_CONFIDENCE = 0.15


class DepthEstimate:
    def __init__(self, depth: float, volume: float, surface_area: float, confidence: float):
        self.depth = depth
        self.volume = volume
        self.surface_area = surface_area
        self.confidence = confidence

    def __repr__(self) -> str:
        return (f"DepthEstimate(depth={self.depth:.1f}, volume={self.volume:.1f}, "
                f"surface_area={self.surface_area:.1f}, confidence={self.confidence:.2f})")


def prism_volume(width: float, height: float, depth: float) -> float:
    return width * height * depth


def prism_surface_area(width: float, height: float, depth: float) -> float:
    return 2 * (width * height + width * depth + height * depth)


def estimate_depth_mm(detected: DetectedObject, calibration: CalibrationProfile):
    """Returns (depth_mm, clamped)."""
    apparent_px = max(detected.bbox.w, detected.bbox.h)
    raw = safe_div(
        calibration.focal_length_mm * calibration.sensor_width_mm,
        apparent_px * ASSUMED_MM_PER_PX,
        default=MAX_DEPTH_MM,
    )
    depth = clamp(raw, MIN_DEPTH_MM, MAX_DEPTH_MM)
    return depth, depth != raw


def estimate_depth(
    detected: DetectedObject,
    calibration: CalibrationProfile,
    width: float,
    height: float,
) -> DepthEstimate:
    """
    Depth, volume and surface area in the same unit as width/height.

    Volume assumes a rectangular prism. In "px" mode the depth is scaled
    by the nominal pixels_per_mm so all three dimensions share a unit.
    """
    depth_mm, clamped = estimate_depth_mm(detected, calibration)
    depth = depth_mm if calibration.is_calibrated else depth_mm * calibration.pixels_per_mm

    volume = prism_volume(width, height, depth)
    surface_area = prism_surface_area(width, height, depth)
    confidence = CLAMPED_DEPTH_CONFIDENCE if clamped else DEPTH_CONFIDENCE

    estimate = DepthEstimate(depth, volume, surface_area, confidence)
    log.debug("Depth heuristic: %r (clamped=%s)", estimate, clamped)
    return estimate
