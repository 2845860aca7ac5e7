"""
models.py – Shared data types for the measurement pipeline.

Frame → Contour → DetectedObject → Measurement, plus the calibration
profile supplied by the caller and the error taxonomy.
"""

import math
from typing import List, Optional, Tuple

import numpy as np

# Denominator guard for every ratio in the pipeline
EPS = 1e-9


class MeasurementError(Exception):
    pass


class InvalidFrame(MeasurementError):
    """Frame buffer does not match its declared dimensions."""


class NoObjectFound(MeasurementError):
    """No contour survived validation."""


def safe_div(num: float, den: float, default: float = 0.0) -> float:
    if not math.isfinite(den) or abs(den) < EPS:
        return default
    out = num / den
    return out if math.isfinite(out) else default


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


# ---------------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------------

class Frame:
    """Row-major RGBA pixel buffer. Read-only for the pipeline."""

    def __init__(self, width: int, height: int, data: bytes):
        self.width = width
        self.height = height
        self.data = data

    @classmethod
    def from_array(cls, rgba: np.ndarray) -> "Frame":
        h, w = rgba.shape[:2]
        return cls(w, h, np.ascontiguousarray(rgba, dtype=np.uint8).tobytes())

    def is_valid(self) -> bool:
        return self.width > 0 and self.height > 0 and len(self.data) == 4 * self.width * self.height


class CalibrationProfile:
    def __init__(
        self,
        pixels_per_mm: float = 10.0,
        is_calibrated: bool = False,
        focal_length_mm: float = 1000.0,
        sensor_width_mm: float = 6.17,
    ):
        if not pixels_per_mm > 0:
            raise ValueError(f"pixels_per_mm must be > 0, got {pixels_per_mm}")
        self.pixels_per_mm = float(pixels_per_mm)
        self.is_calibrated = bool(is_calibrated)
        self.focal_length_mm = float(focal_length_mm)
        self.sensor_width_mm = float(sensor_width_mm)

    @property
    def unit(self) -> str:
        return "mm" if self.is_calibrated else "px"

    def to_dict(self) -> dict:
        return {
            "pixels_per_mm": self.pixels_per_mm,
            "is_calibrated": self.is_calibrated,
            "focal_length_mm": self.focal_length_mm,
            "sensor_width_mm": self.sensor_width_mm,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CalibrationProfile":
        return cls(
            pixels_per_mm=data.get("pixels_per_mm", 10.0),
            is_calibrated=data.get("is_calibrated", False),
            focal_length_mm=data.get("focal_length_mm", 1000.0),
            sensor_width_mm=data.get("sensor_width_mm", 6.17),
        )


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------

class BoundingBox:
    def __init__(self, x: int, y: int, w: int, h: int):
        self.x = x
        self.y = y
        self.w = w
        self.h = h

    @property
    def area(self) -> int:
        return self.w * self.h

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.w / 2, self.y + self.h / 2)

    def iou(self, other: "BoundingBox") -> float:
        """Intersection over union (Jaccard index) of two boxes."""
        left = max(self.x, other.x)
        top = max(self.y, other.y)
        right = min(self.x + self.w, other.x + other.w)
        bottom = min(self.y + self.h, other.y + other.h)
        if left >= right or top >= bottom:
            return 0.0
        inter = (right - left) * (bottom - top)
        union = self.area + other.area - inter
        return safe_div(inter, union)

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "w": self.w, "h": self.h}

    def __repr__(self) -> str:
        return f"BoundingBox(x={self.x}, y={self.y}, w={self.w}, h={self.h})"


class Contour:
    """
    Connected set of edge pixels plus derived metrics.

    area is the bounding-box area (w*h), perimeter is the point count.
    quality_score is filled in by the validator.
    """

    def __init__(
        self,
        points: List[Tuple[int, int]],
        bbox: BoundingBox,
        average_intensity: float = 0.0,
        curvature: float = 0.0,
        smoothness: float = 0.0,
        confidence: float = 0.0,
    ):
        self.points = points
        self.bbox = bbox
        self.area = bbox.area
        self.perimeter = len(points)
        self.average_intensity = average_intensity
        self.curvature = curvature
        self.smoothness = smoothness
        self.confidence = confidence
        self.quality_score = 0.0

    def __repr__(self) -> str:
        return (f"Contour(bbox={self.bbox!r}, points={self.perimeter}, "
                f"conf={self.confidence:.2f}, quality={self.quality_score:.2f})")


class DetectedObject:
    def __init__(
        self,
        contour: Contour,
        quality_score: float,
        composite_score: float,
        object_id: str = "obj_0",
        source: str = "native",
    ):
        self.contour = contour
        self.quality_score = quality_score
        self.composite_score = composite_score
        self.object_id = object_id
        self.source = source

    @property
    def bbox(self) -> BoundingBox:
        return self.contour.bbox

    @property
    def confidence(self) -> float:
        return self.contour.confidence

    def to_dict(self, include_points: bool = False) -> dict:
        out = {
            "id": self.object_id,
            "source": self.source,
            "bbox": self.bbox.to_dict(),
            "area_px": self.contour.area,
            "perimeter_px": self.contour.perimeter,
            "confidence": round(self.confidence, 4),
            "quality_score": round(self.quality_score, 4),
            "composite_score": round(self.composite_score, 4),
        }
        if include_points:
            out["points"] = [[x, y] for x, y in self.contour.points]
        return out


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------

class Uncertainty:
    def __init__(self, measurement: float = 0.0, calibration: float = 0.0,
                 algorithm: float = 0.0, depth: float = 0.0):
        self.measurement = measurement
        self.calibration = calibration
        self.algorithm = algorithm
        self.depth = depth
        self.total = math.sqrt(measurement ** 2 + calibration ** 2 + algorithm ** 2 + depth ** 2)

    def to_dict(self) -> dict:
        return {
            "measurement": round(self.measurement, 4),
            "calibration": round(self.calibration, 4),
            "algorithm": round(self.algorithm, 4),
            "depth": round(self.depth, 4),
            "total": round(self.total, 4),
        }


class Measurement:
    """
    Real-world measurement of one object.

    Created by measure.convert(), then updated in place by the
    precision filter and the uncertainty estimator.
    """

    def __init__(
        self,
        width: float,
        height: float,
        area: float,
        perimeter: float,
        unit: str,
        confidence: float,
        depth: float = 0.0,
        volume: float = 0.0,
        surface_area: float = 0.0,
        circularity: float = 0.0,
        solidity: float = 0.0,
        compactness: float = 0.0,
        pixels_per_mm: float = 0.0,
    ):
        self.width = width
        self.height = height
        self.area = area
        self.perimeter = perimeter
        self.depth = depth
        self.volume = volume
        self.surface_area = surface_area
        self.circularity = circularity
        self.solidity = solidity
        self.compactness = compactness
        self.unit = unit
        self.confidence = confidence
        self.pixels_per_mm = pixels_per_mm
        self.depth_confidence = 0.0
        self.uncertainty: Optional[Uncertainty] = None

    def to_dict(self) -> dict:
        out = {
            "width": round(self.width, 3),
            "height": round(self.height, 3),
            "area": round(self.area, 3),
            "perimeter": round(self.perimeter, 3),
            "depth": round(self.depth, 3),
            "volume": round(self.volume, 3),
            "surface_area": round(self.surface_area, 3),
            "circularity": round(self.circularity, 4),
            "solidity": round(self.solidity, 4),
            "compactness": round(self.compactness, 4),
            "unit": self.unit,
            "confidence": round(self.confidence, 4),
            "depth_confidence": round(self.depth_confidence, 4),
            "pixels_per_mm": self.pixels_per_mm,
        }
        if self.uncertainty is not None:
            out["uncertainty"] = self.uncertainty.to_dict()
        return out
