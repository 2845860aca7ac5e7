"""
scoring.py – Contour plausibility filter and predominant-object selection.

validate_contours() drops geometrically implausible contours and attaches
a quality score; select_objects() ranks the survivors by a size /
confidence / centrality blend and returns the predominant one (or a few
non-overlapping ones when asked).
"""

import logging
import math
from typing import List, Optional

from models import BoundingBox, Contour, DetectedObject, clamp, safe_div

log = logging.getLogger("dimscan.scoring")

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

MIN_AREA_PX = 5000          # absolute floor for the minimum area
MIN_AREA_FRAC = 0.05        # minArea = max(MIN_AREA_PX, frame area * frac)
MAX_AREA_FRAC = 0.8

MAX_ASPECT_DEVIATION = 5.0  # max(w,h)/min(w,h) - 1

MIN_PERIMETER_EFFICIENCY = 0.3
MAX_PERIMETER_EFFICIENCY = 3.0

MIN_CURVATURE = 0.02
MAX_CURVATURE = 3.0
MIN_SMOOTHNESS = 0.15
MIN_CONFIDENCE = 0.25
MIN_QUALITY = 0.3

# Quality score reference scales and weights
QUALITY_AREA_FRAC = 0.1
QUALITY_PERIMETER_REF = 200.0
QUALITY_CURVATURE_REF = 1.0
QUALITY_INTENSITY_REF = 255.0
QUALITY_WEIGHTS = {
    "area": 0.20,
    "perimeter": 0.15,
    "curvature": 0.15,
    "smoothness": 0.20,
    "confidence": 0.20,
    "intensity": 0.10,
}

# Composite (selection) score
SIZE_REFERENCE_PX = 5000.0
COMPOSITE_WEIGHTS = {
    "quality": 0.20,
    "size": 0.40,
    "confidence": 0.25,
    "centrality": 0.15,
}

# Multi-object mode
NMS_IOU_THRESHOLD = 0.3
MAX_OBJECTS = 3

# Fallback box (only when the caller asks for it)
FALLBACK_FRACTION = 0.8
FALLBACK_CONFIDENCE = 0.5


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def aspect_ratio_deviation(bbox: BoundingBox) -> float:
    """0 for a square box, grows with elongation in either direction."""
    long_side = max(bbox.w, bbox.h)
    short_side = min(bbox.w, bbox.h)
    return safe_div(long_side, short_side, default=math.inf) - 1.0


def perimeter_efficiency(contour: Contour) -> float:
    """Point count relative to the bounding rectangle perimeter."""
    return safe_div(contour.perimeter, 2 * (contour.bbox.w + contour.bbox.h))


def quality_score(contour: Contour, frame_w: int, frame_h: int) -> float:
    components = {
        "area": min(1.0, safe_div(contour.area, frame_w * frame_h * QUALITY_AREA_FRAC)),
        "perimeter": min(1.0, contour.perimeter / QUALITY_PERIMETER_REF),
        "curvature": min(1.0, contour.curvature / QUALITY_CURVATURE_REF),
        "smoothness": contour.smoothness,
        "confidence": contour.confidence,
        "intensity": min(1.0, contour.average_intensity / QUALITY_INTENSITY_REF),
    }
    return clamp(sum(QUALITY_WEIGHTS[k] * v for k, v in components.items()), 0.0, 1.0)


def area_limits(frame_w: int, frame_h: int):
    frame_area = frame_w * frame_h
    return max(MIN_AREA_PX, frame_area * MIN_AREA_FRAC), frame_area * MAX_AREA_FRAC


def rejection_reason(contour: Contour, frame_w: int, frame_h: int) -> Optional[str]:
    """Name of the first failed rule, or None if the contour is plausible."""
    min_area, max_area = area_limits(frame_w, frame_h)
    if not (min_area <= contour.area <= max_area):
        return "area"
    if aspect_ratio_deviation(contour.bbox) > MAX_ASPECT_DEVIATION:
        return "aspect"
    if not (MIN_PERIMETER_EFFICIENCY <= perimeter_efficiency(contour) <= MAX_PERIMETER_EFFICIENCY):
        return "perimeter"
    if not (MIN_CURVATURE <= contour.curvature <= MAX_CURVATURE):
        return "curvature"
    if contour.smoothness < MIN_SMOOTHNESS:
        return "smoothness"
    if contour.confidence < MIN_CONFIDENCE:
        return "confidence"
    if contour.quality_score < MIN_QUALITY:
        return "quality"
    return None


def validate_contours(contours: List[Contour], frame_w: int, frame_h: int) -> List[Contour]:
    """Score every contour and keep the plausible ones (input order kept)."""
    valid = []
    rejected = {}
    for contour in contours:
        contour.quality_score = quality_score(contour, frame_w, frame_h)
        reason = rejection_reason(contour, frame_w, frame_h)
        if reason is None:
            valid.append(contour)
        else:
            rejected[reason] = rejected.get(reason, 0) + 1

    log.debug("Validation: %d/%d contours valid, rejected=%s", len(valid), len(contours), rejected)
    return valid


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------

def composite_score(contour: Contour, frame_w: int, frame_h: int) -> float:
    cx, cy = contour.bbox.center
    distance = math.hypot(cx - frame_w / 2, cy - frame_h / 2)
    max_distance = math.hypot(frame_w, frame_h) / 2

    components = {
        "quality": contour.quality_score,
        "size": min(1.0, contour.area / SIZE_REFERENCE_PX),
        "confidence": contour.confidence,
        "centrality": 1.0 - safe_div(distance, max_distance),
    }
    return clamp(sum(COMPOSITE_WEIGHTS[k] * v for k, v in components.items()), 0.0, 1.0)


def select_objects(
    contours: List[Contour],
    frame_w: int,
    frame_h: int,
    max_objects: int = 1,
) -> List[DetectedObject]:
    """
    Rank validated contours and pick the predominant object(s).

    With max_objects == 1 (default) at most one object is returned.
    Larger values enable IoU suppression and are capped at MAX_OBJECTS.
    """
    if not contours:
        return []

    scored = [(composite_score(c, frame_w, frame_h), c) for c in contours]
    # Highest score first, ties go to the larger area
    scored.sort(key=lambda sc: (sc[0], sc[1].area), reverse=True)

    limit = max(1, min(max_objects, MAX_OBJECTS))
    picked = []
    for score, contour in scored:
        if len(picked) >= limit:
            break
        if any(contour.bbox.iou(other.bbox) >= NMS_IOU_THRESHOLD for _, other in picked):
            continue
        picked.append((score, contour))

    objects = [
        DetectedObject(contour, contour.quality_score, score, object_id=f"obj_{i}")
        for i, (score, contour) in enumerate(picked)
    ]
    best = objects[0]
    log.info("Selected %d object(s); best bbox=%r composite=%.3f quality=%.3f",
             len(objects), best.bbox, best.composite_score, best.quality_score)
    return objects


def select_object(contours: List[Contour], frame_w: int, frame_h: int) -> Optional[DetectedObject]:
    objects = select_objects(contours, frame_w, frame_h, max_objects=1)
    return objects[0] if objects else None


def fallback_object(
    frame_w: int,
    frame_h: int,
    fraction: float = FALLBACK_FRACTION,
    confidence: float = FALLBACK_CONFIDENCE,
) -> DetectedObject:
    """Centered box covering `fraction` of each side, for callers that never want an empty result."""
    w = max(1, int(round(frame_w * fraction)))
    h = max(1, int(round(frame_h * fraction)))
    bbox = BoundingBox((frame_w - w) // 2, (frame_h - h) // 2, w, h)
    corners = [(bbox.x, bbox.y), (bbox.x + w - 1, bbox.y),
               (bbox.x + w - 1, bbox.y + h - 1), (bbox.x, bbox.y + h - 1)]
    contour = Contour(corners, bbox, confidence=confidence)
    contour.quality_score = confidence
    return DetectedObject(contour, confidence, confidence, object_id="obj_0", source="fallback")
