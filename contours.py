"""
contours.py – Connected-component contour extraction from an edge map.

Global adaptive threshold over the non-zero edge responses, then an
8-connected flood fill (explicit stack) from every unvisited strong
pixel in row-major order. Each pixel belongs to at most one contour.
"""

import logging
import math
from typing import List, Tuple

import numpy as np

from models import BoundingBox, Contour, clamp, safe_div

log = logging.getLogger("dimscan.contours")

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

# threshold = max(TRACE_MIN_FLOOR, mean(non-zero edges) * TRACE_FACTOR)
TRACE_FACTOR = 0.6
TRACE_MIN_FLOOR = 30.0

# Seed scan step (1 = every pixel). Filling is always full resolution.
TRACE_STRIDE = 1

# Smoothness = 1 - mean step length / SMOOTHNESS_STEP_SCALE
SMOOTHNESS_STEP_SCALE = 10.0

# Confidence factor reference scales and weights
CONF_AREA_FRAC = 0.1        # area reference = frame area * 0.1
CONF_PERIMETER_REF = 100.0
CONF_INTENSITY_REF = 255.0
CONF_CURVATURE_REF = 1.0
CONF_WEIGHTS = {
    "area": 0.25,
    "perimeter": 0.20,
    "intensity": 0.25,
    "curvature": 0.15,
    "smoothness": 0.15,
}

# Neighbour visiting order for the flood fill (pop order is the reverse)
_NEIGHBOURS = ((1, 0), (-1, 0), (0, 1), (0, -1), (1, 1), (1, -1), (-1, 1), (-1, -1))


def trace_contours(
    edges: np.ndarray,
    stride: int = TRACE_STRIDE,
    factor: float = TRACE_FACTOR,
    min_floor: float = TRACE_MIN_FLOOR,
) -> List[Contour]:
    """
    Extract contours from an edge map.

    An all-zero map yields an empty list.
    """
    if stride < 1:
        raise ValueError(f"stride must be >= 1, got {stride}")

    nonzero = edges[edges > 0]
    if nonzero.size == 0:
        log.debug("Edge map is empty, no contours")
        return []

    threshold = max(min_floor, float(nonzero.mean()) * factor)
    h, w = edges.shape
    log.debug("Adaptive threshold: mean=%.1f threshold=%.1f", float(nonzero.mean()), threshold)

    strong = edges > threshold
    visited = np.zeros((h, w), dtype=bool)
    contours = []

    # argwhere is row-major, same order as a y/x scan
    for y, x in np.argwhere(strong):
        if stride > 1 and (y % stride or x % stride):
            continue
        if visited[y, x]:
            continue
        contours.append(_flood_fill(edges, strong, visited, int(x), int(y), w, h))

    log.debug("Traced %d contours", len(contours))
    return contours


def _flood_fill(
    edges: np.ndarray,
    strong: np.ndarray,
    visited: np.ndarray,
    start_x: int,
    start_y: int,
    frame_w: int,
    frame_h: int,
) -> Contour:
    points: List[Tuple[int, int]] = []
    stack = [(start_x, start_y)]
    min_x = max_x = start_x
    min_y = max_y = start_y
    total_intensity = 0

    while stack:
        x, y = stack.pop()
        if visited[y, x]:
            continue
        visited[y, x] = True
        points.append((x, y))
        total_intensity += int(edges[y, x])

        if x < min_x:
            min_x = x
        elif x > max_x:
            max_x = x
        if y < min_y:
            min_y = y
        elif y > max_y:
            max_y = y

        for dx, dy in _NEIGHBOURS:
            nx, ny = x + dx, y + dy
            if 0 <= nx < frame_w and 0 <= ny < frame_h and strong[ny, nx] and not visited[ny, nx]:
                stack.append((nx, ny))

    bbox = BoundingBox(min_x, min_y, max_x - min_x + 1, max_y - min_y + 1)
    return build_contour(points, bbox, total_intensity / len(points), frame_w, frame_h)


def build_contour(
    points: List[Tuple[int, int]],
    bbox: BoundingBox,
    average_intensity: float,
    frame_w: int,
    frame_h: int,
) -> Contour:
    """Attach curvature, smoothness and confidence to a point set."""
    curvature = contour_curvature(points)
    smoothness = contour_smoothness(points)
    contour = Contour(points, bbox, average_intensity, curvature, smoothness)
    contour.confidence = contour_confidence(contour, frame_w, frame_h)
    return contour


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

def contour_curvature(points: List[Tuple[int, int]]) -> float:
    """Mean absolute turning angle over consecutive point triples."""
    if len(points) < 3:
        return 0.0

    total = 0.0
    for i in range(1, len(points) - 1):
        (px, py), (cx, cy), (nx, ny) = points[i - 1], points[i], points[i + 1]
        a1 = math.atan2(cy - py, cx - px)
        a2 = math.atan2(ny - cy, nx - cx)
        diff = a2 - a1
        if diff > math.pi:
            diff -= 2 * math.pi
        elif diff <= -math.pi:
            diff += 2 * math.pi
        total += abs(diff)

    return total / (len(points) - 2)


def contour_smoothness(points: List[Tuple[int, int]], step_scale: float = SMOOTHNESS_STEP_SCALE) -> float:
    if len(points) < 2:
        return 0.0

    total = 0.0
    for (px, py), (cx, cy) in zip(points, points[1:]):
        total += math.hypot(cx - px, cy - py)

    mean_step = total / (len(points) - 1)
    return clamp(1.0 - mean_step / step_scale, 0.0, 1.0)


def contour_confidence(contour: Contour, frame_w: int, frame_h: int) -> float:
    factors = {
        "area": min(1.0, safe_div(contour.area, frame_w * frame_h * CONF_AREA_FRAC)),
        "perimeter": min(1.0, contour.perimeter / CONF_PERIMETER_REF),
        "intensity": min(1.0, contour.average_intensity / CONF_INTENSITY_REF),
        "curvature": min(1.0, contour.curvature / CONF_CURVATURE_REF),
        "smoothness": contour.smoothness,
    }
    score = sum(CONF_WEIGHTS[k] * v for k, v in factors.items())
    return clamp(score, 0.0, 1.0)
