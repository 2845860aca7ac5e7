"""Shared fixtures: synthetic RGBA frames and hand-built contours."""

import logging
import math

import numpy as np
import pytest

from models import BoundingBox, CalibrationProfile, Contour, DetectedObject, Frame
from precision import FilterStore

logging.basicConfig(
    level=logging.DEBUG,
    format="[%(name)s] %(levelname)s: %(message)s",
)

FRAME_W = 320
FRAME_H = 240


def _rgba_canvas(width: int, height: int, background: int) -> np.ndarray:
    img = np.zeros((height, width, 4), dtype=np.uint8)
    img[:, :, :3] = background
    img[:, :, 3] = 255
    return img


@pytest.fixture
def frame_factory():
    """
    Build a Frame with filled squares and disks.

    squares: [(x, y, side)], disks: [(cx, cy, radius)]
    """
    def build(squares=(), disks=(), width=FRAME_W, height=FRAME_H, background=0, fill=255):
        img = _rgba_canvas(width, height, background)
        for x, y, side in squares:
            img[y:y + side, x:x + side, :3] = fill
        if disks:
            yy, xx = np.mgrid[0:height, 0:width]
            for cx, cy, r in disks:
                mask = (xx - cx) ** 2 + (yy - cy) ** 2 <= r * r
                img[mask, :3] = fill
        return Frame.from_array(img)
    return build


@pytest.fixture
def square_frame(frame_factory):
    """One 100x100 white square centered on a black 320x240 frame."""
    return frame_factory(squares=[(110, 70, 100)])


@pytest.fixture
def blank_frame(frame_factory):
    return frame_factory()


@pytest.fixture
def contour_factory():
    """Contour with explicit metrics; points are placeholders along the box outline."""
    def build(x=110, y=70, w=100, h=100, perimeter=None, curvature=0.5, smoothness=0.9,
              confidence=0.6, intensity=204.0):
        n = perimeter if perimeter is not None else 2 * (w + h)
        points = [(x + (i % max(w, 1)), y) for i in range(n)]
        return Contour(points, BoundingBox(x, y, w, h), intensity, curvature, smoothness, confidence)
    return build


def circle_points(cx: float, cy: float, r: float, n: int = 360):
    return [(int(round(cx + r * math.cos(2 * math.pi * i / n))),
             int(round(cy + r * math.sin(2 * math.pi * i / n)))) for i in range(n)]


def rect_outline(x: int, y: int, w: int, h: int):
    pts = [(x + i, y) for i in range(w)] + [(x + w - 1, y + j) for j in range(1, h)]
    pts += [(x + i, y + h - 1) for i in range(w - 2, -1, -1)] + [(x, y + j) for j in range(h - 2, 0, -1)]
    return pts


def detected_from_points(points, confidence: float = 0.8) -> DetectedObject:
    xs = [p[0] for p in points]
    ys = [p[1] for p in points]
    bbox = BoundingBox(min(xs), min(ys), max(xs) - min(xs) + 1, max(ys) - min(ys) + 1)
    contour = Contour(points, bbox, 200.0, 0.5, 0.9, confidence)
    contour.quality_score = 0.7
    return DetectedObject(contour, 0.7, 0.8)


@pytest.fixture
def circle_object():
    return detected_from_points(circle_points(160, 120, 50))


@pytest.fixture
def square_object():
    return detected_from_points(rect_outline(100, 60, 100, 100))


@pytest.fixture
def calibrated():
    return CalibrationProfile(pixels_per_mm=4.0, is_calibrated=True)


@pytest.fixture
def uncalibrated():
    return CalibrationProfile(pixels_per_mm=4.0, is_calibrated=False)


@pytest.fixture
def store():
    return FilterStore()


@pytest.fixture
def elongated_object():
    """200x10 rectangle outline."""
    return detected_from_points(rect_outline(60, 100, 200, 10))


@pytest.fixture
def object_factory():
    def build(x=100, y=60, w=100, h=100, confidence=0.8):
        return detected_from_points(rect_outline(x, y, w, h), confidence=confidence)
    return build
