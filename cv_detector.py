"""
cv_detector.py – OpenCV replacement for the native edge/contour stages.

Canny edges + external contours instead of Sobel + flood fill. Contours
are scored and selected by the same rules as the native path, so callers
get the same DetectedObject either way.
"""

import logging
from typing import List, Optional

import cv2
import numpy as np

from contours import build_contour
from edges import EDGE_SCALE, to_grayscale
from models import BoundingBox, Contour, DetectedObject, Frame
from scoring import select_objects, validate_contours

log = logging.getLogger("dimscan.cv")

BLUR_KERNEL = (5, 5)
CANNY_LOW = 50
CANNY_HIGH = 150

# Closes small gaps in the Canny outline before contour extraction
CLOSE_KERNEL = (3, 3)


def gradient_strength(blur: np.ndarray) -> np.ndarray:
    """Sobel magnitude on the same 0..255 scale as edges.detect_edges."""
    gx = cv2.Sobel(blur, cv2.CV_32F, 1, 0, ksize=3)
    gy = cv2.Sobel(blur, cv2.CV_32F, 0, 1, ksize=3)
    return np.minimum(255.0, cv2.magnitude(gx, gy) * EDGE_SCALE)


def find_contours(gray: np.ndarray) -> List[Contour]:
    h, w = gray.shape
    blur = cv2.GaussianBlur(gray, BLUR_KERNEL, 0)
    strength = gradient_strength(blur)
    edges = cv2.Canny(blur, CANNY_LOW, CANNY_HIGH)

    kernel = cv2.getStructuringElement(cv2.MORPH_RECT, CLOSE_KERNEL)
    edges = cv2.morphologyEx(edges, cv2.MORPH_CLOSE, kernel)

    raw, _ = cv2.findContours(edges, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_NONE)
    log.debug("Canny: %d edge pixels, %d external contours", cv2.countNonZero(edges), len(raw))

    contours = []
    for c in raw:
        points = [(int(p[0][0]), int(p[0][1])) for p in c]
        if len(points) < 3:
            continue
        x, y, bw, bh = cv2.boundingRect(c)
        # Mean gradient strength along the outline
        intensity = float(strength[c[:, 0, 1], c[:, 0, 0]].mean())
        contours.append(build_contour(points, BoundingBox(x, y, bw, bh), intensity, w, h))
    return contours


def detect_objects(frame: Frame, max_objects: int = 1) -> List[DetectedObject]:
    gray = to_grayscale(frame)
    contours = find_contours(gray)
    valid = validate_contours(contours, frame.width, frame.height)
    objects = select_objects(valid, frame.width, frame.height, max_objects=max_objects)
    for obj in objects:
        obj.source = "opencv"
    return objects


def detect_object(frame: Frame) -> Optional[DetectedObject]:
    objects = detect_objects(frame)
    return objects[0] if objects else None
