"""
edges.py – Luma reduction and Sobel edge map.

  1. RGBA → 8-bit grayscale (BT.601 weights)
  2. 3x3 Sobel gradient magnitude, normalized and adaptively thresholded

Border pixels of the edge map are always 0.
"""

import logging

import numpy as np

from models import Frame, InvalidFrame

log = logging.getLogger("dimscan.edges")

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

# Magnitude → 0..255 scale factor
EDGE_SCALE = 0.3

# Per-pixel threshold: t = EDGE_BASE + m' * EDGE_SLOPE
EDGE_BASE = 20.0
EDGE_SLOPE = 0.2

# 1 = full resolution. N > 1 computes every Nth pixel and copies the
# response over its NxN block (faster, blockier edges).
EDGE_STRIDE = 1


def _round_half_up(values: np.ndarray) -> np.ndarray:
    return np.floor(values + 0.5)


def to_grayscale(frame: Frame) -> np.ndarray:
    """gray = round(0.299 R + 0.587 G + 0.114 B), shape (height, width)."""
    if not frame.is_valid():
        raise InvalidFrame(
            f"Frame buffer is {len(frame.data)} bytes, expected "
            f"{4 * max(frame.width, 0) * max(frame.height, 0)} for {frame.width}x{frame.height} RGBA."
        )

    rgba = np.frombuffer(frame.data, dtype=np.uint8).reshape(frame.height, frame.width, 4)
    rgb = rgba[:, :, :3].astype(np.float64)
    luma = 0.299 * rgb[:, :, 0] + 0.587 * rgb[:, :, 1] + 0.114 * rgb[:, :, 2]
    return np.clip(_round_half_up(luma), 0, 255).astype(np.uint8)


def _sobel_response(gray: np.ndarray, scale: float, base: float, slope: float) -> np.ndarray:
    """Thresholded response for interior pixels, shape (h-2, w-2)."""
    g = gray.astype(np.int32)

    gx = (g[:-2, 2:] + 2 * g[1:-1, 2:] + g[2:, 2:]) - (g[:-2, :-2] + 2 * g[1:-1, :-2] + g[2:, :-2])
    gy = (g[2:, :-2] + 2 * g[2:, 1:-1] + g[2:, 2:]) - (g[:-2, :-2] + 2 * g[:-2, 1:-1] + g[:-2, 2:])

    magnitude = np.sqrt((gx * gx + gy * gy).astype(np.float64))
    normalized = np.minimum(255.0, _round_half_up(magnitude * scale))
    threshold = base + normalized * slope

    return np.where(normalized > threshold, normalized, 0).astype(np.uint8)


def detect_edges(
    gray: np.ndarray,
    stride: int = EDGE_STRIDE,
    scale: float = EDGE_SCALE,
    base: float = EDGE_BASE,
    slope: float = EDGE_SLOPE,
) -> np.ndarray:
    """
    Sobel edge map of a grayscale image.

    Args:
        gray: (height, width) uint8 luma
        stride: sampling step, see EDGE_STRIDE

    Returns:
        (height, width) uint8 map, 0 = no edge
    """
    if stride < 1:
        raise ValueError(f"stride must be >= 1, got {stride}")

    h, w = gray.shape
    edges = np.zeros((h, w), dtype=np.uint8)
    if h < 3 or w < 3:
        return edges

    response = _sobel_response(gray, scale, base, slope)

    if stride == 1:
        edges[1:-1, 1:-1] = response
    else:
        # Samples start at the first interior pixel; blocks stop short of the border
        ys = np.arange(1, h - 1, stride)
        xs = np.arange(1, w - 1, stride)
        # response[y-1, x-1] is the value for pixel (y, x)
        samples = response[np.ix_(ys - 1, xs - 1)]
        block = np.repeat(np.repeat(samples, stride, axis=0), stride, axis=1)
        edges[1:h - 1, 1:w - 1] = block[:h - 2, :w - 2]

    log.debug("Edge map %dx%d (stride=%d): %d edge pixels", w, h, stride, int(np.count_nonzero(edges)))
    return edges
