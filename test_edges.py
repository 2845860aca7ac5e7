import numpy as np
import pytest

from edges import detect_edges, to_grayscale
from models import Frame, InvalidFrame


def _pixel_frame(r, g, b):
    return Frame(1, 1, bytes([r, g, b, 255]))


@pytest.mark.parametrize("rgb, expected", [
    ((255, 0, 0), 76),
    ((0, 255, 0), 150),
    ((0, 0, 255), 29),
    ((255, 255, 255), 255),
    ((128, 128, 128), 128),
    ((0, 0, 0), 0),
])
def test_grayscale_luma_weights(rgb, expected):
    gray = to_grayscale(_pixel_frame(*rgb))
    assert gray.shape == (1, 1)
    assert gray[0, 0] == expected


def test_grayscale_ignores_alpha():
    a = to_grayscale(Frame(1, 1, bytes([10, 200, 30, 0])))
    b = to_grayscale(Frame(1, 1, bytes([10, 200, 30, 255])))
    assert a[0, 0] == b[0, 0]


def test_grayscale_keeps_dimensions(square_frame):
    gray = to_grayscale(square_frame)
    assert gray.shape == (240, 320)
    assert gray.dtype == np.uint8


@pytest.mark.parametrize("width, height, length", [
    (4, 4, 63),
    (4, 4, 65),
    (4, 4, 0),
    (0, 4, 0),
    (-1, 4, 16),
])
def test_grayscale_rejects_malformed_buffer(width, height, length):
    with pytest.raises(InvalidFrame):
        to_grayscale(Frame(width, height, bytes(length)))


def test_uniform_image_has_no_edges():
    gray = np.full((50, 60), 128, dtype=np.uint8)
    assert not detect_edges(gray).any()


def test_tiny_image_returns_empty_map():
    edges = detect_edges(np.full((2, 2), 255, dtype=np.uint8))
    assert edges.shape == (2, 2)
    assert not edges.any()


def test_square_boundary_responds(square_frame):
    edges = detect_edges(to_grayscale(square_frame))

    # Both sides of the left edge, full strength
    assert edges[120, 109] == 255
    assert edges[120, 110] == 255
    # Outer corner only sees one inside pixel
    assert edges[69, 109] == 108
    # Interior and far background are flat
    assert edges[120, 160] == 0
    assert edges[120, 107] == 0


def test_border_pixels_stay_zero():
    rng = np.random.default_rng(0)
    gray = rng.integers(0, 256, size=(40, 50), dtype=np.uint8)
    edges = detect_edges(gray)
    assert not edges[0, :].any()
    assert not edges[-1, :].any()
    assert not edges[:, 0].any()
    assert not edges[:, -1].any()


def test_weak_gradients_are_suppressed():
    gray = np.zeros((20, 20), dtype=np.uint8)
    gray[:, 10:] = 15  # step of 15 → normalized 18, below threshold
    assert not detect_edges(gray).any()


def test_stride_replicates_blocks(square_frame):
    gray = to_grayscale(square_frame)
    edges = detect_edges(gray, stride=2)
    full = detect_edges(gray)

    assert edges.any()
    for y in range(1, 240 - 1, 2):
        for x in range(1, 320 - 1, 2):
            assert edges[y, x] == full[y, x]
            assert edges[y + 1, x + 1] == edges[y, x]
            assert edges[y, x + 1] == edges[y, x]


@pytest.mark.parametrize("stride", [2, 3, 4])
def test_stride_samples_first_interior_pixel(stride):
    gray = np.zeros((30, 30), dtype=np.uint8)
    gray[:, :2] = 255  # only pixel column 1 sees the step

    edges = detect_edges(gray, stride=stride)
    full = detect_edges(gray)

    assert full[5, 1] > 0
    assert edges[1, 1] == full[1, 1]
    assert edges[1:stride + 1, 1].all()
    assert not edges[0, :].any() and not edges[-1, :].any()
    assert not edges[:, 0].any() and not edges[:, -1].any()


def test_stride_must_be_positive():
    with pytest.raises(ValueError):
        detect_edges(np.zeros((10, 10), dtype=np.uint8), stride=0)
