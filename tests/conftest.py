import cv2
import numpy as np
import pytest


def _make_texture(rows=240, cols=320, seed=0, block=8):
    """Blocky random texture with enough corners for FAST and ORB."""
    rng = np.random.default_rng(seed)
    small = rng.integers(0, 256, size=(rows // block + 1, cols // block + 1)).astype(np.uint8)
    image = cv2.resize(
        small, (small.shape[1] * block, small.shape[0] * block), interpolation=cv2.INTER_NEAREST
    )[:rows, :cols]
    return cv2.GaussianBlur(image, (5, 5), 1.0)


def _translate(image, dx, dy):
    rows, cols = image.shape[:2]
    M = np.float32([[1, 0, dx], [0, 1, dy]])
    return cv2.warpAffine(image, M, (cols, rows), borderMode=cv2.BORDER_REFLECT)


@pytest.fixture
def make_texture():
    return _make_texture


@pytest.fixture
def translate():
    return _translate


@pytest.fixture
def texture():
    return _make_texture()
