"""
Detection mask helpers.

The mask is a single-channel uint8 image covering the interior of the frame,
``margin`` pixels in from every edge. White (255) pixels allow a new
detection, black (0) pixels forbid one. Mask pixel ``(r, c)`` corresponds to
image pixel ``(r + margin, c + margin)``.
"""
import math

import numpy as np

ALLOWED = 255
FORBIDDEN = 0


def _to_pixel(value: float) -> int:
    # Round half up
    return int(math.floor(value + 0.5))


def allocate_mask(rows: int, cols: int, margin: int) -> np.ndarray:
    """
    Allocate an all-white mask for a ``rows x cols`` image.

    Args:
        rows, cols: Image dimensions
        margin: Border margin excluded on every side

    Returns:
        uint8 array of shape (rows - 2*margin, cols - 2*margin)
    """
    mask_rows = rows - 2 * margin
    mask_cols = cols - 2 * margin
    if mask_rows <= 0 or mask_cols <= 0:
        raise ValueError(
            f"Image of size {rows}x{cols} leaves no interior with margin {margin}"
        )
    return np.full((mask_rows, mask_cols), ALLOWED, dtype=np.uint8)


def reset_mask(mask: np.ndarray):
    """Make every pixel of the mask white."""
    mask[...] = ALLOWED


def mask_out(mask: np.ndarray, x: float, y: float, size: int = 15, margin: int = 0):
    """
    Blacken the ``size x size`` box centered at image pixel ``(x, y)``.

    The box is clipped to the mask bounds.
    """
    half = size // 2
    col = _to_pixel(x) - margin
    row = _to_pixel(y) - margin

    rows, cols = mask.shape[:2]
    r0 = max(row - half, 0)
    r1 = min(row + half + 1, rows)
    c0 = max(col - half, 0)
    c1 = min(col + half + 1, cols)
    if r0 < r1 and c0 < c1:
        mask[r0:r1, c0:c1] = FORBIDDEN


def mask_valid(mask: np.ndarray, x: float, y: float, margin: int = 0) -> bool:
    """
    Check whether a new detection is allowed at image pixel ``(x, y)``.

    True iff the pixel is at least ``margin`` pixels away from every image
    edge and white in the mask.
    """
    col = _to_pixel(x) - margin
    row = _to_pixel(y) - margin

    rows, cols = mask.shape[:2]
    if row < 0 or row >= rows or col < 0 or col >= cols:
        return False

    return bool(mask[row, col] == ALLOWED)
