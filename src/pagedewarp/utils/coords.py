"""Pixel <-> normalised coordinate conventions.

Pixel ``(px, py)`` maps to normalised ``((px - w/2) * s, (py - h/2) * s)``
with ``s = 2 / max(w, h)``. Every stage and every external caller shares
this convention.
"""

from __future__ import annotations

import numpy as np


def _shape_hw(shape: tuple[int, ...]) -> tuple[int, int]:
    return int(shape[0]), int(shape[1])


def pix2norm(shape: tuple[int, ...], pts: np.ndarray) -> np.ndarray:
    """Convert pixel coordinates to normalised coordinates.

    Args:
        shape: Image shape, ``(height, width, ...)``.
        pts: Array of points whose last axis is ``(x, y)``.

    Returns:
        Float array with the same shape as ``pts``.
    """
    height, width = _shape_hw(shape)
    scl = 2.0 / max(height, width)
    offset = np.array([width, height], dtype=np.float64) * 0.5
    return (np.asarray(pts, dtype=np.float64) - offset) * scl


def norm2pix(shape: tuple[int, ...], pts: np.ndarray, as_integer: bool = True) -> np.ndarray:
    """Convert normalised coordinates back to pixels.

    Args:
        shape: Image shape, ``(height, width, ...)``.
        pts: Array of points whose last axis is ``(x, y)``.
        as_integer: Round half-up to integer pixel positions.

    Returns:
        Array with the same shape as ``pts``.
    """
    height, width = _shape_hw(shape)
    scl = max(height, width) * 0.5
    offset = np.array([width, height], dtype=np.float64) * 0.5
    rval = np.asarray(pts, dtype=np.float64) * scl + offset
    if as_integer:
        return np.floor(rval + 0.5).astype(int)
    return rval


def round_nearest_multiple(i: float, factor: int) -> int:
    """Round ``i`` to an integer, then up to the next multiple of ``factor``."""
    i = int(round(i))
    rem = i % factor
    return i + factor - rem if rem else i
