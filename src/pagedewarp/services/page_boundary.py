"""Curved page boundary, for overlays and inspection.

The flat page rectangle is sampled edge by edge and pushed through the
cubic surface model, giving the outline of the page as it appears in the
photograph.
"""

from __future__ import annotations

import numpy as np

from pagedewarp.constants import PAGE_BOUNDARY_SAMPLES
from pagedewarp.services.projection import project_xy
from pagedewarp.utils.coords import norm2pix
from pagedewarp.utils.metrics import MetricsCollector

EDGE_NAMES = ("top", "right", "bottom", "left")


def page_rectangle(page_dims: np.ndarray) -> np.ndarray:
    """Page-plane corners ``(0,0), (w,0), (w,h), (0,h)``."""
    width, height = float(page_dims[0]), float(page_dims[1])
    return np.array([[0.0, 0.0], [width, 0.0], [width, height], [0.0, height]])


def project_page_boundary(
    corners: np.ndarray,
    params: np.ndarray,
    focal_length: float,
    samples_per_edge: int = PAGE_BOUNDARY_SAMPLES,
    metrics: MetricsCollector | None = None,
) -> dict[str, np.ndarray]:
    """Project the four page edges through the surface model.

    Args:
        corners: Page-plane corners in TL, TR, BR, BL order.
        params: Optimised parameter vector.
        focal_length: Camera focal length.
        samples_per_edge: Segments per edge; each edge gets this many + 1 points.
        metrics: Optional collector for non-finite substitutions.

    Returns:
        ``{"top", "right", "bottom", "left"}`` to (samples_per_edge + 1, 2)
        arrays of normalised image coordinates.
    """
    if samples_per_edge < 1:
        raise ValueError("samples_per_edge must be at least 1")
    pts = np.asarray(corners, dtype=np.float64).reshape(4, 2)
    t = np.linspace(0.0, 1.0, samples_per_edge + 1).reshape(-1, 1)

    edges: dict[str, np.ndarray] = {}
    for i, name in enumerate(EDGE_NAMES):
        start, end = pts[i], pts[(i + 1) % 4]
        edge_points = start + t * (end - start)
        edges[name] = project_xy(edge_points, params, focal_length, metrics)
    return edges


def boundary_to_pixels(
    edges: dict[str, np.ndarray], shape: tuple[int, ...]
) -> dict[str, np.ndarray]:
    """Convert projected edges to integer pixel coordinates of ``shape``."""
    return {name: norm2pix(shape, points) for name, points in edges.items()}
