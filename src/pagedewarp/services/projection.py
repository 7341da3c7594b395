"""Cubic page surface model and its perspective projection.

The page is a cylinder whose height ``z = f(x)`` is the cubic with
``f(0) = f(1) = 0``, ``f'(0) = alpha`` and ``f'(1) = beta``. Page points are
lifted onto that surface, rotated and translated by the camera pose, and
projected through a pinhole camera with focal length ``f`` and principal
point at the origin. No lens distortion.

Projection is pure and stateless. Non-finite results (a point landing on
the camera plane) are replaced by 0 and every coordinate is clamped to
``+/-MAX_PROJECTED_COORD`` so a single bad evaluation cannot poison the
optimiser.
"""

from __future__ import annotations

import logging

import numpy as np

from pagedewarp.constants import (
    CUBIC_IDX,
    CUBIC_SLOPE_LIMIT,
    MAX_PROJECTED_COORD,
    RVEC_IDX,
    TVEC_IDX,
)
from pagedewarp.services.linalg import rodrigues_to_matrix
from pagedewarp.utils.metrics import MetricsCollector

logger = logging.getLogger(__name__)


def camera_matrix(focal_length: float) -> np.ndarray:
    """Intrinsic matrix ``K`` with the principal point at the origin."""
    return np.array(
        [
            [focal_length, 0.0, 0.0],
            [0.0, focal_length, 0.0],
            [0.0, 0.0, 1.0],
        ]
    )


def cubic_coefficients(alpha: float, beta: float) -> tuple[float, float, float]:
    """Cubic ``p0*x^3 + p1*x^2 + p2*x`` for clamped endpoint slopes."""
    alpha = float(np.clip(alpha, -CUBIC_SLOPE_LIMIT, CUBIC_SLOPE_LIMIT))
    beta = float(np.clip(beta, -CUBIC_SLOPE_LIMIT, CUBIC_SLOPE_LIMIT))
    return alpha + beta, -2.0 * alpha - beta, alpha


def sanitize_points(
    points: np.ndarray, metrics: MetricsCollector | None = None
) -> np.ndarray:
    """Replace non-finite coordinates with 0 and clamp to the projection bound.

    Args:
        points: Projected points, modified in place.
        metrics: Optional collector; ``nonfinite_projections`` is incremented
            by the number of substituted coordinates.

    Returns:
        The same array, for chaining.
    """
    bad = ~np.isfinite(points)
    if bad.any():
        n_bad = int(bad.sum())
        points[bad] = 0.0
        logger.debug(f"Replaced {n_bad} non-finite projected coordinates with 0")
        if metrics is not None:
            metrics.increment("nonfinite_projections", n_bad)
    np.clip(points, -MAX_PROJECTED_COORD, MAX_PROJECTED_COORD, out=points)
    return points


def project_points(
    object_points: np.ndarray,
    rvec: np.ndarray,
    tvec: np.ndarray,
    focal_length: float,
) -> np.ndarray:
    """Rigidly transform 3D points and project them through the pinhole camera.

    Returns raw ``(N, 2)`` image coordinates; the caller decides whether to
    sanitise them.
    """
    obj = np.asarray(object_points, dtype=np.float64).reshape(-1, 3)
    R = rodrigues_to_matrix(rvec)
    t = np.asarray(tvec, dtype=np.float64).reshape(3)
    cam = (obj @ R.T + t) @ camera_matrix(focal_length).T
    with np.errstate(divide="ignore", invalid="ignore"):
        return cam[:, :2] / cam[:, 2:3]


def project_xy(
    xy_coords: np.ndarray,
    pvec: np.ndarray,
    focal_length: float,
    metrics: MetricsCollector | None = None,
) -> np.ndarray:
    """Project page coordinates through the current model.

    Args:
        xy_coords: (N, 2) normalised page coordinates.
        pvec: Parameter vector; only the pose and cubic entries are read.
        focal_length: Camera focal length.
        metrics: Optional collector for non-finite substitutions.

    Returns:
        (N, 2) normalised image coordinates.
    """
    xy = np.asarray(xy_coords, dtype=np.float64).reshape(-1, 2)
    p0, p1, p2 = cubic_coefficients(pvec[CUBIC_IDX[0]], pvec[CUBIC_IDX[0] + 1])

    x = xy[:, 0]
    z = ((p0 * x + p1) * x + p2) * x
    objpoints = np.column_stack([xy, z])

    image_points = project_points(
        objpoints,
        pvec[RVEC_IDX[0] : RVEC_IDX[1]],
        pvec[TVEC_IDX[0] : TVEC_IDX[1]],
        focal_length,
    )
    return sanitize_points(image_points, metrics)
