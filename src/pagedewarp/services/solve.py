"""Initial parameter vector and page dimension estimation."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from pagedewarp.config import DewarpConfig
from pagedewarp.constants import PAGE_DIMS_MAX_ITER
from pagedewarp.services.keypoints import parameter_count
from pagedewarp.services.optimise import OptimizerStrategy, get_strategy
from pagedewarp.services.page_axes import PageModel, SpanCoordinates
from pagedewarp.services.pose import PoseEstimate, solve_planar_pose
from pagedewarp.services.projection import project_xy
from pagedewarp.utils.metrics import MetricsCollector

logger = logging.getLogger(__name__)


@dataclass
class DefaultParams:
    """Starting point of the global optimisation.

    Attributes:
        page_dims: Rough (width, height) from the corner distances
        span_counts: Number of keypoints per span
        params: Parameter vector ``[rvec, tvec, alpha, beta, ys, xs]``
        pose: Pose estimate that seeded ``rvec``/``tvec``
    """

    page_dims: np.ndarray
    span_counts: list[int]
    params: np.ndarray
    pose: PoseEstimate


def get_default_params(
    page: PageModel,
    coords: SpanCoordinates,
    config: DewarpConfig,
    metrics: MetricsCollector | None = None,
) -> DefaultParams:
    """Assemble the initial parameter vector.

    Pose from the four page corners, zero curvature, and the axis-projected
    keypoint coordinates.
    """
    pose = solve_planar_pose(
        page.corners,
        config.focal_length,
        max_iter=config.pose_max_iter,
        tol=config.pose_tol,
        metrics=metrics,
    )

    span_counts = coords.span_counts
    params = np.concatenate(
        [
            pose.rvec,
            pose.tvec,
            [0.0, 0.0],
            coords.ycoords,
            *coords.xcoords,
        ]
    ).astype(np.float64)

    expected = parameter_count(span_counts)
    if params.size != expected:
        raise ValueError(f"Parameter vector has {params.size} entries, expected {expected}")

    return DefaultParams(
        page_dims=np.asarray(page.page_dims, dtype=np.float64).copy(),
        span_counts=span_counts,
        params=params,
        pose=pose,
    )


def optimise_page_dims(
    corners: np.ndarray,
    rough_dims: np.ndarray,
    params: np.ndarray,
    config: DewarpConfig,
    strategy: OptimizerStrategy | None = None,
) -> np.ndarray:
    """Fit the page size so that its far corner lands on the bottom-right corner.

    Falls back to ``rough_dims`` when the fit produces a negative dimension.
    """
    dst_br = np.asarray(corners, dtype=np.float64)[2]
    strategy = strategy or get_strategy(config.optim_method)

    def objective(dims: np.ndarray) -> float:
        proj = project_xy(np.asarray(dims).reshape(1, 2), params, config.focal_length)
        return float(np.sum((dst_br - proj[0]) ** 2))

    result = strategy.minimize(
        objective, np.asarray(rough_dims, dtype=np.float64), PAGE_DIMS_MAX_ITER, config.optim_tol
    )
    dims = result.x
    logger.info(f"Got page dims {dims[0]:.4f} x {dims[1]:.4f}")

    if dims[0] <= 0 or dims[1] <= 0:
        logger.warning("Got a non-positive page dimension, falling back to rough estimate")
        return np.asarray(rough_dims, dtype=np.float64).copy()
    return dims
