"""Initial camera pose from the four page corners.

The page rectangle ``(0,0), (w,0), (w,h), (0,h)`` at ``z = 0`` is matched to
the four detected corners:

1. Homography from the object plane to the image (normalised DLT).
2. Decomposition ``K^-1 H = [r1 r2 t]`` with independent normalisation of
   ``r1``/``r2`` and ``t`` scaled by their mean norm; ``r3 = r1 x r2``.
3. Re-orthogonalisation of ``[r1 r2 r3]`` via a Jacobi-based SVD.
4. Conversion to a Rodrigues vector.
5. Levenberg-Marquardt refinement of the six pose parameters against the
   corner reprojection error.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

import numpy as np

from pagedewarp.constants import (
    LM_DAMPING_DOWN,
    LM_DAMPING_UP,
    LM_GRADIENT_STEP,
    LM_INITIAL_DAMPING,
    LM_MAX_DAMPING,
)
from pagedewarp.services.linalg import find_homography, matrix_to_rodrigues, nearest_rotation
from pagedewarp.services.projection import project_points
from pagedewarp.utils.exceptions import DegenerateGeometryError
from pagedewarp.utils.metrics import MetricsCollector

logger = logging.getLogger(__name__)


@dataclass
class LMResult:
    """Outcome of a Levenberg-Marquardt run."""

    x: np.ndarray
    cost: float
    iterations: int
    converged: bool


@dataclass
class PoseEstimate:
    """Camera pose relative to the page plane.

    Attributes:
        rvec: Rodrigues rotation vector
        tvec: Translation vector
        initial_rvec: Rotation from the homography before refinement
        initial_tvec: Translation from the homography before refinement
        reprojection_error: Sum of squared corner residuals after refinement
        iterations: Refinement iterations used
    """

    rvec: np.ndarray
    tvec: np.ndarray
    initial_rvec: np.ndarray
    initial_tvec: np.ndarray
    reprojection_error: float
    iterations: int

    @property
    def params(self) -> np.ndarray:
        return np.concatenate([self.rvec, self.tvec])


# ── Levenberg-Marquardt ──────────────────────────────────────────────────────


def _numerical_jacobian(
    residual_fn: Callable[[np.ndarray], np.ndarray], x: np.ndarray, r0: np.ndarray
) -> np.ndarray:
    """Central-difference Jacobian of ``residual_fn`` at ``x``."""
    J = np.empty((r0.size, x.size))
    for j in range(x.size):
        h = LM_GRADIENT_STEP * max(1.0, abs(x[j]))
        xp = x.copy()
        xm = x.copy()
        xp[j] += h
        xm[j] -= h
        J[:, j] = (residual_fn(xp) - residual_fn(xm)) / (2.0 * h)
    return J


def levenberg_marquardt(
    residual_fn: Callable[[np.ndarray], np.ndarray],
    x0: np.ndarray,
    max_iter: int = 20,
    tol: float = 1e-5,
) -> LMResult:
    """Minimise ``sum(residual_fn(x)**2)`` with damped Gauss-Newton steps.

    Each iteration solves ``(J^T J + lambda I) delta = -J^T r``. A step that
    lowers the cost is accepted and the damping shrinks; otherwise the step
    is discarded and the damping grows.

    Args:
        residual_fn: Maps parameters to the residual vector.
        x0: Starting parameters.
        max_iter: Iteration cap.
        tol: Stop when the cost, the relative cost change or the relative
            step size drops below this value.

    Returns:
        LMResult with the best parameters found.
    """
    x = np.asarray(x0, dtype=np.float64).copy()
    r = residual_fn(x)
    cost = float(r @ r)
    lam = LM_INITIAL_DAMPING
    converged = cost < tol

    iteration = 0
    while iteration < max_iter and not converged:
        iteration += 1
        J = _numerical_jacobian(residual_fn, x, r)
        JtJ = J.T @ J
        g = J.T @ r

        improved = False
        while lam <= LM_MAX_DAMPING:
            A = JtJ + lam * np.eye(x.size)
            try:
                delta = np.linalg.solve(A, -g)
            except np.linalg.LinAlgError:
                lam *= LM_DAMPING_UP
                continue
            x_new = x + delta
            r_new = residual_fn(x_new)
            cost_new = float(r_new @ r_new)
            if np.isfinite(cost_new) and cost_new < cost:
                rel_change = (cost - cost_new) / max(cost, 1e-300)
                step_size = float(np.linalg.norm(delta)) / (float(np.linalg.norm(x)) + tol)
                x, r, cost = x_new, r_new, cost_new
                lam = max(lam * LM_DAMPING_DOWN, 1e-12)
                improved = True
                converged = cost < tol or rel_change < tol or step_size < tol
                break
            lam *= LM_DAMPING_UP

        if not improved:
            # No damping level lowers the cost: at a local minimum
            converged = True

        logger.debug(f"LM iteration {iteration}: cost {cost:.6g}, lambda {lam:.3g}")

    return LMResult(x=x, cost=cost, iterations=iteration, converged=converged)


# ── Planar pose ──────────────────────────────────────────────────────────────


def page_object_points(corners: np.ndarray) -> tuple[np.ndarray, float, float]:
    """Object-plane rectangle matching the TL, TR, BR, BL corner order."""
    corners = np.asarray(corners, dtype=np.float64).reshape(4, 2)
    page_width = float(np.linalg.norm(corners[1] - corners[0]))
    page_height = float(np.linalg.norm(corners[3] - corners[0]))
    object_points = np.array(
        [
            [0.0, 0.0, 0.0],
            [page_width, 0.0, 0.0],
            [page_width, page_height, 0.0],
            [0.0, page_height, 0.0],
        ]
    )
    return object_points, page_width, page_height


def _pose_from_homography(H: np.ndarray, focal_length: float) -> tuple[np.ndarray, np.ndarray]:
    """Decompose ``H = K [r1 r2 t]`` into a Rodrigues vector and translation."""
    k_inv = np.diag([1.0 / focal_length, 1.0 / focal_length, 1.0])
    M = k_inv @ H
    r1, r2, t = M[:, 0], M[:, 1], M[:, 2]

    n1 = float(np.linalg.norm(r1))
    n2 = float(np.linalg.norm(r2))
    if n1 < 1e-12 or n2 < 1e-12:
        raise DegenerateGeometryError("homography columns vanish", details=f"n1={n1:.3g}, n2={n2:.3g}")
    r1 = r1 / n1
    r2 = r2 / n2
    t = t / ((n1 + n2) * 0.5)

    # H is only defined up to sign; keep the page in front of the camera
    if t[2] < 0:
        r1, r2, t = -r1, -r2, -t

    r3 = np.cross(r1, r2)
    R = nearest_rotation(np.column_stack([r1, r2, r3]))
    return matrix_to_rodrigues(R), t


def solve_planar_pose(
    corners: np.ndarray,
    focal_length: float,
    max_iter: int = 20,
    tol: float = 1e-5,
    metrics: MetricsCollector | None = None,
) -> PoseEstimate:
    """Estimate the camera pose from the four page corners.

    Args:
        corners: (4, 2) image corners in TL, TR, BR, BL order.
        focal_length: Pinhole focal length.
        max_iter: Levenberg-Marquardt iteration cap.
        tol: Levenberg-Marquardt tolerance.
        metrics: Optional diagnostic collector.

    Returns:
        PoseEstimate with the refined pose.

    Raises:
        DegenerateGeometryError: if the corners do not span a plane.
    """
    image_points = np.asarray(corners, dtype=np.float64).reshape(4, 2)
    object_points, page_width, page_height = page_object_points(image_points)
    if page_width <= 0 or page_height <= 0:
        raise DegenerateGeometryError(
            "page has no area", details=f"width={page_width:.3g}, height={page_height:.3g}"
        )

    H = find_homography(object_points[:, :2], image_points)
    rvec0, tvec0 = _pose_from_homography(H, focal_length)

    def residuals(params: np.ndarray) -> np.ndarray:
        proj = project_points(object_points, params[:3], params[3:], focal_length)
        return (proj - image_points).ravel()

    result = levenberg_marquardt(residuals, np.concatenate([rvec0, tvec0]), max_iter, tol)
    if not np.isfinite(result.x).all():
        raise DegenerateGeometryError("pose refinement diverged")

    estimate = PoseEstimate(
        rvec=result.x[:3].copy(),
        tvec=result.x[3:].copy(),
        initial_rvec=rvec0,
        initial_tvec=tvec0,
        reprojection_error=result.cost,
        iterations=result.iterations,
    )

    logger.debug(
        f"Pose: rvec={np.round(estimate.rvec, 4)}, tvec={np.round(estimate.tvec, 4)}, "
        f"error={estimate.reprojection_error:.3g} after {estimate.iterations} iterations"
    )
    if metrics is not None:
        metrics.add("pose_initial", {"rvec": rvec0, "tvec": tvec0})
        metrics.add(
            "pose_refined",
            {
                "rvec": estimate.rvec,
                "tvec": estimate.tvec,
                "error": estimate.reprojection_error,
                "iterations": estimate.iterations,
            },
        )
    return estimate
