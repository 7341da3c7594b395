"""Page axes, corners and rotated-frame keypoint coordinates.

The dominant text direction gives the page's horizontal axis ``x_dir``;
``y_dir`` is ``x_dir`` turned by 90 degrees. The page outline is boxed in
that rotated frame to get consistently ordered corners (TL, TR, BR, BL),
and every span sample is expressed as an x offset from the box origin,
with one mean y offset per span.

Two axis estimators are available and never mixed:
- ``weighted`` (default): principal axis of each span, averaged with the
  span's chord length as weight
- ``global``: one principal axis over all pooled sample points
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

from pagedewarp.config import AXIS_METHODS
from pagedewarp.services.linalg import dominant_axis_2x2
from pagedewarp.utils.exceptions import DegenerateGeometryError
from pagedewarp.utils.metrics import MetricsCollector

logger = logging.getLogger(__name__)


@dataclass
class PageModel:
    """Page axes and corners in normalised image coordinates.

    Attributes:
        x_dir: Unit horizontal page axis
        y_dir: Unit vertical page axis (``x_dir`` rotated by +90 degrees)
        corners: (4, 2) corners in TL, TR, BR, BL order
        page_dims: (width, height) of the page in normalised units
    """

    x_dir: np.ndarray
    y_dir: np.ndarray
    corners: np.ndarray
    page_dims: np.ndarray = field(default_factory=lambda: np.zeros(2))

    def __post_init__(self) -> None:
        if not np.any(self.page_dims):
            self.page_dims = np.array(
                [
                    np.linalg.norm(self.corners[1] - self.corners[0]),
                    np.linalg.norm(self.corners[3] - self.corners[0]),
                ]
            )


@dataclass
class SpanCoordinates:
    """Keypoint coordinates in the rotated page frame.

    Attributes:
        xcoords: Per-span arrays of x offsets, one per sample point
        ycoords: One y offset per span
    """

    xcoords: list[np.ndarray]
    ycoords: np.ndarray

    @property
    def span_counts(self) -> list[int]:
        return [len(xc) for xc in self.xcoords]


def principal_axis(points: np.ndarray) -> np.ndarray:
    """Dominant direction of a point cloud from its 2x2 sample covariance."""
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    if len(pts) < 2:
        return np.array([1.0, 0.0])
    centered = pts - pts.mean(axis=0)
    cxx = float(centered[:, 0] @ centered[:, 0])
    cxy = float(centered[:, 0] @ centered[:, 1])
    cyy = float(centered[:, 1] @ centered[:, 1])
    return dominant_axis_2x2(cxx, cxy, cyy)


def _weighted_axis(
    span_points: list[np.ndarray], metrics: MetricsCollector | None
) -> np.ndarray:
    all_evecs = np.zeros(2)
    all_weights = 0.0
    span_axes: list[np.ndarray] = []
    span_weights: list[float] = []

    for points in span_points:
        if len(points) < 2:
            continue
        evec = principal_axis(points)
        weight = float(np.linalg.norm(points[-1] - points[0]))
        span_axes.append(evec)
        span_weights.append(weight)
        all_evecs += evec * weight
        all_weights += weight

    if metrics is not None:
        metrics.add("keypoint_span_axes", span_axes)
        metrics.add("keypoint_span_weights", span_weights)
        metrics.add("keypoint_axis_sums", {"evec": all_evecs, "weight": all_weights})

    if all_weights == 0:
        logger.warning("No span has a usable direction, assuming horizontal text")
        return np.array([1.0, 0.0])
    return all_evecs / all_weights


def _global_axis(span_points: list[np.ndarray]) -> np.ndarray:
    pooled = np.concatenate([np.asarray(p).reshape(-1, 2) for p in span_points])
    return principal_axis(pooled)


def estimate_page_axes(
    span_points: list[np.ndarray],
    method: str = "weighted",
    metrics: MetricsCollector | None = None,
) -> tuple[np.ndarray, np.ndarray]:
    """Estimate the page's horizontal and vertical axes from span samples.

    Args:
        span_points: Per-span (N, 2) normalised sample points.
        method: ``weighted`` or ``global``.
        metrics: Optional diagnostic collector.

    Returns:
        (x_dir, y_dir) unit vectors with ``x_dir[0] >= 0``.

    Raises:
        DegenerateGeometryError: if there are no spans at all.
    """
    if method not in AXIS_METHODS:
        raise ValueError(f"Unknown axis method '{method}', expected one of {AXIS_METHODS}")
    if not span_points:
        raise DegenerateGeometryError("no spans to estimate page axes from")

    if method == "weighted":
        x_dir = _weighted_axis(span_points, metrics)
    else:
        x_dir = _global_axis(span_points)

    norm = float(np.linalg.norm(x_dir))
    if norm == 0 or not np.isfinite(norm):
        # Opposite span directions cancelled out
        logger.warning("Span directions cancel out, assuming horizontal text")
        x_dir = np.array([1.0, 0.0])
    else:
        x_dir = x_dir / norm
    if x_dir[0] < 0:
        x_dir = -x_dir
    y_dir = np.array([-x_dir[1], x_dir[0]])
    return x_dir, y_dir


def page_corners(
    page_outline: np.ndarray, x_dir: np.ndarray, y_dir: np.ndarray
) -> tuple[np.ndarray, float, float]:
    """Box the page outline in the rotated frame.

    Returns:
        (corners, px0, py0): TL, TR, BR, BL corners mapped back to image
        coordinates, and the box origin in the rotated frame.
    """
    outline = np.asarray(page_outline, dtype=np.float64).reshape(-1, 2)
    px_coords = outline @ x_dir
    py_coords = outline @ y_dir

    px0, px1 = float(px_coords.min()), float(px_coords.max())
    py0, py1 = float(py_coords.min()), float(py_coords.max())

    basis = np.vstack([x_dir, y_dir])
    rotated = np.array([[px0, py0], [px1, py0], [px1, py1], [px0, py1]])
    corners = rotated @ basis
    return corners, px0, py0


def span_coordinates(
    span_points: list[np.ndarray],
    x_dir: np.ndarray,
    y_dir: np.ndarray,
    px0: float,
    py0: float,
) -> SpanCoordinates:
    """Rotated-frame x offsets per point and one mean y offset per span."""
    xcoords: list[np.ndarray] = []
    ycoords: list[float] = []
    for points in span_points:
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        xcoords.append(pts @ x_dir - px0)
        ycoords.append(float(np.mean(pts @ y_dir)) - py0)
    return SpanCoordinates(xcoords=xcoords, ycoords=np.array(ycoords))


def keypoints_from_samples(
    page_outline: np.ndarray,
    span_points: list[np.ndarray],
    method: str = "weighted",
    metrics: MetricsCollector | None = None,
) -> tuple[PageModel, SpanCoordinates]:
    """Compute the page model and keypoint coordinates for optimisation.

    Args:
        page_outline: Four outline points in normalised coordinates.
        span_points: Per-span normalised sample points.
        method: Axis estimator, ``weighted`` or ``global``.
        metrics: Optional diagnostic collector.

    Returns:
        (PageModel, SpanCoordinates)
    """
    x_dir, y_dir = estimate_page_axes(span_points, method, metrics)
    corners, px0, py0 = page_corners(page_outline, x_dir, y_dir)
    coords = span_coordinates(span_points, x_dir, y_dir, px0, py0)
    model = PageModel(x_dir=x_dir, y_dir=y_dir, corners=corners)

    if metrics is not None:
        metrics.add("keypoint_axes", {"x_dir": x_dir, "y_dir": y_dir})
        metrics.add("keypoint_corners", corners)
        metrics.add("keypoint_ycoords", coords.ycoords)
        metrics.add("keypoint_xcoords_lengths", coords.span_counts)

    return model, coords
