"""Keypoint index and projection of keypoints through the page model.

The parameter vector is laid out as::

    [rvec(3), tvec(3), alpha, beta, y_0 .. y_{S-1}, x_0 .. x_{N-1}]

Keypoint ``k`` (1-based, 0 is a dummy pinned to the page origin) reads its
x from its own entry and its y from the entry of the span it belongs to.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from pagedewarp.constants import PARAMS_HEADER_LEN
from pagedewarp.services.projection import project_xy
from pagedewarp.utils.metrics import MetricsCollector


def parameter_count(span_counts: Sequence[int]) -> int:
    """Length of the parameter vector for the given per-span point counts."""
    return PARAMS_HEADER_LEN + len(span_counts) + int(sum(span_counts))


def make_keypoint_index(span_counts: Sequence[int]) -> np.ndarray:
    """Map each keypoint to its ``(x_param_index, y_param_index)``.

    Args:
        span_counts: Number of sample points in each span.

    Returns:
        Integer array of shape ``(N + 1, 2)``; row 0 is the dummy origin
        keypoint and stays ``(0, 0)``.
    """
    nspans = len(span_counts)
    npts = int(sum(span_counts))
    keypoint_index = np.zeros((npts + 1, 2), dtype=int)
    start = 1
    for i, count in enumerate(span_counts):
        end = start + count
        keypoint_index[start:end, 1] = PARAMS_HEADER_LEN + i
        start = end
    keypoint_index[1:, 0] = np.arange(npts) + PARAMS_HEADER_LEN + nspans
    return keypoint_index


def keypoint_page_coords(pvec: np.ndarray, keypoint_index: np.ndarray) -> np.ndarray:
    """Page ``(x, y)`` of every keypoint read out of the parameter vector."""
    xy_coords = np.asarray(pvec)[keypoint_index]
    xy_coords[0, :] = 0
    return xy_coords


def project_keypoints(
    pvec: np.ndarray,
    keypoint_index: np.ndarray,
    focal_length: float,
    metrics: MetricsCollector | None = None,
) -> np.ndarray:
    """Project all keypoints using the current parameters."""
    return project_xy(keypoint_page_coords(pvec, keypoint_index), pvec, focal_length, metrics)
