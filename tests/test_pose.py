"""Tests for the planar pose estimator."""

import numpy as np
import pytest

from conftest import FLAT_CORNERS, FLAT_TVEC, FOCAL_LENGTH
from pagedewarp.services.pose import (
    levenberg_marquardt,
    page_object_points,
    solve_planar_pose,
)
from pagedewarp.services.projection import project_points
from pagedewarp.utils.exceptions import DegenerateGeometryError
from pagedewarp.utils.metrics import MetricsCollector

UNIT_SQUARE = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [1.0, 1.0, 0.0], [0.0, 1.0, 0.0]])


class TestLevenbergMarquardt:
    """Tests for levenberg_marquardt."""

    def test_linear_least_squares(self):
        A = np.array([[1.0, 2.0], [3.0, -1.0], [0.5, 0.5], [2.0, 1.0]])
        x_true = np.array([0.7, -1.3])
        b = A @ x_true
        result = levenberg_marquardt(lambda x: A @ x - b, np.zeros(2), max_iter=100, tol=1e-12)
        np.testing.assert_allclose(result.x, x_true, atol=1e-6)
        assert result.converged

    def test_never_increases_cost(self):
        def residuals(x):
            return np.array([10.0 * (x[1] - x[0] ** 2), 1.0 - x[0]])

        x0 = np.array([-1.2, 1.0])
        r0 = residuals(x0)
        result = levenberg_marquardt(residuals, x0, max_iter=5)
        assert result.cost <= float(r0 @ r0)

    def test_starting_at_minimum(self):
        result = levenberg_marquardt(lambda x: x - 1.0, np.ones(3))
        assert result.iterations == 0
        assert result.converged


class TestPageObjectPoints:
    """Tests for page_object_points."""

    def test_rectangle_from_corner_distances(self):
        obj, width, height = page_object_points(FLAT_CORNERS)
        assert width == pytest.approx(0.6)
        assert height == pytest.approx(0.8)
        np.testing.assert_allclose(obj[2], [0.6, 0.8, 0.0])
        assert np.all(obj[:, 2] == 0)


class TestSolvePlanarPose:
    """Tests for solve_planar_pose."""

    def test_fronto_parallel_page(self):
        pose = solve_planar_pose(FLAT_CORNERS, FOCAL_LENGTH)
        np.testing.assert_allclose(pose.rvec, np.zeros(3), atol=1e-6)
        np.testing.assert_allclose(pose.tvec, FLAT_TVEC, atol=1e-6)
        assert pose.reprojection_error < 1e-10

    def test_small_rotation(self):
        rvec_true = np.array([0.05, -0.03, 0.02])
        tvec_true = np.array([-0.3, -0.4, 2.0])
        obj = np.array([[0.0, 0.0, 0.0], [0.6, 0.0, 0.0], [0.6, 0.8, 0.0], [0.0, 0.8, 0.0]])
        corners = project_points(obj, rvec_true, tvec_true, FOCAL_LENGTH)

        pose = solve_planar_pose(corners, FOCAL_LENGTH)

        assert pose.tvec[2] > 0
        assert np.linalg.norm(pose.rvec) < 0.2
        assert np.isfinite(pose.params).all()

    def test_unit_square_small_rotation(self):
        rvec_true = np.array([0.05, -0.03, 0.02])
        tvec_true = np.array([0.0, 0.0, 2.0])
        corners = project_points(UNIT_SQUARE, rvec_true, tvec_true, FOCAL_LENGTH)

        pose = solve_planar_pose(corners, FOCAL_LENGTH)

        assert pose.tvec[2] > 0
        assert np.linalg.norm(pose.rvec) < 0.1

    def test_unit_square_recovers_rotation(self):
        # Tilt about the diagonal keeps both edges from the first corner equally long
        rvec_true = np.array([0.04, -0.04, 0.0])
        tvec_true = np.array([0.0, 0.0, 2.0])
        corners = project_points(UNIT_SQUARE, rvec_true, tvec_true, FOCAL_LENGTH)

        pose = solve_planar_pose(corners, FOCAL_LENGTH)

        np.testing.assert_allclose(pose.rvec, rvec_true, atol=1e-6)
        np.testing.assert_allclose(pose.tvec[:2], 0.0, atol=1e-6)
        assert pose.tvec[2] > 0

    def test_refinement_does_not_increase_error(self):
        rvec_true = np.array([0.2, -0.1, 0.05])
        tvec_true = np.array([-0.4, -0.5, 1.8])
        obj = np.array([[0.0, 0.0, 0.0], [0.9, 0.0, 0.0], [0.9, 1.1, 0.0], [0.0, 1.1, 0.0]])
        corners = project_points(obj, rvec_true, tvec_true, FOCAL_LENGTH)

        pose = solve_planar_pose(corners, FOCAL_LENGTH)

        model, _, _ = page_object_points(corners)
        initial = project_points(model, pose.initial_rvec, pose.initial_tvec, FOCAL_LENGTH) - corners
        assert pose.reprojection_error <= float(np.sum(initial**2)) + 1e-15

    def test_page_in_front_of_camera(self):
        # Page turned by 180 degrees in the image plane
        corners = FLAT_CORNERS * -1.0
        pose = solve_planar_pose(corners, FOCAL_LENGTH)
        assert pose.tvec[2] > 0

    def test_collinear_corners_raise(self):
        corners = np.array([[0.0, 0.0], [1.0, 0.0], [2.0, 0.0], [3.0, 0.0]])
        with pytest.raises(DegenerateGeometryError):
            solve_planar_pose(corners, FOCAL_LENGTH)

    def test_coincident_corners_raise(self):
        with pytest.raises(DegenerateGeometryError):
            solve_planar_pose(np.zeros((4, 2)), FOCAL_LENGTH)

    def test_records_metrics(self):
        metrics = MetricsCollector()
        solve_planar_pose(FLAT_CORNERS, FOCAL_LENGTH, metrics=metrics)
        assert "pose_initial" in metrics
        assert "pose_refined" in metrics
        assert len(metrics.get("pose_refined")["rvec"]) == 3
