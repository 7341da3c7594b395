"""Tests for the projected page boundary."""

import numpy as np
import pytest

from conftest import FLAT_CORNERS, FLAT_PAGE_DIMS, FOCAL_LENGTH
from pagedewarp.services.page_boundary import (
    EDGE_NAMES,
    boundary_to_pixels,
    page_rectangle,
    project_page_boundary,
)


class TestPageRectangle:
    def test_corners(self):
        np.testing.assert_allclose(
            page_rectangle(np.array([2.0, 3.0])), [[0, 0], [2, 0], [2, 3], [0, 3]]
        )


class TestProjectPageBoundary:
    """Tests for project_page_boundary."""

    def test_flat_page_edges(self, flat_params):
        edges = project_page_boundary(page_rectangle(FLAT_PAGE_DIMS), flat_params, FOCAL_LENGTH)

        assert tuple(edges) == EDGE_NAMES
        for i, name in enumerate(EDGE_NAMES):
            assert edges[name].shape == (51, 2)
            np.testing.assert_allclose(edges[name][0], FLAT_CORNERS[i], atol=1e-12)
            np.testing.assert_allclose(edges[name][-1], FLAT_CORNERS[(i + 1) % 4], atol=1e-12)

        np.testing.assert_allclose(edges["top"][:, 1], -0.4, atol=1e-12)

    def test_curvature_bends_edges(self, flat_params):
        params = flat_params.copy()
        params[6] = 0.2
        edges = project_page_boundary(page_rectangle(FLAT_PAGE_DIMS), params, FOCAL_LENGTH)
        assert not np.allclose(edges["top"][:, 1], -0.4)

    def test_sample_count(self, flat_params):
        edges = project_page_boundary(
            page_rectangle(FLAT_PAGE_DIMS), flat_params, FOCAL_LENGTH, samples_per_edge=4
        )
        assert all(len(points) == 5 for points in edges.values())

    def test_invalid_sample_count(self, flat_params):
        with pytest.raises(ValueError):
            project_page_boundary(
                page_rectangle(FLAT_PAGE_DIMS), flat_params, FOCAL_LENGTH, samples_per_edge=0
            )


class TestBoundaryToPixels:
    def test_integer_pixels(self, flat_params):
        edges = project_page_boundary(page_rectangle(FLAT_PAGE_DIMS), flat_params, FOCAL_LENGTH)
        pixels = boundary_to_pixels(edges, (200, 200))
        assert pixels["top"].dtype.kind == "i"
        np.testing.assert_array_equal(pixels["top"][0], [70, 60])
        np.testing.assert_array_equal(pixels["bottom"][0], [130, 140])
