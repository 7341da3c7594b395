"""Pytest configuration for pagedewarp tests.

Shared synthetic fixtures: a default configuration, a fronto-parallel
page pose with its parameter vector, and a rendered page of dark bars
standing in for lines of text.
"""

import cv2
import numpy as np
import pytest

from pagedewarp.config import DewarpConfig
from pagedewarp.services.contour_spans import ContourRecord

FOCAL_LENGTH = 1.2

# Fronto-parallel page: rvec = 0, camera at distance f, so normalised image
# coordinates equal page coordinates shifted by the translation.
FLAT_TVEC = np.array([-0.3, -0.4, FOCAL_LENGTH])
FLAT_PAGE_DIMS = np.array([0.6, 0.8])
FLAT_CORNERS = np.array([[-0.3, -0.4], [0.3, -0.4], [0.3, 0.4], [-0.3, 0.4]])


@pytest.fixture
def config():
    """Default configuration."""
    return DewarpConfig()


@pytest.fixture
def flat_params():
    """Header of a parameter vector for a flat page facing the camera."""
    return np.concatenate([np.zeros(3), FLAT_TVEC, [0.0, 0.0]])


@pytest.fixture
def flat_corners():
    return FLAT_CORNERS.copy()


def make_record(x, y, width=20, height=10, angle=0.0, mask=None):
    """Horizontal blob of ``width`` px whose left edge starts at ``x``."""
    tangent = np.array([np.cos(angle), np.sin(angle)])
    center = np.array([x + width / 2.0, y])
    rect = (int(x), int(y - height / 2), int(width), int(height))
    return ContourRecord(center, tangent, (-width / 2.0, width / 2.0), rect, mask)


@pytest.fixture
def record_factory():
    return make_record


def render_text_page(height=400, width=600, rows=None, bar_width=80, gap=15, thickness=6):
    """White BGR page with rows of black bars shaped like words."""
    image = np.full((height, width, 3), 255, dtype=np.uint8)
    if rows is None:
        rows = range(60, height - 40, 40)
    for y in rows:
        for x in range(80, width - 80 - bar_width + 1, bar_width + gap):
            cv2.rectangle(image, (x, y), (x + bar_width - 1, y + thickness - 1), (0, 0, 0), -1)
    return image


@pytest.fixture
def text_page():
    return render_text_page()
