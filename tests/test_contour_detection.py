"""Tests for contour detection on the working-size image."""

import cv2
import numpy as np
import pytest

from pagedewarp.config import DewarpConfig
from pagedewarp.services.contour_detection import (
    blob_mean_and_tangent,
    compute_text_mask,
    contours_from_mask,
    detect_contours,
    is_text_blob,
    page_extents,
    resize_to_screen,
)
from pagedewarp.utils.metrics import MetricsCollector


class TestResizeToScreen:
    """Tests for resize_to_screen."""

    def test_integer_downscale(self, config):
        image = np.zeros((1400, 2560, 3), dtype=np.uint8)
        small = resize_to_screen(image, config)
        assert small.shape == (700, 1280, 3)

    def test_factor_rounds_up(self, config):
        image = np.zeros((800, 1300), dtype=np.uint8)
        assert resize_to_screen(image, config).shape == (400, 650)

    def test_small_image_is_copied(self, config):
        image = np.zeros((100, 200), dtype=np.uint8)
        small = resize_to_screen(image, config)
        assert small.shape == image.shape
        small[0, 0] = 7
        assert image[0, 0] == 0


class TestPageExtents:
    """Tests for page_extents."""

    def test_outline_and_mask(self, config):
        pagemask, outline = page_extents(np.zeros((100, 200), dtype=np.uint8), config)
        np.testing.assert_array_equal(outline, [[50, 20], [50, 80], [150, 80], [150, 20]])
        assert pagemask.shape == (100, 200)
        assert pagemask[50, 100] == 255
        assert pagemask[10, 100] == 0
        assert pagemask[50, 20] == 0

    def test_margins_follow_config(self):
        config = DewarpConfig(page_margin_x=0, page_margin_y=0)
        pagemask, outline = page_extents(np.zeros((10, 10), dtype=np.uint8), config)
        np.testing.assert_array_equal(outline[2], [10, 10])
        assert pagemask.min() == 255


class TestIsTextBlob:
    """Tests for is_text_blob."""

    @pytest.mark.parametrize(
        "width,height,reason",
        [
            (10, 5, "width"),
            (40, 1, "height"),
            (20, 15, "aspect"),
            (40, 5, None),
        ],
    )
    def test_reasons(self, config, width, height, reason):
        assert is_text_blob(width, height, config) == reason


class TestBlobMeanAndTangent:
    """Tests for blob_mean_and_tangent."""

    def test_horizontal_rectangle(self):
        contour = np.array([[[0, 0]], [[100, 0]], [[100, 10]], [[0, 10]]], dtype=np.int32)
        center, tangent = blob_mean_and_tangent(contour)
        np.testing.assert_allclose(center, [50.0, 5.0])
        np.testing.assert_allclose(tangent, [1.0, 0.0], atol=1e-9)

    def test_tilted_rectangle(self):
        mask = np.zeros((200, 200), dtype=np.uint8)
        box = cv2.boxPoints(((100.0, 100.0), (120.0, 8.0), 20.0)).astype(np.int32)
        cv2.fillPoly(mask, [box], 255)
        contours, _ = cv2.findContours(mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_NONE)
        _, tangent = blob_mean_and_tangent(contours[0])
        angle = np.degrees(np.arctan2(tangent[1], tangent[0]))
        assert angle == pytest.approx(20.0, abs=2.0)

    def test_zero_area(self):
        contour = np.array([[[0, 0]], [[10, 0]]], dtype=np.int32)
        assert blob_mean_and_tangent(contour) is None


class TestContoursFromMask:
    """Tests for contours_from_mask."""

    def test_filters_small_blobs(self, config):
        mask = np.zeros((200, 200), dtype=np.uint8)
        mask[10:14, 10:20] = 255
        mask[50:55, 50:90] = 255
        metrics = MetricsCollector()

        records = contours_from_mask(mask, config, metrics)

        assert len(records) == 1
        assert records[0].rect == (50, 50, 40, 5)
        np.testing.assert_allclose(records[0].center, [69.5, 52.0], atol=0.5)
        assert records[0].mask.shape == (5, 40)
        assert metrics.get("contour_rejections")["width"] == 1

    def test_thickness_rejection(self, config):
        mask = np.zeros((200, 200), dtype=np.uint8)
        mask[50:70, 50:90] = 255
        metrics = MetricsCollector()
        assert contours_from_mask(mask, config, metrics) == []
        assert metrics.get("contour_rejections")["thickness"] == 1

    def test_local_range_spans_blob(self, config):
        mask = np.zeros((100, 200), dtype=np.uint8)
        mask[40:45, 20:120] = 255
        (record,) = contours_from_mask(mask, config)
        assert record.width == pytest.approx(99.0, abs=1.0)


class TestDetectContours:
    """Tests for detect_contours on a rendered page."""

    def test_text_mode_finds_words(self, text_page, config):
        pagemask, _ = page_extents(text_page, config)
        records = detect_contours(text_page, pagemask, config, text=True)
        # 8 rows of 4 word bars
        assert len(records) == 32
        for rec in records:
            assert abs(rec.tangent[1]) < 0.05

    def test_mask_respects_page_margins(self, text_page, config):
        pagemask, _ = page_extents(text_page, config)
        mask = compute_text_mask(text_page, pagemask, config)
        assert mask[:, :50].max() == 0
        assert mask[60:66, 100].max() == 255

    def test_blank_page(self, config):
        blank = np.full((300, 400, 3), 255, dtype=np.uint8)
        pagemask, _ = page_extents(blank, config)
        assert detect_contours(blank, pagemask, config, text=True) == []
        assert detect_contours(blank, pagemask, config, text=False) == []

    def test_grayscale_input(self, text_page, config):
        gray = cv2.cvtColor(text_page, cv2.COLOR_BGR2GRAY)
        pagemask, _ = page_extents(gray, config)
        assert len(detect_contours(gray, pagemask, config)) == 32
