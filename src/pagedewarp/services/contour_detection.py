"""Text contour detection on the working-size image.

- Downscale to the screen limits by an integer factor
- Page mask inset by the configured margins
- Adaptive threshold + morphological ops to isolate text blobs (or, in
  line mode, thick rules and table borders)
- Moment-based centroid and orientation per blob
- Size, aspect and thickness filters
"""

from __future__ import annotations

import logging
import math

import cv2
import numpy as np

from pagedewarp.config import DewarpConfig
from pagedewarp.services.contour_spans import ContourRecord
from pagedewarp.services.linalg import dominant_axis_2x2
from pagedewarp.utils.metrics import MetricsCollector

logger = logging.getLogger(__name__)

# Adaptive threshold offsets
_TEXT_THRESH_C: int = 25
_LINE_THRESH_C: int = 7


# ── Image preparation ────────────────────────────────────────────────────────


def resize_to_screen(image: np.ndarray, config: DewarpConfig) -> np.ndarray:
    """Downscale by the smallest integer factor that fits the screen limits."""
    height, width = image.shape[:2]
    scl_x = width / config.screen_max_w
    scl_y = height / config.screen_max_h
    scl = int(math.ceil(max(scl_x, scl_y)))

    if scl > 1:
        inv_scl = 1.0 / scl
        new_size = (int(round(width * inv_scl)), int(round(height * inv_scl)))
        return cv2.resize(image, new_size, interpolation=cv2.INTER_AREA)
    return image.copy()


def page_extents(small: np.ndarray, config: DewarpConfig) -> tuple[np.ndarray, np.ndarray]:
    """Page mask and outline, inset by the page margins.

    Returns:
        (pagemask, page_outline): uint8 mask with 255 inside the page, and
        the outline ``(xmin, ymin), (xmin, ymax), (xmax, ymax), (xmax, ymin)``
        in pixels.
    """
    height, width = small.shape[:2]
    xmin = config.page_margin_x
    ymin = config.page_margin_y
    xmax = width - xmin
    ymax = height - ymin

    pagemask = np.zeros((height, width), dtype=np.uint8)
    cv2.rectangle(pagemask, (xmin, ymin), (xmax, ymax), color=255, thickness=-1)

    page_outline = np.array([[xmin, ymin], [xmin, ymax], [xmax, ymax], [xmax, ymin]])
    return pagemask, page_outline


def _to_gray(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return image
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
    return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)


def compute_text_mask(
    small: np.ndarray,
    pagemask: np.ndarray,
    config: DewarpConfig,
    text: bool = True,
) -> np.ndarray:
    """Binary mask of text blobs (or thick lines) inside the page.

    Args:
        small: Working-size BGR or grayscale image.
        pagemask: Page region mask from ``page_extents``.
        config: Provides the adaptive threshold window.
        text: If True, dilate horizontally to join characters into words;
              if False, erode to keep only thick horizontal rules.

    Returns:
        uint8 mask, 255 where a blob was found.
    """
    sgray = _to_gray(small)
    mask = cv2.adaptiveThreshold(
        src=sgray,
        maxValue=255,
        adaptiveMethod=cv2.ADAPTIVE_THRESH_MEAN_C,
        thresholdType=cv2.THRESH_BINARY_INV,
        blockSize=config.adaptive_winsz,
        C=_TEXT_THRESH_C if text else _LINE_THRESH_C,
    )

    if text:
        # Dilate horizontally to connect characters into word blobs
        mask = cv2.dilate(mask, cv2.getStructuringElement(cv2.MORPH_RECT, (9, 1)))
        mask = cv2.erode(mask, cv2.getStructuringElement(cv2.MORPH_RECT, (1, 3)))
    else:
        mask = cv2.erode(mask, cv2.getStructuringElement(cv2.MORPH_RECT, (3, 1)), iterations=3)
        mask = cv2.dilate(mask, cv2.getStructuringElement(cv2.MORPH_RECT, (8, 2)))

    # AND with page mask to exclude margins
    return np.minimum(mask, pagemask)


# ── Blob geometry ────────────────────────────────────────────────────────────


def blob_mean_and_tangent(contour: np.ndarray) -> tuple[np.ndarray, np.ndarray] | None:
    """Centroid and principal orientation of a contour from its moments.

    Returns:
        (center, tangent), or None for a contour with zero area.
    """
    moments = cv2.moments(contour)
    area = moments["m00"]
    if not area:
        return None
    center = np.array([moments["m10"] / area, moments["m01"] / area])
    tangent = dominant_axis_2x2(
        moments["mu20"] / area, moments["mu11"] / area, moments["mu02"] / area
    )
    return center, tangent


def _make_tight_mask(
    contour: np.ndarray, xmin: int, ymin: int, width: int, height: int
) -> np.ndarray:
    """Create a tight binary mask of a contour within its bounding box."""
    mask = np.zeros((height, width), dtype=np.uint8)
    tight_contour = contour - np.array((xmin, ymin)).reshape((-1, 1, 2))
    cv2.drawContours(mask, [tight_contour], contourIdx=0, color=1, thickness=-1)
    return mask


def is_text_blob(width: int, height: int, config: DewarpConfig) -> str | None:
    """Check blob dimensions against the text limits.

    Returns:
        None if the blob passes, otherwise the rejection reason
        (``width``, ``height`` or ``aspect``).
    """
    if width < config.text_min_width:
        return "width"
    if height < config.text_min_height:
        return "height"
    if width < config.text_min_aspect * height:
        return "aspect"
    return None


def contours_from_mask(
    mask: np.ndarray,
    config: DewarpConfig,
    metrics: MetricsCollector | None = None,
) -> list[ContourRecord]:
    """Extract and filter external contours of a binary mask.

    Args:
        mask: uint8 mask of candidate blobs.
        config: Text size and thickness limits.
        metrics: Optional collector; rejections are counted per reason
            under ``contour_rejections``.

    Returns:
        One ContourRecord per accepted blob, in detection order.
    """
    contours, _ = cv2.findContours(mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_NONE)
    rejections = {"width": 0, "height": 0, "aspect": 0, "thickness": 0, "zero_moments": 0}
    records: list[ContourRecord] = []

    for contour in contours:
        rect = cv2.boundingRect(contour)
        xmin, ymin, width, height = rect

        reason = is_text_blob(width, height, config)
        if reason is not None:
            rejections[reason] += 1
            continue

        tight_mask = _make_tight_mask(contour, xmin, ymin, width, height)
        if tight_mask.sum(axis=0).max() > config.text_max_thickness:
            rejections["thickness"] += 1
            continue

        result = blob_mean_and_tangent(contour)
        if result is None:
            rejections["zero_moments"] += 1
            continue

        center, tangent = result
        records.append(
            ContourRecord.from_points(contour.reshape(-1, 2), center, tangent, rect, tight_mask)
        )

    logger.debug(
        f"Contours: {len(contours)} found, {len(records)} kept, rejected {rejections}"
    )
    if metrics is not None:
        metrics.add("contour_rejections", rejections)
    return records


def detect_contours(
    small: np.ndarray,
    pagemask: np.ndarray,
    config: DewarpConfig,
    text: bool = True,
    metrics: MetricsCollector | None = None,
) -> list[ContourRecord]:
    """Threshold the image and return the filtered text (or line) contours."""
    mask = compute_text_mask(small, pagemask, config, text=text)
    return contours_from_mask(mask, config, metrics)
