"""Remapping of the full-resolution image onto the flattened page.

A coarse grid over the page plane is projected through the optimised
model, upsampled to the output size and used as the sampling map for
``cv2.remap``. The result is optionally binarised with an adaptive mean
threshold.
"""

from __future__ import annotations

import logging
from pathlib import Path

import cv2
import numpy as np
from PIL import Image

from pagedewarp.config import DewarpConfig
from pagedewarp.constants import MAX_PROJECTED_COORD
from pagedewarp.services.projection import project_xy
from pagedewarp.utils.coords import norm2pix, round_nearest_multiple
from pagedewarp.utils.metrics import MetricsCollector

logger = logging.getLogger(__name__)

_OUTPUT_THRESH_C: int = 25


def output_size(
    page_dims: np.ndarray, image_height: int, config: DewarpConfig
) -> tuple[int, int]:
    """Output (width, height), multiples of ``remap_decimate`` within ``max_output_dim``."""
    page_w, page_h = float(page_dims[0]), float(page_dims[1])
    decimate = config.remap_decimate

    height = round_nearest_multiple(0.5 * page_h * config.output_zoom * image_height, decimate)
    width = round_nearest_multiple(height * page_w / page_h, decimate)

    max_dim = config.max_output_dim
    if width > max_dim or height > max_dim:
        scale = max_dim / max(width, height)
        width = round_nearest_multiple(width * scale, decimate)
        height = round_nearest_multiple(height * scale, decimate)
        # Rounding up can overshoot by one step
        width = min(width, max_dim - max_dim % decimate or decimate)
        height = min(height, max_dim - max_dim % decimate or decimate)
        logger.info(f"  clamping output to {width}x{height}")

    return max(width, decimate), max(height, decimate)


class RemappedImage:
    """Dewarped rendering of one page.

    Args:
        name: Stem used to name the output file
        image: Full-resolution source image (BGR or grayscale)
        page_dims: Optimised (width, height) of the page
        params: Optimised parameter vector
        config: Output size, decimation and thresholding settings
        metrics: Optional collector for non-finite substitutions
    """

    def __init__(
        self,
        name: str,
        image: np.ndarray,
        page_dims: np.ndarray,
        params: np.ndarray,
        config: DewarpConfig,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self.name = name
        self.config = config
        self.page_dims = np.asarray(page_dims, dtype=np.float64)
        self.params = np.asarray(params, dtype=np.float64)
        self.metrics = metrics

        if self.page_dims[0] <= 0 or self.page_dims[1] <= 0:
            raise ValueError(f"Page dimensions must be positive, got {self.page_dims}")

        self.width, self.height = output_size(self.page_dims, image.shape[0], config)
        logger.info(f"  output will be {self.width}x{self.height}")

        map_x, map_y = self._build_maps(image.shape)

        gray = image if image.ndim == 2 else cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        remapped = cv2.remap(
            gray,
            map_x,
            map_y,
            cv2.INTER_CUBIC,
            borderMode=cv2.BORDER_REPLICATE,
        )

        if config.no_binary:
            self.image = remapped
        else:
            self.image = cv2.adaptiveThreshold(
                remapped,
                255,
                cv2.ADAPTIVE_THRESH_MEAN_C,
                cv2.THRESH_BINARY,
                config.adaptive_winsz,
                _OUTPUT_THRESH_C,
            )

    def _build_maps(self, shape: tuple[int, ...]) -> tuple[np.ndarray, np.ndarray]:
        decimate = self.config.remap_decimate
        height_small = max(self.height // decimate, 2)
        width_small = max(self.width // decimate, 2)

        page_x_range = np.linspace(0, self.page_dims[0], width_small)
        page_y_range = np.linspace(0, self.page_dims[1], height_small)
        page_x_coords, page_y_coords = np.meshgrid(page_x_range, page_y_range)
        page_xy_coords = np.column_stack([page_x_coords.ravel(), page_y_coords.ravel()])

        image_points = project_xy(
            page_xy_coords, self.params, self.config.focal_length, self.metrics
        )
        image_points = norm2pix(shape, image_points, as_integer=False)

        bad = ~np.isfinite(image_points)
        if bad.any():
            logger.warning(
                f"  Found {int(bad.sum())} NaN/Inf points in projection. Replaced with 0."
            )
            image_points[bad] = 0.0
        np.clip(image_points, -MAX_PROJECTED_COORD, MAX_PROJECTED_COORD, out=image_points)

        image_x_coords = image_points[:, 0].reshape(page_x_coords.shape).astype(np.float32)
        image_y_coords = image_points[:, 1].reshape(page_y_coords.shape).astype(np.float32)

        dsize = (self.width, self.height)
        map_x = cv2.resize(image_x_coords, dsize, interpolation=cv2.INTER_CUBIC)
        map_y = cv2.resize(image_y_coords, dsize, interpolation=cv2.INTER_CUBIC)
        return map_x, map_y

    def save(self, output_dir: str | Path = ".") -> Path:
        """Write ``<name>_thresh.png`` into ``output_dir`` and return its path."""
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        path = output_dir / f"{self.name}_thresh.png"

        dpi = self.config.output_dpi
        pil_img = Image.fromarray(self.image)
        if not self.config.no_binary:
            pil_img = pil_img.convert("1")
        pil_img.save(path, dpi=(dpi, dpi))
        logger.info(f"  wrote {path}")
        return path
