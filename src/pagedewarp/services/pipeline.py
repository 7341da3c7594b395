"""End-to-end dewarping of a single page photograph.

Stages:
    1. Resize to the working size, compute the page mask and outline
    2. Detect text contours and assemble spans (line mode as a fallback)
    3. Sample keypoints along the spans
    4. Page axes, corners and rotated-frame keypoint coordinates
    5. Initial pose and parameter vector
    6. Global optimisation of the parameter vector
    7. Page dimension fit
    8. Remapping and thresholding of the full-resolution image
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path

import cv2
import numpy as np

from pagedewarp.config import DewarpConfig
from pagedewarp.services.contour_detection import (
    detect_contours,
    page_extents,
    resize_to_screen,
)
from pagedewarp.services.contour_spans import SpanAssembly, assemble_spans, sample_spans
from pagedewarp.services.optimise import OptimizationResult, get_strategy, optimise_params
from pagedewarp.services.page_axes import PageModel, keypoints_from_samples
from pagedewarp.services.page_boundary import (
    boundary_to_pixels,
    page_rectangle,
    project_page_boundary,
)
from pagedewarp.services.remap import RemappedImage
from pagedewarp.services.solve import get_default_params, optimise_page_dims
from pagedewarp.utils.coords import pix2norm
from pagedewarp.utils.exceptions import ImageLoadError, InsufficientSpansError
from pagedewarp.utils.metrics import MetricsCollector

logger = logging.getLogger(__name__)


@dataclass
class DewarpResult:
    """Everything produced while dewarping one page.

    Attributes:
        name: Image stem
        remapped: Rendered output page
        page: Page axes and corners
        span_count: Number of spans used
        point_count: Number of span keypoints used
        params: Optimised parameter vector
        page_dims: Fitted page (width, height)
        optimization: Result of the global optimisation
        boundary: Curved page outline in working-image pixels
    """

    name: str
    remapped: RemappedImage
    page: PageModel
    span_count: int
    point_count: int
    params: np.ndarray
    page_dims: np.ndarray
    optimization: OptimizationResult
    boundary: dict[str, np.ndarray]


def load_image(path: str | Path) -> np.ndarray:
    """Read an image from disk as BGR.

    Raises:
        ImageLoadError: if the file is missing or cannot be decoded.
    """
    path = Path(path)
    if not path.is_file():
        raise ImageLoadError(str(path), "file not found")
    image = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if image is None:
        raise ImageLoadError(str(path), "unsupported or corrupt image")
    return image


class DewarpPipeline:
    """Runs every dewarp stage for one image at a time.

    The pipeline holds only its configuration; per-page state lives in
    locals and in the caller's MetricsCollector.
    """

    def __init__(self, config: DewarpConfig | None = None) -> None:
        self.config = config or DewarpConfig()
        self.strategy = get_strategy(self.config.optim_method)

    def _assemble(
        self,
        small: np.ndarray,
        pagemask: np.ndarray,
        metrics: MetricsCollector | None,
    ) -> SpanAssembly:
        config = self.config
        records = detect_contours(small, pagemask, config, text=True, metrics=metrics)
        logger.info(f"  found {len(records)} initial text contours")
        assembly = assemble_spans(records, config, metrics)

        if len(assembly) < config.min_spans:
            logger.info(f"  detecting lines because only {len(assembly)} text spans")
            line_records = detect_contours(small, pagemask, config, text=False, metrics=metrics)
            line_assembly = assemble_spans(line_records, config, metrics)
            if len(line_assembly) > len(assembly):
                assembly = line_assembly

        if metrics is not None:
            metrics.add("span_count", len(assembly))
        return assembly

    def process(
        self,
        image: np.ndarray,
        name: str = "page",
        metrics: MetricsCollector | None = None,
    ) -> DewarpResult:
        """Dewarp one image.

        Args:
            image: Full-resolution BGR or grayscale image.
            name: Stem used for logging and the output file name.
            metrics: Optional diagnostic collector.

        Returns:
            DewarpResult with the rendered page and the fitted model.

        Raises:
            InsufficientSpansError: if no span at all could be assembled.
            DegenerateGeometryError: if the page geometry cannot be estimated.
        """
        config = self.config
        start = time.monotonic()

        small = resize_to_screen(image, config)
        logger.info(
            f"  loaded {name} at {image.shape[1]}x{image.shape[0]} --> "
            f"{small.shape[1]}x{small.shape[0]}"
        )

        pagemask, page_outline = page_extents(small, config)
        assembly = self._assemble(small, pagemask, metrics)

        if len(assembly) < 1:
            raise InsufficientSpansError(len(assembly), config.min_spans)
        if len(assembly) < config.min_spans:
            logger.warning(
                f"  only {len(assembly)} spans found for {name}, results may be unreliable"
            )

        span_points = sample_spans(small.shape, assembly, config, metrics)
        if not span_points:
            raise InsufficientSpansError(0, config.min_spans)
        n_pts = sum(len(points) for points in span_points)
        logger.info(f"  got {len(span_points)} spans with {n_pts} points.")

        page, coords = keypoints_from_samples(
            pix2norm(small.shape, page_outline),
            span_points,
            method=config.axis_method,
            metrics=metrics,
        )

        defaults = get_default_params(page, coords, config, metrics)
        dstpoints = np.vstack([page.corners[0].reshape(1, 2)] + list(span_points))

        optimization = optimise_params(
            dstpoints,
            defaults.span_counts,
            defaults.params,
            config,
            strategy=self.strategy,
            metrics=metrics,
        )
        params = optimization.x

        page_dims = optimise_page_dims(
            page.corners, defaults.page_dims, params, config, strategy=self.strategy
        )

        boundary = project_page_boundary(
            page_rectangle(page_dims), params, config.focal_length, metrics=metrics
        )

        remapped = RemappedImage(name, image, page_dims, params, config, metrics)

        elapsed = time.monotonic() - start
        logger.info(f"  processed {name} in {elapsed:.2f} sec.")
        if metrics is not None:
            metrics.add("page_dims", page_dims)
            metrics.add("output_size", [remapped.width, remapped.height])
            metrics.add("total_time", elapsed)

        return DewarpResult(
            name=name,
            remapped=remapped,
            page=page,
            span_count=len(span_points),
            point_count=n_pts,
            params=params,
            page_dims=page_dims,
            optimization=optimization,
            boundary=boundary_to_pixels(boundary, small.shape),
        )

    def process_file(
        self,
        path: str | Path,
        output_dir: str | Path | None = None,
        metrics: MetricsCollector | None = None,
    ) -> Path:
        """Load, dewarp and save one image file.

        Returns:
            Path of the written ``<stem>_thresh.png``.
        """
        path = Path(path)
        logger.info(f"Processing {path.name}")
        image = load_image(path)
        result = self.process(image, path.stem, metrics)
        return result.remapped.save(output_dir if output_dir is not None else path.parent)
