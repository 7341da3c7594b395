"""
PageDewarp Configuration.

This module contains the configuration dataclass shared by every stage of
the dewarp pipeline, and the logging defaults used by the CLI.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Final

from pagedewarp.utils.exceptions import ConfigurationError

# ============================================================================
# Logging Configuration
# ============================================================================

LOG_LEVEL: int = logging.INFO
LOG_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATEFMT: Final[str] = "%H:%M:%S"

OPTIM_METHODS: Final[tuple[str, ...]] = ("powell", "coordinate", "scipy")
AXIS_METHODS: Final[tuple[str, ...]] = ("weighted", "global")


@dataclass(frozen=True)
class DewarpConfig:
    """Configuration for page dewarping.

    Attributes:
        focal_length: Pinhole focal length in normalised image units
        text_min_width: Minimum blob width in pixels to count as text
        text_min_height: Minimum blob height in pixels
        text_min_aspect: Minimum width/height ratio of a text blob
        text_max_thickness: Maximum column thickness of a text blob in pixels
        adaptive_winsz: Window size for adaptive thresholding
        edge_max_overlap: Maximum horizontal overlap of two linked contours
        edge_max_length: Maximum gap between two linked contours
        edge_angle_cost: Cost of angle deviation relative to gap length
        edge_max_angle: Maximum angle change between linked contours (degrees)
        span_min_width: Minimum total width of a kept span
        span_px_per_step: Pixel spacing between span samples
        min_spans: Spans required before falling back to line detection
        screen_max_w: Working image width limit
        screen_max_h: Working image height limit
        page_margin_x: Horizontal page margin ignored by detection
        page_margin_y: Vertical page margin ignored by detection
        optim_max_iter: Outer iteration cap of the global optimiser
        optim_tol: Objective change that counts as converged
        optim_method: Optimiser strategy (powell, coordinate, scipy)
        optim_timeout: Wall-clock budget of the global optimiser in seconds
        axis_method: Page axis estimator (weighted, global)
        pose_max_iter: Iteration cap of the pose refinement
        pose_tol: Error tolerance of the pose refinement
        output_zoom: Output size relative to the page height
        output_dpi: Resolution recorded in the output file
        remap_decimate: Downscale factor of the remap grid
        no_binary: Skip thresholding of the remapped page
        max_output_dim: Largest permitted output side in pixels
        metrics_path: Where to write the diagnostic snapshot, if anywhere
    """

    # === Camera ===
    focal_length: float = 1.2

    # === Contour Detection ===
    text_min_width: int = 15
    text_min_height: int = 2
    text_min_aspect: float = 1.5
    text_max_thickness: int = 10
    adaptive_winsz: int = 55

    # === Span Assembly ===
    edge_max_overlap: float = 1.0
    edge_max_length: float = 100.0
    edge_angle_cost: float = 10.0
    edge_max_angle: float = 7.5
    span_min_width: float = 30.0
    span_px_per_step: int = 20
    min_spans: int = 3

    # === Image ===
    screen_max_w: int = 1280
    screen_max_h: int = 700
    page_margin_x: int = 50
    page_margin_y: int = 20

    # === Optimisation ===
    optim_max_iter: int = 60
    optim_tol: float = 1e-6
    optim_method: str = "powell"
    optim_timeout: float | None = None
    axis_method: str = "weighted"
    pose_max_iter: int = 20
    pose_tol: float = 1e-5

    # === Output ===
    output_zoom: float = 1.0
    output_dpi: int = 300
    remap_decimate: int = 16
    no_binary: bool = False
    max_output_dim: int = 3000

    # === Debug ===
    metrics_path: Path | None = None

    def __post_init__(self) -> None:
        if self.focal_length <= 0:
            raise ConfigurationError("focal_length", "must be positive")
        if self.adaptive_winsz < 3 or self.adaptive_winsz % 2 == 0:
            raise ConfigurationError("adaptive_winsz", "must be an odd number >= 3")
        if self.span_px_per_step < 1:
            raise ConfigurationError("span_px_per_step", "must be at least 1")
        if self.remap_decimate < 1:
            raise ConfigurationError("remap_decimate", "must be at least 1")
        if self.optim_max_iter < 1:
            raise ConfigurationError("optim_max_iter", "must be at least 1")
        if self.optim_tol <= 0:
            raise ConfigurationError("optim_tol", "must be positive")
        if self.optim_method not in OPTIM_METHODS:
            raise ConfigurationError(
                "optim_method", f"expected one of {', '.join(OPTIM_METHODS)}"
            )
        if self.optim_timeout is not None and self.optim_timeout <= 0:
            raise ConfigurationError("optim_timeout", "must be positive")
        if self.axis_method not in AXIS_METHODS:
            raise ConfigurationError(
                "axis_method", f"expected one of {', '.join(AXIS_METHODS)}"
            )

    def update(self, **overrides: Any) -> DewarpConfig:
        """Return a copy with the given fields replaced."""
        known = {f.name for f in fields(self)}
        for key in overrides:
            if key not in known:
                raise ConfigurationError(key, "unknown setting")
        return replace(self, **overrides)

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> DewarpConfig:
        """Build a config from a mapping, ignoring keys set to None."""
        return cls().update(**{k: v for k, v in values.items() if v is not None})
