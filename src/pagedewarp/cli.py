#!/usr/bin/env python3
"""
PageDewarp CLI: flatten photographed book pages from the terminal.

Usage:
    python -m pagedewarp <image> [<image> ...] [options]

Examples:
    # Dewarp one page, output next to the input
    pagedewarp page.jpg

    # Several pages into a directory, keep grayscale output
    pagedewarp scans/*.jpg -o flat/ --no-binary

    # Tighter optimisation with diagnostics
    pagedewarp page.jpg --optim-max-iter 120 --metrics debug/page.json -v
"""

import argparse
import logging
import sys
import time
from pathlib import Path

from pagedewarp.config import (
    AXIS_METHODS,
    LOG_DATEFMT,
    LOG_FORMAT,
    LOG_LEVEL,
    OPTIM_METHODS,
    DewarpConfig,
)
from pagedewarp.utils.exceptions import PageDewarpError
from pagedewarp.utils.metrics import MetricsCollector

# ---------------------------------------------------------------------------
# Argument parser construction
# ---------------------------------------------------------------------------

# CLI destination -> DewarpConfig field
_CONFIG_OPTIONS: dict[str, str] = {
    "focal_length": "focal_length",
    "x_margin": "page_margin_x",
    "y_margin": "page_margin_y",
    "min_text_width": "text_min_width",
    "min_text_height": "text_min_height",
    "min_text_aspect": "text_min_aspect",
    "max_text_thickness": "text_max_thickness",
    "adaptive_winsz": "adaptive_winsz",
    "min_span_width": "span_min_width",
    "span_spacing": "span_px_per_step",
    "max_edge_overlap": "edge_max_overlap",
    "max_edge_length": "edge_max_length",
    "edge_angle_cost": "edge_angle_cost",
    "max_edge_angle": "edge_max_angle",
    "optim_max_iter": "optim_max_iter",
    "optim_tol": "optim_tol",
    "optim_method": "optim_method",
    "optim_timeout": "optim_timeout",
    "axis_method": "axis_method",
    "output_zoom": "output_zoom",
    "output_dpi": "output_dpi",
    "max_screen_width": "screen_max_w",
    "max_screen_height": "screen_max_h",
}


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    defaults = DewarpConfig()
    p = argparse.ArgumentParser(
        prog="pagedewarp",
        description="PageDewarp: flatten curved book pages using text lines.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p.add_argument("inputs", nargs="+", type=Path, help="Input images")
    p.add_argument("-o", "--output-dir", type=Path, help="Output directory (default: input's)")
    p.add_argument("-v", "--verbose", action="store_true", help="Verbose logging (DEBUG)")
    p.add_argument("--metrics", type=Path, help="Write diagnostic metrics to this JSON file")

    # --- camera / page ---
    geo = p.add_argument_group("Page geometry")
    geo.add_argument(
        "--focal-length",
        type=float,
        help=f"Normalised focal length (default: {defaults.focal_length})",
    )
    geo.add_argument(
        "--x-margin", type=int, help=f"Horizontal page margin in px (default: {defaults.page_margin_x})"
    )
    geo.add_argument(
        "--y-margin", type=int, help=f"Vertical page margin in px (default: {defaults.page_margin_y})"
    )
    geo.add_argument(
        "--axis-method",
        choices=AXIS_METHODS,
        help=f"Page axis estimator (default: {defaults.axis_method})",
    )

    # --- contour detection ---
    det = p.add_argument_group("Contour detection")
    det.add_argument(
        "--min-text-width", type=int, help=f"Minimum text blob width (default: {defaults.text_min_width})"
    )
    det.add_argument(
        "--min-text-height",
        type=int,
        help=f"Minimum text blob height (default: {defaults.text_min_height})",
    )
    det.add_argument(
        "--min-text-aspect",
        type=float,
        help=f"Minimum text blob aspect ratio (default: {defaults.text_min_aspect})",
    )
    det.add_argument(
        "--max-text-thickness",
        type=int,
        help=f"Maximum text blob thickness (default: {defaults.text_max_thickness})",
    )
    det.add_argument(
        "--adaptive-winsz",
        type=int,
        help=f"Adaptive threshold window size (default: {defaults.adaptive_winsz})",
    )
    det.add_argument(
        "--max-screen-width",
        type=int,
        help=f"Working image width limit (default: {defaults.screen_max_w})",
    )
    det.add_argument(
        "--max-screen-height",
        type=int,
        help=f"Working image height limit (default: {defaults.screen_max_h})",
    )

    # --- span assembly ---
    spans = p.add_argument_group("Span assembly")
    spans.add_argument(
        "--min-span-width", type=float, help=f"Minimum span width (default: {defaults.span_min_width})"
    )
    spans.add_argument(
        "--span-spacing",
        type=int,
        help=f"Pixels between span samples (default: {defaults.span_px_per_step})",
    )
    spans.add_argument(
        "--max-edge-overlap",
        type=float,
        help=f"Maximum contour overlap (default: {defaults.edge_max_overlap})",
    )
    spans.add_argument(
        "--max-edge-length",
        type=float,
        help=f"Maximum contour gap (default: {defaults.edge_max_length})",
    )
    spans.add_argument(
        "--edge-angle-cost",
        type=float,
        help=f"Cost of angle change vs. gap (default: {defaults.edge_angle_cost})",
    )
    spans.add_argument(
        "--max-edge-angle",
        type=float,
        help=f"Maximum angle change in degrees (default: {defaults.edge_max_angle})",
    )

    # --- optimisation ---
    opt = p.add_argument_group("Optimisation")
    opt.add_argument(
        "--optim-max-iter",
        type=int,
        help=f"Optimiser iteration cap (default: {defaults.optim_max_iter})",
    )
    opt.add_argument(
        "--optim-tol", type=float, help=f"Optimiser tolerance (default: {defaults.optim_tol})"
    )
    opt.add_argument(
        "--optim-method",
        choices=OPTIM_METHODS,
        help=f"Optimiser strategy (default: {defaults.optim_method})",
    )
    opt.add_argument(
        "--optim-timeout", type=float, help="Optimiser wall-clock budget in seconds (default: none)"
    )

    # --- output ---
    out = p.add_argument_group("Output")
    out.add_argument(
        "--output-zoom", type=float, help=f"Output zoom factor (default: {defaults.output_zoom})"
    )
    out.add_argument(
        "--output-dpi", type=int, help=f"Output resolution in DPI (default: {defaults.output_dpi})"
    )
    out.add_argument(
        "--no-binary", action="store_true", help="Skip thresholding, keep grayscale output"
    )
    return p


def _metrics_file(metrics_path: Path, image_path: Path, n_inputs: int) -> Path:
    """One metrics file per image when several images are processed."""
    if n_inputs == 1:
        return metrics_path
    return metrics_path.with_name(f"{metrics_path.stem}_{image_path.stem}{metrics_path.suffix}")


def config_from_args(args: argparse.Namespace) -> DewarpConfig:
    """Build a DewarpConfig from the options that were given."""
    values = {field: getattr(args, dest) for dest, field in _CONFIG_OPTIONS.items()}
    values["no_binary"] = args.no_binary or None
    values["metrics_path"] = args.metrics
    return DewarpConfig.from_dict(values)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Configure logging
    level = logging.DEBUG if args.verbose else LOG_LEVEL
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
    logger = logging.getLogger("pagedewarp.cli")

    try:
        config = config_from_args(args)
    except PageDewarpError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    import cv2

    from pagedewarp.services.pipeline import DewarpPipeline

    pipeline = DewarpPipeline(config)
    metrics = MetricsCollector() if config.metrics_path else None

    failures = 0
    start = time.time()
    for path in args.inputs:
        if metrics is not None:
            metrics.reset()
        try:
            outfile = pipeline.process_file(path, args.output_dir, metrics)
        except PageDewarpError as e:
            logger.error(f"Skipping {path}: {e}")
            failures += 1
            continue
        except (ValueError, cv2.error) as e:
            logger.exception(f"Skipping {path}: unexpected failure: {e}")
            failures += 1
            continue
        finally:
            if metrics is not None:
                metrics.save(_metrics_file(config.metrics_path, path, len(args.inputs)))
        print(f"{path} -> {outfile}")

    logger.info(
        f"Processed {len(args.inputs) - failures}/{len(args.inputs)} images "
        f"in {time.time() - start:.1f}s"
    )

    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
