"""Span assembly for text line analysis.

Links detected text contours into left-to-right chains ("spans"), one per
text line, and samples keypoints along them:
- Candidate edges between every contour pair, scored by gap + angle change
- Greedy matching on ascending score, at most one link in and out per contour
- Chains walked from their root, short chains discarded
- Keypoints sampled along spans at regular horizontal steps

Contours live in an arena (a list ordered by bounding box) and link to
each other through integer indices, so a chain can be walked in O(1) per
step without shared references.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

from pagedewarp.config import DewarpConfig
from pagedewarp.utils.coords import pix2norm
from pagedewarp.utils.metrics import MetricsCollector

logger = logging.getLogger(__name__)


# ── Contour record ───────────────────────────────────────────────────────────


class ContourRecord:
    """Geometric and orientation data about a single text contour."""

    __slots__ = (
        "center",
        "tangent",
        "angle",
        "local_range",
        "point0",
        "point1",
        "rect",
        "mask",
        "pred",
        "succ",
    )

    def __init__(
        self,
        center: np.ndarray,
        tangent: np.ndarray,
        local_range: tuple[float, float],
        rect: tuple[int, int, int, int] = (0, 0, 0, 0),
        mask: np.ndarray | None = None,
    ) -> None:
        self.center = np.asarray(center, dtype=np.float64).reshape(2)
        self.tangent = np.asarray(tangent, dtype=np.float64).reshape(2)
        self.angle: float = float(np.arctan2(self.tangent[1], self.tangent[0]))
        lxmin, lxmax = float(local_range[0]), float(local_range[1])
        self.local_range: tuple[float, float] = (lxmin, lxmax)
        self.point0: np.ndarray = self.center + self.tangent * lxmin
        self.point1: np.ndarray = self.center + self.tangent * lxmax
        self.rect = tuple(int(v) for v in rect)
        self.mask = mask
        self.pred: int | None = None
        self.succ: int | None = None

    @classmethod
    def from_points(
        cls,
        points: np.ndarray,
        center: np.ndarray,
        tangent: np.ndarray,
        rect: tuple[int, int, int, int] = (0, 0, 0, 0),
        mask: np.ndarray | None = None,
    ) -> ContourRecord:
        """Build a record whose extent is the projection of ``points`` on the tangent."""
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        clx = (pts - np.asarray(center, dtype=np.float64)) @ np.asarray(tangent, dtype=np.float64)
        return cls(center, tangent, (float(clx.min()), float(clx.max())), rect, mask)

    @property
    def width(self) -> float:
        """Extent of the contour along its own tangent."""
        return self.local_range[1] - self.local_range[0]

    def proj_x(self, point: np.ndarray) -> float:
        """Scalar projection of a point onto this contour's tangent axis."""
        return float(np.dot(self.tangent, np.asarray(point).flatten() - self.center))

    def local_overlap(self, other: ContourRecord) -> float:
        """Measure horizontal overlap in local tangent coordinates."""
        xmin = self.proj_x(other.point0)
        xmax = self.proj_x(other.point1)
        return min(self.local_range[1], xmax) - max(self.local_range[0], xmin)

    def unlinked_copy(self) -> ContourRecord:
        """Copy with the chain links cleared; arrays are shared."""
        rec = ContourRecord.__new__(ContourRecord)
        for name in self.__slots__:
            setattr(rec, name, getattr(self, name))
        rec.pred = None
        rec.succ = None
        return rec

    def __repr__(self) -> str:
        return (
            f"ContourRecord(center=({self.center[0]:.1f}, {self.center[1]:.1f}), "
            f"angle={np.degrees(self.angle):.1f}, width={self.width:.1f})"
        )


# ── Assembly statistics ──────────────────────────────────────────────────────


@dataclass
class _RunningMetric:
    total: float = 0.0
    minimum: float = float("inf")
    maximum: float = float("-inf")
    count: int = 0

    def add(self, value: float) -> None:
        self.total += value
        self.minimum = min(self.minimum, value)
        self.maximum = max(self.maximum, value)
        self.count += 1

    def summary(self) -> dict[str, float | None]:
        if not self.count:
            return {"average": None, "min": None, "max": None}
        return {"average": self.total / self.count, "min": self.minimum, "max": self.maximum}


@dataclass
class AssemblyStats:
    """Counters describing one span assembly pass."""

    candidate_pairs: int = 0
    valid_edges: int = 0
    committed_edges: int = 0
    rejection_breakdown: dict[str, int] = field(
        default_factory=lambda: {"distance": 0, "overlap": 0, "angle": 0, "cycle": 0}
    )
    linked_contours: int = 0
    span_sizes: list[int] = field(default_factory=list)
    span_widths: list[float] = field(default_factory=list)
    discarded_spans: int = 0
    distance: _RunningMetric = field(default_factory=_RunningMetric)
    overlap: _RunningMetric = field(default_factory=_RunningMetric)
    angle: _RunningMetric = field(default_factory=_RunningMetric)

    def as_dict(self) -> dict:
        return {
            "candidate_pairs": self.candidate_pairs,
            "valid_edges": self.valid_edges,
            "committed_edges": self.committed_edges,
            "rejection_breakdown": dict(self.rejection_breakdown),
            "linked_contours": self.linked_contours,
            "span_sizes": list(self.span_sizes),
            "span_widths": list(self.span_widths),
            "discarded_spans": self.discarded_spans,
            "accepted_metrics": {
                "distance": self.distance.summary(),
                "overlap": self.overlap.summary(),
                "angle": self.angle.summary(),
            },
        }


@dataclass
class SpanAssembly:
    """Result of span assembly.

    Attributes:
        records: Arena of contours in assembly order, with ``pred``/``succ``
            set to indices into this list.
        spans: Each span is the ordered list of arena indices, root first.
        stats: Edge and span counters for diagnostics.
    """

    records: list[ContourRecord]
    spans: list[list[int]]
    stats: AssemblyStats

    def span_records(self) -> list[list[ContourRecord]]:
        return [[self.records[i] for i in span] for span in self.spans]

    def __len__(self) -> int:
        return len(self.spans)


# ── Span assembly ────────────────────────────────────────────────────────────


def _angle_dist(angle_b: float, angle_a: float) -> float:
    """Compute angular distance between two angles."""
    diff = angle_b - angle_a
    while diff > np.pi:
        diff -= 2 * np.pi
    while diff < -np.pi:
        diff += 2 * np.pi
    return abs(diff)


def _sort_key(record: ContourRecord) -> tuple[int, int, int, int]:
    x, y, w, h = record.rect
    return (y, x, w, h)


def _generate_candidate_edge(
    records: list[ContourRecord],
    idx_a: int,
    idx_b: int,
    config: DewarpConfig,
    stats: AssemblyStats,
) -> tuple[float, int, int] | None:
    """Generate a candidate edge between two contours, scored by proximity + angle.

    Returns (score, left_index, right_index) or None if the pair is invalid.
    """
    cinfo_a, cinfo_b = records[idx_a], records[idx_b]
    # Ensure a is to the left of b
    if cinfo_a.point0[0] > cinfo_b.point1[0]:
        idx_a, idx_b = idx_b, idx_a
        cinfo_a, cinfo_b = cinfo_b, cinfo_a

    x_overlap_a = cinfo_a.local_overlap(cinfo_b)
    x_overlap_b = cinfo_b.local_overlap(cinfo_a)

    overall_tangent = cinfo_b.center - cinfo_a.center
    overall_angle = float(np.arctan2(overall_tangent[1], overall_tangent[0]))

    delta_angle = (
        max(
            _angle_dist(cinfo_a.angle, overall_angle),
            _angle_dist(cinfo_b.angle, overall_angle),
        )
        * 180
        / np.pi
    )

    x_overlap = max(x_overlap_a, x_overlap_b)
    dist = float(np.linalg.norm(cinfo_b.point0 - cinfo_a.point1))

    if dist > config.edge_max_length:
        stats.rejection_breakdown["distance"] += 1
        return None
    if x_overlap > config.edge_max_overlap:
        stats.rejection_breakdown["overlap"] += 1
        return None
    if delta_angle > config.edge_max_angle:
        stats.rejection_breakdown["angle"] += 1
        return None

    stats.distance.add(dist)
    stats.overlap.add(x_overlap)
    stats.angle.add(delta_angle)

    score = dist + delta_angle * config.edge_angle_cost
    return (score, idx_a, idx_b)


def _closes_cycle(records: list[ContourRecord], idx_a: int, idx_b: int) -> bool:
    """True if linking a -> b would let b's chain lead back to a."""
    cur: int | None = idx_b
    while cur is not None:
        if cur == idx_a:
            return True
        cur = records[cur].succ
    return False


def _link_contours(
    records: list[ContourRecord],
    candidate_edges: list[tuple[float, int, int]],
    stats: AssemblyStats,
) -> None:
    # Stable sort: equal scores keep discovery order
    candidate_edges.sort(key=lambda e: e[0])

    # Each contour can have at most one predecessor and one successor
    for _, idx_a, idx_b in candidate_edges:
        cinfo_a, cinfo_b = records[idx_a], records[idx_b]
        if cinfo_a.succ is not None or cinfo_b.pred is not None:
            continue
        if _closes_cycle(records, idx_a, idx_b):
            stats.rejection_breakdown["cycle"] += 1
            continue
        cinfo_a.succ = idx_b
        cinfo_b.pred = idx_a
        stats.committed_edges += 1


def _extract_spans(
    records: list[ContourRecord], config: DewarpConfig, stats: AssemblyStats
) -> list[list[int]]:
    """Walk every chain once from its root, keeping the wide ones."""
    spans: list[list[int]] = []
    visited = [False] * len(records)

    for start in range(len(records)):
        if visited[start]:
            continue

        # Walk to head of chain
        idx = start
        while records[idx].pred is not None:
            idx = records[idx].pred

        cur_span: list[int] = []
        width = 0.0
        cur: int | None = idx
        while cur is not None:
            visited[cur] = True
            cur_span.append(cur)
            width += records[cur].width
            cur = records[cur].succ

        if width > config.span_min_width:
            spans.append(cur_span)
            stats.span_widths.append(width)
            stats.span_sizes.append(len(cur_span))
        else:
            stats.discarded_spans += 1

    return spans


def assemble_spans(
    records: list[ContourRecord],
    config: DewarpConfig,
    metrics: MetricsCollector | None = None,
) -> SpanAssembly:
    """Assemble contours into horizontal text spans using greedy graph matching.

    A 'span' is a left-to-right chain of contours forming a text line or
    partial text line. The input records are not modified; the returned
    arena holds linked copies sorted by bounding box ``(y, x, w, h)``.

    Args:
        records: Contours from the detector.
        config: Edge and span thresholds.
        metrics: Optional collector receiving ``span_assembly`` statistics.

    Returns:
        SpanAssembly with the arena, the kept spans and statistics.
    """
    arena = [rec.unlinked_copy() for rec in sorted(records, key=_sort_key)]
    stats = AssemblyStats()

    # Generate all candidate edges
    candidate_edges: list[tuple[float, int, int]] = []
    for i in range(len(arena)):
        for j in range(i):
            stats.candidate_pairs += 1
            edge = _generate_candidate_edge(arena, i, j, config, stats)
            if edge is not None:
                candidate_edges.append(edge)
                stats.valid_edges += 1

    _link_contours(arena, candidate_edges, stats)
    stats.linked_contours = sum(1 for rec in arena if rec.pred is not None or rec.succ is not None)

    spans = _extract_spans(arena, config, stats)

    logger.debug(
        f"Span assembly: {len(arena)} contours, {stats.valid_edges}/{stats.candidate_pairs} "
        f"edges valid, {len(spans)} spans kept"
    )
    if metrics is not None:
        metrics.add("span_assembly", stats.as_dict())

    return SpanAssembly(records=arena, spans=spans, stats=stats)


# ── Span sampling ────────────────────────────────────────────────────────────


def _column_means(mask: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Vertical centroid of each mask column, and which columns are non-empty."""
    yvals = np.arange(mask.shape[0]).reshape((-1, 1))
    totals = (yvals * mask).sum(axis=0)
    col_sums = mask.sum(axis=0)
    valid = col_sums > 0
    means = np.zeros(totals.shape, dtype=np.float64)
    means[valid] = totals[valid] / col_sums[valid]
    return means, valid


def sample_spans(
    shape: tuple[int, ...],
    assembly: SpanAssembly,
    config: DewarpConfig,
    metrics: MetricsCollector | None = None,
) -> list[np.ndarray]:
    """Sample keypoints along spans at regular intervals.

    Within each contour's bounding rectangle, measures the vertical centroid
    of the mask at horizontal steps.

    Returns:
        List of arrays, each containing sampled points for one span
        in normalised coordinates, shape (N, 2) where columns are (x, y).
    """
    step = config.span_px_per_step
    span_points: list[np.ndarray] = []
    for span in assembly.span_records():
        contour_points: list[tuple[float, float]] = []
        for cinfo in span:
            if cinfo.mask is None:
                continue
            means, valid = _column_means(cinfo.mask)
            if not np.any(valid):
                continue

            xmin, ymin = cinfo.rect[:2]
            start = ((len(means) - 1) % step) // 2
            contour_points.extend(
                (x + xmin, means[x] + ymin) for x in range(start, len(means), step) if valid[x]
            )

        if contour_points:
            pts = np.array(contour_points, dtype=np.float64)
            span_points.append(pix2norm(shape, pts))

    if metrics is not None:
        metrics.add("sampled_span_counts", [len(p) for p in span_points])

    return span_points
