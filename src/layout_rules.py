"""
Layout rule validation for source and measurement points.

Checks any point set (up to two sources F1/F2 plus measurement points
P1..Pn) against the placement rules and reports, per point, which axes are
implicated and why:

  1. Inside the floor polygon, >= margin from every wall, z within
     [margin, height - margin]
  2. No two active points share a rounded x, y or z value
  3. Active sources are >= source_spacing_min apart on each axis and in
     each planar projection (XY, XZ, YZ)
  4. Measurement points are >= source_measurement_min from active sources
  5. Measurement points are >= measurement_spacing_min from each other

Validation is pure and never raises for finite input; an empty report
means the layout passes every rule.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from proximity_index import SpatialHashGrid
from room_geometry import (
    EPS,
    as_point3,
    euclidean,
    grid_key,
    min_edge_distance,
    planar_distances,
    point_in_polygon,
)

logger = logging.getLogger(__name__)

AXES = ("x", "y", "z")


@dataclass
class LayoutRules:
    """Distance and uniqueness limits for acoustic measurement layouts."""

    margin: float = 0.5                      # m, to walls, floor and ceiling
    source_measurement_min: float = 1.0      # m, 3D, source to measurement point
    measurement_spacing_min: float = 0.7     # m, 3D, between measurement points
    source_spacing_min: float = 0.7          # m, per axis and per projection, F1 to F2
    source_z_unique: bool = False            # also forbid sources sharing z with measurement points
    proximity_index_threshold: int = 8       # use the hash grid above this many measurement points

    def __post_init__(self):
        for name in ("margin", "source_measurement_min", "measurement_spacing_min", "source_spacing_min"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative, got {getattr(self, name)}")


@dataclass
class PointMark:
    """Violation flags for one point."""

    x: bool = False
    y: bool = False
    z: bool = False
    messages: List[str] = field(default_factory=list)

    def flag(self, axes: str, message: str) -> None:
        for axis in axes:
            setattr(self, axis, True)
        if message not in self.messages:
            self.messages.append(message)

    @property
    def ok(self) -> bool:
        return not (self.x or self.y or self.z or self.messages)

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "z": self.z, "messages": list(self.messages)}


@dataclass
class ViolationReport:
    """Per-point violation marks, aligned with the validated inputs."""

    sources: List[PointMark] = field(default_factory=list)
    measurements: List[PointMark] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return all(m.ok for m in self.sources) and self.measurements_clean

    @property
    def measurements_clean(self) -> bool:
        return all(m.ok for m in self.measurements)

    @property
    def violation_count(self) -> int:
        return sum(len(m.messages) for m in self.sources + self.measurements)

    def entries(self) -> List[Tuple[str, PointMark]]:
        out = [(source_label(i), m) for i, m in enumerate(self.sources)]
        out.extend((measurement_label(i), m) for i, m in enumerate(self.measurements))
        return out

    def to_dict(self) -> Dict[str, dict]:
        return {label: mark.to_dict() for label, mark in self.entries()}


def source_label(index: int) -> str:
    return f"F{index + 1}"


def measurement_label(index: int) -> str:
    return f"P{index + 1}"


# ─── Validation ──────────────────────────────────────────────────────────────


def validate_layout(
    sources: Sequence[Sequence[float]],
    active: Sequence[bool],
    measurement_points: Sequence[Sequence[float]],
    polygon: Sequence[Sequence[float]],
    height: float,
    rules: Optional[LayoutRules] = None,
) -> ViolationReport:
    """Run every layout rule on a set of sources and measurement points.

    Args:
        sources: Source positions (F1, F2, ...).
        active: Activation flag per source; inactive sources are skipped.
        measurement_points: Measurement positions (P1..Pn).
        polygon: Floor polygon vertices.
        height: Room height.
        rules: Limits (defaults to ``LayoutRules()``).

    Returns:
        ViolationReport with one mark per source and per measurement point.
    """
    if rules is None:
        rules = LayoutRules()

    srcs = [as_point3(s) for s in sources]
    flags = _activation(srcs, active)
    pts = [as_point3(p) for p in measurement_points]

    report = ViolationReport(
        sources=[PointMark() for _ in srcs],
        measurements=[PointMark() for _ in pts],
    )

    # Rule 2: axis uniqueness
    for axis_idx, axis in enumerate(AXES):
        groups: Dict[int, List[PointMark]] = {}
        if axis != "z" or rules.source_z_unique:
            for i, s in enumerate(srcs):
                if flags[i]:
                    groups.setdefault(grid_key(s[axis_idx]), []).append(report.sources[i])
        for i, p in enumerate(pts):
            groups.setdefault(grid_key(p[axis_idx]), []).append(report.measurements[i])
        for members in groups.values():
            if len(members) > 1:
                for mark in members:
                    mark.flag(axis, f"{axis.upper()} repeated")

    # Rule 1: polygon and margins
    for i, s in enumerate(srcs):
        if flags[i]:
            for axes, message in _margin_issues(s, polygon, height, rules):
                report.sources[i].flag(axes, message)
    for i, p in enumerate(pts):
        for axes, message in _margin_issues(p, polygon, height, rules):
            report.measurements[i].flag(axes, message)

    # Rule 3: source-source spacing
    active_idx = [i for i in range(len(srcs)) if flags[i]]
    for a_pos, a in enumerate(active_idx):
        for b in active_idx[a_pos + 1:]:
            for axes, message in _source_pair_issues(srcs[a], srcs[b], a, b, rules):
                report.sources[a].flag(axes, message)
                report.sources[b].flag(axes, message)

    # Rule 4: source-measurement distance
    for i, p in enumerate(pts):
        for s_idx in active_idx:
            d = euclidean(p, srcs[s_idx])
            if d < rules.source_measurement_min - EPS:
                report.measurements[i].flag(
                    "xyz",
                    f"Distance to {source_label(s_idx)} < {rules.source_measurement_min:.1f} m "
                    f"({d:.2f} m)",
                )

    # Rule 5: measurement-measurement spacing
    for i, j, d in _close_measurement_pairs(pts, rules):
        message = (
            f"{measurement_label(i)}-{measurement_label(j)} < "
            f"{rules.measurement_spacing_min:.1f} m ({d:.2f} m)"
        )
        report.measurements[i].flag("xyz", message)
        report.measurements[j].flag("xyz", message)

    logger.debug(
        "Validated %d sources (%d active) and %d measurement points: %d violations",
        len(srcs), len(active_idx), len(pts), report.violation_count,
    )
    return report


def summarize_violations(
    sources: Sequence[Sequence[float]],
    active: Sequence[bool],
    measurement_points: Sequence[Sequence[float]],
    polygon: Sequence[Sequence[float]],
    height: float,
    rules: Optional[LayoutRules] = None,
) -> List[str]:
    """Flat, deduplicated list of issues affecting the measurement points.

    Used as the diagnostic that accompanies an infeasible generation.
    """
    if rules is None:
        rules = LayoutRules()

    srcs = [as_point3(s) for s in sources]
    flags = _activation(srcs, active)
    pts = [as_point3(p) for p in measurement_points]
    out: List[str] = []

    for i, p in enumerate(pts):
        for _, message in _margin_issues(p, polygon, height, rules):
            out.append(f"{measurement_label(i)}: {message}")

    for axis_idx, axis in enumerate(AXES):
        groups: Dict[int, List[str]] = {}
        if axis != "z" or rules.source_z_unique:
            for i, s in enumerate(srcs):
                if flags[i]:
                    groups.setdefault(grid_key(s[axis_idx]), []).append(source_label(i))
        for i, p in enumerate(pts):
            groups.setdefault(grid_key(p[axis_idx]), []).append(measurement_label(i))
        for key, names in groups.items():
            if len(names) > 1:
                out.append(f"{axis.upper()} repeated (= {key / 10.0:.1f}) among {', '.join(names)}")

    for i, p in enumerate(pts):
        for s_idx, s in enumerate(srcs):
            if not flags[s_idx]:
                continue
            d = euclidean(p, s)
            if d < rules.source_measurement_min - EPS:
                out.append(
                    f"{measurement_label(i)} to {source_label(s_idx)} = {d:.2f} < "
                    f"{rules.source_measurement_min:.1f} m"
                )

    for i, j, d in _close_measurement_pairs(pts, rules):
        out.append(
            f"{measurement_label(i)}-{measurement_label(j)} = {d:.2f} < "
            f"{rules.measurement_spacing_min:.1f} m"
        )

    return list(dict.fromkeys(out))


# ─── Individual checks ───────────────────────────────────────────────────────


def _activation(srcs: Sequence, active: Sequence[bool]) -> List[bool]:
    """Activation per source; missing flags count as inactive."""
    flags = [bool(a) for a in active][:len(srcs)]
    return flags + [False] * (len(srcs) - len(flags))


def _margin_issues(
    p: Tuple[float, float, float],
    polygon: Sequence[Sequence[float]],
    height: float,
    rules: LayoutRules,
) -> List[Tuple[str, str]]:
    issues = []
    if not point_in_polygon(p[0], p[1], polygon):
        issues.append(("xy", "Outside polygon (XY)"))
    if min_edge_distance(p[0], p[1], polygon) < rules.margin - EPS:
        issues.append(("xy", f"Closer than {rules.margin:.1f} m to a wall (XY)"))
    if p[2] < rules.margin - EPS or p[2] > height - rules.margin + EPS:
        issues.append(("z", "Z outside margins"))
    return issues


def _source_pair_issues(
    a: Tuple[float, float, float],
    b: Tuple[float, float, float],
    a_idx: int,
    b_idx: int,
    rules: LayoutRules,
) -> List[Tuple[str, str]]:
    limit = rules.source_spacing_min
    pair = f"{source_label(a_idx)}-{source_label(b_idx)}"
    issues = []
    planar = planar_distances(a, b)
    for plane in ("xy", "xz", "yz"):
        d = planar[plane]
        if d < limit - EPS:
            issues.append((plane, f"{pair} < {limit:.1f} m in {plane.upper()} ({d:.2f} m)"))
    for axis_idx, axis in enumerate(AXES):
        d = abs(a[axis_idx] - b[axis_idx])
        if d < limit - EPS:
            issues.append((axis, f"{pair}: |{axis.upper()}| = {d:.2f} < {limit:.1f} m"))
    return issues


def _close_measurement_pairs(
    pts: Sequence[Tuple[float, float, float]],
    rules: LayoutRules,
) -> List[Tuple[int, int, float]]:
    """Measurement pairs closer than the spacing limit, ordered by (i, j)."""
    limit = rules.measurement_spacing_min - EPS
    if limit <= 0:
        return []
    if len(pts) > rules.proximity_index_threshold:
        grid: SpatialHashGrid = SpatialHashGrid(cell_size=rules.measurement_spacing_min)
        grid.extend(pts)
        return [(int(i), int(j), d) for i, j, d in grid.close_pairs(limit)]

    pairs = []
    for i in range(len(pts)):
        for j in range(i + 1, len(pts)):
            d = euclidean(pts[i], pts[j])
            if d < limit:
                pairs.append((i, j, d))
    return pairs
