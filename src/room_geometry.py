"""
Core geometry types for measurement-point planning.

Built on Shapely for polygon containment, wall distance, area and validity,
with NumPy arrays for batches of points. Provides the Enclosure (floor
polygon + height), SourcePoint (F1/F2 emitters with an active flag) and the
small set of distance helpers shared by the other planning modules.

All coordinates live on a 0.1 m grid. ``grid_key`` maps a coordinate to an
integer so equality/uniqueness checks never depend on float noise.
"""
import math
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np
import shapely
from shapely.geometry import Polygon

EPS = 1e-9
GRID_STEP = 0.1

Point2 = Tuple[float, float]
Point3 = Tuple[float, float, float]


class EnclosureConfigError(ValueError):
    """Structurally invalid enclosure (not a geometric infeasibility)."""
    pass


def round01(value: float) -> float:
    """Round a coordinate to one decimal place."""
    return round(float(value) * 10.0) / 10.0


def grid_key(value: float) -> int:
    """Integer key of a coordinate on the 0.1 grid (for uniqueness checks)."""
    return int(round(float(value) * 10.0))


def as_point3(p: Sequence[float]) -> Point3:
    return (float(p[0]), float(p[1]), float(p[2]))


# ─── Enclosure / sources ─────────────────────────────────────────────────────


@dataclass
class Enclosure:
    """Room volume: a simple floor polygon extruded to ``height``."""

    vertices: List[Point2]
    height: float

    def __post_init__(self):
        self.vertices = [(float(x), float(y)) for x, y in self.vertices]
        self.height = float(self.height)

    @property
    def area(self) -> float:
        return polygon_area(self.vertices)

    @property
    def volume(self) -> float:
        return self.area * self.height

    def to_polygon(self) -> Polygon:
        return Polygon(self.vertices)

    def is_simple(self) -> bool:
        """True when the polygon does not self-intersect (informational only)."""
        return is_simple_polygon(self.vertices)

    def validate(self) -> None:
        """Fail fast on structural misconfiguration.

        Raises:
            EnclosureConfigError: fewer than 3 vertices, non-finite values,
                non-positive height or zero polygon area.
        """
        check_enclosure(self.vertices, self.height)


@dataclass
class SourcePoint:
    """A fixed emitter location. Inactive sources are ignored by every rule."""

    label: str
    position: Point3
    active: bool = True

    def __post_init__(self):
        self.position = as_point3(self.position)


def check_enclosure(vertices: Sequence[Sequence[float]], height: float) -> None:
    """Raise EnclosureConfigError when the enclosure cannot be planned at all."""
    if len(vertices) < 3:
        raise EnclosureConfigError(
            f"Enclosure polygon needs at least 3 vertices, got {len(vertices)}"
        )
    coords = np.asarray(vertices, dtype=float)
    if coords.ndim != 2 or coords.shape[1] != 2:
        raise EnclosureConfigError("Enclosure vertices must be (x, y) pairs")
    if not np.all(np.isfinite(coords)):
        raise EnclosureConfigError("Enclosure vertices must be finite numbers")
    if not math.isfinite(float(height)) or float(height) <= 0.0:
        raise EnclosureConfigError(f"Enclosure height must be positive, got {height}")
    if polygon_area(vertices) <= EPS:
        raise EnclosureConfigError("Enclosure polygon has zero area")


# ─── Polygon helpers ─────────────────────────────────────────────────────────


def polygon_area(vertices: Sequence[Sequence[float]]) -> float:
    """Unsigned polygon area (0.0 for fewer than 3 vertices)."""
    if len(vertices) < 3:
        return 0.0
    return float(Polygon(vertices).area)


def point_in_polygon(x: float, y: float, vertices: Sequence[Sequence[float]]) -> bool:
    """Containment test for a single point.

    Points exactly on an edge count as outside; callers combine this with
    an edge-distance margin so the boundary never matters.
    """
    return bool(points_in_polygon(np.array([[x, y]], dtype=float), vertices)[0])


def points_in_polygon(xy: np.ndarray, vertices: Sequence[Sequence[float]]) -> np.ndarray:
    """Vectorized containment for an (N, 2) array of points."""
    xy = np.asarray(xy, dtype=float).reshape(-1, 2)
    if len(vertices) < 3 or len(xy) == 0:
        return np.zeros(len(xy), dtype=bool)
    outline = Polygon(vertices)
    return np.asarray(shapely.contains_xy(outline, xy[:, 0], xy[:, 1]), dtype=bool)


def _outline_boundary(vertices: Sequence[Sequence[float]]):
    """Closed boundary of the vertex ring (a Point for a single vertex)."""
    ring = np.asarray(vertices, dtype=float).reshape(-1, 2)
    if len(ring) == 1:
        return shapely.points(ring[0])
    return shapely.linestrings(np.vstack([ring, ring[:1]]))


def wall_distances(xy: np.ndarray, vertices: Sequence[Sequence[float]]) -> np.ndarray:
    """Distance from each (x, y) point to the nearest polygon edge.

    Args:
        xy: (N, 2) points.
        vertices: Polygon ring (implicitly closed).

    Returns:
        (N,) distances; inf when there are no vertices.
    """
    xy = np.asarray(xy, dtype=float).reshape(-1, 2)
    if len(vertices) == 0:
        return np.full(len(xy), np.inf)
    if len(xy) == 0:
        return np.zeros(0, dtype=float)
    boundary = _outline_boundary(vertices)
    return np.asarray(shapely.distance(boundary, shapely.points(xy)), dtype=float)


def min_edge_distance(x: float, y: float, vertices: Sequence[Sequence[float]]) -> float:
    """Minimum distance from (x, y) to any polygon edge."""
    return float(wall_distances(np.array([[x, y]], dtype=float), vertices)[0])


def polygon_bounds(vertices: Sequence[Sequence[float]], include_origin: bool = True) -> Tuple[float, float, float, float]:
    """Axis-aligned (minx, miny, maxx, maxy), optionally extended to the origin."""
    ring = np.asarray(vertices, dtype=float).reshape(-1, 2)
    minx, miny = ring.min(axis=0)
    maxx, maxy = ring.max(axis=0)
    if include_origin:
        minx, miny = min(minx, 0.0), min(miny, 0.0)
        maxx, maxy = max(maxx, 0.0), max(maxy, 0.0)
    return float(minx), float(miny), float(maxx), float(maxy)


def is_simple_polygon(vertices: Sequence[Sequence[float]]) -> bool:
    if len(vertices) < 3:
        return False
    return bool(shapely.is_valid(Polygon(vertices)))


# ─── Point distances ─────────────────────────────────────────────────────────


def euclidean(a: Sequence[float], b: Sequence[float]) -> float:
    dx = float(a[0]) - float(b[0])
    dy = float(a[1]) - float(b[1])
    dz = float(a[2]) - float(b[2])
    return math.sqrt(dx * dx + dy * dy + dz * dz)


def planar_distances(a: Sequence[float], b: Sequence[float]) -> dict:
    """Distances between the XY, XZ and YZ projections of two points."""
    dx = float(a[0]) - float(b[0])
    dy = float(a[1]) - float(b[1])
    dz = float(a[2]) - float(b[2])
    return {
        "xy": math.hypot(dx, dy),
        "xz": math.hypot(dx, dz),
        "yz": math.hypot(dy, dz),
    }


def min_distance_to_set(points: np.ndarray, anchors: np.ndarray) -> np.ndarray:
    """Minimum distance from each of ``points`` to ``anchors`` (inf if none)."""
    points = np.asarray(points, dtype=float).reshape(-1, 3)
    anchors = np.asarray(anchors, dtype=float).reshape(-1, 3)
    if len(anchors) == 0:
        return np.full(len(points), np.inf)
    diff = points[:, None, :] - anchors[None, :, :]
    return np.sqrt((diff ** 2).sum(axis=2)).min(axis=1)
