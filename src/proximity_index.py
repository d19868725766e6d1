"""
Uniform hash grid for bounded-cost neighbour queries.

Cell size equals the minimum point-to-point separation, so any pair closer
than that separation sits in the same or an adjacent cell. A query only
inspects the 3x3x3 block around the query point's cell.
"""
import math
from typing import Dict, Generic, Hashable, Iterable, List, Sequence, Tuple, TypeVar

import numpy as np

from room_geometry import Point3, as_point3, euclidean

T = TypeVar("T", bound=Hashable)

CellKey = Tuple[int, int, int]

_NEIGHBOUR_OFFSETS = [
    (dx, dy, dz)
    for dx in (-1, 0, 1)
    for dy in (-1, 0, 1)
    for dz in (-1, 0, 1)
]


class SpatialHashGrid(Generic[T]):
    """Hash grid mapping cell keys to the items stored in that cell."""

    def __init__(self, cell_size: float = 0.7):
        if cell_size <= 0:
            raise ValueError(f"cell_size must be positive, got {cell_size}")
        self.cell_size = float(cell_size)
        self._cells: Dict[CellKey, List[Tuple[T, Point3]]] = {}
        self._count = 0

    def __len__(self) -> int:
        return self._count

    def cell_key(self, point: Sequence[float]) -> CellKey:
        c = self.cell_size
        return (
            int(math.floor(float(point[0]) / c)),
            int(math.floor(float(point[1]) / c)),
            int(math.floor(float(point[2]) / c)),
        )

    def insert(self, item: T, point: Sequence[float]) -> None:
        p = as_point3(point)
        self._cells.setdefault(self.cell_key(p), []).append((item, p))
        self._count += 1

    def extend(self, points: Iterable[Sequence[float]]) -> None:
        """Insert points keyed by their enumeration index."""
        for idx, p in enumerate(points, start=self._count):
            self.insert(idx, p)

    def query(self, point: Sequence[float]) -> List[Tuple[T, Point3]]:
        """All stored (item, point) pairs in the 27 cells around ``point``."""
        kx, ky, kz = self.cell_key(point)
        out: List[Tuple[T, Point3]] = []
        for dx, dy, dz in _NEIGHBOUR_OFFSETS:
            bucket = self._cells.get((kx + dx, ky + dy, kz + dz))
            if bucket:
                out.extend(bucket)
        return out

    def neighbors_within(self, point: Sequence[float], radius: float) -> List[Tuple[T, float]]:
        """Items strictly closer than ``radius`` (radius <= cell_size)."""
        if radius > self.cell_size + 1e-12:
            raise ValueError(
                f"radius {radius} exceeds cell_size {self.cell_size}; "
                "neighbours outside the 3x3x3 block would be missed"
            )
        out = []
        for item, p in self.query(point):
            d = euclidean(point, p)
            if d < radius:
                out.append((item, d))
        return out

    def nearest_distance(self, point: Sequence[float]) -> float:
        """Distance to the closest stored point within one cell-width, else inf."""
        best = math.inf
        for _, p in self.query(point):
            best = min(best, euclidean(point, p))
        return best if best <= self.cell_size else math.inf

    def close_pairs(self, radius: float) -> List[Tuple[T, T, float]]:
        """Every stored pair closer than ``radius``, each pair reported once.

        Pairs are ordered by item (integer ids first), so the output is
        deterministic regardless of bucket order.
        """
        if radius > self.cell_size + 1e-12:
            raise ValueError(f"radius {radius} exceeds cell_size {self.cell_size}")
        order: Dict[T, int] = {}
        entries: List[Tuple[T, Point3]] = []
        for bucket in self._cells.values():
            entries.extend(bucket)
        for rank, (item, _) in enumerate(sorted(entries, key=lambda e: _sort_key(e[0]))):
            order[item] = rank

        pairs = []
        for item, p in entries:
            for other, q in self.query(p):
                if order[other] <= order[item]:
                    continue
                d = euclidean(p, q)
                if d < radius:
                    pairs.append((item, other, d))
        pairs.sort(key=lambda t: (order[t[0]], order[t[1]]))
        return pairs


def _sort_key(item):
    return (0, item) if isinstance(item, (int, np.integer)) else (1, str(item))


def build_index(points: Iterable[Sequence[float]], cell_size: float = 0.7) -> SpatialHashGrid:
    """Index ``points`` by their position in the iterable."""
    grid: SpatialHashGrid = SpatialHashGrid(cell_size)
    grid.extend(points)
    return grid
