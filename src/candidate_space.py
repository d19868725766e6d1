"""
Candidate space generation for measurement-point planning.

Discretizes the enclosure interior into 3D grid points that satisfy the
margin rules:
  - (x, y) lies inside the floor polygon (even-odd test)
  - (x, y) is at least ``margin`` from every polygon edge
  - z lies in [margin, height - margin]

The result is the Cartesian product of the valid XY cells and Z levels,
rounded to one decimal so equality checks downstream are exact. An empty
space is a normal outcome for rooms thinner than twice the margin.
"""
import logging
import math
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

import numpy as np

from room_geometry import (
    EPS,
    check_enclosure,
    grid_key,
    points_in_polygon,
    polygon_bounds,
    wall_distances,
)

logger = logging.getLogger(__name__)


@dataclass
class CandidateSpaceConfig:
    """Configuration for candidate space generation."""
    margin: float = 0.5     # m, to every wall, floor and ceiling
    step: float = 0.1       # m, grid spacing
    include_origin: bool = True  # extend the XY scan box to contain (0, 0)

    def __post_init__(self):
        if self.step <= 0:
            raise ValueError(f"Grid step must be positive, got {self.step}")
        if abs(self.step * 10.0 - round(self.step * 10.0)) > 1e-6:
            raise ValueError(f"Grid step must be a multiple of 0.1, got {self.step}")
        if self.margin < 0:
            raise ValueError(f"Margin must be non-negative, got {self.margin}")


def _axis_values(lo: float, hi: float, step: float) -> np.ndarray:
    """Grid values in [lo, hi] at multiples of ``step``, rounded to 0.1."""
    if hi < lo - EPS:
        return np.zeros(0, dtype=float)
    first = math.ceil(lo / step - EPS)
    last = math.floor(hi / step + EPS)
    if last < first:
        return np.zeros(0, dtype=float)
    values = np.arange(first, last + 1, dtype=float) * step
    return np.round(values, 1)


def build_z_levels(height: float, margin: float = 0.5, step: float = 0.1) -> np.ndarray:
    """Valid measurement heights in [margin, height - margin]."""
    return np.unique(_axis_values(margin, height - margin, step))


def build_xy_cells(
    polygon: Sequence[Sequence[float]],
    margin: float = 0.5,
    step: float = 0.1,
    include_origin: bool = True,
) -> np.ndarray:
    """Valid (x, y) grid cells inside the polygon and clear of every edge.

    Returns:
        (N, 2) array sorted by x then y.
    """
    if len(polygon) < 3:
        return np.zeros((0, 2), dtype=float)

    minx, miny, maxx, maxy = polygon_bounds(polygon, include_origin=include_origin)
    xs = np.unique(_axis_values(minx + margin, maxx - margin, step))
    ys = np.unique(_axis_values(miny + margin, maxy - margin, step))
    if len(xs) == 0 or len(ys) == 0:
        return np.zeros((0, 2), dtype=float)

    gx, gy = np.meshgrid(xs, ys, indexing="ij")
    grid = np.column_stack([gx.ravel(), gy.ravel()])

    inside = points_in_polygon(grid, polygon)
    grid = grid[inside]
    if len(grid) == 0:
        return grid

    keep = wall_distances(grid, polygon) >= margin - EPS
    return grid[keep]


def build_candidates(
    polygon: Sequence[Sequence[float]],
    height: float,
    margin: float = 0.5,
    step: float = 0.1,
    config: Optional[CandidateSpaceConfig] = None,
) -> np.ndarray:
    """Build the discretized candidate space for an enclosure.

    Args:
        polygon: Floor polygon vertices [(x, y), ...].
        height: Room height.
        margin: Minimum clearance to walls, floor and ceiling.
        step: Grid step.
        config: Overrides ``margin``/``step`` when given.

    Returns:
        (N, 3) array of candidates sorted by (z, x, y); empty (0, 3) when the
        interior is thinner than the margin band.

    Raises:
        EnclosureConfigError: structurally invalid polygon or height.
    """
    if config is None:
        config = CandidateSpaceConfig(margin=margin, step=step)
    check_enclosure(polygon, height)

    xy = build_xy_cells(polygon, config.margin, config.step, config.include_origin)
    zs = build_z_levels(height, config.margin, config.step)

    if len(xy) == 0 or len(zs) == 0:
        logger.info(
            "Candidate space empty: xy_cells=%d z_levels=%d (margin=%.2f height=%.2f)",
            len(xy), len(zs), config.margin, height,
        )
        return np.zeros((0, 3), dtype=float)

    # z-major so each height level is a contiguous block
    candidates = np.column_stack([
        np.tile(xy, (len(zs), 1)),
        np.repeat(zs, len(xy)),
    ])
    candidates = candidates[np.lexsort((candidates[:, 1], candidates[:, 0], candidates[:, 2]))]

    logger.info(
        "Candidate space: xy_cells=%d z_levels=%d candidates=%d",
        len(xy), len(zs), len(candidates),
    )
    return candidates


def candidates_by_level(candidates: np.ndarray) -> Dict[int, np.ndarray]:
    """Group candidate indices by Z level key (``grid_key(z)``)."""
    candidates = np.asarray(candidates, dtype=float).reshape(-1, 3)
    groups: Dict[int, list] = {}
    for idx, z in enumerate(candidates[:, 2]):
        groups.setdefault(grid_key(z), []).append(idx)
    return {k: np.asarray(v, dtype=int) for k, v in sorted(groups.items())}
