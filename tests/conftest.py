"""
Shared test fixtures for measurement-point planning tests.
"""
import sys
from pathlib import Path

import numpy as np
import pytest

# Add src/ to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from candidate_space import build_candidates
from room_geometry import Enclosure


@pytest.fixture
def rectangle_room():
    """The reference 3 x 2 m room, 2.5 m high."""
    return Enclosure(vertices=[(0, 0), (3, 0), (3, 2), (0, 2)], height=2.5)


@pytest.fixture
def l_shaped_room():
    """An L-shaped 5 x 4 m room with a 2 x 2 m notch, 2.7 m high."""
    return Enclosure(
        vertices=[(0, 0), (5, 0), (5, 2), (3, 2), (3, 4), (0, 4)],
        height=2.7,
    )


@pytest.fixture
def reference_sources():
    """F1 and F2 of the reference scenario."""
    return [(0.5, 1.5, 1.8), (2.5, 0.5, 1.1)]


@pytest.fixture
def both_active():
    return [True, True]


@pytest.fixture
def rectangle_candidates(rectangle_room) -> np.ndarray:
    return build_candidates(rectangle_room.vertices, rectangle_room.height)


@pytest.fixture
def cramped_candidates() -> np.ndarray:
    """1.2 x 1.2 x 1.2 m box: 9 XY cells and only 3 height levels."""
    return build_candidates([(0, 0), (1.2, 0), (1.2, 1.2), (0, 1.2)], 1.2)
