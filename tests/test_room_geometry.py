"""Tests for room_geometry module."""
import math

import numpy as np
import pytest

from room_geometry import (
    Enclosure,
    EnclosureConfigError,
    SourcePoint,
    check_enclosure,
    euclidean,
    grid_key,
    min_distance_to_set,
    min_edge_distance,
    planar_distances,
    point_in_polygon,
    points_in_polygon,
    polygon_area,
    polygon_bounds,
    round01,
    wall_distances,
)


SQUARE = [(0, 0), (2, 0), (2, 2), (0, 2)]


class TestRounding:
    def test_round01(self):
        assert round01(1.04) == pytest.approx(1.0)
        assert round01(1.06) == pytest.approx(1.1)
        assert round01(-0.26) == pytest.approx(-0.3)

    def test_grid_key_absorbs_float_noise(self):
        assert grid_key(0.1 + 0.2) == grid_key(0.3) == 3
        assert grid_key(1.8 - 1.1) == 7


class TestEnclosure:
    def test_area_and_volume(self, rectangle_room):
        assert rectangle_room.area == pytest.approx(6.0)
        assert rectangle_room.volume == pytest.approx(15.0)

    def test_l_shape_area(self, l_shaped_room):
        assert l_shaped_room.area == pytest.approx(16.0)

    def test_valid_enclosure_passes(self, rectangle_room):
        rectangle_room.validate()
        assert rectangle_room.is_simple()

    def test_bowtie_is_not_simple(self):
        room = Enclosure(vertices=[(0, 0), (2, 2), (2, 0), (0, 2)], height=2.5)
        assert not room.is_simple()

    def test_too_few_vertices(self):
        with pytest.raises(EnclosureConfigError, match="at least 3"):
            check_enclosure([(0, 0), (1, 0)], 2.5)

    def test_non_positive_height(self):
        with pytest.raises(EnclosureConfigError, match="height"):
            check_enclosure(SQUARE, 0.0)
        with pytest.raises(EnclosureConfigError):
            check_enclosure(SQUARE, -1.0)

    def test_zero_area(self):
        with pytest.raises(EnclosureConfigError, match="zero area"):
            check_enclosure([(0, 0), (1, 0), (2, 0)], 2.5)

    def test_non_finite_vertex(self):
        with pytest.raises(EnclosureConfigError, match="finite"):
            check_enclosure([(0, 0), (math.inf, 0), (1, 1)], 2.5)

    def test_config_error_is_value_error(self):
        assert issubclass(EnclosureConfigError, ValueError)

    def test_source_point_coerces_position(self):
        src = SourcePoint("F1", [1, 2, 3])
        assert src.position == (1.0, 2.0, 3.0)
        assert src.active is True


class TestPolygonQueries:
    def test_point_inside(self):
        assert point_in_polygon(1.0, 1.0, SQUARE)
        assert not point_in_polygon(3.0, 1.0, SQUARE)

    def test_concave_polygon(self, l_shaped_room):
        verts = l_shaped_room.vertices
        assert point_in_polygon(1.0, 3.0, verts)
        assert point_in_polygon(4.0, 1.0, verts)
        assert not point_in_polygon(4.0, 3.0, verts)  # inside the notch

    def test_vectorized_matches_scalar(self, l_shaped_room):
        pts = np.array([[1.0, 3.0], [4.0, 1.0], [4.0, 3.0], [-1.0, 0.5]])
        result = points_in_polygon(pts, l_shaped_room.vertices)
        expected = [point_in_polygon(x, y, l_shaped_room.vertices) for x, y in pts]
        assert result.tolist() == expected

    def test_degenerate_polygon_contains_nothing(self):
        assert not point_in_polygon(0.0, 0.0, [(0, 0), (1, 1)])

    def test_edge_distance_projects_onto_segment(self):
        assert min_edge_distance(1.0, 0.3, SQUARE) == pytest.approx(0.3)
        assert min_edge_distance(1.0, 1.0, SQUARE) == pytest.approx(1.0)

    def test_edge_distance_beyond_segment_uses_endpoint(self):
        # Closest feature of the square to (3, 3) is the corner (2, 2)
        assert min_edge_distance(3.0, 3.0, SQUARE) == pytest.approx(math.sqrt(2))

    def test_degenerate_edge_no_nan(self):
        # Repeated vertex creates a zero-length edge
        verts = [(0, 0), (2, 0), (2, 0), (2, 2), (0, 2)]
        d = wall_distances(np.array([[1.0, 1.0], [1.0, 0.25]]), verts)
        assert np.all(np.isfinite(d))
        np.testing.assert_allclose(d, [1.0, 0.25])

    def test_wall_distances_degenerate_rings(self):
        assert np.all(np.isinf(wall_distances(np.zeros((2, 2)), [])))
        # two vertices: distance to the segment between them
        assert min_edge_distance(1.0, 0.0, [(0, 0), (2, 0)]) == pytest.approx(0.0)
        assert min_edge_distance(1.0, 1.0, [(0, 0), (2, 0)]) == pytest.approx(1.0)

    def test_boundary_point_is_outside(self):
        assert not point_in_polygon(2.0, 1.0, SQUARE)
        assert point_in_polygon(1.999, 1.0, SQUARE)

    def test_polygon_area_unsigned(self):
        assert polygon_area(list(reversed(SQUARE))) == pytest.approx(4.0)
        assert polygon_area([(0, 0), (1, 0)]) == 0.0

    def test_bounds_include_origin(self):
        verts = [(2, 3), (4, 3), (4, 5), (2, 5)]
        assert polygon_bounds(verts) == (0.0, 0.0, 4.0, 5.0)
        assert polygon_bounds(verts, include_origin=False) == (2.0, 3.0, 4.0, 5.0)


class TestPointDistances:
    def test_euclidean(self):
        assert euclidean((0, 0, 0), (1, 2, 2)) == pytest.approx(3.0)

    def test_planar_distances(self):
        d = planar_distances((0, 0, 0), (3, 4, 12))
        assert d["xy"] == pytest.approx(5.0)
        assert d["xz"] == pytest.approx(math.hypot(3, 12))
        assert d["yz"] == pytest.approx(math.hypot(4, 12))

    def test_min_distance_to_empty_set_is_inf(self):
        d = min_distance_to_set(np.zeros((3, 3)), np.zeros((0, 3)))
        assert np.all(np.isinf(d))

    def test_min_distance_to_set(self):
        pts = np.array([[0.0, 0.0, 0.0], [5.0, 0.0, 0.0]])
        anchors = np.array([[1.0, 0.0, 0.0], [4.0, 0.0, 0.0]])
        np.testing.assert_allclose(min_distance_to_set(pts, anchors), [1.0, 1.0])
