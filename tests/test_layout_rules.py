"""Tests for layout_rules module."""
import pytest

from layout_rules import (
    LayoutRules,
    PointMark,
    ViolationReport,
    summarize_violations,
    validate_layout,
)


ROOM = [(0, 0), (3, 0), (3, 2), (0, 2)]
HEIGHT = 2.5
SOURCES = [(0.5, 1.5, 1.8), (2.5, 0.5, 1.1)]

# Satisfies every rule against SOURCES
GOOD_POINTS = [
    (1.0, 0.6, 0.5),
    (1.5, 1.0, 1.3),
    (2.0, 1.4, 0.6),
    (1.2, 0.8, 2.0),
    (2.3, 1.3, 1.9),
]


def _validate(points, sources=SOURCES, active=(True, True), **kwargs):
    return validate_layout(sources, list(active), points, ROOM, HEIGHT, **kwargs)


class TestLayoutRules:
    def test_defaults(self):
        rules = LayoutRules()
        assert rules.margin == 0.5
        assert rules.source_measurement_min == 1.0
        assert rules.measurement_spacing_min == 0.7
        assert rules.source_spacing_min == 0.7
        assert rules.source_z_unique is False

    def test_rejects_negative_limits(self):
        with pytest.raises(ValueError):
            LayoutRules(margin=-0.1)


class TestPointMark:
    def test_flag_deduplicates_messages(self):
        mark = PointMark()
        mark.flag("xy", "Outside polygon (XY)")
        mark.flag("xy", "Outside polygon (XY)")
        assert mark.x and mark.y and not mark.z
        assert mark.messages == ["Outside polygon (XY)"]
        assert not mark.ok


class TestCleanLayout:
    def test_good_layout_has_no_violations(self):
        report = _validate(GOOD_POINTS)
        assert report.is_clean
        assert report.violation_count == 0
        assert len(report.sources) == 2
        assert len(report.measurements) == 5

    def test_empty_layout(self):
        report = _validate([])
        assert report.is_clean

    def test_report_labels(self):
        report = _validate(GOOD_POINTS)
        labels = [label for label, _ in report.entries()]
        assert labels == ["F1", "F2", "P1", "P2", "P3", "P4", "P5"]
        assert set(report.to_dict()) == set(labels)


class TestMarginRule:
    def test_outside_polygon(self):
        report = _validate([(3.5, 1.0, 1.0)])
        mark = report.measurements[0]
        assert mark.x and mark.y
        assert "Outside polygon (XY)" in mark.messages

    def test_too_close_to_wall(self):
        report = _validate([(1.5, 0.3, 1.0)])
        mark = report.measurements[0]
        assert mark.x and mark.y and not mark.z
        assert any("wall" in m for m in mark.messages)

    def test_z_outside_margins(self):
        report = _validate([(1.5, 1.0, 2.1)])
        mark = report.measurements[0]
        assert mark.z and not mark.x
        assert "Z outside margins" in mark.messages

    def test_exact_margin_is_valid(self):
        report = _validate([(1.5, 1.0, 0.5)], active=(False, False))
        assert report.is_clean

    def test_inactive_source_out_of_room_ignored(self):
        report = _validate([], sources=[(9.0, 9.0, 9.0), (2.5, 0.5, 1.1)], active=(False, True))
        assert report.is_clean


class TestUniquenessRule:
    def test_shared_x_flags_every_member(self):
        points = [(1.0, 0.6, 0.5), (1.0, 1.4, 2.0), (2.0, 1.0, 1.0)]
        report = _validate(points, active=(False, False))
        assert report.measurements[0].x
        assert report.measurements[1].x
        assert not report.measurements[2].x
        assert "X repeated" in report.measurements[0].messages

    def test_float_noise_still_collides(self):
        points = [(0.1 + 0.2, 1.4, 2.0), (0.3, 0.6, 0.5)]
        report = validate_layout([], [], points, [(0, 0), (5, 0), (5, 5), (0, 5)], 2.5)
        assert report.measurements[0].x and report.measurements[1].x

    def test_measurement_shares_y_with_active_source(self):
        report = _validate([(1.5, 1.5, 0.5)])
        assert report.measurements[0].y
        assert report.sources[0].y

    def test_inactive_source_excluded_from_uniqueness(self):
        report = _validate([(1.5, 1.5, 0.5)], active=(False, True))
        assert not report.measurements[0].y
        assert report.sources[0].ok

    def test_source_z_shared_allowed_by_default(self):
        report = _validate([(1.5, 1.0, 1.8)])
        assert not report.measurements[0].z
        assert not report.sources[0].z

    def test_source_z_unique_option(self):
        report = _validate([(1.5, 1.0, 1.8)], rules=LayoutRules(source_z_unique=True))
        assert report.measurements[0].z
        assert report.sources[0].z

    def test_measurement_z_always_unique(self):
        points = [(1.0, 0.6, 1.2), (2.0, 1.4, 1.2)]
        report = _validate(points, active=(False, False))
        assert report.measurements[0].z and report.measurements[1].z


class TestSourceSpacingRule:
    def test_reference_sources_clean(self):
        report = _validate([])
        assert report.sources[0].ok and report.sources[1].ok

    def test_close_sources_flag_both(self):
        sources = [(1.0, 1.0, 1.0), (1.3, 1.5, 2.0)]
        report = _validate([], sources=sources)
        f1, f2 = report.sources
        # |dx| = 0.3 -> x flagged on both, plus XY projection 0.58
        assert f1.x and f2.x
        assert any("|X|" in m for m in f1.messages)
        assert any("in XY" in m for m in f2.messages)
        assert f1.messages == f2.messages

    def test_single_active_source_skips_pair_rule(self):
        sources = [(1.0, 1.0, 1.0), (1.3, 1.5, 2.0)]
        report = _validate([], sources=sources, active=(True, False))
        assert report.sources[0].ok


class TestDistanceRules:
    def test_measurement_too_close_to_source(self):
        report = _validate([(1.2, 1.2, 1.6)])
        mark = report.measurements[0]
        assert mark.x and mark.y and mark.z
        assert any(m.startswith("Distance to F1") for m in mark.messages)

    def test_inactive_source_distance_ignored(self):
        report = _validate([(1.2, 1.2, 1.6)], active=(False, True))
        assert report.measurements[0].ok

    def test_measurement_pair_too_close(self):
        points = [(1.0, 0.6, 0.5), (1.3, 0.9, 0.8)]
        report = _validate(points, active=(False, False))
        assert "P1-P2 < 0.7 m (0.52 m)" in report.measurements[0].messages
        assert "P1-P2 < 0.7 m (0.52 m)" in report.measurements[1].messages

    def test_exact_spacing_allowed(self):
        points = [(1.0, 0.6, 0.5), (1.2, 0.9, 1.1)]
        report = _validate(points, active=(False, False))
        assert report.measurements_clean

    def test_hash_grid_path_matches_pairwise(self):
        points = [(0.5 + 0.1 * i, 0.5 + 0.1 * ((i * 3) % 11), 0.5 + 0.1 * i) for i in range(12)]
        room = [(0, 0), (4, 0), (4, 4), (0, 4)]
        brute = validate_layout([], [], points, room, 2.5, LayoutRules(proximity_index_threshold=100))
        grid = validate_layout([], [], points, room, 2.5, LayoutRules(proximity_index_threshold=4))
        assert brute.to_dict() == grid.to_dict()


class TestRobustness:
    def test_degenerate_polygon_does_not_raise(self):
        report = validate_layout(SOURCES, [True, True], GOOD_POINTS, [(0, 0), (1, 1)], HEIGHT)
        assert isinstance(report, ViolationReport)
        assert not report.is_clean

    def test_empty_polygon_does_not_raise(self):
        report = validate_layout([], [], [(1.0, 1.0, 1.0)], [], HEIGHT)
        assert "Outside polygon (XY)" in report.measurements[0].messages

    def test_missing_flags_mean_inactive(self):
        report = validate_layout(SOURCES, [], [(1.2, 1.2, 1.6)], ROOM, HEIGHT)
        assert report.measurements[0].ok


class TestSummary:
    def test_clean_layout_has_no_issues(self):
        assert summarize_violations(SOURCES, [True, True], GOOD_POINTS, ROOM, HEIGHT) == []

    def test_summary_names_points(self):
        points = [(1.5, 1.5, 0.5), (1.2, 1.2, 1.6), (1.2, 0.6, 0.6)]
        issues = summarize_violations(SOURCES, [True, True], points, ROOM, HEIGHT)
        assert "Y repeated (= 1.5) among F1, P1" in issues
        assert any(i.startswith("P2 to F1 = ") for i in issues)
        assert "X repeated (= 1.2) among P2, P3" in issues
        assert len(issues) == len(set(issues))
