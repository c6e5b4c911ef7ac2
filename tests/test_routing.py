"""Tests for the orthogonal connector router.

Saved diagrams depend on these exact path strings.
"""

import pytest

from synoptics.layout.routing import compute_route, route_orthogonal
from synoptics.models.enums import Side
from synoptics.models.layout_metadata import EdgeSection, RouterConfig


class TestOpposingSides:

    @pytest.mark.parametrize("source,source_side,target,target_side,expected", [
        ((0, 0), "right", (200, 100), "left",
         "M 0 0 L 20 0 L 20 50 L 180 50 L 180 100 L 200 100"),
        ((200, 0), "left", (0, 100), "right",
         "M 200 0 L 180 0 L 180 50 L 20 50 L 20 100 L 0 100"),
        ((0, 0), "bottom", (100, 200), "top",
         "M 0 0 L 0 20 L 50 20 L 50 180 L 100 180 L 100 200"),
        ((0, 200), "top", (100, 0), "bottom",
         "M 0 200 L 0 180 L 50 180 L 50 20 L 100 20 L 100 0"),
    ])
    def test_two_elbows(self, source, source_side, target, target_side, expected):
        assert route_orthogonal(source, source_side, target, target_side) == expected

    def test_right_left_midpoint_fallback(self):
        route = compute_route((0, 0), Side.RIGHT, (40, 100), Side.LEFT)
        assert route.branch == "midpoint"
        assert route.to_path() == "M 0 0 L 20 0 L 20 100 L 40 100"

    def test_bottom_top_midpoint_fallback(self):
        assert route_orthogonal((0, 0), "bottom", (100, 30), "top") == "M 0 0 L 0 15 L 100 15 L 100 30"

    def test_fractional_midpoint(self):
        assert route_orthogonal((0, 0), "right", (45, 10), "left") == "M 0 0 L 22.5 0 L 22.5 10 L 45 10"

    def test_target_behind_source(self):
        route = compute_route((100, 0), "right", (0, 50), "left")
        assert route.branch == "midpoint"
        assert route.to_path() == "M 100 0 L 50 0 L 50 50 L 0 50"


class TestOtherSidePairs:

    def test_horizontal_source_corner(self):
        route = compute_route((0, 0), "right", (100, 50), "top")
        assert route.branch == "corner"
        assert route.to_path() == "M 0 0 L 100 0 L 100 50"

    def test_vertical_source_corner(self):
        assert route_orthogonal((0, 0), "bottom", (100, 50), "left") == "M 0 0 L 0 50 L 100 50"

    def test_left_to_top_corner(self):
        assert route_orthogonal((0, 0), "left", (-100, 50), "top") == "M 0 0 L -100 0 L -100 50"

    def test_same_side_horizontal_dominant(self):
        route = compute_route((0, 0), "right", (100, 40), "right")
        assert route.branch == "default"
        assert route.to_path() == "M 0 0 L 50 0 L 50 40 L 100 40"

    def test_same_side_vertical_dominant(self):
        assert route_orthogonal((0, 0), "top", (20, 100), "top") == "M 0 0 L 0 50 L 20 50 L 20 100"

    def test_invalid_side(self):
        with pytest.raises(ValueError):
            route_orthogonal((0, 0), "north", (1, 1), "left")


class TestRouteObject:

    def test_bend_points_and_edge_section(self):
        route = compute_route((0, 0), "right", (200, 100), "left")
        assert route.bend_points == [(20, 0), (20, 50), (180, 50), (180, 100)]

        section = route.to_edge_section()
        assert isinstance(section, EdgeSection)
        assert section.start_point == (0, 0)
        assert section.end_point == (200, 100)
        assert section.get_all_points() == route.points

    def test_custom_config(self):
        config = RouterConfig(elbow_offset=10, min_gap=0)
        assert route_orthogonal((0, 0), "right", (100, 100), "left", config) == (
            "M 0 0 L 10 0 L 10 50 L 90 50 L 90 100 L 100 100"
        )

    def test_negative_offset_rejected(self):
        with pytest.raises(ValueError):
            RouterConfig(elbow_offset=-5)

    def test_deterministic(self):
        args = ((12.5, 7), "bottom", (300, 410), "top")
        assert route_orthogonal(*args) == route_orthogonal(*args)
