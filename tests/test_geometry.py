"""
Tests for the coordinate mapping between page space and surface pixels.
"""

import pytest

from docreview_backend.viewer.geometry import Point, from_surface, normalize_rotation, to_surface

POINTS = [Point(0.0, 0.0), Point(0.2, 0.7), Point(0.5, 0.5), Point(0.93, 0.11), Point(1.0, 1.0)]


class TestNormalizeRotation:
    @pytest.mark.parametrize(
        "degrees, expected",
        [(0, 0), (90, 90), (360, 0), (-90, 270), (-270, 90), (450, 90), (-720, 0)],
    )
    def test_normalizes_into_range(self, degrees, expected):
        assert normalize_rotation(degrees) == expected


class TestToSurface:
    def test_unrotated_scales_by_surface_size(self):
        assert to_surface(Point(0.25, 0.5), 200, 100, 0) == Point(50, 50)

    def test_quarter_turn_maps_top_left_to_top_right(self):
        """A clockwise quarter turn moves the page's top-left corner to the surface's top-right."""
        assert to_surface(Point(0, 0), 200, 100, 90) == Point(200, 0)
        assert to_surface(Point(0.2, 0.4), 200, 100, 90) == pytest.approx(Point(120, 20))

    def test_half_turn_mirrors_both_axes(self):
        assert to_surface(Point(0.2, 0.4), 200, 100, 180) == pytest.approx(Point(160, 60))

    def test_three_quarter_turn(self):
        assert to_surface(Point(0.2, 0.4), 200, 100, 270) == pytest.approx(Point(80, 80))

    def test_negative_rotation_is_normalized(self):
        assert to_surface(Point(0.2, 0.4), 200, 100, -90) == to_surface(Point(0.2, 0.4), 200, 100, 270)

    def test_out_of_range_points_are_not_clamped(self):
        assert to_surface(Point(1.5, -0.5), 100, 100, 0) == Point(150, -50)


class TestRoundTrip:
    @pytest.mark.parametrize("rotation", [0, 90, 180, 270])
    def test_inverse_recovers_the_point(self, rotation):
        """Cursor normalization undoes the drawing transform for every rotation."""
        for point in POINTS:
            px, py = to_surface(point, 640, 480, rotation)
            recovered = from_surface(px, py, 640, 480, rotation)
            assert recovered.x == pytest.approx(point.x)
            assert recovered.y == pytest.approx(point.y)

    def test_zero_area_surface_is_rejected(self):
        with pytest.raises(ValueError):
            from_surface(10, 10, 0, 100, 0)
