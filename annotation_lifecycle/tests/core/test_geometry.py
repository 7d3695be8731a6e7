"""
Unit tests for the pure geometry helpers.

These functions have no side effects, so they are tested directly.
"""

import math

import numpy as np
import pytest

from annotation_lifecycle.core.annotation.utils import (
    angle_between,
    bounds_from_points,
    distance,
    ellipse_area,
    ellipse_perimeter,
    rectangle_area,
    rectangle_perimeter,
    round_half_up,
    scale_points,
)


class TestRoundHalfUp:
    def test_halves_round_up(self):
        assert round_half_up(2.5, 0) == 3.0
        assert round_half_up(0.125, 2) == 0.13

    def test_negative_halves_round_away_from_zero(self):
        assert round_half_up(-2.5, 0) == -3.0

    def test_plain_rounding(self):
        assert round_half_up(3.14159, 1) == 3.1


class TestScalePoints:
    def test_identity_spacing(self):
        scaled = scale_points([(1, 2), (3, 4)])
        np.testing.assert_allclose(scaled, [[1, 2], [3, 4]])

    def test_anisotropic_spacing(self):
        scaled = scale_points([(10, 10)], pixel_spacing=(0.5, 2.0))
        np.testing.assert_allclose(scaled, [[5.0, 20.0]])


class TestDistanceAndAngle:
    def test_distance(self):
        assert distance((0, 0), (3, 4)) == 5.0

    def test_right_angle(self):
        assert angle_between((1, 0), (0, 0), (0, 1)) == pytest.approx(90.0)

    def test_vertex_is_middle_point(self):
        # Rays from (1, 0) towards (0, 0) and (0, 1)
        assert angle_between((0, 0), (1, 0), (0, 1)) == pytest.approx(45.0)

    def test_straight_angle(self):
        assert angle_between((-1, 0), (0, 0), (1, 0)) == pytest.approx(180.0)

    def test_radians(self):
        assert angle_between((1, 0), (0, 0), (0, 1), unit="radians") == pytest.approx(
            math.pi / 2
        )

    def test_degenerate_ray(self):
        assert angle_between((0, 0), (0, 0), (1, 1)) == 0.0


class TestBoundsAndAreas:
    def test_bounds_from_points(self):
        bounds = bounds_from_points([(4, 3), (0, 0), (2, 5)])
        assert (bounds.left, bounds.top, bounds.width, bounds.height) == (0, 0, 4, 5)

    def test_bounds_of_empty_set(self):
        with pytest.raises(ValueError):
            bounds_from_points([])

    def test_rectangle(self):
        assert rectangle_area(4, 3) == 12
        assert rectangle_perimeter(4, 3) == 14

    def test_circle_as_ellipse(self):
        assert ellipse_area(2, 2) == pytest.approx(math.pi)
        assert ellipse_perimeter(2, 2) == pytest.approx(2 * math.pi)

    def test_zero_sized_ellipse(self):
        assert ellipse_perimeter(0, 0) == 0.0
