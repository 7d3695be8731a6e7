"""
Pure geometry functions for measurement records.

These functions have no side effects and can be tested in isolation.
"""

import math
from typing import Sequence, Tuple

import numpy as np

from .records import Bounds, Point


def round_half_up(value: float, precision: int) -> float:
    """
    Round to a number of decimals, halves rounding away from zero.

    Python's round() uses banker's rounding, which would display
    12.345 mm as 12.34; measurement readouts round halves up.
    """
    factor = 10 ** precision
    scaled = abs(value) * factor
    rounded = math.floor(scaled + 0.5) / factor
    return math.copysign(rounded, value)


def scale_points(
    points: Sequence[Point], pixel_spacing: Tuple[float, float] = (1.0, 1.0)
) -> np.ndarray:
    """
    Convert pixel coordinates to physical units.

    Args:
        points: Sequence of (x, y) pixel coordinates
        pixel_spacing: Size of one pixel along (x, y), in mm

    Returns:
        Array of shape (N, 2)
    """
    array = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    return array * np.asarray(pixel_spacing, dtype=np.float64)


def distance(p1: Point, p2: Point) -> float:
    """Euclidean distance between two points."""
    return float(np.linalg.norm(np.subtract(p2, p1, dtype=np.float64)))


def angle_between(
    p1: Point, vertex: Point, p3: Point, unit: str = "degrees"
) -> float:
    """
    Angle at ``vertex`` formed by the rays towards p1 and p3.

    Args:
        p1: End of the first ray
        vertex: Shared vertex
        p3: End of the second ray
        unit: "degrees" or "radians"

    Returns:
        Angle in [0, 180] degrees (or [0, pi] radians). A degenerate
        ray of zero length yields 0.
    """
    v1 = np.subtract(p1, vertex, dtype=np.float64)
    v2 = np.subtract(p3, vertex, dtype=np.float64)
    norm1 = np.linalg.norm(v1)
    norm2 = np.linalg.norm(v2)
    if norm1 == 0 or norm2 == 0:
        return 0.0

    cos_angle = float(np.dot(v1, v2) / (norm1 * norm2))
    # Floating point error can push the cosine slightly outside [-1, 1]
    cos_angle = float(np.clip(cos_angle, -1.0, 1.0))
    radians = math.acos(cos_angle)
    if unit == "radians":
        return radians
    return math.degrees(radians)


def bounds_from_points(points: Sequence[Point]) -> Bounds:
    """Axis-aligned bounds of a set of points."""
    array = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    if array.shape[0] == 0:
        raise ValueError("Cannot compute bounds of an empty point set")
    left, top = array.min(axis=0)
    right, bottom = array.max(axis=0)
    return Bounds(
        left=float(left),
        top=float(top),
        width=float(right - left),
        height=float(bottom - top),
    )


def ellipse_area(width: float, height: float) -> float:
    """Area of the ellipse inscribed in a width x height box."""
    return math.pi * (width / 2) * (height / 2)


def rectangle_area(width: float, height: float) -> float:
    return width * height


def ellipse_perimeter(width: float, height: float) -> float:
    """Ramanujan's second approximation of an ellipse perimeter."""
    a = width / 2
    b = height / 2
    if a + b == 0:
        return 0.0
    h = (a - b) ** 2 / (a + b) ** 2
    return math.pi * (a + b) * (1 + (3 * h) / (10 + math.sqrt(4 - 3 * h)))


def rectangle_perimeter(width: float, height: float) -> float:
    return 2 * (width + height)
